import os
import pathlib
import typing

import attr
import click.testing
import git
import pyrage
import pytest

import gitprivate.cli
from gitprivate.age import Age
from gitprivate.config import Config
from gitprivate.keys import Access, KeyEntry, KeyRegistry
from gitprivate.secrets import SecretKeeper


@attr.s(frozen=True)
class ExampleKey:
    name: str = attr.ib()
    identity: pyrage.x25519.Identity = attr.ib()
    keyfile: pathlib.Path = attr.ib()

    def __str__(self):
        return self.name

    @property
    def public(self) -> str:
        return str(self.identity.to_public())

    def entry(self, access: Access = Access.READ_WRITE) -> KeyEntry:
        return KeyEntry(id=self.name, kind='age', material=self.public, access=access)


def make_key(directory: pathlib.Path, name: str) -> ExampleKey:
    identity = pyrage.x25519.Identity.generate()
    keyfile = directory / f'{name}.key'
    keyfile.write_text(f"# public key: {identity.to_public()}\n{identity}\n")
    return ExampleKey(name, identity, keyfile)


@pytest.fixture()
def keydir(tmp_path) -> pathlib.Path:
    path = tmp_path / 'keys'
    path.mkdir()
    return path


@pytest.fixture()
def one(keydir) -> ExampleKey:
    return make_key(keydir, 'one')


@pytest.fixture()
def another(keydir) -> ExampleKey:
    return make_key(keydir, 'another')


@pytest.fixture()
def repo(tmp_path, monkeypatch) -> pathlib.Path:
    path = tmp_path / 'repo'
    git.Repo.init(path)
    monkeypatch.chdir(path)
    for variable in ('GIT_PRIVATE_DIR', 'GIT_PRIVATE_KEY', 'GIT_PRIVATE_KEYFILE'):
        monkeypatch.delenv(variable, raising=False)
    return path


@pytest.fixture()
def age() -> Age:
    return Age()


@pytest.fixture()
def keeper(repo, age) -> SecretKeeper:
    sk = SecretKeeper(Config(root=repo), age)
    sk.init()
    return sk


@pytest.fixture()
def registry(keeper, one) -> KeyRegistry:
    registry = KeyRegistry().add(one.entry())
    keeper.store.store_keys(registry)
    return registry


@pytest.fixture()
def write(repo) -> typing.Callable[..., pathlib.Path]:
    def write_func(name: str, data: bytes = None) -> pathlib.Path:
        path = repo / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data if data is not None else os.urandom(5150))
        return path

    return write_func


@pytest.fixture()
def invoke(repo):
    def invoke_func(
            arguments: typing.Sequence[str],
            input: typing.Optional[str] = None,
            fails: bool = False) -> click.testing.Result:
        assert all(isinstance(arg, str) for arg in arguments)
        runner = click.testing.CliRunner()
        result = runner.invoke(gitprivate.cli.main, ['--path', str(repo), *arguments], input=input)
        if fails:
            assert result.exit_code != 0, f"git-private {' '.join(arguments)} succeeded"
        elif result.exit_code != 0:
            message = f"Command git-private {' '.join(arguments)} failed: {result.output}"
            raise Exception(message) from result.exception
        return result

    return invoke_func


@pytest.fixture()
def initialized(invoke, repo) -> pathlib.Path:
    invoke(['init'])
    return repo
