import hashlib
import os
import pathlib
import sys
import tempfile
import typing

import click
import git

PRIVATE_EXTENSION = '.private'
TOOL_NAME = 'git-private'


class GitPrivateException(click.ClickException):
    """
    Base class for every failure reported to the operator.

    Context strings are prepended as the error travels up, and rendered as a
    chain in front of the message.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.context: typing.List[str] = []

    @property
    def kind(self) -> str:
        return type(self).__name__

    def with_context(self, context: str) -> 'GitPrivateException':
        self.context.insert(0, context)
        return self

    def format_message(self) -> str:
        return ': '.join((*self.context, self.message))


class NotInitialized(GitPrivateException):
    pass


class NoRecipients(GitPrivateException):
    pass


class DuplicateId(GitPrivateException):
    pass


class NotFound(GitPrivateException):
    pass


class DecryptionFailed(GitPrivateException):
    pass


class SyncConflict(GitPrivateException):
    pass


class ReEncryptionBlocked(GitPrivateException):
    pass


class KeyParseError(GitPrivateException):
    pass


class NeedsPassphrase(GitPrivateException):
    pass


def find_git_directory() -> typing.Optional[pathlib.Path]:
    try:
        repo = git.Repo(search_parent_directories=True)
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
        return None
    return pathlib.Path(repo.working_dir)


def is_ignored(root: pathlib.Path, *paths: pathlib.Path) -> typing.Set[pathlib.Path]:
    """Return the subset of paths excluded by git's ignore rules."""
    if not paths:
        return set()
    repo = git.Repo(root)
    ignored = repo.ignored(*(path.as_posix() for path in paths))
    return {(root / path).resolve() for path in ignored}


def read_ignore_file(root: pathlib.Path) -> typing.List[str]:
    ignore_file = root / '.gitignore'
    if not ignore_file.exists():
        return []
    return ignore_file.read_text().splitlines()


def write_ignore_file(root: pathlib.Path, lines: typing.Sequence[str]) -> None:
    text = '\n'.join(lines)
    (root / '.gitignore').write_text(f"{text}\n" if text else '')


def add_ignore_pattern(root: pathlib.Path, pattern: str) -> bool:
    """Append a pattern to .gitignore unless an identical line exists."""
    lines = read_ignore_file(root)
    if any(line.strip() == pattern.strip() for line in lines):
        return False
    write_ignore_file(root, [*lines, pattern])
    return True


def remove_ignore_pattern(root: pathlib.Path, pattern: str) -> bool:
    lines = read_ignore_file(root)
    kept = [line for line in lines if line.strip() != pattern.strip()]
    if len(kept) == len(lines):
        return False
    write_ignore_file(root, kept)
    return True


def fingerprint(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def file_fingerprint(path: pathlib.Path) -> str:
    digest = hashlib.sha256()
    with path.open('rb') as f:
        for chunk in iter(lambda: f.read(65536), b''):
            digest.update(chunk)
    return digest.hexdigest()


def atomic_write(path: pathlib.Path, data: bytes, mode: int = 0o600) -> None:
    """Write data to a temporary sibling, then move it over the target."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f'.{path.name}.', suffix='.tmp')
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        pathlib.Path(tmp).unlink(missing_ok=True)
        raise


def read_from_file_or_stdin(name: str) -> str:
    """Read key material from a file, or standard input when name is '-'."""
    if name == '-':
        return sys.stdin.read().strip()
    return pathlib.Path(name).read_text().strip()


def private_path(path: pathlib.Path) -> pathlib.Path:
    return path.with_name(path.name + PRIVATE_EXTENSION)


def is_private_path(path: typing.Union[str, pathlib.PurePath]) -> bool:
    return str(path).endswith(PRIVATE_EXTENSION)


def repo_relative(root: pathlib.Path, path: pathlib.Path) -> str:
    """Convert a path to the posix form stored in the manifest."""
    absolute = (pathlib.Path.cwd() / path).resolve() if not path.is_absolute() else path.resolve()
    try:
        return absolute.relative_to(root.resolve()).as_posix()
    except ValueError:
        raise GitPrivateException(f"{path} is outside the repository {root}")
