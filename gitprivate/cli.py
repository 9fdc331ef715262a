import collections
import functools
import logging
import os
import os.path
import pathlib
import typing

import click

from . import __doc__, __version__, protect, rekey
from .age import Identity
from .config import (
    DEFAULT_STATE_DIR,
    PRIVATE_KEY_FILE_VARIABLE,
    PRIVATE_KEY_VARIABLE,
    STATE_DIR_VARIABLE,
    Config,
)
from .keys import Access, KeyEntry, KeyKind, parse_key
from .passphrase import read_passphrase
from .secrets import Outcome, Progress, Secret, SecretKeeper
from .utils import (
    TOOL_NAME,
    GitPrivateException,
    find_git_directory,
    is_ignored,
    read_from_file_or_stdin,
)

log = logging.getLogger(__name__)


@functools.lru_cache()
def rel(path: pathlib.Path) -> str:
    """
    Convert a path to a relative Path.

    Returns a string as these should only be used for presentation.
    """
    return os.path.relpath(path.as_posix(), pathlib.Path.cwd().as_posix())


def enc(secret: Secret) -> str:
    """Style a path to a encrypted file."""
    return click.style(rel(secret.encrypted), fg='green')


def dec(secret: Secret) -> str:
    """Style a path to a decrypted file."""
    return click.style(rel(secret.decrypted), fg='red')


def plural(count: int, noun: str = 'file') -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def report(progress: Progress, action: Outcome) -> typing.Counter[Outcome]:
    """
    Print each file as it is processed, then a summary.

    The summary is printed even when a file fails, so the operator can see
    how far the run got before the error.
    """
    counts: typing.Counter[Outcome] = collections.Counter()
    try:
        for secret, outcome in progress:
            counts[outcome] += 1
            path = enc(secret) if outcome is Outcome.HIDDEN else dec(secret)
            click.echo(f"{path}: {outcome.value}")
    finally:
        summary = f"{plural(counts[action])} {action.value}"
        if counts[Outcome.IN_SYNC]:
            summary += f", {counts[Outcome.IN_SYNC]} already in sync"
        click.echo(summary)
    return counts


def load_identity(sk: SecretKeeper, keyfile: typing.Optional[str]) -> Identity:
    return protect.load_identity(sk.age, sk.config.private_key_text(keyfile))


def check_setup(sk: SecretKeeper) -> None:
    config = sk.config
    if not config.initialized:
        return

    if config.state_dir_pattern() and is_ignored(config.root, config.state_dir):
        raise GitPrivateException(f"{rel(config.state_dir)!r} is in .gitignore")

    for secret in sk.check_gitignore():
        click.secho(
            f"Plaintext {rel(secret.decrypted)} is not excluded by .gitignore",
            fg='yellow', err=True)


class PathType(click.Path):
    def convert(self, value, param, ctx):
        return pathlib.Path(super().convert(value, param, ctx))


keyfile_option = click.option(
    '-k', '--keyfile',
    metavar='FILE',
    default=None,
    help=f"Load the private key from FILE, '-' reads stdin. "
         f"Defaults to ${PRIVATE_KEY_VARIABLE} or ${PRIVATE_KEY_FILE_VARIABLE}.")

files_argument = click.argument(
    'files',
    type=PathType(),
    required=False,
    nargs=-1)

force_option = functools.partial(
    click.option,
    '-f', '--force',
    default=False,
    is_flag=True)


@click.group(help=__doc__)
@click.option(
    '-p', '--path',
    type=PathType(
        file_okay=False,
        dir_okay=True,
        exists=True),
    default=find_git_directory,
    help="Defaults to the current git repository.")
@click.option(
    '--state-dir',
    envvar=STATE_DIR_VARIABLE,
    default=DEFAULT_STATE_DIR,
    show_default=True,
    show_envvar=True,
    help="Directory holding the file and key lists, relative to the repository.")
@click.option(
    '--private-key',
    envvar=PRIVATE_KEY_VARIABLE,
    default=None,
    hidden=True)
@click.option(
    '--private-key-file',
    envvar=PRIVATE_KEY_FILE_VARIABLE,
    default=None,
    show_envvar=True,
    help="Private key file used when --keyfile is not given.")
@click.option(
    '-d', '--debug', 'debug',
    default=False,
    is_flag=True,
    help="Enable debug logging.")
@click.pass_context
def main(
        ctx,
        path: typing.Optional[pathlib.Path],
        state_dir: str,
        private_key: typing.Optional[str],
        private_key_file: typing.Optional[str],
        debug: bool):
    logging.basicConfig(level=(logging.DEBUG if debug else logging.WARNING))

    if ctx.invoked_subcommand == 'version':
        return

    if path is None:
        raise GitPrivateException(
            f"not in a git repository, use 'git init' or 'git clone', "
            f"then run '{TOOL_NAME} init' in the repository")

    ctx.obj = SecretKeeper(Config(
        root=path,
        state_dir_name=state_dir,
        private_key=private_key,
        private_key_file=private_key_file))

    if ctx.invoked_subcommand != 'init':
        check_setup(ctx.obj)


@main.command()
def version():
    """Show the application version."""
    click.echo(f"{TOOL_NAME} {__version__}")


@main.command()
@click.pass_obj
def init(sk: SecretKeeper):
    """Create the state directory and update .gitignore."""
    sk.init()
    click.echo(f"Initialized {rel(sk.config.state_dir)}")


@main.command()
@files_argument
@click.pass_obj
def add(sk: SecretKeeper, files: typing.Sequence[pathlib.Path]):
    """Start tracking files, and exclude their plaintext from git."""
    report(sk.add(files), Outcome.ADDED)


@main.command()
@force_option(help="Remove files even when their private version is missing.")
@files_argument
@click.pass_obj
def remove(sk: SecretKeeper, files: typing.Sequence[pathlib.Path], force: bool):
    """Stop tracking files and delete their private versions."""
    report(sk.remove(files, force=force), Outcome.REMOVED)


@main.command()
@keyfile_option
@click.option(
    '-c', '--clean',
    default=False,
    is_flag=True,
    help="Delete the plaintext after hiding.")
@force_option(help="Hide files even when they are already in sync.")
@files_argument
@click.pass_obj
def hide(
        sk: SecretKeeper,
        keyfile: typing.Optional[str],
        clean: bool,
        force: bool,
        files: typing.Sequence[pathlib.Path]):
    """
    Encrypt plaintext files to their private versions.

    If no files are given, hides every tracked file.
    """
    sk.config.ensure_initialized()
    registry = sk.store.load_keys(load_identity(sk, keyfile))
    report(sk.hide(sk.select(files), registry, clean=clean, force=force), Outcome.HIDDEN)


@main.command()
@keyfile_option
@click.option(
    '-c', '--clean',
    default=False,
    is_flag=True,
    help="Delete the private version after revealing.")
@force_option(help="Overwrite plaintext files with local modifications.")
@files_argument
@click.pass_obj
def reveal(
        sk: SecretKeeper,
        keyfile: typing.Optional[str],
        clean: bool,
        force: bool,
        files: typing.Sequence[pathlib.Path]):
    """
    Decrypt private versions to their plaintext files.

    If no files are given, reveals every tracked file.
    """
    sk.config.ensure_initialized()
    secrets = sk.select(files)
    identity = load_identity(sk, keyfile)
    report(sk.reveal(secrets, identity, overwrite=force, clean=clean), Outcome.REVEALED)


@main.command()
@force_option(help="Delete plaintext files that are modified or not hidden.")
@click.pass_obj
def clean(sk: SecretKeeper, force: bool):
    """Delete all revealed plaintext files."""
    report(sk.clean(force=force), Outcome.CLEANED)


@main.command()
@click.pass_obj
def status(sk: SecretKeeper):
    """Show the state of every tracked file."""
    if not sk.config.initialized:
        raise GitPrivateException(f"{TOOL_NAME} not initialized in repo")

    statuses = sk.status()
    width = max((len(secret.path) for secret, _ in statuses), default=0)
    for secret, state in statuses:
        click.echo(f"{secret.path.ljust(width)}    [{state}]")


@main.group()
def keys():
    """Manage the keys allowed to reveal and hide files."""


@keys.command(name='list')
@keyfile_option
@click.pass_obj
def keys_list(sk: SecretKeeper, keyfile: typing.Optional[str]):
    """List the authorized keys."""
    registry = sk.store.load_keys(load_identity(sk, keyfile))
    width = max((len(entry.id) for entry in registry), default=0)
    for entry in registry:
        click.echo(
            f"{entry.id.ljust(width)}    [{entry.kind.value}]    "
            f"{entry.access.value}    (...{entry.material[-12:]})")


@keys.command(name='add')
@keyfile_option
@click.option('--id', 'key_id', metavar='ID', help="Key id, defaults to the SSH key comment.")
@click.option('--pubfile', metavar='FILE', help="Load the public key from FILE, '-' reads stdin.")
@click.option('--pubenv', metavar='VARIABLE', help="Load the public key from an environment variable.")
@click.option(
    '--readonly',
    default=False,
    is_flag=True,
    help="The key can reveal files, but not hide them or change keys.")
@click.argument('key', required=False)
@click.pass_obj
def keys_add(
        sk: SecretKeeper,
        keyfile: typing.Optional[str],
        key_id: typing.Optional[str],
        pubfile: typing.Optional[str],
        pubenv: typing.Optional[str],
        readonly: bool,
        key: typing.Optional[str]):
    """
    Authorize a public key and re-encrypt all files for it.

    Accepts SSH public keys in authorized_keys format and age recipients.
    """
    if pubenv:
        raw = os.environ.get(pubenv, '')
    elif pubfile:
        try:
            raw = read_from_file_or_stdin(pubfile)
        except OSError as error:
            raise GitPrivateException(f"failed to load public key from {pubfile!r}: {error}")
    elif key:
        raw = key
    else:
        raise GitPrivateException("no public key specified")

    material = parse_key(sk.age, raw)
    key_id = key_id or material.comment
    if not key_id:
        if material.kind is KeyKind.SSH:
            raise GitPrivateException("key has no comment, and no id specified")
        raise GitPrivateException("cannot add age key without id")

    registry = sk.store.load_keys(load_identity(sk, keyfile))
    updated = registry.add(KeyEntry(
        id=key_id,
        kind=material.kind,
        material=material.material,
        access=(Access.READ_ONLY if readonly else Access.READ_WRITE)))

    try:
        report(rekey.update_keys(sk, registry, updated), Outcome.HIDDEN)
    except GitPrivateException as error:
        raise error.with_context("failed to re-encrypt files after key addition")
    click.echo(f"Added {updated.entries[-1].access.value} key {key_id!r}")


@keys.command(name='remove')
@keyfile_option
@click.option('--id', 'key_id', metavar='ID', help="Id of the key to remove.")
@click.argument('id', required=False)
@click.pass_obj
def keys_remove(
        sk: SecretKeeper,
        keyfile: typing.Optional[str],
        key_id: typing.Optional[str],
        id: typing.Optional[str]):
    """Revoke a key and re-encrypt all files without it."""
    key_id = key_id or id
    if not key_id:
        raise GitPrivateException("specify id of key to remove")

    registry = sk.store.load_keys(load_identity(sk, keyfile))
    updated = registry.remove(key_id)

    try:
        report(rekey.update_keys(sk, registry, updated), Outcome.HIDDEN)
    except GitPrivateException as error:
        raise error.with_context("failed to re-encrypt files after key removal")
    click.echo(f"Removed key {key_id!r}")


@keys.command()
@click.option(
    '-k', '--keyfile',
    type=PathType(dir_okay=False),
    required=True,
    help="File the private key is written to.")
@click.option(
    '--pubfile',
    type=PathType(dir_okay=False),
    default=None,
    help="File the public key is written to.")
@click.option(
    '--passphrase/--no-passphrase',
    default=True,
    help="Protect the private key with a passphrase.")
@click.pass_obj
def generate(
        sk: SecretKeeper,
        keyfile: pathlib.Path,
        pubfile: typing.Optional[pathlib.Path],
        passphrase: bool):
    """Generate a new age key pair."""
    if keyfile.exists():
        raise GitPrivateException(f"will not overwrite existing key file {rel(keyfile)!r}")

    phrase = read_passphrase("Enter passphrase (empty for none)", confirm=True) if passphrase else ''
    generated = protect.export(sk.age, keyfile, phrase)
    if pubfile:
        pubfile.write_text(f"{generated.public}\n")
    click.echo(f"Public key: {generated.public}")
