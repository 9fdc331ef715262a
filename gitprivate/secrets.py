import enum
import logging
import pathlib
import typing

import attr

from .age import Age, Identity
from .config import Config
from .keys import Access, KeyRegistry
from .manifest import FileManifest, SecureFile, Store
from .status import Status, file_status
from .utils import (
    GitPrivateException,
    NoRecipients,
    NotFound,
    PRIVATE_EXTENSION,
    SyncConflict,
    add_ignore_pattern,
    atomic_write,
    fingerprint,
    is_ignored,
    is_private_path,
    private_path,
    remove_ignore_pattern,
    repo_relative,
)

log = logging.getLogger(__name__)


class Outcome(enum.Enum):
    ADDED = 'added'
    REMOVED = 'removed'
    HIDDEN = 'hidden'
    REVEALED = 'revealed'
    CLEANED = 'cleaned'
    IN_SYNC = 'in sync'
    SKIPPED = 'skipped'


@attr.s(frozen=True, kw_only=True)
class Secret:
    root: pathlib.Path = attr.ib()
    entry: SecureFile = attr.ib()

    def __str__(self):
        return self.entry.path

    @property
    def path(self) -> str:
        return self.entry.path

    @property
    def decrypted(self) -> pathlib.Path:
        return self.root / self.entry.path

    @property
    def encrypted(self) -> pathlib.Path:
        return private_path(self.decrypted)

    def status(self) -> Status:
        return file_status(self.root, self.entry)

    def hide(self, age: Age, recipients: typing.Sequence) -> str:
        """Encrypt the plaintext to its private sibling, returning the new fingerprint."""
        if is_private_path(self.path):
            raise GitPrivateException(f"cannot encrypt secret version of file {self.path!r}")
        if not recipients:
            raise NoRecipients("no keys added, cannot encrypt")
        log.debug(f"Encrypting {self.decrypted} to {self.encrypted}")
        try:
            plaintext = self.decrypted.read_bytes()
            atomic_write(self.encrypted, age.encrypt(plaintext, recipients), mode=0o644)
        except OSError as error:
            raise GitPrivateException(f"failed to hide file: {error.strerror}").with_context(self.path) from error
        except GitPrivateException as error:
            raise error.with_context(self.path)
        return fingerprint(plaintext)

    def reveal(self, age: Age, identity: Identity) -> None:
        log.debug(f"Decrypting {self.encrypted} to {self.decrypted}")
        try:
            plaintext = age.decrypt(self.encrypted.read_bytes(), identity)
            atomic_write(self.decrypted, plaintext)
        except OSError as error:
            raise GitPrivateException(f"failed to reveal file: {error.strerror}").with_context(self.path) from error
        except GitPrivateException as error:
            raise error.with_context(self.path)


Progress = typing.Iterator[typing.Tuple[Secret, Outcome]]


@attr.s(frozen=True)
class SecretKeeper:
    """
    Runs hide, reveal and clean over tracked files, one file at a time.

    Each method is a generator yielding a (secret, outcome) pair as each file
    completes. The first failure stops the run; files already processed keep
    their new state.
    """

    config: Config = attr.ib()
    age: Age = attr.ib(factory=Age)
    store: Store = attr.ib()

    @store.default
    def _store(self) -> Store:
        return Store(self.config, self.age)

    @property
    def root(self) -> pathlib.Path:
        return self.config.root

    def init(self) -> None:
        if self.config.initialized:
            raise GitPrivateException("already initialized")
        log.info(f"Creating state directory {self.config.state_dir}")
        self.config.state_dir.mkdir(parents=True, mode=0o770)
        self.store.store_manifest(FileManifest())
        add_ignore_pattern(self.root, f"!*{PRIVATE_EXTENSION}")
        pattern = self.config.state_dir_pattern()
        if pattern:
            add_ignore_pattern(self.root, pattern)

    def secrets(self, manifest: typing.Optional[FileManifest] = None) -> typing.List[Secret]:
        manifest = manifest if manifest is not None else self.store.load_manifest()
        return [Secret(root=self.root, entry=entry) for entry in manifest]

    def select(self, paths: typing.Sequence[pathlib.Path] = ()) -> typing.List[Secret]:
        """Look up tracked files by path, or return every tracked file."""
        manifest = self.store.load_manifest()
        if not paths:
            return self.secrets(manifest)

        selected = []
        for path in paths:
            relative = repo_relative(self.root, path)
            if is_private_path(relative):
                raise GitPrivateException(f"cannot use secret version of file {relative!r}")
            try:
                selected.append(Secret(root=self.root, entry=manifest[relative]))
            except NotFound as error:
                raise error.with_context(str(path))
        return selected

    def __iter__(self):
        return iter(self.secrets())

    def status(self) -> typing.List[typing.Tuple[Secret, Status]]:
        return [(secret, secret.status()) for secret in self]

    def check_gitignore(self) -> typing.List[Secret]:
        """Return tracked files whose plaintext git would not ignore."""
        log.info("Checking all plaintext files are ignored by git")
        secrets = self.secrets()
        ignored = is_ignored(self.root, *(s.decrypted for s in secrets))
        return [s for s in secrets if s.decrypted.resolve() not in ignored]

    def add(self, paths: typing.Sequence[pathlib.Path]) -> Progress:
        self.config.ensure_initialized()
        if not paths:
            raise GitPrivateException("no files to add")

        relatives = []
        for path in paths:
            if not path.exists():
                raise NotFound(f"no such file: {str(path)!r}")
            if not path.is_file():
                raise GitPrivateException(f"not a regular file: {str(path)!r}")
            relative = repo_relative(self.root, path)
            if is_private_path(relative):
                raise GitPrivateException(f"cannot add secret version of file {relative!r}")
            relatives.append(relative)

        manifest = self.store.load_manifest()
        for relative in relatives:
            if relative in manifest:
                log.info(f"{relative} is already tracked")
                yield Secret(root=self.root, entry=manifest[relative]), Outcome.SKIPPED
                continue
            manifest = manifest.add(relative)
            add_ignore_pattern(self.root, relative)
            self.store.store_manifest(manifest)
            yield Secret(root=self.root, entry=manifest[relative]), Outcome.ADDED

    def remove(self, paths: typing.Sequence[pathlib.Path], force: bool = False) -> Progress:
        if not paths:
            raise GitPrivateException("no files to remove")

        for path in paths:
            relative = repo_relative(self.root, path)
            manifest = self.store.load_manifest()
            if relative not in manifest:
                log.info(f"{relative} is not tracked, nothing to remove")
                continue

            secret = Secret(root=self.root, entry=manifest[relative])
            if not force and secret.status() is Status.HIDDEN_PRIVATE_MISSING:
                raise SyncConflict(
                    f"private version of {relative!r} is missing, "
                    f"use the 'force' flag to remove it anyway")

            remove_ignore_pattern(self.root, relative)
            self.store.store_manifest(manifest.remove(relative))
            if secret.encrypted.exists():
                log.debug(f"Deleting {secret.encrypted}")
                secret.encrypted.unlink()
            yield secret, Outcome.REMOVED

    def hide(
            self,
            secrets: typing.Sequence[Secret],
            registry: KeyRegistry,
            clean: bool = False,
            force: bool = False) -> Progress:
        """
        Encrypt each file to every key in the registry.

        Files already in sync are left alone unless forced. The plaintext is
        only deleted for 'clean' once the ciphertext and fingerprint are both
        stored.
        """
        if not registry.recipients(self.age, Access.READ_WRITE):
            raise NoRecipients("no read-write keys added, cannot encrypt")
        recipients = registry.readers(self.age)

        log.info(f"Hiding {len(secrets)} files for {len(recipients)} recipients")
        for secret in secrets:
            if is_private_path(secret.path):
                raise GitPrivateException(f"cannot encrypt secret version of file {secret.path!r}")

            status = secret.status()
            if status is Status.HIDDEN_NOT_REVEALED or not secret.decrypted.exists():
                raise SyncConflict(f"cannot hide {secret.path!r}, the plaintext is missing")

            if status is Status.HIDDEN_IN_SYNC and not force:
                outcome = Outcome.IN_SYNC
            else:
                new_fingerprint = secret.hide(self.age, recipients)
                manifest = self.store.load_manifest().update(secret.path, new_fingerprint)
                self.store.store_manifest(manifest)
                secret = attr.evolve(secret, entry=manifest[secret.path])
                outcome = Outcome.HIDDEN

            if clean:
                log.debug(f"Deleting {secret.decrypted}")
                secret.decrypted.unlink()
            yield secret, outcome

    def reveal(
            self,
            secrets: typing.Sequence[Secret],
            identity: Identity,
            overwrite: bool = False,
            clean: bool = False) -> Progress:
        log.info(f"Revealing {len(secrets)} files")
        for secret in secrets:
            status = secret.status()
            if status is Status.HIDDEN_IN_SYNC:
                yield secret, Outcome.IN_SYNC
                continue
            if status is Status.HIDDEN_PRIVATE_MISSING:
                raise SyncConflict(f"cannot reveal, private version of {secret.path!r} is missing")
            if status is Status.NOT_HIDDEN:
                raise SyncConflict(f"file {secret.path!r} is not hidden")
            if status is Status.HIDDEN_MODIFIED and not overwrite:
                raise SyncConflict(
                    f"will not overwrite modified file {secret.path!r} without the 'force' flag")

            secret.reveal(self.age, identity)

            if clean:
                log.debug(f"Deleting {secret.encrypted}")
                secret.encrypted.unlink()
            yield secret, Outcome.REVEALED

    def clean(self, force: bool = False) -> Progress:
        """Delete plaintext files, refusing to lose anything not safely hidden."""
        for secret in self:
            if not secret.decrypted.exists():
                continue

            if not force:
                status = secret.status()
                if status is Status.HIDDEN_PRIVATE_MISSING:
                    raise SyncConflict(
                        f"will not remove file {secret.path!r} with missing private file, "
                        f"use the 'force' flag to override")
                if status is Status.HIDDEN_MODIFIED:
                    raise SyncConflict(
                        f"will not remove out of sync file {secret.path!r}, "
                        f"use the 'force' flag to override")
                if status is Status.NOT_HIDDEN:
                    raise SyncConflict(
                        f"will not remove file {secret.path!r} that was never hidden, "
                        f"use the 'force' flag to override")

            log.debug(f"Deleting {secret.decrypted}")
            secret.decrypted.unlink()
            yield secret, Outcome.CLEANED
