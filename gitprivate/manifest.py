"""
On-disk state: the list of tracked files and the encrypted key list.

Both documents are read whole, changed in memory and written back whole.
"""

import json
import logging
import pathlib
import typing

import attr

from .age import Age, Identity
from .config import Config
from .keys import KeyRegistry
from .utils import DecryptionFailed, NoRecipients, NotFound, atomic_write

log = logging.getLogger(__name__)

FORMAT_VERSION = 1


@attr.s(frozen=True, kw_only=True)
class SecureFile:
    path: str = attr.ib()
    fingerprint: str = attr.ib(default='')

    @property
    def hidden(self) -> bool:
        return bool(self.fingerprint)

    def to_dict(self) -> typing.Dict[str, str]:
        return {'path': self.path, 'fingerprint': self.fingerprint}

    @classmethod
    def from_dict(cls, data: typing.Mapping[str, str]) -> 'SecureFile':
        return cls(path=data['path'], fingerprint=data.get('fingerprint') or '')


@attr.s(frozen=True)
class FileManifest:
    entries: typing.Tuple[SecureFile, ...] = attr.ib(factory=tuple, converter=tuple)
    version: int = attr.ib(default=FORMAT_VERSION)

    def __iter__(self) -> typing.Iterator[SecureFile]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, path: str) -> bool:
        return any(entry.path == path for entry in self.entries)

    def __getitem__(self, path: str) -> SecureFile:
        for entry in self.entries:
            if entry.path == path:
                return entry
        raise NotFound(f"file {path!r} is not tracked")

    def add(self, path: str) -> 'FileManifest':
        if path in self:
            return self
        return attr.evolve(self, entries=(*self.entries, SecureFile(path=path)))

    def remove(self, path: str) -> 'FileManifest':
        return attr.evolve(self, entries=tuple(e for e in self.entries if e.path != path))

    def update(self, path: str, fingerprint: str) -> 'FileManifest':
        if path not in self:
            raise NotFound(f"file {path!r} not in file list")
        return attr.evolve(self, entries=tuple(
            attr.evolve(e, fingerprint=fingerprint) if e.path == path else e
            for e in self.entries))

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        return {
            'version': self.version,
            'entries': [entry.to_dict() for entry in self.entries],
        }

    @classmethod
    def from_dict(cls, data: typing.Mapping[str, typing.Any]) -> 'FileManifest':
        return cls(
            entries=[SecureFile.from_dict(entry) for entry in data.get('entries') or ()],
            version=data.get('version', FORMAT_VERSION))


@attr.s(frozen=True)
class Store:
    """The only writer of the manifest and key list documents."""

    config: Config = attr.ib()
    age: Age = attr.ib(factory=Age)

    def load_manifest(self) -> FileManifest:
        self.config.ensure_initialized()
        path = self.config.paths_file
        if not path.exists():
            return FileManifest()
        log.debug(f"Loading file list from {path}")
        return FileManifest.from_dict(json.loads(path.read_text()))

    def store_manifest(self, manifest: FileManifest) -> None:
        self.config.ensure_initialized()
        manifest = attr.evolve(manifest, version=FORMAT_VERSION)
        log.debug(f"Storing {len(manifest)} files to {self.config.paths_file}")
        self.write(self.config.paths_file, json.dumps(manifest.to_dict(), indent=2).encode('utf-8'))

    def load_keys(self, identity: Identity) -> KeyRegistry:
        """
        Decrypt the key list with the given identity.

        A missing key list is an empty registry, which lets the first key be
        added by anyone holding the repository.
        """
        self.config.ensure_initialized()
        path = self.config.keys_file
        if not path.exists():
            log.info("No key list yet, starting with an empty one")
            return KeyRegistry()
        log.debug(f"Loading key list from {path}")
        try:
            decrypted = self.age.decrypt(path.read_bytes(), identity)
        except DecryptionFailed as error:
            raise error.with_context("failed to load key list")
        return KeyRegistry.from_dict(json.loads(decrypted))

    def store_keys(self, registry: KeyRegistry) -> None:
        """Encrypt the key list to its own read-write keys."""
        self.config.ensure_initialized()
        recipients = registry.writers(self.age)
        if not recipients:
            raise NoRecipients("the key list needs at least one read-write key")
        registry = attr.evolve(registry, version=FORMAT_VERSION)
        data = json.dumps(registry.to_dict()).encode('utf-8')
        log.debug(f"Storing {len(registry)} keys to {self.config.keys_file}")
        self.write(self.config.keys_file, self.age.encrypt(data, recipients))

    @staticmethod
    def write(path: pathlib.Path, data: bytes) -> None:
        atomic_write(path, data)
