"""
Authorized keys and their access levels.

A key is either a native age recipient ('age1...') or an SSH public key in
authorized_keys format. Read-write keys can change the key list and hide
files; read-only keys can only reveal.
"""

import enum
import logging
import typing

import attr
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from .age import Age, Recipient
from .utils import DuplicateId, KeyParseError, NotFound

log = logging.getLogger(__name__)


class KeyKind(enum.Enum):
    SSH = 'ssh'
    AGE = 'age'


class Access(enum.Enum):
    READ_WRITE = 'read-write'
    READ_ONLY = 'read-only'


@attr.s(frozen=True, kw_only=True)
class KeyMaterial:
    kind: KeyKind = attr.ib()
    material: str = attr.ib()
    comment: str = attr.ib(default='')


@attr.s(frozen=True, kw_only=True)
class KeyEntry:
    id: str = attr.ib()
    kind: KeyKind = attr.ib(converter=KeyKind)
    material: str = attr.ib()
    access: Access = attr.ib(default=Access.READ_WRITE, converter=Access)

    @property
    def writable(self) -> bool:
        return self.access is Access.READ_WRITE

    def recipient(self, age: Age) -> Recipient:
        return RECIPIENT_PARSERS[self.kind](age, self.material)

    def to_dict(self) -> typing.Dict[str, str]:
        return {
            'id': self.id,
            'kind': self.kind.value,
            'material': self.material,
            'access': self.access.value,
        }

    @classmethod
    def from_dict(cls, data: typing.Mapping[str, str]) -> 'KeyEntry':
        return cls(
            id=data['id'],
            kind=data['kind'],
            material=data['material'],
            access=data.get('access', Access.READ_WRITE.value))


RECIPIENT_PARSERS: typing.Dict[KeyKind, typing.Callable[[Age, str], Recipient]] = {
    KeyKind.SSH: Age.parse_ssh_recipient,
    KeyKind.AGE: Age.parse_age_recipient,
}


def parse_ssh_key(age: Age, line: str) -> KeyMaterial:
    """Parse a single authorized_keys line, normalising away the comment."""
    parts = line.split(None, 2)
    if len(parts) < 2:
        raise KeyParseError("not an SSH public key")
    try:
        key = serialization.load_ssh_public_key(' '.join(parts[:2]).encode('utf-8'))
    except (ValueError, UnsupportedAlgorithm) as error:
        raise KeyParseError("not an SSH public key") from error

    material = key.public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH).decode('utf-8')
    age.parse_ssh_recipient(material)
    comment = parts[2].strip() if len(parts) > 2 else ''
    return KeyMaterial(kind=KeyKind.SSH, material=material, comment=comment)


def parse_age_key(age: Age, line: str) -> KeyMaterial:
    age.parse_age_recipient(line)
    return KeyMaterial(kind=KeyKind.AGE, material=line.strip())


KEY_PARSERS: typing.Sequence[typing.Callable[[Age, str], KeyMaterial]] = (
    parse_ssh_key,
    parse_age_key,
)


def parse_key(age: Age, raw: str) -> KeyMaterial:
    """
    Parse exactly one public key.

    SSH authorized_keys syntax is tried before the age recipient syntax.
    Blobs holding more than one key are rejected.
    """
    lines = [line.strip() for line in raw.splitlines()]
    lines = [line for line in lines if line and not line.startswith('#')]
    if not lines:
        raise KeyParseError("no public key specified")
    if len(lines) > 1:
        raise KeyParseError("multiple keys found, add one key at a time")

    for parser in KEY_PARSERS:
        try:
            return parser(age, lines[0])
        except KeyParseError as error:
            log.debug(f"{parser.__name__} rejected key: {error.message}")
    raise KeyParseError("invalid key format")


@attr.s(frozen=True)
class KeyRegistry:
    entries: typing.Tuple[KeyEntry, ...] = attr.ib(factory=tuple, converter=tuple)
    version: int = attr.ib(default=1)

    def __iter__(self) -> typing.Iterator[KeyEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, id: str) -> bool:
        return any(entry.id == id for entry in self.entries)

    def add(self, entry: KeyEntry) -> 'KeyRegistry':
        if entry.id in self:
            raise DuplicateId(f"key with id {entry.id!r} already exists")
        log.info(f"Adding {entry.access.value} key {entry.id!r}")
        return attr.evolve(self, entries=(*self.entries, entry))

    def remove(self, id: str) -> 'KeyRegistry':
        if id not in self:
            raise NotFound(f"key {id!r} not found")
        log.info(f"Removing key {id!r}")
        return attr.evolve(self, entries=tuple(e for e in self.entries if e.id != id))

    def writers(self, age: Age) -> typing.List[Recipient]:
        """Recipients allowed to produce ciphertext and to change the key list."""
        return [entry.recipient(age) for entry in self.entries if entry.writable]

    def readers(self, age: Age) -> typing.List[Recipient]:
        """Recipients able to reveal secret files, read-only keys included."""
        return [entry.recipient(age) for entry in self.entries]

    def recipients(self, age: Age, access: typing.Any = Access.READ_WRITE) -> typing.List[Recipient]:
        """
        Recipients for producing new ciphertext.

        Always the read-write keys, whatever access filter is passed. Use
        readers() for the set allowed to reveal.
        """
        return self.writers(age)

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        return {
            'version': self.version,
            'entries': [entry.to_dict() for entry in self.entries],
        }

    @classmethod
    def from_dict(cls, data: typing.Mapping[str, typing.Any]) -> 'KeyRegistry':
        return cls(
            entries=[KeyEntry.from_dict(entry) for entry in data.get('entries') or ()],
            version=data.get('version', 1))
