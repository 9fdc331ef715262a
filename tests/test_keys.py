import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from gitprivate.keys import Access, KeyEntry, KeyKind, KeyRegistry, parse_key
from gitprivate.utils import DecryptionFailed, DuplicateId, KeyParseError, NotFound


@pytest.fixture()
def ssh_public_key() -> str:
    key = ed25519.Ed25519PrivateKey.generate().public_key()
    return key.public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH).decode('utf-8')


def test_parse_ssh_key(age, ssh_public_key):
    material = parse_key(age, f"{ssh_public_key} alice@example.invalid\n")
    assert material.kind is KeyKind.SSH
    assert material.material == ssh_public_key
    assert material.comment == 'alice@example.invalid'


def test_parse_ssh_key_without_comment(age, ssh_public_key):
    material = parse_key(age, ssh_public_key)
    assert material.kind is KeyKind.SSH
    assert material.comment == ''


def test_parse_age_key(age, one):
    material = parse_key(age, f"# comment\n{one.public}\n")
    assert material.kind is KeyKind.AGE
    assert material.material == one.public


def test_parse_rejects_multiple_keys(age, one, another):
    with pytest.raises(KeyParseError, match="one key at a time"):
        parse_key(age, f"{one.public}\n{another.public}\n")


@pytest.mark.parametrize('raw', ['', 'not a key', 'ssh-ed25519 AAAAnotbase64', 'age1invalid'])
def test_parse_rejects_garbage(age, raw):
    with pytest.raises(KeyParseError):
        parse_key(age, raw)


def test_registry_add_duplicate(one):
    registry = KeyRegistry().add(one.entry())
    with pytest.raises(DuplicateId):
        registry.add(one.entry(Access.READ_ONLY))


def test_registry_remove(one, another):
    registry = KeyRegistry().add(one.entry()).add(another.entry())
    updated = registry.remove('one')
    assert [entry.id for entry in updated] == ['another']
    assert len(registry) == 2


def test_registry_remove_missing(one):
    with pytest.raises(NotFound):
        KeyRegistry().add(one.entry()).remove('nobody')


@pytest.mark.parametrize('access', [Access.READ_WRITE, Access.READ_ONLY, None, 'read-only', 'anything'])
def test_write_recipients_exclude_read_only_keys(age, one, another, access):
    registry = KeyRegistry().add(one.entry()).add(another.entry(Access.READ_ONLY))
    recipients = registry.recipients(age, access)
    assert len(recipients) == 1

    ciphertext = age.encrypt(b'secret', recipients)
    assert age.decrypt(ciphertext, one.identity) == b'secret'
    with pytest.raises(DecryptionFailed):
        age.decrypt(ciphertext, another.identity)


def test_read_recipients_include_read_only_keys(age, one, another):
    registry = KeyRegistry().add(one.entry()).add(another.entry(Access.READ_ONLY))
    assert len(registry.readers(age)) == 2
    assert len(registry.writers(age)) == 1


def test_ssh_entry_recipient(age, ssh_public_key):
    entry = KeyEntry(id='alice', kind=KeyKind.SSH, material=ssh_public_key)
    assert len(KeyRegistry().add(entry).writers(age)) == 1


def test_registry_document(one, another):
    registry = KeyRegistry().add(one.entry()).add(another.entry(Access.READ_ONLY))
    document = registry.to_dict()
    assert document['version'] == 1
    assert document['entries'][1] == {
        'id': 'another',
        'kind': 'age',
        'material': another.public,
        'access': 'read-only',
    }
    assert KeyRegistry.from_dict(document) == registry


def test_entry_defaults_to_read_write(one):
    entry = KeyEntry.from_dict({'id': 'one', 'kind': 'age', 'material': one.public})
    assert entry.access is Access.READ_WRITE
    assert entry.writable
