import os

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from gitprivate import protect
from gitprivate.utils import DecryptionFailed, GitPrivateException, KeyParseError


def test_pack_unpack():
    data = os.urandom(113)
    packed = protect.pack('HRP', data)
    assert packed.startswith('HRP1')
    assert packed == packed.upper()
    assert protect.unpack(packed) == data


@pytest.mark.parametrize('text', ['HRP1', 'NOSEPARATOR', 'HRP1BBBBBBBBBB'])
def test_unpack_rejects_malformed_text(text):
    with pytest.raises(KeyParseError):
        protect.unpack(text)


def test_generated_key_with_passphrase(age, tmp_path):
    keyfile = tmp_path / 'generated.key'
    generated = protect.export(age, keyfile, 'correct horse')
    text = keyfile.read_text()

    assert generated.protected
    assert f"# public key: {generated.public}" in text
    assert protect.PROTECTED_KEY_PREFIX in text
    assert 'AGE-SECRET-KEY-' not in text

    identity = protect.load_identity(age, text, prompt=lambda: 'correct horse')
    assert str(identity.to_public()) == generated.public


def test_generated_key_with_wrong_passphrase(age, tmp_path):
    keyfile = tmp_path / 'generated.key'
    protect.export(age, keyfile, 'correct horse')
    before = keyfile.read_bytes()

    with pytest.raises(DecryptionFailed):
        protect.load_identity(age, keyfile.read_text(), prompt=lambda: 'battery staple')
    assert keyfile.read_bytes() == before


def test_generated_key_without_passphrase(age, tmp_path, capsys):
    keyfile = tmp_path / 'generated.key'
    generated = protect.export(age, keyfile, '')

    assert not generated.protected
    assert 'clear text' in capsys.readouterr().err
    identity = protect.load_identity(age, keyfile.read_text(), prompt=pytest.fail)
    assert str(identity.to_public()) == generated.public


def test_export_refuses_to_overwrite(age, tmp_path):
    keyfile = tmp_path / 'generated.key'
    keyfile.write_text('existing')
    with pytest.raises(GitPrivateException):
        protect.export(age, keyfile, '')
    assert keyfile.read_text() == 'existing'


def test_load_ssh_identity(age):
    private = ed25519.Ed25519PrivateKey.generate()
    text = private.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.OpenSSH,
        encryption_algorithm=serialization.NoEncryption()).decode('utf-8')
    public = private.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH).decode('utf-8')

    identity = protect.load_identity(age, text, prompt=pytest.fail)
    ciphertext = age.encrypt(b'secret', [age.parse_ssh_recipient(public)])
    assert age.decrypt(ciphertext, identity) == b'secret'


def test_load_age_identity(age, one):
    identity = protect.load_identity(age, one.keyfile.read_text(), prompt=pytest.fail)
    assert str(identity.to_public()) == one.public


def test_load_invalid_identity(age):
    with pytest.raises(KeyParseError):
        protect.load_identity(age, 'not a key', prompt=pytest.fail)
