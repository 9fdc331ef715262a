"""
Passphrase protection for generated keys.

A protected key is the age secret key, minus its 'AGE-SECRET-KEY-' prefix,
encrypted with an age passphrase (scrypt) and written as upper case base-32
text using the bech32 alphabet:

    GIT-PRIVATE-PROTECTED-KEY-1<DATA>

The different prefix tells at a glance that the key file needs a passphrase.
"""

import base64
import datetime
import logging
import pathlib
import typing

import attr
import click

from .age import AGE_SECRET_KEY_PREFIX, Age, Identity
from .passphrase import read_passphrase
from .utils import GitPrivateException, KeyParseError, NeedsPassphrase

log = logging.getLogger(__name__)

PROTECTED_KEY_PREFIX = 'GIT-PRIVATE-PROTECTED-KEY-'

BECH32_CHARSET = 'qpzry9x8gf2tvdw0s3jn54khce6mua7l'
BASE32_CHARSET = 'ABCDEFGHIJKLMNOPQRSTUVWXYZ234567'

TO_BECH32 = str.maketrans(BASE32_CHARSET, BECH32_CHARSET)
FROM_BECH32 = str.maketrans(BECH32_CHARSET, BASE32_CHARSET)

Prompt = typing.Callable[[], str]


def pack(prefix: str, data: bytes) -> str:
    """Encode bytes as '<prefix>1<DATA>' with the bech32 alphabet and no padding."""
    encoded = base64.b32encode(data).decode('ascii').rstrip('=')
    return f"{prefix}1{encoded.translate(TO_BECH32).upper()}"


def unpack(text: str) -> bytes:
    split = text.rfind('1')
    if split < 1 or split + 7 > len(text):
        raise KeyParseError("unexpected prefix data")

    encoded = text[split + 1:].lower()
    if any(c not in BECH32_CHARSET for c in encoded):
        raise KeyParseError("failed to unpack: invalid character")
    encoded = encoded.translate(FROM_BECH32)
    encoded += '=' * (-len(encoded) % 8)
    try:
        return base64.b32decode(encoded)
    except ValueError as error:
        raise KeyParseError(f"failed to unpack: {error}") from error


def is_protected(text: str) -> bool:
    return any(line.strip().startswith(PROTECTED_KEY_PREFIX) for line in text.splitlines())


def protect(age: Age, identity: str, passphrase: str) -> str:
    if not identity.startswith(AGE_SECRET_KEY_PREFIX):
        raise KeyParseError("only age secret keys can be protected")
    secret = identity[len(AGE_SECRET_KEY_PREFIX):].encode('ascii')
    return pack(PROTECTED_KEY_PREFIX, age.encrypt_with_passphrase(secret, passphrase))


def unprotect(age: Age, text: str, passphrase: str) -> Identity:
    for line in text.splitlines():
        line = line.strip()
        if line.startswith(PROTECTED_KEY_PREFIX):
            decrypted = age.decrypt_with_passphrase(unpack(line), passphrase)
            return age.parse_age_identity(AGE_SECRET_KEY_PREFIX + decrypted.decode('ascii'))
    raise KeyParseError("invalid protected key")


def load_identity(age: Age, text: str, prompt: Prompt = read_passphrase) -> Identity:
    """
    Turn private key material into an identity.

    Protected keys are tried first, then SSH private keys and finally native
    age secret keys. The passphrase prompt is only used when a key needs one.
    """
    if is_protected(text):
        return unprotect(age, text, prompt())

    try:
        return age.parse_ssh_identity(text)
    except NeedsPassphrase:
        return age.parse_ssh_identity(text, passphrase=prompt())
    except KeyParseError as error:
        log.debug(f"Not an SSH private key: {error.message}")

    return age.parse_age_identity(text)


@attr.s(frozen=True, kw_only=True)
class GeneratedKey:
    public: str = attr.ib()
    private: str = attr.ib()
    protected: bool = attr.ib()
    created: datetime.datetime = attr.ib(
        factory=lambda: datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0))

    def __str__(self):
        return (
            f"# created: {self.created.isoformat()}\n"
            f"# public key: {self.public}\n"
            f"{self.private}\n")


def generate(age: Age, passphrase: str) -> GeneratedKey:
    identity = age.generate()
    public = str(identity.to_public())
    private = str(identity)

    if not passphrase:
        click.secho(
            "no passphrase given, generated key will be stored in clear text",
            fg='yellow', err=True)
        return GeneratedKey(public=public, private=private, protected=False)

    return GeneratedKey(public=public, private=protect(age, private, passphrase), protected=True)


def export(age: Age, path: pathlib.Path, passphrase: str) -> GeneratedKey:
    if path.exists():
        raise GitPrivateException(f"will not overwrite existing key file {path}")
    generated = generate(age, passphrase)
    log.info(f"Writing generated key to {path}")
    with path.open('x') as f:
        f.write(str(generated))
    path.chmod(0o600)
    return generated
