"""
Thin wrapper around the age encryption format.

All asymmetric and passphrase encryption is delegated to pyrage. SSH keys
are read with the cryptography package, which also removes the passphrase
protection of encrypted SSH private keys before they are handed to pyrage.
"""

import logging
import typing

import attr
import pyrage
from cryptography.hazmat.primitives import serialization

from .utils import (
    DecryptionFailed, GitPrivateException, KeyParseError, NeedsPassphrase, NoRecipients)

log = logging.getLogger(__name__)

Recipient = typing.Union[pyrage.x25519.Recipient, pyrage.ssh.Recipient]
Identity = typing.Union[pyrage.x25519.Identity, pyrage.ssh.Identity]

AGE_SECRET_KEY_PREFIX = 'AGE-SECRET-KEY-'


@attr.s(frozen=True)
class Age:
    def encrypt(self, plaintext: bytes, recipients: typing.Sequence[Recipient]) -> bytes:
        if not recipients:
            raise NoRecipients("no keys added, cannot encrypt")
        log.debug(f"Encrypting {len(plaintext)} bytes to {len(recipients)} recipients")
        try:
            return pyrage.encrypt(plaintext, list(recipients))
        except pyrage.EncryptError as error:
            raise GitPrivateException(f"encryption failed: {error}") from error

    def decrypt(self, ciphertext: bytes, identity: Identity) -> bytes:
        log.debug(f"Decrypting {len(ciphertext)} bytes")
        try:
            return pyrage.decrypt(ciphertext, [identity])
        except pyrage.DecryptError as error:
            log.debug(f"Decryption error: {error}")
            raise DecryptionFailed("decryption failed, is this key authorized?") from error

    def encrypt_with_passphrase(self, plaintext: bytes, passphrase: str) -> bytes:
        return pyrage.passphrase.encrypt(plaintext, passphrase)

    def decrypt_with_passphrase(self, ciphertext: bytes, passphrase: str) -> bytes:
        try:
            return pyrage.passphrase.decrypt(ciphertext, passphrase)
        except pyrage.DecryptError as error:
            log.debug(f"Passphrase decryption error: {error}")
            raise DecryptionFailed("failed to load key, wrong passphrase?") from error

    def generate(self) -> pyrage.x25519.Identity:
        return pyrage.x25519.Identity.generate()

    def parse_age_recipient(self, text: str) -> pyrage.x25519.Recipient:
        try:
            return pyrage.x25519.Recipient.from_str(text.strip())
        except (pyrage.RecipientError, ValueError) as error:
            raise KeyParseError("invalid key format") from error

    def parse_ssh_recipient(self, text: str) -> pyrage.ssh.Recipient:
        try:
            return pyrage.ssh.Recipient.from_str(text.strip())
        except (pyrage.RecipientError, ValueError) as error:
            raise KeyParseError("invalid SSH key") from error

    def parse_age_identity(self, text: str) -> pyrage.x25519.Identity:
        lines = [line.strip() for line in text.splitlines()]
        keys = [line for line in lines if line.startswith(AGE_SECRET_KEY_PREFIX)]
        if len(keys) != 1:
            raise KeyParseError("invalid key")
        try:
            return pyrage.x25519.Identity.from_str(keys[0])
        except (pyrage.IdentityError, ValueError) as error:
            raise KeyParseError("invalid key") from error

    def parse_ssh_identity(
            self,
            text: str,
            passphrase: typing.Optional[str] = None) -> pyrage.ssh.Identity:
        """
        Parse an OpenSSH or PEM private key.

        Raises NeedsPassphrase when the key is encrypted and no passphrase
        was given.
        """
        data = text.encode('utf-8')
        password = passphrase.encode('utf-8') if passphrase is not None else None
        if b'BEGIN OPENSSH PRIVATE KEY' in data:
            loader = serialization.load_ssh_private_key
        elif b'PRIVATE KEY-----' in data:
            loader = serialization.load_pem_private_key  # type: ignore
        else:
            raise KeyParseError("not an SSH private key")

        try:
            key = loader(data, password=password)
        except TypeError as error:
            if password is None:
                raise NeedsPassphrase("key is protected by a passphrase") from error
            raise KeyParseError("invalid SSH key") from error
        except ValueError as error:
            log.debug(f"SSH key error: {error}")
            if password is not None:
                raise DecryptionFailed("failed to load key, wrong passphrase?") from error
            raise KeyParseError("invalid SSH key") from error

        try:
            unprotected = key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.OpenSSH,
                encryption_algorithm=serialization.NoEncryption())
        except ValueError as error:
            raise KeyParseError(f"unsupported SSH key type: {type(key).__name__}") from error

        try:
            return pyrage.ssh.Identity.from_buffer(unprotected)
        except (pyrage.IdentityError, ValueError) as error:
            raise KeyParseError(f"unsupported SSH key type: {type(key).__name__}") from error
