"""
Re-encrypt every secret after the set of keys changes.

Re-encryption only runs when every tracked file is hidden and in sync.
Otherwise a modified plaintext would be baked into the new ciphertext, or an
unrevealed file would stay encrypted to the old keys. Either way the operator
has to reconcile with 'reveal' or 'hide' first.
"""

import logging
import typing

from .keys import KeyRegistry
from .secrets import Progress, Secret, SecretKeeper
from .status import Status
from .utils import ReEncryptionBlocked

log = logging.getLogger(__name__)


def out_of_sync(keeper: SecretKeeper) -> typing.List[typing.Tuple[Secret, Status]]:
    return [(s, status) for s, status in keeper.status() if status is not Status.HIDDEN_IN_SYNC]


def check(keeper: SecretKeeper) -> None:
    pending = out_of_sync(keeper)
    if pending:
        details = ', '.join(f"{secret.path} [{status}]" for secret, status in pending)
        raise ReEncryptionBlocked(
            f"cannot re-encrypt, files are not in sync: {details}; "
            f"use 'reveal' or 'hide' to reconcile them first")


def rehide(keeper: SecretKeeper, registry: KeyRegistry) -> Progress:
    """Hide every tracked file again for the recipients in the registry."""
    check(keeper)
    secrets = keeper.secrets()
    log.info(f"Re-encrypting {len(secrets)} files")
    yield from keeper.hide(secrets, registry, clean=False, force=True)


def update_keys(keeper: SecretKeeper, current: KeyRegistry, updated: KeyRegistry) -> Progress:
    """
    Store a changed key list and re-encrypt every secret for it.

    The sync check runs before anything is written, so a refused change
    leaves both the key list and every ciphertext untouched. While the
    current list has no read-write keys nothing can have been hidden, so the
    first key is stored without re-encrypting.
    """
    if not current.writers(keeper.age):
        log.info("First read-write key, nothing to re-encrypt")
        keeper.store.store_keys(updated)
        return

    check(keeper)
    keeper.store.store_keys(updated)
    yield from rehide(keeper, updated)
