import enum
import logging
import pathlib

from .manifest import SecureFile
from .utils import file_fingerprint, private_path

log = logging.getLogger(__name__)


class Status(enum.Enum):
    NOT_HIDDEN = 'not hidden'
    HIDDEN_IN_SYNC = 'hidden, in sync'
    HIDDEN_MODIFIED = 'hidden, modified'
    HIDDEN_NOT_REVEALED = 'hidden, not revealed'
    HIDDEN_PRIVATE_MISSING = 'WARNING: private file missing!'

    def __str__(self):
        return self.value


def file_status(root: pathlib.Path, file: SecureFile) -> Status:
    """
    Compare a tracked file with its plaintext and encrypted copies.

    Checks for the encrypted sibling, then the plaintext, and only hashes the
    plaintext when both exist.
    """
    if not file.hidden:
        return Status.NOT_HIDDEN

    plaintext = root / file.path
    if not private_path(plaintext).exists():
        return Status.HIDDEN_PRIVATE_MISSING
    if not plaintext.exists():
        return Status.HIDDEN_NOT_REVEALED
    if file_fingerprint(plaintext) == file.fingerprint:
        return Status.HIDDEN_IN_SYNC
    return Status.HIDDEN_MODIFIED
