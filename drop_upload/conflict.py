"""
Name-collision handling for Drop Uploader.

A conditional put that is refused because the key already exists is not
an error by itself: a previous run may have uploaded the file and been
interrupted before deleting it.  The resolver compares the remote
object's checksum with a fresh digest of the local file.  Equal content
means the upload already happened; anything else, including failing to
find out, is a mismatch and the local file is kept.
"""

import enum
import hashlib
import logging
from pathlib import Path

from drop_upload.errors import FatalRemoteError, RemoteStoreError
from drop_upload.remote import RemoteStore

logger = logging.getLogger(__name__)

_HASH_CHUNK = 256 * 1024  # 256 KiB read chunks for hashing


def file_digest(filepath: str | Path, algorithm: str = "sha256") -> str:
    """Return the hex digest of *filepath* using the hashlib *algorithm*."""
    h = hashlib.new(algorithm)
    with open(filepath, "rb") as fh:
        while chunk := fh.read(_HASH_CHUNK):
            h.update(chunk)
    return h.hexdigest()


class ConflictOutcome(enum.Enum):
    MATCH = "match"
    MISMATCH = "mismatch"


class ConflictResolver:
    """Decides whether an existing remote object equals a local file."""

    def __init__(self, store: RemoteStore):
        self._store = store

    def resolve(self, local_path: str, remote_name: str) -> ConflictOutcome:
        """
        Compare ``remote_name`` with ``local_path`` by content checksum.

        Never raises for per-file problems; those resolve to MISMATCH.
        FatalRemoteError propagates.
        """
        try:
            info = self._store.info(remote_name)
        except FatalRemoteError:
            raise
        except RemoteStoreError as exc:
            logger.error("info error (%s): %s", remote_name, exc)
            return ConflictOutcome.MISMATCH

        try:
            local = file_digest(local_path, info.algorithm)
        except (OSError, ValueError) as exc:
            # ValueError: hashlib does not know the remote's algorithm
            logger.error("checksum error (%s): %s", local_path, exc)
            return ConflictOutcome.MISMATCH

        if local != info.checksum.lower():
            logger.warning(
                "mismatched local and remote: %s (local %s=%s, remote=%s)",
                local_path, info.algorithm, local[:12], info.checksum[:12],
            )
            return ConflictOutcome.MISMATCH

        logger.info("checksum match: %s", local_path)
        return ConflictOutcome.MATCH
