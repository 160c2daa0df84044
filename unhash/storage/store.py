# unhash/storage/store.py
"""
Content-addressed object store on the local filesystem.

Objects are immutable and written at most once per digest. Promotion from the
temp area is "create-if-absent, then atomic rename" without a lock: two
concurrent uploads of the same bytes may both rename, but the second rename
replaces the file with identical content, so the final state is always one
complete object per digest. Readers only ever see fully renamed files.
"""
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from unhash.storage.ingest import IngestResult
from unhash.storage.paths import digest_to_path, is_valid_digest

logger = logging.getLogger(__name__)


class CommitOutcome(Enum):
    """Result of committing an upload."""
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class ContentStore:
    """Sharded object store rooted at data_dir."""

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)

    def path_for(self, digest: str) -> Path:
        return digest_to_path(self.data_dir, digest)

    def exists(self, digest: str) -> bool:
        return self.path_for(digest).is_file()

    def open_path(self, digest: str) -> Optional[Path]:
        """
        Look up an object by a client-supplied identifier.

        Returns:
            The canonical path if the identifier is a well-formed digest and
            the object exists, otherwise None. Malformed identifiers are
            indistinguishable from missing objects.
        """
        if not is_valid_digest(digest):
            return None
        path = self.path_for(digest)
        if not path.is_file():
            return None
        return path

    def commit(self, result: IngestResult) -> CommitOutcome:
        """
        Promote a finished upload into its canonical location.

        Args:
            result: Output of the ingestion pipeline; its temp file is consumed

        Returns:
            CommitOutcome.CREATED if the object is new, ALREADY_EXISTS if an
            object with this digest was already stored (the temp file is discarded)

        Raises:
            OSError: If the shard directory or rename fails. The temp file is removed.
        """
        target = self.path_for(result.digest)

        if target.exists():
            result.temp_path.unlink(missing_ok=True)
            logger.info(f"Duplicate upload for {result.digest}, discarded {result.size} bytes")
            return CommitOutcome.ALREADY_EXISTS

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(result.temp_path, target)
        except OSError as e:
            logger.error(f"Failed to store object {result.digest}: {e}")
            result.temp_path.unlink(missing_ok=True)
            raise

        logger.info(f"Stored object {result.digest} ({result.size} bytes)")
        return CommitOutcome.CREATED
