# unhash/storage/ingest.py
"""
Streaming ingestion of upload bodies.

Each chunk of the body is hashed and written to a private temp file before
the next chunk is pulled, so memory use is one chunk regardless of object
size. The temp file lives under the data root so the store can promote it
with an atomic rename.
"""
import hashlib
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterable, Iterable, Optional, Union

from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

TEMP_DIR_NAME = ".tmp"


class IngestionError(Exception):
    """The upload body could not be read or persisted completely."""


class ObjectTooLarge(IngestionError):
    """The upload body exceeded the size it was paid for."""

    def __init__(self, limit: int):
        super().__init__(f"Upload exceeds maximum size of {limit} bytes")
        self.limit = limit


@dataclass(frozen=True)
class IngestResult:
    """A fully received upload, not yet committed to the store."""
    digest: str
    temp_path: Path
    size: int


def temp_dir_for(data_dir: Union[str, Path]) -> Path:
    return Path(data_dir) / TEMP_DIR_NAME


class PendingUpload:
    """
    Temp file plus running SHA-256 for a single in-flight upload.

    Owned by the request that created it; either finished and handed to the
    store or discarded.
    """

    def __init__(self, data_dir: Union[str, Path], max_size: Optional[int] = None):
        temp_dir = temp_dir_for(data_dir)
        temp_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="upload-", dir=temp_dir)
        self.temp_path = Path(name)
        self.size = 0
        self.max_size = max_size
        self._file = os.fdopen(fd, "wb")
        self._hasher = hashlib.sha256()

    def feed(self, chunk: bytes) -> None:
        """Hash and persist one chunk."""
        if not chunk:
            return
        self.size += len(chunk)
        if self.max_size is not None and self.size > self.max_size:
            raise ObjectTooLarge(self.max_size)
        self._hasher.update(chunk)
        self._file.write(chunk)

    def finish(self, expected_size: Optional[int] = None) -> IngestResult:
        """
        Close the temp file and return the digest.

        Raises:
            IngestionError: if the body length does not match expected_size
        """
        if expected_size is not None and self.size != expected_size:
            raise IngestionError(
                f"Body length {self.size} does not match declared length {expected_size}"
            )
        self._file.flush()
        os.fsync(self._file.fileno())
        self._file.close()
        return IngestResult(
            digest=self._hasher.hexdigest(),
            temp_path=self.temp_path,
            size=self.size,
        )

    def discard(self) -> None:
        """Drop the partial upload. Safe to call more than once."""
        if not self._file.closed:
            self._file.close()
        self.temp_path.unlink(missing_ok=True)

    def __enter__(self) -> "PendingUpload":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        """
        Discard the temp file if the body failed.

        Stream and write errors are re-raised as IngestionError; cancellation
        and other BaseExceptions pass through unchanged.
        """
        if exc_type is None:
            return False
        self.discard()
        if issubclass(exc_type, Exception) and not issubclass(exc_type, IngestionError):
            logger.warning(f"Ingestion aborted after {self.size} bytes: {exc!r}")
            raise IngestionError(f"Ingestion aborted: {exc}") from exc
        return False


def ingest(
    chunks: Iterable[bytes],
    data_dir: Union[str, Path],
    expected_size: Optional[int] = None,
    max_size: Optional[int] = None,
) -> IngestResult:
    """
    Consume a chunk iterable, hashing and writing it to a temp file.

    Args:
        chunks: The object bytes, in order
        data_dir: Data root; the temp file is created below it
        expected_size: Declared length; a mismatch is treated as a truncated body
        max_size: Upper bound on accepted bytes

    Returns:
        IngestResult with the hex digest and the temp file location

    Raises:
        IngestionError: If the stream fails or is truncated. The temp file is removed.
        OSError: If the temp file cannot be created
    """
    with PendingUpload(data_dir, max_size=max_size) as upload:
        for chunk in chunks:
            upload.feed(chunk)
        return upload.finish(expected_size)


async def ingest_stream(
    chunks: AsyncIterable[bytes],
    data_dir: Union[str, Path],
    expected_size: Optional[int] = None,
    max_size: Optional[int] = None,
) -> IngestResult:
    """
    Async variant of ingest() for request bodies.

    Chunk writes run in the thread pool, so a slow disk blocks only this
    request. The temp file is created before the first suspension point, so
    a cancelled task always owns a file it can discard. Thread pool calls are
    not abandoned on cancellation; discard never races a running write.
    """
    with PendingUpload(data_dir, max_size=max_size) as upload:
        async for chunk in chunks:
            await run_in_threadpool(upload.feed, chunk)
        return await run_in_threadpool(upload.finish, expected_size)
