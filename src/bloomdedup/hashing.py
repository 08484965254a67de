"""Hash worker: streaming content digests for a batch of files.

The functions here run inside pool worker processes. They take and return plain
picklable values and share no state.
"""
import hashlib
import logging
from enum import StrEnum
from pathlib import Path
from typing import NamedTuple

from .batching import Batch
from .exceptions import ConfigurationError, FileAccessError

logger = logging.getLogger(__name__)


class ErrorPolicy(StrEnum):
    """What a worker does when a file vanishes or cannot be read."""
    ABORT_BATCH = 'abort-batch'
    SKIP_FILE = 'skip'


class DigestEntry(NamedTuple):
    path: Path
    digest: bytes


class SkippedFile(NamedTuple):
    path: Path
    reason: str


class BatchResult(NamedTuple):
    """Digests of one batch. Produced once per batch and never modified."""
    batch_id: str
    entries: tuple[DigestEntry, ...]
    skipped: tuple[SkippedFile, ...] = ()


def digest_size(algorithm: str) -> int:
    """Return the fixed output width in bytes of a hashlib algorithm.

    Raises:
        ConfigurationError: unknown algorithm, or one without a fixed width (SHAKE)
    """
    try:
        hasher = hashlib.new(algorithm)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Unknown hash algorithm: {algorithm!r}") from e

    if hasher.name.startswith('shake_') or hasher.digest_size <= 0:
        raise ConfigurationError(f"Hash algorithm {algorithm!r} has no fixed output width")

    return hasher.digest_size


def compute_digest(path: Path, algorithm: str) -> bytes:
    """Digest a file through a fixed-size buffer.

    Raises:
        FileAccessError: the file cannot be opened or a read fails
    """
    try:
        with open(path, "rb") as f:
            # noinspection PyTypeChecker
            return hashlib.file_digest(f, algorithm).digest()
    except OSError as e:
        raise FileAccessError(Path(path), e.strerror or str(e)) from e


def hash_batch(batch: Batch, algorithm: str, policy: ErrorPolicy = ErrorPolicy.ABORT_BATCH) -> BatchResult:
    """Digest every file of a batch.

    Under ``ErrorPolicy.ABORT_BATCH`` the first unreadable file ends the batch
    with ``FileAccessError``. Under ``ErrorPolicy.SKIP_FILE`` it is recorded in
    ``BatchResult.skipped`` and the rest of the batch is still hashed.
    """
    policy = ErrorPolicy(policy)
    logger.info(f"Starting processing batch {batch.batch_id}")

    entries: list[DigestEntry] = []
    skipped: list[SkippedFile] = []
    for path in batch.paths:
        try:
            entries.append(DigestEntry(path, compute_digest(path, algorithm)))
        except FileAccessError as e:
            if policy is ErrorPolicy.ABORT_BATCH:
                raise
            logger.warning(f"Skipping {path}: {e.reason}")
            skipped.append(SkippedFile(path, e.reason))

    logger.info(f"Finishing processing batch {batch.batch_id}")
    return BatchResult(batch.batch_id, tuple(entries), tuple(skipped))
