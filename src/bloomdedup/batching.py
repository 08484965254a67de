import logging
import numbers
from pathlib import Path
from typing import Iterable, Iterator, NamedTuple

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class FileRecord(NamedTuple):
    """A regular file discovered by the enumerator."""
    path: Path
    size: int


class Batch(NamedTuple):
    """Group of files hashed together by one worker.

    Batches are immutable values and share nothing with each other, so they can be
    handed to worker processes without any locking.
    """
    batch_id: str
    paths: tuple[Path, ...]
    total_bytes: int


def check_max_batch_bytes(max_batch_bytes: int | float) -> None:
    if isinstance(max_batch_bytes, bool) or not isinstance(max_batch_bytes, numbers.Real):
        raise ConfigurationError(f"max_batch_bytes must be a number, got {max_batch_bytes!r}")
    if not max_batch_bytes > 0:
        raise ConfigurationError(f"max_batch_bytes must be > 0, got {max_batch_bytes}")


def generate_batches(records: Iterable[FileRecord], max_batch_bytes: int | float) -> Iterator[Batch]:
    """Lazily group size-ordered records into batches of roughly equal byte size.

    Every batch except possibly the last one holds at least ``max_batch_bytes``
    bytes. Feeding records in ascending size order keeps batches balanced: many
    small files end up together, while large files get batches of their own.

    Only the batch being filled is held in memory. Empty batches are never
    produced.

    Raises:
        ConfigurationError: ``max_batch_bytes`` is not a positive number. Raised
            immediately, not on first iteration.
    """
    check_max_batch_bytes(max_batch_bytes)

    def generator() -> Iterator[Batch]:
        index = 0
        cumulative_bytes = 0
        paths: list[Path] = []

        for record in records:
            paths.append(record.path)
            cumulative_bytes += record.size
            if cumulative_bytes >= max_batch_bytes:
                yield _seal(index, paths, cumulative_bytes)
                index += 1
                paths = []
                cumulative_bytes = 0

        if paths:
            yield _seal(index, paths, cumulative_bytes)

    return generator()


def _seal(index: int, paths: list[Path], cumulative_bytes: int) -> Batch:
    batch = Batch(f"B{index}", tuple(paths), cumulative_bytes)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"Batch {batch.batch_id} size: {cumulative_bytes} ({len(paths)} files)")
        for path in paths:
            logger.debug(f"  {path}")
    return batch
