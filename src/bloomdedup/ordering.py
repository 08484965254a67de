"""Size-ordered buffers of file records.

Batching wants files in ascending size order. Confirmation needs every file of a
given size. Both backends provide both views:

- ``MemorySizeOrdering`` keeps records in a dict keyed by size.
- ``LevelDBSizeOrdering`` spills records into a scratch LevelDB database, whose
  keys sort by size. The database lives in a temporary directory that is removed
  on close, so nothing persists across runs.
"""
import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from enum import StrEnum
from pathlib import Path
from typing import Iterable, Iterator

import msgpack
import plyvel

from .batching import FileRecord

logger = logging.getLogger(__name__)


class OrderingBackend(StrEnum):
    MEMORY = 'memory'
    LEVELDB = 'leveldb'


class SizeOrdering(ABC):
    """Collects file records and replays them by ascending size."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @abstractmethod
    def extend(self, records: Iterable[FileRecord]) -> None:
        """Append records. The source is consumed once, in order."""

    @abstractmethod
    def __iter__(self) -> Iterator[FileRecord]:
        """Yield records by ascending size; equal sizes keep insertion order."""

    @abstractmethod
    def records_with_size(self, size: int) -> Iterator[FileRecord]:
        """Yield the records of exactly ``size`` bytes, in insertion order.

        Confirmation uses this to find the peers of a duplicate candidate without
        walking the whole ordering.
        """

    @abstractmethod
    def __len__(self) -> int:
        """Number of records added so far."""

    def close(self) -> None:
        """Release any storage held by the ordering."""


class MemorySizeOrdering(SizeOrdering):
    """Ordering held in a dict of size to paths; fine for trees of a few million files."""

    def __init__(self, records: Iterable[FileRecord] = ()):
        self._by_size: dict[int, list[Path]] = {}
        self._count = 0
        self.extend(records)

    def extend(self, records: Iterable[FileRecord]) -> None:
        for path, size in records:
            self._by_size.setdefault(size, []).append(path)
            self._count += 1

    def __iter__(self) -> Iterator[FileRecord]:
        for size in sorted(self._by_size):
            for path in self._by_size[size]:
                yield FileRecord(path, size)

    def records_with_size(self, size: int) -> Iterator[FileRecord]:
        for path in self._by_size.get(size, ()):
            yield FileRecord(path, size)

    def __len__(self) -> int:
        return self._count


class LevelDBSizeOrdering(SizeOrdering):
    """Disk-backed ordering for trees whose record list does not fit in memory.

    Key layout: ``<8-byte big-endian size><8-byte big-endian sequence number>``.
    The value is the msgpack-encoded list of path components as raw bytes, so
    names that are not valid UTF-8 survive the round trip. LevelDB iterates
    keys in byte order, which is ascending size and then insertion order.
    """
    _KEY_WIDTH = 8
    DEFAULT_FLUSH_RECORDS = 10_000

    def __init__(self, records: Iterable[FileRecord] = (), directory: Path | None = None,
                 flush_records: int = DEFAULT_FLUSH_RECORDS):
        """Create the scratch database and load the initial records.

        Args:
            records: Records to load right away
            directory: Parent of the scratch directory; the system temporary
                directory when omitted
            flush_records: Number of records buffered in a write batch before it
                is written to the database

        The scratch directory is removed again if loading the records fails,
        including on KeyboardInterrupt.
        """
        if flush_records < 1:
            raise ValueError(f"flush_records must be >= 1, got {flush_records}")

        self._flush_records = flush_records
        self._count = 0
        self._database: plyvel.DB | None = None
        self._closed = False
        self._directory = Path(tempfile.mkdtemp(prefix='bloomdedup-', dir=directory))
        try:
            self._database = plyvel.DB(str(self._directory), create_if_missing=True)
            logger.debug(f"Opened scratch ordering database at {self._directory}")
            self.extend(records)
        except BaseException:
            self.close()
            raise

    def extend(self, records: Iterable[FileRecord]) -> None:
        """Append records, writing them to disk every ``flush_records`` records.

        At most one partial write batch is held in memory, so the record source
        may be far larger than the available RAM.
        """
        database = self._require_database()
        batch = database.write_batch()
        pending = 0
        for path, size in records:
            key = self._encode_int(size) + self._encode_int(self._count)
            batch.put(key, msgpack.dumps([os.fsencode(part) for part in Path(path).parts]))
            self._count += 1
            pending += 1
            if pending >= self._flush_records:
                batch.write()
                batch = database.write_batch()
                pending = 0

        if pending:
            batch.write()

    def __iter__(self) -> Iterator[FileRecord]:
        for key, value in self._require_database().iterator():
            yield self._decode(key, value)

    def records_with_size(self, size: int) -> Iterator[FileRecord]:
        for key, value in self._require_database().iterator(prefix=self._encode_int(size)):
            yield self._decode(key, value)

    def __len__(self) -> int:
        return self._count

    def close(self) -> None:
        """Close the database and delete its scratch directory. Safe to call twice."""
        if self._closed:
            return
        self._closed = True

        if self._database is not None:
            self._database.close()
            self._database = None
        shutil.rmtree(self._directory, ignore_errors=True)
        logger.debug(f"Removed scratch ordering database at {self._directory}")

    def _require_database(self) -> plyvel.DB:
        if self._database is None:
            raise RuntimeError("Ordering database is closed")
        return self._database

    @classmethod
    def _encode_int(cls, value: int) -> bytes:
        return value.to_bytes(cls._KEY_WIDTH, byteorder='big')

    @classmethod
    def _decode(cls, key: bytes, value: bytes) -> FileRecord:
        size = int.from_bytes(key[:cls._KEY_WIDTH], byteorder='big')
        return FileRecord(Path(*map(os.fsdecode, msgpack.loads(value))), size)


def create_ordering(backend: OrderingBackend | str, records: Iterable[FileRecord] = ()) -> SizeOrdering:
    """Create an ordering of the given backend, loaded with records.

    Raises:
        ValueError: unknown backend name
    """
    backend = OrderingBackend(backend)
    if backend is OrderingBackend.LEVELDB:
        return LevelDBSizeOrdering(records)
    return MemorySizeOrdering(records)
