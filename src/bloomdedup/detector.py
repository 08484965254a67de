import asyncio
import base64
import logging
from asyncio import TaskGroup
from pathlib import Path
from typing import Awaitable, Callable, Iterable, NamedTuple

from .batching import Batch, generate_batches
from .exceptions import FileAccessError
from .filter import BloomFilter
from .hashing import BatchResult, DigestEntry, SkippedFile, digest_size
from .ordering import SizeOrdering
from .report import BatchFailure, DuplicateReport
from .settings import Confirmation, ScanSettings
from .utils.processor import Processor
from .utils.throttler import Throttler

logger = logging.getLogger(__name__)


class _Cancelled(NamedTuple):
    batch_id: str


class _SubmissionComplete(NamedTuple):
    batch_count: int


class DuplicateDetector:
    """Finds duplicate files with a Bloom filter over content digests.

    Batches are hashed concurrently, but their results are merged into the filter
    one at a time, in the order the hashing finishes. Every hashing task pushes its
    outcome onto a completion queue, and a single consumer drains it. The filter
    and the report are only ever touched by that consumer, so neither needs a lock.

    A detector holds the filter of one scan. Create a new one for every run.
    """

    def __init__(
            self,
            settings: ScanSettings,
            hash_batch: Callable[[Batch], Awaitable[BatchResult]],
            digest: Callable[[Path], Awaitable[bytes]],
            compare_content: Callable[[Path, Path], Awaitable[bool]],
            concurrency: int):
        """
        Args:
            settings: Scan settings; validated here, before any I/O
            hash_batch: Produces the BatchResult of a batch
            digest: Digests a single file, used to find confirmation peers
            compare_content: Byte-wise comparison of two files
            concurrency: Maximum number of batches being hashed at once
        """
        self._settings = settings.validate()
        self._digest_size = digest_size(settings.hash_algorithm)
        self._filter = BloomFilter(settings.capacity, settings.false_positive_rate)
        self._hash_batch = hash_batch
        self._digest = digest
        self._compare_content = compare_content
        self._concurrency = concurrency
        self._candidate_paths: set[Path] = set()

    @classmethod
    def with_processor(cls, processor: Processor, settings: ScanSettings) -> 'DuplicateDetector':
        algorithm = settings.hash_algorithm
        policy = settings.error_policy
        return cls(
            settings,
            lambda batch: processor.hash_batch(batch, algorithm, policy),
            lambda path: processor.digest(path, algorithm),
            processor.compare_content,
            processor.concurrency * 2)

    @property
    def filter(self) -> BloomFilter:
        return self._filter

    async def detect(self, ordering: SizeOrdering) -> DuplicateReport:
        """Batch, hash, merge and confirm every record of a size ordering."""
        report = DuplicateReport()
        await self.merge_batches(generate_batches(ordering, self._settings.max_batch_bytes), report)
        await self.confirm(report, ordering)
        return report

    async def merge_batches(self, batches: Iterable[Batch], report: DuplicateReport):
        """Hash all batches concurrently and merge each result as soon as it completes."""
        completions: asyncio.Queue = asyncio.Queue()

        async with TaskGroup() as tg:
            throttler = Throttler(tg, self._concurrency)
            tg.create_task(self._submit(batches, throttler, completions))
            await self._consume(completions, report)

        report.filter_truthiness = self._filter.truthiness
        logger.info(f"Merged {report.batches_merged} batches, {len(report.candidates)} candidates, "
                    f"filter truthiness {report.filter_truthiness:.6f}")

    async def _submit(self, batches: Iterable[Batch], throttler: Throttler, completions: asyncio.Queue):
        batch_count = 0
        for batch in batches:
            await throttler.schedule(self._hash_one(batch, completions), name=batch.batch_id)
            batch_count += 1
        completions.put_nowait(_SubmissionComplete(batch_count))

    async def _hash_one(self, batch: Batch, completions: asyncio.Queue):
        """Hash one batch and post exactly one outcome to the completion queue."""
        try:
            if self._settings.batch_timeout is None:
                result = await self._hash_batch(batch)
            else:
                async with asyncio.timeout(self._settings.batch_timeout):
                    result = await self._hash_batch(batch)
        except FileAccessError as e:
            logger.error(f"Batch {batch.batch_id} failed: {e}")
            completions.put_nowait(BatchFailure(batch.batch_id, batch.paths, str(e)))
        except TimeoutError:
            logger.warning(f"Batch {batch.batch_id} timed out after {self._settings.batch_timeout}s")
            completions.put_nowait(_Cancelled(batch.batch_id))
        except asyncio.CancelledError:
            logger.warning(f"Batch {batch.batch_id} was cancelled")
            completions.put_nowait(_Cancelled(batch.batch_id))
            raise
        else:
            completions.put_nowait(result)

    async def _consume(self, completions: asyncio.Queue, report: DuplicateReport):
        expected = None
        received = 0
        while expected is None or received < expected:
            outcome = await completions.get()
            if isinstance(outcome, _SubmissionComplete):
                expected = outcome.batch_count
                continue

            received += 1
            if isinstance(outcome, BatchResult):
                self._merge(outcome, report)
            elif isinstance(outcome, BatchFailure):
                report.failed_batches.append(outcome)
            else:
                report.cancelled_batches.append(outcome.batch_id)

    def _merge(self, result: BatchResult, report: DuplicateReport):
        logger.info(f"Processing {result.batch_id}")
        for entry in result.entries:
            if len(entry.digest) != self._digest_size:
                raise ValueError(
                    f"Digest of {entry.path} is {len(entry.digest)} bytes, expected {self._digest_size}")

            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"{entry.path} --> {base64.b64encode(entry.digest).decode()}")

            if entry.digest in self._filter:
                if entry.path in self._candidate_paths:
                    continue
                logger.info(f"{entry.path} has a possible duplicate")
                self._candidate_paths.add(entry.path)
                report.candidates.append(entry)
            else:
                self._filter.add(entry.digest)

        report.skipped.extend(result.skipped)
        report.batches_merged += 1

    async def confirm(self, report: DuplicateReport, ordering: SizeOrdering):
        """Sort the filter hits of a report into duplicates and rejected false positives.

        Only files sharing a size with some candidate are looked at again. Among
        them, files with the digest of a candidate are split into classes of equal
        content. A candidate is a duplicate if its class holds a file that was not
        itself a hit, or an earlier-discovered hit. The earliest hit of a class made
        of hits only is the original.
        """
        mode = self._settings.confirmation
        if mode is Confirmation.NONE:
            report.duplicates.extend(entry.path for entry in report.candidates)
            return

        discovery_order = {entry.path: index for index, entry in enumerate(report.candidates)}
        unreadable: set[Path] = set()

        by_size: dict[int, list[DigestEntry]] = {}
        for entry in report.candidates:
            try:
                size = entry.path.stat().st_size
            except OSError as e:
                logger.warning(f"Cannot confirm {entry.path}: {e}")
                report.skipped.append(SkippedFile(entry.path, e.strerror or str(e)))
                unreadable.add(entry.path)
                continue
            by_size.setdefault(size, []).append(entry)

        confirmed: set[Path] = set()
        for size, entries in by_size.items():
            groups = await self._collect_peers(size, entries, ordering)
            for members in groups.values():
                if mode is Confirmation.CONTENT:
                    classes = await self._split_by_content(members, discovery_order, report, unreadable)
                else:
                    classes = [members]

                for content_class in classes:
                    confirmed.update(self._duplicates_in_class(content_class, discovery_order))

        for entry in report.candidates:
            if entry.path in confirmed:
                report.duplicates.append(entry.path)
            elif entry.path not in unreadable:
                logger.info(f"{entry.path} was a false positive of the filter")
                report.rejected.append(entry.path)

    async def _collect_peers(self, size: int, entries: list[DigestEntry],
                             ordering: SizeOrdering) -> dict[bytes, list[Path]]:
        """Group candidates of one size with the other files of that size sharing their digest."""
        candidates: dict[bytes, list[Path]] = {}
        for entry in entries:
            candidates.setdefault(entry.digest, []).append(entry.path)
        peers: dict[bytes, list[Path]] = {digest: [] for digest in candidates}

        async def add_peer(path: Path):
            try:
                digest = await self._digest(path)
            except FileAccessError as e:
                logger.warning(f"Ignoring confirmation peer: {e}")
                return
            if digest in peers:
                peers[digest].append(path)

        async with TaskGroup() as tg:
            throttler = Throttler(tg, self._concurrency)
            for record in ordering.records_with_size(size):
                if record.path not in self._candidate_paths:
                    await throttler.schedule(add_peer(record.path))

        # peers come first so that a non-candidate represents its content class
        return {digest: peers[digest] + paths for digest, paths in candidates.items()}

    async def _split_by_content(self, members: list[Path], discovery_order: dict[Path, int],
                                report: DuplicateReport, unreadable: set[Path]) -> list[list[Path]]:
        classes: list[list[Path]] = []
        for path in members:
            while path not in unreadable:
                try:
                    for content_class in classes:
                        if await self._compare_content(path, content_class[0]):
                            content_class.append(path)
                            break
                    else:
                        classes.append([path])
                    break
                except OSError as e:
                    failed = Path(e.filename) if e.filename is not None else path
                    if not any(failed in content_class for content_class in classes):
                        failed = path
                    logger.warning(f"Cannot compare {failed}: {e}")
                    unreadable.add(failed)
                    if failed in discovery_order:
                        report.skipped.append(SkippedFile(failed, e.strerror or str(e)))
                    # The class representative vanished; the next member stands in for it.
                    for content_class in classes:
                        if failed in content_class:
                            content_class.remove(failed)
                    classes = [content_class for content_class in classes if content_class]
        return classes

    def _duplicates_in_class(self, content_class: list[Path], discovery_order: dict[Path, int]) -> list[Path]:
        hits = sorted((path for path in content_class if path in discovery_order), key=discovery_order.__getitem__)
        if len(hits) == len(content_class):
            return hits[1:]
        return hits
