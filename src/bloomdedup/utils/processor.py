import asyncio
import filecmp
import logging
import multiprocessing
from multiprocessing.pool import Pool
import pathlib
from typing import Awaitable

from .profiling import profile_worker
from ..batching import Batch
from ..hashing import BatchResult, ErrorPolicy, compute_digest, hash_batch

logger = logging.getLogger(__name__)


@profile_worker
def hash_batch_in_worker(batch: Batch, algorithm: str, policy: str) -> BatchResult:
    return hash_batch(batch, algorithm, ErrorPolicy(policy))


@profile_worker
def compute_digest_in_worker(path: pathlib.Path, algorithm: str) -> bytes:
    return compute_digest(path, algorithm)


@profile_worker
def compare_file_content(a: pathlib.Path, b: pathlib.Path) -> bool:
    return filecmp.cmp(a, b, shallow=False)


class Processor:
    """Runs hashing and comparisons in a process pool and exposes them as awaitables.

    Each call is submitted to the pool and settled on the calling event loop, so
    coroutines can await many files concurrently while the actual I/O and digest
    computation happen in worker processes.
    """

    def __init__(self, concurrency: int | None = None):
        if concurrency is None:
            concurrency = multiprocessing.cpu_count()

        self._concurrency = concurrency
        self._pool: Pool = Pool(self._concurrency)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        self._pool.close()
        self._pool.join()

    @property
    def concurrency(self):
        return self._concurrency

    def hash_batch(self, batch: Batch, algorithm: str, policy: ErrorPolicy) -> Awaitable[BatchResult]:
        logger.info(f"Scheduling batch {batch.batch_id} ({len(batch.paths)} files, {batch.total_bytes} bytes)")
        return self._evaluate(hash_batch_in_worker, batch, algorithm, str(policy))

    def digest(self, path: pathlib.Path, algorithm: str) -> Awaitable[bytes]:
        logger.info(f"Starting hash computation for: {path}")

        async def log_and_compute():
            result = await self._evaluate(compute_digest_in_worker, path, algorithm)
            logger.info(f"Completed hash computation for: {path}")
            return result

        return log_and_compute()

    def compare_content(self, a: pathlib.Path, b: pathlib.Path) -> Awaitable[bool]:
        """Compare content of two files.

        :return: True if two files are equal, False otherwise."""
        logger.info(f"Starting content comparison: {a} vs {b}")

        async def log_and_compare():
            result = await self._evaluate(compare_file_content, a, b)
            logger.info(f"Completed content comparison: {a} vs {b} (equal={result})")
            return result

        return log_and_compare()

    def _evaluate(self, func, *args):
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        self._pool.apply_async(func, args=args,
                               callback=lambda v: _settle(loop, future, future.set_result, v),
                               error_callback=lambda e: _settle(loop, future, future.set_exception, e))

        return future


def _settle(loop: asyncio.AbstractEventLoop, future: asyncio.Future, setter, value):
    """Hand a pool outcome to the event loop, dropping it if nobody waits any more."""
    def apply():
        if not future.done():
            setter(value)

    try:
        loop.call_soon_threadsafe(apply)
    except RuntimeError:
        logger.debug(f"Dropping pool result after event loop closed: {value!r}")
