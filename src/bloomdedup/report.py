from dataclasses import dataclass, field
from pathlib import Path
from typing import NamedTuple

from .hashing import DigestEntry, SkippedFile


class BatchFailure(NamedTuple):
    """A batch that produced no result because one of its files could not be read."""
    batch_id: str
    paths: tuple[Path, ...]
    error: str


@dataclass
class DuplicateReport:
    """Outcome of one duplicate scan.

    Attributes:
        duplicates: Paths judged to be duplicates of an earlier-merged file, in the
                    order they were discovered. Each path appears at most once.
        candidates: Raw Bloom filter hits with their digests, in discovery order.
                    Equal to ``duplicates`` when confirmation is disabled.
        rejected: Candidates that confirmation found to be false positives.
        skipped: Files left out of the scan because they could not be read.
        failed_batches: Batches aborted by an unreadable file.
        cancelled_batches: Ids of batches whose hashing was cancelled or timed out.
        batches_merged: Number of batch results merged into the filter.
        filter_truthiness: Fraction of set filter bits after the last merge.
    """
    duplicates: list[Path] = field(default_factory=list)
    candidates: list[DigestEntry] = field(default_factory=list)
    rejected: list[Path] = field(default_factory=list)
    skipped: list[SkippedFile] = field(default_factory=list)
    failed_batches: list[BatchFailure] = field(default_factory=list)
    cancelled_batches: list[str] = field(default_factory=list)
    batches_merged: int = 0
    filter_truthiness: float = 0.0

    @property
    def complete(self) -> bool:
        """True if every discovered file was hashed and merged."""
        return not (self.failed_batches or self.cancelled_batches or self.skipped)
