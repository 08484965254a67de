import asyncio
import logging
import os
from pathlib import Path
from typing import Iterable

from .batching import FileRecord
from .detector import DuplicateDetector
from .ordering import create_ordering
from .report import DuplicateReport
from .settings import SETTINGS_DIRECTORY, ScanSettings, SettingsFile
from .utils.processor import Processor
from .utils.walker import enumerate_files

logger = logging.getLogger(__name__)


class Deduplicator:
    """Workflow layer: enumerate a tree, order it by size and run a DuplicateDetector.

    Every call to ``scan`` or ``find_duplicates`` is an independent run with its
    own Bloom filter, ordering buffer and report. Hashing is delegated to the given
    Processor, whose pool outlives individual runs.

    Example:
        with Processor() as processor:
            report = Deduplicator(processor).scan('/data')
            for path in report.duplicates:
                print(path)
    """

    def __init__(self, processor: Processor, settings: ScanSettings | None = None):
        """
        Args:
            processor: Process pool used for hashing and content comparison
            settings: Scan settings; defaults apply when omitted

        Raises:
            ConfigurationError: A setting is invalid
        """
        self._processor = processor
        self._settings = (settings or ScanSettings()).validate()

    @property
    def settings(self) -> ScanSettings:
        return self._settings

    @staticmethod
    def load_settings(root: str | os.PathLike, settings_path: str | os.PathLike | None = None,
                      **overrides) -> tuple[ScanSettings, SettingsFile]:
        """Read scan settings for a root from its settings file, applying overrides."""
        if settings_path is None:
            settings_file = SettingsFile.for_root(Path(root))
        else:
            settings_file = SettingsFile(Path(settings_path))
        return ScanSettings.from_settings_file(settings_file, **overrides).validate(), settings_file

    def scan(self, root: str | os.PathLike) -> DuplicateReport:
        """Find duplicates among the regular files below ``root``.

        Raises:
            NotADirectoryError: root is not a directory
        """
        root = Path(root)
        logger.info(f"Scanning {root}")
        records = enumerate_files(root, {Path(SETTINGS_DIRECTORY)})
        return self.find_duplicates(records)

    def find_duplicates(self, records: Iterable[FileRecord]) -> DuplicateReport:
        """Find duplicates among already-enumerated file records."""
        with create_ordering(self._settings.ordering, records) as ordering:
            logger.info(f"Ordered {len(ordering)} files by size using the {self._settings.ordering} backend")
            detector = DuplicateDetector.with_processor(self._processor, self._settings)
            report = asyncio.run(detector.detect(ordering))

        if report.complete:
            logger.info(f"Scan complete: {len(report.duplicates)} duplicates")
        else:
            logger.warning(
                f"Scan incomplete: {len(report.failed_batches)} failed batches, "
                f"{len(report.cancelled_batches)} cancelled batches, {len(report.skipped)} skipped files")
        return report
