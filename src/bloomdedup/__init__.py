from .deduplicator import Deduplicator
from .detector import DuplicateDetector
from .exceptions import DedupError, ConfigurationError, FileAccessError
from .filter import BloomFilter
from .batching import Batch, FileRecord, generate_batches
from .hashing import BatchResult, DigestEntry, ErrorPolicy, SkippedFile, hash_batch
from .report import BatchFailure, DuplicateReport
from .settings import Confirmation, ScanSettings, SettingsFile
from .utils.processor import Processor
