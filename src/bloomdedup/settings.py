import dataclasses
import numbers
import tomllib
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

from .batching import check_max_batch_bytes
from .exceptions import ConfigurationError
from .filter import check_parameters
from .hashing import ErrorPolicy, digest_size
from .ordering import OrderingBackend

SETTINGS_DIRECTORY = '.bloomdedup'
SETTINGS_FILE_NAME = 'settings.toml'


class Confirmation(StrEnum):
    """How Bloom filter hits are confirmed before being reported as duplicates.

    NONE reports every hit directly, accepting the filter's false-positive rate.
    DIGEST requires another file of the same size with an equal digest. CONTENT
    additionally compares the files byte by byte.
    """
    NONE = 'none'
    DIGEST = 'digest'
    CONTENT = 'content'


class SettingsFile:
    """Read-only access to a TOML settings file.

    The file is typically ``<root>/.bloomdedup/settings.toml``. A missing file
    behaves like an empty one. Nested tables are addressed with dotted keys:

        [filter]
        capacity = 5000000

    is read with ``settings.get('filter.capacity')``.
    """

    def __init__(self, path: Path | None = None):
        self._path = path
        self._settings: dict[str, Any] = {}

        if path is not None and path.exists():
            try:
                with open(path, 'rb') as f:
                    self._settings = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigurationError(f"Invalid settings file {path}: {e}") from e

    @classmethod
    def for_root(cls, root: Path) -> 'SettingsFile':
        return cls(root / SETTINGS_DIRECTORY / SETTINGS_FILE_NAME)

    @property
    def path(self) -> Path | None:
        return self._path

    def get(self, key: str, default=None):
        """Get a setting by dotted key, or ``default`` if any component is missing."""
        value = self._settings

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value


@dataclass(frozen=True)
class ScanSettings:
    """Every knob of a duplicate scan, with defaults."""
    max_batch_bytes: int = 5 * 1024 * 1024
    capacity: int = 2_000_000
    false_positive_rate: float | None = None
    hash_algorithm: str = 'md5'
    error_policy: ErrorPolicy = ErrorPolicy.ABORT_BATCH
    confirmation: Confirmation = Confirmation.CONTENT
    concurrency: int | None = None
    ordering: OrderingBackend = OrderingBackend.MEMORY
    batch_timeout: float | None = None

    # (settings file key, field name)
    FILE_KEYS = (
        ('batch.max_bytes', 'max_batch_bytes'),
        ('filter.capacity', 'capacity'),
        ('filter.false_positive_rate', 'false_positive_rate'),
        ('hash.algorithm', 'hash_algorithm'),
        ('errors.policy', 'error_policy'),
        ('confirmation.mode', 'confirmation'),
        ('processing.concurrency', 'concurrency'),
        ('processing.batch_timeout', 'batch_timeout'),
        ('ordering.backend', 'ordering'),
    )

    def __post_init__(self):
        for name, enum_type in (('error_policy', ErrorPolicy),
                                ('confirmation', Confirmation),
                                ('ordering', OrderingBackend)):
            value = getattr(self, name)
            try:
                object.__setattr__(self, name, enum_type(value))
            except ValueError as e:
                choices = ', '.join(member.value for member in enum_type)
                raise ConfigurationError(f"Invalid {name} {value!r}, expected one of: {choices}") from e

    @classmethod
    def from_settings_file(cls, settings_file: SettingsFile, **overrides) -> 'ScanSettings':
        """Build settings from a settings file; keyword overrides that are not None win."""
        values = {}
        for key, name in cls.FILE_KEYS:
            value = settings_file.get(key)
            if value is not None:
                values[name] = value
        values.update({name: value for name, value in overrides.items() if value is not None})
        return cls(**values)

    def replace(self, **changes) -> 'ScanSettings':
        return dataclasses.replace(self, **changes)

    def validate(self) -> 'ScanSettings':
        """Check every value, raising ConfigurationError on the first bad one."""
        check_max_batch_bytes(self.max_batch_bytes)
        check_parameters(self.capacity, self.false_positive_rate)
        digest_size(self.hash_algorithm)

        if self.concurrency is not None:
            if isinstance(self.concurrency, bool) or not isinstance(self.concurrency, numbers.Integral) \
                    or self.concurrency < 1:
                raise ConfigurationError(f"concurrency must be a positive integer, got {self.concurrency!r}")

        if self.batch_timeout is not None:
            if isinstance(self.batch_timeout, bool) or not isinstance(self.batch_timeout, numbers.Real) \
                    or not self.batch_timeout > 0:
                raise ConfigurationError(f"batch_timeout must be a positive number, got {self.batch_timeout!r}")

        return self
