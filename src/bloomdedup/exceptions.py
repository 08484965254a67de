from pathlib import Path


class DedupError(Exception):
    """Base class of errors raised by bloomdedup."""


class ConfigurationError(DedupError, ValueError):
    """An invalid setting was supplied. Raised before any file is touched."""


class FileAccessError(DedupError):
    """A file could not be opened or read while it was being hashed.

    The exception is raised inside pool worker processes and travels back to the
    event loop, so its constructor arguments are exactly its ``args``.
    """

    def __init__(self, path: Path, reason: str):
        super().__init__(path, reason)
        self.path = path
        self.reason = reason

    def __str__(self):
        return f"cannot read {self.path}: {self.reason}"
