import logging
import stat
from pathlib import Path
from typing import Iterator

from ..batching import FileRecord

logger = logging.getLogger(__name__)


def walk(path: Path, relative: Path | None, excluded_paths: set[Path]) -> Iterator[FileRecord]:
    """Recursively yield regular files below ``path``.

    Symbolic links are never followed, and neither they nor other special files
    are reported. Directories that cannot be listed are logged and skipped.

    Args:
        path: Directory to list
        relative: ``path`` relative to the traversal root, None for the root itself
        excluded_paths: Paths relative to the root whose entries are skipped

    Yields:
        FileRecord with the full path and the size from ``lstat``
    """
    try:
        children = list(path.iterdir())
    except OSError as e:
        logger.warning(f"Cannot list directory {path}: {e}")
        return

    child: Path
    for child in children:
        child_relative = Path(child.name) if relative is None else relative / child.name
        if child_relative in excluded_paths:
            continue

        try:
            st = child.stat(follow_symlinks=False)
        except OSError as e:
            logger.warning(f"Cannot stat {child}: {e}")
            continue

        if stat.S_ISDIR(st.st_mode):
            yield from walk(child, child_relative, excluded_paths)
        elif stat.S_ISREG(st.st_mode):
            yield FileRecord(child, st.st_size)


def enumerate_files(root: Path, excluded_paths: set[Path] | None = None) -> Iterator[FileRecord]:
    """Yield a FileRecord for every regular file under ``root``.

    Records are produced lazily. Only the listings of the directories on the
    current path are held in memory. Traversal recurses once per directory
    level, so trees nested deeper than ``sys.getrecursionlimit()`` (about 1000
    levels by default) raise RecursionError.

    Args:
        root: Directory to traverse
        excluded_paths: Paths relative to ``root`` whose subtrees are skipped

    Raises:
        NotADirectoryError: ``root`` is not a directory
    """
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")
    return walk(root, None, excluded_paths or set())
