"""Path helpers for deploying relative mod paths under a game directory.

Relative paths recorded for ownership always use ``/`` separators so the same
record works regardless of the platform that wrote it.
"""

import logging
import os
import posixpath
from collections.abc import Iterable
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)


def normalize_relative(path: str) -> str:
    """Normalise a relative mod path to ``a/b/c`` form."""
    return PurePosixPath(path.replace("\\", "/")).as_posix().lstrip("/")


def resolve_under(root: Path, relative_path: str) -> Path:
    """Join *relative_path* onto *root*, refusing anything that escapes it.

    Raises:
        ValueError: If the path is absolute, empty, or climbs out of *root*.
    """
    rel = relative_path.replace("\\", "/")
    if not rel or rel.startswith("/") or os.path.isabs(rel):
        raise ValueError(f"invalid relative path: {relative_path!r}")

    # Lexical check only: a deployed symlink at the leaf points outside root by design.
    norm = posixpath.normpath(rel)
    if norm in (".", "..") or norm.startswith("../"):
        raise ValueError(f"path escapes {root}: {relative_path!r}")
    return root / norm


def parent_dirs(relative_path: str) -> list[str]:
    """Return every ancestor directory of *relative_path*, deepest first."""
    parents = PurePosixPath(normalize_relative(relative_path)).parents
    return [p.as_posix() for p in parents if p.as_posix() != "."]


def cleanup_empty_dirs(root: Path, relative_paths: Iterable[str]) -> int:
    """Remove now-empty ancestor directories of *relative_paths* below *root*.

    Directories are tried deepest first; *root* itself is never removed.
    Returns the number of directories removed.
    """
    candidates: set[str] = set()
    for rel in relative_paths:
        candidates.update(parent_dirs(rel))

    removed = 0
    for rel_dir in sorted(candidates, key=lambda d: d.count("/"), reverse=True):
        directory = root / rel_dir
        try:
            if directory.is_dir() and not directory.is_symlink() and not any(directory.iterdir()):
                directory.rmdir()
                removed += 1
        except OSError as exc:
            logger.debug("Could not remove directory %s: %s", directory, exc)
    return removed
