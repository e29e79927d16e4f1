from __future__ import annotations
"""
Filesystem scanner for foldwise.

Responsibilities:

- Recursively walk a root PATH.
- For each file, collect its absolute path, size and sniffed content kind.
- Leave "opaque" directories alone: build output, dependency trees, project
  checkouts and numbered series (scan_001.png, scan_002.png, ...) only make
  sense as a whole, so their files are never collected.
- Return the entries sorted by path; this is the fixed FileEntry set for
  the rest of the run.
- If PATH does not exist, raise PathNotFoundError.
- If PATH exists but is not a directory, raise PathNotDirectoryError.
- If PATH cannot be listed, raise PathPermissionError.
- If there are no files under PATH, raise NoFilesFoundError.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import (
    NoFilesFoundError,
    PathNotDirectoryError,
    PathNotFoundError,
    PathPermissionError,
)
from .models import FileEntry
from .sniffer import sniff_file

logger = logging.getLogger(__name__)

# Directory under the root where execution logs are written; never scanned.
STATE_DIRNAME = ".foldwise"

# Directories whose contents belong together; matched by exact name.
OPAQUE_DIRNAMES = frozenset(
    {
        "node_modules", "__pycache__", ".git", ".svn", "target", "dist", "build",
        "out", ".idea", ".vscode", "vendor", "deps", ".cache", "tmp", "temp",
    }
)

# Any of these inside a directory marks it as a project checkout.
PROJECT_MARKERS = frozenset(
    {
        ".git", ".hg", ".svn", "pyproject.toml", "setup.py", "package.json",
        "Cargo.toml", "go.mod", "pom.xml", "build.gradle", "Gemfile", "composer.json",
    }
)

# Numbered-series check: entries sampled, minimum sample, and the share of
# names that must carry a digit and share the first extension.
SERIES_SAMPLE_SIZE = 20
SERIES_MIN_SAMPLE = 5
SERIES_SHARE = 0.8

SkippedDir = Tuple[Path, str]


def _numbered_series(names: List[str]) -> Optional[str]:
    sample = sorted(n for n in names if not n.startswith("."))[:SERIES_SAMPLE_SIZE]
    if len(sample) < SERIES_MIN_SAMPLE:
        return None

    numbered = sum(1 for n in sample if any(c.isdigit() for c in n))
    if numbered / len(sample) <= SERIES_SHARE:
        return None

    extensions = [Path(n).suffix.lower() for n in sample if Path(n).suffix]
    if not extensions:
        return None
    same = sum(1 for ext in extensions if ext == extensions[0])
    if same / len(extensions) <= SERIES_SHARE:
        return None
    return f"numbered series of {extensions[0]} files"


def opaque_reason(path: Path) -> Optional[str]:
    """
    Why the directory at `path` should be kept as one unit, or None.

    Checks, in order: a known build / dependency / tooling name, a project
    marker file inside it, and a mostly-numbered series of same-type files.
    """
    if path.name in OPAQUE_DIRNAMES:
        return f"'{path.name}' directory"

    try:
        names = os.listdir(path)
    except OSError:
        # os.walk reports unreadable directories itself.
        return None

    markers = sorted(PROJECT_MARKERS.intersection(names))
    if markers:
        return f"project checkout ({markers[0]})"
    return _numbered_series(names)


def scan(
    root: Path,
    *,
    include_hidden: bool = False,
    max_depth: Optional[int] = None,
    include_opaque: bool = False,
    skipped_dirs: Optional[List[SkippedDir]] = None,
) -> List[FileEntry]:
    """
    Recursively scan the given root directory and return its files.

    Parameters
    ----------
    root : Path
        Root directory to scan (typically already resolved via utils.paths.resolve_root).
    include_hidden : bool
        Also collect dot-files and files under dot-directories.
    max_depth : int, optional
        Limit recursion; 1 means only files directly under root.
    include_opaque : bool
        Walk into opaque directories too (see opaque_reason). The root itself
        is never treated as opaque.
    skipped_dirs : list, optional
        If given, receives (path, reason) for every opaque directory left out.

    Returns
    -------
    list[FileEntry]
        One entry per discovered file, sorted by absolute path.

    Raises
    ------
    PathNotFoundError
        If the path does not exist.
    PathNotDirectoryError
        If the path is not a directory.
    PathPermissionError
        If the root directory cannot be listed.
    NoFilesFoundError
        If the directory tree contains no files.
    """
    root = Path(root).expanduser().resolve()

    if not root.exists():
        raise PathNotFoundError(f"Path not found: {root}")

    if not root.is_dir():
        raise PathNotDirectoryError(f"Provided path is not a directory: {root}")

    if not os.access(root, os.R_OK | os.X_OK):
        raise PathPermissionError(f"Permission denied reading directory: {root}")

    def _on_walk_error(exc: OSError) -> None:
        if Path(exc.filename or "") == root:
            raise PathPermissionError(f"Permission denied reading directory: {root}") from exc
        logger.warning("Skipping unreadable directory %s: %s", exc.filename, exc.strerror)

    entries: List[FileEntry] = []

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_walk_error):
        dir_path = Path(dirpath)
        depth = len(dir_path.relative_to(root).parts) + 1

        # Prune in place so os.walk never descends into skipped directories.
        dirnames[:] = sorted(
            d for d in dirnames
            if d != STATE_DIRNAME and (include_hidden or not d.startswith("."))
        )
        if max_depth is not None and depth >= max_depth:
            dirnames[:] = []
        if not include_opaque:
            kept = []
            for d in dirnames:
                reason = opaque_reason(dir_path / d)
                if reason is None:
                    kept.append(d)
                    continue
                logger.info("Leaving %s in place as a unit: %s", dir_path / d, reason)
                if skipped_dirs is not None:
                    skipped_dirs.append((dir_path / d, reason))
            dirnames[:] = kept

        for name in sorted(filenames):
            if not include_hidden and name.startswith("."):
                continue

            full_path = dir_path / name

            # A file that disappears between walk and stat, or a dangling
            # symlink, is skipped rather than failing the whole scan.
            try:
                stat = full_path.stat()
            except OSError as exc:
                logger.warning("Skipping %s: %s", full_path, exc)
                continue

            kind, mime = sniff_file(full_path)
            entries.append(
                FileEntry(
                    path=full_path,
                    size_bytes=stat.st_size,
                    kind=kind,
                    mime=mime,
                )
            )

    if not entries:
        raise NoFilesFoundError(f"No files found under '{root}'.")

    entries.sort(key=lambda e: str(e.path))
    logger.info("Scanned %d file(s) under %s", len(entries), root)
    return entries
