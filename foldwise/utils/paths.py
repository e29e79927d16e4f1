"""
Path helpers for the foldwise CLI.

User-supplied roots go through resolve_root() before anything else sees
them; display_path() shortens absolute paths for terminal output.
"""

from __future__ import annotations

import os
from pathlib import Path

from ..core.errors import PathNotDirectoryError, PathNotFoundError


def resolve_root(path_str: str) -> Path:
    """
    Resolve a user-provided path string into an absolute directory Path.

    '~' and $VARIABLES are expanded before resolving.

    Raises:
    - PathNotFoundError: if the resolved path does not exist.
    - PathNotDirectoryError: if the path exists but is not a directory.
    """
    root = Path(os.path.expandvars(path_str)).expanduser().resolve()

    if not root.exists():
        raise PathNotFoundError(f"Path not found: {root}")

    if not root.is_dir():
        raise PathNotDirectoryError(f"Provided path is not a directory: {root}")

    return root


def display_path(path: Path | str, root: Path | None = None) -> str:
    """`path` relative to `root` when it lies inside it, otherwise as given."""
    path = Path(path)
    if root is not None:
        try:
            return path.relative_to(root).as_posix()
        except ValueError:
            pass
    return str(path)
