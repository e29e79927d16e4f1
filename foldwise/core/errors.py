"""
Domain-specific exception hierarchy for foldwise.

All predictable, user-facing failures raise subclasses of OrganizerError.
The CLI layer catches OrganizerError and prints friendly messages instead of
raw stack traces.

Per-file problems (an unreadable file, a backend refusal, a destination that
already exists) are *recorded* in the analysis report or the execution records
rather than raised out of the pipeline. Only the errors below that describe
the whole run (bad root path, unwritable target, broken config) are fatal.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class OrganizerError(Exception):
    """Base class for all known, user-facing errors in the organizer domain."""

# ---------------------------------------------------------------------------
# Path / scan errors (fatal, raised before analysis begins)
# ---------------------------------------------------------------------------

class PathError(OrganizerError):
    """Base class for errors related to input paths and filesystem layout."""


ScanError = PathError


class PathNotFoundError(PathError):
    """Raised when the provided root path does not exist.

    Example: user runs `foldwise organize /not/a/real/path`.
    """


class PathNotDirectoryError(PathError):
    """Raised when the provided root path exists but is not a directory."""


class PathPermissionError(PathError):
    """Raised when the root directory cannot be listed."""


class NoFilesFoundError(PathError):
    """Raised when the scan completes successfully but finds no files.

    The CLI treats this as a soft error and exits with code 0.
    """

# ---------------------------------------------------------------------------
# Configuration / environment errors
# ---------------------------------------------------------------------------

class ConfigError(OrganizerError):
    """Raised when the saved configuration is malformed or invalid."""


class EnvError(OrganizerError):
    """Base class for errors related to environment variables or .env files."""


class MissingApiKeyError(EnvError):
    """Raised when the API key for the selected provider is not set."""

# ---------------------------------------------------------------------------
# Extraction errors (per file, recorded as analysis failures)
# ---------------------------------------------------------------------------

class ExtractionError(OrganizerError):
    """Raised by the preview extractor when a file cannot be summarized.

    `kind` is one of: "unreadable", "permission-denied", "corrupt",
    "unsupported-encoding".
    """

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind

# ---------------------------------------------------------------------------
# Plan errors
# ---------------------------------------------------------------------------

class PlanError(OrganizerError):
    """Base class for errors raised while building or editing a plan."""


class RefinementError(PlanError):
    """Raised when a plan edit is rejected. The plan is left unchanged.

    `conflict` is the plan path (relative, '/'-separated) the edit collided
    with, when the rejection is caused by a sibling-label collision.
    """

    def __init__(self, message: str, conflict: Optional[str] = None) -> None:
        super().__init__(message)
        self.conflict = conflict


class PlanInvariantError(PlanError):
    """Raised when a plan tree violates its structural invariants."""


class FrozenPlanError(PlanError):
    """Raised when an edit is attempted on a plan frozen for execution."""

# ---------------------------------------------------------------------------
# Execution / logging errors
# ---------------------------------------------------------------------------

class ExecutionError(OrganizerError):
    """Base class for errors that occur while applying an organization plan."""


class TargetNotWritableError(ExecutionError):
    """Raised when the target root itself cannot be written to.

    Per-file failures (a single permission error, an occupied destination)
    are recorded in the execution records and never raise.
    """

    def __init__(self, root: Path, reason: str) -> None:
        super().__init__(f"Target directory is not writable: {root} ({reason})")
        self.root = root


class LoggingError(ExecutionError):
    """Raised when the tool fails to write its execution log.

    Example: log directory is not writable or the CSV cannot be created.
    """
