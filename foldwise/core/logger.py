from __future__ import annotations
"""
Execution log writer for foldwise.

Responsibilities:
- Write a CSV log of per-file execution outcomes.

Expected usage:
- The executor builds a list[ExecutionRecord] while moving files.
- At the end of a real (non dry-run) run it calls
  write_execution_log(records, root_path) and reports the path.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Sequence

from .errors import LoggingError
from .models import ExecutionRecord, records_frame

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

# Keep logs inside the organized root so a run's audit trail travels with it.
# The scanner never descends into this directory.
DEFAULT_LOG_DIRNAME = ".foldwise"
DEFAULT_LOG_SUBDIR = "logs"
DEFAULT_LOG_PREFIX = "execution_log"


def write_execution_log(
    records: Sequence[ExecutionRecord] | Iterable[ExecutionRecord],
    root_path: Path,
    *,
    log_dirname: str = DEFAULT_LOG_DIRNAME,
    log_subdir: str = DEFAULT_LOG_SUBDIR,
    filename_prefix: str = DEFAULT_LOG_PREFIX,
) -> Path:
    """
    Write a CSV execution log and return the written file path.

    The log is written under:
        {root_path}/{log_dirname}/{log_subdir}/{filename_prefix}_YYYYmmdd_HHMMSSZ.csv

    A file is always written (even with 0 records) so the CLI can reliably
    report a log path.

    Raises
    ------
    LoggingError
        If the log directory cannot be created or the file cannot be written.
    """
    root_path = Path(root_path)

    log_dir = root_path / log_dirname / log_subdir
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise LoggingError(f"Failed to create log directory: {log_dir}") from exc

    # Timestamped filename (UTC) for stable ordering; a counter keeps two
    # runs in the same second from overwriting each other.
    ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%SZ")
    log_path = log_dir / f"{filename_prefix}_{ts}.csv"
    n = 1
    while log_path.exists():
        n += 1
        log_path = log_dir / f"{filename_prefix}_{ts}_{n}.csv"

    record_list: List[ExecutionRecord] = list(records)
    df = records_frame(record_list)

    try:
        df.to_csv(log_path, index=False)
    except OSError as exc:
        raise LoggingError(f"Failed to write execution log to '{log_path}'.") from exc

    return log_path
