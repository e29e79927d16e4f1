from __future__ import annotations

"""
Executor for foldwise.

Responsibilities:
- Take a validated PlanTree + root path.
- Dry run: predict what each assignment would do, touching nothing.
- Real run:
    - Create the plan's directories top-down (parent before child)
    - Move every source file to its destination
    - Record one ExecutionRecord per assignment
      (moved / skipped: <reason> / failed: <reason>)
- Pass the records to logger.write_execution_log(...)

Per-file problems never abort the run and nothing is rolled back; the report
is the complete account of what happened. Only the target root being
unwritable is fatal.
"""

import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import LoggingError, TargetNotWritableError
from .logger import write_execution_log
from .models import (
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionReport,
    PlanPath,
    PlanTree,
)
from .planner import validate_plan

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".foldwise-tmp-"

# Error kinds recorded on ExecutionRecord.error_kind.
ALREADY_IN_PLACE = "already-in-place"
DESTINATION_EXISTS = "destination-exists"
SOURCE_MISSING = "source-missing"
PERMISSION_DENIED = "permission-denied"
DIRECTORY_FAILED = "directory-failed"
OS_ERROR = "os-error"

FileKey = Tuple[int, int]


@dataclass
class _Move:
    index: int
    source: Path
    destination: Path
    dir_path: PlanPath
    original_source: Path
    key: Optional[FileKey] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _file_key(path: Path) -> Optional[FileKey]:
    """(device, inode) of `path` without following a final symlink; None if absent."""
    try:
        st = os.lstat(path)
    except OSError:
        return None
    return st.st_dev, st.st_ino


def _error_kind(exc: OSError) -> str:
    if isinstance(exc, PermissionError):
        return PERMISSION_DENIED
    if isinstance(exc, FileNotFoundError):
        return SOURCE_MISSING
    return OS_ERROR


def _temp_path(directory: Path, name: str) -> Path:
    return directory / f"{TEMP_PREFIX}{uuid.uuid4().hex[:8]}-{name}"


def _failed_parent(path: PlanPath, failed_dirs: Dict[PlanPath, str]) -> Optional[str]:
    for depth in range(len(path), 0, -1):
        reason = failed_dirs.get(path[:depth])
        if reason is not None:
            return reason
    return None


class _Run:
    """State of one real execution; see execute()."""

    def __init__(self, plan: PlanTree, root: Path) -> None:
        self.root = root
        self.moves: List[_Move] = [
            _Move(index=i, source=src, destination=dst, dir_path=dir_path, original_source=src)
            for i, ((dir_path, _assignment), (src, dst)) in enumerate(
                zip(plan.iter_assignments(), plan.moves(root))
            )
        ]
        self.records: Dict[int, ExecutionRecord] = {}
        # Sources of this plan that still sit somewhere on disk, by identity.
        # A rename keeps the identity, so stashed files stay tracked. Hard
        # links share one identity, hence a list per key.
        self.pending: Dict[FileKey, List[_Move]] = {}
        for move in self.moves:
            move.key = _file_key(move.source)
            if move.key is not None:
                self.pending.setdefault(move.key, []).append(move)

    def occupant(self, path: Path) -> Optional[_Move]:
        """Pending move whose source currently sits at `path`, if any."""
        candidates = self.pending.get(_file_key(path))
        if not candidates:
            return None
        for move in candidates:
            if move.source == path:
                return move
        # Case-insensitive filesystems report the same file under any spelling.
        folded = str(path).casefold()
        for move in candidates:
            if str(move.source).casefold() == folded:
                return move
        return None

    # -- records -----------------------------------------------------------

    def record(
        self,
        move: _Move,
        outcome: ExecutionOutcome,
        error_kind: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        self.records[move.index] = ExecutionRecord(
            source=move.original_source,
            destination=move.destination,
            outcome=outcome,
            timestamp=_now(),
            error_kind=error_kind,
            error=error,
        )
        siblings = self.pending.get(move.key) if move.key is not None else None
        if siblings and move in siblings:
            siblings.remove(move)
            if not siblings:
                del self.pending[move.key]

    def stash(self, move: _Move, directory: Path) -> None:
        """Rename a pending source out of the way, inside `directory`."""
        tmp = _temp_path(directory, move.source.name)
        os.rename(move.source, tmp)
        logger.debug("Stashed %s as %s", move.source, tmp)
        move.source = tmp

    # -- directories -------------------------------------------------------

    def create_directories(self, plan: PlanTree) -> Dict[PlanPath, str]:
        failed: Dict[PlanPath, str] = {}
        for path, _node in plan.iter_directories():
            inherited = _failed_parent(path[:-1], failed)
            if inherited is not None:
                failed[path] = inherited
                continue

            target = self.root.joinpath(*path)
            if target.is_dir():
                continue

            if os.path.lexists(target):
                blocker = self.occupant(target)
                if blocker is None:
                    failed[path] = f"'{target}' exists and is not a directory"
                    logger.error("Cannot create directory: %s", failed[path])
                    continue
                try:
                    self.stash(blocker, target.parent)
                except OSError as exc:
                    failed[path] = f"could not move '{target}' out of the way: {exc}"
                    logger.error("Cannot create directory: %s", failed[path])
                    continue

            try:
                target.mkdir()
            except OSError as exc:
                failed[path] = f"could not create directory '{target}': {exc}"
                logger.error("Cannot create directory: %s", failed[path])
        return failed

    # -- moves -------------------------------------------------------------

    def attempt(self, move: _Move) -> bool:
        """Try one move. Returns False when it has to wait for another source."""
        src, dst = move.source, move.destination

        if not os.path.lexists(src):
            self.record(move, ExecutionOutcome.FAILED, SOURCE_MISSING, f"source file not found: {src}")
            return True

        if src == dst:
            self.record(move, ExecutionOutcome.SKIPPED, ALREADY_IN_PLACE)
            return True

        if os.path.lexists(dst):
            occupant = self.occupant(dst)
            if occupant is None:
                self.record(
                    move,
                    ExecutionOutcome.FAILED,
                    DESTINATION_EXISTS,
                    f"destination already exists: {dst}",
                )
                return True
            if occupant is not move:
                return False
            # Same file under another spelling: a case-only rename.

        try:
            if dst.exists() and os.path.samefile(src, dst):
                os.rename(src, dst)
            else:
                shutil.move(str(src), str(dst))
        except OSError as exc:
            kind = _error_kind(exc)
            logger.error("Failed to move %s -> %s: %s", src, dst, exc)
            self.record(move, ExecutionOutcome.FAILED, kind, str(exc))
            return True

        logger.info("Moved %s -> %s", move.original_source, dst)
        self.record(move, ExecutionOutcome.MOVED)
        return True

    def run_moves(self, queue: List[_Move]) -> None:
        while queue:
            deferred = [move for move in queue if not self.attempt(move)]
            if len(deferred) < len(queue):
                queue = deferred
                continue

            # Every remaining move waits on another one, so at least one
            # cycle exists. Park a member under a temporary name so its
            # slot frees up.
            move = self._cycle_member(deferred[0])
            try:
                self.stash(move, move.destination.parent)
            except OSError as exc:
                logger.error("Failed to break move cycle at %s: %s", move.source, exc)
                self.record(move, ExecutionOutcome.FAILED, _error_kind(exc), str(exc))
                deferred = [m for m in deferred if m is not move]
            queue = deferred

    def _cycle_member(self, move: _Move) -> _Move:
        seen = set()
        while move.index not in seen:
            seen.add(move.index)
            occupant = self.occupant(move.destination)
            if occupant is None:
                return move
            move = occupant
        return move


def _predict(plan: PlanTree, root: Path) -> List[ExecutionRecord]:
    """Dry-run records, based on read-only checks against the current disk."""
    sources: Dict[FileKey, List[Path]] = {}
    for src, _dst in plan.moves(root):
        key = _file_key(src)
        if key is not None:
            sources.setdefault(key, []).append(src)

    def _planned(path: Path) -> bool:
        folded = str(path).casefold()
        return any(str(src).casefold() == folded for src in sources.get(_file_key(path), ()))

    blocked: Dict[PlanPath, str] = {}
    for path, _node in plan.iter_directories():
        target = root.joinpath(*path)
        if os.path.lexists(target) and not target.is_dir() and not _planned(target):
            blocked[path] = f"'{target}' exists and is not a directory"

    records: List[ExecutionRecord] = []
    for (dir_path, _assignment), (src, dst) in zip(plan.iter_assignments(), plan.moves(root)):
        outcome, kind, error = ExecutionOutcome.PLANNED, None, None
        reason = _failed_parent(dir_path, blocked)
        if not os.path.lexists(src):
            outcome, kind, error = ExecutionOutcome.FAILED, SOURCE_MISSING, f"source file not found: {src}"
        elif src == dst:
            outcome, kind = ExecutionOutcome.SKIPPED, ALREADY_IN_PLACE
        elif reason is not None:
            outcome, kind, error = ExecutionOutcome.FAILED, DIRECTORY_FAILED, reason
        elif os.path.lexists(dst) and not _planned(dst):
            outcome, kind, error = (
                ExecutionOutcome.FAILED,
                DESTINATION_EXISTS,
                f"destination already exists: {dst}",
            )
        records.append(
            ExecutionRecord(
                source=src, destination=dst, outcome=outcome, timestamp=_now(),
                error_kind=kind, error=error,
            )
        )
    return records


def execute(
    plan: PlanTree,
    root_path: Path,
    *,
    dry_run: bool = False,
    write_log: bool = True,
) -> ExecutionReport:
    """
    Realize an approved plan under `root_path`.

    Parameters
    ----------
    plan : PlanTree
        The plan to apply. It is validated, then frozen for the rest of the run.
    root_path : Path
        Directory the plan's root stands for.
    dry_run : bool
        If True, nothing on disk changes and no log is written; each record
        says what a real run would most likely do.
    write_log : bool
        Write the CSV execution log after a real run.

    Returns
    -------
    ExecutionReport
        One record per file assignment, in plan order.

    Raises
    ------
    PlanInvariantError
        If the plan is not internally consistent.
    TargetNotWritableError
        If the root cannot be written to at all. Nothing has been touched.
    """
    root_path = Path(root_path).resolve()
    validate_plan(plan)
    plan.freeze()

    if dry_run:
        return ExecutionReport(records=_predict(plan, root_path), dry_run=True)

    if not root_path.is_dir():
        raise TargetNotWritableError(root_path, "not a directory")
    if not os.access(root_path, os.W_OK | os.X_OK):
        raise TargetNotWritableError(root_path, "permission denied")

    run = _Run(plan, root_path)
    failed_dirs = run.create_directories(plan)

    queue: List[_Move] = []
    for move in run.moves:
        reason = _failed_parent(move.dir_path, failed_dirs)
        if reason is not None:
            run.record(move, ExecutionOutcome.FAILED, DIRECTORY_FAILED, reason)
        else:
            queue.append(move)
    run.run_moves(queue)

    report = ExecutionReport(
        records=[run.records[i] for i in sorted(run.records)],
        dry_run=False,
    )
    logger.info(
        "Execution finished: %d moved, %d skipped, %d failed",
        report.count(ExecutionOutcome.MOVED),
        report.count(ExecutionOutcome.SKIPPED),
        report.count(ExecutionOutcome.FAILED),
    )

    if write_log:
        try:
            report.log_path = write_execution_log(report.records, root_path)
        except LoggingError as exc:
            logger.error("%s", exc)
            report.log_error = str(exc)
    return report
