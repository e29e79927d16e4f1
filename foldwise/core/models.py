from __future__ import annotations
"""
Core domain models for foldwise.

These types are passed between:
- scanner -> extractor -> analyzer -> planner -> executor -> CLI
and let the console layer (Rich output) render summaries without knowing
internal implementation details.

Scan-time and analysis-time values are frozen dataclasses. The plan tree is
the one mutable structure; the planner only ever edits copies of it, and a
tree is frozen before it is handed to the executor.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

import pandas as pd

from .errors import FrozenPlanError

# ---------------------------------------------------------------------------
# Scanning / analysis
# ---------------------------------------------------------------------------

class ContentKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    PDF = "pdf"
    AUDIO = "audio"
    VIDEO = "video"
    ARCHIVE = "archive"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FileEntry:
    """
    One scanned source file and its static metadata.

    The path doubles as the raw-content handle and as the entry's identity
    for the rest of the run.
    """

    path: Path
    size_bytes: int
    kind: ContentKind
    mime: Optional[str] = None

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class ContentPreview:
    """Bounded summary of a file's content, the unit sent to a naming backend."""

    entry: FileEntry
    summary: str
    truncated: bool = False
    details: Dict[str, object] = field(default_factory=dict, compare=False)
    # Category paths ('documents/finance') other files of this run were
    # already given, so the backend can reuse them.
    known_categories: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AnalysisResult:
    """A suggested leaf name and category path for one file."""

    entry: FileEntry
    suggested_name: str
    category_path: Tuple[str, ...]
    confidence: Optional[float] = None
    explanation: Optional[str] = None


class FailureStage(str, Enum):
    EXTRACTION = "extraction"
    BACKEND = "backend"


@dataclass(frozen=True)
class AnalysisFailure:
    """Recorded instead of an AnalysisResult when a file could not be analyzed."""

    entry: FileEntry
    stage: FailureStage
    kind: str
    message: str
    attempts: int = 0


@dataclass
class AnalysisReport:
    """
    Output of the analyzer pool: one outcome per scheduled entry, keyed by path.

    Entries that never ran because the pool was cancelled are listed in
    `pending` and appear in neither mapping.
    """

    total: int
    results: Dict[Path, AnalysisResult] = field(default_factory=dict)
    failures: Dict[Path, AnalysisFailure] = field(default_factory=dict)
    pending: List[FileEntry] = field(default_factory=list)
    cancelled: bool = False
    max_in_flight: int = 0

    @property
    def succeeded(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def completed(self) -> int:
        return self.succeeded + self.failed

# ---------------------------------------------------------------------------
# Plan tree
# ---------------------------------------------------------------------------

@dataclass
class FileAssignment:
    """Leaf of the plan: destination name for exactly one source file."""

    name: str
    entry: FileEntry
    result: Optional[AnalysisResult] = None

    @property
    def source(self) -> Path:
        return self.entry.path


@dataclass
class DirectoryNode:
    """Directory of the plan; children are keyed by their label."""

    label: str
    children: Dict[str, "PlanNode"] = field(default_factory=dict)

    def directories(self) -> List["DirectoryNode"]:
        return [c for c in self.children.values() if isinstance(c, DirectoryNode)]

    def files(self) -> List[FileAssignment]:
        return [c for c in self.children.values() if isinstance(c, FileAssignment)]


PlanNode = Union[DirectoryNode, FileAssignment]
PlanPath = Tuple[str, ...]


def node_label(node: PlanNode) -> str:
    return node.label if isinstance(node, DirectoryNode) else node.name


class PlanTree:
    """
    Proposed target hierarchy, rooted at an unnamed directory that stands
    for the organize root.
    """

    def __init__(self, root: Optional[DirectoryNode] = None) -> None:
        self.root = root if root is not None else DirectoryNode(label="")
        self._frozen = False

    # -- state -------------------------------------------------------------

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "PlanTree":
        self._frozen = True
        return self

    def ensure_mutable(self) -> None:
        if self._frozen:
            raise FrozenPlanError("Plan is frozen for execution and cannot be edited.")

    def copy(self) -> "PlanTree":
        """Deep copy of the tree structure. FileEntry values are shared (immutable)."""
        memo = {}
        for _, assignment in self.iter_assignments():
            memo[id(assignment.entry)] = assignment.entry
            if assignment.result is not None:
                memo[id(assignment.result)] = assignment.result
        return PlanTree(copy.deepcopy(self.root, memo))

    # -- traversal ---------------------------------------------------------

    def iter_directories(self) -> Iterator[Tuple[PlanPath, DirectoryNode]]:
        """Yield (path, node) for every directory below the root, parents first."""
        queue: List[Tuple[PlanPath, DirectoryNode]] = [((), self.root)]
        while queue:
            path, node = queue.pop(0)
            for label in sorted(node.children):
                child = node.children[label]
                if isinstance(child, DirectoryNode):
                    child_path = path + (label,)
                    yield child_path, child
                    queue.append((child_path, child))

    def iter_assignments(self) -> Iterator[Tuple[PlanPath, FileAssignment]]:
        """Yield (directory path, assignment) for every leaf, depth-first by label."""
        stack: List[Tuple[PlanPath, DirectoryNode]] = [((), self.root)]
        while stack:
            path, node = stack.pop()
            for label in sorted(node.children, reverse=True):
                child = node.children[label]
                if isinstance(child, DirectoryNode):
                    stack.append((path + (label,), child))
            for label in sorted(node.children):
                child = node.children[label]
                if isinstance(child, FileAssignment):
                    yield path, child

    def find(self, path: PlanPath) -> Optional[PlanNode]:
        node: PlanNode = self.root
        for label in path:
            if not isinstance(node, DirectoryNode) or label not in node.children:
                return None
            node = node.children[label]
        return node

    def assignment_for(self, source: Path) -> Optional[Tuple[PlanPath, FileAssignment]]:
        for path, assignment in self.iter_assignments():
            if assignment.source == source:
                return path, assignment
        return None

    # -- views -------------------------------------------------------------

    @property
    def file_count(self) -> int:
        return sum(1 for _ in self.iter_assignments())

    @property
    def is_empty(self) -> bool:
        return not self.root.children

    def to_dict(self) -> dict:
        """Plain structural view; two plans are identical iff their dicts are equal."""

        def _walk(node: DirectoryNode) -> dict:
            out: dict = {}
            for label in sorted(node.children):
                child = node.children[label]
                if isinstance(child, DirectoryNode):
                    out[label] = _walk(child)
                else:
                    out[label] = str(child.source)
            return out

        return _walk(self.root)

    def moves(self, root: Path) -> List[Tuple[Path, Path]]:
        """(source, destination) pairs for every assignment, relative to `root`."""
        return [
            (assignment.source, root.joinpath(*path, assignment.name))
            for path, assignment in self.iter_assignments()
        ]

# ---------------------------------------------------------------------------
# Planning / summary models
# ---------------------------------------------------------------------------

@dataclass
class PlanCategorySummary:
    """
    Aggregated summary for a single top-level category in the plan.

    - Category
    - Number of files
    - Total size in MB
    - Average confidence (where the backend reported one)
    - Sample destination names
    """

    category: str
    file_count: int
    total_size_mb: float
    avg_confidence: Optional[float]
    sample_files: List[str]


@dataclass
class PlanSummary:
    """
    Full organization plan summary for a single run.

    Produced by the planner; consumed by the console helpers to render Rich
    tables and overview text.
    """

    root_path: Path
    # One row per assignment with columns:
    # - source, destination, category, new_name, size_bytes, confidence
    df: pd.DataFrame

    categories: List[PlanCategorySummary]

    total_files: int
    total_size_mb: float

# ---------------------------------------------------------------------------
# Execution models
# ---------------------------------------------------------------------------

class ExecutionOutcome(str, Enum):
    PLANNED = "planned"
    MOVED = "moved"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ExecutionRecord:
    """
    Outcome of realizing a single FileAssignment.

    `error_kind` is one of "destination-exists", "permission-denied",
    "source-missing", "directory-failed", "os-error" for failures, and
    "already-in-place" for skips.
    """

    source: Path
    destination: Path
    outcome: ExecutionOutcome
    timestamp: datetime
    error_kind: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ExecutionReport:
    records: List[ExecutionRecord]
    dry_run: bool
    log_path: Optional[Path] = None
    log_error: Optional[str] = None

    def count(self, outcome: ExecutionOutcome) -> int:
        return sum(1 for r in self.records if r.outcome is outcome)

    def to_frame(self) -> pd.DataFrame:
        return records_frame(self.records)


RECORD_COLUMNS = ["source", "destination", "outcome", "timestamp", "error_kind", "error"]


def records_frame(records: Iterable[ExecutionRecord]) -> pd.DataFrame:
    """One row per record, paths and timestamps as strings."""
    return pd.DataFrame(
        [
            {
                "source": str(r.source),
                "destination": str(r.destination),
                "outcome": r.outcome.value,
                "timestamp": r.timestamp.isoformat(),
                "error_kind": r.error_kind,
                "error": r.error,
            }
            for r in records
        ],
        columns=RECORD_COLUMNS,
    )
