from __future__ import annotations
"""
Planner for foldwise.

Responsibilities:

- Fold the analysis results into one PlanTree:
  * results are processed in source-path order, so identical inputs always
    give an identical tree whatever order the analyzer finished in;
  * directories along each category path are created as needed;
  * the file lands at the leaf under its suggested name.
- Resolve collisions deterministically:
  * file vs file: the later file becomes `name_2.ext`, `name_3.ext`, ...
  * directory vs file: the directory keeps its label and the file is
    renamed. Directories are never renamed, so files already placed inside
    them stay valid.
  * Labels are compared case-insensitively, because the target filesystem
    may be.
- Refine a plan with user edits (move a file, relabel a directory). Every
  edit is applied to a copy, the copy is re-validated, and the original is
  returned untouched when the edit is rejected.
- Summarize a plan per top-level category for the console.
"""

from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Dict, Iterable, List, Mapping, Optional, Set, Union

import pandas as pd

from .backend import is_valid_label
from .errors import PlanInvariantError, RefinementError
from .models import (
    AnalysisFailure,
    AnalysisResult,
    DirectoryNode,
    FileAssignment,
    PlanCategorySummary,
    PlanPath,
    PlanSummary,
    PlanTree,
    node_label,
)

DEFAULT_SUFFIX_FORMAT = "{stem}_{n}{suffix}"

# First counter used when disambiguating: report.pdf -> report_2.pdf
FIRST_SUFFIX = 2

# ---------------------------------------------------------------------------
# Name helpers
# ---------------------------------------------------------------------------

def _key(label: str) -> str:
    return label.casefold()


def _taken(directory: DirectoryNode) -> Set[str]:
    return {_key(label) for label in directory.children}


def _split_name(name: str) -> tuple[str, str]:
    # Keep compound archive suffixes together: backup.tar.gz -> backup_2.tar.gz
    pure = PurePath(name)
    suffixes = pure.suffixes
    if len(suffixes) >= 2 and suffixes[-2].lower() == ".tar":
        suffix = "".join(suffixes[-2:])
    else:
        suffix = pure.suffix
    stem = name[: len(name) - len(suffix)] if suffix else name
    if not stem:
        # Dot-files such as ".env" have no stem/suffix split.
        return name, ""
    return stem, suffix


def disambiguate(name: str, taken: Set[str], suffix_format: str = DEFAULT_SUFFIX_FORMAT) -> str:
    """
    Return `name`, or the first `suffix_format` variant of it, whose
    case-folded form is not in `taken`.
    """
    if _key(name) not in taken:
        return name
    stem, suffix = _split_name(name)
    n = FIRST_SUFFIX
    while True:
        candidate = suffix_format.format(stem=stem, n=n, suffix=suffix)
        if _key(candidate) not in taken:
            return candidate
        n += 1


def _find_child(directory: DirectoryNode, label: str) -> Optional[str]:
    """Actual key of the child matching `label` case-insensitively."""
    wanted = _key(label)
    for existing in directory.children:
        if _key(existing) == wanted:
            return existing
    return None


def format_path(path: Iterable[str]) -> str:
    return "/".join(path)


def parse_plan_path(value: str) -> PlanPath:
    """'documents/finance/report.pdf' -> ('documents', 'finance', 'report.pdf')"""
    return tuple(part for part in value.replace("\\", "/").split("/") if part)

# ---------------------------------------------------------------------------
# Folding
# ---------------------------------------------------------------------------

class PlanBuilder:
    """Incremental fold of analysis results into a PlanTree."""

    def __init__(self, suffix_format: str = DEFAULT_SUFFIX_FORMAT) -> None:
        self.suffix_format = suffix_format
        self.tree = PlanTree()

    def ensure_directory(self, path: PlanPath) -> DirectoryNode:
        """Walk `path` from the root, creating directories where missing."""
        node = self.tree.root
        for label in path:
            existing = _find_child(node, label)
            if existing is not None and isinstance(node.children[existing], DirectoryNode):
                node = node.children[existing]
                continue
            if existing is not None:
                # A file holds the label: the directory wins, the file moves aside.
                displaced = node.children.pop(existing)
                displaced.name = disambiguate(
                    displaced.name, _taken(node) | {_key(label)}, self.suffix_format
                )
                node.children[displaced.name] = displaced
            child = DirectoryNode(label=label)
            node.children[label] = child
            node = child
        return node

    def add(self, result: AnalysisResult) -> FileAssignment:
        directory = self.ensure_directory(result.category_path)
        name = disambiguate(result.suggested_name, _taken(directory), self.suffix_format)
        assignment = FileAssignment(name=name, entry=result.entry, result=result)
        directory.children[name] = assignment
        return assignment


ResultsInput = Union[Mapping[Path, Union[AnalysisResult, AnalysisFailure]], Iterable[Union[AnalysisResult, AnalysisFailure]]]


def build_plan(results: ResultsInput, *, suffix_format: str = DEFAULT_SUFFIX_FORMAT) -> PlanTree:
    """
    Fold analysis results into a single PlanTree.

    Accepts a mapping keyed by source path (as produced by the analyzer) or
    any iterable of results. AnalysisFailure values are skipped: failed
    files are reported separately and never planned.

    Raises
    ------
    PlanInvariantError
        If the same source file appears twice in the input.
    """
    values = results.values() if isinstance(results, Mapping) else results
    ordered = sorted(
        (r for r in values if isinstance(r, AnalysisResult)),
        key=lambda r: str(r.entry.path),
    )

    builder = PlanBuilder(suffix_format)
    seen: Set[Path] = set()
    for result in ordered:
        if result.entry.path in seen:
            raise PlanInvariantError(f"Source file appears twice in the results: {result.entry.path}")
        seen.add(result.entry.path)
        builder.add(result)

    plan = builder.tree
    validate_plan(plan)
    return plan

# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_plan(plan: PlanTree) -> None:
    """
    Check the structural invariants of a plan:

    - no two siblings share a label (case-insensitively);
    - every child is stored under its own label;
    - labels are valid single path components;
    - no source file is assigned twice.
    """
    sources: Set[Path] = set()

    def _walk(node: DirectoryNode, path: PlanPath) -> None:
        seen: Dict[str, str] = {}
        for key, child in node.children.items():
            label = node_label(child)
            where = format_path(path + (label,))
            if key != label:
                raise PlanInvariantError(f"Child stored under '{key}' but labelled '{label}'")
            if not is_valid_label(label):
                raise PlanInvariantError(f"Invalid label: '{where}'")
            if _key(label) in seen:
                raise PlanInvariantError(
                    f"Sibling collision: '{where}' and '{format_path(path + (seen[_key(label)],))}'"
                )
            seen[_key(label)] = label
            if isinstance(child, DirectoryNode):
                _walk(child, path + (label,))
            else:
                if child.source in sources:
                    raise PlanInvariantError(f"Source assigned twice: {child.source}")
                sources.add(child.source)

    _walk(plan.root, ())

# ---------------------------------------------------------------------------
# Refinement
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MoveFile:
    """
    Reassign one file to a new destination.

    `target` identifies the file, either by its current plan path
    ('documents/report.pdf') or by its absolute source path. `new_path`
    is the full destination, directory labels then the file name.
    """

    target: str
    new_path: str


@dataclass(frozen=True)
class RelabelDirectory:
    """Rename the directory at `path` to `new_label`, keeping its contents."""

    path: str
    new_label: str


PlanEdit = Union[MoveFile, RelabelDirectory]


def _locate_file(plan: PlanTree, target: str) -> tuple[PlanPath, FileAssignment]:
    path = parse_plan_path(target)
    node = plan.find(path) if path else None
    if isinstance(node, FileAssignment):
        return path[:-1], node

    candidate = Path(target).expanduser()
    if candidate.is_absolute():
        found = plan.assignment_for(candidate)
        if found is not None:
            return found
    raise RefinementError(f"No file in the plan matches '{target}'")


def _prune_empty(plan: PlanTree, path: PlanPath) -> None:
    """Remove directories along `path` that no longer hold anything."""
    while path:
        parent = plan.find(path[:-1])
        node = plan.find(path)
        if isinstance(parent, DirectoryNode) and isinstance(node, DirectoryNode) and not node.children:
            del parent.children[path[-1]]
            path = path[:-1]
        else:
            return


def _apply_move(plan: PlanTree, edit: MoveFile) -> None:
    dir_path, assignment = _locate_file(plan, edit.target)
    new_path = parse_plan_path(edit.new_path)
    if not new_path:
        raise RefinementError("Destination path is empty")

    if not all(is_valid_label(p) for p in new_path):
        raise RefinementError(f"Invalid destination path '{edit.new_path}'")

    *dirs, new_name = new_path
    old_parent = plan.find(dir_path)
    assert isinstance(old_parent, DirectoryNode)
    del old_parent.children[assignment.name]

    # Walk to the destination directory without displacing anything:
    # an edit that would need to rename an existing node is rejected.
    node = plan.root
    walked: List[str] = []
    for label in dirs:
        existing = _find_child(node, label)
        walked.append(existing or label)
        if existing is None:
            child = DirectoryNode(label=label)
            node.children[label] = child
            node = child
        elif isinstance(node.children[existing], DirectoryNode):
            node = node.children[existing]
        else:
            raise RefinementError(
                f"'{format_path(walked)}' is a file in the plan, not a directory",
                conflict=format_path(walked),
            )

    clash = _find_child(node, new_name)
    if clash is not None:
        conflict = format_path(walked + [clash])
        raise RefinementError(f"'{conflict}' already exists in the plan", conflict=conflict)

    assignment.name = new_name
    node.children[new_name] = assignment
    _prune_empty(plan, dir_path)


def _apply_relabel(plan: PlanTree, edit: RelabelDirectory) -> None:
    path = parse_plan_path(edit.path)
    node = plan.find(path) if path else None
    if not isinstance(node, DirectoryNode):
        raise RefinementError(f"No directory in the plan matches '{edit.path}'")

    new_label = edit.new_label.strip()
    if not is_valid_label(new_label):
        raise RefinementError(f"Invalid directory label '{edit.new_label}'")

    parent = plan.find(path[:-1])
    assert isinstance(parent, DirectoryNode)
    clash = _find_child(parent, new_label)
    if clash is not None and clash != path[-1]:
        conflict = format_path(path[:-1] + (clash,))
        raise RefinementError(f"'{conflict}' already exists in the plan", conflict=conflict)

    del parent.children[path[-1]]
    node.label = new_label
    parent.children[new_label] = node


def refine(plan: PlanTree, edit: PlanEdit) -> PlanTree:
    """
    Apply one edit and return the edited plan.

    The edit is made on a copy which is fully re-validated before being
    returned; `plan` itself is never modified.

    Raises
    ------
    RefinementError
        If the edit targets something missing, uses an invalid label, or
        would create a sibling-label collision. `conflict` names the
        colliding plan path where there is one.
    FrozenPlanError
        If `plan` has been frozen for execution.
    """
    plan.ensure_mutable()
    candidate = plan.copy()

    if isinstance(edit, MoveFile):
        _apply_move(candidate, edit)
    elif isinstance(edit, RelabelDirectory):
        _apply_relabel(candidate, edit)
    else:
        raise RefinementError(f"Unsupported edit: {edit!r}")

    try:
        validate_plan(candidate)
    except PlanInvariantError as exc:
        raise RefinementError(f"Edit rejected: {exc}") from exc
    return candidate

# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def plan_frame(plan: PlanTree, root_path: Path) -> pd.DataFrame:
    rows = []
    for dir_path, assignment in plan.iter_assignments():
        result = assignment.result
        rows.append(
            {
                "source": str(assignment.source),
                "destination": str(root_path.joinpath(*dir_path, assignment.name)),
                "category": dir_path[0] if dir_path else "",
                "new_name": assignment.name,
                "size_bytes": assignment.entry.size_bytes,
                "confidence": result.confidence if result is not None else None,
            }
        )
    return pd.DataFrame(
        rows,
        columns=["source", "destination", "category", "new_name", "size_bytes", "confidence"],
    )


def summarize_plan(plan: PlanTree, root_path: Path) -> PlanSummary:
    """
    Build a PlanSummary: per top-level category file count, size, average
    confidence and up to 3 sample names, plus global totals.
    """
    df = plan_frame(plan, root_path)
    df["size_bytes"] = df["size_bytes"].astype(float)
    df["confidence"] = pd.to_numeric(df["confidence"], errors="coerce")

    categories: List[PlanCategorySummary] = []
    for cat, group in df.groupby("category", sort=True):
        confidences = group["confidence"].dropna()
        categories.append(
            PlanCategorySummary(
                category=str(cat) or ".",
                file_count=int(len(group)),
                total_size_mb=float(group["size_bytes"].sum() / (1024 * 1024)),
                avg_confidence=float(confidences.mean()) if len(confidences) else None,
                # Stable order by name for determinism.
                sample_files=group.sort_values("new_name")["new_name"].head(3).astype(str).tolist(),
            )
        )

    return PlanSummary(
        root_path=root_path,
        df=df,
        categories=categories,
        total_files=int(len(df)),
        total_size_mb=float(df["size_bytes"].sum() / (1024 * 1024)),
    )
