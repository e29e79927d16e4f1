from __future__ import annotations

"""
Console utilities for the `foldwise` CLI.

This module centralizes **all** user-facing terminal output and uses Rich
for styling, tables and trees. Typer command handlers should call these
helpers instead of printing directly.
"""

from pathlib import Path
from typing import Mapping, Sequence, Tuple

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from ..core.analyzer import failures_as_list
from ..core.feedback import FeedbackOutcome, describe_edit
from ..core.models import (
    AnalysisReport,
    DirectoryNode,
    ExecutionOutcome,
    ExecutionReport,
    PlanSummary,
    PlanTree,
)
from .paths import display_path

# Single shared console instance
console = Console()

# Directory listing limits for --show-tree.
TREE_MAX_DEPTH = 3
TREE_MAX_ENTRIES = 50

_OUTCOME_STYLES = {
    ExecutionOutcome.PLANNED: "cyan",
    ExecutionOutcome.MOVED: "green",
    ExecutionOutcome.SKIPPED: "yellow",
    ExecutionOutcome.FAILED: "red",
}

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _format_confidence(value: float | None) -> str:
    """Format an average confidence for display in tables."""
    if value is None:
        return "-"
    return f"{value:.2f}"


def _add_plan_node(branch: Tree, node: DirectoryNode) -> None:
    for label in sorted(node.children):
        child = node.children[label]
        if isinstance(child, DirectoryNode):
            _add_plan_node(branch.add(f"[bold blue]{escape(label)}/[/bold blue]"), child)
    for label in sorted(node.children):
        child = node.children[label]
        if not isinstance(child, DirectoryNode):
            note = "" if child.name == child.entry.name else f" [dim]<- {escape(child.entry.name)}[/dim]"
            branch.add(f"{escape(label)}{note}")

# ---------------------------------------------------------------------------
# Generic helpers (errors, warnings, success)
# ---------------------------------------------------------------------------

def print_error(message: str) -> None:
    """Print a generic error message in bold red."""
    console.print(f"[bold red]{escape(message)}[/bold red]")

def print_warning(message: str) -> None:
    """Print a generic warning message in yellow."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {escape(message)}")

def print_success(message: str) -> None:
    console.print(f"[green]{escape(message)}[/green]")

def print_info(message: str) -> None:
    console.print(message)

def print_no_files_were_moved() -> None:
    console.print("No files were moved.")

# ---------------------------------------------------------------------------
# Pipeline stages
# ---------------------------------------------------------------------------

def print_start(path: Path | str, *, read_only: bool) -> None:
    verb = "Scanning" if read_only else "Analyzing folder"
    console.print(f"[bold]{verb} '{escape(str(path))}'...[/bold]")


def print_empty_directory(path: Path | str) -> None:
    console.print(f"No files found under '{path}'.")
    print_no_files_were_moved()


def print_opaque_dirs(skipped: Sequence[Tuple[Path, str]], root: Path) -> None:
    """Directories kept together and left where they are."""
    if not skipped:
        return
    console.print(f"Keeping {len(skipped)} folder(s) together, left where they are:")
    for path, reason in skipped:
        console.print(f" - {escape(display_path(path, root))}/ [dim]({escape(reason)})[/dim]")


def print_scanned(count: int, provider: str, model: str, concurrency: int) -> None:
    console.print(
        f"Found {count} file(s). Analyzing with {provider} ({model}), "
        f"up to {concurrency} at a time..."
    )


def print_directory_tree(root: Path) -> None:
    """
    Print the current layout of `root` (hidden entries skipped), limited to
    TREE_MAX_DEPTH levels and TREE_MAX_ENTRIES entries per directory.
    """
    tree = Tree(f"[bold]{root}[/bold]")

    def _walk(path: Path, branch: Tree, depth: int) -> None:
        try:
            children = sorted(
                (p for p in path.iterdir() if not p.name.startswith(".")),
                key=lambda p: (not p.is_dir(), p.name.lower()),
            )
        except OSError as exc:
            branch.add(f"[red]<unreadable: {exc.strerror or exc}>[/red]")
            return
        for i, child in enumerate(children):
            if i == TREE_MAX_ENTRIES:
                branch.add(f"[dim]... {len(children) - i} more[/dim]")
                break
            if child.is_dir() and not child.is_symlink():
                sub = branch.add(f"[bold blue]{escape(child.name)}/[/bold blue]")
                if depth < TREE_MAX_DEPTH:
                    _walk(child, sub, depth + 1)
            else:
                branch.add(escape(child.name))

    _walk(root, tree, 1)
    console.print("[bold]Current layout:[/bold]")
    console.print(tree)

# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

def print_analysis_overview(report: AnalysisReport) -> None:
    console.print(
        f"Analyzed {report.completed}/{report.total} file(s): "
        f"{report.succeeded} named, {report.failed} failed."
    )


def print_analysis_failures(report: AnalysisReport, root: Path) -> None:
    """Table of files that could not be analyzed, with stage and reason."""
    if not report.failures:
        return
    table = Table("File", "Stage", "Kind", "Attempts", "Reason", title="Analysis failures")
    for failure in failures_as_list(report):
        table.add_row(
            escape(display_path(failure.entry.path, root)),
            failure.stage.value,
            failure.kind,
            str(failure.attempts) if failure.attempts else "-",
            escape(failure.message),
        )
    console.print(table)
    console.print("These files stay where they are.")


def print_pending(report: AnalysisReport, root: Path) -> None:
    """Files that were never analyzed because the run was interrupted."""
    if not report.pending:
        return
    print_warning(f"Analysis interrupted; {len(report.pending)} file(s) never completed:")
    for entry in report.pending:
        console.print(f" - {escape(display_path(entry.path, root))}")

# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------

def print_plan_tree(plan: PlanTree, root: Path) -> None:
    tree = Tree(f"[bold]{root}[/bold]")
    _add_plan_node(tree, plan.root)
    console.print("[bold]Proposed structure:[/bold]")
    console.print(tree)


def print_plan_summary(summary: PlanSummary) -> None:
    """Per-category table followed by sample destination names."""
    console.print(
        f"[bold]Proposed organization plan for: {summary.root_path}[/bold]"
    )
    console.print(
        f"Total files: {summary.total_files} | "
        f"Total size: {summary.total_size_mb:.2f} MB"
    )

    table = Table("Category", "Files", "Size (MB)", "Avg confidence")
    for cat in summary.categories:
        table.add_row(
            escape(cat.category),
            str(cat.file_count),
            f"{cat.total_size_mb:.2f}",
            _format_confidence(cat.avg_confidence),
        )
    console.print(table)

    for cat in summary.categories:
        if not cat.sample_files:
            continue
        console.print(f"[bold]{escape(cat.category)}[/bold] e.g. " + escape(", ".join(cat.sample_files)))


def print_empty_plan() -> None:
    console.print("Nothing to organize: no file could be analyzed.")


def print_refine_help() -> None:
    console.print(
        "Edit commands:\n"
        "  mv <file> <dir/.../new_name>   move or rename a file in the plan\n"
        "  rename <dir/...> <new_label>   relabel a directory\n"
        "  ask <feedback>                 describe a change in words and let the backend edit the plan\n"
        "  done                           back to the apply prompt"
    )


def print_feedback_outcome(outcome: FeedbackOutcome) -> None:
    """What the backend changed in response to feedback, and which edits were refused."""
    if not outcome.applied and not outcome.rejected:
        console.print("The backend suggested no changes.")
        return
    for edit in outcome.applied:
        console.print(f"[green]applied[/green]  {escape(describe_edit(edit))}")
    for edit, reason in outcome.rejected:
        console.print(f"[yellow]skipped[/yellow]  {escape(edit)} [dim]({escape(reason)})[/dim]")


def print_no_changes_applied() -> None:
    console.print("No changes applied.")
    print_no_files_were_moved()

# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

def print_execution_report(report: ExecutionReport, root: Path) -> None:
    """One row per file assignment, then the outcome counts."""
    title = "Dry run (nothing was changed)" if report.dry_run else "Execution report"
    table = Table("Source", "Destination", "Outcome", "Detail", title=title)
    for record in report.records:
        style = _OUTCOME_STYLES[record.outcome]
        detail = record.error_kind or ""
        if record.error:
            detail = f"{detail}: {record.error}"
        table.add_row(
            escape(display_path(record.source, root)),
            escape(display_path(record.destination, root)),
            f"[{style}]{record.outcome.value}[/{style}]",
            escape(detail),
        )
    console.print(table)

    counts = ", ".join(
        f"{report.count(outcome)} {outcome.value}"
        for outcome in ExecutionOutcome
        if report.count(outcome)
    )
    console.print(f"Files: {len(report.records)} ({counts or 'none'})")

    if report.dry_run:
        console.print("[green]Dry run complete. No files were moved.[/green]")
    elif report.log_path is not None:
        console.print(f"Execution log written to '{report.log_path}'.")
    elif report.log_error is not None:
        print_error(f"Error: Failed to write execution log: {report.log_error}")

# ---------------------------------------------------------------------------
# Command: foldwise version / config
# ---------------------------------------------------------------------------

def print_version(version: str, python_version: str, provider: str, key_var: str | None, key_set: bool) -> None:
    console.print(f"[bold]foldwise {version}[/bold]")
    console.print(f"Python {python_version}")
    console.print(f"Provider: {provider}")
    if key_var is not None:
        console.print(f"{key_var}: {'set' if key_set else 'not set'}")


def print_error_missing_api_key(message: str) -> None:
    print_error(f"Error: {message}")
    print_no_files_were_moved()


def print_settings(settings: Mapping[str, object], path: Path) -> None:
    table = Table("Setting", "Value", title=f"Settings ({path})")
    for key, value in settings.items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


def print_models(provider: str, models: Sequence[str], current: str | None) -> None:
    console.print(f"[bold]Models available from {provider}:[/bold]")
    for name in models:
        marker = " [green](selected)[/green]" if name == current else ""
        console.print(f" - {name}{marker}")