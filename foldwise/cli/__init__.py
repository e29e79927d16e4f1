from __future__ import annotations

import asyncio
import logging
import platform
import shlex
import signal
from dataclasses import asdict, replace
from pathlib import Path
from typing import List, Optional

import typer
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from .. import __version__
from ..core import planner, scanner
from ..core.analyzer import CancellationToken, RetryPolicy, analyze_async
from ..core.backend import BackendError, NamingBackend
from ..core.config import Settings, config_path, load_settings, reset_settings, update_setting
from ..core.errors import (
    ConfigError,
    MissingApiKeyError,
    NoFilesFoundError,
    OrganizerError,
    PathError,
    RefinementError,
    TargetNotWritableError,
)
from ..core.executor import execute
from ..core.feedback import refine_with_feedback
from ..core.models import AnalysisReport, FileEntry, PlanTree
from ..core.providers import DEFAULT_MODELS, Provider, create_backend
from ..utils import console
from ..utils.env import is_key_present, key_env_var
from ..utils.paths import resolve_root

app = typer.Typer(no_args_is_help=True, help="foldwise - content-aware folder organizer.")
config_app = typer.Typer(no_args_is_help=True, help="Show or change persisted settings.")
app.add_typer(config_app, name="config")

# Exit code after Ctrl-C, as a shell would report it.
EXIT_INTERRUPTED = 130

# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _setup_logging(verbose: bool, debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console.console, rich_tracebacks=debug, show_path=debug)],
        force=True,
    )
    # Client libraries are chatty at INFO.
    for name in ("httpx", "httpcore", "openai", "anthropic"):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def _settings(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    concurrency: Optional[int] = None,
) -> Settings:
    """Persisted settings with this invocation's flags applied on top."""
    try:
        settings = load_settings()
        overrides = {}
        if provider is not None:
            overrides["provider"] = provider.lower()
            if model is None and provider.lower() != settings.provider:
                overrides["model"] = None
        if model is not None:
            overrides["model"] = model
        if concurrency is not None:
            overrides["concurrency"] = concurrency
        return replace(settings, **overrides).validate()
    except ConfigError as exc:
        console.print_error(f"Error: {exc}")
        raise typer.Exit(code=1)


def _model_for(settings: Settings) -> str:
    return settings.model or DEFAULT_MODELS[Provider(settings.provider)]


def _resolve(path: str) -> Path:
    try:
        return resolve_root(path)
    except PathError as exc:
        console.print_error(f"Error: {exc}")
        raise typer.Exit(code=1)


def _scan(root: Path) -> List[FileEntry]:
    skipped: List[scanner.SkippedDir] = []
    try:
        entries = scanner.scan(root, skipped_dirs=skipped)
    except NoFilesFoundError:
        console.print_opaque_dirs(skipped, root)
        console.print_empty_directory(root)
        raise typer.Exit(code=0)
    except PathError as exc:
        console.print_error(f"Error: {exc}")
        raise typer.Exit(code=1)
    console.print_opaque_dirs(skipped, root)
    return entries


async def _analyze_interruptible(entries, backend, settings: Settings, progress_cb) -> AnalysisReport:
    """Run the analyzer pool with Ctrl-C wired to its cancellation token."""
    cancel = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
        handler_installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        # No loop signal handlers here (Windows, or not the main thread).
        handler_installed = False

    try:
        return await analyze_async(
            entries,
            backend,
            settings.concurrency,
            retry=RetryPolicy(
                max_attempts=settings.max_attempts,
                base_delay=settings.base_delay,
                max_delay=settings.max_delay,
            ),
            max_chars=settings.preview_chars,
            progress=progress_cb,
            cancel=cancel,
        )
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


def _backend(settings: Settings) -> NamingBackend:
    try:
        return create_backend(settings.provider, settings.model)
    except MissingApiKeyError as exc:
        console.print_error_missing_api_key(str(exc))
        raise typer.Exit(code=1)


def _analyze(entries: List[FileEntry], settings: Settings, backend: NamingBackend) -> AnalysisReport:
    """Analyze every entry behind a progress bar."""
    console.print_scanned(len(entries), settings.provider, _model_for(settings), settings.concurrency)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console.console,
        transient=True,
    ) as progress:
        task = progress.add_task(description="Analyzing files...", total=len(entries))

        def _on_progress(completed: int, total: int) -> None:
            progress.update(task, completed=completed, total=total)

        report = asyncio.run(_analyze_interruptible(entries, backend, settings, _on_progress))

    console.print_analysis_overview(report)
    return report


def _build_plan(report: AnalysisReport, settings: Settings) -> PlanTree:
    return planner.build_plan(report.results, suffix_format=settings.suffix_format)


def _show_plan(plan: PlanTree, root: Path) -> None:
    console.print_plan_tree(plan, root)
    console.print_plan_summary(planner.summarize_plan(plan, root))


def parse_edit(line: str) -> Optional[planner.PlanEdit]:
    """
    Parse one edit command typed at the refine prompt.

    Returns None for 'done' / empty input; raises RefinementError for
    anything it does not understand.
    """
    try:
        parts = shlex.split(line)
    except ValueError as exc:
        raise RefinementError(f"Could not parse edit: {exc}") from exc

    if not parts or parts[0] in ("done", "q"):
        return None
    command, args = parts[0].lower(), parts[1:]
    if command == "mv" and len(args) == 2:
        return planner.MoveFile(target=args[0], new_path=args[1])
    if command == "rename" and len(args) == 2:
        return planner.RelabelDirectory(path=args[0], new_label=args[1])
    raise RefinementError(
        f"Unknown edit '{line.strip()}'. "
        "Use: mv <file> <new/path>, rename <dir> <label>, ask <feedback>, done"
    )


def _ask_backend(plan: PlanTree, feedback: str, settings: Settings) -> PlanTree:
    """Let the backend turn free-text feedback into edits; the plan is kept on failure."""
    if not feedback.strip():
        console.print_error("Error: Say what to change, e.g. 'ask put the invoices under finance'")
        return plan
    console.print_info("Asking the backend to revise the plan...")
    # A fresh client per call: SDK connection pools are tied to the loop that opened them.
    backend = _backend(settings)
    try:
        outcome = asyncio.run(refine_with_feedback(plan, feedback, backend))
    except BackendError as exc:
        console.print_error(f"Error: Could not refine the plan: {exc}")
        return plan
    console.print_feedback_outcome(outcome)
    return outcome.plan


def _refine_interactively(plan: PlanTree, root: Path, settings: Settings) -> PlanTree:
    console.print_refine_help()
    while True:
        line = typer.prompt("edit", default="done", show_default=False)
        command, _, feedback = line.strip().partition(" ")
        if command.lower() == "ask":
            # Free text, so it skips the shell-style parsing of the other commands.
            revised = _ask_backend(plan, feedback, settings)
            if revised is not plan:
                plan = revised
                console.print_plan_tree(plan, root)
            continue
        try:
            edit = parse_edit(line)
            if edit is None:
                return plan
            plan = planner.refine(plan, edit)
        except RefinementError as exc:
            # The plan is unchanged; show why and keep editing.
            console.print_error(f"Error: {exc}")
            continue
        console.print_plan_tree(plan, root)

# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def version() -> None:
    """Display version information."""
    try:
        provider = load_settings().provider
    except ConfigError:
        provider = Settings().provider
    console.print_version(
        __version__,
        platform.python_version(),
        provider,
        key_env_var(provider),
        is_key_present(provider),
    )


@app.command()
def scan(
    path: str = typer.Argument(
        ...,
        metavar="PATH",
        help="Root folder to analyze (e.g. ~/Downloads)",
    ),
    provider: Optional[str] = typer.Option(None, "--provider", help="openai, anthropic or ollama."),
    model: Optional[str] = typer.Option(None, "--model", help="Model name for the provider."),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", min=1, help="Maximum files analyzed at once."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress details."),
    debug: bool = typer.Option(False, "--debug", help="Log everything, with tracebacks."),
) -> None:
    """
    Read-only run: scan, analyze and plan PATH, then show what organize
    would do. Never touches the filesystem.
    """
    _setup_logging(verbose, debug)
    settings = _settings(provider, model, concurrency)
    root = _resolve(path)

    console.print_start(root, read_only=True)
    entries = _scan(root)
    backend = _backend(settings)
    report = _analyze(entries, settings, backend)
    console.print_analysis_failures(report, root)
    console.print_pending(report, root)

    plan = _build_plan(report, settings)
    if plan.is_empty:
        console.print_empty_plan()
        raise typer.Exit(code=EXIT_INTERRUPTED if report.cancelled else 0)

    _show_plan(plan, root)
    console.print_execution_report(execute(plan, root, dry_run=True), root)
    if report.cancelled:
        raise typer.Exit(code=EXIT_INTERRUPTED)


@app.command()
def organize(
    path: str = typer.Argument(
        ...,
        metavar="PATH",
        help="Root folder to organize (e.g. ~/Downloads)",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the moves without making them."),
    show_tree: bool = typer.Option(False, "--show-tree", help="Print the current layout first."),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", min=1, help="Maximum files analyzed at once."
    ),
    provider: Optional[str] = typer.Option(None, "--provider", help="openai, anthropic or ollama."),
    model: Optional[str] = typer.Option(None, "--model", help="Model name for the provider."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Apply the plan without asking."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress details."),
    debug: bool = typer.Option(False, "--debug", help="Log everything, with tracebacks."),
) -> None:
    """
    Organize files under PATH.

    Pipeline:
      - resolve PATH and scan it
      - analyze every file concurrently (Ctrl-C stops scheduling new files)
      - fold the results into a plan and print it
      - prompt: apply / abort / edit the plan
      - apply the moves + write the CSV execution log
    """
    _setup_logging(verbose, debug)
    settings = _settings(provider, model, concurrency)
    root = _resolve(path)

    console.print_start(root, read_only=False)
    if show_tree:
        console.print_directory_tree(root)

    entries = _scan(root)
    backend = _backend(settings)
    report = _analyze(entries, settings, backend)
    console.print_analysis_failures(report, root)
    console.print_pending(report, root)

    plan = _build_plan(report, settings)
    if plan.is_empty:
        console.print_empty_plan()
        if not dry_run:
            console.print_no_files_were_moved()
        raise typer.Exit(code=EXIT_INTERRUPTED if report.cancelled else 0)

    _show_plan(plan, root)

    if report.cancelled:
        # Interrupted runs are shown, never applied.
        console.print_no_files_were_moved()
        raise typer.Exit(code=EXIT_INTERRUPTED)

    if dry_run:
        console.print_execution_report(execute(plan, root, dry_run=True), root)
        return

    while not yes:
        choice = typer.prompt("Apply this plan? [y]es / [n]o / [e]dit", default="n").strip().lower()
        if choice in ("y", "yes"):
            break
        if choice in ("e", "edit"):
            plan = _refine_interactively(plan, root, settings)
            _show_plan(plan, root)
            continue
        console.print_no_changes_applied()
        raise typer.Exit(code=0)

    try:
        result = execute(plan, root)
    except TargetNotWritableError as exc:
        console.print_error(f"Error: {exc}")
        console.print_no_files_were_moved()
        raise typer.Exit(code=1)
    except OrganizerError as exc:
        console.print_error(f"Error: Failed to apply plan: {exc}")
        raise typer.Exit(code=1)

    console.print_execution_report(result, root)
    if result.log_error is not None:
        raise typer.Exit(code=1)

# ---------------------------------------------------------------------------
# Command group: foldwise config
# ---------------------------------------------------------------------------

@config_app.command("show")
def config_show() -> None:
    """Print the effective settings and where they are stored."""
    settings = _settings()
    console.print_settings(asdict(settings), config_path())


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Setting name, e.g. provider or model."),
    value: str = typer.Argument(..., help="New value; empty string restores the default."),
) -> None:
    """Persist one setting."""
    try:
        settings = update_setting(key, value)
    except ConfigError as exc:
        console.print_error(f"Error: {exc}")
        raise typer.Exit(code=1)
    console.print_success(f"Saved {key} to {config_path()}")
    console.print_settings(asdict(settings), config_path())


@config_app.command("reset")
def config_reset() -> None:
    """Forget persisted settings and return to the defaults."""
    try:
        reset_settings()
    except ConfigError as exc:
        console.print_error(f"Error: {exc}")
        raise typer.Exit(code=1)
    console.print_success("Settings reset to defaults.")


@config_app.command("models")
def config_models(
    provider: Optional[str] = typer.Option(None, "--provider", help="openai, anthropic or ollama."),
) -> None:
    """List the models the selected provider offers."""
    settings = _settings(provider)
    try:
        backend = create_backend(settings.provider, settings.model)
        models = asyncio.run(backend.list_models())
    except MissingApiKeyError as exc:
        console.print_error(f"Error: {exc}")
        raise typer.Exit(code=1)
    except BackendError as exc:
        console.print_error(f"Error: Could not list models ({exc.kind.value}): {exc}")
        raise typer.Exit(code=1)
    console.print_models(settings.provider, models, _model_for(settings))
