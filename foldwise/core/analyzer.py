from __future__ import annotations
"""
Bounded analyzer pool for foldwise.

Runs preview extraction + backend analysis for every scanned file with at
most `concurrency` units in flight at once. Each file is an independent
unit of work: it acquires a slot, extracts its preview, calls the backend
(retrying rate-limited and transient-network errors with exponential
backoff), records a result or a failure, and releases the slot.

Nothing a single file does can crash the pool. The output is keyed by file
path, so callers must not depend on completion order.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Iterable, List, Optional, Set

from .backend import BackendError, BackendErrorKind, NamingBackend
from .errors import ExtractionError
from .extractor import DEFAULT_PREVIEW_CHARS, extract_preview_async
from .models import AnalysisFailure, AnalysisReport, ContentPreview, FailureStage, FileEntry

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10

# Most category paths shown to the backend as already in use.
KNOWN_CATEGORY_LIMIT = 40

ProgressCallback = Callable[[int, int], None]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff for retryable backend errors.

    `max_attempts` counts every call, the first one included; the delay
    before retry n (0-indexed) is min(base_delay * 2**n, max_delay).
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must not be negative")

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)


class CancellationToken:
    """Cooperative stop signal shared between the pool and its caller."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class AnalyzerPool:
    """
    Fixed number of concurrency slots shared by all scheduled files.

    Parameters
    ----------
    backend : NamingBackend
        Provider that turns a preview into an AnalysisResult.
    concurrency : int
        Ceiling on simultaneously running units (and therefore backend calls).
    retry : RetryPolicy
        Backoff for rate-limited / transient-network errors.
    max_chars : int
        Preview budget passed to the extractor.
    sleep : coroutine function
        Used for backoff waits; injectable for tests.
    """

    def __init__(
        self,
        backend: NamingBackend,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        retry: Optional[RetryPolicy] = None,
        max_chars: int = DEFAULT_PREVIEW_CHARS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.backend = backend
        self.concurrency = concurrency
        self.retry = retry or RetryPolicy()
        self.max_chars = max_chars
        self._sleep = sleep
        self._categories: Set[str] = set()

    def _with_known_categories(self, preview: ContentPreview) -> ContentPreview:
        if not self._categories:
            return preview
        known = tuple(sorted(self._categories)[:KNOWN_CATEGORY_LIMIT])
        return replace(preview, known_categories=known)

    async def run(
        self,
        entries: Iterable[FileEntry],
        *,
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> AnalysisReport:
        """
        Analyze every entry and return the report once all units have finished.

        After `cancel` is signalled no further unit starts; units already
        holding a slot finish normally. Entries that never started are listed
        in `report.pending`.
        """
        entries = list(entries)
        report = AnalysisReport(total=len(entries))
        self._categories.clear()
        semaphore = asyncio.Semaphore(self.concurrency)
        in_flight = 0
        completed = 0

        def _notify() -> None:
            if progress is None:
                return
            try:
                progress(completed, report.total)
            except Exception:
                # Progress rendering must never break the pipeline.
                logger.debug("Progress callback failed", exc_info=True)

        async def _unit(entry: FileEntry) -> None:
            nonlocal in_flight, completed
            async with semaphore:
                if cancel is not None and cancel.cancelled:
                    report.pending.append(entry)
                    return

                in_flight += 1
                report.max_in_flight = max(report.max_in_flight, in_flight)
                try:
                    await self._analyze_one(entry, report)
                finally:
                    in_flight -= 1
                    completed += 1
                    _notify()

        if entries:
            logger.info(
                "Analyzing %d file(s) with concurrency=%d", len(entries), self.concurrency
            )
            await asyncio.gather(*(_unit(e) for e in entries))

        report.cancelled = cancel is not None and cancel.cancelled
        report.pending.sort(key=lambda e: str(e.path))
        if report.pending:
            logger.warning("Analysis cancelled; %d file(s) never completed", len(report.pending))
        return report

    async def _analyze_one(self, entry: FileEntry, report: AnalysisReport) -> None:
        try:
            preview = await extract_preview_async(entry, max_chars=self.max_chars)
        except ExtractionError as exc:
            logger.warning("Extraction failed for %s: %s", entry.path, exc)
            report.failures[entry.path] = AnalysisFailure(
                entry=entry,
                stage=FailureStage.EXTRACTION,
                kind=exc.kind,
                message=str(exc),
            )
            return
        except Exception as exc:
            logger.error("Extraction raised unexpectedly for %s", entry.path, exc_info=True)
            report.failures[entry.path] = AnalysisFailure(
                entry=entry,
                stage=FailureStage.EXTRACTION,
                kind="unreadable",
                message=f"Unexpected extraction error: {exc}",
            )
            return

        preview = self._with_known_categories(preview)
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await self.backend.analyze(preview)
            except BackendError as exc:
                error = exc
            except Exception as exc:  # a misbehaving backend is a failed file, not a crashed pool
                logger.error("Backend raised unexpectedly for %s", entry.path, exc_info=True)
                error = BackendError(BackendErrorKind.INVALID_RESPONSE, f"Unexpected backend error: {exc}")
            else:
                report.results[entry.path] = result
                if result.category_path:
                    self._categories.add("/".join(result.category_path))
                return

            if error.retryable and attempt < self.retry.max_attempts:
                wait = self.retry.delay(attempt - 1)
                logger.warning(
                    "%s for '%s', retrying in %.1fs (attempt %d/%d).",
                    error.kind.value, entry.path, wait, attempt, self.retry.max_attempts,
                )
                await self._sleep(wait)
                continue

            logger.error(
                "Analysis failed for '%s' after %d attempt(s): %s", entry.path, attempt, error
            )
            report.failures[entry.path] = AnalysisFailure(
                entry=entry,
                stage=FailureStage.BACKEND,
                kind=error.kind.value,
                message=str(error),
                attempts=attempt,
            )
            return


async def analyze_async(
    entries: Iterable[FileEntry],
    backend: NamingBackend,
    concurrency: int = DEFAULT_CONCURRENCY,
    *,
    retry: Optional[RetryPolicy] = None,
    max_chars: int = DEFAULT_PREVIEW_CHARS,
    progress: Optional[ProgressCallback] = None,
    cancel: Optional[CancellationToken] = None,
) -> AnalysisReport:
    pool = AnalyzerPool(backend, concurrency=concurrency, retry=retry, max_chars=max_chars)
    return await pool.run(entries, progress=progress, cancel=cancel)


def analyze(
    entries: Iterable[FileEntry],
    backend: NamingBackend,
    concurrency: int = DEFAULT_CONCURRENCY,
    **kwargs,
) -> AnalysisReport:
    """Synchronous entry point: run the pool on a fresh event loop."""
    return asyncio.run(analyze_async(entries, backend, concurrency, **kwargs))


def failures_as_list(report: AnalysisReport) -> List[AnalysisFailure]:
    """Recorded failures in path order, for display."""
    return [report.failures[p] for p in sorted(report.failures, key=str)]
