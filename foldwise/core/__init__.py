"""
Analysis & planning engine.

The operations the CLI composes, in pipeline order:

    scan(root)                      -> list[FileEntry]
    analyze(entries, backend, n)    -> AnalysisReport
    plan(results)                   -> PlanTree
    refine(plan, edit)              -> PlanTree
    refine_with_feedback(plan, text, backend)  (async) -> FeedbackOutcome
    execute(plan, root, dry_run=..) -> ExecutionReport

Concrete backends live in foldwise.core.providers and are not imported here.
"""

from .analyzer import CancellationToken, RetryPolicy, analyze, analyze_async
from .executor import execute
from .feedback import FeedbackOutcome, refine_with_feedback
from .planner import MoveFile, RelabelDirectory, build_plan, refine
from .scanner import scan

plan = build_plan

__all__ = [
    "CancellationToken",
    "FeedbackOutcome",
    "MoveFile",
    "RelabelDirectory",
    "RetryPolicy",
    "analyze",
    "analyze_async",
    "build_plan",
    "execute",
    "plan",
    "refine",
    "refine_with_feedback",
    "scan",
]
