from __future__ import annotations
"""
Feedback-driven plan refinement for foldwise.

The user describes in plain words what they dislike about a proposed plan
("put all the invoices under finance", "call the images folder photos").
The backend is shown the current plan and that feedback and answers with a
list of concrete edits, the same two edits the interactive editor offers:

    {"edits": [
        {"action": "move", "file": "documents/a.pdf", "to": "finance/a.pdf"},
        {"action": "rename", "directory": "images", "label": "photos"}
    ]}

Every edit goes through planner.refine(), so the invariants of a
hand-made edit hold here too. Edits that refine() rejects are reported
back, and the others still apply.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Tuple

from .backend import BackendError, BackendErrorKind, NamingBackend, strip_fences
from .errors import RefinementError
from .models import PlanTree
from .planner import MoveFile, PlanEdit, RelabelDirectory, format_path, refine

logger = logging.getLogger(__name__)

# Plan lines shown to the backend; larger plans are cut off with a note.
PLAN_LINE_LIMIT = 300

FEEDBACK_SYSTEM_PROMPT = (
    "You help a user adjust a proposed file organization plan. You are shown "
    "the plan, one destination per line as 'folder/.../file_name  (was: original "
    "name)', followed by the user's feedback.\n"
    "Translate the feedback into edits of the plan. Respond with a single JSON "
    "object and nothing else:\n"
    '  {"edits": [...]}\n'
    "where each edit is one of:\n"
    '  {"action": "move", "file": <current plan path>, "to": <new plan path '
    "including the file name>}\n"
    '  {"action": "rename", "directory": <current folder path>, "label": <new '
    "name for that folder only>}\n"
    "Plan paths are relative and use '/'. Folders that do not exist yet are "
    "created by moving a file into them. Keep file extensions. Return an "
    'empty list when the feedback asks for nothing you can express this way.'
)


@dataclass
class FeedbackOutcome:
    """Result of one round of feedback: the edited plan and what happened to each edit."""

    plan: PlanTree
    applied: List[PlanEdit] = field(default_factory=list)
    rejected: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.applied)


def describe_edit(edit: PlanEdit) -> str:
    if isinstance(edit, MoveFile):
        return f"mv {edit.target} {edit.new_path}"
    return f"rename {edit.path} {edit.new_label}"


def describe_plan(plan: PlanTree) -> str:
    """Plan listing as shown to the backend."""
    lines = []
    for path, assignment in plan.iter_assignments():
        line = format_path(path + (assignment.name,))
        if assignment.name != assignment.entry.name:
            line += f"  (was: {assignment.entry.name})"
        lines.append(line)
    if len(lines) > PLAN_LINE_LIMIT:
        hidden = len(lines) - PLAN_LINE_LIMIT
        lines = lines[:PLAN_LINE_LIMIT] + [f"... and {hidden} more file(s)"]
    return "\n".join(lines)


def build_feedback_prompt(plan: PlanTree, feedback: str) -> str:
    return "\n".join(
        [
            "Current plan:",
            describe_plan(plan),
            "",
            "User feedback:",
            feedback.strip(),
        ]
    )

# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------

def _edit_from_mapping(item: Any) -> PlanEdit:
    """One reply item -> PlanEdit; ValueError describes what is wrong with it."""
    if not isinstance(item, dict):
        raise ValueError(f"edit must be an object, got {type(item).__name__}")

    action = str(item.get("action", "")).lower()
    if action in ("move", "mv"):
        target, new_path = item.get("file"), item.get("to")
        if not isinstance(target, str) or not isinstance(new_path, str):
            raise ValueError("move needs 'file' and 'to' strings")
        return MoveFile(target=target, new_path=new_path)
    if action == "rename":
        path, label = item.get("directory"), item.get("label")
        if not isinstance(path, str) or not isinstance(label, str):
            raise ValueError("rename needs 'directory' and 'label' strings")
        return RelabelDirectory(path=path, new_label=label)
    raise ValueError(f"unknown action {item.get('action')!r}")


def parse_edits(raw: str) -> Tuple[List[PlanEdit], List[Tuple[str, str]]]:
    """
    Decode the backend's reply.

    Returns
    -------
    (edits, malformed)
        The well-formed edits in reply order, and (item, reason) pairs for
        items that could not be understood.

    Raises
    ------
    BackendError
        kind INVALID_RESPONSE when the reply is not a JSON object with an
        "edits" list.
    """
    try:
        data = json.loads(strip_fences(raw or ""))
    except json.JSONDecodeError as exc:
        raise BackendError(
            BackendErrorKind.INVALID_RESPONSE, f"Feedback reply is not valid JSON: {exc}"
        ) from exc

    if not isinstance(data, dict) or not isinstance(data.get("edits"), list):
        raise BackendError(
            BackendErrorKind.INVALID_RESPONSE, "Feedback reply is missing an 'edits' list"
        )

    edits: List[PlanEdit] = []
    malformed: List[Tuple[str, str]] = []
    for item in data["edits"]:
        try:
            edits.append(_edit_from_mapping(item))
        except ValueError as exc:
            malformed.append((json.dumps(item, ensure_ascii=False), str(exc)))
    return edits, malformed

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def refine_with_feedback(
    plan: PlanTree, feedback: str, backend: NamingBackend
) -> FeedbackOutcome:
    """
    Ask `backend` to turn free-text `feedback` into plan edits and apply them.

    Edits are applied one after another, each on the result of the last.
    `plan` itself is never modified.

    Raises
    ------
    BackendError
        If the backend call fails or its reply cannot be decoded; no edit
        has been applied.
    FrozenPlanError
        If `plan` has been frozen for execution.
    """
    plan.ensure_mutable()
    if not feedback.strip():
        return FeedbackOutcome(plan=plan)

    raw = await backend.complete(FEEDBACK_SYSTEM_PROMPT, build_feedback_prompt(plan, feedback))
    edits, malformed = parse_edits(raw)
    outcome = FeedbackOutcome(plan=plan, rejected=list(malformed))

    for edit in edits:
        try:
            outcome.plan = refine(outcome.plan, edit)
        except RefinementError as exc:
            logger.info("Suggested edit rejected (%s): %s", describe_edit(edit), exc)
            outcome.rejected.append((describe_edit(edit), str(exc)))
        else:
            outcome.applied.append(edit)

    logger.info(
        "Feedback produced %d edit(s): %d applied, %d rejected",
        len(edits) + len(malformed), len(outcome.applied), len(outcome.rejected),
    )
    return outcome
