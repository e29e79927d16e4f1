from __future__ import annotations
"""
Naming backend capability for foldwise.

A backend takes one ContentPreview and returns an AnalysisResult (a leaf
name plus a category path), or raises BackendError tagged with one of the
kinds in BackendErrorKind. Only rate-limited and transient-network errors
are worth retrying.

The prompt wording and the response parsing live here so every provider
asks the same question and is held to the same answer format.
"""

import json
import re
from enum import Enum
from pathlib import PurePath
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .errors import OrganizerError
from .models import AnalysisResult, ContentPreview

# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------

class BackendErrorKind(str, Enum):
    AUTHENTICATION = "authentication"
    RATE_LIMITED = "rate-limited"
    TRANSIENT_NETWORK = "transient-network"
    INVALID_RESPONSE = "invalid-response"
    UNSUPPORTED_INPUT = "unsupported-input"


RETRYABLE_KINDS = frozenset({BackendErrorKind.RATE_LIMITED, BackendErrorKind.TRANSIENT_NETWORK})


class BackendError(OrganizerError):
    """Raised by a naming backend; `kind` decides whether the call is retried."""

    def __init__(self, kind: BackendErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = BackendErrorKind(kind)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

# ---------------------------------------------------------------------------
# Capability
# ---------------------------------------------------------------------------

@runtime_checkable
class NamingBackend(Protocol):
    """
    Anything that can name and classify a file preview.

    Implementations must tolerate many concurrent `analyze` calls.
    `complete` sends one free-form system + user exchange and returns the
    raw reply text; it maps failures onto BackendErrorKind the same way.
    """

    async def analyze(self, preview: ContentPreview) -> AnalysisResult:
        ...

    async def complete(self, system: str, user: str) -> str:
        ...

    async def list_models(self) -> List[str]:
        ...

# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

# Deepest category path accepted from a backend.
MAX_CATEGORY_DEPTH = 3

MAX_LABEL_LENGTH = 64

SYSTEM_PROMPT = (
    "You organize a user's files. For each file you are shown, suggest a clear, "
    "descriptive file name and a short folder path (1 to "
    f"{MAX_CATEGORY_DEPTH} levels, broad to specific) where it belongs.\n"
    "Respond with a single JSON object and nothing else, with these fields:\n"
    '  "name": new file name, lowercase words joined by underscores, keeping the '
    "original extension,\n"
    '  "category_path": list of folder names, e.g. ["documents", "finance"],\n'
    '  "confidence": number between 0 and 1,\n'
    '  "explanation": one short sentence.\n'
    "Use broad, reusable top-level folders such as documents, images, scripts, "
    "music, videos, archives. Do not treat non-English content any differently."
)


def build_prompt(preview: ContentPreview) -> str:
    """User message describing one file to the backend."""
    entry = preview.entry
    lines = [
        f"Current name: {entry.name}",
        f"Content kind: {entry.kind.value}",
        f"MIME type: {entry.mime or 'unknown'}",
        f"Size: {entry.size_bytes} bytes",
    ]
    if preview.known_categories:
        lines += [
            "",
            "Folders already used for other files (reuse one when it fits):",
            *(f"- {path}" for path in preview.known_categories),
        ]
    lines += [
        "",
        "Content preview" + (" (truncated)" if preview.truncated else "") + ":",
        preview.summary,
    ]
    return "\n".join(lines)

# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r"\s+")


def sanitize_label(value: str) -> str:
    """
    Turn backend text into a single safe path component.

    Separators and reserved characters are replaced, surrounding dots and
    spaces stripped; returns "" when nothing usable is left.
    """
    cleaned = _UNSAFE_CHARS.sub("_", str(value))
    cleaned = _WHITESPACE.sub(" ", cleaned).strip().strip(".").strip()
    if cleaned in ("", ".", ".."):
        return ""
    return cleaned[:MAX_LABEL_LENGTH].rstrip(". ")


def is_valid_label(value: str) -> bool:
    """True when `value` can be used as-is as one path component."""
    return (
        bool(value)
        and value not in (".", "..")
        and value == value.strip()
        and not value.endswith(".")
        and not _UNSAFE_CHARS.search(value)
    )


def strip_fences(raw: str) -> str:
    """Drop a surrounding ```json ... ``` block some models wrap answers in."""
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        lines = cleaned.splitlines()
        cleaned = "\n".join(lines[1:-1] if lines[-1].startswith("```") else lines[1:])
    return cleaned.strip()


def _normalize_name(suggested: str, original: PurePath) -> str:
    name = sanitize_label(suggested)
    if not name:
        return original.name
    if original.suffix and not PurePath(name).suffix:
        name = f"{name}{original.suffix.lower()}"
    return name


def parse_response(raw: str, preview: ContentPreview) -> AnalysisResult:
    """
    Parse a backend's raw text answer into an AnalysisResult.

    Raises
    ------
    BackendError
        kind INVALID_RESPONSE when the text is not the expected JSON object.
    """
    try:
        data: Any = json.loads(strip_fences(raw or ""))
    except json.JSONDecodeError as exc:
        raise BackendError(
            BackendErrorKind.INVALID_RESPONSE, f"Response is not valid JSON: {exc}"
        ) from exc

    if not isinstance(data, dict):
        raise BackendError(
            BackendErrorKind.INVALID_RESPONSE,
            f"Response must be a JSON object, got {type(data).__name__}",
        )
    return result_from_mapping(data, preview)


def result_from_mapping(data: Dict[str, Any], preview: ContentPreview) -> AnalysisResult:
    """Validate an already-decoded answer and build the AnalysisResult."""
    raw_path = data.get("category_path")
    if isinstance(raw_path, str):
        raw_path = [p for p in re.split(r"[/\\]", raw_path)]
    if not isinstance(raw_path, list):
        raise BackendError(
            BackendErrorKind.INVALID_RESPONSE, "Response is missing a 'category_path' list"
        )

    category_path = tuple(
        label for label in (sanitize_label(str(p)) for p in raw_path) if label
    )[:MAX_CATEGORY_DEPTH]
    if not category_path:
        raise BackendError(BackendErrorKind.INVALID_RESPONSE, "Response has an empty 'category_path'")

    name_value = data.get("name")
    if not isinstance(name_value, str):
        raise BackendError(BackendErrorKind.INVALID_RESPONSE, "Response is missing a 'name' string")
    name = _normalize_name(name_value, preview.entry.path)

    confidence: Optional[float]
    try:
        confidence = float(data["confidence"]) if data.get("confidence") is not None else None
    except (TypeError, ValueError):
        confidence = None
    if confidence is not None:
        confidence = min(1.0, max(0.0, confidence))

    explanation = data.get("explanation")
    return AnalysisResult(
        entry=preview.entry,
        suggested_name=name,
        category_path=category_path,
        confidence=confidence,
        explanation=str(explanation) if explanation else None,
    )
