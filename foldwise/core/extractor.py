from __future__ import annotations
"""
Content preview extraction for foldwise.

Converts a FileEntry into a ContentPreview whose summary never exceeds a
fixed character budget, whatever the file kind:

- text / code: decoded and truncated.
- pdf: text of the first pages (PyMuPDF), truncated the same way.
- image / audio / video / archive / unknown: a structural descriptor
  (dimensions, duration, entry count, ...) instead of raw bytes.

Failures raise ExtractionError with a kind the analyzer records as an
extraction failure; they never abort the run.
"""

import asyncio
import logging
import tarfile
import zipfile
from pathlib import Path
from typing import Dict, List, Tuple

import fitz  # PyMuPDF
from mutagen import File as MutagenFile
from mutagen import MutagenError
from PIL import Image, UnidentifiedImageError

from .errors import ExtractionError
from .models import ContentKind, ContentPreview, FileEntry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_PREVIEW_CHARS = 1000

# Pages read from a PDF before truncation.
PDF_MAX_PAGES = 5

# Archive members listed in the descriptor.
ARCHIVE_SAMPLE_SIZE = 10

TRUNCATION_MARKER = "..."


def truncate(text: str, max_chars: int) -> Tuple[str, bool]:
    """Return at most `max_chars` characters of `text` and whether it was cut."""
    if len(text) <= max_chars:
        return text, False
    keep = max(0, max_chars - len(TRUNCATION_MARKER))
    return text[:keep] + TRUNCATION_MARKER, True


def _format_size(size_bytes: float) -> str:
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"

# ---------------------------------------------------------------------------
# Per-kind extractors
# ---------------------------------------------------------------------------

def _read_text(path: Path, max_chars: int) -> Tuple[str, Dict[str, object]]:
    # Four bytes per character covers any UTF-8 sequence.
    with open(path, "rb") as f:
        raw = f.read(max_chars * 4 + 4)

    if raw.startswith((b"\xff\xfe", b"\xfe\xff")):
        encoding = "utf-16"
    else:
        encoding = "utf-8-sig"

    try:
        text = raw.decode(encoding)
    except UnicodeDecodeError as exc:
        # Tolerate a multi-byte sequence split by the read boundary.
        if exc.start >= len(raw) - 4 and exc.start > 0:
            text = raw[: exc.start].decode(encoding)
        else:
            raise ExtractionError(
                "unsupported-encoding",
                f"{path.name} is not valid {encoding.upper()} text",
            ) from exc

    return text, {"encoding": encoding}


def _read_pdf(path: Path) -> Tuple[str, Dict[str, object]]:
    # Open once so permission / missing-file errors surface as OSError.
    # PyMuPDF then loads only the pages it is asked for.
    with open(path, "rb"):
        pass

    try:
        doc = fitz.open(str(path), filetype="pdf")
    except Exception as exc:  # PyMuPDF raises its own FileDataError/RuntimeError types
        raise ExtractionError("corrupt", f"Cannot open PDF {path.name}: {exc}") from exc

    try:
        parts: List[str] = []
        for page_no in range(min(doc.page_count, PDF_MAX_PAGES)):
            parts.append(doc.load_page(page_no).get_text())
        details: Dict[str, object] = {"pages": doc.page_count}
        title = (doc.metadata or {}).get("title")
        if title:
            details["title"] = title
    except Exception as exc:
        raise ExtractionError("corrupt", f"Cannot read PDF {path.name}: {exc}") from exc
    finally:
        doc.close()

    text = " ".join(" ".join(parts).split())
    if not text:
        text = f"[PDF document, {details['pages']} page(s), no extractable text]"
    return text, details


def _describe_image(entry: FileEntry) -> Tuple[str, Dict[str, object]]:
    with open(entry.path, "rb") as f:
        try:
            # Image.open is lazy; only the header is parsed.
            with Image.open(f) as img:
                width, height = img.size
                details: Dict[str, object] = {
                    "format": img.format,
                    "width": width,
                    "height": height,
                    "mode": img.mode,
                }
        except Image.DecompressionBombError as exc:
            raise ExtractionError(
                "corrupt", f"Image {entry.name} declares an implausible pixel count: {exc}"
            ) from exc
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
            raise ExtractionError("corrupt", f"Unrecognized image data in {entry.name}") from exc

    summary = (
        f"[Image file: {details['format']} {width}x{height} ({details['mode']}), "
        f"{_format_size(entry.size_bytes)}]"
    )
    return summary, details


def _describe_media(entry: FileEntry) -> Tuple[str, Dict[str, object]]:
    label = "Audio" if entry.kind is ContentKind.AUDIO else "Video"
    details: Dict[str, object] = {"mime": entry.mime}

    try:
        media = MutagenFile(entry.path, easy=True)
    except MutagenError as exc:
        # Unparseable tags still leave a usable descriptor.
        logger.debug("No media metadata for %s: %s", entry.path, exc)
        media = None

    if media is not None:
        info = getattr(media, "info", None)
        length = getattr(info, "length", None)
        if length:
            details["duration_seconds"] = round(float(length), 1)
        bitrate = getattr(info, "bitrate", None)
        if bitrate:
            details["bitrate"] = int(bitrate)
        tags = getattr(media, "tags", None) or {}
        for key in ("title", "artist", "album", "date", "genre"):
            try:
                value = tags.get(key)
            except (KeyError, ValueError):
                value = None
            if value:
                details[key] = str(value[0]) if isinstance(value, list) else str(value)

    fields = [f"{label} file: {entry.mime or 'unknown format'}"]
    if "duration_seconds" in details:
        fields.append(f"duration {details['duration_seconds']}s")
    for key in ("title", "artist", "album", "date", "genre"):
        if key in details:
            fields.append(f"{key} '{details[key]}'")
    fields.append(_format_size(entry.size_bytes))
    return "[" + ", ".join(fields) + "]", details


def _describe_archive(entry: FileEntry) -> Tuple[str, Dict[str, object]]:
    names: List[str]
    path = entry.path
    try:
        if zipfile.is_zipfile(path):
            with zipfile.ZipFile(path) as zf:
                names = zf.namelist()
        elif tarfile.is_tarfile(path):
            with tarfile.open(path) as tf:
                names = tf.getnames()
        else:
            summary = f"[Archive file: {entry.mime}, {_format_size(entry.size_bytes)}]"
            return summary, {"mime": entry.mime}
    except (zipfile.BadZipFile, tarfile.TarError, EOFError) as exc:
        raise ExtractionError("corrupt", f"Cannot list archive {entry.name}: {exc}") from exc

    details: Dict[str, object] = {
        "mime": entry.mime,
        "entry_count": len(names),
        "sample_entries": names[:ARCHIVE_SAMPLE_SIZE],
    }
    sample = ", ".join(names[:ARCHIVE_SAMPLE_SIZE])
    summary = (
        f"[Archive file: {entry.mime}, {len(names)} entries, "
        f"{_format_size(entry.size_bytes)}; contains: {sample}]"
    )
    return summary, details


def _describe_unknown(entry: FileEntry) -> Tuple[str, Dict[str, object]]:
    return (
        f"[Binary file: {entry.mime or 'unknown type'}, {_format_size(entry.size_bytes)}]",
        {"mime": entry.mime},
    )

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_preview(entry: FileEntry, *, max_chars: int = DEFAULT_PREVIEW_CHARS) -> ContentPreview:
    """
    Build a bounded preview of `entry` for a naming backend.

    The summary is at most `max_chars` characters for every content kind.

    Raises
    ------
    ExtractionError
        kind "permission-denied", "unreadable", "corrupt" or
        "unsupported-encoding".
    """
    if max_chars <= len(TRUNCATION_MARKER):
        raise ValueError(f"max_chars must be greater than {len(TRUNCATION_MARKER)}")

    try:
        if entry.kind is ContentKind.TEXT:
            text, details = _read_text(entry.path, max_chars)
        elif entry.kind is ContentKind.PDF:
            text, details = _read_pdf(entry.path)
        elif entry.kind is ContentKind.IMAGE:
            text, details = _describe_image(entry)
        elif entry.kind in (ContentKind.AUDIO, ContentKind.VIDEO):
            text, details = _describe_media(entry)
        elif entry.kind is ContentKind.ARCHIVE:
            text, details = _describe_archive(entry)
        else:
            text, details = _describe_unknown(entry)
    except PermissionError as exc:
        raise ExtractionError("permission-denied", f"Permission denied: {entry.path}") from exc
    except FileNotFoundError as exc:
        raise ExtractionError("unreadable", f"File vanished before extraction: {entry.path}") from exc
    except OSError as exc:
        raise ExtractionError("unreadable", f"Cannot read {entry.path}: {exc}") from exc

    summary, truncated = truncate(text, max_chars)
    return ContentPreview(entry=entry, summary=summary, truncated=truncated, details=details)


async def extract_preview_async(
    entry: FileEntry, *, max_chars: int = DEFAULT_PREVIEW_CHARS
) -> ContentPreview:
    """Run extract_preview in a worker thread so file I/O does not block the event loop."""
    return await asyncio.to_thread(extract_preview, entry, max_chars=max_chars)
