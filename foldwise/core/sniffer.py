# foldwise/core/sniffer.py

from __future__ import annotations
from pathlib import Path
from typing import Optional, Tuple

from .models import ContentKind

# Bytes read from the head of each file for detection.
SNIFF_BYTES = 8192

# --- magic signatures ----------------------------------------------------------
# (offset, signature, kind, mime)

_MAGIC = [
    (0, b"%PDF-", ContentKind.PDF, "application/pdf"),
    (0, b"\x89PNG\r\n\x1a\n", ContentKind.IMAGE, "image/png"),
    (0, b"\xff\xd8\xff", ContentKind.IMAGE, "image/jpeg"),
    (0, b"GIF87a", ContentKind.IMAGE, "image/gif"),
    (0, b"GIF89a", ContentKind.IMAGE, "image/gif"),
    (0, b"BM", ContentKind.IMAGE, "image/bmp"),
    (0, b"II*\x00", ContentKind.IMAGE, "image/tiff"),
    (0, b"MM\x00*", ContentKind.IMAGE, "image/tiff"),
    (0, b"PK\x03\x04", ContentKind.ARCHIVE, "application/zip"),
    (0, b"PK\x05\x06", ContentKind.ARCHIVE, "application/zip"),
    (0, b"\x1f\x8b", ContentKind.ARCHIVE, "application/gzip"),
    (0, b"BZh", ContentKind.ARCHIVE, "application/x-bzip2"),
    (0, b"\xfd7zXZ\x00", ContentKind.ARCHIVE, "application/x-xz"),
    (0, b"7z\xbc\xaf\x27\x1c", ContentKind.ARCHIVE, "application/x-7z-compressed"),
    (0, b"Rar!\x1a\x07", ContentKind.ARCHIVE, "application/vnd.rar"),
    (257, b"ustar", ContentKind.ARCHIVE, "application/x-tar"),
    (0, b"ID3", ContentKind.AUDIO, "audio/mpeg"),
    (0, b"fLaC", ContentKind.AUDIO, "audio/flac"),
    (0, b"OggS", ContentKind.AUDIO, "audio/ogg"),
    (0, b"\x1a\x45\xdf\xa3", ContentKind.VIDEO, "video/x-matroska"),
]

# Office formats are zip containers; they are documents, not archives.
_ZIP_DOCUMENT_EXTS = {"docx", "xlsx", "pptx", "odt", "ods", "odp", "epub"}

# Extensions treated as text when the head contains no NUL bytes.
TEXT_EXTENSIONS = {
    "txt", "md", "rst", "rs", "py", "js", "ts", "jsx", "tsx", "java", "c", "cpp",
    "h", "hpp", "go", "rb", "sh", "yaml", "yml", "toml", "json", "xml", "html",
    "css", "scss", "sql", "csv", "log", "conf", "cfg", "ini", "tex", "ipynb",
}


def _ext(path: Path) -> str:
    """Lowercase extension without the leading dot."""
    return path.suffix.lower().lstrip(".")


def _riff_or_ftyp(head: bytes) -> Optional[Tuple[ContentKind, str]]:
    """Container formats identified by a sub-tag rather than a leading signature."""
    if head[:4] == b"RIFF" and len(head) >= 12:
        form = head[8:12]
        if form == b"WAVE":
            return ContentKind.AUDIO, "audio/wav"
        if form == b"AVI ":
            return ContentKind.VIDEO, "video/x-msvideo"
        if form == b"WEBP":
            return ContentKind.IMAGE, "image/webp"
    if head[4:8] == b"ftyp":
        brand = head[8:12]
        if brand.startswith(b"M4A"):
            return ContentKind.AUDIO, "audio/mp4"
        if brand.startswith(b"qt"):
            return ContentKind.VIDEO, "video/quicktime"
        return ContentKind.VIDEO, "video/mp4"
    return None


def _looks_like_mp3_frame(head: bytes) -> bool:
    return len(head) >= 2 and head[0] == 0xFF and (head[1] & 0xE0) == 0xE0 and head[1] != 0xFF


def _looks_like_text(head: bytes) -> bool:
    """Heuristic for text content: BOM-marked UTF-16, or valid UTF-8 without NULs."""
    if head.startswith((b"\xff\xfe", b"\xfe\xff")):
        try:
            decoded = head[: len(head) // 2 * 2].decode("utf-16")
        except UnicodeDecodeError:
            return False
        return "\x00" not in decoded
    if not head or b"\x00" in head:
        return False
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as exc:
        # A multi-byte sequence cut off by the read boundary is still text.
        return exc.start >= len(head) - 3
    return True


def sniff(path: Path, head: bytes) -> Tuple[ContentKind, Optional[str]]:
    """
    Classify a file from its name and the first bytes of its content.

    Pure function: the same (path, head) always yields the same result.
    Content signatures win over extensions; the extension is only consulted
    for text formats (which have no signature) and zip-based documents.
    """
    # Short signatures like "BM" also start ordinary prose.
    if _ext(path) in TEXT_EXTENSIONS and _looks_like_text(head):
        return ContentKind.TEXT, "text/plain"

    for offset, signature, kind, mime in _MAGIC:
        if head[offset:offset + len(signature)] == signature:
            if mime == "application/zip" and _ext(path) in _ZIP_DOCUMENT_EXTS:
                return ContentKind.UNKNOWN, f"application/x-{_ext(path)}"
            return kind, mime

    container = _riff_or_ftyp(head)
    if container is not None:
        return container

    if _looks_like_mp3_frame(head) and _ext(path) in {"mp3", "mp2"}:
        return ContentKind.AUDIO, "audio/mpeg"

    ext = _ext(path)
    if ext in TEXT_EXTENSIONS:
        if b"\x00" in head:
            return ContentKind.UNKNOWN, "application/octet-stream"
        return ContentKind.TEXT, "text/plain"

    if ext == "pdf":
        # Extension says PDF but the header is missing: still route it to
        # the PDF extractor, which will report it as corrupt.
        return ContentKind.PDF, "application/pdf"

    if _looks_like_text(head):
        return ContentKind.TEXT, "text/plain"

    return ContentKind.UNKNOWN, "application/octet-stream" if head else None


def sniff_file(path: Path) -> Tuple[ContentKind, Optional[str]]:
    """Read the head of `path` and sniff it. Unreadable files sniff as unknown."""
    try:
        with open(path, "rb") as f:
            head = f.read(SNIFF_BYTES)
    except OSError:
        return ContentKind.UNKNOWN, None
    return sniff(path, head)
