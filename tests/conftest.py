"""Pytest configuration and fixtures."""

import asyncio
import struct
import zlib
from collections import Counter
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

import pytest

from foldwise.core.backend import BackendError, BackendErrorKind
from foldwise.core.models import AnalysisResult, ContentKind, ContentPreview, FileEntry
from foldwise.core.sniffer import sniff_file

# Category used for each content kind when a test gives no explicit rule.
KIND_CATEGORIES = {
    ContentKind.TEXT: ("documents",),
    ContentKind.PDF: ("documents",),
    ContentKind.IMAGE: ("images",),
    ContentKind.AUDIO: ("music",),
    ContentKind.VIDEO: ("videos",),
    ContentKind.ARCHIVE: ("archives",),
    ContentKind.UNKNOWN: ("misc",),
}

Rule = Tuple[str, Tuple[str, ...]]


class FakeBackend:
    """In-memory NamingBackend.

    - `rules` maps a source file name to (suggested_name, category_path);
      other files keep their name and go to a category chosen by kind.
    - `failures` maps a source file name to errors raised, in order, before
      the call succeeds.
    - `replies` are returned, in order, by complete(); the prompts it was
      given are kept in `completions`.
    - Tracks how many analyze() calls are in flight at once.
    """

    def __init__(
        self,
        rules: Optional[Dict[str, Rule]] = None,
        failures: Optional[Dict[str, List[Exception]]] = None,
        delay: float = 0.0,
        replies: Optional[List[str]] = None,
    ) -> None:
        self.rules = dict(rules or {})
        self.replies = list(replies or [])
        self.completions: List[Tuple[str, str]] = []
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.delay = delay
        self.calls: Counter = Counter()
        self.previews: List[ContentPreview] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def analyze(self, preview: ContentPreview) -> AnalysisResult:
        name = preview.entry.name
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            self.calls[name] += 1
            self.previews.append(preview)
            pending = self.failures.get(name)
            if pending:
                raise pending.pop(0)
            suggested, category = self.rules.get(
                name, (name, KIND_CATEGORIES[preview.entry.kind])
            )
            return AnalysisResult(
                entry=preview.entry,
                suggested_name=suggested,
                category_path=tuple(category),
                confidence=0.9,
            )
        finally:
            self.in_flight -= 1

    async def complete(self, system: str, user: str) -> str:
        self.completions.append((system, user))
        if not self.replies:
            raise BackendError(BackendErrorKind.INVALID_RESPONSE, "no scripted reply left")
        return self.replies.pop(0)

    async def list_models(self) -> List[str]:
        return ["fake-small", "fake-large"]


class UnreachableBackend:
    """Every call fails as if the server could not be reached."""

    def __init__(self) -> None:
        self.calls = 0

    async def analyze(self, preview: ContentPreview) -> AnalysisResult:
        self.calls += 1
        raise BackendError(BackendErrorKind.TRANSIENT_NETWORK, "connection refused")

    async def complete(self, system: str, user: str) -> str:
        self.calls += 1
        raise BackendError(BackendErrorKind.TRANSIENT_NETWORK, "connection refused")

    async def list_models(self) -> List[str]:
        raise BackendError(BackendErrorKind.TRANSIENT_NETWORK, "connection refused")


async def no_sleep(_delay: float) -> None:
    """Backoff stand-in so retry tests do not wait."""


def entry_for(path: Path) -> FileEntry:
    kind, mime = sniff_file(path)
    return FileEntry(path=path, size_bytes=path.stat().st_size, kind=kind, mime=mime)


def result_for(
    path: Path,
    name: str,
    category: Iterable[str],
    kind: ContentKind = ContentKind.TEXT,
    confidence: Optional[float] = 0.8,
) -> AnalysisResult:
    """AnalysisResult for a (possibly nonexistent) source path."""
    entry = FileEntry(path=Path(path), size_bytes=10, kind=kind, mime=None)
    return AnalysisResult(
        entry=entry, suggested_name=name, category_path=tuple(category), confidence=confidence
    )


@pytest.fixture
def make_files(tmp_path: Path) -> Callable[[Dict[str, Union[str, bytes]]], Path]:
    """Create files under tmp_path from {relative path: content}; returns the root."""

    def _make(files: Dict[str, Union[str, bytes]]) -> Path:
        for rel, content in files.items():
            path = tmp_path / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return tmp_path.resolve()

    return _make


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A tiny valid JPEG image."""
    from io import BytesIO

    from PIL import Image

    buf = BytesIO()
    Image.new("RGB", (8, 6), color=(200, 30, 30)).save(buf, format="JPEG")
    return buf.getvalue()


@pytest.fixture
def pdf_bytes() -> Callable[[str], bytes]:
    """Factory for a one-page PDF containing the given text."""
    import fitz

    def _make(text: str) -> bytes:
        doc = fitz.open()
        page = doc.new_page()
        page.insert_text((72, 72), text)
        data = doc.tobytes()
        doc.close()
        return data

    return _make


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path_factory, monkeypatch) -> Path:
    """Point the settings file at a temp dir and clear FOLDWISE_* overrides."""
    config_dir = tmp_path_factory.mktemp("config")
    monkeypatch.setenv("FOLDWISE_CONFIG_DIR", str(config_dir))
    for name in (
        "PROVIDER", "MODEL", "CONCURRENCY", "MAX_ATTEMPTS", "BASE_DELAY",
        "MAX_DELAY", "PREVIEW_CHARS", "SUFFIX_FORMAT",
    ):
        monkeypatch.delenv(f"FOLDWISE_{name}", raising=False)
    return config_dir


def _png_chunk(kind: bytes, data: bytes) -> bytes:
    return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data))


@pytest.fixture
def huge_png_bytes() -> bytes:
    """A tiny PNG whose header claims 30000x30000 pixels."""
    header = struct.pack(">IIBBBBB", 30000, 30000, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", header)
        + _png_chunk(b"IDAT", zlib.compress(b"\x00"))
        + _png_chunk(b"IEND", b"")
    )
