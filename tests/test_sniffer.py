"""Tests for content kind sniffing."""

from pathlib import Path

import pytest

from foldwise.core.models import ContentKind
from foldwise.core.sniffer import sniff, sniff_file


class TestSniff:
    """Magic bytes first, extensions only where content has no signature."""

    @pytest.mark.parametrize(
        "name, head, kind, mime",
        [
            ("a.bin", b"%PDF-1.7\n", ContentKind.PDF, "application/pdf"),
            ("photo", b"\x89PNG\r\n\x1a\n0000", ContentKind.IMAGE, "image/png"),
            ("IMG_1.jpg", b"\xff\xd8\xff\xe0", ContentKind.IMAGE, "image/jpeg"),
            ("song.flac", b"fLaC\x00\x00", ContentKind.AUDIO, "audio/flac"),
            ("clip.wav", b"RIFF\x00\x00\x00\x00WAVEfmt ", ContentKind.AUDIO, "audio/wav"),
            ("movie.mp4", b"\x00\x00\x00\x18ftypisom", ContentKind.VIDEO, "video/mp4"),
            ("bundle.zip", b"PK\x03\x04rest", ContentKind.ARCHIVE, "application/zip"),
        ],
    )
    def test_signatures(self, name, head, kind, mime):
        """Test that known signatures win regardless of the file name."""
        assert sniff(Path(name), head) == (kind, mime)

    def test_office_document_is_not_an_archive(self):
        """Test that zip-based documents are not treated as archives."""
        kind, mime = sniff(Path("letter.docx"), b"PK\x03\x04rest")
        assert kind is ContentKind.UNKNOWN
        assert mime == "application/x-docx"

    def test_source_code_is_text(self):
        assert sniff(Path("run.py"), b"print('hi')\n") == (ContentKind.TEXT, "text/plain")

    def test_text_starting_like_a_bitmap_stays_text(self):
        """Test that prose beginning with 'BM' in a .txt file is not an image."""
        kind, _ = sniff(Path("cars.txt"), b"BMW service history\n")
        assert kind is ContentKind.TEXT

    def test_text_extension_with_nul_bytes_is_unknown(self):
        kind, _ = sniff(Path("data.txt"), b"abc\x00def")
        assert kind is ContentKind.UNKNOWN

    def test_extensionless_utf8_is_text(self):
        kind, _ = sniff(Path("README"), "naïve café notes".encode("utf-8"))
        assert kind is ContentKind.TEXT

    def test_pdf_extension_without_header_goes_to_pdf(self):
        """Test that a broken .pdf is still routed to PDF extraction."""
        kind, _ = sniff(Path("broken.pdf"), b"\x01\x02garbage")
        assert kind is ContentKind.PDF

    def test_empty_extensionless_file(self):
        assert sniff(Path("empty"), b"") == (ContentKind.UNKNOWN, None)

    def test_sniff_is_deterministic(self):
        head = b"\xff\xd8\xff\xe0junk"
        assert sniff(Path("x.jpg"), head) == sniff(Path("x.jpg"), head)


class TestSniffFile:
    def test_reads_head_from_disk(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("# Notes\n", encoding="utf-8")
        assert sniff_file(path) == (ContentKind.TEXT, "text/plain")

    def test_missing_file_is_unknown(self, tmp_path):
        assert sniff_file(tmp_path / "gone.bin") == (ContentKind.UNKNOWN, None)
