# tests/unit/detection/test_detection.py

import pytest

from flipbook_ingest.config import IngestConfig
from flipbook_ingest.detection import detect_format, printable_ratio
from flipbook_ingest.errors import CorruptError, UnsupportedFormatError
from flipbook_ingest.models import FormatKind


class TestSignatures:
    def test_docx_detected_from_content_types(self, make_docx) -> None:
        """A zip with [Content_Types].xml is OOXML."""
        data = make_docx("<w:p><w:r><w:t>Hi</w:t></w:r></w:p>")
        assert detect_format(data, "anything.bin") == FormatKind.DOCX

    def test_epub_detected_from_mimetype(self, make_epub) -> None:
        """The stored mimetype entry identifies EPUB."""
        data = make_epub([("ch1.xhtml", "<p>Hello</p>")])
        assert detect_format(data, "book.docx") == FormatKind.EPUB

    def test_epub_without_mimetype_uses_container(self, make_zip) -> None:
        """META-INF/container.xml is enough when mimetype is missing."""
        data = make_zip([("META-INF/container.xml", "<container/>")])
        assert detect_format(data) == FormatKind.EPUB

    def test_ole2_is_legacy_doc(self, make_doc) -> None:
        assert detect_format(make_doc(["Hello"]), "x.txt") == FormatKind.LEGACY_DOC

    def test_other_zip_is_unsupported(self, make_zip) -> None:
        """A zip that is neither OOXML nor EPUB is rejected."""
        data = make_zip([("readme.txt", "hello")])
        with pytest.raises(UnsupportedFormatError):
            detect_format(data, "book.docx")

    def test_truncated_zip_is_corrupt(self, make_docx) -> None:
        """Signature decides the format; damage then surfaces as corruption."""
        data = make_docx("<w:p/>")
        truncated = data[: len(data) - 30]
        with pytest.raises(CorruptError):
            detect_format(truncated, "book.docx")


class TestTextClassification:
    def test_plain_text(self) -> None:
        assert detect_format(b"Once upon a time.\n", "story.txt") == FormatKind.PLAIN_TEXT

    def test_extension_is_not_trusted(self) -> None:
        """A .docx name on plain text still yields plain text."""
        assert detect_format(b"Just words here.", "book.docx") == FormatKind.PLAIN_TEXT

    def test_xml_declaration(self) -> None:
        data = b'<?xml version="1.0"?><book><p>x</p></book>'
        assert detect_format(data, "book.txt") == FormatKind.XML

    def test_xml_declaration_after_utf8_bom(self) -> None:
        data = b'\xef\xbb\xbf<?xml version="1.0"?><book/>'
        assert detect_format(data) == FormatKind.XML

    def test_utf16_xml_declaration(self) -> None:
        data = '\ufeff<?xml version="1.0"?><book/>'.encode("utf-16-le")
        assert detect_format(data) == FormatKind.XML

    def test_undeclared_xml_needs_xml_extension(self) -> None:
        """Without a declaration, only .xml/.fb2 names break the tie."""
        data = b"<FictionBook><body/></FictionBook>"
        assert detect_format(data, "novel.fb2") == FormatKind.XML
        assert detect_format(data, "novel.txt") == FormatKind.PLAIN_TEXT

    def test_utf8_multibyte_text(self) -> None:
        data = "Глава 1\n\nТекст главы.".encode("utf-8")
        assert detect_format(data) == FormatKind.PLAIN_TEXT

    def test_binary_is_unsupported(self) -> None:
        data = bytes(range(32)) * 20
        with pytest.raises(UnsupportedFormatError):
            detect_format(data, "book.txt")

    def test_empty_is_unsupported(self) -> None:
        with pytest.raises(UnsupportedFormatError):
            detect_format(b"", "empty.txt")

    def test_only_sniff_window_is_inspected(self) -> None:
        """Binary bytes beyond the sniff window do not affect detection."""
        data = b"a" * 64 + b"\x00" * 1000
        config = IngestConfig(sniff_size=64)
        assert detect_format(data, config=config) == FormatKind.PLAIN_TEXT


class TestPrintableRatio:
    def test_all_printable(self) -> None:
        assert printable_ratio(b"abc\n\t") == 1.0

    def test_controls_count_against(self) -> None:
        assert printable_ratio(b"ab\x00\x01") == 0.5

    def test_empty_sample(self) -> None:
        assert printable_ratio(b"") == 0.0
