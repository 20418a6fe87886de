# src/flipbook_ingest/detection.py

"""Content-signature format detection.

The filename is a weak hint only: it is consulted solely to break the tie
between plain text and undeclared XML. Client-supplied MIME types are never
looked at.
"""

import logging
from pathlib import PurePosixPath

from .budget import DecodeBudget
from .config import IngestConfig
from .decoders.archive import find_entry, open_archive, read_entry
from .errors import UnsupportedFormatError
from .models import FormatKind

logger = logging.getLogger(__name__)

ZIP_MAGIC = b"PK\x03\x04"
OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

EPUB_MIMETYPE = b"application/epub+zip"

_BOMS = (b"\xef\xbb\xbf", b"\xff\xfe", b"\xfe\xff")
_UTF16_XML_DECLARATIONS = (
    b"\xff\xfe" + "<?xml".encode("utf-16-le"),
    b"\xfe\xff" + "<?xml".encode("utf-16-be"),
)
_XML_EXTENSIONS = {".xml", ".fb2"}
_TEXT_CONTROL_BYTES = {0x09, 0x0A, 0x0C, 0x0D}


def detect_format(
    data: bytes,
    filename: str = "",
    *,
    config: IngestConfig = IngestConfig(),
) -> FormatKind:
    """Classify ``data`` into a ``FormatKind``.

    Raises:
        UnsupportedFormatError: No signature matched and the content is not
            predominantly printable text, or a zip holds neither OOXML nor EPUB.
        CorruptError: A zip signature is present but the container is damaged.
    """
    if not data:
        raise UnsupportedFormatError("empty buffer")

    if data.startswith(ZIP_MAGIC):
        kind = _classify_zip(data)
    elif data.startswith(OLE2_MAGIC):
        kind = FormatKind.LEGACY_DOC
    else:
        kind = _classify_text(data, filename, config)

    logger.debug("Detected format=%s for file=%s", kind.value, filename)
    return kind


def _classify_zip(data: bytes) -> FormatKind:
    with open_archive(data) as archive:
        mimetype = find_entry(archive, "mimetype")
        if mimetype is not None and mimetype.file_size <= 256:
            content = read_entry(
                archive, mimetype, DecodeBudget(256), limit=len(EPUB_MIMETYPE) + 8
            )
            if content.strip() == EPUB_MIMETYPE:
                return FormatKind.EPUB
        if find_entry(archive, "[Content_Types].xml") is not None:
            return FormatKind.DOCX
        if find_entry(archive, "META-INF/container.xml") is not None:
            return FormatKind.EPUB
    raise UnsupportedFormatError("zip container is neither OOXML nor EPUB")


def _classify_text(data: bytes, filename: str, config: IngestConfig) -> FormatKind:
    head = data[: config.sniff_size]
    has_bom = head.startswith(_BOMS)

    if _strip_bom(head).lstrip().startswith(b"<?xml"):
        return FormatKind.XML
    # UTF-16 declarations arrive as "<\0?\0x\0m\0l\0" after the BOM
    if head.startswith(_UTF16_XML_DECLARATIONS):
        return FormatKind.XML

    if has_bom or printable_ratio(head) >= config.printable_ratio:
        suffix = PurePosixPath(filename.replace("\\", "/")).suffix.lower()
        if suffix in _XML_EXTENSIONS and _strip_bom(head).lstrip().startswith(b"<"):
            return FormatKind.XML
        return FormatKind.PLAIN_TEXT

    raise UnsupportedFormatError(
        f"no known signature and content is not text (head={head[:8].hex()})"
    )


def printable_ratio(sample: bytes) -> float:
    """Share of bytes that can appear in text (bytes >= 0x80 count as text)."""
    if not sample:
        return 0.0
    printable = sum(
        1
        for b in sample
        if (0x20 <= b != 0x7F) or b in _TEXT_CONTROL_BYTES
    )
    return printable / len(sample)


def _strip_bom(head: bytes) -> bytes:
    for bom in _BOMS:
        if head.startswith(bom):
            return head[len(bom) :]
    return head
