# src/flipbook_ingest/decoders/factory.py

from flipbook_ingest.config import IngestConfig
from flipbook_ingest.errors import UnsupportedFormatError
from flipbook_ingest.models import FormatKind

from .base import DocumentDecoder


def create_decoder(kind: FormatKind, config: IngestConfig = IngestConfig()) -> DocumentDecoder:
    """Create the decoder for a detected format.

    The format set is closed: adding a format means adding a branch here.

    Args:
        kind: Format reported by ``detect_format``.
        config: Ingestion configuration (worker count, text heuristics).

    Returns:
        DocumentDecoder for ``kind``.

    Raises:
        UnsupportedFormatError: If ``kind`` has no decoder.

    Example:
        >>> decoder = create_decoder(FormatKind.EPUB)
        >>> tree = decoder.decode(data, budget=DecodeBudget(config.max_total_decoded_size))
    """
    if kind == FormatKind.PLAIN_TEXT:
        from .text import PlainTextDecoder

        return PlainTextDecoder(fallback_threshold=config.text_fallback_threshold)

    if kind == FormatKind.LEGACY_DOC:
        from .legacy_doc import LegacyDocDecoder

        return LegacyDocDecoder()

    if kind == FormatKind.DOCX:
        from .ooxml import DocxDecoder

        return DocxDecoder()

    if kind == FormatKind.EPUB:
        from .epub import EpubDecoder

        return EpubDecoder(max_workers=config.max_workers)

    if kind == FormatKind.XML:
        from .generic_xml import XmlDecoder

        return XmlDecoder()

    raise UnsupportedFormatError(f"no decoder for format {kind.value}")
