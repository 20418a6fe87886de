# src/flipbook_ingest/decoders/__init__.py

"""Format decoders for flipbook-ingest.

Each decoder turns raw bytes of one format into a ``DocumentTree``.

Design principles:
- Closed set: dispatch is an explicit branch per ``FormatKind``
- Bounded: every inflated or extracted byte is charged to a ``DecodeBudget``
- Degrade, don't fail: fidelity loss becomes a warning on the tree
- No leakage: library exceptions are mapped to ``ParseError`` subclasses
"""

from .base import DocumentDecoder, TreeBuilder
from .epub import EpubDecoder
from .factory import create_decoder
from .generic_xml import XmlDecoder
from .legacy_doc import LegacyDocDecoder
from .ooxml import DocxDecoder
from .text import PlainTextDecoder

__all__ = [
    # Factory
    "create_decoder",
    # Protocol
    "DocumentDecoder",
    "TreeBuilder",
    # Decoders
    "DocxDecoder",
    "EpubDecoder",
    "LegacyDocDecoder",
    "PlainTextDecoder",
    "XmlDecoder",
]
