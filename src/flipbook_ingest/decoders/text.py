# src/flipbook_ingest/decoders/text.py

import codecs
import logging
import re

from flipbook_ingest.budget import DecodeBudget
from flipbook_ingest.models import DocumentTree

from .base import ENCODING_FALLBACK, DocumentDecoder, TreeBuilder

logger = logging.getLogger(__name__)

_NUMBER_WORDS = (
    "one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve|thirteen|"
    "fourteen|fifteen|sixteen|seventeen|eighteen|nineteen|twenty|thirty|forty|"
    "fifty|sixty|seventy|eighty|ninety|hundred"
)
_CHAPTER_LINE = re.compile(
    rf"^(chapter|глава)\s+([0-9]+|[ivxlcdm]+|{_NUMBER_WORDS})\b.*$",
    re.IGNORECASE,
)
_BLANK_RUN = re.compile(r"\n[ \t]*\n")

MAX_CHAPTER_LINE = 100
MAX_CAPS_LINE = 60


def heading_level(line: str) -> int | None:
    """Heading level suggested by a single line of running text.

    "Chapter N" lines are level 1; short all-caps lines are level 2.
    """
    line = line.strip()
    if not line:
        return None
    if len(line) <= MAX_CHAPTER_LINE and _CHAPTER_LINE.match(line):
        return 1
    if len(line) > MAX_CAPS_LINE or not line.isupper():
        return None
    letters = [c for c in line if c.isalpha()]
    return 2 if len(letters) >= 2 else None


def add_text_blocks(builder: TreeBuilder, text: str) -> None:
    """Split normalized text into paragraphs, headings and page breaks."""
    for page_number, page in enumerate(text.split("\f")):
        if page_number:
            builder.page_break()
        for chunk in _BLANK_RUN.split(page):
            lines: list[str] = []
            for line in chunk.split("\n"):
                level = heading_level(line)
                if level is None:
                    lines.append(line.rstrip())
                    continue
                if lines:
                    builder.text("\n".join(lines))
                    lines = []
                builder.heading(level, line)
            if lines:
                builder.text("\n".join(lines))


class PlainTextDecoder(DocumentDecoder):
    """
    Plain text decoder.
    - BOM-aware; UTF-8 with Latin-1 fallback
    - Blank-line runs separate paragraphs
    - "Chapter N" and short all-caps lines become headings
    """

    def __init__(self, fallback_threshold: float = 0.01) -> None:
        self.fallback_threshold = fallback_threshold

    def decode(self, data: bytes, *, budget: DecodeBudget) -> DocumentTree:
        builder = TreeBuilder()
        # Bounded by the input cap; nothing is inflated
        text = self._decode_bytes(data, builder)

        text = text.replace("\r\n", "\n").replace("\r", "\n")
        add_text_blocks(builder, text)
        return builder.build()

    def _decode_bytes(self, data: bytes, builder: TreeBuilder) -> str:
        if data.startswith(codecs.BOM_UTF8):
            return data[len(codecs.BOM_UTF8) :].decode("utf-8", errors="replace")
        if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
            return data.decode("utf-16", errors="replace")

        text = data.decode("utf-8", errors="replace")
        invalid = text.count("\ufffd")
        if text and invalid / len(text) > self.fallback_threshold:
            logger.debug(
                "UTF-8 decode produced %d replacement chars, falling back to Latin-1",
                invalid,
            )
            builder.warn(
                ENCODING_FALLBACK, "Text was not valid UTF-8; decoded as Latin-1."
            )
            return data.decode("latin-1")
        return text
