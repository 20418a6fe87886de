# src/flipbook_ingest/models.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class FormatKind(str, Enum):
    """Closed set of formats the pipeline knows how to decode."""

    PLAIN_TEXT = "plain_text"
    LEGACY_DOC = "legacy_doc"
    DOCX = "docx"
    EPUB = "epub"
    XML = "xml"
    UNKNOWN = "unknown"


class Emphasis(str, Enum):
    BOLD = "bold"
    ITALIC = "italic"


# ---------------------------------------------------------------------------
# Document tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextRun:
    text: str
    emphasis: frozenset[Emphasis] = frozenset()


@dataclass(frozen=True)
class Heading:
    level: int
    text: str


@dataclass(frozen=True)
class Paragraph:
    runs: tuple[TextRun, ...]

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


@dataclass(frozen=True)
class PageBreak:
    pass


@dataclass(frozen=True)
class ListBlock:
    items: tuple["Block", ...]
    ordered: bool = False


Block = Union[Heading, Paragraph, PageBreak, ListBlock]


@dataclass(frozen=True)
class TreeWarning:
    """Decoder warning anchored at a block index of the tree."""

    code: str
    message: str
    position: int


@dataclass(frozen=True)
class DocumentTree:
    """Flat, immutable block sequence produced by a decoder.

    ``segments`` lists the block index where each hard boundary starts
    (an EPUB spine entry, an XML section). Single-flow formats have ``(0,)``.
    """

    blocks: tuple[Block, ...]
    segments: tuple[int, ...] = (0,)
    title: str = ""
    author: str = ""
    warnings: tuple[TreeWarning, ...] = ()

    def segment_spans(self) -> list[tuple[int, int]]:
        bounds = [*self.segments, len(self.blocks)]
        return [
            (start, end) for start, end in zip(bounds, bounds[1:]) if start < end
        ]


# ---------------------------------------------------------------------------
# Parse result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Chapter:
    index: int
    title: str
    html: str
    # Diagnostic only: (start, end) block span in the document tree
    source_span: tuple[int, int] | None = None


@dataclass(frozen=True)
class ParseWarning:
    """Informational; never blocks a successful parse."""

    code: str
    message: str
    chapter_index: int | None = None


@dataclass(frozen=True)
class ParseResult:
    chapters: tuple[Chapter, ...]
    warnings: tuple[ParseWarning, ...] = field(default_factory=tuple)
    title: str = ""
    author: str = ""
    format: FormatKind = FormatKind.UNKNOWN
