# src/flipbook_ingest/decoders/base.py

from abc import ABC, abstractmethod
from dataclasses import replace

from flipbook_ingest.budget import DecodeBudget
from flipbook_ingest.models import (
    Block,
    DocumentTree,
    Emphasis,
    Heading,
    ListBlock,
    PageBreak,
    Paragraph,
    TextRun,
    TreeWarning,
)

# Warning codes
ENCODING_FALLBACK = "encoding_fallback"
FALLBACK_EXTRACTION = "fallback_extraction"
FORMATTING_LOST = "formatting_lost"
IMAGE_DROPPED = "image_dropped"
SPINE_ITEM_MISSING = "spine_item_missing"
TABLE_FLATTENED = "table_flattened"
UNKNOWN_ELEMENT = "unknown_element"


class DocumentDecoder(ABC):
    @abstractmethod
    def decode(self, data: bytes, *, budget: DecodeBudget) -> DocumentTree:
        """
        Decode raw bytes into a document tree.

        Requirements:
        - Deterministic output for same input
        - Every inflated or extracted byte is charged to ``budget``
        - Recoverable fidelity loss is reported as a warning, not an error
        """
        raise NotImplementedError


def merge_runs(runs: list[TextRun]) -> tuple[TextRun, ...]:
    """Join adjacent runs sharing emphasis, trim paragraph edges, drop empties."""
    merged: list[TextRun] = []
    for run in runs:
        if not run.text:
            continue
        if merged and merged[-1].emphasis == run.emphasis:
            merged[-1] = TextRun(merged[-1].text + run.text, run.emphasis)
        else:
            merged.append(run)

    while merged and not merged[0].text.strip():
        merged.pop(0)
    while merged and not merged[-1].text.strip():
        merged.pop()
    if not merged:
        return ()

    merged[0] = TextRun(merged[0].text.lstrip(), merged[0].emphasis)
    merged[-1] = TextRun(merged[-1].text.rstrip(), merged[-1].emphasis)
    return tuple(merged)


class TreeBuilder:
    """Accumulates blocks for one decode call and freezes them into a tree."""

    def __init__(self) -> None:
        self.title = ""
        self.author = ""
        self._blocks: list[Block] = []
        self._segments: list[int] = [0]
        self._warnings: list[TreeWarning] = []

    def __len__(self) -> int:
        return len(self._blocks)

    def start_segment(self) -> None:
        position = len(self._blocks)
        if self._segments[-1] != position:
            self._segments.append(position)

    def add(self, block: Block) -> None:
        self._blocks.append(block)

    def heading(self, level: int, text: str) -> None:
        text = " ".join(text.split())
        if text:
            self._blocks.append(Heading(level=max(1, min(level, 6)), text=text))

    def paragraph(self, runs: list[TextRun]) -> None:
        merged = merge_runs(runs)
        if merged:
            self._blocks.append(Paragraph(runs=merged))

    def text(self, text: str, emphasis: frozenset[Emphasis] = frozenset()) -> None:
        self.paragraph([TextRun(text, emphasis)])

    def page_break(self) -> None:
        if self._blocks and not isinstance(self._blocks[-1], PageBreak):
            self._blocks.append(PageBreak())

    def list_block(self, items: list[Block], ordered: bool = False) -> None:
        if items:
            self._blocks.append(ListBlock(items=tuple(items), ordered=ordered))

    def warn(self, code: str, message: str) -> None:
        self._warnings.append(
            TreeWarning(code=code, message=message, position=len(self._blocks))
        )

    def append_tree(self, tree: DocumentTree) -> None:
        """Append a sub-tree as a new segment, re-anchoring its warnings."""
        self.start_segment()
        offset = len(self._blocks)
        self._blocks.extend(tree.blocks)
        for warning in tree.warnings:
            self._warnings.append(
                TreeWarning(
                    code=warning.code,
                    message=warning.message,
                    position=warning.position + offset,
                )
            )

    def build(self) -> DocumentTree:
        segments = sorted({s for s in self._segments if s < len(self._blocks)} | {0})
        # Trailing warnings belong to the last block, not to whatever follows
        last = max(len(self._blocks) - 1, 0)
        warnings = tuple(
            replace(warning, position=last) if warning.position > last else warning
            for warning in self._warnings
        )
        return DocumentTree(
            blocks=tuple(self._blocks),
            segments=tuple(segments),
            title=" ".join(self.title.split()),
            author=" ".join(self.author.split()),
            warnings=warnings,
        )
