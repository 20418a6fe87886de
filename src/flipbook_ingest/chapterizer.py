# src/flipbook_ingest/chapterizer.py

import logging
from dataclasses import dataclass

from .errors import TooManyChaptersError
from .models import Block, DocumentTree, Heading, PageBreak

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200


@dataclass(frozen=True)
class ChapterDraft:
    title: str
    blocks: tuple[Block, ...]
    # (start, end) block indices in the source tree
    span: tuple[int, int]


def split_chapters(tree: DocumentTree, *, max_chapters: int) -> list[ChapterDraft]:
    """Split a document tree into ordered chapter drafts.

    Segments (spine documents, XML sections) are hard boundaries. Within a
    segment, chapters start at the shallowest heading level present; content
    before the first such heading is a chapter of its own. Segments without
    headings split at page breaks, or stay whole.

    Raises:
        TooManyChaptersError: If more than ``max_chapters`` drafts result.
            The list is never truncated.
    """
    drafts: list[ChapterDraft] = []
    for start, end in tree.segment_spans():
        for part_start, part_end in _split_segment(tree.blocks, start, end):
            blocks = tree.blocks[part_start:part_end]
            if not any(not isinstance(block, PageBreak) for block in blocks):
                continue
            if len(drafts) == max_chapters:
                raise TooManyChaptersError(
                    f"document has more than {max_chapters} chapters"
                )
            drafts.append(
                ChapterDraft(
                    title=chapter_title(blocks, len(drafts)),
                    blocks=blocks,
                    span=(part_start, part_end),
                )
            )

    logger.debug(
        "Split %d blocks in %d segments into %d chapters",
        len(tree.blocks),
        len(tree.segments),
        len(drafts),
    )
    return drafts


def _split_segment(
    blocks: tuple[Block, ...], start: int, end: int
) -> list[tuple[int, int]]:
    levels = [b.level for b in blocks[start:end] if isinstance(b, Heading)]
    if levels:
        level = min(levels)
        cuts = [
            i
            for i in range(start, end)
            if isinstance(blocks[i], Heading) and blocks[i].level == level
        ]
        bounds = [start, *cuts, end]
        return [(a, b) for a, b in zip(bounds, bounds[1:]) if a < b]

    breaks = [i for i in range(start, end) if isinstance(blocks[i], PageBreak)]
    if not breaks:
        return [(start, end)]
    parts = []
    part_start = start
    for i in breaks:
        parts.append((part_start, i))
        part_start = i + 1
    parts.append((part_start, end))
    return [(a, b) for a, b in parts if a < b]


def chapter_title(blocks: tuple[Block, ...], index: int) -> str:
    for block in blocks:
        if isinstance(block, Heading):
            title = " ".join(block.text.split())[:MAX_TITLE_LENGTH].rstrip()
            if title:
                return title
    return f"Chapter {index + 1}"
