# src/flipbook_ingest/sanitizer.py

"""Render document blocks to allow-listed HTML.

Output is built from typed blocks, never by filtering markup, so the only
tags that can appear are the ones emitted here. Every text node goes through
``html.escape`` after control characters are removed.
"""

import html
import re

from .config import DEFAULT_ALLOWED_TAGS
from .errors import TooLargeError
from .models import Block, Emphasis, Heading, ListBlock, PageBreak, Paragraph, TextRun

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
MAX_HEADING_TAG = 3


def clean_text(text: str) -> str:
    return _CONTROL_CHARS.sub("", text.replace("\t", " "))


def render_blocks(
    blocks: tuple[Block, ...] | list[Block],
    *,
    allowed_tags: frozenset[str] = DEFAULT_ALLOWED_TAGS,
    max_size: int,
) -> str:
    """Render blocks to an HTML fragment.

    Raises:
        TooLargeError: If the UTF-8 encoded fragment exceeds ``max_size``.
    """
    renderer = _Renderer(allowed_tags)
    parts = [renderer.block(block) for block in blocks]
    fragment = "\n".join(part for part in parts if part)

    size = len(fragment.encode("utf-8"))
    if size > max_size:
        raise TooLargeError(f"chapter HTML is {size} bytes, limit {max_size}")
    return fragment


class _Renderer:
    def __init__(self, allowed_tags: frozenset[str]) -> None:
        self.allowed_tags = allowed_tags

    def wrap(self, tag: str, inner: str) -> str:
        if tag in self.allowed_tags:
            return f"<{tag}>{inner}</{tag}>"
        return inner

    def block(self, block: Block) -> str:
        if isinstance(block, Heading):
            level = max(1, min(block.level, MAX_HEADING_TAG))
            return self.wrap(f"h{level}", html.escape(clean_text(block.text)))
        if isinstance(block, Paragraph):
            inner = self.runs(block.runs)
            return self.wrap("p", inner) if inner else ""
        if isinstance(block, ListBlock):
            return self.list_block(block)
        if isinstance(block, PageBreak):
            return ""
        raise TypeError(f"unknown block type {type(block).__name__}")

    def list_block(self, block: ListBlock) -> str:
        items: list[str] = []
        for item in block.items:
            if isinstance(item, ListBlock):
                nested = self.list_block(item)
                if items:
                    items[-1] += nested
                else:
                    items.append(nested)
            elif isinstance(item, Paragraph):
                items.append(self.runs(item.runs))
            else:
                items.append(self.block(item))
        inner = "".join(self.wrap("li", item) for item in items if item)
        if not inner:
            return ""
        return self.wrap("ol" if block.ordered else "ul", inner)

    def runs(self, runs: tuple[TextRun, ...]) -> str:
        line_break = "<br>" if "br" in self.allowed_tags else " "
        out = []
        for run in runs:
            text = html.escape(clean_text(run.text)).replace("\n", line_break)
            if not text:
                continue
            if Emphasis.ITALIC in run.emphasis:
                text = self.wrap("em", text)
            if Emphasis.BOLD in run.emphasis:
                text = self.wrap("strong", text)
            out.append(text)
        return "".join(out)
