# src/flipbook_ingest/decoders/generic_xml.py

import logging

from lxml import etree

from flipbook_ingest.budget import DecodeBudget
from flipbook_ingest.errors import CorruptError, UnsupportedFeatureError
from flipbook_ingest.models import Block, DocumentTree, ListBlock, Paragraph

from .base import (
    IMAGE_DROPPED,
    TABLE_FLATTENED,
    UNKNOWN_ELEMENT,
    DocumentDecoder,
    TreeBuilder,
    merge_runs,
)
from .markup import (
    collect_runs,
    children,
    element_text,
    entity_text,
    find_child,
    is_entity,
    local_name,
    parse_xml,
)

logger = logging.getLogger(__name__)

FICTION_BOOK = "fictionbook"
ACCEPTED_ROOTS = frozenset(
    {"book", "document", "manuscript", "chapters", "body", "chapter", "section"}
)

_SECTION_TAGS = frozenset({"chapter", "section", "part"})
_TITLE_TAGS = ("title", "heading", "h")
_PARAGRAPH_TAGS = frozenset({"p", "para", "paragraph", "v", "text-author", "date"})
_LIST_TAGS = frozenset({"list", "ul", "ol"})
_ITEM_TAGS = frozenset({"item", "li"})
_BREAK_TAGS = frozenset({"empty-line", "pagebreak", "page-break"})
_NESTED_TAGS = frozenset({"epigraph", "cite", "poem", "stanza", "annotation"})
_IMAGE_TAGS = frozenset({"binary", "image", "img"})

# Deeper nesting is flattened into the enclosing segment
MAX_SECTION_DEPTH = 100


class XmlDecoder(DocumentDecoder):
    """
    Generic XML manuscript decoder.
    - FictionBook: first body, metadata from description/title-info
    - Plain book/chapter/section vocabularies
    - Each chapter/section/part opens a segment titled at its nesting depth
    """

    def decode(self, data: bytes, *, budget: DecodeBudget) -> DocumentTree:
        # Bounded by the input cap; entities and DTDs are never expanded
        root = parse_xml(data, "xml document")
        root_name = local_name(root)

        builder = TreeBuilder()
        if root_name == FICTION_BOOK:
            builder.title, builder.author = _fiction_book_metadata(root)
            body = find_child(root, "body")
            if body is None:
                raise CorruptError("FictionBook has no body")
        elif root_name in ACCEPTED_ROOTS:
            body = root
            builder.title = root.get("title", "")
            builder.author = root.get("author", "")
        else:
            raise UnsupportedFeatureError(f"unrecognized XML root <{root_name}>")

        walker = _XmlWalker(builder)
        if root_name in _SECTION_TAGS:
            walker.section(body, depth=1)
        else:
            walker.walk(body, depth=0)

        logger.debug("Decoded XML <%s>: blocks=%d", root_name, len(builder))
        return builder.build()


def _fiction_book_metadata(root: etree._Element) -> tuple[str, str]:
    description = find_child(root, "description")
    if description is None:
        return "", ""
    title_info = find_child(description, "title-info")
    if title_info is None:
        return "", ""

    book_title = find_child(title_info, "book-title")
    title = element_text(book_title) if book_title is not None else ""

    author = ""
    author_el = find_child(title_info, "author")
    if author_el is not None:
        parts = []
        for part in ("first-name", "middle-name", "last-name"):
            name_el = find_child(author_el, part)
            if name_el is not None and element_text(name_el):
                parts.append(element_text(name_el))
        author = " ".join(parts)
        if not author:
            nickname = find_child(author_el, "nickname")
            author = element_text(nickname if nickname is not None else author_el)
    return title, author


class _XmlWalker:
    def __init__(self, builder: TreeBuilder) -> None:
        self.builder = builder

    def _image_dropped(self) -> None:
        self.builder.warn(IMAGE_DROPPED, "An embedded image was dropped.")

    def section(self, element: etree._Element, depth: int) -> None:
        nested = depth <= MAX_SECTION_DEPTH
        if nested:
            self.builder.start_segment()

        title_el = find_child(element, *_TITLE_TAGS)
        title = element_text(title_el) if title_el is not None else element.get("title", "")
        self.builder.heading(min(depth, 6), title)

        self.walk(element, depth, skip=title_el)
        if nested:
            # Content after a nested section belongs to a fresh segment
            self.builder.start_segment()

    def walk(
        self,
        container: etree._Element,
        depth: int,
        skip: etree._Element | None = None,
    ) -> None:
        # Entity references sit between text nodes; join them into one run
        pending = [container.text or ""]
        for child in container:
            if is_entity(child):
                pending.append(entity_text(child))
            elif isinstance(child.tag, str):
                self._loose_text("".join(pending))
                pending = []
                if child is not skip:
                    self._element(child, depth)
            pending.append(child.tail or "")
        self._loose_text("".join(pending))

    def _loose_text(self, text: str | None) -> None:
        if text and text.strip():
            self.builder.text(" ".join(text.split()))

    def _element(self, element: etree._Element, depth: int) -> None:
        name = local_name(element)
        if name in _SECTION_TAGS:
            self.section(element, depth + 1)
        elif name in _TITLE_TAGS:
            # Outside any section a title names the book, not a chapter
            if depth == 0:
                if not self.builder.title:
                    self.builder.title = element_text(element)
                return
            self.builder.heading(depth, element_text(element))
        elif name == "subtitle":
            self.builder.heading(min(depth + 1, 6), element_text(element))
        elif name in _PARAGRAPH_TAGS:
            self.builder.paragraph(collect_runs(element, on_image=self._image_dropped))
        elif name in _LIST_TAGS:
            self.builder.list_block(self._list_items(element), ordered=name == "ol")
        elif name in _BREAK_TAGS:
            self.builder.page_break()
        elif name in _NESTED_TAGS:
            self.walk(element, depth)
        elif name in _IMAGE_TAGS:
            self._image_dropped()
        elif name == "table":
            self.builder.warn(TABLE_FLATTENED, "A table was flattened to paragraphs.")
            for cell in element.iter():
                if local_name(cell) in ("td", "th"):
                    self.builder.paragraph(collect_runs(cell))
        else:
            runs = collect_runs(element, on_image=self._image_dropped)
            if merge_runs(runs):
                self.builder.warn(
                    UNKNOWN_ELEMENT, f"Unrecognized element <{name}> kept as text."
                )
                self.builder.paragraph(runs)

    def _list_items(self, element: etree._Element) -> list[Block]:
        items: list[Block] = []
        for child in children(element):
            name = local_name(child)
            if name in _ITEM_TAGS:
                runs = merge_runs(
                    collect_runs(child, on_image=self._image_dropped, skip=_LIST_TAGS)
                )
                if runs:
                    items.append(Paragraph(runs=runs))
                for nested in children(child):
                    nested_name = local_name(nested)
                    if nested_name in _LIST_TAGS:
                        sub_items = self._list_items(nested)
                        if sub_items:
                            items.append(
                                ListBlock(
                                    items=tuple(sub_items), ordered=nested_name == "ol"
                                )
                            )
        return items
