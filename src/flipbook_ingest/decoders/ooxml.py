# src/flipbook_ingest/decoders/ooxml.py

import logging
import re
import zipfile

from lxml import etree

from flipbook_ingest.budget import DecodeBudget
from flipbook_ingest.errors import CorruptError
from flipbook_ingest.models import Block, DocumentTree, Emphasis, Paragraph, TextRun

from .archive import find_entry, open_archive, read_entry, read_path, resolve_href
from .base import (
    IMAGE_DROPPED,
    TABLE_FLATTENED,
    DocumentDecoder,
    TreeBuilder,
    merge_runs,
)
from .markup import element_text, local_name, parse_xml

logger = logging.getLogger(__name__)

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
W = f"{{{W_NS}}}"
REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
OFFICE_DOCUMENT_REL = (
    "http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument"
)
DC_NS = "http://purl.org/dc/elements/1.1/"

DEFAULT_MAIN_PART = "word/document.xml"

_HEADING_STYLE = re.compile(r"^heading\s*([1-6])$", re.IGNORECASE)
_FALSE_VALUES = {"0", "false", "off", "none"}
_IMAGE_TAGS = {"drawing", "pict", "object", "alternatecontent"}
_SKIPPED_TAGS = {"del", "movefrom", "ppr", "rpr"}


def _on(element: etree._Element | None) -> bool:
    """OOXML toggle property: present and not explicitly switched off."""
    if element is None:
        return False
    return element.get(f"{W}val", "true").lower() not in _FALSE_VALUES


class DocxDecoder(DocumentDecoder):
    """
    OOXML word-processing decoder.
    - Heading 1-6 paragraph styles become headings
    - A leading Title paragraph names the book
    - Bold/italic run properties become emphasis
    - Tables are flattened, images dropped (both with a warning)
    """

    def decode(self, data: bytes, *, budget: DecodeBudget) -> DocumentTree:
        builder = TreeBuilder()
        with open_archive(data) as archive:
            main_part = self._main_part(archive, budget)
            content = read_path(archive, main_part, budget)
            if content is None:
                raise CorruptError(f"main document part {main_part} is missing")

            part_dir = main_part.rsplit("/", 1)[0] if "/" in main_part else ""
            styles, title_styles = self._load_styles(archive, part_dir, budget)
            bullet_lists = self._load_bullet_lists(archive, part_dir, budget)
            self._load_core_properties(archive, budget, builder)

        root = parse_xml(content, main_part)
        body = root.find(f"{W}body")
        if body is None:
            raise CorruptError(f"{main_part} has no w:body")

        _BodyWalker(builder, styles, title_styles, bullet_lists).walk(body)
        logger.debug(
            "Decoded %s: blocks=%d heading_styles=%d", main_part, len(builder), len(styles)
        )
        return builder.build()

    def _main_part(self, archive: zipfile.ZipFile, budget: DecodeBudget) -> str:
        rels = read_path(archive, "_rels/.rels", budget)
        if rels is None:
            return DEFAULT_MAIN_PART
        root = parse_xml(rels, "_rels/.rels")
        for rel in root.iter(f"{{{REL_NS}}}Relationship"):
            if rel.get("Type") == OFFICE_DOCUMENT_REL and rel.get("Target"):
                return resolve_href("", rel.get("Target"))
        return DEFAULT_MAIN_PART

    def _load_styles(
        self, archive: zipfile.ZipFile, part_dir: str, budget: DecodeBudget
    ) -> tuple[dict[str, int], set[str]]:
        """Map paragraph style ids to heading levels; also the Title style ids."""
        content = read_path(archive, resolve_href(part_dir, "styles.xml"), budget)
        if content is None:
            return {}, set()
        levels: dict[str, int] = {}
        titles: set[str] = set()
        for style in parse_xml(content, "styles.xml").iter(f"{W}style"):
            style_id = style.get(f"{W}styleId")
            if not style_id:
                continue
            name_el = style.find(f"{W}name")
            name = name_el.get(f"{W}val", "") if name_el is not None else ""
            if _is_title_style(style_id, name):
                titles.add(style_id)
            level = _style_level(style_id, name)
            if level is None:
                outline = style.find(f"{W}pPr/{W}outlineLvl")
                if outline is not None and outline.get(f"{W}val", "").isdigit():
                    value = int(outline.get(f"{W}val"))
                    level = value + 1 if value < 6 else None
            if level is not None:
                levels[style_id] = level
        return levels, titles

    def _load_bullet_lists(
        self, archive: zipfile.ZipFile, part_dir: str, budget: DecodeBudget
    ) -> set[str]:
        """numIds whose first level is a bullet list."""
        content = read_path(archive, resolve_href(part_dir, "numbering.xml"), budget)
        if content is None:
            return set()
        root = parse_xml(content, "numbering.xml")
        bullet_abstract: set[str] = set()
        for abstract in root.iter(f"{W}abstractNum"):
            fmt = abstract.find(f"{W}lvl/{W}numFmt")
            if fmt is not None and fmt.get(f"{W}val") == "bullet":
                bullet_abstract.add(abstract.get(f"{W}abstractNumId", ""))
        bullets: set[str] = set()
        for num in root.iter(f"{W}num"):
            ref = num.find(f"{W}abstractNumId")
            if ref is not None and ref.get(f"{W}val") in bullet_abstract:
                bullets.add(num.get(f"{W}numId", ""))
        return bullets

    def _load_core_properties(
        self, archive: zipfile.ZipFile, budget: DecodeBudget, builder: TreeBuilder
    ) -> None:
        info = find_entry(archive, "docProps/core.xml")
        if info is None:
            return
        root = parse_xml(read_entry(archive, info, budget), "docProps/core.xml")
        title = root.find(f"{{{DC_NS}}}title")
        creator = root.find(f"{{{DC_NS}}}creator")
        if title is not None:
            builder.title = element_text(title)
        if creator is not None:
            builder.author = element_text(creator)


def _style_level(style_id: str, name: str) -> int | None:
    for candidate in (name, style_id):
        match = _HEADING_STYLE.match(candidate.strip())
        if match:
            return int(match.group(1))
    if _is_title_style(style_id, name):
        return 1
    return None


def _is_title_style(style_id: str, name: str) -> bool:
    return name.strip().lower() == "title" or style_id.lower() == "title"


class _BodyWalker:
    def __init__(
        self,
        builder: TreeBuilder,
        styles: dict[str, int],
        title_styles: set[str],
        bullet_lists: set[str],
    ) -> None:
        self.builder = builder
        self.styles = styles
        self.title_styles = title_styles
        self.bullet_lists = bullet_lists
        self._list_items: list[Block] = []
        self._list_ordered = False

    def walk(self, body: etree._Element) -> None:
        self._walk(body)
        self._flush_list()

    def _walk(self, container: etree._Element) -> None:
        for child in container:
            name = local_name(child)
            if name == "p":
                self._paragraph(child)
            elif name == "tbl":
                self._flush_list()
                self._table(child)
            elif name == "sdt":
                content = child.find(f"{W}sdtContent")
                if content is not None:
                    self._walk(content)

    def _paragraph(self, p: etree._Element) -> None:
        props = p.find(f"{W}pPr")
        style = ""
        num_id = None
        if props is not None:
            style_el = props.find(f"{W}pStyle")
            if style_el is not None:
                style = style_el.get(f"{W}val", "")
            if _on(props.find(f"{W}pageBreakBefore")):
                self._flush_list()
                self.builder.page_break()
            num_el = props.find(f"{W}numPr/{W}numId")
            if num_el is not None and num_el.get(f"{W}val", "0") != "0":
                num_id = num_el.get(f"{W}val")

        runs, page_breaks = self._runs(p)
        if self._is_leading_title(style):
            text = " ".join("".join(run.text for run in runs).split())
            if text:
                # Names the book; core properties take precedence
                if not self.builder.title:
                    self.builder.title = text
                return
        level = self.styles.get(style) or _style_level(style, "")

        if num_id is not None and level is None:
            merged = merge_runs(runs)
            if merged:
                ordered = num_id not in self.bullet_lists
                if self._list_items and ordered != self._list_ordered:
                    self._flush_list()
                self._list_ordered = ordered
                self._list_items.append(Paragraph(runs=merged))
        else:
            self._flush_list()
            if level is not None:
                self.builder.heading(level, "".join(run.text for run in runs))
            else:
                self.builder.paragraph(runs)

        for _ in range(page_breaks):
            self._flush_list()
            self.builder.page_break()

    def _is_leading_title(self, style: str) -> bool:
        if not style or len(self.builder) or self._list_items:
            return False
        return style in self.title_styles or _is_title_style(style, "")

    def _runs(self, p: etree._Element) -> tuple[list[TextRun], int]:
        runs: list[TextRun] = []
        page_breaks = 0
        for run in _iter_runs(p):
            props = run.find(f"{W}rPr")
            emphasis: frozenset[Emphasis] = frozenset()
            if props is not None:
                flags = set()
                if _on(props.find(f"{W}b")):
                    flags.add(Emphasis.BOLD)
                if _on(props.find(f"{W}i")):
                    flags.add(Emphasis.ITALIC)
                emphasis = frozenset(flags)

            for child in run:
                name = local_name(child)
                if name == "t":
                    runs.append(TextRun(child.text or "", emphasis))
                elif name == "tab":
                    runs.append(TextRun(" ", emphasis))
                elif name in ("br", "cr"):
                    if child.get(f"{W}type") == "page":
                        page_breaks += 1
                    else:
                        runs.append(TextRun("\n", emphasis))
                elif name in _IMAGE_TAGS:
                    self.builder.warn(IMAGE_DROPPED, "An embedded image was dropped.")
        return runs, page_breaks

    def _table(self, table: etree._Element) -> None:
        self.builder.warn(TABLE_FLATTENED, "A table was flattened to paragraphs.")
        for row in table.findall(f"{W}tr"):
            for cell in row.findall(f"{W}tc"):
                for p in cell.iter(f"{W}p"):
                    runs, _ = self._runs(p)
                    self.builder.paragraph(runs)

    def _flush_list(self) -> None:
        if self._list_items:
            self.builder.list_block(self._list_items, ordered=self._list_ordered)
        self._list_items = []
        self._list_ordered = False


def _iter_runs(element: etree._Element):
    """Runs of a paragraph in document order, skipping drawings and deletions."""
    for child in element:
        name = local_name(child)
        if name == "r":
            yield child
        elif name and name not in _IMAGE_TAGS and name not in _SKIPPED_TAGS:
            yield from _iter_runs(child)
