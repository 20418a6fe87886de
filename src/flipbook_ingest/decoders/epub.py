# src/flipbook_ingest/decoders/epub.py

import logging
import posixpath
import zipfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from lxml import etree

from flipbook_ingest.budget import DecodeBudget
from flipbook_ingest.errors import CorruptError, UnsupportedFeatureError
from flipbook_ingest.models import Block, DocumentTree, ListBlock, Paragraph, TextRun

from .archive import find_entry, open_archive, read_entry, read_path, resolve_href
from .base import (
    IMAGE_DROPPED,
    SPINE_ITEM_MISSING,
    TABLE_FLATTENED,
    DocumentDecoder,
    TreeBuilder,
    merge_runs,
)
from .markup import (
    IMAGE_TAGS,
    SKIP_TAGS,
    children,
    collapse,
    collect_runs,
    element_text,
    emphasis_for,
    entity_text,
    is_entity,
    local_name,
    parse_markup,
    parse_xml,
)

logger = logging.getLogger(__name__)

CONTAINER_PATH = "META-INF/container.xml"
ENCRYPTION_PATH = "META-INF/encryption.xml"
# Font obfuscation is not content encryption
_OBFUSCATION_ALGORITHMS = {
    "http://www.idpf.org/2008/embedding",
    "http://ns.adobe.com/pdf/enc#RC",
}

_HEADINGS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
_CONTAINERS = {
    "html", "body", "div", "section", "article", "main", "aside", "blockquote",
    "header", "footer", "nav", "center", "hgroup",
}
_LIST_TAGS = frozenset({"ul", "ol"})
_BLOCK_TAGS = (
    set(_HEADINGS) | _CONTAINERS | _LIST_TAGS
    | {"p", "hr", "table", "pre", "dl", "dt", "dd", "li", "figcaption"}
)
_PAGE_BREAK_HINTS = ("pagebreak", "page-break")


@dataclass(frozen=True)
class SpineItem:
    position: int
    path: str


class EpubDecoder(DocumentDecoder):
    """
    EPUB decoder.
    - Reading order is the OPF spine, never archive or filename order
    - Each spine document starts a new segment
    - Spine documents are inflated on a bounded thread pool
    """

    def __init__(self, max_workers: int = 4) -> None:
        self.max_workers = max_workers

    def decode(self, data: bytes, *, budget: DecodeBudget) -> DocumentTree:
        builder = TreeBuilder()
        with open_archive(data) as archive:
            opf_path = self._package_path(archive, budget)
            opf = read_path(archive, opf_path, budget)
            if opf is None:
                raise CorruptError(f"package document {opf_path} is missing")
            package = parse_xml(opf, opf_path)

            builder.title, builder.author = _metadata(package)
            spine = self._spine(package, posixpath.dirname(opf_path))
            if not spine:
                raise CorruptError("spine lists no content documents")
            self._check_encryption(archive, spine, budget)

            workers = max(1, min(self.max_workers, len(spine)))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                # map() yields in submission order, so the join is by spine index
                trees = list(
                    executor.map(
                        lambda item: self._decode_item(archive, item, budget), spine
                    )
                )

        for item, tree in zip(spine, trees):
            if tree is None:
                builder.warn(
                    SPINE_ITEM_MISSING, f"Spine document {item.path} is missing."
                )
                continue
            if tree.blocks or tree.warnings:
                builder.append_tree(tree)

        logger.debug(
            "Decoded EPUB %s: spine=%d blocks=%d", opf_path, len(spine), len(builder)
        )
        return builder.build()

    def _package_path(self, archive: zipfile.ZipFile, budget: DecodeBudget) -> str:
        container = read_path(archive, CONTAINER_PATH, budget)
        if container is None:
            raise CorruptError(f"{CONTAINER_PATH} is missing")
        root = parse_xml(container, CONTAINER_PATH)
        for element in root.iter():
            if local_name(element) == "rootfile" and element.get("full-path"):
                return resolve_href("", element.get("full-path"))
        raise CorruptError("container.xml names no rootfile")

    def _spine(self, package: etree._Element, opf_dir: str) -> list[SpineItem]:
        manifest: dict[str, tuple[str, str]] = {}
        spine_el = None
        for section in children(package):
            name = local_name(section)
            if name == "manifest":
                for item in children(section):
                    if local_name(item) == "item" and item.get("id"):
                        manifest[item.get("id")] = (
                            item.get("href", ""),
                            item.get("media-type", ""),
                        )
            elif name == "spine":
                spine_el = section
        if spine_el is None:
            raise CorruptError("package document has no spine")

        items: list[SpineItem] = []
        seen: set[str] = set()
        for itemref in children(spine_el):
            entry = manifest.get(itemref.get("idref", ""))
            if entry is None:
                continue
            href, media_type = entry
            if "html" not in media_type and "xml" not in media_type:
                continue
            path = resolve_href(opf_dir, href)
            if not path or path in seen:
                continue
            seen.add(path)
            items.append(SpineItem(position=len(items), path=path))
        return items

    def _check_encryption(
        self, archive: zipfile.ZipFile, spine: list[SpineItem], budget: DecodeBudget
    ) -> None:
        content = read_path(archive, ENCRYPTION_PATH, budget)
        if content is None:
            return
        spine_paths = {item.path.lower() for item in spine}
        root = parse_xml(content, ENCRYPTION_PATH)
        for encrypted in root.iter():
            if local_name(encrypted) != "encrypteddata":
                continue
            algorithm = ""
            uri = ""
            for element in encrypted.iter():
                name = local_name(element)
                if name == "encryptionmethod":
                    algorithm = element.get("Algorithm", "")
                elif name == "cipherreference":
                    uri = element.get("URI", "")
            if algorithm in _OBFUSCATION_ALGORITHMS:
                continue
            if resolve_href("", uri).lower() in spine_paths:
                raise UnsupportedFeatureError(f"spine document {uri} is encrypted")

    def _decode_item(
        self, archive: zipfile.ZipFile, item: SpineItem, budget: DecodeBudget
    ) -> DocumentTree | None:
        info = find_entry(archive, item.path)
        if info is None:
            return None
        content = read_entry(archive, info, budget)
        root = parse_markup(content, item.path)
        builder = TreeBuilder()
        _XhtmlWalker(builder).walk(_body(root))
        return builder.build()


def _metadata(package: etree._Element) -> tuple[str, str]:
    title = ""
    author = ""
    for element in package.iter():
        name = local_name(element)
        if name == "title" and not title:
            title = element_text(element)
        elif name == "creator" and not author:
            author = element_text(element)
    return title, author


def _body(root: etree._Element) -> etree._Element:
    for element in root.iter():
        if local_name(element) == "body":
            return element
    return root


class _XhtmlWalker:
    def __init__(self, builder: TreeBuilder) -> None:
        self.builder = builder

    def _image_dropped(self) -> None:
        self.builder.warn(IMAGE_DROPPED, "An embedded image was dropped.")

    def walk(self, container: etree._Element) -> None:
        """Emit blocks for a container; loose inline content becomes paragraphs."""
        pending: list[TextRun] = []
        if container.text:
            pending.append(TextRun(collapse(container.text)))

        for child in container:
            name = local_name(child)
            if is_entity(child):
                pending.append(TextRun(entity_text(child)))
            elif not name:
                pass
            elif name in _BLOCK_TAGS or name in IMAGE_TAGS or name in SKIP_TAGS:
                self.builder.paragraph(pending)
                pending = []
                self._block(child)
            else:
                pending.extend(
                    collect_runs(
                        child,
                        on_image=self._image_dropped,
                        emphasis=emphasis_for(name),
                    )
                )
            if child.tail:
                pending.append(TextRun(collapse(child.tail)))

        self.builder.paragraph(pending)

    def _block(self, element: etree._Element) -> None:
        name = local_name(element)
        if name in SKIP_TAGS:
            return
        if name in _HEADINGS:
            self.builder.heading(_HEADINGS[name], element_text(element))
        elif name in ("ul", "ol"):
            self.builder.list_block(self._list_items(element), ordered=name == "ol")
        elif name == "hr":
            if any(hint in element.get("class", "") for hint in _PAGE_BREAK_HINTS):
                self.builder.page_break()
        elif name in IMAGE_TAGS:
            self._image_dropped()
        elif name == "table":
            self.builder.warn(TABLE_FLATTENED, "A table was flattened to paragraphs.")
            for cell in element.iter():
                if local_name(cell) in ("td", "th"):
                    self.builder.paragraph(collect_runs(cell))
        elif name in _CONTAINERS:
            if _has_page_break_style(element):
                self.builder.page_break()
            self.walk(element)
        else:
            self.builder.paragraph(collect_runs(element, on_image=self._image_dropped))

    def _list_items(self, element: etree._Element) -> list[Block]:
        items: list[Block] = []
        for child in children(element):
            if local_name(child) != "li":
                continue
            runs = merge_runs(
                collect_runs(child, on_image=self._image_dropped, skip=_LIST_TAGS)
            )
            if runs:
                items.append(Paragraph(runs=runs))
            for nested in children(child):
                name = local_name(nested)
                if name in _LIST_TAGS:
                    sub_items = self._list_items(nested)
                    if sub_items:
                        items.append(
                            ListBlock(items=tuple(sub_items), ordered=name == "ol")
                        )
        return items


def _has_page_break_style(element: etree._Element) -> bool:
    style = element.get("style", "").replace(" ", "").lower()
    return "page-break-before:always" in style or "break-before:page" in style
