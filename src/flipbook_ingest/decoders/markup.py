# src/flipbook_ingest/decoders/markup.py

"""lxml helpers shared by the XML-based decoders.

Parsers are created per call: lxml parser objects are not safe to share
between threads, and nothing here may hold process-wide state.
"""

import html
import re
from collections.abc import Callable, Iterable, Iterator

from lxml import etree
from lxml import html as lxml_html

from flipbook_ingest.errors import CorruptError
from flipbook_ingest.models import Emphasis, TextRun

_WHITESPACE = re.compile(r"\s+")

BOLD_TAGS = frozenset({"b", "strong", "bold"})
ITALIC_TAGS = frozenset({"i", "em", "emphasis", "italic", "cite"})
SKIP_TAGS = frozenset({"script", "style", "head", "title", "binary", "noscript"})
IMAGE_TAGS = frozenset({"img", "image", "svg", "picture", "figure"})


def xml_parser() -> etree.XMLParser:
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        dtd_validation=False,
        huge_tree=False,
        remove_comments=True,
        remove_pis=True,
    )


def parse_xml(data: bytes, what: str) -> etree._Element:
    try:
        root = etree.fromstring(data, parser=xml_parser())
    except etree.XMLSyntaxError as exc:
        raise CorruptError(f"malformed XML in {what}: {exc}") from exc
    if root is None:
        raise CorruptError(f"empty XML document in {what}")
    return root


def parse_markup(data: bytes, what: str) -> etree._Element:
    """Parse XHTML, falling back to the lenient HTML parser for tag soup."""
    try:
        return etree.fromstring(data, parser=xml_parser())
    except etree.XMLSyntaxError:
        pass
    parser = lxml_html.HTMLParser(
        no_network=True, remove_comments=True, remove_pis=True
    )
    try:
        root = lxml_html.document_fromstring(data, parser=parser)
    except (etree.ParserError, ValueError) as exc:
        raise CorruptError(f"unparseable markup in {what}: {exc}") from exc
    return root


def local_name(element: etree._Element) -> str:
    """Lowercased tag name without namespace; "" for comments and PIs."""
    if not isinstance(element.tag, str):
        return ""
    return etree.QName(element).localname.lower()


def children(element: etree._Element) -> Iterable[etree._Element]:
    return (child for child in element if isinstance(child.tag, str))


def find_child(element: etree._Element, *names: str) -> etree._Element | None:
    for child in children(element):
        if local_name(child) in names:
            return child
    return None


def collapse(text: str | None) -> str:
    return _WHITESPACE.sub(" ", text) if text else ""


def is_entity(node: etree._Element) -> bool:
    return isinstance(node, etree._Entity)


def entity_text(entity: etree._Entity) -> str:
    """Text of an unexpanded entity reference; "" when the name is unknown.

    DTDs are never loaded, so a document that declares one keeps named
    references such as ``&mdash;`` as entity nodes in the tree.
    """
    reference = entity.text or ""
    resolved = html.unescape(reference)
    return "" if resolved == reference else resolved


def element_text(element: etree._Element) -> str:
    return " ".join("".join(_iter_text(element)).split())


def _iter_text(element: etree._Element) -> Iterator[str]:
    if element.text:
        yield element.text
    for child in element:
        if is_entity(child):
            yield entity_text(child)
        elif isinstance(child.tag, str):
            yield from _iter_text(child)
        if child.tail:
            yield child.tail


def emphasis_for(
    name: str, base: frozenset[Emphasis] = frozenset()
) -> frozenset[Emphasis]:
    if name in BOLD_TAGS:
        return base | {Emphasis.BOLD}
    if name in ITALIC_TAGS:
        return base | {Emphasis.ITALIC}
    return base


def collect_runs(
    element: etree._Element,
    *,
    on_image: Callable[[], None] | None = None,
    emphasis: frozenset[Emphasis] = frozenset(),
    skip: frozenset[str] = frozenset(),
) -> list[TextRun]:
    """Flatten an element's inline content into emphasis-tagged runs.

    Whitespace is collapsed as HTML would; ``br`` becomes a newline.
    Subtrees named in ``skip`` are left out (their tails are kept).
    """
    runs: list[TextRun] = []
    _walk_inline(element, emphasis, runs, on_image, SKIP_TAGS | skip)
    return runs


def _walk_inline(
    element: etree._Element,
    emphasis: frozenset[Emphasis],
    runs: list[TextRun],
    on_image: Callable[[], None] | None,
    skip: frozenset[str],
) -> None:
    if element.text:
        runs.append(TextRun(collapse(element.text), emphasis))

    for child in element:
        name = local_name(child)
        if is_entity(child):
            runs.append(TextRun(entity_text(child), emphasis))
        elif name in skip:
            pass
        elif name == "br":
            runs.append(TextRun("\n", emphasis))
        elif name in IMAGE_TAGS:
            if on_image is not None:
                on_image()
        elif name:
            _walk_inline(child, emphasis_for(name, emphasis), runs, on_image, skip)

        if child.tail:
            runs.append(TextRun(collapse(child.tail), emphasis))
