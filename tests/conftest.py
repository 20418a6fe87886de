# tests/conftest.py

import io
import struct
import zipfile
from collections.abc import Callable

import pytest

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"

_CONTENT_TYPES = """<?xml version="1.0" encoding="UTF-8"?>
<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">
  <Default Extension="xml" ContentType="application/xml"/>
  <Override PartName="/word/document.xml"
    ContentType="application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>
</Types>"""

_ROOT_RELS = """<?xml version="1.0" encoding="UTF-8"?>
<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">
  <Relationship Id="rId1"
    Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument"
    Target="word/document.xml"/>
</Relationships>"""

_HEADING_STYLES = f"""<?xml version="1.0" encoding="UTF-8"?>
<w:styles xmlns:w="{W_NS}">
  <w:style w:type="paragraph" w:styleId="Heading1"><w:name w:val="heading 1"/></w:style>
  <w:style w:type="paragraph" w:styleId="Heading2"><w:name w:val="heading 2"/></w:style>
  <w:style w:type="paragraph" w:styleId="Title"><w:name w:val="Title"/></w:style>
  <w:style w:type="paragraph" w:styleId="Custom">
    <w:name w:val="Chapter Start"/><w:pPr><w:outlineLvl w:val="0"/></w:pPr>
  </w:style>
</w:styles>"""


def _zip(entries: list[tuple[str, bytes | str]], stored_first: bool = False) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for position, (name, content) in enumerate(entries):
            if isinstance(content, str):
                content = content.encode("utf-8")
            compress = zipfile.ZIP_STORED if stored_first and position == 0 else None
            zf.writestr(name, content, compress_type=compress)
    return buf.getvalue()


def _create_docx(
    body: str,
    *,
    styles: str | None = _HEADING_STYLES,
    numbering: str | None = None,
    core: tuple[str, str] | None = None,
    rels: bool = True,
) -> bytes:
    """DOCX whose w:body holds ``body`` (raw WordprocessingML, w: prefix)."""
    entries: list[tuple[str, bytes | str]] = [("[Content_Types].xml", _CONTENT_TYPES)]
    if rels:
        entries.append(("_rels/.rels", _ROOT_RELS))
    entries.append(
        (
            "word/document.xml",
            f'<?xml version="1.0" encoding="UTF-8"?>'
            f'<w:document xmlns:w="{W_NS}"><w:body>{body}</w:body></w:document>',
        )
    )
    if styles is not None:
        entries.append(("word/styles.xml", styles))
    if numbering is not None:
        entries.append(("word/numbering.xml", numbering))
    if core is not None:
        title, creator = core
        entries.append(
            (
                "docProps/core.xml",
                '<?xml version="1.0" encoding="UTF-8"?>'
                "<cp:coreProperties "
                'xmlns:cp="http://schemas.openxmlformats.org/package/2006/metadata/core-properties" '
                'xmlns:dc="http://purl.org/dc/elements/1.1/">'
                f"<dc:title>{title}</dc:title><dc:creator>{creator}</dc:creator>"
                "</cp:coreProperties>",
            )
        )
    return _zip(entries)


def _xhtml(body: str, title: str = "Chapter") -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<html xmlns="http://www.w3.org/1999/xhtml">'
        f"<head><title>{title}</title></head><body>{body}</body></html>"
    )


def _create_epub(
    documents: list[tuple[str, str]],
    *,
    spine: list[str] | None = None,
    title: str = "Test Book",
    creator: str = "Test Author",
    raw_documents: bool = False,
    extra: list[tuple[str, bytes | str]] | None = None,
    omit: set[str] | None = None,
) -> bytes:
    """EPUB with OEBPS/<name> documents; ``spine`` defaults to document order."""
    omit = omit or set()
    manifest = "".join(
        f'<item id="{name.replace(".", "_")}" href="{name}" '
        'media-type="application/xhtml+xml"/>'
        for name, _ in documents
    )
    spine_names = spine if spine is not None else [name for name, _ in documents]
    itemrefs = "".join(
        f'<itemref idref="{name.replace(".", "_")}"/>' for name in spine_names
    )
    opf = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<package xmlns="http://www.idpf.org/2007/opf" version="3.0">'
        '<metadata xmlns:dc="http://purl.org/dc/elements/1.1/">'
        f"<dc:title>{title}</dc:title><dc:creator>{creator}</dc:creator>"
        f"</metadata><manifest>{manifest}</manifest><spine>{itemrefs}</spine>"
        "</package>"
    )
    container = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<container xmlns="urn:oasis:names:tc:opendocument:xmlns:container" version="1.0">'
        '<rootfiles><rootfile full-path="OEBPS/content.opf" '
        'media-type="application/oebps-package+xml"/></rootfiles></container>'
    )
    entries: list[tuple[str, bytes | str]] = [
        ("mimetype", "application/epub+zip"),
        ("META-INF/container.xml", container),
        ("OEBPS/content.opf", opf),
    ]
    for name, body in documents:
        if name not in omit:
            entries.append((f"OEBPS/{name}", body if raw_documents else _xhtml(body)))
    entries.extend(extra or [])
    return _zip(entries, stored_first=True)


# --- Word 97-2003 compound file ---

_SECTOR = 512
_ENDOFCHAIN = 0xFFFFFFFE
_FREESECT = 0xFFFFFFFF
_FATSECT = 0xFFFFFFFD
_NOSTREAM = 0xFFFFFFFF

_TEXT_OFFSET = 1024
_FKP_PAGE = 4
_CHPX_OFFSET = 400


def _fib(ccp_text: int, flags: int, ident: int, with_chpx: bool) -> bytearray:
    fib = bytearray(_TEXT_OFFSET)
    struct.pack_into("<HH", fib, 0, ident, 0x00C1)
    struct.pack_into("<H", fib, 10, flags)
    struct.pack_into("<H", fib, 32, 14)  # csw
    struct.pack_into("<H", fib, 62, 22)  # cslw
    struct.pack_into("<I", fib, 64 + 3 * 4, ccp_text)
    struct.pack_into("<H", fib, 152, 93)  # cbRgFcLcb
    if with_chpx:
        struct.pack_into("<II", fib, 154 + 12 * 8, 32, 12)
    struct.pack_into("<II", fib, 154 + 33 * 8, 0, 21)
    return fib


def _fkp(runs: list[tuple[int, int, bool]]) -> bytes:
    page = bytearray(_SECTOR)
    crun = len(runs)
    fcs = [start for start, _, _ in runs] + [runs[-1][1]]
    struct.pack_into(f"<{crun + 1}I", page, 0, *fcs)
    for i, (_, _, bold) in enumerate(runs):
        page[(crun + 1) * 4 + i] = _CHPX_OFFSET // 2 if bold else 0
    page[_CHPX_OFFSET : _CHPX_OFFSET + 4] = b"\x03\x35\x08\x01"
    page[_SECTOR - 1] = crun
    return bytes(page)


def _compound_file(streams: list[tuple[str, bytes]]) -> bytes:
    """Minimal CFB v3: FAT in sector 0, directory in sector 1, then streams."""
    chains = []
    next_sector = 2
    body = b""
    for name, data in streams:
        data = data.ljust(max(4096, -(-len(data) // _SECTOR) * _SECTOR), b"\0")
        count = len(data) // _SECTOR
        chains.append((name, next_sector, count, len(data)))
        next_sector += count
        body += data
    assert next_sector <= 128, "test compound files are limited to one FAT sector"

    fat = [_FREESECT] * 128
    fat[0] = _FATSECT
    fat[1] = _ENDOFCHAIN
    for _, first, count, _ in chains:
        for sector in range(first, first + count - 1):
            fat[sector] = sector + 1
        fat[first + count - 1] = _ENDOFCHAIN

    def entry(name, kind, left, right, child, start, size):
        raw = bytearray(128)
        encoded = (name + "\0").encode("utf-16-le")
        raw[: len(encoded)] = encoded
        struct.pack_into("<HBB", raw, 64, len(encoded), kind, 1)
        struct.pack_into("<III", raw, 68, left, right, child)
        struct.pack_into("<IQ", raw, 116, start, size)
        return bytes(raw)

    entries = [entry("Root Entry", 5, _NOSTREAM, _NOSTREAM, 1, _ENDOFCHAIN, 0)]
    for index, (name, first, _, size) in enumerate(chains, start=1):
        # Each stream hangs off the left of the previous one
        left = index + 1 if index < len(chains) else _NOSTREAM
        entries.append(entry(name, 2, left, _NOSTREAM, _NOSTREAM, first, size))
    directory = b"".join(entries).ljust(_SECTOR, b"\0")
    assert len(directory) == _SECTOR

    header = bytearray(_SECTOR)
    header[:8] = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
    struct.pack_into("<HHHHH", header, 24, 0x003E, 0x0003, 0xFFFE, 9, 6)
    struct.pack_into("<II", header, 44, 1, 1)  # FAT sectors, first directory sector
    struct.pack_into("<IIIII", header, 56, 4096, _ENDOFCHAIN, 0, _ENDOFCHAIN, 0)
    struct.pack_into("<I", header, 76, 0)
    for i in range(1, 109):
        struct.pack_into("<I", header, 76 + 4 * i, _FREESECT)

    return bytes(header) + struct.pack("<128I", *fat) + directory + body


def _create_doc(
    paragraphs: list[str],
    *,
    bold: list[tuple[int, int]] | None = None,
    compressed: bool = False,
    fkp_page: int = _FKP_PAGE,
    encrypted: bool = False,
    ident: int = 0xA5EC,
    word_stream: bool = True,
    extra_streams: list[tuple[str, bytes]] | None = None,
) -> bytes:
    """Word 97 document with one piece; ``bold`` holds character ranges.

    ``fkp_page`` overrides the CHPX page number the bin table points at.
    """
    text = "\r".join(paragraphs) + "\r"
    width = 1 if compressed else 2
    encoded = text.encode("cp1252" if compressed else "utf-16-le")
    assert _TEXT_OFFSET + len(encoded) <= _FKP_PAGE * _SECTOR

    flags = 0x0200 | (0x0100 if encrypted else 0)
    word = _fib(len(text), flags, ident, with_chpx=bold is not None) + encoded
    word = word.ljust(_FKP_PAGE * _SECTOR, b"\0")

    start_fc = _TEXT_OFFSET
    end_fc = _TEXT_OFFSET + len(encoded)
    table = bytearray(4096)
    fc = (_TEXT_OFFSET << 1) | 0x40000000 if compressed else _TEXT_OFFSET
    clx = b"\x02" + struct.pack("<III", 16, 0, len(text)) + struct.pack("<HIH", 0, fc, 0)
    table[: len(clx)] = clx

    if bold is not None:
        runs = []
        cursor = 0
        for begin, end in sorted(bold):
            if begin > cursor:
                runs.append((start_fc + cursor * width, start_fc + begin * width, False))
            runs.append((start_fc + begin * width, start_fc + end * width, True))
            cursor = end
        if cursor < len(text):
            runs.append((start_fc + cursor * width, end_fc, False))
        word += _fkp(runs)
        struct.pack_into("<III", table, 32, start_fc, end_fc, fkp_page)

    streams = []
    if word_stream:
        streams.append(("WordDocument", bytes(word)))
    streams.append(("1Table", bytes(table)))
    streams.extend(extra_streams or [])
    return _compound_file(streams)


@pytest.fixture
def make_docx() -> Callable[..., bytes]:
    return _create_docx


@pytest.fixture
def make_epub() -> Callable[..., bytes]:
    return _create_epub


@pytest.fixture
def make_doc() -> Callable[..., bytes]:
    return _create_doc


@pytest.fixture
def make_zip() -> Callable[..., bytes]:
    return _zip
