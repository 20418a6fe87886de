# src/flipbook_ingest/decoders/legacy_doc.py

"""Word 97-2003 binary documents.

Text lives in the ``WordDocument`` stream of an OLE2 compound file, scattered
across pieces described by the CLX piece table in the ``0Table``/``1Table``
stream. Character formatting lives in CHPX formatted disk pages (FKPs) keyed
by stream offset, not character position.

Files whose structure cannot be read fall back to a printable-run scan of the
``WordDocument`` stream, which recovers text but no structure.
"""

import bisect
import io
import logging
import re
import struct
from dataclasses import dataclass

import olefile

from flipbook_ingest.budget import DecodeBudget
from flipbook_ingest.errors import CorruptError, UnsupportedFeatureError
from flipbook_ingest.models import DocumentTree, Emphasis, TextRun

from .base import FALLBACK_EXTRACTION, FORMATTING_LOST, DocumentDecoder, TreeBuilder
from .text import add_text_blocks, heading_level

logger = logging.getLogger(__name__)

WORD_STREAM = "WordDocument"
ENCRYPTED_STREAM = "EncryptedPackage"

WORD_IDENT = 0xA5EC
FLAG_ENCRYPTED = 0x0100
FLAG_TABLE_STREAM = 0x0200
FIB_BASE_SIZE = 32

# Indices into FibRgLw97 and FibRgFcLcb97
CCP_TEXT_INDEX = 3
CHPX_PAIR_INDEX = 12
CLX_PAIR_INDEX = 33

CLX_GRPPRL = 0x01
CLX_PCDT = 0x02
FC_COMPRESSED = 0x40000000

FKP_SIZE = 512
SPRM_BOLD = 0x0835
SPRM_ITALIC = 0x0836
_TOGGLE_ON = (0x01, 0x81)
# Operand size by spra (bits 13-15 of the sprm); None means length-prefixed
_SPRA_SIZES = {0: 1, 1: 1, 2: 2, 3: 4, 4: 2, 5: 2, 6: None, 7: 3}

FIELD_BEGIN = "\x13"
FIELD_SEPARATOR = "\x14"
FIELD_END = "\x15"
PARAGRAPH_MARK = "\r"
LINE_BREAK = "\x0b"
PAGE_BREAK = "\x0c"
CELL_MARK = "\x07"

MIN_UTF16_RUN = 40
MIN_ASCII_RUN = 50
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_UTF16_RUN = re.compile(r"[^\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]{%d,}" % (MIN_UTF16_RUN + 1))
_ASCII_RUN = re.compile(rb"[\x20-\x7e\t\n\r]{%d,}" % (MIN_ASCII_RUN + 1))


class _StructureError(Exception):
    """The binary structure could not be followed."""


@dataclass(frozen=True)
class Fib:
    table_stream: str
    ccp_text: int
    fc_clx: int
    lcb_clx: int
    fc_chpx: int
    lcb_chpx: int


@dataclass(frozen=True)
class Piece:
    cp_start: int
    cp_end: int
    offset: int
    compressed: bool


@dataclass(frozen=True)
class FormatRange:
    fc_start: int
    fc_end: int
    emphasis: frozenset[Emphasis]


class LegacyDocDecoder(DocumentDecoder):
    """
    Word 97-2003 (.doc) decoder.
    - Text from the piece table, bounded by the main-text length
    - Bold/italic from CHPX pages; other formatting ignored
    - Paragraph headings use the plain-text heuristics
    """

    def decode(self, data: bytes, *, budget: DecodeBudget) -> DocumentTree:
        builder = TreeBuilder()
        try:
            with olefile.OleFileIO(io.BytesIO(data)) as ole:
                if ole.exists(ENCRYPTED_STREAM):
                    raise UnsupportedFeatureError("document is an encrypted package")
                if not ole.exists(WORD_STREAM):
                    raise UnsupportedFeatureError("compound file has no WordDocument stream")
                word = _read_stream(ole, WORD_STREAM, budget)
                table = self._read_table(ole, word, budget)
        except (OSError, ValueError, struct.error) as exc:
            raise CorruptError(f"unreadable compound file: {exc}") from exc

        spans: list[TextRun] = []
        if table is not None:
            fib, table_data = table
            try:
                spans = self._structured_text(word, table_data, fib, builder)
            except _StructureError as exc:
                logger.debug("Piece table unreadable: %s", exc)

        if any(span.text.strip() for span in spans):
            _emit_spans(builder, spans)
        else:
            text = fallback_text(word)
            if not text:
                raise CorruptError("no extractable text in WordDocument stream")
            builder.warn(
                FALLBACK_EXTRACTION,
                "Document structure was unreadable; text was recovered without formatting.",
            )
            add_text_blocks(builder, text)

        logger.debug("Decoded legacy document: blocks=%d", len(builder))
        return builder.build()

    def _read_table(
        self, ole: olefile.OleFileIO, word: bytes, budget: DecodeBudget
    ) -> tuple[Fib, bytes] | None:
        """FIB plus table stream, or None when either cannot be read."""
        try:
            fib = read_fib(word)
        except _StructureError as exc:
            logger.debug("FIB unreadable: %s", exc)
            return None
        if not ole.exists(fib.table_stream):
            logger.debug("Table stream %s is missing", fib.table_stream)
            return None
        return fib, _read_stream(ole, fib.table_stream, budget)

    def _structured_text(
        self, word: bytes, table: bytes, fib: Fib, builder: TreeBuilder
    ) -> list[TextRun]:
        pieces = parse_piece_table(table, fib.fc_clx, fib.lcb_clx)
        try:
            ranges = parse_format_ranges(word, table, fib.fc_chpx, fib.lcb_chpx)
        except _StructureError as exc:
            logger.debug("Character formatting unreadable: %s", exc)
            builder.warn(FORMATTING_LOST, "Character formatting could not be read.")
            ranges = []
        return piece_text(word, pieces, fib.ccp_text, ranges)


def _read_stream(ole: olefile.OleFileIO, name: str, budget: DecodeBudget) -> bytes:
    budget.ensure_fits(ole.get_size(name), name)
    data = ole.openstream(name).read()
    budget.charge(len(data), name)
    return data


def read_fib(word: bytes) -> Fib:
    try:
        ident, = struct.unpack_from("<H", word, 0)
        if ident != WORD_IDENT:
            raise _StructureError(f"unexpected wIdent {ident:#06x}")
        flags, = struct.unpack_from("<H", word, 10)
        if flags & FLAG_ENCRYPTED:
            raise UnsupportedFeatureError("document is encrypted")

        pos = FIB_BASE_SIZE
        csw, = struct.unpack_from("<H", word, pos)
        pos += 2 + csw * 2
        cslw, = struct.unpack_from("<H", word, pos)
        pos += 2
        if cslw <= CCP_TEXT_INDEX:
            raise _StructureError(f"FibRgLw too short ({cslw})")
        ccp_text, = struct.unpack_from("<I", word, pos + CCP_TEXT_INDEX * 4)
        pos += cslw * 4
        cb_rg_fc_lcb, = struct.unpack_from("<H", word, pos)
        pos += 2
        if cb_rg_fc_lcb <= CLX_PAIR_INDEX:
            raise _StructureError(f"FibRgFcLcb too short ({cb_rg_fc_lcb})")
        fc_chpx, lcb_chpx = struct.unpack_from("<II", word, pos + CHPX_PAIR_INDEX * 8)
        fc_clx, lcb_clx = struct.unpack_from("<II", word, pos + CLX_PAIR_INDEX * 8)
    except struct.error as exc:
        raise _StructureError(f"FIB truncated: {exc}") from exc

    if lcb_clx == 0:
        raise _StructureError("document has no CLX")
    return Fib(
        table_stream="1Table" if flags & FLAG_TABLE_STREAM else "0Table",
        ccp_text=ccp_text,
        fc_clx=fc_clx,
        lcb_clx=lcb_clx,
        fc_chpx=fc_chpx,
        lcb_chpx=lcb_chpx,
    )


def parse_piece_table(table: bytes, fc_clx: int, lcb_clx: int) -> list[Piece]:
    end = fc_clx + lcb_clx
    if end > len(table):
        raise _StructureError("CLX extends past the table stream")

    try:
        pos = fc_clx
        while pos < end and table[pos] == CLX_GRPPRL:
            cb_grpprl, = struct.unpack_from("<h", table, pos + 1)
            if cb_grpprl < 0:
                raise _StructureError("negative Prc size")
            pos += 3 + cb_grpprl
        if pos >= end or table[pos] != CLX_PCDT:
            raise _StructureError("CLX has no piece table")
        lcb, = struct.unpack_from("<I", table, pos + 1)
        pos += 5
        count, remainder = divmod(lcb - 4, 12)
        if count < 1 or remainder or pos + lcb > len(table):
            raise _StructureError(f"malformed PlcPcd of {lcb} bytes")

        cps = struct.unpack_from(f"<{count + 1}I", table, pos)
        descriptors = pos + (count + 1) * 4
        pieces = []
        for i in range(count):
            fc, = struct.unpack_from("<I", table, descriptors + i * 8 + 2)
            compressed = bool(fc & FC_COMPRESSED)
            pieces.append(
                Piece(
                    cp_start=cps[i],
                    cp_end=cps[i + 1],
                    offset=(fc & ~FC_COMPRESSED) >> 1 if compressed else fc,
                    compressed=compressed,
                )
            )
    except struct.error as exc:
        raise _StructureError(f"piece table truncated: {exc}") from exc
    return pieces


def parse_format_ranges(
    word: bytes, table: bytes, fc_plcf: int, lcb_plcf: int
) -> list[FormatRange]:
    """Bold/italic stream ranges from the CHPX bin table, sorted by offset."""
    if lcb_plcf == 0:
        return []
    count, remainder = divmod(lcb_plcf - 4, 8)
    if count < 0 or remainder or fc_plcf + lcb_plcf > len(table):
        raise _StructureError(f"malformed PlcBteChpx of {lcb_plcf} bytes")

    ranges: list[FormatRange] = []
    try:
        page_numbers = struct.unpack_from(f"<{count}I", table, fc_plcf + (count + 1) * 4)
        for pn in page_numbers:
            start = (pn & 0x3FFFFF) * FKP_SIZE
            page = word[start : start + FKP_SIZE]
            if len(page) != FKP_SIZE:
                raise _StructureError(f"CHPX page {pn} is outside the stream")
            ranges.extend(_fkp_ranges(page))
    except (struct.error, IndexError) as exc:
        raise _StructureError(f"CHPX page truncated: {exc}") from exc

    ranges.sort(key=lambda r: r.fc_start)
    return ranges


def _fkp_ranges(page: bytes) -> list[FormatRange]:
    crun = page[FKP_SIZE - 1]
    fcs = struct.unpack_from(f"<{crun + 1}I", page, 0)
    offsets = page[(crun + 1) * 4 : (crun + 1) * 4 + crun]

    ranges = []
    for i, word_offset in enumerate(offsets):
        if not word_offset:
            continue
        at = word_offset * 2
        size = page[at]
        emphasis = _sprm_emphasis(page[at + 1 : at + 1 + size])
        if emphasis:
            ranges.append(FormatRange(fcs[i], fcs[i + 1], emphasis))
    return ranges


def _sprm_emphasis(grpprl: bytes) -> frozenset[Emphasis]:
    flags = set()
    pos = 0
    while pos + 2 <= len(grpprl):
        sprm, = struct.unpack_from("<H", grpprl, pos)
        pos += 2
        size = _SPRA_SIZES[sprm >> 13]
        if size is None:
            size = grpprl[pos] + 1
        if sprm in (SPRM_BOLD, SPRM_ITALIC) and grpprl[pos] in _TOGGLE_ON:
            flags.add(Emphasis.BOLD if sprm == SPRM_BOLD else Emphasis.ITALIC)
        pos += size
    return frozenset(flags)


def piece_text(
    word: bytes, pieces: list[Piece], ccp_text: int, ranges: list[FormatRange]
) -> list[TextRun]:
    """Main-document text in character order, split where emphasis changes."""
    starts = [r.fc_start for r in ranges]
    spans: list[TextRun] = []
    remaining = ccp_text
    for piece in pieces:
        if remaining <= 0:
            break
        count = min(piece.cp_end - piece.cp_start, remaining)
        if count <= 0:
            continue
        width = 1 if piece.compressed else 2
        end = piece.offset + count * width
        if end > len(word):
            raise _StructureError("piece extends past the WordDocument stream")

        for fc_start, fc_end, emphasis in _format_slices(
            piece.offset, end, width, ranges, starts
        ):
            raw = word[fc_start:fc_end]
            if piece.compressed:
                text = raw.decode("cp1252", errors="replace")
            else:
                text = raw.decode("utf-16-le", errors="replace")
            spans.append(TextRun(text, emphasis))
        remaining -= count
    return spans


def _format_slices(
    start: int, end: int, width: int, ranges: list[FormatRange], starts: list[int]
):
    """Cut [start, end) at formatting boundaries aligned to the char width."""
    pos = start
    index = max(0, bisect.bisect_right(starts, start) - 1)
    while pos < end:
        while index < len(ranges) and ranges[index].fc_end <= pos:
            index += 1
        if index < len(ranges) and ranges[index].fc_start <= pos:
            current = ranges[index]
            cut = min(end, current.fc_end)
            emphasis = current.emphasis
        else:
            cut = min(end, ranges[index].fc_start) if index < len(ranges) else end
            emphasis = frozenset()
        # Keep UTF-16 slices on code unit boundaries
        cut = max(pos + width, pos + (cut - pos) // width * width)
        yield pos, min(cut, end), emphasis
        pos = cut


def _emit_spans(builder: TreeBuilder, spans: list[TextRun]) -> None:
    """Apply Word control characters: fields, paragraph marks, breaks."""
    fields: list[bool] = []  # True once a field reaches its result
    runs: list[TextRun] = []

    def end_paragraph() -> None:
        text = "".join(run.text for run in runs)
        level = heading_level(text) if "\n" not in text.strip() else None
        if level is not None:
            builder.heading(level, text)
        else:
            builder.paragraph(runs)
        runs.clear()

    for span in spans:
        chars: list[str] = []
        for char in span.text:
            if char == FIELD_BEGIN:
                fields.append(False)
                continue
            if char == FIELD_SEPARATOR:
                if fields:
                    fields[-1] = True
                continue
            if char == FIELD_END:
                if fields:
                    fields.pop()
                continue
            if not all(fields):
                continue

            if char == PARAGRAPH_MARK or char == PAGE_BREAK:
                runs.append(TextRun("".join(chars), span.emphasis))
                chars = []
                end_paragraph()
                if char == PAGE_BREAK:
                    builder.page_break()
            elif char == LINE_BREAK:
                chars.append("\n")
            elif char == CELL_MARK or char == "\t":
                chars.append(" ")
            elif char >= " " or char == "\n":
                chars.append(char)
        runs.append(TextRun("".join(chars), span.emphasis))
    end_paragraph()


def fallback_text(word: bytes) -> str:
    """Recover long printable runs: UTF-16LE first, then ASCII."""
    even = word[: len(word) - len(word) % 2]
    decoded = even.decode("utf-16-le", errors="replace").replace("\ufffd", "\x00")
    chunks = _UTF16_RUN.findall(decoded)
    if not chunks:
        chunks = [m.decode("ascii") for m in _ASCII_RUN.findall(word)]
    if not chunks:
        return ""

    text = "\n\n".join(chunks)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub("", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()
