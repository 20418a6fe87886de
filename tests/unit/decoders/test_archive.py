# tests/unit/decoders/test_archive.py

import io
import zipfile

import pytest

from flipbook_ingest.budget import DecodeBudget
from flipbook_ingest.decoders.archive import (
    find_entry,
    open_archive,
    read_entry,
    resolve_href,
)
from flipbook_ingest.errors import CorruptError, TooLargeError


def _bomb(size: int) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("zeros.bin", b"\0" * size)
    return buf.getvalue()


class TestReadEntry:
    def test_reads_and_charges(self, make_zip) -> None:
        budget = DecodeBudget(1000)
        with open_archive(make_zip([("a.txt", "hello")])) as archive:
            data = read_entry(archive, archive.getinfo("a.txt"), budget)
        assert data == b"hello"
        assert budget.used == 5

    def test_declared_size_over_budget_fails_before_inflation(self) -> None:
        budget = DecodeBudget(64 * 1024)
        with open_archive(_bomb(1024 * 1024)) as archive:
            with pytest.raises(TooLargeError):
                read_entry(archive, archive.getinfo("zeros.bin"), budget)
        assert budget.used == 0

    def test_inflation_is_capped_chunk_by_chunk(self) -> None:
        """Reads that skip the declared-size check still stop at the cap."""
        budget = DecodeBudget(64 * 1024)
        with open_archive(_bomb(1024 * 1024)) as archive:
            info = archive.getinfo("zeros.bin")
            with pytest.raises(TooLargeError):
                read_entry(archive, info, budget, limit=512 * 1024)
        assert budget.used <= 128 * 1024

    def test_limit_returns_prefix(self, make_zip) -> None:
        budget = DecodeBudget(1000)
        with open_archive(make_zip([("a.txt", "abcdefgh")])) as archive:
            data = read_entry(archive, archive.getinfo("a.txt"), budget, limit=3)
        assert data == b"abc"

    def test_damaged_entry_is_corrupt(self, make_zip) -> None:
        data = bytearray(make_zip([("a.txt", "x" * 2000)]))
        # Flip bytes inside the compressed stream
        start = data.index(b"a.txt") + len("a.txt")
        for i in range(start, start + 20):
            data[i] ^= 0xFF
        with pytest.raises(CorruptError):
            with open_archive(bytes(data)) as archive:
                read_entry(archive, archive.getinfo("a.txt"), DecodeBudget(10_000))


class TestOpenArchive:
    def test_not_a_zip(self) -> None:
        with pytest.raises(CorruptError):
            open_archive(b"PK\x03\x04garbage")


class TestFindEntry:
    def test_url_encoded_and_case_insensitive(self, make_zip) -> None:
        with open_archive(make_zip([("OEBPS/Chapter One.xhtml", "x")])) as archive:
            assert find_entry(archive, "OEBPS/Chapter%20One.xhtml") is not None
            assert find_entry(archive, "oebps/chapter one.XHTML") is not None
            assert find_entry(archive, "OEBPS/missing.xhtml") is None

    def test_fragment_is_ignored(self, make_zip) -> None:
        with open_archive(make_zip([("a.xhtml", "x")])) as archive:
            assert find_entry(archive, "a.xhtml#section2") is not None


class TestResolveHref:
    def test_relative_to_base(self) -> None:
        assert resolve_href("OEBPS", "text/ch1.xhtml") == "OEBPS/text/ch1.xhtml"

    def test_parent_segments(self) -> None:
        assert resolve_href("OEBPS/text", "../images/a.png") == "OEBPS/images/a.png"

    def test_absolute_and_fragment(self) -> None:
        assert resolve_href("OEBPS", "/root.xhtml#top") == "root.xhtml"
