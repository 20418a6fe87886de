# src/flipbook_ingest/decoders/archive.py

"""Bounded access to zip containers (OOXML, EPUB).

Entries are inflated in fixed-size chunks and every chunk is charged to the
call's ``DecodeBudget`` before the next one is read.
"""

import io
import logging
import posixpath
import zipfile
import zlib
from urllib.parse import unquote

from flipbook_ingest.budget import DecodeBudget
from flipbook_ingest.errors import CorruptError, UnsupportedFeatureError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_FLAG_ENCRYPTED = 0x1


def open_archive(data: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, ValueError) as exc:
        raise CorruptError(f"unreadable zip container: {exc}") from exc


def find_entry(archive: zipfile.ZipFile, path: str) -> zipfile.ZipInfo | None:
    """Look up an entry, tolerating URL-encoding and case differences."""
    clean = path.split("#", 1)[0].lstrip("/")
    candidates = [clean]
    decoded = unquote(clean)
    if decoded != clean:
        candidates.append(decoded)

    for name in candidates:
        try:
            return archive.getinfo(name)
        except KeyError:
            continue

    lowered = {name.lower() for name in candidates}
    for info in archive.infolist():
        if not info.is_dir() and info.filename.lower() in lowered:
            return info
    return None


def read_entry(
    archive: zipfile.ZipFile,
    info: zipfile.ZipInfo,
    budget: DecodeBudget,
    *,
    limit: int | None = None,
) -> bytes:
    """Inflate one entry, charging the budget as bytes come out.

    ``limit`` stops reading early (used when only a prefix is needed).
    """
    if info.flag_bits & _FLAG_ENCRYPTED:
        raise UnsupportedFeatureError(f"encrypted zip entry: {info.filename}")
    if limit is None:
        budget.ensure_fits(info.file_size, info.filename)

    buf = bytearray()
    try:
        with archive.open(info) as fh:
            while True:
                chunk = fh.read(_CHUNK_SIZE)
                if not chunk:
                    break
                budget.charge(len(chunk), info.filename)
                buf += chunk
                if limit is not None and len(buf) >= limit:
                    del buf[limit:]
                    break
    except NotImplementedError as exc:
        raise UnsupportedFeatureError(
            f"unsupported compression for {info.filename}: {exc}"
        ) from exc
    except (zipfile.BadZipFile, zlib.error, EOFError, OSError) as exc:
        raise CorruptError(f"cannot inflate {info.filename}: {exc}") from exc

    logger.debug("Inflated %s: %d bytes", info.filename, len(buf))
    return bytes(buf)


def read_path(
    archive: zipfile.ZipFile, path: str, budget: DecodeBudget
) -> bytes | None:
    info = find_entry(archive, path)
    if info is None:
        return None
    return read_entry(archive, info, budget)


def resolve_href(base_dir: str, href: str) -> str:
    """Resolve a container-relative href against the directory of its source."""
    href = href.split("#", 1)[0]
    if href.startswith("/"):
        return href.lstrip("/")
    joined = posixpath.normpath(posixpath.join(base_dir, href))
    return joined.lstrip("/") if joined != "." else ""
