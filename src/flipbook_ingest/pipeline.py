# src/flipbook_ingest/pipeline.py

import bisect
import logging
from pathlib import PurePosixPath
from time import monotonic

from .budget import DecodeBudget
from .chapterizer import ChapterDraft, split_chapters
from .config import IngestConfig
from .decoders.factory import create_decoder
from .detection import detect_format
from .errors import CorruptError, InternalError, ParseError, TooLargeError
from .models import Chapter, FormatKind, ParseResult, ParseWarning, TreeWarning
from .observability import names
from .observability.base import MetricsHook, NoOpMetricsHook
from .sanitizer import render_blocks

logger = logging.getLogger(__name__)


class BookParser:
    """Manuscript ingestion pipeline.

    Stateless between calls. Every call gets its own decode budget, so one
    instance can serve concurrent requests.
    """

    def __init__(
        self,
        config: IngestConfig = IngestConfig(),
        metrics_hook: MetricsHook = NoOpMetricsHook(),
    ):
        self.config = config
        self.metrics_hook = metrics_hook

    def parse(self, buffer: bytes, filename: str = "") -> ParseResult:
        """Parse an uploaded manuscript into sanitized chapters.

        Args:
            buffer: Raw file content.
            filename: Original filename. A weak hint only; content
                signatures decide the format.

        Returns:
            ParseResult with chapters in reading order.

        Raises:
            ParseError: One of its subclasses, classifying the failure.
                Unexpected faults surface as ``InternalError``.
        """
        start = monotonic()
        labels = {"format": FormatKind.UNKNOWN.value}
        try:
            result = self._parse(bytes(buffer), filename, labels)
        except ParseError as exc:
            self._record_error(exc, filename, labels)
            raise
        except Exception:
            logger.exception("Unexpected failure parsing file=%s", filename)
            exc = InternalError()
            self._record_error(exc, filename, labels)
            raise exc from None
        finally:
            elapsed_ms = 1000 * (monotonic() - start)
            self.metrics_hook.record_latency(names.PARSE_DURATION, elapsed_ms, labels)
            self.metrics_hook.increment(names.PARSE_REQUESTS_TOTAL, 1, labels)

        self.metrics_hook.increment(
            names.PARSE_CHAPTERS_CREATED, len(result.chapters), labels
        )
        if result.warnings:
            self.metrics_hook.increment(
                names.PARSE_WARNINGS_TOTAL, len(result.warnings), labels
            )
        logger.info(
            "Parsed file=%s format=%s chapters=%d warnings=%d",
            filename,
            result.format.value,
            len(result.chapters),
            len(result.warnings),
        )
        return result

    def _parse(
        self, data: bytes, filename: str, labels: dict[str, str]
    ) -> ParseResult:
        config = self.config
        if len(data) > config.max_input_size:
            raise TooLargeError(
                f"input is {len(data)} bytes, limit {config.max_input_size}"
            )

        kind = detect_format(data, filename, config=config)
        labels["format"] = kind.value

        budget = DecodeBudget(config.max_total_decoded_size)
        tree = create_decoder(kind, config).decode(data, budget=budget)
        self.metrics_hook.record_gauge(names.PARSE_DECODED_BYTES, budget.used, labels)
        logger.debug(
            "Decoded file=%s blocks=%d segments=%d decoded_bytes=%d",
            filename,
            len(tree.blocks),
            len(tree.segments),
            budget.used,
        )

        drafts = split_chapters(tree, max_chapters=config.max_chapters)
        if not drafts:
            raise CorruptError("document contains no readable content")

        chapters = tuple(
            Chapter(
                index=index,
                title=draft.title,
                html=render_blocks(
                    draft.blocks,
                    allowed_tags=config.allowed_tags,
                    max_size=config.max_chapter_html_size,
                ),
                source_span=draft.span,
            )
            for index, draft in enumerate(drafts)
        )

        return ParseResult(
            chapters=chapters,
            warnings=resolve_warnings(tree.warnings, drafts),
            title=tree.title or _filename_title(filename),
            author=tree.author,
            format=kind,
        )

    def _record_error(
        self, exc: ParseError, filename: str, labels: dict[str, str]
    ) -> None:
        if not isinstance(exc, InternalError):
            logger.warning(
                "Rejected file=%s kind=%s detail=%s",
                filename,
                exc.kind.value,
                exc.detail,
            )
        self.metrics_hook.increment(
            names.PARSE_ERRORS_TOTAL, 1, {**labels, "kind": exc.kind.value}
        )


def parse_book(
    buffer: bytes,
    filename: str = "",
    *,
    config: IngestConfig | None = None,
    metrics_hook: MetricsHook | None = None,
) -> ParseResult:
    """Parse a manuscript with a one-off ``BookParser``.

    Example:
        >>> result = parse_book(data, "novel.epub")
        >>> [chapter.title for chapter in result.chapters]
    """
    parser = BookParser(
        config=config or IngestConfig(),
        metrics_hook=metrics_hook or NoOpMetricsHook(),
    )
    return parser.parse(buffer, filename)


def resolve_warnings(
    warnings: tuple[TreeWarning, ...], drafts: list[ChapterDraft]
) -> tuple[ParseWarning, ...]:
    """Attach tree warnings to chapters, collapsing repeats per (code, chapter)."""
    starts = [draft.span[0] for draft in drafts]
    counts: dict[tuple[str, int | None], int] = {}
    messages: dict[tuple[str, int | None], str] = {}
    for warning in warnings:
        chapter_index = max(0, bisect.bisect_right(starts, warning.position) - 1)
        key = (warning.code, chapter_index if drafts else None)
        if key not in counts:
            counts[key] = 0
            messages[key] = warning.message
        counts[key] += 1

    resolved = []
    for key, count in counts.items():
        message = messages[key]
        if count > 1:
            message = f"{message} ({count} occurrences)"
        resolved.append(ParseWarning(code=key[0], message=message, chapter_index=key[1]))
    return tuple(resolved)


def _filename_title(filename: str) -> str:
    return PurePosixPath(filename.replace("\\", "/")).stem.strip()
