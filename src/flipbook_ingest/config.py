# src/flipbook_ingest/config.py

from dataclasses import dataclass, field

MiB = 1024 * 1024

DEFAULT_ALLOWED_TAGS = frozenset(
    {"h1", "h2", "h3", "p", "strong", "em", "br", "ul", "ol", "li"}
)


@dataclass(frozen=True)
class IngestConfig:
    """Resource ceilings and tunables for a parse call.

    Immutable. Explicit. No magic defaults from environment.
    """

    max_input_size: int = 50 * MiB
    max_total_decoded_size: int = 20 * MiB
    max_chapters: int = 500
    max_chapter_html_size: int = 2 * MiB
    allowed_tags: frozenset[str] = field(default=DEFAULT_ALLOWED_TAGS)

    # EPUB spine documents are inflated on at most this many threads
    max_workers: int = 4

    # Detection heuristics
    sniff_size: int = 4096
    printable_ratio: float = 0.95

    # Plain text falls back to Latin-1 above this U+FFFD ratio
    text_fallback_threshold: float = 0.01

    def __post_init__(self) -> None:
        for name in (
            "max_input_size",
            "max_total_decoded_size",
            "max_chapters",
            "max_chapter_html_size",
            "max_workers",
            "sniff_size",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if not 0.0 < self.printable_ratio <= 1.0:
            raise ValueError("printable_ratio must be in (0, 1]")
        if not 0.0 <= self.text_fallback_threshold <= 1.0:
            raise ValueError("text_fallback_threshold must be in [0, 1]")
