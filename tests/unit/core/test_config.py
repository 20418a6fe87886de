# tests/unit/core/test_config.py

import dataclasses

import pytest

from flipbook_ingest.config import DEFAULT_ALLOWED_TAGS, MiB, IngestConfig


class TestIngestConfig:
    def test_defaults(self) -> None:
        config = IngestConfig()
        assert config.max_input_size == 50 * MiB
        assert config.max_total_decoded_size == 20 * MiB
        assert config.max_chapters == 500
        assert config.max_chapter_html_size == 2 * MiB
        assert config.allowed_tags == frozenset(
            {"h1", "h2", "h3", "p", "strong", "em", "br", "ul", "ol", "li"}
        )

    def test_is_frozen(self) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            IngestConfig().max_chapters = 1  # type: ignore[misc]

    @pytest.mark.parametrize(
        "field", ["max_input_size", "max_total_decoded_size", "max_chapters", "max_workers"]
    )
    def test_limits_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValueError, match=f"{field} must be > 0"):
            IngestConfig(**{field: 0})

    def test_printable_ratio_range(self) -> None:
        with pytest.raises(ValueError):
            IngestConfig(printable_ratio=1.5)

    def test_allowed_tags_default_is_shared_constant(self) -> None:
        assert IngestConfig().allowed_tags is DEFAULT_ALLOWED_TAGS
