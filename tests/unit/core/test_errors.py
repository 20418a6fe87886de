# tests/unit/core/test_errors.py

import pytest

from flipbook_ingest.errors import (
    CorruptError,
    ErrorKind,
    InternalError,
    ParseError,
    TooLargeError,
    TooManyChaptersError,
    UnsupportedFeatureError,
    UnsupportedFormatError,
)


class TestErrors:
    @pytest.mark.parametrize(
        ("cls", "kind"),
        [
            (UnsupportedFormatError, ErrorKind.UNSUPPORTED_FORMAT),
            (CorruptError, ErrorKind.CORRUPT),
            (TooLargeError, ErrorKind.TOO_LARGE),
            (TooManyChaptersError, ErrorKind.TOO_MANY_CHAPTERS),
            (UnsupportedFeatureError, ErrorKind.UNSUPPORTED_FEATURE),
            (InternalError, ErrorKind.INTERNAL),
        ],
    )
    def test_kind_per_class(self, cls: type[ParseError], kind: ErrorKind) -> None:
        exc = cls("detail")
        assert isinstance(exc, ParseError)
        assert exc.kind is kind

    def test_str_is_user_message_not_detail(self) -> None:
        """Operator detail never leaks into the user-facing message."""
        exc = CorruptError("bad CRC in word/document.xml at offset 1234")
        assert str(exc) == "The file appears to be damaged and could not be read."
        assert exc.user_message == str(exc)
        assert "offset" in exc.detail

    def test_every_kind_has_a_message(self) -> None:
        for kind in ErrorKind:
            assert kind.user_message
