# src/flipbook_ingest/errors.py

"""Error taxonomy for the ingestion pipeline.

Every failure a caller can observe is a ``ParseError`` subclass. ``str(exc)``
is the end-user message for the error kind; ``exc.detail`` carries diagnostic
context (stream names, offsets) meant for operator logs only.
"""

from enum import Enum


class ErrorKind(str, Enum):
    UNSUPPORTED_FORMAT = "unsupported_format"
    CORRUPT = "corrupt"
    TOO_LARGE = "too_large"
    TOO_MANY_CHAPTERS = "too_many_chapters"
    UNSUPPORTED_FEATURE = "unsupported_feature"
    INTERNAL = "internal"

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES[self]


_USER_MESSAGES = {
    ErrorKind.UNSUPPORTED_FORMAT: "This file type is not supported.",
    ErrorKind.CORRUPT: "The file appears to be damaged and could not be read.",
    ErrorKind.TOO_LARGE: "The file exceeds the supported size.",
    ErrorKind.TOO_MANY_CHAPTERS: "The document has more chapters than are supported.",
    ErrorKind.UNSUPPORTED_FEATURE: (
        "The file uses a feature that is not supported, such as encryption."
    ),
    ErrorKind.INTERNAL: "An unexpected error occurred while processing the file.",
}


class ParseError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, detail: str = "") -> None:
        super().__init__(self.kind.user_message)
        self.detail = detail

    @property
    def user_message(self) -> str:
        return self.kind.user_message


class UnsupportedFormatError(ParseError):
    kind = ErrorKind.UNSUPPORTED_FORMAT


class CorruptError(ParseError):
    kind = ErrorKind.CORRUPT


class TooLargeError(ParseError):
    kind = ErrorKind.TOO_LARGE


class TooManyChaptersError(ParseError):
    kind = ErrorKind.TOO_MANY_CHAPTERS


class UnsupportedFeatureError(ParseError):
    kind = ErrorKind.UNSUPPORTED_FEATURE


class InternalError(ParseError):
    kind = ErrorKind.INTERNAL
