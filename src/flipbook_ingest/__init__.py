# Config
from .config import IngestConfig

# Detection
from .detection import detect_format

# Errors
from .errors import (
    CorruptError,
    ErrorKind,
    InternalError,
    ParseError,
    TooLargeError,
    TooManyChaptersError,
    UnsupportedFeatureError,
    UnsupportedFormatError,
)

# Models
from .models import (
    Chapter,
    DocumentTree,
    FormatKind,
    ParseResult,
    ParseWarning,
)

# Observability
from .observability import LoggingMetricsHook, MetricsHook, NoOpMetricsHook

# Pipeline
from .pipeline import BookParser, parse_book

__all__ = [
    # Config
    "IngestConfig",
    # Detection
    "detect_format",
    # Errors
    "CorruptError",
    "ErrorKind",
    "InternalError",
    "ParseError",
    "TooLargeError",
    "TooManyChaptersError",
    "UnsupportedFeatureError",
    "UnsupportedFormatError",
    # Models
    "Chapter",
    "DocumentTree",
    "FormatKind",
    "ParseResult",
    "ParseWarning",
    # Observability
    "LoggingMetricsHook",
    "MetricsHook",
    "NoOpMetricsHook",
    # Pipeline
    "BookParser",
    "parse_book",
]
