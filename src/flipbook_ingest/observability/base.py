# src/flipbook_ingest/observability/base.py

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class MetricsHook(Protocol):
    """Sink for parse metrics.

    A ``BookParser`` records one latency and one request count per upload,
    chapter and error counters, and the decoded byte total as a gauge.
    Latencies are in milliseconds; labels always carry the detected format.
    """

    def record_latency(
        self,
        name: str,
        value_ms: float,
        labels: dict[str, str] | None = None,
    ) -> None: ...

    def increment(
        self,
        name: str,
        value: int = 1,
        labels: dict[str, str] | None = None,
    ) -> None: ...

    def record_gauge(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None: ...


class NoOpMetricsHook:
    def record_latency(
        self, name: str, value_ms: float, labels: dict[str, str] | None = None
    ) -> None:
        pass

    def increment(
        self, name: str, value: int = 1, labels: dict[str, str] | None = None
    ) -> None:
        pass

    def record_gauge(
        self, name: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        pass


def format_labels(labels: dict[str, str] | None) -> str:
    """``key=value`` pairs sorted by key, for stable log lines."""
    if not labels:
        return ""
    return " ".join(f"{key}={labels[key]}" for key in sorted(labels))


class LoggingMetricsHook:
    """
    Metrics hook that writes every data point to the log.
    - One line per call, at ``level`` (DEBUG by default)
    - Useful for workers without a metrics backend
    """

    def __init__(self, level: int = logging.DEBUG) -> None:
        self.level = level

    def record_latency(
        self, name: str, value_ms: float, labels: dict[str, str] | None = None
    ) -> None:
        self._emit(name, f"{value_ms:.1f}ms", labels)

    def increment(
        self, name: str, value: int = 1, labels: dict[str, str] | None = None
    ) -> None:
        self._emit(name, f"+{value}", labels)

    def record_gauge(
        self, name: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        self._emit(name, f"={value}", labels)

    def _emit(self, name: str, value: str, labels: dict[str, str] | None) -> None:
        if labels:
            logger.log(self.level, "%s %s %s", name, value, format_labels(labels))
        else:
            logger.log(self.level, "%s %s", name, value)
