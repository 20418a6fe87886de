# src/flipbook_ingest/budget.py

import threading

from .errors import TooLargeError


class DecodeBudget:
    """Running sum of bytes materialized while decoding one document.

    Charged incrementally (per inflated chunk, per stream read) so a
    decompression bomb is stopped as soon as it crosses the cap instead of
    after it has been fully inflated. Shared by the worker threads of a
    single parse call, hence the lock.
    """

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self.limit = limit
        self._used = 0
        self._lock = threading.Lock()

    @property
    def used(self) -> int:
        return self._used

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self._used)

    def charge(self, size: int, what: str = "") -> None:
        with self._lock:
            self._used += size
            used = self._used
        if used > self.limit:
            raise TooLargeError(
                f"decoded size {used} exceeds limit {self.limit}"
                + (f" while reading {what}" if what else "")
            )

    def ensure_fits(self, size: int, what: str = "") -> None:
        """Fail before any work when a declared size cannot fit."""
        if size > self.remaining:
            raise TooLargeError(
                f"{what or 'entry'} declares {size} bytes, "
                f"only {self.remaining} of {self.limit} left"
            )
