"""Result cache keyed by content fingerprint."""

import logging
import threading
import time
from typing import Callable, Protocol

from .models import ScanResult

logger = logging.getLogger(__name__)


class ScanCache(Protocol):
    """Key-value store with per-entry TTL."""

    def get(self, fingerprint: str) -> ScanResult | None: ...

    def put(self, fingerprint: str, result: ScanResult, ttl_seconds: int) -> None: ...


class MemoryScanCache:
    """Thread-safe in-process cache with lazy expiry.

    Concurrent scans of the same fingerprint may both write; the last write
    wins and both values are equivalent.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, ScanResult]] = {}

    def get(self, fingerprint: str) -> ScanResult | None:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            expires_at, result = entry
            if self._clock() >= expires_at:
                logger.debug("Cache entry expired for %s", fingerprint[:12])
                del self._entries[fingerprint]
                return None
            return result

    def put(self, fingerprint: str, result: ScanResult, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[fingerprint] = (self._clock() + ttl_seconds, result)

    def ttl_remaining(self, fingerprint: str) -> float | None:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            return max(0.0, entry[0] - self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
