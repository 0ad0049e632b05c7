"""
Per-unit report cache with time-to-live entries.

Every wrapper owns exactly one ``ReportCache``; no cache is shared
between units, so no cross-unit locking is needed. Entries are written
on each successful execution, checked before any new physical
computation, and evicted lazily on read once ``now - written_at > ttl``.

Architecture:
    ::

        ReportCache(clock=time.monotonic)
          ├── get(key)               → Report | None   (lazy eviction)
          ├── set(key, report, ttl)  → CacheEntry
          ├── entry(key)             → CacheEntry | None (no eviction)
          ├── delete(key) / clear()
          └── size()

Performance:
    - O(1) get/set; expiry checked on read only

Tags:
    cache, ttl, tilespine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from tilespine.core.models import Report


@dataclass(frozen=True)
class CacheEntry:
    """One cached report.

    Times are in seconds on the cache's monotonic clock.
    """

    key: str
    payload: Report
    written_at: float
    ttl: float

    def age(self, now: float) -> float:
        return now - self.written_at

    def is_expired(self, now: float) -> bool:
        return now - self.written_at > self.ttl


class ReportCache:
    """TTL store of the last good report per key.

    Example:
        cache = ReportCache()
        cache.set("default", report, ttl_seconds=60)
        cache.get("default")
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic):
        self._store: dict[str, CacheEntry] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def get(self, key: str) -> Report | None:
        """Return the cached report, or ``None`` if missing or expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._store[key]
                return None
            return entry.payload

    def entry(self, key: str) -> CacheEntry | None:
        """Return the raw entry without expiring it."""
        with self._lock:
            return self._store.get(key)

    def set(self, key: str, report: Report, *, ttl_seconds: float) -> CacheEntry:
        """Store a report under ``key`` for ``ttl_seconds``."""
        entry = CacheEntry(key=key, payload=report, written_at=self._clock(), ttl=ttl_seconds)
        with self._lock:
            self._store[key] = entry
        return entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def size(self) -> int:
        """Number of stored entries, expired ones included until read."""
        with self._lock:
            return len(self._store)


__all__ = ["CacheEntry", "ReportCache"]
