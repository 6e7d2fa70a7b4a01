"""Bounded, time-boxed memo store shared by concurrent evaluations.

Eviction policy: least-recently-inserted first once the entry count exceeds
max_size. Lookups past an entry's ttl are misses and drop the entry. A lock
serializes every operation so readers never observe a half-written entry.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    created_at: float  # time.monotonic() seconds
    ttl: float | None  # seconds, None = never expires

    def expired(self, now: float) -> bool:
        return self.ttl is not None and now - self.created_at >= self.ttl


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
        }


class ExpressionCache:
    """Thread-safe bounded cache with per-entry ttl.

    Example:
        cache = ExpressionCache(max_size=1000, ttl_ms=300_000)
        cache.set(key, result)
        hit = cache.get(key)  # None on miss or expiry
    """

    def __init__(self, max_size: int = 1000, ttl_ms: float | None = 5 * 60 * 1000):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self.max_size = max_size
        self.ttl = ttl_ms / 1000 if ttl_ms is not None else None
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def get(self, key: str) -> Any | None:
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats.misses += 1
                return None
            if entry.expired(now):
                del self._entries[key]
                self.stats.expirations += 1
                self.stats.misses += 1
                return None
            self.stats.hits += 1
            return entry.value

    def set(self, key: str, value: Any) -> None:
        entry = CacheEntry(key=key, value=value, created_at=time.monotonic(), ttl=self.ttl)
        with self._lock:
            # Re-inserting refreshes the insertion order
            self._entries.pop(key, None)
            self._entries[key] = entry
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self.stats.evictions += 1
                logger.debug(f"Evicted cache entry {evicted[:12]}")

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and not entry.expired(time.monotonic())
