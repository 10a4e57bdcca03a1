"""
In-process TTL cache.

Best-effort and per-process: entries vanish on restart and are not shared
between workers. Used for dashboard aggregates that are expensive to compute
and tolerate being a few minutes stale.
"""

import threading
import time
from typing import Any, Callable

from erp_api.config import settings


class TTLCache:
    """Thread-safe key/value map with per-entry expiry."""

    def __init__(self, default_ttl: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl if default_ttl is not None else settings.cache_ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                self.misses += 1
                return default
            self.hits += 1
            return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = self._clock() + (ttl if ttl is not None else self.default_ttl)
        with self._lock:
            self._entries[key] = (expires_at, value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix``; returns how many were dropped."""
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def get_or_set(self, key: str, factory: Callable[[], Any], ttl: float | None = None) -> Any:
        """
        Return the cached value, computing and storing it on a miss.

        The factory runs outside the lock; two concurrent misses may both
        compute, the last one wins.
        """
        sentinel = object()
        value = self.get(key, sentinel)
        if value is not sentinel:
            return value
        value = factory()
        self.set(key, value, ttl)
        return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        with self._lock:
            live = sum(1 for expires_at, _ in self._entries.values() if expires_at > now)
            return {
                "entries": live,
                "hits": self.hits,
                "misses": self.misses,
                "default_ttl": self.default_ttl,
            }


# Global cache instance
cache = TTLCache()
