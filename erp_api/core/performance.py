"""
Per-route request timing.

Samples are kept in memory per process and exposed at /admin/performance.
"""

import threading
from dataclasses import dataclass

from erp_api.config import settings


@dataclass
class RouteStats:
    count: int = 0
    total_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    slow_count: int = 0
    error_count: int = 0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "avg_ms": round(self.avg_ms, 2),
            "min_ms": round(self.min_ms, 2),
            "max_ms": round(self.max_ms, 2),
            "slow_count": self.slow_count,
            "error_count": self.error_count,
        }


class PerformanceMonitor:
    """Aggregates durations keyed by ``"<METHOD> <route>"``."""

    def __init__(self, slow_threshold_ms: float | None = None):
        self.slow_threshold_ms = (
            slow_threshold_ms if slow_threshold_ms is not None else settings.slow_request_ms
        )
        self._routes: dict[str, RouteStats] = {}
        self._lock = threading.Lock()

    def record(self, key: str, duration_ms: float, failed: bool = False) -> bool:
        """Record one request. Returns True if it counted as slow."""
        slow = duration_ms >= self.slow_threshold_ms
        with self._lock:
            stats = self._routes.get(key)
            if stats is None:
                stats = RouteStats(min_ms=duration_ms, max_ms=duration_ms)
                self._routes[key] = stats
            stats.count += 1
            stats.total_ms += duration_ms
            stats.min_ms = min(stats.min_ms, duration_ms)
            stats.max_ms = max(stats.max_ms, duration_ms)
            if slow:
                stats.slow_count += 1
            if failed:
                stats.error_count += 1
        return slow

    def snapshot(self) -> dict[str, dict]:
        """Stats per route, slowest average first."""
        with self._lock:
            items = sorted(self._routes.items(), key=lambda kv: kv[1].avg_ms, reverse=True)
            return {key: stats.to_dict() for key, stats in items}

    def reset(self) -> None:
        with self._lock:
            self._routes.clear()


# Global monitor instance
monitor = PerformanceMonitor()
