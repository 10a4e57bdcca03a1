"""Unit tests for the TTL cache and the request timing monitor."""

from erp_api.core.cache import TTLCache
from erp_api.core.performance import PerformanceMonitor


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    def test_entries_expire(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=60, clock=clock)
        cache.set("dashboard:overview", {"revenue": 10})

        clock.now += 59
        assert cache.get("dashboard:overview") == {"revenue": 10}
        clock.now += 1
        assert cache.get("dashboard:overview") is None

    def test_get_or_set_computes_once(self):
        cache = TTLCache(default_ttl=60, clock=FakeClock())
        calls = []

        def factory():
            calls.append(1)
            return 42

        assert cache.get_or_set("k", factory) == 42
        assert cache.get_or_set("k", factory) == 42
        assert len(calls) == 1

    def test_falsy_values_are_cached(self):
        cache = TTLCache(default_ttl=60, clock=FakeClock())
        cache.set("empty", [])
        assert cache.get_or_set("empty", lambda: ["recomputed"]) == []

    def test_invalidate_prefix(self):
        cache = TTLCache(default_ttl=60, clock=FakeClock())
        cache.set("dashboard:overview", 1)
        cache.set("dashboard:alerts", 2)
        cache.set("reports:trial", 3)

        assert cache.invalidate_prefix("dashboard") == 2
        assert cache.get("reports:trial") == 3
        assert cache.get("dashboard:alerts") is None

    def test_stats_count_hits_and_misses(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2, ttl=100)
        cache.get("a")
        cache.get("missing")
        clock.now += 20

        stats = cache.stats()
        assert stats == {"entries": 1, "hits": 1, "misses": 1, "default_ttl": 10}

        cache.clear()
        assert cache.stats()["entries"] == 0
        assert cache.stats()["hits"] == 0


class TestPerformanceMonitor:
    def test_aggregates_per_route(self):
        monitor = PerformanceMonitor(slow_threshold_ms=500)
        monitor.record("GET /sales/orders", 100)
        monitor.record("GET /sales/orders", 300)
        assert monitor.record("GET /sales/orders", 800, failed=True) is True

        stats = monitor.snapshot()["GET /sales/orders"]
        assert stats == {
            "count": 3,
            "avg_ms": 400.0,
            "min_ms": 100,
            "max_ms": 800,
            "slow_count": 1,
            "error_count": 1,
        }

    def test_snapshot_slowest_first(self):
        monitor = PerformanceMonitor(slow_threshold_ms=500)
        monitor.record("GET /health", 2)
        monitor.record("GET /accounting/reports/{report_type}", 250)
        assert list(monitor.snapshot()) == ["GET /accounting/reports/{report_type}", "GET /health"]

    def test_reset(self):
        monitor = PerformanceMonitor(slow_threshold_ms=500)
        monitor.record("GET /health", 2)
        monitor.reset()
        assert monitor.snapshot() == {}
