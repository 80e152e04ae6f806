"""
Mongo Lens Test Suite — Namespaced TTL Cache
"""

from unittest.mock import patch

import pytest

from mongolens.core.cache import CacheNamespace, MemoryCache
from mongolens.core.config import CacheConfig

MB = 1024 * 1024


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock, memory_reader=lambda: (100 * MB, 8192 * MB))


class TestGetSet:
    def test_set_then_get_returns_value(self, cache):
        assert cache.set("stats", "db.coll", {"x": 1}) is True
        assert cache.get("stats", "db.coll", 15000) == {"x": 1}

    def test_stats_ttl_boundary(self, cache, clock):
        cache.set("stats", "db.coll", {"x": 1})

        clock.advance(14999)
        assert cache.get("stats", "db.coll", 15000) == {"x": 1}

        clock.advance(2)
        assert cache.get("stats", "db.coll", 15000) is None

    def test_entry_exactly_at_ttl_is_stale(self, cache, clock):
        cache.set(CacheNamespace.INDEXES, "k", [1])
        clock.advance(120000)
        assert cache.get(CacheNamespace.INDEXES, "k") is None

    @pytest.mark.parametrize(
        "namespace,ttl",
        [
            ("schemas", 60000),
            ("collections", 30000),
            ("stats", 15000),
            ("indexes", 120000),
            ("serverStatus", 20000),
            ("fields", 60000),
        ],
    )
    def test_namespace_default_ttls(self, cache, clock, namespace, ttl):
        assert cache.ttl_for(namespace) == ttl
        cache.set(namespace, "k", "v")
        clock.advance(ttl - 1)
        assert cache.get(namespace, "k") == "v"
        clock.advance(1)
        assert cache.get(namespace, "k") is None

    def test_unknown_namespace(self, cache):
        assert cache.set("bogus", "k", 1) is False
        assert cache.get("bogus", "k") is None

    def test_missing_key_is_absent(self, cache):
        assert cache.get("schemas", "nope") is None

    def test_overwrite_replaces_and_restamps(self, cache, clock):
        cache.set("stats", "k", 1)
        clock.advance(10000)
        cache.set("stats", "k", 2)
        clock.advance(10000)
        assert cache.get("stats", "k") == 2

    def test_namespaces_do_not_share_keys(self, cache):
        cache.set("stats", "shop.orders", "stats")
        cache.set("indexes", "shop.orders", "indexes")
        assert cache.get("stats", "shop.orders") == "stats"
        assert cache.get("indexes", "shop.orders") == "indexes"

    def test_stale_read_does_not_evict(self, cache, clock):
        cache.set("stats", "k", 1)
        clock.advance(20000)
        assert cache.get("stats", "k") is None
        assert cache.size("stats") == 1
        # A longer caller-supplied TTL still sees the entry
        assert cache.get("stats", "k", 60000) == 1

    def test_custom_ttl_config(self, clock):
        cache = MemoryCache(CacheConfig(stats_ttl_ms=100), clock=clock)
        cache.set("stats", "k", 1)
        clock.advance(100)
        assert cache.get("stats", "k") is None


class TestClear:
    def test_clear_empties_every_namespace(self, cache):
        for ns in CacheNamespace:
            cache.set(ns, "k", ns.value)
        cache.clear()
        for ns in CacheNamespace:
            assert cache.get(ns, "k", 10**9) is None
        assert cache.size() == 0

    def test_clear_on_empty_cache_is_noop(self, cache):
        cache.clear()
        cache.clear()
        assert cache.size() == 0


class TestMemoryPressure:
    def test_below_thresholds(self, clock):
        cache = MemoryCache(clock=clock, memory_reader=lambda: (512 * MB, 8192 * MB))
        cache.set("stats", "k", 1)

        status = cache.report_memory_pressure(2000, 1500)

        assert status.used_mb == 512
        assert status.total_mb == 8192
        assert status.warning is False
        assert status.critical is False
        assert cache.get("stats", "k") == 1

    def test_warning_keeps_cache(self, clock):
        cache = MemoryCache(clock=clock, memory_reader=lambda: (1600 * MB, 8192 * MB))
        cache.set("stats", "k", 1)

        status = cache.report_memory_pressure(2000, 1500)

        assert status.warning is True
        assert status.critical is False
        assert cache.get("stats", "k") == 1

    def test_critical_clears_cache_and_collects(self, clock):
        cache = MemoryCache(clock=clock, memory_reader=lambda: (2500 * MB, 8192 * MB))
        for ns in CacheNamespace:
            cache.set(ns, "k", 1)

        with patch("mongolens.core.cache.request_garbage_collection") as gc_mock:
            status = cache.report_memory_pressure(2000, 1500)

        assert status.critical is True
        assert status.warning is True
        assert cache.size() == 0
        gc_mock.assert_called_once()

    def test_status_to_dict(self, cache):
        assert cache.report_memory_pressure().to_dict() == {
            "used_mb": 100,
            "total_mb": 8192,
            "warning": False,
            "critical": False,
        }

    def test_default_reader_uses_psutil(self):
        cache = MemoryCache()
        status = cache.report_memory_pressure(10**9, 10**9 - 1)
        assert status.used_mb > 0
        assert status.total_mb >= status.used_mb
