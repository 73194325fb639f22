"""
Tests for the Projection Cache and dispatcher
"""

import pytest
import redis
from datetime import date

from millstock.services.ledger.events import MovementEvent, MovementKind, WarehouseLocation
from millstock.services.ledger.projection_cache import (
    LocalMemoryBackend, ProjectionCache, RedisBackend, _MISS
)
from millstock.services.ledger.projections import MovementAdmitted, ProjectionDispatcher


class UnreachableRedis:
    """Client whose every call fails as if the server were down"""

    def get(self, key):
        raise redis.ConnectionError("connection refused")

    def setex(self, key, ttl, value):
        raise redis.ConnectionError("connection refused")

    def scan_iter(self, match=None):
        raise redis.ConnectionError("connection refused")


class TestLocalMemoryBackend:
    """Test suite for the in-process backend"""

    def test_expired_entries_are_misses(self):
        backend = LocalMemoryBackend()
        backend.set("k", 1, ttl=0)

        assert backend.get("k") is _MISS
        assert len(backend) == 0

    def test_least_recently_used_is_evicted(self):
        backend = LocalMemoryBackend(max_items=2)
        backend.set("a", 1, ttl=60)
        backend.set("b", 2, ttl=60)
        backend.get("a")
        backend.set("c", 3, ttl=60)

        assert backend.get("b") is _MISS
        assert backend.get("a") == 1
        assert backend.get("c") == 3

    def test_delete_pattern(self):
        backend = LocalMemoryBackend()
        backend.set("p:opening:IR64:x", 1, ttl=60)
        backend.set("p:stock:IR64:-:-", 2, ttl=60)
        backend.set("p:opening:SONA MASURI:x", 3, ttl=60)

        assert backend.delete_pattern("p:*:IR64*") == 2
        assert len(backend) == 1


class TestProjectionCache:
    """Test suite for keyed projection caching"""

    def test_key_shape(self):
        cache = ProjectionCache(prefix="mill")

        assert cache.key("opening", None, "2024-02-01") == "mill:opening:__all__:2024-02-01"
        assert cache.key("stock", " ir64 ", None, "2024-02-01") == "mill:stock:IR64:-:2024-02-01"

    def test_get_or_compute_memoizes(self):
        cache = ProjectionCache()
        calls = []

        def compute():
            calls.append(1)
            return 42

        assert cache.get_or_compute("k", compute) == 42
        assert cache.get_or_compute("k", compute) == 42
        assert len(calls) == 1
        assert cache.stats()["hits"] == 1
        assert cache.stats()["hit_rate"] == 0.5

    def test_disabled_cache_always_computes(self):
        cache = ProjectionCache.disabled()
        calls = []

        cache.get_or_compute("k", lambda: calls.append(1))
        cache.get_or_compute("k", lambda: calls.append(1))

        assert len(calls) == 2
        assert cache.invalidate_variety("IR64") == 0

    def test_invalidation_scope(self):
        cache = ProjectionCache()
        ir64 = cache.key("stock", "IR64", None, None)
        sona = cache.key("stock", "Sona Masuri", None, None)
        everything = cache.key("opening", None, "2024-02-01")
        for key in (ir64, sona, everything):
            cache.get_or_compute(key, lambda: "cached")

        removed = cache.invalidate_variety("ir64")

        assert removed == 2
        assert cache.backend.get(sona) == "cached"
        assert cache.backend.get(ir64) is _MISS
        assert cache.backend.get(everything) is _MISS

    @pytest.mark.parametrize("variety", ["IR[64]", "BPT*", "RNR?15", "SONA:MASURI"])
    def test_invalidation_with_glob_characters(self, variety):
        cache = ProjectionCache()
        own = cache.key("stock", variety, None, None)
        other = cache.key("stock", "IR64", None, None)
        for key in (own, other):
            cache.get_or_compute(key, lambda: "cached")

        assert cache.invalidate_variety(variety) == 1
        assert cache.backend.get(own) is _MISS
        assert cache.backend.get(other) == "cached"

    def test_redis_failures_degrade_to_compute(self):
        cache = ProjectionCache(backend=RedisBackend("redis://localhost:6379/0", client=UnreachableRedis()))

        assert cache.get_or_compute("k", lambda: "fresh") == "fresh"
        assert cache.invalidate_variety("IR64") == 0
        assert cache.misses == 1

    def test_clear_resets_counters(self):
        cache = ProjectionCache()
        cache.get_or_compute("k", lambda: 1)
        cache.clear()

        assert cache.stats() == {"enabled": True, "hits": 0, "misses": 0, "hit_rate": 0.0}
        assert cache.backend.get("k") is _MISS


class TestProjectionDispatcher:
    """Test suite for post-commit notification"""

    @pytest.fixture
    def notification(self):
        event = MovementEvent(MovementKind.PURCHASE, date(2024, 1, 5), "IR64", 10,
                              destination=WarehouseLocation(1, 1), event_id=11)
        return MovementAdmitted(event=event, actor_id=3)

    def test_handlers_are_isolated(self, notification):
        received = []

        def failing(n):
            raise RuntimeError("projection down")

        dispatcher = ProjectionDispatcher()
        dispatcher.subscribe(MovementAdmitted.event_type, failing)
        dispatcher.subscribe(MovementAdmitted.event_type, received.append)

        result = dispatcher.publish(notification)

        assert received == [notification]
        assert result["notified"] == 1
        assert result["failed"] == 1
        assert result["failures"][0]["error_type"] == "RuntimeError"

    def test_no_subscribers(self, notification):
        result = ProjectionDispatcher().publish(notification)

        assert result["notified"] == 0
        assert result["event_type"] == "movement.admitted"
