"""
Tests for the TTL / LRU cache.
"""
import pytest

from cache import TTLCache
from conftest import FakeClock


@pytest.fixture
def ttl_cache(clock):
    return TTLCache(ttl_seconds=60, clock=clock)


class TestTTL:

    def test_set_and_get(self, ttl_cache):
        ttl_cache.set("a", 1)
        assert ttl_cache.get("a") == 1
        assert ttl_cache.has("a")

    def test_missing_key(self, ttl_cache):
        assert ttl_cache.get("nope") is None
        assert ttl_cache.get("nope", 5) == 5

    def test_entries_expire(self, ttl_cache, clock):
        ttl_cache.set("a", 1)
        clock.advance(60)
        assert ttl_cache.has("a")
        clock.advance(1)
        assert not ttl_cache.has("a")
        assert ttl_cache.get("a") is None
        assert len(ttl_cache) == 0

    def test_set_refreshes_age(self, ttl_cache, clock):
        ttl_cache.set("a", 1)
        clock.advance(50)
        ttl_cache.set("a", 2)
        clock.advance(50)
        assert ttl_cache.get("a") == 2

    def test_delete_and_clear(self, ttl_cache):
        ttl_cache.set("a", 1)
        ttl_cache.set("b", 2)
        assert ttl_cache.delete("a")
        assert not ttl_cache.delete("a")
        ttl_cache.clear()
        assert len(ttl_cache) == 0

    def test_get_or_set_calls_factory_once(self, ttl_cache):
        calls = []

        def factory():
            calls.append(1)
            return 42

        assert ttl_cache.get_or_set("k", factory) == 42
        assert ttl_cache.get_or_set("k", factory) == 42
        assert len(calls) == 1

    def test_stats(self, ttl_cache, clock):
        ttl_cache.set("a", 1)
        ttl_cache.set("b", 2)
        ttl_cache.get("a")
        ttl_cache.get("zzz")
        clock.advance(61)
        stats = ttl_cache.stats()
        assert stats["total"] == 2
        assert stats["expired"] == 2
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 50
        assert stats["policy"] == "ttl"


class TestLRU:

    def test_evicts_least_recently_used(self):
        cache = TTLCache(ttl_seconds=60, policy="lru", max_entries=2, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert cache.has("a")
        assert not cache.has("b")
        assert cache.has("c")

    def test_ttl_policy_has_no_size_limit(self):
        cache = TTLCache(ttl_seconds=60, clock=FakeClock())
        for i in range(100):
            cache.set(i, i)
        assert len(cache) == 100


class TestConstruction:

    def test_unknown_policy(self):
        with pytest.raises(ValueError):
            TTLCache(policy="fifo")

    def test_lru_needs_limit(self):
        with pytest.raises(ValueError):
            TTLCache(policy="lru")

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=0)
