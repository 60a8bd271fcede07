"""Tests for the TTL cache and cache keys."""

import pytest

from hybrid_search.resilience.cache import TTLCache, make_cache_key


class TestMakeCacheKey:
    """Tests for make_cache_key."""

    def test_deterministic_and_order_independent(self) -> None:
        """Test option order does not change the key."""
        first = make_cache_key("rainfall", {"k": 5, "namespace": "text"})
        second = make_cache_key("rainfall", {"namespace": "text", "k": 5})

        assert first == second
        assert len(first) == 32

    def test_options_change_key(self) -> None:
        """Test different options produce different keys."""
        assert make_cache_key("rainfall", {"k": 5}) != make_cache_key("rainfall", {"k": 6})
        assert make_cache_key("rainfall") != make_cache_key("monsoon")


class TestTTLCache:
    """Tests for TTLCache."""

    @pytest.fixture
    def cache(self, clock) -> TTLCache[str, str]:
        """Create a cache with a 600s TTL."""
        return TTLCache(ttl=600, max_size=5, name="test", clock=clock)

    def test_get_missing_returns_none(self, cache: TTLCache[str, str]) -> None:
        """Test a miss returns None and is counted."""
        assert cache.get("missing") is None
        assert cache.stats.misses == 1

    def test_hit_within_ttl(self, cache: TTLCache[str, str], clock) -> None:
        """Test an entry is returned just before its TTL elapses."""
        cache.set("key", "value")
        clock.advance(600 - 0.001)

        assert cache.get("key") == "value"
        assert cache.stats.hits == 1

    def test_expired_after_ttl(self, cache: TTLCache[str, str], clock) -> None:
        """Test an entry is gone just after its TTL and removed on read."""
        cache.set("key", "value")
        clock.advance(600 + 0.001)

        assert cache.get("key") is None
        assert len(cache) == 0
        assert cache.stats.evictions == 1

    def test_overwrite_refreshes_timestamp(self, cache: TTLCache[str, str], clock) -> None:
        """Test setting an existing key restarts its TTL."""
        cache.set("key", "old")
        clock.advance(500)
        cache.set("key", "new")
        clock.advance(500)

        assert cache.get("key") == "new"

    def test_eviction_keeps_newest_entries(self, cache: TTLCache[str, str], clock) -> None:
        """Test exceeding max_size trims to 80% of the ceiling, newest first."""
        for i in range(6):
            cache.set(f"key-{i}", f"value-{i}")
            clock.advance(1)

        assert len(cache) == 4
        assert "key-0" not in cache
        assert "key-1" not in cache
        assert cache.get("key-5") == "value-5"
        assert cache.get("key-2") == "value-2"

    def test_single_entry_cache_keeps_newest(self, clock) -> None:
        """Test a size-one cache keeps the entry just set instead of emptying."""
        cache: TTLCache[str, str] = TTLCache(ttl=600, max_size=1, clock=clock)
        cache.set("first", "a")
        clock.advance(1)

        cache.set("second", "b")

        assert len(cache) == 1
        assert cache.get("second") == "b"
        assert cache.get("first") is None

    def test_cleanup_drops_expired_first(self, clock) -> None:
        """Test expired entries are purged before size-based eviction."""
        cache: TTLCache[str, int] = TTLCache(ttl=10, max_size=3, clock=clock)
        cache.set("stale-1", 1)
        cache.set("stale-2", 2)
        clock.advance(11)
        cache.set("fresh-1", 3)
        cache.set("fresh-2", 4)

        assert len(cache) == 2
        assert cache.get("fresh-1") == 3

    def test_invalidate_single_key(self, cache: TTLCache[str, str]) -> None:
        """Test invalidating one key leaves the rest."""
        cache.set("a", "1")
        cache.set("b", "2")

        cache.invalidate("a")

        assert cache.get("a") is None
        assert cache.get("b") == "2"

    def test_invalidate_all(self, cache: TTLCache[str, str]) -> None:
        """Test invalidate() with no key clears the cache."""
        cache.set("a", "1")
        cache.set("b", "2")

        cache.invalidate()

        assert len(cache) == 0

    def test_hit_rate(self, cache: TTLCache[str, str]) -> None:
        """Test hit rate counts hits over lookups."""
        cache.set("a", "1")
        cache.get("a")
        cache.get("b")

        assert cache.stats.hit_rate == pytest.approx(0.5)
