"""Tests for the cache module."""
import pytest

from f1_mcp.cache import MISSING, Cache


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return Cache(default_ttl=300, clock=clock)


class TestCache:
    """Tests for Cache get/set and expiry."""

    def test_set_then_get_returns_value(self, cache):
        """A value is readable immediately after it is stored."""
        cache.set("k", {"a": 1}, ttl=10)
        assert cache.get("k") == {"a": 1}

    def test_missing_key_returns_sentinel(self, cache):
        assert cache.get("nope") is MISSING

    def test_cached_empty_list_is_a_hit(self, cache):
        """Falsy values are cached like any other value."""
        cache.set("k", [])
        assert cache.get("k") == []
        assert cache.get("k") is not MISSING

    def test_entry_expires_after_ttl(self, cache, clock):
        """After ttl seconds the entry reads as absent until set again."""
        cache.set("k", "v", ttl=10)
        clock.advance(9.9)
        assert cache.get("k") == "v"
        clock.advance(0.1)
        assert cache.get("k") is MISSING
        assert len(cache) == 0

        cache.set("k", "v2", ttl=10)
        assert cache.get("k") == "v2"

    def test_default_ttl_used(self, cache, clock):
        cache.set("k", "v")
        clock.advance(299)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is MISSING

    def test_set_overwrites(self, cache):
        cache.set("k", "old")
        cache.set("k", "new")
        assert cache.get("k") == "new"

    def test_clear_is_idempotent(self, cache):
        """Clearing an empty cache is harmless; clearing evicts every key."""
        cache.clear()
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        cache.clear()
        assert cache.get("a") is MISSING
        assert cache.get("b") is MISSING
        assert len(cache) == 0
