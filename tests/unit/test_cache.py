"""Unit tests for cache utilities."""
import time

from common.cache import SimpleTTLCache


class TestSimpleTTLCache:
    """Test the TTL cache implementation."""

    def test_cache_set_and_get(self):
        """Test basic set and get operations."""
        cache = SimpleTTLCache[str](ttl=60)

        cache.set("key1", "value1")
        assert cache.get("key1") == "value1"

    def test_cache_get_nonexistent_key(self):
        """Test getting a key that doesn't exist returns None."""
        cache = SimpleTTLCache[str](ttl=60)

        assert cache.get("nonexistent") is None

    def test_cache_ttl_expiration(self):
        """Test that values expire after TTL."""
        cache = SimpleTTLCache[str](ttl=1)

        cache.set("key1", "value1")
        assert cache.get("key1") == "value1"

        time.sleep(1.1)

        assert cache.get("key1") is None

    def test_cache_pop(self):
        """Test removing a key from cache."""
        cache = SimpleTTLCache[str](ttl=60)

        cache.set("key1", "value1")
        cache.set("key2", "value2")
        cache.pop("key1")
        cache.pop("nonexistent")

        assert cache.get("key1") is None
        assert cache.get("key2") == "value2"

    def test_cache_pop_prefix(self):
        """Test dropping every availability answer for one court."""
        cache = SimpleTTLCache[bool](ttl=60)

        cache.set("availability:1:09:00:10:00", True)
        cache.set("availability:1:11:00:12:00", False)
        cache.set("availability:12:09:00:10:00", True)

        removed = cache.pop_prefix("availability:1:")

        assert removed == 2
        assert cache.get("availability:1:09:00:10:00") is None
        assert cache.get("availability:12:09:00:10:00") is True

    def test_cache_pop_prefix_without_matches(self):
        """Test pop_prefix on an unrelated prefix removes nothing."""
        cache = SimpleTTLCache[str](ttl=60)
        cache.set("key1", "value1")

        assert cache.pop_prefix("availability:") == 0
        assert cache.get("key1") == "value1"

    def test_cache_clear(self):
        """Test clearing all cache entries."""
        cache = SimpleTTLCache[str](ttl=60)

        cache.set("key1", "value1")
        cache.set("key2", "value2")
        cache.clear()

        assert cache.get("key1") is None
        assert cache.get("key2") is None

    def test_cache_maxsize(self):
        """Test cache respects maxsize limit."""
        cache = SimpleTTLCache[str](ttl=60, maxsize=2)

        cache.set("key1", "value1")
        cache.set("key2", "value2")
        cache.set("key3", "value3")

        assert cache.get("key2") == "value2"
        assert cache.get("key3") == "value3"
