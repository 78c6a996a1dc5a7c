"""TTL cache for advisory availability answers."""
from __future__ import annotations

from threading import Lock
from typing import Generic, Optional, TypeVar

from cachetools import TTLCache

T = TypeVar("T")


class SimpleTTLCache(Generic[T]):
    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self._cache: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)
        # sync endpoints run in a thread pool; cachetools caches are not thread-safe
        self._lock = Lock()

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._cache[key] = value

    def pop(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def pop_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``; return how many went."""
        with self._lock:
            stale = [key for key in list(self._cache.keys()) if key.startswith(prefix)]
            for key in stale:
                self._cache.pop(key, None)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
