"""
Response Cache

Process-wide TTL cache for skill results, keyed by (intent, entity id).
Entries are replaced, never mutated in place. A single instance is created
at start-up and passed to the components that need it.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


def make_key(intent: str, entity_id: str) -> str:
    """Build the cache key for a skill result."""
    return f"{intent}:{entity_id}"


@dataclass(frozen=True)
class CacheEntry:
    """A cached value with its expiry timestamp."""

    value: Any
    expires_at: float | None = None  # Unix timestamp, None = no expiration
    created_at: float = field(default_factory=time.time)

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return time.time() > self.expires_at


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "hit_rate": self.hit_rate,
        }


class ResponseCache:
    """
    In-memory TTL cache with least-recently-used eviction.

    The sync accessors are used from synchronous code paths; the async
    variants serialize access through an asyncio.Lock so concurrent
    pipelines never observe a half-written entry. Two concurrent misses for
    the same key both execute and the later write wins.

    Example:
        ```python
        cache = ResponseCache(max_size=500, default_ttl=600)
        await cache.async_set(make_key("status_query", "m-1"), result)
        hit = await cache.async_get(make_key("status_query", "m-1"))
        ```
    """

    def __init__(self, max_size: int = 1000, default_ttl: float | None = 600):
        """
        Args:
            max_size: Maximum number of entries
            default_ttl: Default TTL in seconds (None = no expiration)
        """
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._cache: dict[str, CacheEntry] = {}
        self._last_access: dict[str, float] = {}
        self._stats = CacheStats()
        self._lock = asyncio.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._cache.get(key)

        if entry is None:
            self._stats.misses += 1
            return default

        if entry.is_expired:
            self._remove(key)
            self._stats.expirations += 1
            self._stats.misses += 1
            logger.debug(f"Cache entry expired: {key}")
            return default

        self._last_access[key] = time.monotonic()
        self._stats.hits += 1
        return entry.value

    async def async_get(self, key: str, default: Any = None) -> Any:
        """Async version of get."""
        async with self._lock:
            return self.get(key, default)

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """
        Add or replace an entry.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live in seconds (uses default if not specified)
        """
        if len(self._cache) >= self.max_size and key not in self._cache:
            self._evict_lru()

        effective_ttl = ttl if ttl is not None else self.default_ttl
        expires_at = time.time() + effective_ttl if effective_ttl else None

        self._cache[key] = CacheEntry(value=value, expires_at=expires_at)
        self._last_access[key] = time.monotonic()

    async def async_set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Async version of set."""
        async with self._lock:
            self.set(key, value, ttl)

    def delete(self, key: str) -> bool:
        if key in self._cache:
            self._remove(key)
            return True
        return False

    def has(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        entry = self._cache.get(key)
        if entry is None:
            return False
        if entry.is_expired:
            self._remove(key)
            return False
        return True

    def clear(self) -> int:
        count = len(self._cache)
        self._cache.clear()
        self._last_access.clear()
        return count

    async def async_clear(self) -> int:
        """Async version of clear."""
        async with self._lock:
            return self.clear()

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed
        """
        expired_keys = [k for k, v in self._cache.items() if v.is_expired]
        for key in expired_keys:
            self._remove(key)
            self._stats.expirations += 1
        return len(expired_keys)

    def _remove(self, key: str) -> None:
        self._cache.pop(key, None)
        self._last_access.pop(key, None)

    def _evict_lru(self) -> None:
        if not self._cache:
            return
        lru_key = min(self._last_access, key=self._last_access.__getitem__)
        self._remove(lru_key)
        self._stats.evictions += 1

    @property
    def stats(self) -> CacheStats:
        return self._stats

    @property
    def size(self) -> int:
        return len(self._cache)

    def get_info(self) -> dict[str, Any]:
        """Get cache information."""
        return {
            "size": self.size,
            "max_size": self.max_size,
            "default_ttl": self.default_ttl,
            "stats": self._stats.to_dict(),
        }
