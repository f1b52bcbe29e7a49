"""Caching layer for step outputs.

Provides an async-compatible cache with TTL support used by the optimized
execution strategy to skip re-running a step whose type and inputs were
already executed successfully.

Key Exports:
    AsyncCache: Core async cache with TTL support.
    hash_inputs: Stable hash of a step's inputs.
    build_step_key: Cache key for a ``(step_type, input_hash)`` pair.

Example:
    >>> cache = AsyncCache(ttl_seconds=300, max_size=100)
    >>> key = build_step_key("analysis", {"path": "/repo"})
    >>> await cache.set(key, result)
    >>> await cache.get(key)

Thread Safety:
    All cache operations use asyncio.Lock for synchronization, making
    them safe for concurrent access from multiple async tasks. The cache
    is not shared between processes.
"""

import asyncio
import hashlib
import json
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

log = structlog.get_logger(__name__)


class AsyncCache:
    """Async cache with TTL (time-to-live) support.

    Attributes:
        _cache: Internal storage mapping keys to (value, timestamp) tuples.
        _ttl: Time-to-live as a timedelta.
        _max_size: Maximum number of entries before eviction.
        _lock: asyncio.Lock for synchronization.
        _hits: Count of cache hits.
        _misses: Count of cache misses (keys not found or expired).
    """

    def __init__(self, ttl_seconds: int = 300, max_size: int = 1000) -> None:
        """Initialize the async cache.

        Args:
            ttl_seconds: Time-to-live for cache entries in seconds.
            max_size: Maximum number of entries; the oldest entry is
                evicted when a new key would exceed it.
        """
        self._cache: dict[str, tuple[Any, datetime]] = {}
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_size = max_size
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    async def get(self, key: str) -> Any | None:
        """Get a value from the cache.

        Returns:
            The cached value if found and not expired, None otherwise.
            Expired entries are removed on access.
        """
        async with self._lock:
            if key in self._cache:
                value, timestamp = self._cache[key]
                if datetime.now(UTC) - timestamp < self._ttl:
                    self._hits += 1
                    log.debug("cache_hit", key=key)
                    return value
                del self._cache[key]
                log.debug("cache_expired", key=key)

            self._misses += 1
            log.debug("cache_miss", key=key)
            return None

    async def set(self, key: str, value: Any) -> None:
        """Store a value, evicting the oldest entry when the cache is full."""
        async with self._lock:
            if key not in self._cache and len(self._cache) >= self._max_size:
                self._evict_oldest()

            self._cache[key] = (value, datetime.now(UTC))
            log.debug("cache_set", key=key)

    async def delete(self, key: str) -> bool:
        """Delete a value. Returns True if the key existed."""
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
                log.debug("cache_delete", key=key)
                return True
            return False

    async def clear(self) -> None:
        """Remove all entries and reset statistics."""
        async with self._lock:
            count = len(self._cache)
            self._cache.clear()
            self._hits = 0
            self._misses = 0
            log.info("cache_cleared", entries_cleared=count)

    def _evict_oldest(self) -> None:
        # Caller holds the lock.
        if not self._cache:
            return

        oldest_key = min(self._cache.items(), key=lambda x: x[1][1])[0]
        del self._cache[oldest_key]
        log.debug("cache_evicted", key=oldest_key)

    async def get_stats(self) -> dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary with size, max_size, hits, misses, hit_rate and ttl_seconds.
        """
        total_requests = self._hits + self._misses
        hit_rate = self._hits / total_requests if total_requests > 0 else 0.0

        return {
            "size": len(self._cache),
            "max_size": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": hit_rate,
            "ttl_seconds": self._ttl.total_seconds(),
        }


def hash_inputs(inputs: Any) -> str:
    """Hash step inputs into a stable hex digest.

    Mappings are serialized with sorted keys so that key order does not
    change the hash. Values that are not JSON serializable fall back to
    their ``repr``.
    """
    payload = json.dumps(inputs, sort_keys=True, default=repr)
    return hashlib.sha256(payload.encode()).hexdigest()


def build_step_key(step_type: str, inputs: Any) -> str:
    """Build the cache key for a step: ``{step_type}:{input_hash}``."""
    return f"{step_type}:{hash_inputs(inputs)}"
