"""Bounded in-memory cache for embeddings and query results."""

import base64
import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_SLIDING_EXPIRATION = 30 * 60.0


def generate_cache_key(prefix: str, *components: Any) -> str:
    """Derive a deterministic cache key from a prefix and components.

    Components are rendered with ``str()`` (``None`` becomes ``"null"``),
    joined with ``|`` and hashed with SHA-256.

    Example:
        generate_cache_key("query", "What is RAG?", 3)
        # 'query:1xV...'
    """
    combined = "|".join("null" if c is None else str(c) for c in components)
    digest = hashlib.sha256(combined.encode("utf-8")).digest()
    encoded = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    return f"{prefix}:{encoded}"


class CacheStats(BaseModel):
    """Cache usage counters."""

    current_size: int = 0
    max_size: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float
    sliding: Optional[float] = None


class CacheService:
    """Bounded key-value cache with TTL and hit/miss accounting.

    Entries set with a ``ttl`` expire that many seconds after being stored.
    Entries set without one use a sliding expiration that is renewed on
    every hit.

    When the cache holds ``max_size`` live entries, ``set`` stores nothing
    and returns False. Nothing is evicted to make room.

    ``clear`` empties the cache but keeps the hit/miss counters.
    """

    def __init__(
        self,
        max_size: int = 1000,
        sliding_expiration: float = DEFAULT_SLIDING_EXPIRATION,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            max_size: Maximum number of live entries
            sliding_expiration: Seconds of inactivity before an entry without ttl expires
            clock: Time source in seconds
        """
        if max_size < 0:
            raise ValueError("max_size cannot be negative")

        self.max_size = max_size
        self.sliding_expiration = sliding_expiration
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    async def get(self, key: str) -> Optional[Any]:
        """Get a value, or None on a miss."""
        with self._lock:
            entry = self._entries.get(key)
            now = self._clock()

            if entry is not None and entry.expires_at <= now:
                del self._entries[key]
                entry = None

            if entry is None:
                self._misses += 1
                return None

            if entry.sliding is not None:
                entry.expires_at = now + entry.sliding
            self._hits += 1
            return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Store a value.

        Args:
            key: Cache key
            value: Value to store
            ttl: Absolute lifetime in seconds (sliding expiration if None)

        Returns:
            False if the cache was full and the value was not stored
        """
        with self._lock:
            now = self._clock()
            if len(self._entries) >= self.max_size:
                self._purge_expired(now)
            if len(self._entries) >= self.max_size:
                logger.debug(f"Cache full ({self.max_size}), dropped '{key}'")
                return False

            if ttl is None:
                entry = _CacheEntry(value, now + self.sliding_expiration, self.sliding_expiration)
            else:
                entry = _CacheEntry(value, now + ttl)
            self._entries[key] = entry
            return True

    async def remove(self, key: str) -> None:
        """Remove a key if present."""
        with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._entries.clear()

    async def get_stats(self) -> CacheStats:
        """Return size and hit/miss counters."""
        with self._lock:
            self._purge_expired(self._clock())
            total = self._hits + self._misses
            return CacheStats(
                current_size=len(self._entries),
                max_size=self.max_size,
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hits / total if total else 0.0,
            )

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
