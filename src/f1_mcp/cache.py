"""In-memory cache for upstream API responses with per-entry expiration."""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

# Returned by get() on a miss, so that cached falsy values ([] / None) stay hits
MISSING = object()


class TTLClass(Enum):
    """Freshness classes for cached upstream data."""

    LIVE = "live"
    STATIC = "static"


@dataclass
class CacheEntry:
    """A cached value and its expiry, in clock seconds."""

    value: Any
    cached_at: float
    expires_at: float


class Cache:
    """Unbounded in-memory cache with lazy expiry.

    Keys are full upstream request URLs. Expired entries are evicted when
    they are next read; there is no background sweep.
    """

    def __init__(self, default_ttl: float = 300, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the cache.

        Args:
            default_ttl: Default time-to-live in seconds (default: 5 minutes)
            clock: Monotonic time source, in seconds
        """
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> Any:
        """
        Retrieve a value from the cache.

        Returns:
            Cached value, or MISSING if not found or expired
        """
        entry = self._live_entry(key)
        return MISSING if entry is None else entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Store a value in the cache, overwriting any existing entry.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live in seconds (uses default if not specified)
        """
        if ttl is None:
            ttl = self.default_ttl

        now = self._clock()
        self._entries[key] = CacheEntry(value=value, cached_at=now, expires_at=now + ttl)

    def clear(self) -> None:
        """Clear all cached data."""
        self._entries.clear()
