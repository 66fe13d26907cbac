"""
Time-to-live key/value cache

Used for resolved lyrics and embeddings. Entries are checked lazily at read
time; nothing sweeps the store in the background. The clock is injectable so
expiry can be tested without sleeping.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, Optional, TypeVar

from .helpers import now_ms


V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """Cached value with the epoch-ms timestamp it was stored at"""
    value: V
    stored_at_ms: int

    def is_expired(self, now: int, ttl_ms: int) -> bool:
        return now - self.stored_at_ms >= ttl_ms


class TTLCache(Generic[V]):
    """
    In-memory cache with passive expiry

    Writes are last-writer-wins. Any object exposing the same ``get`` and
    ``put`` methods can be passed to the resolvers in place of this one.

    Args:
        ttl_seconds: Lifetime of an entry (24h by default)
        clock: Callable returning the current time in epoch milliseconds
    """

    def __init__(self, ttl_seconds: float = 86400, clock: Callable[[], int] = now_ms):
        self.ttl_ms = int(ttl_seconds * 1000)
        self.clock = clock
        self._entries: Dict[Hashable, CacheEntry[V]] = {}

    def get(self, key: Hashable) -> Optional[V]:
        """
        Return the cached value or None when absent or expired

        Expired entries are evicted on the read that discovers them.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self.clock(), self.ttl_ms):
            del self._entries[key]
            return None

        return entry.value

    def put(self, key: Hashable, value: V, stored_at_ms: Optional[int] = None) -> None:
        stamp = self.clock() if stored_at_ms is None else stored_at_ms
        self._entries[key] = CacheEntry(value=value, stored_at_ms=stamp)

    def pop(self, key: Hashable) -> Optional[V]:
        """Remove ``key``; returns its value unless it was absent or expired"""
        entry = self._entries.pop(key, None)
        if entry is None or entry.is_expired(self.clock(), self.ttl_ms):
            return None
        return entry.value

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed"""
        now = self.clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now, self.ttl_ms)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None
