"""In-memory TTL cache for scrape results."""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    data: T
    created_at: float
    expires_at: float


class TTLCache(Generic[T]):
    """Dictionary cache whose entries expire ``ttl`` seconds after insertion.

    Expired entries are deleted lazily on read. Once the cache grows past
    ``high_water_mark`` entries, every insert sweeps out all expired ones.
    This bounds growth without tracking recency.
    """

    def __init__(
        self,
        ttl: float,
        high_water_mark: int = 1000,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        self.ttl = ttl
        self.high_water_mark = high_water_mark
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}
        self.logger = logger.bind(cache=name)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        return entry.data

    def set(self, key: str, value: T) -> None:
        now = self._clock()
        self._entries[key] = CacheEntry(data=value, created_at=now, expires_at=now + self.ttl)
        if len(self._entries) > self.high_water_mark:
            self.cleanup()

    def cleanup(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now > e.expires_at]
        for key in expired:
            del self._entries[key]
        self.logger.info("cache_cleanup_completed", removed=len(expired), remaining=len(self._entries))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self.logger.info("cache_cleared")

    def stats(self) -> Dict[str, Any]:
        keys: List[str] = list(self._entries.keys())
        return {"size": len(keys), "keys": keys}
