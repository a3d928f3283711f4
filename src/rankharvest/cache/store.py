"""
In-memory dataset cache with lazily checked expiry.

There is no background eviction: an entry's expiry is checked when it is
read, and expired entries are dropped at that point. When the store is full
the entry written longest ago is evicted to make room.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import structlog

from rankharvest.config.config import CacheConfig
from rankharvest.observability.metrics import increment

logger = structlog.get_logger(__name__)

GLOBAL_KEY = "all"


def target_cache_key(target_key: str) -> str:
    return f"target:{target_key}"


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheStore:
    """Owned cache of the latest harvested datasets.

    Args:
        config: TTLs and the size bound.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(self, config: Optional[CacheConfig] = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any:
        """Return the cached value, or None when missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self._record_miss(key)
            return None
        if entry.expired(self._clock()):
            del self._entries[key]
            logger.debug("Cache entry expired", key=key)
            self._record_miss(key)
            return None
        self._hits += 1
        increment("cache_lookups", result="hit")
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if ttl is None:
            ttl = self.config.global_ttl_seconds if key == GLOBAL_KEY else self.config.target_ttl_seconds
        now = self._clock()
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(key=key, value=value, created_at=now, expires_at=now + ttl)
        while len(self._entries) > self.config.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted oldest cache entry", key=evicted)

    def get_target(self, target_key: str) -> Any:
        return self.get(target_cache_key(target_key))

    def set_target(self, target_key: str, value: Any) -> None:
        self.set(target_cache_key(target_key), value, self.config.target_ttl_seconds)

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_all(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        logger.info("Cache invalidated", entries=count)
        return count

    def keys(self) -> List[str]:
        return list(self._entries)

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        lookups = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
            "size": len(self._entries),
            "max_entries": self.config.max_entries,
            "keys": self.keys(),
            "age_seconds": {key: round(now - entry.created_at, 3) for key, entry in self._entries.items()},
        }

    def _record_miss(self, key: str) -> None:
        self._misses += 1
        increment("cache_lookups", result="miss")

    def __len__(self) -> int:
        return len(self._entries)
