"""
In-memory TTL cache for catalog lookups, built on cachetools.TTLCache.

When full, the oldest 10% of entries (by insertion time) are evicted before a
new key is inserted. purge_expired() is driven by the heartbeat sweep task.
"""

import threading
import time
from typing import Any, Callable, Dict, Generic, TypeVar

from cachetools import TTLCache as _ExpiringCache

from ..core.config import CATALOG_CACHE_MAX_ENTRIES, CATALOG_CACHE_TTL_SEC
from ..core.schema import CacheEntry
from ..util.logging import logger

T = TypeVar("T")

EVICTION_FRACTION = 0.1


class TTLCache(Generic[T]):
    def __init__(self, ttl: float = CATALOG_CACHE_TTL_SEC, max_entries: int = CATALOG_CACHE_MAX_ENTRIES,
                 clock: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1: {max_entries}")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: _ExpiringCache = _ExpiringCache(maxsize=max_entries, ttl=ttl, timer=clock)
        # cachetools caches are not thread-safe; the sweep runs on the heartbeat thread
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        """Cached value, or `default` when absent or expired. A stored None is a hit."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default
            self.hits += 1
            return entry.data

    def set(self, key: str, data: T) -> None:
        now = self._clock()
        with self._lock:
            self._entries.expire()
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_oldest()
            self._entries[key] = CacheEntry(data=data, inserted_at=now, expires_at=now + self.ttl)

    def _evict_oldest(self) -> int:
        count = max(1, int(self.max_entries * EVICTION_FRACTION))
        keys = list(self._entries)
        oldest = sorted(keys, key=lambda k: self._entries[k].inserted_at)[:count]
        for key in oldest:
            del self._entries[key]
        logger.log_cache_event("evict", {"removed": len(oldest), "remaining": len(self._entries)})
        return len(oldest)

    def purge_expired(self) -> int:
        """Delete every expired entry; returns how many were removed."""
        with self._lock:
            removed = len(self._entries.expire())
        if removed:
            logger.log_cache_event("sweep", {"removed": removed})
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "size": len(self),
            "maxSize": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "hitRate": round(self.hits / lookups, 4) if lookups else None,
        }
