"""In-process LRU cache with per-entry TTL."""

import asyncio
import json
import logging
import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

REAPER_BATCH_SIZE = 100
EVICTION_FRACTION = 0.1


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    expires_at: Optional[float]  # None means no expiry
    access_count: int = 0
    last_accessed: float = 0.0

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


class MemoryCache:
    """
    Bounded key/value cache.

    Entries are kept in last-access order. Inserting a new key into a full
    cache first evicts the least recently accessed tenth (at least one entry).
    Expired entries are dropped when touched and by the background reaper.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl_seconds: Optional[float] = None,
        cleanup_interval_seconds: float = 300,
        clock: Callable[[], float] = time.time
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.default_ttl_seconds = default_ttl_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._reaper: Optional[asyncio.Task] = None

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        now = self._clock()

        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(now):
            del self._entries[key]
            self._misses += 1
            return None

        entry.access_count += 1
        entry.last_accessed = now
        self._entries.move_to_end(key)
        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        now = self._clock()
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds

        if key not in self._entries and len(self._entries) >= self.max_size:
            self._evict_lru()

        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + ttl if ttl is not None else None,
            last_accessed=now,
        )
        self._entries.move_to_end(key)

    def has(self, key: str) -> bool:
        """Presence check that neither counts as an access nor reorders."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return False
        return True

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def keys(self) -> List[str]:
        now = self._clock()
        return [k for k, e in self._entries.items() if not e.is_expired(now)]

    def size(self) -> int:
        return len(self._entries)

    def expire(self, key: str, ttl_seconds: float) -> bool:
        """Reset the TTL of a live entry."""
        if not self.has(key):
            return False
        self._entries[key].expires_at = self._clock() + ttl_seconds
        return True

    def get_ttl(self, key: str) -> Optional[float]:
        """Seconds left for key; None if missing, -1 if it never expires."""
        if not self.has(key):
            return None
        entry = self._entries[key]
        if entry.expires_at is None:
            return -1
        return max(0.0, entry.expires_at - self._clock())

    def cleanup_expired(self) -> int:
        now = self._clock()
        doomed = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug(f"Removed {len(doomed)} expired cache entries")
        return len(doomed)

    def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        entries = list(self._entries.values())
        return {
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": self._hits / total if total else 0.0,
            "memory_usage": sum(self._entry_size(e) for e in entries),
            "total_items": len(entries),
            "max_size": self.max_size,
            "oldest_entry": min((e.created_at for e in entries), default=None),
            "newest_entry": max((e.created_at for e in entries), default=None),
        }

    def _evict_lru(self) -> None:
        count = max(1, math.floor(self.max_size * EVICTION_FRACTION))
        for _ in range(min(count, len(self._entries))):
            key, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug(f"Evicted cache entry {key}")

    @staticmethod
    def _entry_size(entry: CacheEntry) -> int:
        try:
            value = json.dumps(entry.value, default=str)
        except (TypeError, ValueError):
            value = repr(entry.value)
        return len(entry.key) + len(value)

    # Background reaper

    async def start(self) -> None:
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.create_task(self._reap_loop())

    async def stop(self) -> None:
        if self._reaper is None:
            return
        self._reaper.cancel()
        try:
            await self._reaper
        except asyncio.CancelledError:
            pass
        self._reaper = None

    async def _reap_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            try:
                removed = await self.reap()
                if removed:
                    logger.debug(f"Cache reaper removed {removed} entries")
            except Exception as e:
                logger.error(f"Cache reaper failed: {e}", exc_info=True)

    async def reap(self) -> int:
        """Remove expired entries in batches, yielding to the loop in between."""
        removed = 0
        keys = list(self._entries.keys())
        for start in range(0, len(keys), REAPER_BATCH_SIZE):
            now = self._clock()
            for key in keys[start:start + REAPER_BATCH_SIZE]:
                entry = self._entries.get(key)
                if entry is not None and entry.is_expired(now):
                    del self._entries[key]
                    removed += 1
            await asyncio.sleep(0)
        return removed
