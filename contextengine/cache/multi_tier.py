"""Fast in-process tier in front of an optional persistent tier."""

import copy
import logging
import time
from typing import Any, Dict, Optional

from contextengine.cache import codec
from contextengine.cache.memory_cache import MemoryCache
from contextengine.core.interfaces import ICacheTier

logger = logging.getLogger(__name__)


class MultiTierCache:
    """
    Two-level cache.

    Reads go to the fast tier first; a slow-tier hit is promoted with its
    remaining TTL. Writes go to both tiers. Slow-tier failures are logged
    and the cache carries on with the fast tier alone.

    Callers always get their own copy of a cached value, so changing a
    returned object never changes later hits.
    """

    def __init__(
        self,
        fast: MemoryCache,
        slow: Optional[ICacheTier] = None,
        clock=time.time
    ):
        self.fast = fast
        self.slow = slow
        self._clock = clock
        self._slow_hits = 0
        self._slow_errors = 0

    async def start(self) -> None:
        await self.fast.start()

    async def close(self) -> None:
        await self.fast.stop()
        if self.slow is not None:
            try:
                await self.slow.close()
            except Exception as e:
                logger.warning(f"Error closing {self.slow.name} cache tier: {e}")

    async def get(self, key: str) -> Optional[Any]:
        value = self.fast.get(key)
        if value is not None:
            return copy.deepcopy(value)
        if self.slow is None:
            return None

        try:
            cached = await self.slow.get(key)
        except Exception as e:
            self._slow_errors += 1
            logger.warning(f"Slow cache tier read failed for {key}: {e}")
            return None

        if cached is None:
            return None

        try:
            value = codec.decode(cached.payload)
        except codec.CodecError as e:
            logger.info(f"Discarding incompatible cache entry {key}: {e}")
            await self._slow_delete(key)
            return None

        remaining = cached.expires_at - self._clock()
        if remaining <= 0:
            return None

        self.fast.set(key, value, ttl_seconds=remaining)
        self._slow_hits += 1
        return copy.deepcopy(value)

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float,
        chat_id: Optional[str] = None
    ) -> None:
        self.fast.set(key, copy.deepcopy(value), ttl_seconds=ttl_seconds)
        if self.slow is None:
            return
        try:
            payload = codec.encode(value)
            await self.slow.set(key, payload, ttl_seconds, chat_id=chat_id)
        except Exception as e:
            self._slow_errors += 1
            logger.warning(f"Slow cache tier write failed for {key}: {e}")

    async def has(self, key: str) -> bool:
        if self.fast.has(key):
            return True
        return await self.get(key) is not None

    async def delete(self, key: str) -> None:
        self.fast.delete(key)
        await self._slow_delete(key)

    async def invalidate_prefix(self, prefix: str) -> int:
        removed = self.fast.delete_prefix(prefix)
        if self.slow is not None:
            try:
                removed += await self.slow.delete_prefix(prefix)
            except Exception as e:
                self._slow_errors += 1
                logger.warning(f"Slow cache tier invalidation failed for {prefix}: {e}")
        return removed

    async def clear(self) -> None:
        self.fast.clear()
        self._slow_hits = 0
        if self.slow is not None:
            try:
                await self.slow.clear()
            except Exception as e:
                self._slow_errors += 1
                logger.warning(f"Slow cache tier clear failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        stats = self.fast.get_stats()
        # A promoted slow hit was first counted as a fast miss
        hits = stats["hits"] + self._slow_hits
        misses = max(0, stats["misses"] - self._slow_hits)
        total = hits + misses
        stats.update({
            "hits": hits,
            "misses": misses,
            "hit_rate": hits / total if total else 0.0,
            "slow_tier": self.slow.name if self.slow is not None else None,
            "slow_tier_hits": self._slow_hits,
            "slow_tier_errors": self._slow_errors,
        })
        return stats

    async def _slow_delete(self, key: str) -> None:
        if self.slow is None:
            return
        try:
            await self.slow.delete(key)
        except Exception as e:
            self._slow_errors += 1
            logger.warning(f"Slow cache tier delete failed for {key}: {e}")
