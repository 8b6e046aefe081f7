"""Slow cache tier backed by Redis."""

import logging
import time
from typing import Optional

import redis.asyncio as redis

from contextengine.core.interfaces import CachedPayload, ICacheTier

logger = logging.getLogger(__name__)


class RedisCacheTier(ICacheTier):
    """Redis cache shared between engine processes."""

    name = "redis"

    def __init__(self, redis_url: str = "redis://localhost:6379", key_prefix: str = "ctxcache:"):
        self.key_prefix = key_prefix
        self.client = redis.from_url(redis_url, decode_responses=True)
        logger.info("Redis cache tier initialized")

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[CachedPayload]:
        async with self.client.pipeline(transaction=False) as pipe:
            pipe.get(self._key(key))
            pipe.pttl(self._key(key))
            payload, ttl_ms = await pipe.execute()

        if payload is None:
            return None

        # -1 means the key has no expiry; treat it as living one more day
        remaining = ttl_ms / 1000 if ttl_ms and ttl_ms > 0 else 86400
        return CachedPayload(payload=payload, expires_at=time.time() + remaining)

    async def set(
        self,
        key: str,
        payload: str,
        ttl_seconds: float,
        chat_id: Optional[str] = None
    ) -> None:
        await self.client.set(self._key(key), payload, px=max(1, int(ttl_seconds * 1000)))

    async def delete(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def delete_prefix(self, prefix: str) -> int:
        removed = 0
        async for redis_key in self.client.scan_iter(match=f"{self._key(prefix)}*", count=100):
            removed += await self.client.delete(redis_key)
        return removed

    async def clear(self) -> None:
        await self.delete_prefix("")

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Redis cache tier closed")
