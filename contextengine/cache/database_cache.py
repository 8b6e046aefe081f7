"""Slow cache tier backed by the context_cache table."""

import logging
import time
from typing import Optional

from sqlalchemy import delete, select

from contextengine.core.interfaces import CachedPayload, ICacheTier
from contextengine.memory.token_estimator import estimate_tokens
from contextengine.storage.database import Database
from contextengine.storage.models import ContextCacheRow, utc_now

logger = logging.getLogger(__name__)


class DatabaseCacheTier(ICacheTier):
    """Persists cache payloads next to the conversation data."""

    name = "database"

    def __init__(self, database: Database):
        self.db = database

    async def get(self, key: str) -> Optional[CachedPayload]:
        async with self.db.transaction() as session:
            row = await session.get(ContextCacheRow, key)
            if row is None:
                return None
            if row.expires_at <= time.time():
                await session.delete(row)
                return None
            row.hit_count = (row.hit_count or 0) + 1
            return CachedPayload(payload=row.context_data, expires_at=row.expires_at)

    async def set(
        self,
        key: str,
        payload: str,
        ttl_seconds: float,
        chat_id: Optional[str] = None
    ) -> None:
        expires_at = time.time() + ttl_seconds
        async with self.db.transaction() as session:
            row = await session.get(ContextCacheRow, key)
            if row is None:
                session.add(ContextCacheRow(
                    cache_key=key,
                    chat_id=chat_id,
                    context_data=payload,
                    token_count=estimate_tokens(payload),
                    expires_at=expires_at,
                    hit_count=0,
                    created_at=utc_now(),
                ))
            else:
                row.chat_id = chat_id
                row.context_data = payload
                row.token_count = estimate_tokens(payload)
                row.expires_at = expires_at
                row.hit_count = 0
                row.created_at = utc_now()

    async def delete(self, key: str) -> None:
        async with self.db.transaction() as session:
            await session.execute(delete(ContextCacheRow).where(ContextCacheRow.cache_key == key))

    async def delete_prefix(self, prefix: str) -> int:
        async with self.db.transaction() as session:
            result = await session.execute(
                select(ContextCacheRow.cache_key).where(ContextCacheRow.cache_key.startswith(prefix))
            )
            keys = list(result.scalars())
            if keys:
                await session.execute(
                    delete(ContextCacheRow).where(ContextCacheRow.cache_key.in_(keys))
                )
        return len(keys)

    async def clear(self) -> None:
        async with self.db.transaction() as session:
            await session.execute(delete(ContextCacheRow))

    async def cleanup_expired(self) -> int:
        async with self.db.transaction() as session:
            result = await session.execute(
                delete(ContextCacheRow).where(ContextCacheRow.expires_at <= time.time())
            )
            removed = result.rowcount or 0
        if removed:
            logger.debug(f"Removed {removed} expired rows from context_cache")
        return removed
