"""Multi-tier caching for assembled context windows."""

import logging
from typing import Optional

from contextengine.cache.database_cache import DatabaseCacheTier
from contextengine.cache.memory_cache import MemoryCache
from contextengine.cache.multi_tier import MultiTierCache
from contextengine.core.config import CacheBackend, CacheConfig
from contextengine.core.interfaces import ICacheTier
from contextengine.storage.database import Database

logger = logging.getLogger(__name__)


def create_slow_tier(config: CacheConfig, database: Optional[Database] = None) -> Optional[ICacheTier]:
    """Build the persistent tier selected by config.slow_tier."""
    backend = CacheBackend(config.slow_tier)

    if backend == CacheBackend.NONE:
        return None

    if backend == CacheBackend.DATABASE:
        if database is None:
            raise ValueError("The database cache tier needs a Database")
        return DatabaseCacheTier(database)

    if backend == CacheBackend.REDIS:
        from contextengine.cache.redis_cache import RedisCacheTier
        return RedisCacheTier(config.redis_url, key_prefix=config.redis_key_prefix)

    raise ValueError(f"Unknown cache backend: {backend}")


def create_cache(config: CacheConfig, database: Optional[Database] = None) -> MultiTierCache:
    fast = MemoryCache(
        max_size=config.max_size,
        cleanup_interval_seconds=config.cleanup_interval_seconds,
    )
    slow = create_slow_tier(config, database)
    logger.info(f"Context cache: memory (max {config.max_size}) + {slow.name if slow else 'no'} slow tier")
    return MultiTierCache(fast, slow)


__all__ = [
    'DatabaseCacheTier',
    'MemoryCache',
    'MultiTierCache',
    'create_cache',
    'create_slow_tier',
]
