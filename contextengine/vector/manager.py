"""Conversation-aware facade over a vector store, with a search cache."""

import hashlib
import logging
from typing import List, Optional

from contextengine.cache.memory_cache import MemoryCache
from contextengine.core.interfaces import IVectorStore, VectorKind, VectorSearchResult

logger = logging.getLogger(__name__)


class VectorStoreManager:
    """
    Embeds messages and segment summaries and answers scoped searches.

    Search results are cached per conversation; adding an embedding to a
    conversation drops that conversation's cached searches.
    """

    def __init__(
        self,
        store: IVectorStore,
        cache_ttl_minutes: float = 15,
        cache_size: int = 500
    ):
        self.store = store
        self.cache_ttl_seconds = cache_ttl_minutes * 60
        self._search_cache = MemoryCache(max_size=cache_size)
        self.initialized = False

    async def initialize(self) -> None:
        await self.store.initialize()
        self.initialized = True

    @staticmethod
    def _cache_prefix(chat_id: str) -> str:
        return f"search:{chat_id}:"

    def _cache_key(
        self,
        chat_id: str,
        query: str,
        limit: int,
        min_similarity: float,
        kind: Optional[VectorKind]
    ) -> str:
        query_hash = hashlib.sha256(query.encode("utf-8")).hexdigest()[:16]
        scope = VectorKind(kind).value if kind is not None else "any"
        return f"{self._cache_prefix(chat_id)}{scope}:{query_hash}:{limit}:{min_similarity:.3f}"

    async def add_message(self, chat_id: str, message_id: int, text: str) -> str:
        vector_id = await self.store.add_embedding(text, message_id, VectorKind.MESSAGE, chat_id=chat_id)
        self.invalidate(chat_id)
        logger.debug(f"Embedded message {message_id} for {chat_id}")
        return vector_id

    async def add_segment_summary(self, chat_id: str, segment_id: int, summary: str) -> str:
        vector_id = await self.store.add_embedding(summary, segment_id, VectorKind.SUMMARY, chat_id=chat_id)
        self.invalidate(chat_id)
        logger.debug(f"Embedded summary of segment {segment_id} for {chat_id}")
        return vector_id

    async def find_relevant(
        self,
        chat_id: str,
        query: str,
        limit: int = 5,
        min_similarity: float = 0.7,
        kind: Optional[VectorKind] = None
    ) -> List[VectorSearchResult]:
        """Similar vectors within one conversation, best first."""
        key = self._cache_key(chat_id, query, limit, min_similarity, kind)
        cached = self._search_cache.get(key)
        if cached is None:
            cached = await self.store.search_similar(
                query, limit=limit, min_similarity=min_similarity, chat_id=chat_id, kind=kind
            )
            self._search_cache.set(key, cached, ttl_seconds=self.cache_ttl_seconds)

        return list(cached)

    def invalidate(self, chat_id: str) -> None:
        self._search_cache.delete_prefix(self._cache_prefix(chat_id))

    def get_cache_stats(self) -> dict:
        return self._search_cache.get_stats()

    async def close(self) -> None:
        self._search_cache.clear()
        await self.store.close()
        self.initialized = False
