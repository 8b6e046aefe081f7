"""Top-level coordinator: cache check, primary selection, fallback, cache write."""

import asyncio
import hashlib
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from contextengine.cache import MultiTierCache, create_cache
from contextengine.core.config import SystemConfig, load_config, validate_config
from contextengine.core.interfaces import (
    Conversation,
    ContextWindow,
    FactType,
    KeyFact,
    Message,
    MessageMetadata,
)
from contextengine.memory.segmentation import SegmentationEngine
from contextengine.selection.legacy_assembler import LegacyAssembler
from contextengine.selection.relevance_selector import RelevanceSelector
from contextengine.storage.analytics import ContextAnalytics
from contextengine.storage.conversation_store import ConversationStore
from contextengine.storage.database import Database
from contextengine.utils.validation import ConfigurationError
from contextengine.vector import VectorStoreManager, create_embedder, create_vector_store

logger = logging.getLogger(__name__)


class ContextTimeoutError(Exception):
    """Context assembly did not finish within the caller's timeout."""
    pass


def context_cache_prefix(chat_id: str) -> str:
    return f"context:{chat_id}:"


def context_cache_key(chat_id: str, query: Optional[str] = None) -> str:
    if not query:
        return f"{context_cache_prefix(chat_id)}noquery"
    digest = hashlib.sha256(query.encode("utf-8")).hexdigest()[:12]
    return f"{context_cache_prefix(chat_id)}{digest}"


class ContextEngine:
    """
    Decides which slice of a conversation goes to the model for a query.

    Context reads never raise for backend trouble: the relevance selector
    falls back to the legacy assembler, and if the store itself is down an
    empty legacy window comes back. Only a caller timeout surfaces, as
    ContextTimeoutError.
    """

    def __init__(
        self,
        config: SystemConfig,
        store: ConversationStore,
        cache: MultiTierCache,
        vectors: Optional[VectorStoreManager] = None,
        selector: Optional[RelevanceSelector] = None,
        legacy: Optional[LegacyAssembler] = None,
        segmentation: Optional[SegmentationEngine] = None,
        analytics: Optional[ContextAnalytics] = None
    ):
        errors = validate_config(config)
        if errors:
            raise ConfigurationError(errors)

        self.config = config
        self.store = store
        self.cache = cache
        self.vectors = vectors
        self.selector = selector
        if self.selector is None and vectors is not None:
            self.selector = RelevanceSelector(store, vectors, config.engine, config.relevance)
        self.legacy = legacy or LegacyAssembler(store, config.engine)
        self.segmentation = segmentation or SegmentationEngine(
            store, vectors=vectors, threshold=config.engine.summarization_threshold
        )
        self.analytics = analytics

        self._vectors_ready = False
        self._initialized = False
        self._background: Set[asyncio.Task] = set()

        logger.info("Context engine created")

    async def initialize(self) -> None:
        await self.store.initialize()

        if self.vectors is not None:
            try:
                await self.vectors.initialize()
                self._vectors_ready = True
            except Exception as e:
                logger.warning(f"Vector store unavailable, relevance selection disabled: {e}")

        await self.cache.start()
        self._initialized = True
        logger.info(
            f"Context engine initialized (relevance selector "
            f"{'on' if self._selector_enabled() else 'off'})"
        )

    def _selector_enabled(self) -> bool:
        return (
            self.config.engine.use_relevance_selector
            and self.selector is not None
            and self._vectors_ready
        )

    # Conversation writes

    async def create_conversation(
        self,
        chat_id: str,
        user_id: Optional[str] = None,
        title: Optional[str] = None
    ) -> Conversation:
        return await self.store.create_conversation(chat_id, user_id=user_id, title=title)

    async def add_message(
        self,
        chat_id: str,
        message_id: int,
        message: Message,
        importance: Optional[float] = None
    ) -> Optional[MessageMetadata]:
        """Record a message, then segment, embed and invalidate cached windows."""
        meta = await self.store.add_message(chat_id, message_id, message, importance=importance)
        if meta is None:
            return None

        try:
            await self.segmentation.check_and_segment(chat_id)
        except Exception as e:
            logger.warning(f"Segmentation check failed for {chat_id}: {e}")

        if self._vectors_ready:
            try:
                await self.vectors.add_message(chat_id, meta.message_id, meta.content)
            except Exception as e:
                logger.warning(f"Could not embed message {meta.message_id}: {e}")

        await self.invalidate_conversation(chat_id)
        return meta

    async def mark_message_important(
        self,
        message_id: int,
        important: bool = True
    ) -> Optional[MessageMetadata]:
        meta = await self.store.mark_message_important(message_id, important)
        if meta is not None:
            await self.invalidate_conversation(meta.chat_id)
        return meta

    async def add_key_fact(
        self,
        chat_id: str,
        fact_text: str,
        fact_type: FactType = FactType.FACT,
        importance: float = 1.0,
        source_message_id: Optional[int] = None,
        expires_at: Optional[datetime] = None
    ) -> KeyFact:
        fact = await self.store.add_key_fact(
            chat_id,
            fact_text,
            fact_type=fact_type,
            importance=importance,
            source_message_id=source_message_id,
            expires_at=expires_at,
        )
        await self.invalidate_conversation(chat_id)
        return fact

    async def get_key_facts(self, chat_id: str) -> List[KeyFact]:
        return await self.store.get_key_facts(chat_id)

    async def invalidate_conversation(self, chat_id: str) -> int:
        return await self.cache.invalidate_prefix(context_cache_prefix(chat_id))

    # Context reads

    async def get_optimized_context(
        self,
        chat_id: str,
        query: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> ContextWindow:
        """
        Context window for the next model call.

        Args:
            chat_id: Conversation to read
            query: Text the window should be relevant to, if any
            timeout: Seconds to allow for assembly (defaults to the engine setting)

        Raises:
            ContextTimeoutError: Assembly ran past the timeout; nothing was cached
        """
        start = time.perf_counter()
        key = context_cache_key(chat_id, query)

        cached = await self.cache.get(key)
        if isinstance(cached, ContextWindow):
            logger.debug(f"Context cache hit for {key}")
            self._record(chat_id, cached, start, cache_hit=True)
            return cached

        if timeout is None:
            timeout = self.config.engine.request_timeout_seconds

        try:
            if timeout is not None:
                window, cacheable = await asyncio.wait_for(self._assemble(chat_id, query), timeout)
            else:
                window, cacheable = await self._assemble(chat_id, query)
        except asyncio.TimeoutError as e:
            logger.warning(f"Context assembly for {chat_id} timed out after {timeout}s")
            raise ContextTimeoutError(
                f"Context assembly for {chat_id} exceeded {timeout}s"
            ) from e

        if cacheable:
            await self.cache.set(
                key,
                window,
                ttl_seconds=self.config.engine.cache_expiration_minutes * 60,
                chat_id=chat_id,
            )

        self._record(chat_id, window, start, cache_hit=False)
        return window

    async def _assemble(self, chat_id: str, query: Optional[str]) -> Tuple[ContextWindow, bool]:
        if self._selector_enabled():
            result = await self.selector.try_build_window(
                chat_id, query, self.config.engine.max_recent_messages
            )
            if result.ok:
                return result.window, True
            logger.info(f"Falling back to legacy assembly for {chat_id}: {result.error}")

        try:
            window = await self.legacy.build_window(chat_id, self.config.engine.max_recent_messages)
        except Exception as e:
            logger.error(f"Legacy assembly failed for {chat_id}: {e}", exc_info=True)
            return ContextWindow.empty(), False
        return window, True

    def _record(self, chat_id: str, window: ContextWindow, start: float, cache_hit: bool) -> None:
        if self.analytics is None:
            return
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        task = asyncio.create_task(self.analytics.record_operation(
            chat_id,
            "context_build",
            output_tokens=window.total_tokens,
            compression_ratio=window.compression_ratio,
            processing_time_ms=elapsed_ms,
            cache_hit=cache_hit,
            strategy=window.strategy,
        ))
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Analytics write failed: {error}")

    # Stats

    async def get_conversation_stats(self, chat_id: str) -> Optional[Dict[str, Any]]:
        stats = await self.store.get_conversation_stats(chat_id)
        if stats is None:
            return None
        if self.analytics is not None:
            try:
                metrics = await self.analytics.get_conversation_metrics(chat_id)
                stats["average_compression_ratio"] = metrics["average_compression_ratio"]
                stats["context_builds"] = metrics["operations"]
            except Exception as e:
                logger.warning(f"Could not read analytics for {chat_id}: {e}")
        return stats

    def get_cache_stats(self) -> Dict[str, Any]:
        stats = {"context": self.cache.get_stats()}
        if self.vectors is not None:
            stats["vector_search"] = self.vectors.get_cache_stats()
        return stats

    async def get_system_metrics(self) -> Dict[str, Any]:
        if self.analytics is None:
            return {}
        return await self.analytics.get_system_metrics()

    async def cleanup_analytics(self) -> int:
        if self.analytics is None:
            return 0
        return await self.analytics.cleanup_old_data()

    async def wait_for_background(self) -> None:
        """Wait for pending analytics writes."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        await self.wait_for_background()
        await self.cache.close()
        if self.vectors is not None:
            try:
                await self.vectors.close()
            except Exception as e:
                logger.warning(f"Error closing vector store: {e}")
        await self.store.close()
        self._initialized = False
        logger.info("Context engine closed")


async def build_context_engine(config: Optional[SystemConfig] = None) -> ContextEngine:
    """Wire the default backends for config and initialize them."""
    if config is None:
        config = load_config()

    errors = validate_config(config)
    if errors:
        raise ConfigurationError(errors)

    database = Database(config.database.url, echo=config.database.echo)
    store = ConversationStore(database)
    cache = create_cache(config.cache, database)

    embedder = create_embedder(config.vector_store)
    vectors = VectorStoreManager(
        create_vector_store(config.vector_store, embedder),
        cache_ttl_minutes=config.vector_store.search_cache_ttl_minutes,
        cache_size=config.vector_store.search_cache_size,
    )

    analytics = None
    if config.analytics.enabled:
        analytics = ContextAnalytics(database, retention_days=config.analytics.retention_days)

    engine = ContextEngine(config, store, cache, vectors=vectors, analytics=analytics)
    await engine.initialize()
    return engine
