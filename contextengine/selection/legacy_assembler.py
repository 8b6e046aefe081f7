"""Fallback context assembly from recency and stored importance only."""

import logging
from typing import Optional

from contextengine.core.config import EngineConfig
from contextengine.core.interfaces import ContextWindow
from contextengine.selection.budget import fit_to_budget, newest_tier_first

logger = logging.getLogger(__name__)


class LegacyAssembler:
    """
    Deterministic window builder used when relevance selection is disabled
    or fails. It touches only the conversation store.
    """

    def __init__(self, store, config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or EngineConfig()

    async def build_window(self, chat_id: str, recent_count: Optional[int] = None) -> ContextWindow:
        cfg = self.config
        if recent_count is None:
            recent_count = cfg.max_recent_messages

        recent = await self.store.get_recent_messages(chat_id, recent_count)
        important = await self.store.get_important_messages(
            chat_id,
            threshold=cfg.importance_threshold,
            limit=cfg.vector_search_limit,
            exclude_ids=[m.message_id for m in recent],
        )
        segments = [s for s in await self.store.get_segments(chat_id) if s.summary]
        facts = await self.store.get_key_facts(chat_id)

        content = fit_to_budget(
            cfg.max_context_tokens,
            recent=[m.to_message() for m in recent],
            relevant=[m.to_message(importance=m.importance_score) for m in important],
            summaries=newest_tier_first(segments),
            facts=facts,
        )

        total = content.total_tokens
        # Placeholder metric; the legacy path has no notion of what it compressed
        ratio = total / (total * 2) if total else 0.0

        logger.debug(f"Legacy window for {chat_id}: {total} tokens")
        return ContextWindow(
            recent_messages=content.recent_messages,
            relevant_history=content.relevant_history,
            summaries=content.summaries,
            key_facts=content.key_facts,
            total_tokens=total,
            compression_ratio=ratio,
            strategy="legacy",
        )
