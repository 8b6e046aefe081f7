"""Primary context assembly: relevance-ranked history within a token budget."""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from contextengine.core.config import EngineConfig, RelevanceConfig
from contextengine.core.interfaces import (
    ContextWindow,
    ConversationSegment,
    MessageMetadata,
    VectorKind,
)
from contextengine.memory.fact_extractor import extract_fact
from contextengine.memory.query_analyzer import (
    QueryAnalysis,
    analyze_query,
    entity_overlap,
    topic_similarity,
)
from contextengine.selection.budget import fit_to_budget, newest_tier_first
from contextengine.storage.models import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ScoredMessage:
    meta: MessageMetadata
    similarity: float
    evidence: float
    prior: float
    relevance: float


@dataclass
class SelectionResult:
    """Outcome of the primary path: a full window or the reason there is none."""
    ok: bool
    window: Optional[ContextWindow] = None
    error: Optional[BaseException] = None
    scored: List[ScoredMessage] = field(default_factory=list)


class RelevanceSelector:
    """
    Heuristic relevance ranker.

    Each candidate from the vector search gets a weighted evidence score
    (semantic, temporal, entity, topic, interaction, continuity) and a
    weighted prior (importance, role, length, position, user marking).
    The final relevance blends the two with `prior_weight`.
    """

    def __init__(
        self,
        store,
        vectors,
        engine_config: Optional[EngineConfig] = None,
        config: Optional[RelevanceConfig] = None,
        clock=utc_now
    ):
        self.store = store
        self.vectors = vectors
        self.engine_config = engine_config or EngineConfig()
        self.config = config or RelevanceConfig()
        self._clock = clock

    async def try_build_window(
        self,
        chat_id: str,
        query: Optional[str] = None,
        recent_count: Optional[int] = None
    ) -> SelectionResult:
        try:
            window, scored = await self._build(chat_id, query, recent_count)
        except Exception as e:
            logger.warning(f"Relevance selection failed for {chat_id}: {e}")
            return SelectionResult(ok=False, error=e)
        return SelectionResult(ok=True, window=window, scored=scored)

    async def build_window(
        self,
        chat_id: str,
        query: Optional[str] = None,
        recent_count: Optional[int] = None
    ) -> ContextWindow:
        window, _ = await self._build(chat_id, query, recent_count)
        return window

    async def _build(
        self,
        chat_id: str,
        query: Optional[str],
        recent_count: Optional[int]
    ) -> Tuple[ContextWindow, List[ScoredMessage]]:
        if recent_count is None:
            recent_count = self.engine_config.max_recent_messages

        recent = await self.store.get_recent_messages(chat_id, recent_count)
        recent_ids = {m.message_id for m in recent}

        scored: List[ScoredMessage] = []
        if query and query.strip():
            analysis = analyze_query(query)
            newest_position = recent[-1].position if recent else 0
            scored = await self._rank_history(chat_id, analysis, recent_ids, newest_position)

        # Best similarity first, which is also the budget admission order
        relevant = sorted(scored, key=lambda s: s.similarity, reverse=True)

        selected_ids = recent_ids | {s.meta.message_id for s in relevant}
        segments = await self._uncovered_segments(chat_id, selected_ids)
        facts = await self.store.get_key_facts(chat_id)

        content = fit_to_budget(
            self.engine_config.max_context_tokens,
            recent=[m.to_message() for m in recent],
            relevant=[
                s.meta.to_message(similarity=round(s.similarity, 4), relevance=round(s.relevance, 4))
                for s in relevant
            ],
            summaries=newest_tier_first(segments),
            facts=facts,
        )

        conversation = await self.store.get_conversation(chat_id)
        conversation_tokens = conversation.total_tokens if conversation else 0
        ratio = content.total_tokens / conversation_tokens if conversation_tokens else 1.0

        window = ContextWindow(
            recent_messages=content.recent_messages,
            relevant_history=content.relevant_history,
            summaries=content.summaries,
            key_facts=content.key_facts,
            total_tokens=content.total_tokens,
            compression_ratio=ratio,
            strategy="relevance",
        )

        admitted = {m.metadata["message_id"] for m in content.relevant_history}
        selected = [s for s in relevant if s.meta.message_id in admitted]
        await self._after_selection(chat_id, selected)

        logger.debug(
            f"Relevance window for {chat_id}: {len(window.recent_messages)} recent, "
            f"{len(window.relevant_history)} relevant, {len(window.summaries)} summaries, "
            f"{len(window.key_facts)} facts, {window.total_tokens} tokens"
        )
        return window, selected

    async def _rank_history(
        self,
        chat_id: str,
        analysis: QueryAnalysis,
        exclude_ids: set,
        newest_position: int
    ) -> List[ScoredMessage]:
        cfg = self.config
        results = await self.vectors.find_relevant(
            chat_id,
            analysis.query,
            limit=cfg.max_history_size,
            min_similarity=cfg.min_similarity,
            kind=VectorKind.MESSAGE,
        )

        similarities: Dict[int, float] = {}
        for result in results:
            if result.source_id in exclude_ids:
                continue
            # A message embedded twice keeps its best match
            similarities[result.source_id] = max(similarities.get(result.source_id, 0.0), result.similarity)

        if not similarities:
            return []

        candidates = await self.store.get_messages_by_ids(similarities.keys(), chat_id=chat_id)
        now = self._clock()

        scored = []
        for meta in candidates:
            similarity = similarities[meta.message_id]
            evidence = self._evidence(meta, similarity, analysis, now, newest_position)
            prior = self._prior(meta, newest_position)
            relevance = (1 - cfg.prior_weight) * evidence + cfg.prior_weight * prior
            if relevance >= cfg.min_relevance:
                scored.append(ScoredMessage(meta, similarity, evidence, prior, relevance))

        scored.sort(key=lambda s: (s.relevance, s.similarity), reverse=True)
        return scored[:cfg.top_k]

    def _evidence(
        self,
        meta: MessageMetadata,
        similarity: float,
        analysis: QueryAnalysis,
        now: datetime,
        newest_position: int
    ) -> float:
        components = {
            "semantic": max(0.0, min(1.0, similarity)),
            "temporal": self._temporal_relevance(meta.created_at, now),
            "entity": entity_overlap(analysis.entities, meta.entities),
            "topic": topic_similarity(analysis.topics, meta.topics),
            "interaction": self._interaction_score(meta),
            "continuity": self._continuity(meta, analysis, newest_position),
        }
        return _weighted(components, self.config.evidence_weights)

    def _prior(self, meta: MessageMetadata, newest_position: int) -> float:
        components = {
            "base_importance": meta.importance_score,
            "message_type": 0.6 if meta.role == "user" else 0.4,
            "length": min(1.0, meta.token_count / 100),
            "position": _position_prior(meta.position, newest_position),
            "user_marked": 0.9 if meta.user_marked else 0.5,
        }
        return _weighted(components, self.config.prior_weights)

    def _temporal_relevance(self, created_at: Optional[datetime], now: datetime) -> float:
        if created_at is None:
            return 0.5
        hours_ago = max(0.0, (now - created_at).total_seconds() / 3600)
        decay = math.exp(-math.log(2) * hours_ago / self.config.half_life_hours)
        return max(self.config.min_temporal_relevance, decay)

    @staticmethod
    def _interaction_score(meta: MessageMetadata) -> float:
        score = 0.5
        if meta.user_marked:
            score += 0.3
        if meta.times_referenced > 0:
            score += min(0.2, meta.times_referenced * 0.05)
        return min(1.0, score)

    @staticmethod
    def _continuity(meta: MessageMetadata, analysis: QueryAnalysis, newest_position: int) -> float:
        # Follow-ups favour the tail of the conversation
        if analysis.intent in ("continuation", "clarification") and newest_position > 0:
            return max(0.0, min(1.0, meta.position / newest_position))
        return 0.5

    async def _uncovered_segments(self, chat_id: str, selected_ids: set) -> List[ConversationSegment]:
        segments = [s for s in await self.store.get_segments(chat_id) if s.summary]
        if not segments:
            return []

        selected = await self.store.get_messages_by_ids(selected_ids, chat_id=chat_id)
        selected_positions = {m.position for m in selected}

        bounds = await self.store.get_messages_by_ids(
            {s.start_message_id for s in segments} | {s.end_message_id for s in segments},
            chat_id=chat_id,
        )
        positions = {m.message_id: m.position for m in bounds}

        uncovered = []
        for segment in segments:
            start = positions.get(segment.start_message_id)
            end = positions.get(segment.end_message_id)
            if start is None or end is None:
                uncovered.append(segment)
                continue
            if not all(p in selected_positions for p in range(start, end + 1)):
                uncovered.append(segment)
        return uncovered

    async def _after_selection(self, chat_id: str, selected: List[ScoredMessage]) -> None:
        """Reference counting and implicit fact promotion; never fails the window."""
        if not selected:
            return
        try:
            await self.store.record_selection([s.meta.message_id for s in selected])
        except Exception as e:
            logger.warning(f"Could not record selection for {chat_id}: {e}")

        for item in selected:
            if item.meta.role != "user" or item.relevance < self.config.fact_promotion_threshold:
                continue
            extracted = extract_fact(item.meta.content)
            if extracted is None:
                continue
            fact_type, text = extracted
            try:
                if await self.store.has_key_fact(chat_id, text):
                    continue
                await self.store.add_key_fact(
                    chat_id,
                    text,
                    fact_type=fact_type,
                    importance=item.relevance,
                    source_message_id=item.meta.message_id,
                )
                logger.info(f"Promoted message {item.meta.message_id} to a {fact_type.value} fact")
            except Exception as e:
                logger.warning(f"Fact promotion failed for message {item.meta.message_id}: {e}")


def _weighted(components: Dict[str, float], weights: Dict[str, float]) -> float:
    total_weight = sum(weights.get(name, 0.0) for name in components)
    if total_weight <= 0:
        return 0.0
    score = sum(weights.get(name, 0.0) * value for name, value in components.items())
    return max(0.0, min(1.0, score / total_weight))


def _position_prior(position: int, newest_position: int) -> float:
    """Opening and latest messages rank higher than the middle of a conversation."""
    if newest_position <= 1:
        return 1.0
    half_span = (newest_position - 1) / 2
    distance = min(position - 1, max(0, newest_position - position))
    return 1.0 - 0.5 * min(1.0, distance / half_span)
