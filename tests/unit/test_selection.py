"""Unit tests for budget trimming, the relevance selector and the legacy assembler."""

from datetime import timedelta

import pytest

from contextengine.core.config import EngineConfig, RelevanceConfig
from contextengine.core.interfaces import (
    ConversationSegment,
    FactType,
    KeyFact,
    Message,
    SegmentTier,
)
from contextengine.selection.budget import fit_to_budget, newest_tier_first, take_prefix, trim_recent
from contextengine.selection.legacy_assembler import LegacyAssembler
from contextengine.selection.relevance_selector import RelevanceSelector
from contextengine.storage.models import utc_now
from contextengine.vector.embeddings import HashEmbedder
from contextengine.vector.in_memory_store import InMemoryVectorStore
from contextengine.vector.manager import VectorStoreManager
from tests.fixtures.mock_services import FailingVectorStore, FixedEmbedder

POSTGRES = "We decided to use Postgres for the billing database."


def _filler(i: int) -> str:
    return f"Message number {i} about the project roadmap"


async def _populate(store, vectors, contents, chat_id="c1"):
    for message_id, content in enumerate(contents, start=1):
        role = "user" if message_id % 2 else "assistant"
        await store.add_message(chat_id, message_id, Message(role=role, content=content))
        if vectors is not None:
            await vectors.add_message(chat_id, message_id, content)


async def _hash_vectors():
    manager = VectorStoreManager(InMemoryVectorStore(HashEmbedder(256)))
    await manager.initialize()
    return manager


def _segment(segment_id, tier, summary="s" * 8):
    return ConversationSegment(
        id=segment_id,
        chat_id="c",
        start_message_id=1,
        end_message_id=2,
        tier=tier,
        summary=summary,
    )


class TestBudget:
    """Test token budget helpers."""

    def test_take_prefix_stops_at_first_misfit(self):
        items = [4, 4, 10, 1]
        taken, used = take_prefix(items, lambda x: x, remaining=12)
        # The trailing 1 would fit but admission stops at 10
        assert taken == [4, 4]
        assert used == 8

    def test_trim_recent_keeps_newest(self):
        messages = [Message(role="user", content="x" * 40) for _ in range(3)]
        kept, total = trim_recent(messages, max_tokens=25)
        assert kept == messages[1:]
        assert total == 20

        huge = [Message(role="user", content="a"), Message(role="user", content="b" * 400)]
        kept, total = trim_recent(huge, max_tokens=10)
        assert kept == huge[1:]
        assert total == 100

    def test_newest_tier_first(self):
        segments = [
            _segment(1, SegmentTier.MEDIUM),
            _segment(2, SegmentTier.LONG),
            _segment(3, SegmentTier.ANCIENT),
            _segment(4, SegmentTier.ANCIENT),
        ]
        assert [s.id for s in newest_tier_first(segments)] == [1, 2, 4, 3]

    def test_fit_to_budget_priority(self):
        recent = [Message(role="user", content="r" * 40)]           # 10 tokens
        relevant = [Message(role="user", content="v" * 40)]         # 10 tokens
        summaries = [_segment(1, SegmentTier.MEDIUM, "s" * 40)]      # 10 tokens
        facts = [KeyFact(id=1, chat_id="c", fact_text="f" * 40)]    # 10 tokens

        content = fit_to_budget(25, recent, relevant, summaries, facts)

        assert content.recent_messages == recent
        assert content.relevant_history == relevant
        assert content.summaries == []
        assert content.key_facts == []
        assert content.total_tokens == 20


@pytest.mark.asyncio
class TestRelevanceSelector:
    """Test the primary assembly path."""

    async def test_recent_and_relevant(self, store):
        vectors = await _hash_vectors()
        contents = [_filler(i) for i in range(1, 11)]
        contents[4] = POSTGRES
        await _populate(store, vectors, contents)

        selector = RelevanceSelector(store, vectors, EngineConfig(max_recent_messages=3))
        window = await selector.build_window("c1", "billing database Postgres")

        assert [m.metadata["message_id"] for m in window.recent_messages] == [8, 9, 10]
        assert [m.content for m in window.relevant_history] == [POSTGRES]
        assert window.relevant_history[0].metadata["similarity"] > 0.3
        assert window.strategy == "relevance"

        conversation = await store.get_conversation("c1")
        assert window.compression_ratio == pytest.approx(window.total_tokens / conversation.total_tokens)

    async def test_candidates_from_another_chat_are_ignored(self, store):
        vectors = await _hash_vectors()
        contents = [_filler(i) for i in range(1, 11)]
        contents[4] = POSTGRES
        await _populate(store, vectors, contents)
        for message_id in range(11, 15):
            await store.add_message("c2", message_id, Message(role="user", content=_filler(message_id)))
        # A vector filed under c2 that points at a c1 message
        await vectors.add_message("c2", 5, POSTGRES)

        selector = RelevanceSelector(store, vectors, EngineConfig(max_recent_messages=2))
        window = await selector.build_window("c2", "billing database Postgres")

        assert window.relevant_history == []
        assert [m.metadata["message_id"] for m in window.recent_messages] == [13, 14]

    async def test_without_query_only_recent(self, store):
        vectors = await _hash_vectors()
        await _populate(store, vectors, [POSTGRES] + [_filler(i) for i in range(2, 8)])

        selector = RelevanceSelector(store, vectors, EngineConfig(max_recent_messages=3))
        window = await selector.build_window("c1")

        assert len(window.recent_messages) == 3
        assert window.relevant_history == []

    async def test_recent_messages_are_not_repeated(self, store):
        vectors = await _hash_vectors()
        await _populate(store, vectors, [_filler(i) for i in range(1, 6)] + [POSTGRES])

        selector = RelevanceSelector(store, vectors, EngineConfig(max_recent_messages=2))
        window = await selector.build_window("c1", POSTGRES)

        recent_ids = {m.metadata["message_id"] for m in window.recent_messages}
        assert 6 in recent_ids
        assert all(m.metadata["message_id"] not in recent_ids for m in window.relevant_history)

    async def test_relevant_ordered_by_similarity(self, store):
        similarities = {"alpha": 0.9, "bravo": 0.75, "charlie": 0.6, "delta": 0.95}
        vectors = VectorStoreManager(InMemoryVectorStore(FixedEmbedder(similarities, queries=["X"])))
        await vectors.initialize()
        await _populate(store, vectors, list(similarities) + ["one", "two", "three"])

        selector = RelevanceSelector(store, vectors, EngineConfig(max_recent_messages=3))
        window = await selector.build_window("c1", "X")

        assert [m.content for m in window.relevant_history] == ["delta", "alpha", "bravo", "charlie"]
        sims = [m.metadata["similarity"] for m in window.relevant_history]
        assert sims == sorted(sims, reverse=True)

    async def test_top_k_limit(self, store):
        similarities = {f"doc{i}": 0.9 for i in range(8)}
        vectors = VectorStoreManager(InMemoryVectorStore(FixedEmbedder(similarities, queries=["X"])))
        await vectors.initialize()
        await _populate(store, vectors, list(similarities) + ["tail"])

        selector = RelevanceSelector(
            store, vectors, EngineConfig(max_recent_messages=1), RelevanceConfig(top_k=3)
        )
        window = await selector.build_window("c1", "X")

        assert len(window.relevant_history) == 3

    async def test_selection_is_recorded(self, store):
        vectors = await _hash_vectors()
        contents = [_filler(i) for i in range(1, 8)]
        contents[1] = POSTGRES
        await _populate(store, vectors, contents)

        selector = RelevanceSelector(store, vectors, EngineConfig(max_recent_messages=2))
        await selector.build_window("c1", "billing database Postgres")

        meta = await store.get_message_metadata(2)
        assert meta.times_referenced == 1

    async def test_fact_promotion_is_deduplicated(self, store):
        vectors = await _hash_vectors()
        contents = [_filler(i) for i in range(1, 8)]
        contents[2] = POSTGRES  # message 3, a user message
        await _populate(store, vectors, contents)

        selector = RelevanceSelector(
            store,
            vectors,
            EngineConfig(max_recent_messages=2),
            RelevanceConfig(fact_promotion_threshold=0.5),
        )
        await selector.build_window("c1", POSTGRES)
        await selector.build_window("c1", POSTGRES)

        facts = await store.get_key_facts("c1")
        assert len(facts) == 1
        assert facts[0].fact_type == FactType.DECISION
        assert facts[0].fact_text == POSTGRES
        assert facts[0].source_message_id == 3

    async def test_uncovered_summaries_and_facts(self, store):
        vectors = await _hash_vectors()
        await _populate(store, vectors, [_filler(i) for i in range(1, 7)])
        segment = await store.append_segment_if_due("c1", threshold=4)
        await store.update_segment_summary(segment.id, "Earlier roadmap discussion")
        await store.add_key_fact("c1", "Launch is in June", importance=0.9)
        await store.add_key_fact("c1", "Old plan", expires_at=utc_now() - timedelta(days=1))

        selector = RelevanceSelector(store, vectors, EngineConfig(max_recent_messages=2))
        window = await selector.build_window("c1")

        assert [s.summary for s in window.summaries] == ["Earlier roadmap discussion"]
        assert [f.fact_text for f in window.key_facts] == ["Launch is in June"]

    async def test_covered_segment_is_left_out(self, store):
        vectors = await _hash_vectors()
        await _populate(store, vectors, [_filler(i) for i in range(1, 5)])
        segment = await store.append_segment_if_due("c1", threshold=4)
        await store.update_segment_summary(segment.id, "Everything so far")

        selector = RelevanceSelector(store, vectors, EngineConfig(max_recent_messages=10))
        window = await selector.build_window("c1")

        assert window.summaries == []

    async def test_budget_keeps_single_oversized_message(self, store):
        vectors = await _hash_vectors()
        await _populate(store, vectors, ["short one", "short two", "z" * 400])

        selector = RelevanceSelector(
            store, vectors, EngineConfig(max_recent_messages=3, max_context_tokens=50)
        )
        window = await selector.build_window("c1")

        assert [m.metadata["message_id"] for m in window.recent_messages] == [3]
        assert window.total_tokens == 100

    async def test_try_build_window_reports_failure(self, store):
        vectors = VectorStoreManager(FailingVectorStore())
        await _populate(store, None, [_filler(1), _filler(2)])

        selector = RelevanceSelector(store, vectors)
        result = await selector.try_build_window("c1", "anything")

        assert not result.ok
        assert result.window is None
        assert result.error is not None


@pytest.mark.asyncio
class TestLegacyAssembler:
    """Test the fallback assembly path."""

    async def test_recent_important_summaries_facts(self, store):
        for i in range(1, 11):
            importance = 0.9 if i in (2, 4) else (0.5 if i == 6 else 0.1)
            await store.add_message("c1", i, Message(role="user", content=_filler(i)), importance=importance)
        segment = await store.append_segment_if_due("c1", threshold=5)
        await store.update_segment_summary(segment.id, "First ten messages")
        await store.add_key_fact("c1", "Keep it short")

        assembler = LegacyAssembler(store, EngineConfig(max_recent_messages=3, vector_search_limit=2))
        window = await assembler.build_window("c1")

        assert [m.metadata["message_id"] for m in window.recent_messages] == [8, 9, 10]
        assert [m.metadata["message_id"] for m in window.relevant_history] == [4, 2]
        assert [s.summary for s in window.summaries] == ["First ten messages"]
        assert [f.fact_text for f in window.key_facts] == ["Keep it short"]
        assert window.compression_ratio == 0.5
        assert window.strategy == "legacy"

    async def test_empty_conversation(self, store):
        window = await LegacyAssembler(store).build_window("nobody")

        assert window.message_count() == 0
        assert window.total_tokens == 0
        assert window.compression_ratio == 0.0

    async def test_budget_applies(self, store):
        for i in range(1, 6):
            await store.add_message("c1", i, Message(role="user", content="w" * 40), importance=0.9)

        assembler = LegacyAssembler(
            store, EngineConfig(max_recent_messages=2, max_context_tokens=35)
        )
        window = await assembler.build_window("c1")

        assert window.total_tokens <= 35
        assert len(window.recent_messages) == 2
        assert len(window.relevant_history) == 1
