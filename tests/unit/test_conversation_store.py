"""Unit tests for the conversation store and segmentation."""

from datetime import timedelta

import pytest

from contextengine.core.interfaces import FactType, Message, SegmentTier
from contextengine.memory.segmentation import SegmentationEngine
from contextengine.storage.models import utc_now
from contextengine.utils.validation import ValidationError
from contextengine.vector.embeddings import HashEmbedder
from contextengine.vector.in_memory_store import InMemoryVectorStore
from contextengine.vector.manager import VectorStoreManager


def _message(i: int) -> Message:
    role = "user" if i % 2 else "assistant"
    return Message(role=role, content=f"Message number {i} about the project roadmap")


@pytest.mark.asyncio
class TestConversationStore:
    """Test message bookkeeping."""

    async def test_create_conversation_is_idempotent(self, store):
        first = await store.create_conversation("c1", user_id="u1", title="Plans")
        await store.add_message("c1", 1, _message(1))
        again = await store.create_conversation("c1", title="Renamed")

        assert first.total_messages == 0
        assert again.total_messages == 1
        assert again.user_id == "u1"
        assert again.title == "Renamed"

    async def test_rejects_blank_identifiers(self, store):
        with pytest.raises(ValidationError):
            await store.create_conversation("  ")
        with pytest.raises(ValidationError):
            await store.add_message("", 1, _message(1))
        with pytest.raises(ValidationError):
            await store.add_key_fact("c1", "   ")

    async def test_add_message_updates_totals(self, store):
        meta = await store.add_message("c1", 1, Message(role="user", content="Where do we meet?"))

        assert meta.position == 1
        assert meta.token_count == 5
        assert meta.importance_score == pytest.approx(0.7)
        conversation = await store.get_conversation("c1")
        assert conversation.total_messages == 1
        assert conversation.total_tokens == 5

    async def test_empty_message_is_skipped(self, store):
        assert await store.add_message("c1", 1, Message(role="user", content="   ")) is None
        assert await store.get_conversation("c1") is None

    async def test_duplicate_message_id_is_skipped(self, store):
        original = await store.add_message("c1", 1, Message(role="user", content="first"))
        duplicate = await store.add_message("c1", 1, Message(role="user", content="second"))

        assert duplicate is None
        kept = await store.get_message_metadata(1)
        assert kept.content == "first"
        assert kept.position == original.position
        assert (await store.get_conversation("c1")).total_messages == 1

    async def test_message_id_owned_by_another_chat_is_skipped(self, store):
        await store.add_message("c1", 1, Message(role="user", content="first"))

        assert await store.add_message("c2", 1, Message(role="user", content="other")) is None
        assert await store.get_conversation("c2") is None
        assert (await store.get_message_metadata(1)).chat_id == "c1"

    async def test_get_messages_by_ids_scoped_to_chat(self, store):
        await store.add_message("c1", 1, Message(role="user", content="first"))
        await store.add_message("c2", 2, Message(role="user", content="second"))

        assert sorted(m.message_id for m in await store.get_messages_by_ids([1, 2])) == [1, 2]
        scoped = await store.get_messages_by_ids([1, 2], chat_id="c2")
        assert [m.message_id for m in scoped] == [2]

    async def test_explicit_importance(self, store):
        meta = await store.add_message("c1", 1, Message(role="user", content="hi"), importance=0.2)
        assert meta.importance_score == pytest.approx(0.2)

    async def test_entities_and_topics_are_recorded(self, store):
        meta = await store.add_message(
            "c1", 1, Message(role="user", content="Book the flight for Maria Lopez to NYC")
        )
        assert "Maria Lopez" in meta.entities
        assert "NYC" in meta.entities
        assert meta.topics == ["travel"]

    async def test_recent_messages_are_ascending(self, store):
        for i in range(1, 8):
            await store.add_message("c1", 100 + i, _message(i))

        recent = await store.get_recent_messages("c1", 3)

        assert [m.message_id for m in recent] == [105, 106, 107]
        assert [m.position for m in recent] == [5, 6, 7]

    async def test_important_messages(self, store):
        await store.add_message("c1", 1, Message(role="user", content="a"), importance=0.9)
        await store.add_message("c1", 2, Message(role="user", content="b"), importance=0.2)
        await store.add_message("c1", 3, Message(role="user", content="c"), importance=0.6)
        await store.add_message("c1", 4, Message(role="user", content="d"), importance=0.95)

        important = await store.get_important_messages("c1", threshold=0.3, limit=5, exclude_ids=[4])

        assert [m.message_id for m in important] == [1, 3]

    async def test_mark_message_important(self, store):
        await store.add_message("c1", 1, Message(role="assistant", content="ok"))

        marked = await store.mark_message_important(1, True)
        assert marked.importance_score >= 0.8
        assert marked.user_marked

        unmarked = await store.mark_message_important(1, False)
        assert unmarked.importance_score < marked.importance_score
        assert not unmarked.user_marked

        assert await store.mark_message_important(999, True) is None

    async def test_record_selection(self, store):
        await store.add_message("c1", 1, Message(role="user", content="x"))
        await store.record_selection([1])
        await store.record_selection([1])

        meta = await store.get_message_metadata(1)
        assert meta.times_referenced == 2
        assert meta.last_referenced_at is not None


@pytest.mark.asyncio
class TestKeyFacts:
    """Test key fact storage."""

    async def test_ordering_and_expiry(self, store):
        await store.add_key_fact("c1", "low", importance=0.2)
        await store.add_key_fact("c1", "high", fact_type=FactType.DECISION, importance=0.9)
        await store.add_key_fact("c1", "gone", importance=1.0, expires_at=utc_now() - timedelta(hours=1))
        await store.add_key_fact("c1", "later", importance=0.5, expires_at=utc_now() + timedelta(days=1))

        facts = await store.get_key_facts("c1")
        assert [f.fact_text for f in facts] == ["high", "later", "low"]
        assert facts[0].fact_type == FactType.DECISION

        everything = await store.get_key_facts("c1", include_expired=True)
        assert len(everything) == 4

    async def test_has_key_fact(self, store):
        await store.add_key_fact("c1", "likes tea")
        assert await store.has_key_fact("c1", "likes tea")
        assert not await store.has_key_fact("c2", "likes tea")


@pytest.mark.asyncio
class TestSegmentation:
    """Test hierarchical segmentation."""

    async def test_twenty_five_messages(self, store):
        segmentation = SegmentationEngine(store, threshold=20)

        for i in range(1, 26):
            await store.add_message("c1", 1000 + i, _message(i))
            segment = await segmentation.check_and_segment("c1")
            if i == 20:
                assert segment is not None
            else:
                assert segment is None

        segments = await store.get_segments("c1")
        assert len(segments) == 1
        segment = segments[0]
        assert segment.tier == SegmentTier.MEDIUM
        assert segment.start_message_id == 1001
        assert segment.end_message_id == 1020
        assert segment.message_count == 20
        assert segment.summary.startswith("Conversation with 10 user messages and 10 responses")

        conversation = await store.get_conversation("c1")
        assert conversation.total_messages - sum(s.message_count for s in segments) == 5

    async def test_tiers_age_monotonically(self, store):
        segmentation = SegmentationEngine(store, threshold=3)

        for i in range(1, 16):
            await store.add_message("c1", i, _message(i))
            await segmentation.check_and_segment("c1")

        segments = await store.get_segments("c1")
        tiers = [s.tier for s in segments]
        assert len(segments) == 5
        assert tiers[:3] == [SegmentTier.MEDIUM, SegmentTier.LONG, SegmentTier.ANCIENT]
        ranks = [t.rank for t in tiers]
        assert ranks == sorted(ranks)

    async def test_segment_metrics(self, store):
        segmentation = SegmentationEngine(store, threshold=2)
        await store.add_message("c1", 1, Message(role="user", content="x" * 8), importance=0.4)
        await store.add_message("c1", 2, Message(role="assistant", content="y" * 4), importance=0.8)

        segment = await segmentation.check_and_segment("c1")

        assert segment.importance_score == pytest.approx(0.6)
        assert segment.token_count == 3

    async def test_summary_is_embedded(self, store):
        vectors = VectorStoreManager(InMemoryVectorStore(HashEmbedder(64)))
        await vectors.initialize()
        segmentation = SegmentationEngine(store, vectors=vectors, threshold=2)

        await store.add_message("c1", 1, _message(1))
        await store.add_message("c1", 2, _message(2))
        segment = await segmentation.check_and_segment("c1")

        results = await vectors.find_relevant("c1", segment.summary, min_similarity=0.9)
        assert [(r.kind.value, r.source_id) for r in results] == [("summary", segment.id)]

    async def test_conversation_stats(self, store):
        await store.add_message("c1", 1, _message(1))
        await store.add_key_fact("c1", "fact")
        await store.mark_message_important(1, True)

        stats = await store.get_conversation_stats("c1")

        assert stats["total_messages"] == 1
        assert stats["segment_count"] == 0
        assert stats["key_fact_count"] == 1
        assert stats["marked_messages"] == 1
        assert await store.get_conversation_stats("missing") is None
