"""Durable conversation state: metadata, segments and key facts."""

import hashlib
import json
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, select, update

from contextengine.core.interfaces import (
    Conversation,
    ConversationSegment,
    FactType,
    KeyFact,
    Message,
    MessageMetadata,
    SegmentTier,
)
from contextengine.memory.importance_scorer import ImportanceScorer
from contextengine.memory.query_analyzer import extract_entities, extract_topics
from contextengine.memory.token_estimator import estimate_tokens
from contextengine.storage.database import Database
from contextengine.storage.models import (
    ConversationRow,
    KeyFactRow,
    MessageMetadataRow,
    SegmentRow,
    utc_now,
)
from contextengine.utils.validation import ValidationError, content_to_text, validate_chat_id

logger = logging.getLogger(__name__)


def _to_conversation(row: ConversationRow) -> Conversation:
    return Conversation(
        chat_id=row.chat_id,
        user_id=row.user_id,
        title=row.title,
        total_messages=row.total_messages,
        total_tokens=row.total_tokens,
        last_activity=row.last_activity,
        created_at=row.created_at,
    )


def _to_metadata(row: MessageMetadataRow) -> MessageMetadata:
    return MessageMetadata(
        message_id=row.message_id,
        chat_id=row.chat_id,
        position=row.position,
        role=row.role,
        content=row.content,
        importance_score=row.importance_score,
        token_count=row.token_count,
        user_marked=row.user_marked,
        semantic_hash=row.semantic_hash,
        entities=json.loads(row.entities) if row.entities else [],
        topics=json.loads(row.topics) if row.topics else [],
        times_referenced=row.times_referenced,
        last_referenced_at=row.last_referenced_at,
        created_at=row.created_at,
    )


def _to_segment(row: SegmentRow) -> ConversationSegment:
    return ConversationSegment(
        id=row.id,
        chat_id=row.chat_id,
        start_message_id=row.start_message_id,
        end_message_id=row.end_message_id,
        tier=SegmentTier(row.segment_type),
        summary=row.summary,
        importance_score=row.importance_score,
        token_count=row.token_count,
        message_count=row.message_count,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_fact(row: KeyFactRow) -> KeyFact:
    return KeyFact(
        id=row.id,
        chat_id=row.chat_id,
        fact_text=row.fact_text,
        fact_type=FactType(row.fact_type),
        importance_score=row.importance_score,
        source_message_id=row.source_message_id,
        extracted_at=row.extracted_at,
        expires_at=row.expires_at,
    )


class ConversationStore:
    """
    Persistence for everything the selector and assembler read.

    Message ids come from the chat layer and are unique across conversations;
    positions are assigned here as a 1-based sequence per conversation.
    """

    def __init__(self, database: Database, scorer: Optional[ImportanceScorer] = None):
        self.db = database
        self.scorer = scorer or ImportanceScorer()

    async def initialize(self) -> None:
        await self.db.init_db()

    # Conversations

    async def create_conversation(
        self,
        chat_id: str,
        user_id: Optional[str] = None,
        title: Optional[str] = None
    ) -> Conversation:
        """Create a conversation, or update user/title of an existing one."""
        if not validate_chat_id(chat_id):
            raise ValidationError(f"Invalid chat id: {chat_id!r}")
        async with self.db.transaction() as session:
            row = await session.get(ConversationRow, chat_id)
            if row is None:
                row = ConversationRow(
                    chat_id=chat_id,
                    user_id=user_id,
                    title=title,
                    total_messages=0,
                    total_tokens=0,
                    last_activity=utc_now(),
                    created_at=utc_now(),
                )
                session.add(row)
                logger.info(f"Created conversation {chat_id}")
            else:
                if user_id is not None:
                    row.user_id = user_id
                if title is not None:
                    row.title = title
            await session.flush()
            return _to_conversation(row)

    async def get_conversation(self, chat_id: str) -> Optional[Conversation]:
        async with self.db.session() as session:
            row = await session.get(ConversationRow, chat_id)
            return _to_conversation(row) if row else None

    # Messages

    async def add_message(
        self,
        chat_id: str,
        message_id: int,
        message: Message,
        importance: Optional[float] = None
    ) -> Optional[MessageMetadata]:
        """
        Record metadata for a chat-layer message.

        Returns:
            The stored metadata, or None when the message was skipped
            (no content, or an id that is already recorded).
        """
        if not validate_chat_id(chat_id):
            raise ValidationError(f"Invalid chat id: {chat_id!r}")

        text = content_to_text(message.content)
        if not text.strip():
            logger.warning(f"Skipping empty message {message_id} in conversation {chat_id}")
            return None

        if importance is None:
            importance = self.scorer.score_message(message)
        importance = max(0.0, min(1.0, importance))
        token_count = estimate_tokens(text)

        async with self.db.transaction() as session:
            existing = await session.get(MessageMetadataRow, message_id)
            if existing is not None:
                if existing.chat_id != chat_id:
                    logger.warning(
                        f"Skipping message {message_id} for {chat_id}: "
                        f"id already belongs to {existing.chat_id}"
                    )
                else:
                    logger.warning(f"Skipping duplicate message {message_id} in {chat_id}")
                return None

            conversation = await session.get(ConversationRow, chat_id)
            if conversation is None:
                conversation = ConversationRow(
                    chat_id=chat_id,
                    total_messages=0,
                    total_tokens=0,
                    created_at=utc_now(),
                )
                session.add(conversation)

            now = utc_now()
            conversation.total_messages = (conversation.total_messages or 0) + 1
            conversation.total_tokens = (conversation.total_tokens or 0) + token_count
            conversation.last_activity = now

            row = MessageMetadataRow(
                message_id=message_id,
                chat_id=chat_id,
                position=conversation.total_messages,
                role=message.role,
                content=text,
                importance_score=importance,
                token_count=token_count,
                user_marked=False,
                semantic_hash=hashlib.sha256(text.encode("utf-8")).hexdigest()[:16],
                entities=json.dumps(extract_entities(text)),
                topics=json.dumps(extract_topics(text)),
                times_referenced=0,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            await session.flush()

            logger.debug(
                f"Stored message {message_id} in {chat_id} "
                f"(position={row.position}, tokens={token_count}, importance={importance:.2f})"
            )
            return _to_metadata(row)

    async def get_message_metadata(self, message_id: int) -> Optional[MessageMetadata]:
        async with self.db.session() as session:
            row = await session.get(MessageMetadataRow, message_id)
            return _to_metadata(row) if row else None

    async def get_recent_messages(self, chat_id: str, limit: int) -> List[MessageMetadata]:
        """Newest `limit` messages, returned oldest first."""
        if limit <= 0:
            return []
        async with self.db.session() as session:
            result = await session.execute(
                select(MessageMetadataRow)
                .where(MessageMetadataRow.chat_id == chat_id)
                .order_by(MessageMetadataRow.position.desc())
                .limit(limit)
            )
            rows = list(result.scalars())
        rows.reverse()
        return [_to_metadata(r) for r in rows]

    async def get_messages_by_ids(
        self,
        message_ids: Iterable[int],
        chat_id: Optional[str] = None
    ) -> List[MessageMetadata]:
        """Messages with the given ids, by position; restricted to chat_id when given."""
        ids = list(message_ids)
        if not ids:
            return []
        query = select(MessageMetadataRow).where(MessageMetadataRow.message_id.in_(ids))
        if chat_id is not None:
            query = query.where(MessageMetadataRow.chat_id == chat_id)
        async with self.db.session() as session:
            result = await session.execute(query.order_by(MessageMetadataRow.position))
            return [_to_metadata(r) for r in result.scalars()]

    async def get_messages_in_range(
        self,
        chat_id: str,
        start_position: int,
        end_position: int
    ) -> List[MessageMetadata]:
        async with self.db.session() as session:
            result = await session.execute(
                select(MessageMetadataRow)
                .where(
                    MessageMetadataRow.chat_id == chat_id,
                    MessageMetadataRow.position >= start_position,
                    MessageMetadataRow.position <= end_position,
                )
                .order_by(MessageMetadataRow.position)
            )
            return [_to_metadata(r) for r in result.scalars()]

    async def get_important_messages(
        self,
        chat_id: str,
        threshold: float,
        limit: int,
        exclude_ids: Iterable[int] = ()
    ) -> List[MessageMetadata]:
        """Messages scoring strictly above threshold, highest importance first."""
        if limit <= 0:
            return []
        excluded = list(exclude_ids)
        query = (
            select(MessageMetadataRow)
            .where(
                MessageMetadataRow.chat_id == chat_id,
                MessageMetadataRow.importance_score > threshold,
            )
            .order_by(
                MessageMetadataRow.importance_score.desc(),
                MessageMetadataRow.position.desc(),
            )
            .limit(limit)
        )
        if excluded:
            query = query.where(MessageMetadataRow.message_id.notin_(excluded))
        async with self.db.session() as session:
            result = await session.execute(query)
            return [_to_metadata(r) for r in result.scalars()]

    async def mark_message_important(
        self,
        message_id: int,
        important: bool = True
    ) -> Optional[MessageMetadata]:
        async with self.db.transaction() as session:
            row = await session.get(MessageMetadataRow, message_id)
            if row is None:
                logger.warning(f"Cannot mark unknown message {message_id}")
                return None
            row.importance_score = self.scorer.apply_marking(row.importance_score, important)
            row.user_marked = important
            row.updated_at = utc_now()
            await session.flush()
            logger.info(
                f"Message {message_id} marked {'important' if important else 'unimportant'} "
                f"(importance={row.importance_score:.2f})"
            )
            return _to_metadata(row)

    async def record_selection(self, message_ids: Iterable[int]) -> None:
        """Count that these messages were chosen as relevant history."""
        ids = list(message_ids)
        if not ids:
            return
        async with self.db.transaction() as session:
            await session.execute(
                update(MessageMetadataRow)
                .where(MessageMetadataRow.message_id.in_(ids))
                .values(
                    times_referenced=MessageMetadataRow.times_referenced + 1,
                    last_referenced_at=utc_now(),
                )
            )

    # Segments

    async def get_segments(self, chat_id: str) -> List[ConversationSegment]:
        """Segments in creation order."""
        async with self.db.session() as session:
            result = await session.execute(
                select(SegmentRow)
                .where(SegmentRow.chat_id == chat_id)
                .order_by(SegmentRow.id)
            )
            return [_to_segment(r) for r in result.scalars()]

    async def append_segment_if_due(
        self,
        chat_id: str,
        threshold: int
    ) -> Optional[ConversationSegment]:
        """
        Append a segment covering every unsegmented message once at least
        `threshold` of them have accumulated.

        The count and the insert share one transaction, so concurrent callers
        cannot create overlapping segments.
        """
        async with self.db.transaction() as session:
            conversation = await session.get(ConversationRow, chat_id)
            if conversation is None:
                return None

            segmented, segment_count = (await session.execute(
                select(
                    func.coalesce(func.sum(SegmentRow.message_count), 0),
                    func.count(SegmentRow.id),
                ).where(SegmentRow.chat_id == chat_id)
            )).one()

            unsegmented = conversation.total_messages - segmented
            if unsegmented < threshold:
                return None

            result = await session.execute(
                select(MessageMetadataRow)
                .where(
                    MessageMetadataRow.chat_id == chat_id,
                    MessageMetadataRow.position > segmented,
                    MessageMetadataRow.position <= conversation.total_messages,
                )
                .order_by(MessageMetadataRow.position)
            )
            members = list(result.scalars())
            if not members:
                return None

            now = utc_now()
            row = SegmentRow(
                chat_id=chat_id,
                start_message_id=members[0].message_id,
                end_message_id=members[-1].message_id,
                segment_type=SegmentTier.for_segment_number(segment_count + 1).value,
                importance_score=sum(m.importance_score for m in members) / len(members),
                token_count=sum(m.token_count for m in members),
                message_count=len(members),
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            await session.flush()

            logger.info(
                f"Created {row.segment_type} segment {row.id} for {chat_id} "
                f"({len(members)} messages, {row.token_count} tokens)"
            )
            return _to_segment(row)

    async def get_segment_messages(self, segment: ConversationSegment) -> List[MessageMetadata]:
        """Member messages of a segment, by position."""
        bounds = await self.get_messages_by_ids(
            [segment.start_message_id, segment.end_message_id], chat_id=segment.chat_id
        )
        if not bounds:
            return []
        return await self.get_messages_in_range(
            segment.chat_id, bounds[0].position, bounds[-1].position
        )

    async def update_segment_summary(self, segment_id: int, summary: str) -> None:
        async with self.db.transaction() as session:
            row = await session.get(SegmentRow, segment_id)
            if row is None:
                logger.warning(f"Cannot summarize unknown segment {segment_id}")
                return
            row.summary = summary
            row.updated_at = utc_now()

    # Key facts

    async def add_key_fact(
        self,
        chat_id: str,
        fact_text: str,
        fact_type: FactType = FactType.FACT,
        importance: float = 1.0,
        source_message_id: Optional[int] = None,
        expires_at: Optional[datetime] = None
    ) -> KeyFact:
        if not fact_text or not fact_text.strip():
            raise ValidationError("Key fact text must not be empty")

        async with self.db.transaction() as session:
            row = KeyFactRow(
                chat_id=chat_id,
                fact_text=fact_text,
                fact_type=FactType(fact_type).value,
                importance_score=max(0.0, min(1.0, importance)),
                source_message_id=source_message_id,
                extracted_at=utc_now(),
                expires_at=expires_at,
            )
            session.add(row)
            await session.flush()
            logger.debug(f"Added {row.fact_type} fact {row.id} to {chat_id}")
            return _to_fact(row)

    async def get_key_facts(self, chat_id: str, include_expired: bool = False) -> List[KeyFact]:
        """Key facts by descending importance; expired ones are left out by default."""
        query = (
            select(KeyFactRow)
            .where(KeyFactRow.chat_id == chat_id)
            .order_by(KeyFactRow.importance_score.desc(), KeyFactRow.id)
        )
        if not include_expired:
            query = query.where(
                (KeyFactRow.expires_at.is_(None)) | (KeyFactRow.expires_at > utc_now())
            )
        async with self.db.session() as session:
            result = await session.execute(query)
            return [_to_fact(r) for r in result.scalars()]

    async def has_key_fact(self, chat_id: str, fact_text: str) -> bool:
        async with self.db.session() as session:
            result = await session.execute(
                select(func.count(KeyFactRow.id)).where(
                    KeyFactRow.chat_id == chat_id,
                    KeyFactRow.fact_text == fact_text,
                )
            )
            return result.scalar_one() > 0

    # Stats

    async def get_conversation_stats(self, chat_id: str) -> Optional[dict]:
        conversation = await self.get_conversation(chat_id)
        if conversation is None:
            return None

        async with self.db.session() as session:
            segment_count = (await session.execute(
                select(func.count(SegmentRow.id)).where(SegmentRow.chat_id == chat_id)
            )).scalar_one()
            fact_count = (await session.execute(
                select(func.count(KeyFactRow.id)).where(KeyFactRow.chat_id == chat_id)
            )).scalar_one()
            marked_count = (await session.execute(
                select(func.count(MessageMetadataRow.message_id)).where(
                    MessageMetadataRow.chat_id == chat_id,
                    MessageMetadataRow.user_marked.is_(True),
                )
            )).scalar_one()

        return {
            "chat_id": chat_id,
            "total_messages": conversation.total_messages,
            "total_tokens": conversation.total_tokens,
            "segment_count": segment_count,
            "key_fact_count": fact_count,
            "marked_messages": marked_count,
            "last_activity": conversation.last_activity.isoformat() if conversation.last_activity else None,
        }

    async def close(self) -> None:
        await self.db.close()
