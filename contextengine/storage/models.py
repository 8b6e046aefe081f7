"""ORM models for the context engine's durable state."""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utc_now() -> datetime:
    """Naive UTC timestamp; SQLite drops tzinfo anyway."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ConversationRow(Base):
    __tablename__ = "conversations"

    chat_id = Column(String, primary_key=True)
    user_id = Column(String, nullable=True)
    title = Column(String, nullable=True)
    total_messages = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    last_activity = Column(DateTime, default=utc_now)
    created_at = Column(DateTime, default=utc_now)


class MessageMetadataRow(Base):
    __tablename__ = "message_metadata"

    message_id = Column(Integer, primary_key=True, autoincrement=False)
    chat_id = Column(String, nullable=False, index=True)
    position = Column(Integer, nullable=False)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    importance_score = Column(Float, nullable=False, default=0.0)
    token_count = Column(Integer, nullable=False, default=0)
    user_marked = Column(Boolean, nullable=False, default=False)
    semantic_hash = Column(String, nullable=True)
    entities = Column(Text, nullable=True)  # JSON list
    topics = Column(Text, nullable=True)    # JSON list
    times_referenced = Column(Integer, nullable=False, default=0)
    last_referenced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("idx_metadata_chat_position", "chat_id", "position"),
        Index("idx_metadata_importance", "chat_id", "importance_score"),
    )


class SegmentRow(Base):
    __tablename__ = "conversation_segments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(String, nullable=False, index=True)
    start_message_id = Column(Integer, nullable=False)
    end_message_id = Column(Integer, nullable=False)
    segment_type = Column(String, nullable=False)
    summary = Column(Text, nullable=True)
    importance_score = Column(Float, nullable=False, default=0.0)
    token_count = Column(Integer, nullable=False, default=0)
    message_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)


class KeyFactRow(Base):
    __tablename__ = "key_facts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(String, nullable=False, index=True)
    fact_text = Column(Text, nullable=False)
    fact_type = Column(String, nullable=False, default="fact")
    importance_score = Column(Float, nullable=False, default=1.0)
    source_message_id = Column(Integer, nullable=True)
    extracted_at = Column(DateTime, default=utc_now)
    expires_at = Column(DateTime, nullable=True)  # NULL for permanent facts


class ContextCacheRow(Base):
    """Durable mirror of the fast cache tier."""
    __tablename__ = "context_cache"

    cache_key = Column(String, primary_key=True)
    chat_id = Column(String, nullable=True, index=True)
    context_data = Column(Text, nullable=False)
    token_count = Column(Integer, nullable=False, default=0)
    expires_at = Column(Float, nullable=False, index=True)  # epoch seconds
    hit_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now)


class AnalyticsRow(Base):
    __tablename__ = "context_analytics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(String, nullable=False, index=True)
    operation_type = Column(String, nullable=False)
    output_tokens = Column(Integer, nullable=False, default=0)
    compression_ratio = Column(Float, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    cache_hit = Column(Boolean, nullable=False, default=False)
    strategy = Column(String, nullable=True)
    created_at = Column(DateTime, default=utc_now, index=True)
