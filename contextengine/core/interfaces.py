"""Interface definitions and data models shared across the engine."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


CONTEXT_WINDOW_SCHEMA_VERSION = 1


class SegmentTier(str, Enum):
    """Age bucket of a conversation segment (ordered youngest to oldest)."""
    RECENT = "recent"
    MEDIUM = "medium"
    LONG = "long"
    ANCIENT = "ancient"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    @classmethod
    def for_segment_number(cls, number: int) -> "SegmentTier":
        """Tier for the n-th stored segment (1-based).

        The unsegmented tail of a conversation is the implicit recent tier,
        so stored segments start at medium.
        """
        if number <= 1:
            return cls.MEDIUM
        if number == 2:
            return cls.LONG
        return cls.ANCIENT


_TIER_ORDER = [SegmentTier.RECENT, SegmentTier.MEDIUM, SegmentTier.LONG, SegmentTier.ANCIENT]


class FactType(str, Enum):
    DECISION = "decision"
    PREFERENCE = "preference"
    FACT = "fact"
    GOAL = "goal"


class VectorKind(str, Enum):
    MESSAGE = "message"
    SUMMARY = "summary"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Message:
    """Standard message format."""
    role: str  # 'user', 'assistant', 'system'
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content, "metadata": dict(self.metadata)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            role=data["role"],
            content=data["content"],
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Conversation:
    chat_id: str
    user_id: Optional[str] = None
    title: Optional[str] = None
    total_messages: int = 0
    total_tokens: int = 0
    last_activity: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class MessageMetadata:
    """Per-message bookkeeping, 1:1 with a chat-layer message."""
    message_id: int
    chat_id: str
    position: int
    role: str
    content: str
    importance_score: float
    token_count: int
    user_marked: bool = False
    semantic_hash: Optional[str] = None
    entities: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    times_referenced: int = 0
    last_referenced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def to_message(self, **extra: Any) -> Message:
        metadata = {"message_id": self.message_id, "position": self.position}
        metadata.update(extra)
        return Message(role=self.role, content=self.content, metadata=metadata)


@dataclass
class ConversationSegment:
    id: int
    chat_id: str
    start_message_id: int
    end_message_id: int
    tier: SegmentTier
    summary: Optional[str] = None
    importance_score: float = 0.0
    token_count: int = 0
    message_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "start_message_id": self.start_message_id,
            "end_message_id": self.end_message_id,
            "tier": self.tier.value,
            "summary": self.summary,
            "importance_score": self.importance_score,
            "token_count": self.token_count,
            "message_count": self.message_count,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationSegment":
        return cls(
            id=data["id"],
            chat_id=data["chat_id"],
            start_message_id=data["start_message_id"],
            end_message_id=data["end_message_id"],
            tier=SegmentTier(data["tier"]),
            summary=data.get("summary"),
            importance_score=data.get("importance_score", 0.0),
            token_count=data.get("token_count", 0),
            message_count=data.get("message_count", 0),
            created_at=_parse(data.get("created_at")),
            updated_at=_parse(data.get("updated_at")),
        )


@dataclass
class KeyFact:
    id: int
    chat_id: str
    fact_text: str
    fact_type: FactType = FactType.FACT
    importance_score: float = 1.0
    source_message_id: Optional[int] = None
    extracted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "fact_text": self.fact_text,
            "fact_type": self.fact_type.value,
            "importance_score": self.importance_score,
            "source_message_id": self.source_message_id,
            "extracted_at": _iso(self.extracted_at),
            "expires_at": _iso(self.expires_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyFact":
        return cls(
            id=data["id"],
            chat_id=data["chat_id"],
            fact_text=data["fact_text"],
            fact_type=FactType(data.get("fact_type", FactType.FACT.value)),
            importance_score=data.get("importance_score", 1.0),
            source_message_id=data.get("source_message_id"),
            extracted_at=_parse(data.get("extracted_at")),
            expires_at=_parse(data.get("expires_at")),
        )


@dataclass
class VectorSearchResult:
    vector_id: str
    source_id: int
    similarity: float
    text: str
    kind: VectorKind = VectorKind.MESSAGE
    chat_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vector_id": self.vector_id,
            "source_id": self.source_id,
            "similarity": self.similarity,
            "text": self.text,
            "kind": self.kind.value,
            "chat_id": self.chat_id,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VectorSearchResult":
        return cls(
            vector_id=data["vector_id"],
            source_id=data["source_id"],
            similarity=data["similarity"],
            text=data["text"],
            kind=VectorKind(data.get("kind", VectorKind.MESSAGE.value)),
            chat_id=data.get("chat_id"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class ContextWindow:
    """Bounded slice of a conversation handed to the model for one query."""
    recent_messages: List[Message] = field(default_factory=list)
    relevant_history: List[Message] = field(default_factory=list)
    summaries: List[ConversationSegment] = field(default_factory=list)
    key_facts: List[KeyFact] = field(default_factory=list)
    total_tokens: int = 0
    compression_ratio: float = 0.0
    strategy: str = "relevance"

    def to_dict(self) -> Dict[str, Any]:
        # Field order is part of the cached format; bump the schema version when it changes.
        return {
            "schema_version": CONTEXT_WINDOW_SCHEMA_VERSION,
            "recent_messages": [m.to_dict() for m in self.recent_messages],
            "relevant_history": [m.to_dict() for m in self.relevant_history],
            "summaries": [s.to_dict() for s in self.summaries],
            "key_facts": [f.to_dict() for f in self.key_facts],
            "total_tokens": self.total_tokens,
            "compression_ratio": self.compression_ratio,
            "strategy": self.strategy,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextWindow":
        version = data.get("schema_version")
        if version != CONTEXT_WINDOW_SCHEMA_VERSION:
            raise ValueError(
                f"Unsupported context window schema version {version!r} "
                f"(expected {CONTEXT_WINDOW_SCHEMA_VERSION})"
            )
        return cls(
            recent_messages=[Message.from_dict(m) for m in data["recent_messages"]],
            relevant_history=[Message.from_dict(m) for m in data["relevant_history"]],
            summaries=[ConversationSegment.from_dict(s) for s in data["summaries"]],
            key_facts=[KeyFact.from_dict(f) for f in data["key_facts"]],
            total_tokens=data["total_tokens"],
            compression_ratio=data["compression_ratio"],
            strategy=data.get("strategy", "relevance"),
        )

    @classmethod
    def empty(cls, strategy: str = "legacy") -> "ContextWindow":
        return cls(strategy=strategy)

    def message_count(self) -> int:
        return len(self.recent_messages) + len(self.relevant_history)


@dataclass
class CachedPayload:
    """Serialized value as returned by a slow cache tier."""
    payload: str
    expires_at: float  # epoch seconds


class ICacheTier(ABC):
    """Persistent (slow) cache tier."""

    name: str = "tier"

    @abstractmethod
    async def get(self, key: str) -> Optional[CachedPayload]:
        """Fetch a live payload, or None."""
        pass

    @abstractmethod
    async def set(
        self,
        key: str,
        payload: str,
        ttl_seconds: float,
        chat_id: Optional[str] = None
    ) -> None:
        """Store a payload with an absolute expiry of now + ttl."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix; returns the count removed."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    async def close(self) -> None:
        pass


class IEmbedder(ABC):
    """Embedding generation capability."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        pass

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Return a normalized embedding; raises EmbeddingError on failure."""
        pass


class IVectorStore(ABC):
    """Vector storage and similarity search."""

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def add_embedding(
        self,
        text: str,
        source_id: int,
        kind: VectorKind = VectorKind.MESSAGE,
        chat_id: Optional[str] = None
    ) -> str:
        """Embed and store text; returns the vector id."""
        pass

    @abstractmethod
    async def search_similar(
        self,
        query: str,
        limit: int = 5,
        min_similarity: float = 0.7,
        chat_id: Optional[str] = None,
        kind: Optional[VectorKind] = None
    ) -> List[VectorSearchResult]:
        """Results sorted by descending cosine similarity, none below min_similarity.

        chat_id and kind restrict the search before limit is applied.
        """
        pass

    @abstractmethod
    async def delete_embedding(self, vector_id: str) -> None:
        pass

    @abstractmethod
    async def get_embedding(self, vector_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass
