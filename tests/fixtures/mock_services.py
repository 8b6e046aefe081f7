"""Mock services for testing."""

import asyncio
import math
import time
from typing import Any, Dict, List, Optional

from contextengine.core.interfaces import (
    CachedPayload,
    ICacheTier,
    IEmbedder,
    IVectorStore,
    VectorKind,
    VectorSearchResult,
)
from contextengine.selection.relevance_selector import SelectionResult
from contextengine.storage.database import StoreUnavailableError
from contextengine.vector.chroma_store import VectorStoreError
from contextengine.vector.embeddings import EmbeddingError


class FixedEmbedder(IEmbedder):
    """
    Two-dimensional embedder with hand-picked vectors.

    Queries listed in `queries` map to [1, 0]; a text registered with
    similarity s maps to [s, sqrt(1 - s^2)], so its cosine similarity to
    any query is exactly s. Unknown text is orthogonal to every query.
    """

    def __init__(self, similarities: Dict[str, float], queries: List[str]):
        self.similarities = dict(similarities)
        self.queries = set(queries)
        self.calls = 0

    @property
    def dimension(self) -> int:
        return 2

    async def embed(self, text: str) -> List[float]:
        self.calls += 1
        if not text:
            raise EmbeddingError("Cannot embed empty text")
        if text in self.queries:
            return [1.0, 0.0]
        s = self.similarities.get(text, 0.0)
        return [s, math.sqrt(max(0.0, 1 - s * s))]


class MockSlowTier(ICacheTier):
    """Dict-backed slow tier with an adjustable clock."""

    name = "mock"

    def __init__(self, clock=None):
        self._clock = clock or time.time
        self.entries: Dict[str, CachedPayload] = {}

    async def get(self, key: str) -> Optional[CachedPayload]:
        cached = self.entries.get(key)
        if cached is None or cached.expires_at <= self._clock():
            return None
        return cached

    async def set(self, key: str, payload: str, ttl_seconds: float, chat_id: Optional[str] = None) -> None:
        self.entries[key] = CachedPayload(payload=payload, expires_at=self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self.entries.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self.entries if k.startswith(prefix)]
        for key in doomed:
            del self.entries[key]
        return len(doomed)

    async def clear(self) -> None:
        self.entries.clear()


class FailingSlowTier(ICacheTier):
    """Slow tier whose backend is down."""

    name = "failing"

    async def get(self, key: str) -> Optional[CachedPayload]:
        raise ConnectionError("slow tier unreachable")

    async def set(self, key: str, payload: str, ttl_seconds: float, chat_id: Optional[str] = None) -> None:
        raise ConnectionError("slow tier unreachable")

    async def delete(self, key: str) -> None:
        raise ConnectionError("slow tier unreachable")

    async def delete_prefix(self, prefix: str) -> int:
        raise ConnectionError("slow tier unreachable")

    async def clear(self) -> None:
        raise ConnectionError("slow tier unreachable")


class FailingVectorStore(IVectorStore):
    """Vector backend that cannot be reached."""

    async def initialize(self) -> None:
        raise VectorStoreError("vector backend unreachable")

    async def add_embedding(
        self,
        text: str,
        source_id: int,
        kind: VectorKind = VectorKind.MESSAGE,
        chat_id: Optional[str] = None
    ) -> str:
        raise VectorStoreError("vector backend unreachable")

    async def search_similar(
        self,
        query: str,
        limit: int = 5,
        min_similarity: float = 0.7,
        chat_id: Optional[str] = None,
        kind: Optional[VectorKind] = None
    ) -> List[VectorSearchResult]:
        raise VectorStoreError("vector backend unreachable")

    async def delete_embedding(self, vector_id: str) -> None:
        raise VectorStoreError("vector backend unreachable")

    async def get_embedding(self, vector_id: str) -> Optional[Dict[str, Any]]:
        raise VectorStoreError("vector backend unreachable")

    async def close(self) -> None:
        pass


class FailingSelector:
    """Relevance selector that fails on every call."""

    def __init__(self):
        self.call_count = 0

    async def try_build_window(self, chat_id, query=None, recent_count=None) -> SelectionResult:
        self.call_count += 1
        return SelectionResult(ok=False, error=RuntimeError("selector forced to fail"))

    async def build_window(self, chat_id, query=None, recent_count=None):
        self.call_count += 1
        raise RuntimeError("selector forced to fail")


class SlowSelector:
    """Relevance selector that never finishes within a short timeout."""

    def __init__(self, delay: float = 5.0):
        self.delay = delay

    async def try_build_window(self, chat_id, query=None, recent_count=None) -> SelectionResult:
        await asyncio.sleep(self.delay)
        return SelectionResult(ok=False, error=RuntimeError("too slow"))


class UnavailableStore:
    """Conversation store whose database is down for reads."""

    async def initialize(self) -> None:
        pass

    async def get_recent_messages(self, chat_id, limit):
        raise StoreUnavailableError("database is down")

    async def get_important_messages(self, chat_id, threshold, limit, exclude_ids=()):
        raise StoreUnavailableError("database is down")

    async def get_segments(self, chat_id):
        raise StoreUnavailableError("database is down")

    async def get_key_facts(self, chat_id, include_expired=False):
        raise StoreUnavailableError("database is down")

    async def close(self) -> None:
        pass
