"""Process-local vector store using numpy cosine similarity."""

import logging
import time
from typing import Any, Dict, List, Optional

import numpy as np

from contextengine.core.interfaces import IEmbedder, IVectorStore, VectorKind, VectorSearchResult
from contextengine.vector.embeddings import make_vector_id

logger = logging.getLogger(__name__)


class InMemoryVectorStore(IVectorStore):
    """Keeps every vector in a dict; search is a brute-force scan."""

    def __init__(self, embedder: IEmbedder):
        self.embedder = embedder
        self._records: Dict[str, Dict[str, Any]] = {}

    async def initialize(self) -> None:
        logger.info(f"In-memory vector store ready (dimension={self.embedder.dimension})")

    async def add_embedding(
        self,
        text: str,
        source_id: int,
        kind: VectorKind = VectorKind.MESSAGE,
        chat_id: Optional[str] = None
    ) -> str:
        embedding = np.asarray(await self.embedder.embed(text), dtype=np.float64)
        vector_id = make_vector_id(VectorKind(kind).value, source_id)
        self._records[vector_id] = {
            "embedding": embedding,
            "text": text,
            "metadata": {
                "chat_id": chat_id,
                "source_id": source_id,
                "kind": VectorKind(kind).value,
                "timestamp": time.time(),
            },
        }
        return vector_id

    async def search_similar(
        self,
        query: str,
        limit: int = 5,
        min_similarity: float = 0.7,
        chat_id: Optional[str] = None,
        kind: Optional[VectorKind] = None
    ) -> List[VectorSearchResult]:
        if limit <= 0 or not self._records:
            return []

        query_vector = np.asarray(await self.embedder.embed(query), dtype=np.float64)
        query_norm = np.linalg.norm(query_vector)
        if query_norm == 0:
            return []

        results = []
        for vector_id, record in self._records.items():
            metadata = record["metadata"]
            if chat_id is not None and metadata["chat_id"] != chat_id:
                continue
            if kind is not None and metadata["kind"] != VectorKind(kind).value:
                continue
            embedding = record["embedding"]
            norm = np.linalg.norm(embedding)
            if norm == 0:
                continue
            similarity = float(np.dot(query_vector, embedding) / (query_norm * norm))
            if similarity < min_similarity:
                continue
            results.append(VectorSearchResult(
                vector_id=vector_id,
                source_id=metadata["source_id"],
                similarity=similarity,
                text=record["text"],
                kind=VectorKind(metadata["kind"]),
                chat_id=metadata["chat_id"],
                metadata=dict(metadata),
            ))

        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:limit]

    async def delete_embedding(self, vector_id: str) -> None:
        self._records.pop(vector_id, None)

    async def get_embedding(self, vector_id: str) -> Optional[Dict[str, Any]]:
        record = self._records.get(vector_id)
        if record is None:
            return None
        return {
            "vector_id": vector_id,
            "embedding": record["embedding"].tolist(),
            "text": record["text"],
            "metadata": dict(record["metadata"]),
        }

    def count(self) -> int:
        return len(self._records)

    async def close(self) -> None:
        self._records.clear()
