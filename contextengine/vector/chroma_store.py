"""ChromaDB-backed vector stores."""

import asyncio
import logging
import time
from abc import abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import chromadb
from chromadb.config import Settings
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from contextengine.core.interfaces import IEmbedder, IVectorStore, VectorKind, VectorSearchResult
from contextengine.vector.embeddings import EmbeddingError, make_vector_id

logger = logging.getLogger(__name__)


class VectorStoreError(Exception):
    """The vector backend failed or is unreachable."""
    pass


class ChromaVectorStore(IVectorStore):
    """
    Shared collection logic for the embedded and remote clients.

    Embeddings are computed by the injected embedder and handed to chromadb
    directly, so the collection never loads a model of its own. The
    collection uses the cosine HNSW space; similarity is 1 - distance.
    """

    def __init__(self, embedder: IEmbedder, collection_name: str = "context_engine"):
        self.embedder = embedder
        self.collection_name = collection_name
        self.client = None
        self.collection = None

    @abstractmethod
    def _create_client(self):
        """Build the chromadb client; runs in a worker thread."""
        pass

    async def initialize(self) -> None:
        try:
            self.client = await asyncio.to_thread(self._create_client)
            self.collection = await asyncio.to_thread(
                self.client.get_or_create_collection,
                name=self.collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        except Exception as e:
            raise VectorStoreError(f"Failed to open collection {self.collection_name}: {e}") from e
        logger.info(f"Vector store initialized: {type(self).__name__} ({self.collection_name})")

    def _require_collection(self):
        if self.collection is None:
            raise VectorStoreError("Vector store used before initialize()")
        return self.collection

    async def add_embedding(
        self,
        text: str,
        source_id: int,
        kind: VectorKind = VectorKind.MESSAGE,
        chat_id: Optional[str] = None
    ) -> str:
        collection = self._require_collection()
        kind = VectorKind(kind)
        embedding = await self.embedder.embed(text)
        vector_id = make_vector_id(kind.value, source_id)

        # chromadb rejects None metadata values
        metadata = {
            "source_id": source_id,
            "kind": kind.value,
            "timestamp": time.time(),
        }
        if chat_id is not None:
            metadata["chat_id"] = chat_id

        try:
            await asyncio.to_thread(
                collection.add,
                ids=[vector_id],
                embeddings=[embedding],
                documents=[text],
                metadatas=[metadata],
            )
        except Exception as e:
            raise VectorStoreError(f"Failed to store embedding for {kind.value} {source_id}: {e}") from e
        return vector_id

    async def search_similar(
        self,
        query: str,
        limit: int = 5,
        min_similarity: float = 0.7,
        chat_id: Optional[str] = None,
        kind: Optional[VectorKind] = None
    ) -> List[VectorSearchResult]:
        collection = self._require_collection()
        if limit <= 0:
            return []

        query_embedding = await self.embedder.embed(query)

        try:
            available = await asyncio.to_thread(collection.count)
            if available == 0:
                return []
            kwargs = {
                "query_embeddings": [query_embedding],
                "n_results": min(limit, available),
                "include": ["documents", "metadatas", "distances"],
            }
            where = _where_clause(chat_id, kind)
            if where is not None:
                kwargs["where"] = where
            results = await asyncio.to_thread(collection.query, **kwargs)
        except Exception as e:
            raise VectorStoreError(f"Vector search failed: {e}") from e

        if not results["ids"] or not results["ids"][0]:
            return []

        matches = []
        for vector_id, doc, metadata, distance in zip(
            results["ids"][0],
            results["documents"][0],
            results["metadatas"][0],
            results["distances"][0]
        ):
            similarity = 1 - distance  # Convert distance to similarity
            if similarity < min_similarity:
                continue
            metadata = dict(metadata or {})
            matches.append(VectorSearchResult(
                vector_id=vector_id,
                source_id=int(metadata.get("source_id", 0)),
                similarity=float(similarity),
                text=doc or "",
                kind=VectorKind(metadata.get("kind", VectorKind.MESSAGE.value)),
                chat_id=metadata.get("chat_id"),
                metadata=metadata,
            ))

        matches.sort(key=lambda r: r.similarity, reverse=True)
        return matches

    async def delete_embedding(self, vector_id: str) -> None:
        collection = self._require_collection()
        try:
            await asyncio.to_thread(collection.delete, ids=[vector_id])
        except Exception as e:
            raise VectorStoreError(f"Failed to delete {vector_id}: {e}") from e

    async def get_embedding(self, vector_id: str) -> Optional[Dict[str, Any]]:
        collection = self._require_collection()
        try:
            result = await asyncio.to_thread(
                collection.get,
                ids=[vector_id],
                include=["embeddings", "documents", "metadatas"],
            )
        except Exception as e:
            raise VectorStoreError(f"Failed to fetch {vector_id}: {e}") from e

        if not result["ids"]:
            return None
        embeddings = result.get("embeddings")
        return {
            "vector_id": result["ids"][0],
            "embedding": list(embeddings[0]) if embeddings is not None and len(embeddings) else None,
            "text": result["documents"][0] if result.get("documents") else None,
            "metadata": dict(result["metadatas"][0] or {}) if result.get("metadatas") else {},
        }

    async def count(self) -> int:
        return await asyncio.to_thread(self._require_collection().count)

    async def close(self) -> None:
        # chromadb clients hold no async resources; drop the references
        self.collection = None
        self.client = None


def _where_clause(chat_id: Optional[str], kind: Optional[VectorKind]) -> Optional[Dict[str, Any]]:
    conditions = []
    if chat_id is not None:
        conditions.append({"chat_id": chat_id})
    if kind is not None:
        conditions.append({"kind": VectorKind(kind).value})
    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}


class EmbeddedChromaStore(ChromaVectorStore):
    """chromadb.PersistentClient writing to a local directory."""

    def __init__(
        self,
        embedder: IEmbedder,
        persist_directory: str = "data/vector_db",
        collection_name: str = "context_engine"
    ):
        super().__init__(embedder, collection_name)
        self.persist_directory = Path(persist_directory)

    def _create_client(self):
        self.persist_directory.mkdir(parents=True, exist_ok=True)
        return chromadb.PersistentClient(
            path=str(self.persist_directory),
            settings=Settings(anonymized_telemetry=False)
        )


class RemoteChromaStore(ChromaVectorStore):
    """chromadb.HttpClient talking to a chroma server."""

    def __init__(
        self,
        embedder: IEmbedder,
        host: str = "localhost",
        port: int = 8000,
        api_key: Optional[str] = None,
        collection_name: str = "context_engine"
    ):
        super().__init__(embedder, collection_name)
        self.host = host
        self.port = port
        self.api_key = api_key

    def _create_client(self):
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        client = chromadb.HttpClient(
            host=self.host,
            port=self.port,
            headers=headers,
            settings=Settings(anonymized_telemetry=False)
        )
        self._heartbeat(client)
        return client

    @retry(
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True
    )
    def _heartbeat(self, client) -> None:
        client.heartbeat()
        logger.debug(f"Chroma server {self.host}:{self.port} is reachable")


