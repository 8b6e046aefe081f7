"""Vector storage, embedding generation and similarity search."""

import logging

from contextengine.core.config import VectorProvider, VectorStoreConfig
from contextengine.core.interfaces import IEmbedder, IVectorStore
from contextengine.vector.embeddings import EmbeddingError, HashEmbedder, SentenceTransformerEmbedder
from contextengine.vector.in_memory_store import InMemoryVectorStore
from contextengine.vector.manager import VectorStoreManager

logger = logging.getLogger(__name__)


def create_embedder(config: VectorStoreConfig) -> IEmbedder:
    """Hash embeddings for the in-memory provider, sentence-transformers otherwise."""
    if VectorProvider(config.provider) == VectorProvider.MEMORY:
        return HashEmbedder(config.dimension)
    return SentenceTransformerEmbedder(config.embedding_model, config.dimension)


def create_vector_store(config: VectorStoreConfig, embedder: IEmbedder) -> IVectorStore:
    """Build the backend selected by config.provider."""
    provider = VectorProvider(config.provider)

    if provider == VectorProvider.MEMORY:
        return InMemoryVectorStore(embedder)

    if provider == VectorProvider.EMBEDDED:
        from contextengine.vector.chroma_store import EmbeddedChromaStore
        return EmbeddedChromaStore(embedder, config.persist_directory, config.collection_name)

    if provider == VectorProvider.REMOTE:
        from contextengine.vector.chroma_store import RemoteChromaStore
        return RemoteChromaStore(
            embedder,
            host=config.host,
            port=config.port,
            api_key=config.api_key,
            collection_name=config.collection_name,
        )

    raise ValueError(f"Unknown vector provider: {provider}")


__all__ = [
    'EmbeddingError',
    'HashEmbedder',
    'InMemoryVectorStore',
    'SentenceTransformerEmbedder',
    'VectorStoreManager',
    'create_embedder',
    'create_vector_store',
]
