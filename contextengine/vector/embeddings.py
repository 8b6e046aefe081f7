"""Embedding generators."""

import asyncio
import hashlib
import logging
import re
import uuid
from typing import List, Optional

import numpy as np

from contextengine.core.interfaces import IEmbedder

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\w+", re.UNICODE)


class EmbeddingError(Exception):
    """Text could not be embedded."""
    pass


class SentenceTransformerEmbedder(IEmbedder):
    """sentence-transformers model, loaded on first use and run off the event loop."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", dimension: int = 384):
        self.model_name = model_name
        self._dimension = dimension
        self._model = None

    @property
    def dimension(self) -> int:
        return self._dimension

    def _load(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
            reported = self._model.get_sentence_embedding_dimension()
            if reported:
                self._dimension = reported
            logger.info(f"Loaded embedding model {self.model_name} (dimension={self._dimension})")
        return self._model

    def _encode(self, text: str) -> List[float]:
        model = self._load()
        return model.encode(text, normalize_embeddings=True).tolist()

    async def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        try:
            return await asyncio.to_thread(self._encode, text)
        except Exception as e:
            raise EmbeddingError(f"Embedding with {self.model_name} failed: {e}") from e


class HashEmbedder(IEmbedder):
    """
    Deterministic bag-of-words embedder.

    Each lower-cased word token is hashed with MD5 to a bucket and a sign;
    the resulting vector is L2-normalised. Texts sharing vocabulary end up
    close in cosine space, which is enough for tests and offline use.
    """

    def __init__(self, dimension: int = 384):
        if dimension < 1:
            raise ValueError("dimension must be at least 1")
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed_sync(self, text: str) -> List[float]:
        tokens = _TOKEN.findall(text.lower()) if text else []
        if not tokens:
            raise EmbeddingError("Cannot embed text without word tokens")

        vector = np.zeros(self._dimension, dtype=np.float64)
        for token in tokens:
            digest = hashlib.md5(token.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "little") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[index] += sign

        norm = np.linalg.norm(vector)
        if norm == 0:
            raise EmbeddingError("Embedding collapsed to the zero vector")
        return (vector / norm).tolist()

    async def embed(self, text: str) -> List[float]:
        return self.embed_sync(text)


def cosine_similarity(a, b) -> float:
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 0.0
    return float(np.dot(a, b) / denom)


def make_vector_id(kind: str, source_id: int, suffix: Optional[str] = None) -> str:
    return f"{kind}_{source_id}_{suffix or uuid.uuid4().hex[:12]}"
