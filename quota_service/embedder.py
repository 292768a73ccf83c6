"""
Embedding with sentence-transformers.

The pipelines see embedding as an opaque async call, `embed(texts)`, that
returns one vector per input text in the same order. Whatever comes back is
checked by `validate_embeddings` before it goes anywhere near the vector
store, since a short or malformed response would otherwise be paired with
the wrong chunks.

The model is loaded once as a singleton and encoding runs in a worker
thread so it does not block the event loop.
"""

import asyncio
import logging
import time
from numbers import Real
from typing import Any, Protocol

from sentence_transformers import SentenceTransformer

from .config import settings

logger = logging.getLogger(__name__)

# Singleton model instance, loaded on first use and reused across requests.
_model: SentenceTransformer | None = None


class EmbeddingResponseError(ValueError):
    """The embedding service returned something other than one vector per text."""


class EmbeddingService(Protocol):
    async def embed(self, texts: list[str]) -> Any: ...


def get_model(model_name: str | None = None) -> SentenceTransformer:
    """Load embedding model lazily as a singleton."""
    global _model
    if _model is None:
        name = model_name or settings.embedding_model
        logger.info(f"Loading embedding model: {name}")
        start = time.time()
        _model = SentenceTransformer(name)
        elapsed = time.time() - start
        logger.info(f"Model loaded in {elapsed:.1f}s")
    return _model


class SentenceTransformerEmbedder:
    """EmbeddingService backed by a local sentence-transformers model."""

    def __init__(self, model_name: str | None = None, batch_size: int | None = None) -> None:
        self.model_name = model_name or settings.embedding_model
        self.batch_size = batch_size or settings.embedding_batch_size

    def _encode(self, texts: list[str]) -> list[list[float]]:
        model = get_model(self.model_name)
        start = time.time()
        # normalize_embeddings=True makes cosine similarity = dot product
        embeddings = model.encode(
            texts,
            batch_size=self.batch_size,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        elapsed = time.time() - start
        logger.info(f"Embedded {len(texts)} texts in {elapsed:.2f}s")
        return embeddings.tolist()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, texts)


def validate_embeddings(response: Any, expected: int) -> list[list[float]]:
    """
    Check an embedding response and return it as plain lists of floats.

    Raises EmbeddingResponseError if the response is not a list, is missing
    vectors, or contains anything that is not a non-empty numeric vector.
    """
    if response is None or not isinstance(response, (list, tuple)):
        raise EmbeddingResponseError("Invalid embedding response")
    if len(response) != expected:
        raise EmbeddingResponseError(
            f"Invalid embedding response: expected {expected} vectors, "
            f"got {len(response)}"
        )

    vectors: list[list[float]] = []
    for i, vector in enumerate(response):
        if not isinstance(vector, (list, tuple)) or not vector:
            raise EmbeddingResponseError(f"Invalid embedding at position {i}")
        if not all(isinstance(v, Real) and not isinstance(v, bool) for v in vector):
            raise EmbeddingResponseError(f"Non-numeric embedding at position {i}")
        vectors.append([float(v) for v in vector])
    return vectors
