"""
Query-time retrieval: embed the question, find the nearest chunks, and
assemble them into a context string for answer synthesis.

`top_k` is always clamped to the capacity ceiling; the index can never
hold more vectors than that, so larger requests are meaningless.
"""

import logging
from dataclasses import dataclass, field

from .embedder import validate_embeddings
from .services import Services

logger = logging.getLogger(__name__)

# Metadata keys projected into query results, in output order.
RESULT_FIELDS = ("documentId", "documentName", "pageNumber", "timestamp")


@dataclass
class QueryResult:
    id: str
    score: float
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"id": self.id, "score": self.score, "metadata": self.metadata}


def shape_metadata(raw: dict | None) -> dict:
    """Project stored vector metadata onto the fixed result shape."""
    raw = raw or {}
    shaped = {"chunk": raw.get("chunk") or ""}
    for key in RESULT_FIELDS:
        shaped[key] = raw.get(key)
    if raw.get("fullChunk"):
        shaped["fullChunk"] = raw["fullChunk"]
    return shaped


async def query(services: Services, text: str, limit: int) -> list[QueryResult]:
    """
    Return the nearest chunks to `text`, best first.

    Any failure (bad embedding, store error) yields an empty list so the
    caller can still answer without context.
    """
    safe_limit = min(limit, services.settings.capacity_limit)
    if safe_limit <= 0:
        return []

    try:
        response = await services.embedder.embed([text])
        query_vector = validate_embeddings(response, expected=1)[0]

        matches = await services.vector_store.query(query_vector, safe_limit)
    except Exception as e:
        logger.error(f"Query documents error: {e}")
        return []

    return [
        QueryResult(id=m.id, score=m.score, metadata=shape_metadata(m.metadata))
        for m in matches
    ]


async def build_context(
    services: Services,
    text: str,
    top_k: int | None = None,
) -> str:
    """Join the best-matching chunk texts into one prompt context string."""
    config = services.settings
    k = min(top_k or config.context_top_k, config.capacity_limit)
    results = await query(services, text, k)

    if not results:
        return ""

    chunks = [
        r.metadata.get("fullChunk") or r.metadata.get("chunk") or ""
        for r in results
    ]
    return config.context_separator.join(c for c in chunks if c)
