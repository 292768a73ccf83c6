"""Shared fakes for the embedding service and vector store."""

import asyncio
import math

import pytest

from quota_service.config import Settings
from quota_service.metadata import InMemoryKVStore
from quota_service.services import create_services
from quota_service.store import VectorMatch, VectorRecord

ALPHABET = "abcdefghijklmnopqrstuvwxyz"


def letter_vector(text: str) -> list[float]:
    """Deterministic 27-dim embedding: letter counts plus a constant."""
    lowered = text.lower()
    return [float(lowered.count(ch)) for ch in ALPHABET] + [1.0]


class FakeEmbedder:
    """Letter-count embeddings; `response` overrides what embed returns."""

    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[list[str]] = []

    async def embed(self, texts):
        self.calls.append(list(texts))
        # Yield so concurrent ingestions interleave at this point
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        return [letter_vector(t) for t in texts]


class Gate:
    """Pauses a fake store call until the test releases it."""

    def __init__(self) -> None:
        self.reached = asyncio.Event()
        self.released = asyncio.Event()

    async def wait(self) -> None:
        self.reached.set()
        await self.released.wait()


class FakeVectorStore:
    """In-memory vector store with cosine ranking and injectable failures."""

    def __init__(self) -> None:
        self.records: dict[str, VectorRecord] = {}
        self.fail_upsert = False
        self.fail_query = False
        # Deleting any of these IDs raises
        self.poisoned_ids: set[str] = set()
        self.upsert_calls = 0
        self.delete_calls: list[list[str]] = []
        self.query_calls: list[int] = []
        # Set to a Gate to pause after records are written or removed
        self.upsert_gate: Gate | None = None
        self.delete_gate: Gate | None = None

    async def upsert(self, records):
        self.upsert_calls += 1
        if self.fail_upsert:
            raise RuntimeError("vector store unavailable")
        for record in records:
            self.records[record.id] = record
        if self.upsert_gate is not None:
            await self.upsert_gate.wait()
        return len(records)

    async def query(self, vector, top_k):
        self.query_calls.append(top_k)
        if self.fail_query:
            raise RuntimeError("vector store unavailable")
        scored = [
            VectorMatch(id=r.id, score=_cosine(vector, r.values), metadata=dict(r.metadata))
            for r in self.records.values()
        ]
        scored.sort(key=lambda m: m.score, reverse=True)
        return scored[:top_k]

    async def delete_by_ids(self, ids):
        self.delete_calls.append(list(ids))
        if self.poisoned_ids & set(ids):
            raise RuntimeError("delete failed")
        for vector_id in ids:
            self.records.pop(vector_id, None)
        if self.delete_gate is not None:
            await self.delete_gate.wait()

    async def count(self):
        return len(self.records)


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def make_services(
    embedder=None,
    vector_store=None,
    metadata_store=None,
    **overrides,
):
    config = Settings(**{"cleanup_interval_hours": 0, **overrides})
    return create_services(
        embedder=embedder or FakeEmbedder(),
        vector_store=vector_store or FakeVectorStore(),
        metadata_store=metadata_store or InMemoryKVStore(),
        config=config,
    )


@pytest.fixture
def services():
    return make_services()


def set_count(services, count: int) -> None:
    """Seed the persisted vector counter."""
    asyncio.run(services.metadata_store.put(services.settings.vector_count_key, str(count)))


def get_count(services) -> int:
    return asyncio.run(services.quota.current_count())
