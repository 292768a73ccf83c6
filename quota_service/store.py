"""
ChromaDB vector store operations.

The pipelines talk to the vector store through three calls: upsert a batch
of records, query nearest neighbours, and delete by ID. `count()` is used
only to reconcile the quota counter against the true size of the index.

ChromaDB's client is synchronous, so every call runs in a worker thread.
Chroma metadata values must be str, int, float or bool; None values are
dropped before storage.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Protocol

import chromadb

logger = logging.getLogger(__name__)


@dataclass
class VectorRecord:
    """One embedded chunk, ready for storage."""

    id: str
    values: list[float]
    metadata: dict = field(default_factory=dict)


@dataclass
class VectorMatch:
    """A single nearest-neighbour hit."""

    id: str
    score: float
    metadata: dict = field(default_factory=dict)


class VectorStore(Protocol):
    async def upsert(self, records: list[VectorRecord]) -> int: ...

    async def query(self, vector: list[float], top_k: int) -> list[VectorMatch]: ...

    async def delete_by_ids(self, ids: list[str]) -> None: ...

    async def count(self) -> int: ...


def _chroma_metadata(metadata: dict) -> dict:
    return {
        key: value
        for key, value in metadata.items()
        if isinstance(value, (str, int, float, bool))
    }


class ChromaVectorStore:
    """VectorStore backed by a ChromaDB collection with cosine distance."""

    def __init__(self, client: chromadb.ClientAPI, collection_name: str) -> None:
        self.client = client
        self.collection_name = collection_name
        self.collection = client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )
        logger.info(
            f"Collection '{collection_name}' ready "
            f"({self.collection.count()} existing vectors)"
        )

    @classmethod
    def persistent(cls, persist_dir: str, collection_name: str) -> "ChromaVectorStore":
        os.makedirs(persist_dir, exist_ok=True)
        logger.info(f"Initializing ChromaDB with persist_dir={persist_dir}")
        return cls(chromadb.PersistentClient(path=persist_dir), collection_name)

    def _upsert(self, records: list[VectorRecord]) -> int:
        self.collection.upsert(
            ids=[r.id for r in records],
            embeddings=[r.values for r in records],
            metadatas=[_chroma_metadata(r.metadata) for r in records],
            documents=[r.metadata.get("fullChunk", "") for r in records],
        )
        return len(records)

    async def upsert(self, records: list[VectorRecord]) -> int:
        if not records:
            return 0
        added = await asyncio.to_thread(self._upsert, records)
        logger.info(f"Upserted {added} vectors to collection")
        return added

    def _query(self, vector: list[float], top_k: int) -> list[VectorMatch]:
        total = self.collection.count()
        if total == 0 or top_k <= 0:
            return []

        raw = self.collection.query(
            query_embeddings=[vector],
            n_results=min(top_k, total),
            include=["metadatas", "distances"],
        )

        matches: list[VectorMatch] = []
        if raw["ids"] and raw["ids"][0]:
            for i, vector_id in enumerate(raw["ids"][0]):
                metadata = raw["metadatas"][0][i] if raw["metadatas"] else {}
                distance = raw["distances"][0][i] if raw["distances"] else 1.0
                matches.append(
                    VectorMatch(
                        id=vector_id,
                        score=1.0 - distance,  # Convert distance to similarity
                        metadata=dict(metadata or {}),
                    )
                )
        return matches

    async def query(self, vector: list[float], top_k: int) -> list[VectorMatch]:
        return await asyncio.to_thread(self._query, vector, top_k)

    async def delete_by_ids(self, ids: list[str]) -> None:
        if not ids:
            return
        await asyncio.to_thread(self.collection.delete, ids=ids)
        logger.info(f"Deleted {len(ids)} vectors from collection")

    async def count(self) -> int:
        return await asyncio.to_thread(self.collection.count)
