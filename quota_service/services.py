"""Collaborators shared by every pipeline invocation."""

import logging
from dataclasses import dataclass

from .config import Settings, settings as default_settings
from .embedder import EmbeddingService, SentenceTransformerEmbedder
from .metadata import JsonFileKVStore, KVStore
from .quota import QuotaTracker
from .store import ChromaVectorStore, VectorStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """
    Everything a pipeline needs, wired once at startup.

    Pipelines hold no state of their own; the stores are the only state,
    and the quota tracker is the only writer of the vector counter.
    """

    embedder: EmbeddingService
    vector_store: VectorStore
    metadata_store: KVStore
    quota: QuotaTracker
    settings: Settings


def create_services(
    embedder: EmbeddingService,
    vector_store: VectorStore,
    metadata_store: KVStore,
    config: Settings | None = None,
) -> Services:
    config = config or default_settings
    quota = QuotaTracker(
        store=metadata_store,
        capacity_limit=config.capacity_limit,
        count_key=config.vector_count_key,
    )
    return Services(
        embedder=embedder,
        vector_store=vector_store,
        metadata_store=metadata_store,
        quota=quota,
        settings=config,
    )


def build_default_services(config: Settings | None = None) -> Services:
    """Production wiring: sentence-transformers, ChromaDB, JSON-file metadata."""
    config = config or default_settings
    logger.info(
        f"Wiring services (capacity={config.capacity_limit}, "
        f"model={config.embedding_model})"
    )
    return create_services(
        embedder=SentenceTransformerEmbedder(
            model_name=config.embedding_model,
            batch_size=config.embedding_batch_size,
        ),
        vector_store=ChromaVectorStore.persistent(
            config.chroma_persist_dir, config.chroma_collection
        ),
        metadata_store=JsonFileKVStore(config.metadata_store_path),
        config=config,
    )
