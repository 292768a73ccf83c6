"""
Centralized configuration for the quota-aware ingestion service.

All tunable parameters live here: the vector capacity ceiling, chunk size,
retention window, embedding model and storage locations. Components take
these values as explicit arguments so tests can override them; this module
is only read when the service is wired together.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Quota ─────────────────────────────────────────────
    # The index holds at most this many vectors (100 on the free tier).
    capacity_limit: int = 100
    # Reserved metadata-store key for the counter. Never a document ID.
    vector_count_key: str = "__vector_count__"

    # ── Chunking ──────────────────────────────────────────
    chunk_size: int = 1000
    preview_chars: int = 200

    # ── Retrieval ─────────────────────────────────────────
    default_query_limit: int = 10
    context_top_k: int = 4
    context_separator: str = "\n\n---\n\n"

    # ── Cleanup ───────────────────────────────────────────
    retention_days: int = 30
    # 0 disables the periodic sweep.
    cleanup_interval_hours: float = 24.0
    reconcile_on_cleanup: bool = True

    # ── Embedding Model ───────────────────────────────────
    # bge-small-en-v1.5: 384-dim vectors, runs locally via sentence-transformers.
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_batch_size: int = 100

    # ── Storage ───────────────────────────────────────────
    chroma_collection: str = "documents"
    chroma_persist_dir: str = "./data/chroma"
    metadata_store_path: str = "./data/metadata.json"

    # ── Server ────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8100
    log_level: str = "INFO"

    model_config = {
        "env_prefix": "",
        "env_file": ".env",
        "extra": "ignore",
    }


settings = Settings()
