"""
Ingestion pipeline: chunk → admit → embed → store → account → persist.

The order matters because the three stores (vectors, counter, metadata)
share no transaction:

1. Admission is all-or-nothing for the whole batch. A denied batch stores
   nothing and leaves the counter untouched.
2. The counter is only incremented after the vector store confirmed the
   upsert, so a failed upsert can never be over-counted.
3. The metadata record, the only map from document to vector IDs, is
   written last. If that write fails, the vectors are stored and counted
   but orphaned.

Every failure is returned as an IngestResult with success=False; nothing
is allowed to escape to the caller.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .chunker import build_chunks
from .embedder import EmbeddingResponseError, validate_embeddings
from .metadata import DocumentRecord, SourceMetadata, load_document, save_document
from .metrics import denied_reason, emit_quota_metric, upsert_reason
from .services import Services
from .store import VectorRecord

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    success: bool
    vector_ids: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "vectorIds": self.vector_ids}
        return {"success": False, "error": self.error}


def make_vector_id(document_id: str, timestamp_ms: int, index: int) -> str:
    return f"{document_id}-{timestamp_ms}-{index}"


async def ingest(
    services: Services,
    texts: list[str],
    metadata: SourceMetadata,
) -> IngestResult:
    """Embed and store `texts` as vectors belonging to one document."""
    config = services.settings
    quota = services.quota
    reserved = 0

    try:
        # Step 1: Chunk
        chunks = build_chunks(
            texts,
            metadata.to_payload(),
            max_chunk_size=config.chunk_size,
            preview_chars=config.preview_chars,
        )
        if not chunks:
            return IngestResult(success=False, error="No text content to embed")

        # Step 2: Admission check for the whole batch
        requested = len(chunks)
        decision = await quota.reserve(requested)
        if not decision.allowed:
            emit_quota_metric(
                count=decision.current_count,
                delta=0,
                reason=denied_reason(requested),
                capacity=quota.capacity_limit,
            )
            logger.warning(
                f"Quota denied for {metadata.document_id}: requested {requested}, "
                f"available {decision.available_quota}"
            )
            return IngestResult(
                success=False,
                error=(
                    f"Vector limit exceeded. Current count: "
                    f"{decision.current_count}/{quota.capacity_limit}. "
                    f"Requested: {requested}. "
                    f"Available quota: {decision.available_quota}"
                ),
            )
        reserved = requested

        # Step 3: Embed all chunks in one batch
        response = await services.embedder.embed([c.text for c in chunks])
        embeddings = validate_embeddings(response, expected=len(chunks))

        # Step 4: Build vector records in input order, with IDs that do not
        # collide with an earlier upload of the same document
        existing = await load_document(services.metadata_store, metadata.document_id)
        taken = set(existing.vector_ids) if existing else set()
        timestamp_ms = int(time.time() * 1000)
        while make_vector_id(metadata.document_id, timestamp_ms, 0) in taken:
            timestamp_ms += 1
        records = [
            VectorRecord(
                id=make_vector_id(metadata.document_id, timestamp_ms, i),
                values=embedding,
                metadata=chunk.metadata,
            )
            for i, (chunk, embedding) in enumerate(zip(chunks, embeddings))
        ]

        # Step 5: Store; nothing below runs unless this succeeds
        await services.vector_store.upsert(records)

        # Step 6: Account for what was stored
        new_count = await quota.adjust_count(len(records))
        emit_quota_metric(
            count=new_count,
            delta=len(records),
            reason=upsert_reason(metadata.document_id),
            capacity=quota.capacity_limit,
        )

        # Step 7: Persist the document → vector IDs mapping. Re-ingesting an
        # existing document adds to its record so earlier vectors stay
        # reachable for deletion.
        vector_ids = [r.id for r in records]
        stored_ids = vector_ids
        if existing is not None and existing.vector_ids:
            logger.warning(
                f"Document {metadata.document_id} already has "
                f"{len(existing.vector_ids)} vectors; appending {len(vector_ids)}"
            )
            stored_ids = existing.vector_ids + vector_ids
        record = DocumentRecord(
            name=metadata.document_name,
            type=metadata.document_type,
            chunks_count=len(stored_ids),
            uploaded_at=datetime.now(timezone.utc).isoformat(),
            vector_ids=stored_ids,
        )
        await save_document(services.metadata_store, metadata.document_id, record)

        logger.info(
            f"Ingested {metadata.document_id}: {len(records)} vectors "
            f"(count now {new_count}/{quota.capacity_limit})"
        )
        return IngestResult(success=True, vector_ids=vector_ids)

    except EmbeddingResponseError as e:
        logger.error(f"Embedding failed for {metadata.document_id}: {e}")
        return IngestResult(success=False, error=str(e))
    except Exception as e:
        logger.exception(f"Embed and store error for {metadata.document_id}")
        return IngestResult(
            success=False,
            error=str(e) or "Failed to embed and store documents",
        )
    finally:
        if reserved:
            await quota.release(reserved)
