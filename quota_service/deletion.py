"""
Document deletion: remove vectors → decrement counter → remove metadata.

This is the reverse of the ingestion order. The metadata record is removed
last so that, if vector removal fails, a retry can still find the vector
IDs. The cleanup sweep goes through `remove_document` too, which keeps a
single accounting path for every decrement.
"""

import logging
from dataclasses import dataclass

from .metadata import DocumentRecord, list_documents, load_document
from .metrics import delete_reason, emit_quota_metric
from .services import Services

logger = logging.getLogger(__name__)


@dataclass
class DeleteResult:
    success: bool
    deleted_count: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        result: dict = {"success": self.success, "deletedCount": self.deleted_count}
        if self.error is not None:
            result["error"] = self.error
        return result


async def remove_document(
    services: Services,
    document_id: str,
    record: DocumentRecord,
) -> int:
    """
    Remove a document's vectors, account for them, then drop its record.

    Raises whatever the vector store raises; in that case neither the
    counter nor the metadata record has been touched.
    """
    vector_ids = record.vector_ids
    quota = services.quota

    async with quota.removal():
        await services.vector_store.delete_by_ids(vector_ids)
        new_count = await quota.adjust_count(-len(vector_ids))

    emit_quota_metric(
        count=new_count,
        delta=-len(vector_ids),
        reason=delete_reason(document_id),
        capacity=quota.capacity_limit,
    )

    await services.metadata_store.delete(document_id)
    return len(vector_ids)


async def delete_document(services: Services, document_id: str) -> DeleteResult:
    """Delete a document and its vectors. Unknown documents are a no-op success."""
    try:
        record = await load_document(services.metadata_store, document_id)
        if record is None or not record.vector_ids:
            logger.info(f"Nothing to delete for {document_id}")
            return DeleteResult(success=True, deleted_count=0)

        deleted = await remove_document(services, document_id, record)
        logger.info(f"Deleted document {document_id} ({deleted} vectors)")
        return DeleteResult(success=True, deleted_count=deleted)

    except Exception as e:
        logger.exception(f"Error deleting document vectors for {document_id}")
        return DeleteResult(
            success=False,
            deleted_count=0,
            error=str(e) or "Failed to delete document vectors",
        )


async def document_listing(services: Services) -> list[dict]:
    """All stored documents as `{id, name, type, ...}` dicts."""
    documents = await list_documents(services.metadata_store)
    return [
        {
            "id": document_id,
            "name": record.name,
            "type": record.type,
            "chunksCount": record.chunks_count,
            "uploadedAt": record.uploaded_at,
            "vectorIds": record.vector_ids,
        }
        for document_id, record in documents
    ]
