"""
Age-based cleanup of old documents and quota reconciliation.

With only a hundred vectors available, old uploads have to make room for
new ones. The sweep scans every document record and removes those
uploaded before the retention cutoff, using the same removal path as
interactive deletion. A document whose vectors cannot be removed is logged
and skipped; its record stays in place so the next sweep retries it.

After a sweep the counter can optionally be reconciled against the vector
store's real size, correcting drift from clamping, partial failures, or
concurrent writers in other processes.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from .deletion import remove_document
from .metadata import list_documents
from .metrics import emit_quota_metric
from .services import Services

logger = logging.getLogger(__name__)

RECONCILE_REASON = "reconcile_vector_count"


@dataclass
class CleanupResult:
    vectors_deleted: int = 0
    documents_removed: int = 0
    failures: list[str] = field(default_factory=list)
    execution_time_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "vectorsDeleted": self.vectors_deleted,
            "documentsRemoved": self.documents_removed,
            "failures": self.failures,
            "executionTime": self.execution_time_ms,
        }


async def cleanup_old_documents(
    services: Services,
    retention_days: int | None = None,
    now: datetime | None = None,
) -> CleanupResult:
    """Remove every document uploaded more than `retention_days` ago."""
    days = services.settings.retention_days if retention_days is None else retention_days
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    result = CleanupResult()

    for document_id, record in await list_documents(services.metadata_store):
        uploaded = record.uploaded_datetime()
        if uploaded is None:
            logger.warning(f"Skipping {document_id}: no readable uploadedAt")
            continue
        if uploaded >= cutoff:
            continue

        try:
            if record.vector_ids:
                removed = await remove_document(services, document_id, record)
            else:
                await services.metadata_store.delete(document_id)
                removed = 0
        except Exception as e:
            logger.error(f"Error deleting vectors for document {document_id}: {e}")
            result.failures.append(document_id)
            continue

        result.vectors_deleted += removed
        result.documents_removed += 1

    return result


async def reconcile_vector_count(services: Services) -> int:
    """
    Bring the counter in line with the vector store's actual size.

    The correction runs under the tracker's lock, so it is serialized with
    every other counter update and shows up as a metric. While an ingestion
    or deletion is in flight the store and the counter legitimately
    disagree; reconciliation is skipped and the current count returned.
    """
    quota = services.quota
    outcome = await quota.reconcile(services.vector_store.count)
    if outcome is None:
        logger.info(
            f"Skipping vector count reconciliation: {quota.reserved} reserved, "
            f"{quota.removing} removal(s) in flight"
        )
        return await quota.current_count()

    tracked, new_count = outcome
    drift = new_count - tracked
    if drift == 0:
        return tracked

    emit_quota_metric(
        count=new_count,
        delta=drift,
        reason=RECONCILE_REASON,
        capacity=quota.capacity_limit,
    )
    logger.warning(f"Vector count drift of {drift} corrected ({tracked} -> {new_count})")
    return new_count


async def handle_scheduled_cleanup(services: Services) -> CleanupResult:
    """Entry point for the time-triggered sweep."""
    start = time.time()

    result = await cleanup_old_documents(services)
    if services.settings.reconcile_on_cleanup:
        await reconcile_vector_count(services)

    result.execution_time_ms = round((time.time() - start) * 1000, 2)
    logger.info(
        f"Cleanup completed: vectors deleted={result.vectors_deleted}, "
        f"documents removed={result.documents_removed}, "
        f"failures={len(result.failures)}, "
        f"execution time={result.execution_time_ms}ms"
    )
    return result


async def run_cleanup_schedule(services: Services, interval_seconds: float) -> None:
    """Run the sweep every `interval_seconds` until cancelled."""
    logger.info(f"Cleanup scheduled every {interval_seconds:.0f}s")
    while True:
        await asyncio.sleep(interval_seconds)
        logger.info(
            f"Scheduled cleanup triggered at {datetime.now(timezone.utc).isoformat()}"
        )
        try:
            await handle_scheduled_cleanup(services)
        except Exception:
            logger.exception("Scheduled cleanup error")
