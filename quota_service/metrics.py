"""
Quota metrics as structured log records.

Each change to the vector count (and each denied ingestion) is written as a
single `[METRIC] {...}` line on the `quota_service.metrics` logger. The
fixed `"type": "vector_quota"` discriminator lets log-based monitoring pick
these out and chart usage against the capacity ceiling.

Emission is fire-and-forget: nothing here is ever consulted by control
flow, and a formatting problem must not fail the operation being measured.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

METRIC_TYPE = "vector_quota"


@dataclass
class QuotaMetricEvent:
    """One quota state transition."""

    count: int
    delta: int
    reason: str
    capacity: int
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def percent_used(self) -> float:
        if self.capacity <= 0:
            return 0.0
        return round(self.count / self.capacity * 100, 2)

    def to_record(self) -> dict:
        record = asdict(self)
        return {
            "type": METRIC_TYPE,
            "timestamp": record["timestamp"],
            "count": record["count"],
            "delta": record["delta"],
            "reason": record["reason"],
            "percentUsed": self.percent_used,
        }


def upsert_reason(document_id: str) -> str:
    return f"upsert_document_{document_id}"


def delete_reason(document_id: str) -> str:
    return f"delete_document_{document_id}"


def denied_reason(requested: int) -> str:
    return f"quota_denied_requested_{requested}"


def emit(event: QuotaMetricEvent) -> None:
    """Write the event as one structured log line. Never raises."""
    try:
        logger.info("[METRIC] %s", json.dumps(event.to_record()))
    except Exception as e:
        logger.warning(f"Dropped quota metric {event.reason!r}: {e}")


def emit_quota_metric(count: int, delta: int, reason: str, capacity: int) -> None:
    """Convenience wrapper building and emitting a QuotaMetricEvent."""
    emit(QuotaMetricEvent(count=count, delta=delta, reason=reason, capacity=capacity))
