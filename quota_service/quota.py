"""
Vector quota accounting.

The index has a hard ceiling on how many vectors it may hold, and nothing
in the vector store enforces it for us. The tracker keeps the count as a
single integer under a reserved key in the metadata store and is the only
code that writes it.

Every read-modify-write goes through one asyncio.Lock, so within a process
there is exactly one writer. Admission also reserves the admitted amount
until the ingestion commits or gives up: two concurrent uploads can no
longer both pass the check against the same pre-update count. Across
processes the counter is still only as consistent as the backing store;
`cleanup.reconcile_vector_count` corrects any drift that builds up.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Awaitable, Callable

from .metadata import KVStore

logger = logging.getLogger(__name__)


@dataclass
class AdmissionDecision:
    """Whether a batch of `requested` vectors fits in the remaining quota."""

    allowed: bool
    current_count: int
    available_quota: int
    requested: int = 0


@dataclass
class UsageStatus:
    current_count: int
    max_count: int
    available_quota: int
    percentage_used: float

    def to_dict(self) -> dict:
        return {
            "currentCount": self.current_count,
            "maxCount": self.max_count,
            "availableQuota": self.available_quota,
            "percentageUsed": self.percentage_used,
        }


class QuotaTracker:
    """Owns the persisted vector counter and all admission decisions."""

    def __init__(self, store: KVStore, capacity_limit: int, count_key: str) -> None:
        self.store = store
        self.capacity_limit = capacity_limit
        self.count_key = count_key
        self._lock = asyncio.Lock()
        # Admitted but not yet committed vectors, local to this process.
        self._reserved = 0
        # Removals whose vectors may be gone but are not yet accounted for.
        self._removing = 0

    @property
    def reserved(self) -> int:
        return self._reserved

    @property
    def removing(self) -> int:
        return self._removing

    async def current_count(self) -> int:
        """Read the persisted counter. A missing key means zero."""
        raw = await self.store.get(self.count_key)
        if raw is None or raw == "":
            return 0
        return int(raw)

    async def _apply(self, delta: int) -> int:
        # Caller holds self._lock.
        current = await self.current_count()
        new_count = max(0, current + delta)
        if current + delta < 0:
            logger.warning(
                f"Vector count clamped at 0 (was {current}, delta {delta})"
            )
        await self.store.put(self.count_key, str(new_count))
        return new_count

    async def adjust_count(self, delta: int) -> int:
        """Apply `delta` to the counter, clamped at zero, and return the new value."""
        async with self._lock:
            return await self._apply(delta)

    async def check_admission(self, requested: int) -> AdmissionDecision:
        """
        Decide over a fresh read without reserving anything.

        `available_quota` is `capacity - current`, the same figure
        `usage_status` reports; outstanding reservations are not subtracted.
        """
        current = await self.current_count()
        available = self.capacity_limit - current
        return AdmissionDecision(
            allowed=requested <= available,
            current_count=current,
            available_quota=available,
            requested=requested,
        )

    async def reserve(self, requested: int) -> AdmissionDecision:
        """
        Check admission and, if allowed, hold `requested` slots.

        Unlike `check_admission`, slots already reserved by in-flight
        ingestions count against the available quota here. The caller must
        `release(requested)` once the batch has either been committed with
        `adjust_count` or abandoned.
        """
        async with self._lock:
            current = await self.current_count()
            available = self.capacity_limit - current - self._reserved
            decision = AdmissionDecision(
                allowed=requested <= available,
                current_count=current,
                available_quota=available,
                requested=requested,
            )
            if decision.allowed:
                self._reserved += requested
            return decision

    async def release(self, requested: int) -> None:
        async with self._lock:
            self._reserved = max(0, self._reserved - requested)

    @asynccontextmanager
    async def removal(self):
        """Mark a vector removal as in flight until its decrement is applied."""
        async with self._lock:
            self._removing += 1
        try:
            yield
        finally:
            async with self._lock:
                self._removing -= 1

    async def reconcile(
        self, actual_count: Callable[[], Awaitable[int]]
    ) -> tuple[int, int] | None:
        """
        Set the counter to the vector store's true size.

        Returns `(old, new)`, or None when skipped because an ingestion or
        removal is between touching the vector store and updating the count;
        correcting then would count those vectors twice.
        """
        async with self._lock:
            if self._reserved or self._removing:
                return None
            actual = await actual_count()
            tracked = await self.current_count()
            if actual == tracked:
                return tracked, tracked
            return tracked, await self._apply(actual - tracked)

    async def usage_status(self) -> UsageStatus:
        current = await self.current_count()
        percentage = current / self.capacity_limit * 100 if self.capacity_limit else 0.0
        return UsageStatus(
            current_count=current,
            max_count=self.capacity_limit,
            available_quota=self.capacity_limit - current,
            percentage_used=round(percentage, 2),
        )
