"""Retention expiry and customer erasure.

Deletion is permanent. Every purge and erasure is logged at INFO level with
the number of records removed so the audit trail survives the data.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from customer_insights.foundation.event_store import (
    DEFAULT_PURGE_BATCH_SIZE,
    EventQuery,
    EventStore,
)
from customer_insights.foundation.periods import ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurgeReport:
    """Outcome of one purge run.

    Attributes
    ----------
    as_of:
        Cut-off used: events expiring before it were deleted.
    deleted_count:
        Number of events removed.
    duration_seconds:
        Wall-clock time spent deleting.
    """

    as_of: datetime
    deleted_count: int
    duration_seconds: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "deleted_count": self.deleted_count,
            "duration_seconds": self.duration_seconds,
        }


class ExpiryManager:
    """Purge events past their retention deadline.

    Parameters
    ----------
    store:
        Store to purge.
    batch_size:
        Records deleted per batch; the store releases its lock or
        transaction between batches so reads keep flowing.
    """

    def __init__(self, store: EventStore, batch_size: int = DEFAULT_PURGE_BATCH_SIZE) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.store = store
        self.batch_size = batch_size
        self._lock = threading.Lock()
        self._last_report: PurgeReport | None = None

    @property
    def last_report(self) -> PurgeReport | None:
        with self._lock:
            return self._last_report

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete every event whose retention expiry is before ``now``.

        Idempotent: a second call without new writes deletes nothing.
        """
        return self.run_purge(now).deleted_count

    def run_purge(self, now: datetime | None = None) -> PurgeReport:
        """Purge like :meth:`purge_expired` and return this run's report."""
        as_of = ensure_utc(now) if now is not None else utc_now()
        started = time.perf_counter()
        deleted = self.store.delete_expired(as_of, batch_size=self.batch_size)
        report = PurgeReport(
            as_of=as_of,
            deleted_count=deleted,
            duration_seconds=round(time.perf_counter() - started, 6),
        )
        with self._lock:
            self._last_report = report
        logger.info(
            "Purged %d expired analytics events (as_of=%s, %.3fs)",
            deleted,
            as_of.isoformat(),
            report.duration_seconds,
        )
        return report

    def erase_customer(self, customer_id: str) -> int:
        """Delete every event of ``customer_id`` regardless of expiry."""
        if not customer_id:
            raise ValueError("customer_id must be a non-empty string")
        deleted = self.store.delete_matching(
            EventQuery(customer_id=customer_id), batch_size=self.batch_size
        )
        logger.info("Erased %d analytics events for customer %s", deleted, customer_id)
        return deleted
