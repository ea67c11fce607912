"""Append-only event store contract and the indexed in-memory backend.

Every analytical engine in :mod:`customer_insights.analyses` reads events
through :class:`EventStore`. The store is passed explicitly into each
engine call; callers own its lifecycle (:meth:`EventStore.open` /
:meth:`EventStore.close`, or use it as a context manager).

Two backends implement the contract:

- :class:`InMemoryEventStore` (this module), thread-safe with composite
  ``(dimension, timestamp)`` indexes kept as sorted lists
- :class:`customer_insights.foundation.sql_store.SQLEventStore`, durable
  storage through SQLAlchemy
"""

from __future__ import annotations

import heapq
import logging
import threading
from abc import ABC, abstractmethod
from bisect import bisect_left, bisect_right, insort
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Iterator

from customer_insights.errors import DuplicateEventId, InvalidRange, StoreUnavailable
from customer_insights.foundation.deadline import Deadline, check_deadline
from customer_insights.foundation.event_contract import (
    AnalyticsEvent,
    CustomerType,
    EventCategory,
    EventType,
)
from customer_insights.foundation.periods import DateRange, ensure_utc

logger = logging.getLogger(__name__)

#: Default number of records removed per purge batch.
DEFAULT_PURGE_BATCH_SIZE = 500

# How many scanned records between deadline checks.
_DEADLINE_CHECK_INTERVAL = 1000


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class EventQuery:
    """Filter, ordering and paging parameters for :meth:`EventStore.find`.

    Every filter is optional; ``None`` means "do not filter on this
    dimension". The time bounds are inclusive on both ends.

    Attributes
    ----------
    customer_id, session_id:
        Exact-match filters.
    event_types:
        Set of accepted event types.
    event_category, customer_type:
        Exact-match enum filters.
    start, end:
        Inclusive timestamp bounds.
    order:
        Timestamp ordering of the result (ties broken by ``event_id``).
    offset, limit:
        Paging applied after filtering and ordering.
    """

    customer_id: str | None = None
    event_types: frozenset[EventType] | None = None
    event_category: EventCategory | None = None
    session_id: str | None = None
    customer_type: CustomerType | None = None
    start: datetime | None = None
    end: datetime | None = None
    order: SortOrder = SortOrder.DESC
    offset: int = 0
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.event_types is not None:
            object.__setattr__(
                self, "event_types", frozenset(EventType(item) for item in self.event_types)
            )
        if self.event_category is not None:
            object.__setattr__(self, "event_category", EventCategory(self.event_category))
        if self.customer_type is not None:
            object.__setattr__(self, "customer_type", CustomerType(self.customer_type))
        object.__setattr__(self, "order", SortOrder(self.order))
        if self.start is not None:
            object.__setattr__(self, "start", ensure_utc(self.start))
        if self.end is not None:
            object.__setattr__(self, "end", ensure_utc(self.end))
        if self.start is not None and self.end is not None and self.start > self.end:
            raise InvalidRange(
                "Query start must not be after its end",
                {"start": self.start.isoformat(), "end": self.end.isoformat()},
            )
        if self.offset < 0:
            raise ValueError(f"offset must be non-negative, got {self.offset}")
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be non-negative, got {self.limit}")

    @classmethod
    def within(cls, date_range: DateRange | None, **filters: Any) -> "EventQuery":
        """Build a query bounded by ``date_range`` (unbounded when ``None``)."""
        if date_range is not None:
            filters.setdefault("start", date_range.start)
            filters.setdefault("end", date_range.end)
        return cls(**filters)

    def matches(self, event: AnalyticsEvent) -> bool:
        if self.customer_id is not None and event.customer_id != self.customer_id:
            return False
        if self.event_types is not None and event.event_type not in self.event_types:
            return False
        if self.event_category is not None and event.event_category != self.event_category:
            return False
        if self.session_id is not None and event.session_id != self.session_id:
            return False
        if self.customer_type is not None and event.customer_type != self.customer_type:
            return False
        if self.start is not None and event.timestamp < self.start:
            return False
        if self.end is not None and event.timestamp > self.end:
            return False
        return True

    def page(self, events: list[AnalyticsEvent]) -> list[AnalyticsEvent]:
        stop = None if self.limit is None else self.offset + self.limit
        return events[self.offset : stop]


@dataclass(frozen=True)
class JourneyStep:
    """Projection of an event used for customer journey views."""

    event_type: EventType
    event_category: EventCategory
    timestamp: datetime
    page_url: str | None
    conversion_step: str | None
    session_id: str | None

    @classmethod
    def from_event(cls, event: AnalyticsEvent) -> "JourneyStep":
        return cls(
            event_type=event.event_type,
            event_category=event.event_category,
            timestamp=event.timestamp,
            page_url=event.properties.page_url,
            conversion_step=event.properties.conversion_step,
            session_id=event.session_id,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "event_category": self.event_category.value,
            "timestamp": self.timestamp.isoformat(),
            "page_url": self.page_url,
            "conversion_step": self.conversion_step,
            "session_id": self.session_id,
        }


class EventStore(ABC):
    """Abstract append-only event store.

    Implementations must make :meth:`append` atomic (an event is either
    fully visible or absent) and :meth:`delete_expired` idempotent and safe
    to run alongside reads.
    """

    def open(self) -> None:
        """Acquire backend resources. Idempotent."""

    def close(self) -> None:
        """Release backend resources. Idempotent."""

    def __enter__(self) -> "EventStore":
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @abstractmethod
    def append(self, event: AnalyticsEvent, *, deadline: Deadline | None = None) -> str:
        """Persist ``event`` and return its id.

        Raises
        ------
        DuplicateEventId
            If an event with the same id is already stored.
        """

    def append_many(
        self, events: Iterable[AnalyticsEvent], *, deadline: Deadline | None = None
    ) -> list[str]:
        """Append events one at a time; each append is atomic on its own."""
        return [self.append(event, deadline=deadline) for event in events]

    @abstractmethod
    def get(self, event_id: str) -> AnalyticsEvent | None:
        """Return the event with ``event_id`` or ``None``."""

    @abstractmethod
    def find(self, query: EventQuery, *, deadline: Deadline | None = None) -> list[AnalyticsEvent]:
        """Return events matching ``query`` in the requested order."""

    @abstractmethod
    def count_matching(self, query: EventQuery, *, deadline: Deadline | None = None) -> int:
        """Number of events matching ``query`` (paging is ignored)."""

    @abstractmethod
    def delete_expired(self, as_of: datetime, *, batch_size: int = DEFAULT_PURGE_BATCH_SIZE) -> int:
        """Delete every event whose retention expiry is before ``as_of``."""

    @abstractmethod
    def delete_matching(self, query: EventQuery, *, batch_size: int = DEFAULT_PURGE_BATCH_SIZE) -> int:
        """Delete every event matching ``query`` (paging is ignored)."""

    @abstractmethod
    def count(self) -> int:
        """Approximate number of stored events."""

    @abstractmethod
    def ping(self) -> bool:
        """Return ``True`` when the backend is reachable."""

    def query_by_customer(
        self,
        customer_id: str,
        time_range: DateRange | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> list[AnalyticsEvent]:
        """Events of one customer, newest first."""
        query = EventQuery.within(time_range, customer_id=customer_id, order=SortOrder.DESC)
        return self.find(query, deadline=deadline)

    def query_by_type(
        self,
        event_type: EventType | str,
        time_range: DateRange | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> list[AnalyticsEvent]:
        """Events of one type, newest first."""
        query = EventQuery.within(
            time_range, event_types=frozenset({EventType(event_type)}), order=SortOrder.DESC
        )
        return self.find(query, deadline=deadline)

    def query_journey(
        self,
        customer_id: str,
        session_id: str | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> list[JourneyStep]:
        """A customer's journey (optionally one session), oldest first."""
        query = EventQuery(customer_id=customer_id, session_id=session_id, order=SortOrder.ASC)
        return [JourneyStep.from_event(event) for event in self.find(query, deadline=deadline)]


_IndexEntry = tuple[datetime, str]


def _timestamp_key(entry: _IndexEntry) -> datetime:
    return entry[0]


class InMemoryEventStore(EventStore):
    """Thread-safe in-process store with composite timestamp indexes.

    Each filter dimension (customer, type, category, session) maps a key to a
    list of ``(timestamp, event_id)`` pairs kept sorted with :mod:`bisect`,
    so a lookup by key and time range is two binary searches. A global
    timestamp index serves unkeyed range scans and an expiry index serves
    purges.

    The store is usable immediately after construction; :meth:`close` makes
    it unavailable until :meth:`open` is called again. Closing does not
    discard data.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._events: dict[str, AnalyticsEvent] = {}
        self._by_customer: dict[str, list[_IndexEntry]] = {}
        self._by_type: dict[EventType, list[_IndexEntry]] = {}
        self._by_category: dict[EventCategory, list[_IndexEntry]] = {}
        self._by_session: dict[str, list[_IndexEntry]] = {}
        self._by_time: list[_IndexEntry] = []
        self._by_expiry: list[_IndexEntry] = []
        self._is_open = True

    def open(self) -> None:
        with self._lock:
            self._is_open = True

    def close(self) -> None:
        with self._lock:
            self._is_open = False

    def _require_open(self) -> None:
        if not self._is_open:
            raise StoreUnavailable("In-memory event store is closed")

    def _keyed_indexes(self, event: AnalyticsEvent) -> Iterator[tuple[dict, Any]]:
        yield self._by_customer, event.customer_id
        yield self._by_type, event.event_type
        yield self._by_category, event.event_category
        if event.session_id is not None:
            yield self._by_session, event.session_id

    def append(self, event: AnalyticsEvent, *, deadline: Deadline | None = None) -> str:
        check_deadline(deadline, "append")
        entry = (event.timestamp, event.event_id)
        with self._lock:
            self._require_open()
            if event.event_id in self._events:
                raise DuplicateEventId(
                    "Event id already exists", {"event_id": event.event_id}
                )
            self._events[event.event_id] = event
            for index, key in self._keyed_indexes(event):
                insort(index.setdefault(key, []), entry)
            insort(self._by_time, entry)
            insort(self._by_expiry, (event.retention_expiry, event.event_id))
        return event.event_id

    def get(self, event_id: str) -> AnalyticsEvent | None:
        with self._lock:
            self._require_open()
            return self._events.get(event_id)

    def _candidate_lists(self, query: EventQuery) -> list[list[_IndexEntry]]:
        """Pick the narrowest index for ``query``."""
        if query.customer_id is not None:
            return [self._by_customer.get(query.customer_id, [])]
        if query.session_id is not None:
            return [self._by_session.get(query.session_id, [])]
        if query.event_types is not None:
            return [self._by_type.get(event_type, []) for event_type in query.event_types]
        if query.event_category is not None:
            return [self._by_category.get(query.event_category, [])]
        return [self._by_time]

    @staticmethod
    def _slice(entries: list[_IndexEntry], query: EventQuery) -> list[_IndexEntry]:
        lo = 0 if query.start is None else bisect_left(entries, query.start, key=_timestamp_key)
        if query.end is None:
            return entries[lo:]
        hi = bisect_right(entries, query.end, key=_timestamp_key)
        return entries[lo:hi]

    def _scan(self, query: EventQuery, deadline: Deadline | None) -> list[AnalyticsEvent]:
        check_deadline(deadline, "find")
        with self._lock:
            self._require_open()
            slices = [self._slice(entries, query) for entries in self._candidate_lists(query)]
            entries = list(heapq.merge(*slices)) if len(slices) > 1 else slices[0]
            candidates = [self._events[event_id] for _, event_id in entries]

        if query.order is SortOrder.DESC:
            candidates.reverse()
        matched = []
        for position, event in enumerate(candidates):
            if position % _DEADLINE_CHECK_INTERVAL == 0:
                check_deadline(deadline, "find")
            if query.matches(event):
                matched.append(event)
        return matched

    def find(self, query: EventQuery, *, deadline: Deadline | None = None) -> list[AnalyticsEvent]:
        return query.page(self._scan(query, deadline))

    def count_matching(self, query: EventQuery, *, deadline: Deadline | None = None) -> int:
        return len(self._scan(query, deadline))

    def _remove(self, event_id: str) -> None:
        event = self._events.pop(event_id, None)
        if event is None:
            return
        entry = (event.timestamp, event.event_id)
        for index, key in self._keyed_indexes(event):
            entries = index.get(key)
            if entries is None:
                continue
            pos = bisect_left(entries, entry)
            if pos < len(entries) and entries[pos] == entry:
                del entries[pos]
            if not entries:
                del index[key]
        pos = bisect_left(self._by_time, entry)
        if pos < len(self._by_time) and self._by_time[pos] == entry:
            del self._by_time[pos]
        expiry_entry = (event.retention_expiry, event.event_id)
        pos = bisect_left(self._by_expiry, expiry_entry)
        if pos < len(self._by_expiry) and self._by_expiry[pos] == expiry_entry:
            del self._by_expiry[pos]

    def _delete_in_batches(self, event_ids: list[str], batch_size: int) -> int:
        deleted = 0
        for start in range(0, len(event_ids), batch_size):
            with self._lock:
                self._require_open()
                for event_id in event_ids[start : start + batch_size]:
                    if event_id in self._events:
                        self._remove(event_id)
                        deleted += 1
        return deleted

    def delete_expired(self, as_of: datetime, *, batch_size: int = DEFAULT_PURGE_BATCH_SIZE) -> int:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        as_of = ensure_utc(as_of)
        deleted = 0
        while True:
            with self._lock:
                self._require_open()
                cutoff = bisect_left(self._by_expiry, as_of, key=_timestamp_key)
                batch = [event_id for _, event_id in self._by_expiry[: min(cutoff, batch_size)]]
                for event_id in batch:
                    self._remove(event_id)
            deleted += len(batch)
            if len(batch) < batch_size:
                break
        logger.debug("Deleted %d expired events (as_of=%s)", deleted, as_of.isoformat())
        return deleted

    def delete_matching(self, query: EventQuery, *, batch_size: int = DEFAULT_PURGE_BATCH_SIZE) -> int:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        unpaged = EventQuery(
            customer_id=query.customer_id,
            event_types=query.event_types,
            event_category=query.event_category,
            session_id=query.session_id,
            customer_type=query.customer_type,
            start=query.start,
            end=query.end,
        )
        event_ids = [event.event_id for event in self._scan(unpaged, None)]
        return self._delete_in_batches(event_ids, batch_size)

    def count(self) -> int:
        with self._lock:
            self._require_open()
            return len(self._events)

    def ping(self) -> bool:
        return self._is_open
