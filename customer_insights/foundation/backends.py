"""Construct an event store from a URL."""

from __future__ import annotations

from customer_insights.foundation.event_store import EventStore, InMemoryEventStore
from customer_insights.foundation.sql_store import SQLEventStore

MEMORY_URL = "memory://"


def create_event_store(url: str = MEMORY_URL) -> EventStore:
    """Return an unopened store for ``url``.

    ``memory://`` selects :class:`InMemoryEventStore`; any other value is
    treated as a SQLAlchemy database URL.

    Examples
    --------
    >>> with create_event_store("sqlite://") as store:
    ...     store.count()
    0
    """
    if not url or not url.strip():
        raise ValueError("Event store URL must be a non-empty string")
    if url.strip() == MEMORY_URL:
        return InMemoryEventStore()
    return SQLEventStore(url.strip())
