"""Shared fixtures: a fixed clock, an event factory and both store backends."""

from datetime import datetime, timezone

import pytest

from customer_insights.foundation import (
    InMemoryEventStore,
    SQLEventStore,
    validate_and_enrich,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    """Fixed reference time used by the analyses under test."""
    return NOW


@pytest.fixture
def make_event():
    """Factory building validated events from a few keyword arguments.

    Events are created "at" their own timestamp, so the default retention
    expiry is one year after the event.
    """

    def _make(customer_id, event_type, timestamp, **payload):
        body = {
            "customerId": customer_id,
            "eventType": event_type,
            "timestamp": timestamp,
        }
        body.update(payload)
        return validate_and_enrich(body, now=timestamp)

    return _make


@pytest.fixture
def memory_store():
    store = InMemoryEventStore()
    yield store
    store.close()


@pytest.fixture
def sql_store():
    store = SQLEventStore("sqlite://")
    store.open()
    yield store
    store.close()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Every store-facing test runs against both backends."""
    if request.param == "memory":
        backend = InMemoryEventStore()
    else:
        backend = SQLEventStore("sqlite://")
    backend.open()
    yield backend
    backend.close()
