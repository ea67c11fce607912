"""Foundational building blocks for the customer insights engine.

This package exposes the event contract, date windows and calendar
buckets, per-call deadlines, segment filters and the event store
backends every analysis reads from.
"""

from .backends import MEMORY_URL, create_event_store
from .deadline import Deadline, check_deadline
from .event_contract import (
    AnalyticsEvent,
    CustomerType,
    DataQuality,
    DataSource,
    Device,
    EventCategory,
    EventContract,
    EventMetrics,
    EventProperties,
    EventType,
    ExperimentExposure,
    Location,
    Platform,
    Privacy,
    event_from_dict,
    to_serialisable,
    validate_and_enrich,
)
from .event_store import EventQuery, EventStore, InMemoryEventStore, JourneyStep, SortOrder
from .periods import DateRange, Granularity, bucket_label, resolve_range, shift, truncate
from .segments import SegmentFilter, parse_segments
from .sql_store import SQLEventStore

__all__ = [
    "MEMORY_URL",
    "create_event_store",
    "Deadline",
    "check_deadline",
    "AnalyticsEvent",
    "CustomerType",
    "DataQuality",
    "DataSource",
    "Device",
    "EventCategory",
    "EventContract",
    "EventMetrics",
    "EventProperties",
    "EventType",
    "ExperimentExposure",
    "Location",
    "Platform",
    "Privacy",
    "event_from_dict",
    "to_serialisable",
    "validate_and_enrich",
    "EventQuery",
    "EventStore",
    "InMemoryEventStore",
    "JourneyStep",
    "SortOrder",
    "DateRange",
    "Granularity",
    "bucket_label",
    "resolve_range",
    "shift",
    "truncate",
    "SegmentFilter",
    "parse_segments",
    "SQLEventStore",
]
