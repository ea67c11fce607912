"""Per-customer aggregations: overview, behaviour, engagement and preferences.

Each store-facing function reads the customer's events in the date range
once and hands them to a pure ``*_from_events`` counterpart, so the same
computations can be reused on any event sequence (for example the output
of the synthetic generator).
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from customer_insights.analyses._math import mean_present, quantize
from customer_insights.foundation.deadline import Deadline, check_deadline
from customer_insights.foundation.event_contract import AnalyticsEvent, EventType
from customer_insights.foundation.event_store import EventStore, JourneyStep
from customer_insights.foundation.periods import DateRange, ensure_utc, resolve_range, utc_now
from customer_insights.foundation.segments import SegmentFilter, parse_segments

logger = logging.getLogger(__name__)

#: Number of entries kept per preference dimension.
DEFAULT_TOP_PREFERENCES = 5


@dataclass(frozen=True)
class CustomerOverview:
    """Headline activity figures for one customer.

    Attributes
    ----------
    total_events:
        Number of events in the range.
    unique_sessions:
        Distinct non-null session ids.
    first_seen, last_seen:
        Earliest and latest event timestamps (``None`` without events).
    active_event_type_count:
        Number of distinct event types observed.
    avg_engagement_score:
        Mean of ``metrics.engagement_score`` over events that carry it.
    """

    total_events: int = 0
    unique_sessions: int = 0
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    active_event_type_count: int = 0
    avg_engagement_score: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_events": self.total_events,
            "unique_sessions": self.unique_sessions,
            "first_seen": self.first_seen.isoformat() if self.first_seen else None,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "active_event_type_count": self.active_event_type_count,
            "avg_engagement_score": self.avg_engagement_score,
        }


@dataclass(frozen=True)
class EventTypeBehavior:
    event_type: EventType
    count: int
    avg_session_duration: float
    last_occurrence: datetime

    def as_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "count": self.count,
            "avg_session_duration": self.avg_session_duration,
            "last_occurrence": self.last_occurrence.isoformat(),
        }


@dataclass(frozen=True)
class EngagementMetrics:
    avg_page_views: float = 0.0
    avg_session_duration: float = 0.0
    avg_scroll_depth: float = 0.0
    total_clicks: float = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "avg_page_views": self.avg_page_views,
            "avg_session_duration": self.avg_session_duration,
            "avg_scroll_depth": self.avg_scroll_depth,
            "total_clicks": self.total_clicks,
        }


@dataclass(frozen=True)
class CustomerPreferences:
    """Most frequent values per preference dimension, as ``(value, count)``."""

    unit_sizes: tuple[tuple[str, int], ...] = ()
    price_ranges: tuple[tuple[str, int], ...] = ()
    facilities: tuple[tuple[str, int], ...] = ()
    item_categories: tuple[tuple[str, int], ...] = ()
    search_queries: tuple[tuple[str, int], ...] = ()
    platforms: tuple[tuple[str, int], ...] = ()

    def as_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {
            name: [{"value": value, "count": count} for value, count in getattr(self, name)]
            for name in (
                "unit_sizes",
                "price_ranges",
                "facilities",
                "item_categories",
                "search_queries",
                "platforms",
            )
        }


@dataclass(frozen=True)
class CustomerInsights:
    customer_id: str
    date_range: DateRange
    overview: CustomerOverview
    behavior: tuple[EventTypeBehavior, ...]
    engagement: EngagementMetrics
    preferences: CustomerPreferences
    journey: tuple[JourneyStep, ...] = ()
    generated_at: datetime = field(default_factory=utc_now)

    def as_dict(self) -> dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "date_range": self.date_range.as_dict(),
            "overview": self.overview.as_dict(),
            "behavior": [item.as_dict() for item in self.behavior],
            "engagement": self.engagement.as_dict(),
            "preferences": self.preferences.as_dict(),
            "journey": [step.as_dict() for step in self.journey],
            "generated_at": self.generated_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Pure computations
# ---------------------------------------------------------------------------


def overview_from_events(events: Sequence[AnalyticsEvent]) -> CustomerOverview:
    if not events:
        return CustomerOverview()
    sessions = set()
    event_types = set()
    first_seen = last_seen = events[0].timestamp
    for event in events:
        if event.session_id is not None:
            sessions.add(event.session_id)
        event_types.add(event.event_type)
        first_seen = min(first_seen, event.timestamp)
        last_seen = max(last_seen, event.timestamp)
    return CustomerOverview(
        total_events=len(events),
        unique_sessions=len(sessions),
        first_seen=first_seen,
        last_seen=last_seen,
        active_event_type_count=len(event_types),
        avg_engagement_score=mean_present(e.metrics.engagement_score for e in events),
    )


def behavior_from_events(events: Sequence[AnalyticsEvent]) -> list[EventTypeBehavior]:
    """Group by event type; most frequent first, ties by most recent."""
    grouped: dict[EventType, list[AnalyticsEvent]] = defaultdict(list)
    for event in events:
        grouped[event.event_type].append(event)

    rows = [
        EventTypeBehavior(
            event_type=event_type,
            count=len(items),
            avg_session_duration=mean_present(e.metrics.session_duration for e in items),
            last_occurrence=max(e.timestamp for e in items),
        )
        for event_type, items in grouped.items()
    ]
    rows.sort(key=lambda row: (row.count, row.last_occurrence), reverse=True)
    return rows


def engagement_from_events(events: Sequence[AnalyticsEvent]) -> EngagementMetrics:
    if not events:
        return EngagementMetrics()
    return EngagementMetrics(
        avg_page_views=mean_present(e.metrics.page_view_count for e in events),
        avg_session_duration=mean_present(e.metrics.session_duration for e in events),
        avg_scroll_depth=mean_present(e.metrics.scroll_depth for e in events),
        total_clicks=quantize(sum(e.metrics.click_count or 0 for e in events)),
    )


def _top(values: list[str | None], top_n: int) -> tuple[tuple[str, int], ...]:
    counts = Counter(value for value in values if value)
    # most_common keeps first-seen order for equal counts
    return tuple(counts.most_common(top_n))


def preferences_from_events(
    events: Sequence[AnalyticsEvent], top_n: int = DEFAULT_TOP_PREFERENCES
) -> CustomerPreferences:
    if top_n <= 0:
        raise ValueError(f"top_n must be positive, got {top_n}")
    return CustomerPreferences(
        unit_sizes=_top([e.properties.unit_size for e in events], top_n),
        price_ranges=_top([e.properties.price_range for e in events], top_n),
        facilities=_top([e.properties.facility_id for e in events], top_n),
        item_categories=_top([e.properties.item_category for e in events], top_n),
        search_queries=_top(
            [e.properties.search_query.lower() if e.properties.search_query else None for e in events],
            top_n,
        ),
        platforms=_top(
            [e.device.platform.value if e.device and e.device.platform else None for e in events],
            top_n,
        ),
    )


# ---------------------------------------------------------------------------
# Store-facing operations
# ---------------------------------------------------------------------------


def _customer_events(
    store: EventStore,
    customer_id: str,
    date_range: DateRange | None,
    segments: SegmentFilter | Sequence[str] | None,
    deadline: Deadline | None,
    now: datetime | None,
) -> tuple[DateRange, list[AnalyticsEvent]]:
    if not customer_id:
        raise ValueError("customer_id must be a non-empty string")
    window = resolve_range(date_range, now)
    events = store.query_by_customer(customer_id, window, deadline=deadline)
    events = parse_segments(segments).apply(events)
    check_deadline(deadline, "customer aggregation")
    return window, events


def customer_overview(
    store: EventStore,
    customer_id: str,
    date_range: DateRange | None = None,
    *,
    segments: SegmentFilter | Sequence[str] | None = None,
    deadline: Deadline | None = None,
    now: datetime | None = None,
) -> CustomerOverview:
    """Headline activity for ``customer_id``; all-zero when nothing matches."""
    _, events = _customer_events(store, customer_id, date_range, segments, deadline, now)
    return overview_from_events(events)


def customer_behavior(
    store: EventStore,
    customer_id: str,
    date_range: DateRange | None = None,
    *,
    segments: SegmentFilter | Sequence[str] | None = None,
    deadline: Deadline | None = None,
    now: datetime | None = None,
) -> list[EventTypeBehavior]:
    _, events = _customer_events(store, customer_id, date_range, segments, deadline, now)
    return behavior_from_events(events)


def engagement_metrics(
    store: EventStore,
    customer_id: str,
    date_range: DateRange | None = None,
    *,
    segments: SegmentFilter | Sequence[str] | None = None,
    deadline: Deadline | None = None,
    now: datetime | None = None,
) -> EngagementMetrics:
    _, events = _customer_events(store, customer_id, date_range, segments, deadline, now)
    return engagement_from_events(events)


def customer_preferences(
    store: EventStore,
    customer_id: str,
    date_range: DateRange | None = None,
    *,
    top_n: int = DEFAULT_TOP_PREFERENCES,
    segments: SegmentFilter | Sequence[str] | None = None,
    deadline: Deadline | None = None,
    now: datetime | None = None,
) -> CustomerPreferences:
    _, events = _customer_events(store, customer_id, date_range, segments, deadline, now)
    return preferences_from_events(events, top_n)


def customer_insights(
    store: EventStore,
    customer_id: str,
    date_range: DateRange | None = None,
    *,
    include_journey: bool = True,
    segments: SegmentFilter | Sequence[str] | None = None,
    deadline: Deadline | None = None,
    now: datetime | None = None,
) -> CustomerInsights:
    """Dashboard bundle for one customer, computed from a single scan.

    The journey lists the customer's events in the date range, oldest
    first.
    """
    window, events = _customer_events(store, customer_id, date_range, segments, deadline, now)
    logger.debug("Building insights for %s from %d events", customer_id, len(events))
    journey: tuple[JourneyStep, ...] = ()
    if include_journey:
        journey = tuple(JourneyStep.from_event(event) for event in reversed(events))
    return CustomerInsights(
        customer_id=customer_id,
        date_range=window,
        overview=overview_from_events(events),
        behavior=tuple(behavior_from_events(events)),
        engagement=engagement_from_events(events),
        preferences=preferences_from_events(events),
        journey=journey,
        generated_at=utc_now() if now is None else ensure_utc(now),
    )
