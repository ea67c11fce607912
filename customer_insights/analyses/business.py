"""Business-wide analytics: overview, trends, conversion, demographics,
performance and revenue over a date range.

All sections are computed from one scan of the events in the range (after
segment filtering). Empty inputs produce zero-valued sections.

Quick Start
-----------
>>> from customer_insights.foundation import InMemoryEventStore
>>> report = business_analytics(InMemoryEventStore(), granularity="weekly")
>>> report.overview.total_events
0
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from customer_insights.analyses._math import mean_present, percentage, quantize, ratio
from customer_insights.analyses.realtime import (
    DEFAULT_WINDOW_MINUTES,
    RealTimeSnapshot,
    is_error_event,
    real_time_snapshot,
)
from customer_insights.foundation.deadline import Deadline, check_deadline
from customer_insights.foundation.event_contract import AnalyticsEvent, EventType
from customer_insights.foundation.event_store import EventQuery, EventStore, SortOrder
from customer_insights.foundation.periods import (
    DateRange,
    Granularity,
    bucket_label,
    ensure_utc,
    resolve_range,
    shift,
    truncate,
    utc_now,
)
from customer_insights.foundation.segments import SegmentFilter, parse_segments

logger = logging.getLogger(__name__)


def _revenue(event: AnalyticsEvent) -> float:
    revenue = event.properties.revenue
    return revenue if revenue is not None and revenue > 0 else 0.0


@dataclass(frozen=True)
class BusinessOverview:
    total_events: int = 0
    unique_customers: int = 0
    unique_sessions: int = 0
    events_per_customer: float = 0.0
    avg_engagement_score: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return dict(vars(self))


@dataclass(frozen=True)
class TrendBucket:
    period_start: datetime
    label: str
    events: int
    unique_customers: int
    revenue: float
    conversions: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "period_start": self.period_start.isoformat(),
            "label": self.label,
            "events": self.events,
            "unique_customers": self.unique_customers,
            "revenue": self.revenue,
            "conversions": self.conversions,
        }


@dataclass(frozen=True)
class ConversionSummary:
    """Event counts along the search → view → booking → payment path."""

    searches: int = 0
    views: int = 0
    bookings: int = 0
    payments: int = 0
    search_to_view_rate: float = 0.0
    view_to_booking_rate: float = 0.0
    booking_to_payment_rate: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return dict(vars(self))


@dataclass(frozen=True)
class Demographics:
    events_by_customer_type: dict[str, int] = field(default_factory=dict)
    customers_by_customer_type: dict[str, int] = field(default_factory=dict)
    events_by_country: dict[str, int] = field(default_factory=dict)
    events_by_platform: dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {key: dict(value) for key, value in vars(self).items()}


@dataclass(frozen=True)
class PerformanceMetrics:
    avg_load_time: float = 0.0
    avg_response_time: float = 0.0
    error_events: int = 0
    error_rate: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return dict(vars(self))


@dataclass(frozen=True)
class RevenueAnalytics:
    total_revenue: float = 0.0
    paying_customers: int = 0
    avg_revenue_per_paying_customer: float = 0.0
    revenue_by_event_type: dict[str, float] = field(default_factory=dict)
    revenue_by_customer_type: dict[str, float] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_revenue": self.total_revenue,
            "paying_customers": self.paying_customers,
            "avg_revenue_per_paying_customer": self.avg_revenue_per_paying_customer,
            "revenue_by_event_type": dict(self.revenue_by_event_type),
            "revenue_by_customer_type": dict(self.revenue_by_customer_type),
        }


@dataclass(frozen=True)
class BusinessAnalytics:
    """Business dashboard for a date range.

    Attributes
    ----------
    date_range:
        Window the figures cover.
    granularity:
        Bucket size used for ``trends``.
    segments:
        Segment filter applied before aggregation.
    trends:
        One bucket per granularity period touching the window, oldest first,
        including periods without events.
    """

    date_range: DateRange
    granularity: Granularity
    segments: SegmentFilter
    overview: BusinessOverview
    trends: tuple[TrendBucket, ...]
    conversion: ConversionSummary
    demographics: Demographics
    performance: PerformanceMetrics
    revenue: RevenueAnalytics
    generated_at: datetime = field(default_factory=utc_now)

    def as_dict(self) -> dict[str, Any]:
        return {
            "date_range": self.date_range.as_dict(),
            "granularity": self.granularity.value,
            "segments": self.segments.as_dict(),
            "overview": self.overview.as_dict(),
            "trends": [bucket.as_dict() for bucket in self.trends],
            "conversion": self.conversion.as_dict(),
            "demographics": self.demographics.as_dict(),
            "performance": self.performance.as_dict(),
            "revenue": self.revenue.as_dict(),
            "generated_at": self.generated_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def overview_section(events: Sequence[AnalyticsEvent]) -> BusinessOverview:
    customers = {event.customer_id for event in events}
    sessions = {event.session_id for event in events if event.session_id is not None}
    return BusinessOverview(
        total_events=len(events),
        unique_customers=len(customers),
        unique_sessions=len(sessions),
        events_per_customer=ratio(len(events), len(customers)),
        avg_engagement_score=mean_present(e.metrics.engagement_score for e in events),
    )


def trends_section(
    events: Sequence[AnalyticsEvent], date_range: DateRange, granularity: Granularity | str
) -> list[TrendBucket]:
    granularity = Granularity.parse(granularity)
    grouped: dict[datetime, list[AnalyticsEvent]] = defaultdict(list)
    for event in events:
        grouped[truncate(event.timestamp, granularity)].append(event)

    buckets = []
    current = truncate(date_range.start, granularity)
    last = truncate(date_range.end, granularity)
    while current <= last:
        items = grouped.get(current, [])
        buckets.append(
            TrendBucket(
                period_start=current,
                label=bucket_label(current, granularity),
                events=len(items),
                unique_customers=len({e.customer_id for e in items}),
                revenue=quantize(sum(_revenue(e) for e in items)),
                conversions=sum(1 for e in items if e.properties.conversion_step is not None),
            )
        )
        current = shift(current, granularity, 1)
    return buckets


def conversion_section(events: Sequence[AnalyticsEvent]) -> ConversionSummary:
    counts = Counter(event.event_type for event in events)
    searches = counts[EventType.STORAGE_SEARCH]
    views = counts[EventType.UNIT_VIEW]
    bookings = counts[EventType.UNIT_BOOKING]
    payments = counts[EventType.PAYMENT_COMPLETED]
    return ConversionSummary(
        searches=searches,
        views=views,
        bookings=bookings,
        payments=payments,
        search_to_view_rate=percentage(views, searches),
        view_to_booking_rate=percentage(bookings, views),
        booking_to_payment_rate=percentage(payments, bookings),
    )


def demographics_section(events: Sequence[AnalyticsEvent]) -> Demographics:
    customers_by_type: dict[str, set[str]] = defaultdict(set)
    for event in events:
        customers_by_type[event.customer_type.value].add(event.customer_id)
    return Demographics(
        events_by_customer_type=dict(Counter(e.customer_type.value for e in events)),
        customers_by_customer_type={key: len(ids) for key, ids in customers_by_type.items()},
        events_by_country=dict(
            Counter(e.location.country for e in events if e.location and e.location.country)
        ),
        events_by_platform=dict(
            Counter(e.device.platform.value for e in events if e.device and e.device.platform)
        ),
    )


def performance_section(events: Sequence[AnalyticsEvent]) -> PerformanceMetrics:
    errors = sum(1 for event in events if is_error_event(event))
    return PerformanceMetrics(
        avg_load_time=mean_present(e.properties.load_time for e in events),
        avg_response_time=mean_present(e.properties.response_time for e in events),
        error_events=errors,
        error_rate=percentage(errors, len(events)),
    )


def revenue_section(events: Sequence[AnalyticsEvent]) -> RevenueAnalytics:
    by_customer: dict[str, float] = defaultdict(float)
    by_event_type: dict[str, float] = defaultdict(float)
    by_customer_type: dict[str, float] = defaultdict(float)
    for event in events:
        amount = _revenue(event)
        if not amount:
            continue
        by_customer[event.customer_id] += amount
        by_event_type[event.event_type.value] += amount
        by_customer_type[event.customer_type.value] += amount

    total = sum(by_customer.values())
    return RevenueAnalytics(
        total_revenue=quantize(total),
        paying_customers=len(by_customer),
        avg_revenue_per_paying_customer=ratio(total, len(by_customer)),
        revenue_by_event_type={key: quantize(value) for key, value in by_event_type.items()},
        revenue_by_customer_type={key: quantize(value) for key, value in by_customer_type.items()},
    )


# ---------------------------------------------------------------------------
# Store-facing operations
# ---------------------------------------------------------------------------


def business_analytics(
    store: EventStore,
    date_range: DateRange | None = None,
    granularity: Granularity | str = Granularity.DAILY,
    segments: SegmentFilter | Sequence[str] | None = None,
    *,
    deadline: Deadline | None = None,
    now: datetime | None = None,
) -> BusinessAnalytics:
    """Compute the business dashboard for ``date_range``.

    Raises
    ------
    InvalidGranularity
        If ``granularity`` is not daily, weekly or monthly.
    ValidationError
        If a segment token is malformed.
    """
    granularity = Granularity.parse(granularity)
    segment_filter = parse_segments(segments)
    window = resolve_range(date_range, now)

    events = store.find(EventQuery.within(window, order=SortOrder.ASC), deadline=deadline)
    events = segment_filter.apply(events)
    check_deadline(deadline, "business analytics")
    logger.debug(
        "Business analytics over %d events (%s, %s)",
        len(events),
        window.start.isoformat(),
        granularity.value,
    )

    return BusinessAnalytics(
        date_range=window,
        granularity=granularity,
        segments=segment_filter,
        overview=overview_section(events),
        trends=tuple(trends_section(events, window, granularity)),
        conversion=conversion_section(events),
        demographics=demographics_section(events),
        performance=performance_section(events),
        revenue=revenue_section(events),
        generated_at=utc_now() if now is None else ensure_utc(now),
    )


@dataclass(frozen=True)
class AnalyticsSummary:
    timeframe_days: int
    business: BusinessAnalytics
    realtime: RealTimeSnapshot

    def as_dict(self) -> dict[str, Any]:
        return {
            "timeframe": f"{self.timeframe_days}d",
            "business": self.business.as_dict(),
            "realtime": self.realtime.as_dict(),
        }


def analytics_summary(
    store: EventStore,
    days: int = 30,
    *,
    window_minutes: int = DEFAULT_WINDOW_MINUTES,
    deadline: Deadline | None = None,
    now: datetime | None = None,
) -> AnalyticsSummary:
    """Business analytics over the trailing ``days`` plus a live snapshot."""
    if days <= 0:
        raise ValueError(f"days must be positive, got {days}")
    window = DateRange.trailing(days=days, now=now)
    return AnalyticsSummary(
        timeframe_days=days,
        business=business_analytics(store, window, deadline=deadline, now=window.end),
        realtime=real_time_snapshot(store, window_minutes, now=window.end, deadline=deadline),
    )
