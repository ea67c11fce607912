"""Point-in-time activity snapshot over a trailing window."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

from customer_insights.analyses._math import mean_present, percentage
from customer_insights.foundation.deadline import Deadline, check_deadline
from customer_insights.foundation.event_contract import AnalyticsEvent, EventCategory, EventType
from customer_insights.foundation.event_store import EventQuery, EventStore, SortOrder
from customer_insights.foundation.periods import DateRange

DEFAULT_WINDOW_MINUTES = 60

# Error-rate thresholds (percent) separating healthy / degraded / unhealthy
DEGRADED_ERROR_RATE = 5.0
UNHEALTHY_ERROR_RATE = 15.0


def is_error_event(event: AnalyticsEvent) -> bool:
    return (
        event.event_category is EventCategory.ERROR_EVENT
        or event.event_type is EventType.ERROR_OCCURRED
    )


@dataclass(frozen=True)
class SystemHealth:
    status: str
    error_events: int
    error_rate: float
    avg_response_time: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "error_events": self.error_events,
            "error_rate": self.error_rate,
            "avg_response_time": self.avg_response_time,
        }


def system_health_from_events(events: Sequence[AnalyticsEvent]) -> SystemHealth:
    errors = sum(1 for event in events if is_error_event(event))
    error_rate = percentage(errors, len(events))
    if error_rate >= UNHEALTHY_ERROR_RATE:
        status = "unhealthy"
    elif error_rate >= DEGRADED_ERROR_RATE:
        status = "degraded"
    else:
        status = "healthy"
    return SystemHealth(
        status=status,
        error_events=errors,
        error_rate=error_rate,
        avg_response_time=mean_present(e.properties.response_time for e in events),
    )


@dataclass(frozen=True)
class RealTimeSnapshot:
    """Activity in the trailing window ending at ``timestamp``.

    Attributes
    ----------
    active_users:
        Distinct customers with at least one event in the window.
    current_events:
        Events in the window.
    live_conversions:
        Events in the window carrying a ``conversion_step``.
    system_health:
        Error-rate based health of the window.
    """

    timestamp: datetime
    window_minutes: int
    active_users: int
    current_events: int
    live_conversions: int
    system_health: SystemHealth

    def as_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "window_minutes": self.window_minutes,
            "active_users": self.active_users,
            "current_events": self.current_events,
            "live_conversions": self.live_conversions,
            "system_health": self.system_health.as_dict(),
        }


def real_time_snapshot(
    store: EventStore,
    window_minutes: int = DEFAULT_WINDOW_MINUTES,
    *,
    now: datetime | None = None,
    deadline: Deadline | None = None,
) -> RealTimeSnapshot:
    """Read the trailing ``window_minutes`` ending at ``now``.

    Raises
    ------
    ValueError
        If ``window_minutes`` is not positive.
    """
    if window_minutes <= 0:
        raise ValueError(f"window_minutes must be positive, got {window_minutes}")
    window = DateRange.trailing(minutes=window_minutes, now=now)
    events = store.find(EventQuery.within(window, order=SortOrder.ASC), deadline=deadline)
    check_deadline(deadline, "real-time snapshot")
    return RealTimeSnapshot(
        timestamp=window.end,
        window_minutes=window_minutes,
        active_users=len({event.customer_id for event in events}),
        current_events=len(events),
        live_conversions=sum(1 for e in events if e.properties.conversion_step is not None),
        system_health=system_health_from_events(events),
    )
