"""Ordered conversion funnel analysis.

A funnel is an ordered list of step names. An event belongs to a step when
its ``properties.conversion_step``, its ``properties.funnel_stage`` or its
event type equals the step name. Conversion is measured step to step by
set intersection: a customer converts at step *i* only if they were also
present at step *i - 1*.

Per-step rates are relative to the previous step's audience, so a funnel
where 100 customers search, 60 of them view and 20 of those book reports
100%, 60% and 33.33%, with a 20% total conversion rate.

Quick Start
-----------
>>> per_step, total, biggest = compute_funnel([], ["STORAGE_SEARCH", "UNIT_VIEW"])
>>> total
0.0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Sequence

from customer_insights.analyses._math import percentage
from customer_insights.errors import InvalidFunnelDefinition
from customer_insights.foundation.deadline import Deadline, check_deadline
from customer_insights.foundation.event_contract import AnalyticsEvent
from customer_insights.foundation.event_store import EventQuery, EventStore, SortOrder
from customer_insights.foundation.periods import DateRange, resolve_range
from customer_insights.foundation.segments import SegmentFilter, parse_segments

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FunnelStep:
    """Statistics for one funnel step.

    Attributes
    ----------
    step:
        Step name.
    index:
        0-based position in the funnel.
    users:
        Distinct customers with an event matching the step.
    conversions:
        Customers present at this step and the previous one (all ``users``
        for the first step).
    conversion_rate:
        ``conversions / users at the previous step * 100`` (100 for a
        non-empty first step).
    dropoff_rate:
        ``100 - conversion_rate`` once the previous step has users; 0 for
        the first step.
    """

    step: str
    index: int
    users: int
    conversions: int
    conversion_rate: float
    dropoff_rate: float

    def as_dict(self) -> dict[str, Any]:
        return dict(vars(self))


@dataclass(frozen=True)
class FunnelAnalysis:
    steps: tuple[str, ...]
    date_range: DateRange
    per_step: tuple[FunnelStep, ...]
    total_conversion_rate: float
    biggest_dropoff: FunnelStep | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "steps": list(self.steps),
            "date_range": self.date_range.as_dict(),
            "per_step": [step.as_dict() for step in self.per_step],
            "total_conversion_rate": self.total_conversion_rate,
            "biggest_dropoff": self.biggest_dropoff.as_dict() if self.biggest_dropoff else None,
        }


def validate_steps(steps: Iterable[str]) -> tuple[str, ...]:
    """Return cleaned step names.

    Raises
    ------
    InvalidFunnelDefinition
        If there are no steps or a step name is blank.
    """
    if isinstance(steps, str):
        raise InvalidFunnelDefinition("Funnel steps must be a sequence of names, not a string")
    cleaned = tuple(str(step).strip() for step in (steps or ()))
    if not cleaned:
        raise InvalidFunnelDefinition("Funnel requires at least one step")
    if any(not step for step in cleaned):
        raise InvalidFunnelDefinition("Funnel step names must be non-empty", {"steps": list(cleaned)})
    return cleaned


def event_step_names(event: AnalyticsEvent) -> set[str]:
    names = {event.event_type.value}
    if event.properties.conversion_step:
        names.add(event.properties.conversion_step)
    if event.properties.funnel_stage:
        names.add(event.properties.funnel_stage)
    return names


def compute_funnel(
    events: Iterable[AnalyticsEvent], steps: Sequence[str]
) -> tuple[list[FunnelStep], float, FunnelStep | None]:
    """Pure funnel computation over ``events``.

    Returns
    -------
    tuple
        ``(per_step, total_conversion_rate, biggest_dropoff)``.
    """
    steps = validate_steps(steps)
    users_at_step: list[set[str]] = [set() for _ in steps]
    positions: dict[str, list[int]] = {}
    for idx, name in enumerate(steps):
        positions.setdefault(name, []).append(idx)

    for event in events:
        for name in event_step_names(event):
            for idx in positions.get(name, ()):
                users_at_step[idx].add(event.customer_id)

    per_step: list[FunnelStep] = []
    for idx, name in enumerate(steps):
        users = users_at_step[idx]
        if idx == 0:
            converted = len(users)
            rate = 100.0 if users else 0.0
            dropoff = 0.0
        else:
            previous = users_at_step[idx - 1]
            converted = len(users & previous)
            rate = percentage(converted, len(previous))
            dropoff = round(100.0 - rate, 2) if previous else 0.0
        per_step.append(
            FunnelStep(
                step=name,
                index=idx,
                users=len(users),
                conversions=converted,
                conversion_rate=rate,
                dropoff_rate=dropoff,
            )
        )

    total = percentage(per_step[-1].conversions, per_step[0].users)
    biggest = None
    for step in per_step[1:]:
        if biggest is None or step.dropoff_rate > biggest.dropoff_rate:
            biggest = step
    return per_step, total, biggest


def analyze_funnel(
    store: EventStore,
    steps: Sequence[str],
    date_range: DateRange | None = None,
    segments: SegmentFilter | Sequence[str] | None = None,
    *,
    deadline: Deadline | None = None,
    now: datetime | None = None,
) -> FunnelAnalysis:
    """Analyse ``steps`` over the events in ``date_range``.

    An event reaches a step when its ``conversionStep`` property, its
    ``funnelStage`` property or its event type equals the step name, so
    tagged and untagged events both count. A funnel of event type names
    therefore works on events that carry no funnel properties at all.

    Raises
    ------
    InvalidFunnelDefinition
        If ``steps`` is empty or contains blank names.
    InvalidRange
        If ``date_range`` is inverted (raised when the range is built).
    """
    cleaned = validate_steps(steps)
    segment_filter = parse_segments(segments)
    window = resolve_range(date_range, now)

    events = store.find(EventQuery.within(window, order=SortOrder.ASC), deadline=deadline)
    events = segment_filter.apply(events)
    check_deadline(deadline, "funnel analysis")

    per_step, total, biggest = compute_funnel(events, cleaned)
    logger.debug("Funnel %s over %d events: total %.2f%%", list(cleaned), len(events), total)
    return FunnelAnalysis(
        steps=cleaned,
        date_range=window,
        per_step=tuple(per_step),
        total_conversion_rate=total,
        biggest_dropoff=biggest,
    )
