"""Acquisition cohorts and period retention.

Customers are grouped by the calendar bucket (day, ISO week starting
Monday, or month) containing their first-ever event. For each cohort and
each requested retention period *p*, retention is the share of cohort
members with at least one event in the bucket starting *p* buckets after
the cohort's own bucket.

Two retention policies are supported:

- :attr:`RetentionPolicy.ANY_EVENT` (default): any activity in bucket *p*
  counts, so lapsed customers who return raise later-period retention.
- :attr:`RetentionPolicy.UNBROKEN`: a member counts at period *p* only if
  active in every bucket ``1..p``; retention curves never increase.

Quick Start
-----------
>>> from datetime import datetime, timezone
>>> from customer_insights.foundation import InMemoryEventStore
>>> result = analyze_cohorts(
...     InMemoryEventStore(), "monthly", [1, 3],
...     now=datetime(2024, 6, 1, tzinfo=timezone.utc),
... )
>>> result.per_cohort
()
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from customer_insights.analyses._math import quantize
from customer_insights.errors import InvalidCohortType
from customer_insights.foundation.deadline import Deadline, check_deadline
from customer_insights.foundation.event_contract import AnalyticsEvent
from customer_insights.foundation.event_store import EventQuery, EventStore, SortOrder
from customer_insights.foundation.periods import (
    Granularity,
    bucket_label,
    ensure_utc,
    shift,
    truncate,
    utc_now,
)

logger = logging.getLogger(__name__)

#: Periods reported when the caller does not choose any.
DEFAULT_RETENTION_PERIODS = (1, 3, 6, 12)

#: Default look-back, in cohort units, when no start date is given.
DEFAULT_LOOKBACK_PERIODS = 12


class RetentionPolicy(str, Enum):
    ANY_EVENT = "any_event"
    UNBROKEN = "unbroken"


@dataclass(frozen=True)
class CohortRetention:
    """Retention of one acquisition cohort.

    Attributes
    ----------
    cohort_start:
        Start of the acquisition bucket.
    label:
        Bucket label (``2024-03``, ``2024-W11``, ``2024-03-14``).
    size:
        Number of customers acquired in the bucket.
    retention:
        Period → fraction of members retained, in ``[0, 1]``. ``None`` when
        the period's bucket has not started yet.
    """

    cohort_start: datetime
    label: str
    size: int
    retention: Mapping[int, float | None]

    def as_dict(self) -> dict[str, Any]:
        return {
            "cohort_start": self.cohort_start.isoformat(),
            "label": self.label,
            "size": self.size,
            "retention": {str(period): value for period, value in self.retention.items()},
        }


@dataclass(frozen=True)
class CohortAnalysis:
    cohort_type: Granularity
    retention_periods: tuple[int, ...]
    start_date: datetime
    policy: RetentionPolicy
    per_cohort: tuple[CohortRetention, ...]
    average_retention: Mapping[int, float | None]

    def as_dict(self) -> dict[str, Any]:
        return {
            "cohort_type": self.cohort_type.value,
            "retention_periods": list(self.retention_periods),
            "start_date": self.start_date.isoformat(),
            "policy": self.policy.value,
            "per_cohort": [cohort.as_dict() for cohort in self.per_cohort],
            "average_retention": {
                str(period): value for period, value in self.average_retention.items()
            },
        }


def parse_cohort_type(value: Granularity | str) -> Granularity:
    if isinstance(value, Granularity):
        return value
    try:
        return Granularity(str(value).strip().lower())
    except ValueError:
        raise InvalidCohortType(
            f"Unsupported cohort type: {value!r}",
            {"supported": [item.value for item in Granularity]},
        ) from None


def _validate_periods(periods: Iterable[int] | None) -> tuple[int, ...]:
    if periods is None:
        return DEFAULT_RETENTION_PERIODS
    cleaned: list[int] = []
    for period in periods:
        if isinstance(period, bool) or not isinstance(period, int) or period < 0:
            raise ValueError(f"retention periods must be non-negative integers, got {period!r}")
        if period not in cleaned:
            cleaned.append(period)
    if not cleaned:
        raise ValueError("At least one retention period is required")
    return tuple(cleaned)


def compute_cohorts(
    events: Iterable[AnalyticsEvent],
    cohort_type: Granularity | str,
    retention_periods: Sequence[int],
    start_date: datetime,
    now: datetime,
    policy: RetentionPolicy = RetentionPolicy.ANY_EVENT,
) -> tuple[list[CohortRetention], dict[int, float | None]]:
    """Pure cohort computation over a customer's complete event history.

    ``events`` must include each customer's first-ever event, otherwise
    acquisition dates are wrong.
    """
    cohort_type = parse_cohort_type(cohort_type)
    policy = RetentionPolicy(policy)
    start_date = ensure_utc(start_date)
    now = ensure_utc(now)

    first_seen: dict[str, datetime] = {}
    active: dict[str, set[datetime]] = defaultdict(set)
    for event in events:
        previous = first_seen.get(event.customer_id)
        if previous is None or event.timestamp < previous:
            first_seen[event.customer_id] = event.timestamp
        active[event.customer_id].add(truncate(event.timestamp, cohort_type))

    members: dict[datetime, list[str]] = defaultdict(list)
    for customer_id, first in first_seen.items():
        if first >= start_date:
            members[truncate(first, cohort_type)].append(customer_id)

    per_cohort: list[CohortRetention] = []
    reached: dict[int, list[float]] = {period: [] for period in retention_periods}
    for cohort_start in sorted(members):
        cohort = members[cohort_start]
        retention: dict[int, float | None] = {}
        for period in retention_periods:
            target = shift(cohort_start, cohort_type, period)
            if target > now:
                retention[period] = None
                continue
            if policy is RetentionPolicy.UNBROKEN:
                required = [shift(cohort_start, cohort_type, k) for k in range(1, period + 1)]
                retained = sum(
                    1 for cid in cohort if all(bucket in active[cid] for bucket in required)
                )
            else:
                retained = sum(1 for cid in cohort if target in active[cid])
            value = quantize(retained / len(cohort))
            retention[period] = value
            reached[period].append(value)
        per_cohort.append(
            CohortRetention(
                cohort_start=cohort_start,
                label=bucket_label(cohort_start, cohort_type),
                size=len(cohort),
                retention=retention,
            )
        )

    average = {
        period: quantize(sum(values) / len(values)) if values else None
        for period, values in reached.items()
    }
    return per_cohort, average


def analyze_cohorts(
    store: EventStore,
    cohort_type: Granularity | str = Granularity.MONTHLY,
    retention_periods: Sequence[int] | None = None,
    start_date: datetime | None = None,
    *,
    policy: RetentionPolicy | str = RetentionPolicy.ANY_EVENT,
    now: datetime | None = None,
    deadline: Deadline | None = None,
) -> CohortAnalysis:
    """Build acquisition cohorts and their retention at each period.

    Parameters
    ----------
    store:
        Event store to read from.
    cohort_type:
        ``daily``, ``weekly`` or ``monthly``.
    retention_periods:
        Offsets, in cohort units, at which to measure retention. Defaults to
        :data:`DEFAULT_RETENTION_PERIODS`.
    start_date:
        Earliest acquisition time considered. Defaults to
        :data:`DEFAULT_LOOKBACK_PERIODS` cohort units before ``now``.
    policy:
        How re-activation is counted, see :class:`RetentionPolicy`.

    Raises
    ------
    InvalidCohortType
        If ``cohort_type`` is not daily, weekly or monthly.
    """
    cohort_type = parse_cohort_type(cohort_type)
    periods = _validate_periods(retention_periods)
    policy = RetentionPolicy(policy)
    now = ensure_utc(now) if now is not None else utc_now()
    if start_date is None:
        start_date = shift(truncate(now, cohort_type), cohort_type, -DEFAULT_LOOKBACK_PERIODS)
    start_date = ensure_utc(start_date)

    # full history up to now: acquisition needs each customer's first-ever event
    events = store.find(EventQuery(end=now, order=SortOrder.ASC), deadline=deadline)
    check_deadline(deadline, "cohort analysis")

    per_cohort, average = compute_cohorts(events, cohort_type, periods, start_date, now, policy)
    logger.debug("Built %d %s cohorts from %d events", len(per_cohort), cohort_type.value, len(events))
    return CohortAnalysis(
        cohort_type=cohort_type,
        retention_periods=periods,
        start_date=start_date,
        policy=policy,
        per_cohort=tuple(per_cohort),
        average_retention=average,
    )
