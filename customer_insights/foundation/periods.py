"""Date ranges and calendar buckets shared by the analytical engines.

All timestamps handled by the engine are timezone-aware UTC datetimes.
Bucket boundaries follow the calendar:

- ``daily`` buckets start at midnight UTC
- ``weekly`` buckets start on Monday at midnight UTC
- ``monthly`` buckets start on the first day of the month at midnight UTC

Quick Start
-----------
>>> from datetime import datetime, timezone
>>> from customer_insights.foundation.periods import Granularity, truncate
>>> truncate(datetime(2024, 3, 14, 9, 30, tzinfo=timezone.utc), Granularity.MONTHLY)
datetime.datetime(2024, 3, 1, 0, 0, tzinfo=datetime.timezone.utc)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from customer_insights.errors import InvalidGranularity, InvalidRange

#: Length of the default analysis window used when callers omit a date range.
DEFAULT_WINDOW_DAYS = 30


class Granularity(str, Enum):
    """Supported bucket granularities for trends and cohorts."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value: "Granularity | str") -> "Granularity":
        if isinstance(value, Granularity):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidGranularity(
                f"Unsupported granularity: {value!r}",
                {"supported": [item.value for item in cls]},
            ) from None


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime.

    Naive datetimes are interpreted as UTC; aware datetimes are converted.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: object) -> datetime:
    """Parse an ISO 8601 string (``Z`` suffix allowed) or datetime into UTC.

    Raises
    ------
    ValueError
        If the value is neither a datetime nor a parsable ISO string.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value.strip():
        return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    raise ValueError(f"Cannot interpret {value!r} as a timestamp")


@dataclass(frozen=True)
class DateRange:
    """Closed time interval ``[start, end]`` in UTC.

    Attributes
    ----------
    start:
        Inclusive lower bound.
    end:
        Inclusive upper bound.
    """

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))
        if self.start > self.end:
            raise InvalidRange(
                "Date range start must not be after its end",
                {"start": self.start.isoformat(), "end": self.end.isoformat()},
            )

    @classmethod
    def trailing(
        cls,
        *,
        days: float = 0,
        minutes: float = 0,
        now: datetime | None = None,
    ) -> "DateRange":
        """Window of the given length ending at ``now``."""
        end = ensure_utc(now) if now is not None else utc_now()
        return cls(start=end - timedelta(days=days, minutes=minutes), end=end)

    @classmethod
    def default(cls, now: datetime | None = None) -> "DateRange":
        """The last :data:`DEFAULT_WINDOW_DAYS` days ending at ``now``."""
        return cls.trailing(days=DEFAULT_WINDOW_DAYS, now=now)

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts <= self.end

    def as_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def resolve_range(date_range: DateRange | None, now: datetime | None = None) -> DateRange:
    """Return ``date_range`` or the default window when it is ``None``."""
    return date_range if date_range is not None else DateRange.default(now)


def truncate(ts: datetime, granularity: Granularity | str) -> datetime:
    """Round ``ts`` down to the start of its bucket."""
    granularity = Granularity.parse(granularity)
    ts = ensure_utc(ts)
    day_start = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity is Granularity.DAILY:
        return day_start
    if granularity is Granularity.WEEKLY:
        return day_start - timedelta(days=day_start.weekday())
    return day_start.replace(day=1)


def shift(bucket_start: datetime, granularity: Granularity | str, periods: int) -> datetime:
    """Move a bucket start forward (or backward) by ``periods`` buckets."""
    granularity = Granularity.parse(granularity)
    if granularity is Granularity.DAILY:
        return bucket_start + timedelta(days=periods)
    if granularity is Granularity.WEEKLY:
        return bucket_start + timedelta(weeks=periods)

    month_index = bucket_start.year * 12 + (bucket_start.month - 1) + periods
    year, month = divmod(month_index, 12)
    return bucket_start.replace(year=year, month=month + 1, day=1)


def bucket_label(bucket_start: datetime, granularity: Granularity | str) -> str:
    """Human-readable identifier for a bucket (``2024-03-14``, ``2024-W11``, ``2024-03``)."""
    granularity = Granularity.parse(granularity)
    if granularity is Granularity.DAILY:
        return bucket_start.strftime("%Y-%m-%d")
    if granularity is Granularity.WEEKLY:
        iso_year, iso_week, _ = bucket_start.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    return bucket_start.strftime("%Y-%m")


def buckets_between(start: datetime, end: datetime, granularity: Granularity | str) -> int:
    """Number of whole buckets from the bucket of ``start`` to the bucket of ``end``."""
    granularity = Granularity.parse(granularity)
    first = truncate(start, granularity)
    last = truncate(end, granularity)
    if granularity is Granularity.DAILY:
        return (last - first).days
    if granularity is Granularity.WEEKLY:
        return (last - first).days // 7
    return (last.year - first.year) * 12 + (last.month - first.month)
