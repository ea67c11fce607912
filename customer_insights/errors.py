"""Error taxonomy for the customer insights engine.

Every failure the core can report to a caller is one of the classes below.
Input-shape errors also subclass :class:`ValueError` so callers that only
care about "bad input" can catch the builtin, mirroring how the rest of the
library signals validation failures.
"""

from __future__ import annotations

from typing import Any, Mapping


class InsightsError(Exception):
    """Base class for all errors raised by the insights engine."""

    def __init__(self, message: str, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})

    def __str__(self) -> str:
        if not self.details:
            return self.message
        return f"{self.message} {self.details}"


class ValidationError(InsightsError, ValueError):
    """Malformed event payload or query parameter, rejected before persistence."""


class MissingRequiredField(ValidationError):
    """A required event field is absent or outside its allowed enumeration."""


class DuplicateEventId(InsightsError):
    """An event with the same ``event_id`` already exists in the store."""


class InvalidRange(InsightsError, ValueError):
    """A date range whose start lies after its end."""


class InvalidFunnelDefinition(InsightsError, ValueError):
    """A funnel definition with no usable steps."""


class InvalidCohortType(InsightsError, ValueError):
    """A cohort granularity other than daily, weekly or monthly."""


class InvalidGranularity(InsightsError, ValueError):
    """A trend bucket granularity other than daily, weekly or monthly."""


class QueryTimeout(InsightsError, TimeoutError):
    """The caller's deadline elapsed before the operation completed."""


class StoreUnavailable(InsightsError, ConnectionError):
    """The underlying event store could not be reached."""


__all__ = [
    "InsightsError",
    "ValidationError",
    "MissingRequiredField",
    "DuplicateEventId",
    "InvalidRange",
    "InvalidFunnelDefinition",
    "InvalidCohortType",
    "InvalidGranularity",
    "QueryTimeout",
    "StoreUnavailable",
]
