"""Per-call deadlines for store access and query evaluation."""

from __future__ import annotations

import time
from dataclasses import dataclass

from customer_insights.errors import QueryTimeout


@dataclass(frozen=True)
class Deadline:
    """Absolute point on the monotonic clock after which work must stop.

    Attributes
    ----------
    expires_at:
        Value of :func:`time.monotonic` at which the deadline elapses.
    timeout_seconds:
        The relative timeout the deadline was created from, kept for error
        reporting.
    """

    expires_at: float
    timeout_seconds: float

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        if seconds <= 0:
            raise ValueError(f"timeout must be positive, got {seconds}")
        return cls(expires_at=time.monotonic() + seconds, timeout_seconds=seconds)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def check(self, operation: str) -> None:
        """Raise :class:`QueryTimeout` if the deadline has elapsed."""
        if self.expired():
            raise QueryTimeout(
                f"{operation} exceeded its deadline",
                {"timeout_seconds": self.timeout_seconds},
            )


def check_deadline(deadline: Deadline | None, operation: str) -> None:
    """Check ``deadline`` when one was supplied."""
    if deadline is not None:
        deadline.check(operation)
