"""Plumbing shared by every insights tool.

``run_tool`` takes a zero-argument callable that performs the blocking
core work and runs it in a worker thread, through the event-store circuit
breaker, inside a tracing span, while recording Prometheus metrics.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import datetime
from typing import TypeVar

import structlog
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from customer_insights.errors import QueryTimeout
from customer_insights.foundation import DateRange

from analytics.services.insights_server.metrics import (
    decrement_active_tool_calls,
    increment_active_tool_calls,
    record_tool_call,
)
from analytics.services.insights_server.resilience import (
    EVENT_STORE_BREAKER,
    call_through_breaker,
    get_circuit_breaker,
)

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")


def _outcome(exc: BaseException) -> str:
    if isinstance(exc, QueryTimeout):
        return "timeout"
    if isinstance(exc, ValueError):
        return "rejected"
    return "failure"


async def run_tool(tool: str, work: Callable[[], T]) -> T:
    """Run blocking ``work`` for ``tool`` off the event loop."""
    breaker = get_circuit_breaker(EVENT_STORE_BREAKER)
    started = time.perf_counter()
    increment_active_tool_calls()
    with tracer.start_as_current_span(f"insights.{tool}") as span:
        span.set_attribute("insights.tool", tool)
        try:
            result = await asyncio.to_thread(call_through_breaker, breaker, work)
        except Exception as exc:
            status = _outcome(exc)
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            record_tool_call(tool, time.perf_counter() - started, status)
            logger.warning("tool_failed", tool=tool, status=status, error=str(exc))
            raise
        finally:
            decrement_active_tool_calls()
    record_tool_call(tool, time.perf_counter() - started, "success")
    return result


def date_range_from(start: datetime | None, end: datetime | None) -> DateRange | None:
    """Build a DateRange from optional bounds.

    Both unset means "use the default window"; one unset bound is filled
    in from the default trailing window.
    """
    if start is None and end is None:
        return None
    if end is None:
        return DateRange(start, DateRange.default().end)
    if start is None:
        return DateRange.default(now=end)
    return DateRange(start, end)
