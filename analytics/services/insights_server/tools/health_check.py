"""Health Check Tool

Reports whether the insights server can serve requests. It checks:
1. Event store reachability (ping) and approximate record count
2. Circuit breaker states
3. Outcome of the most recent retention purge

Overall status is 'healthy' when the store answers and every breaker is
closed, 'degraded' when a breaker is open or half-open, and 'unhealthy'
when the store is unreachable.
"""

import asyncio
import time

import structlog
from fastmcp import Context
from pydantic import BaseModel, Field

from customer_insights.errors import StoreUnavailable
from customer_insights.foundation.periods import utc_now

from analytics.services.insights_server.instance import VERSION, mcp
from analytics.services.insights_server.resilience import get_circuit_breaker_status
from analytics.services.insights_server.state import get_runtime

logger = structlog.get_logger(__name__)

_SERVER_START_TIME = time.time()


class HealthCheckResponse(BaseModel):
    """Health check response with component status."""

    status: str = Field(description="Overall status: 'healthy', 'degraded' or 'unhealthy'")
    timestamp: str = Field(description="ISO timestamp of the check")
    version: str
    checks: dict[str, str] = Field(description="Individual component checks")
    uptime_seconds: float
    event_count: int | None = Field(
        default=None, description="Approximate number of stored events (None if unreachable)"
    )
    circuit_breakers: dict[str, dict] = Field(default_factory=dict)
    last_purge: dict | None = Field(default=None, description="Most recent retention purge")


def _check_store(runtime) -> tuple[bool, int | None]:
    if not runtime.store.ping():
        return False, None
    try:
        return True, runtime.store.count()
    except StoreUnavailable:
        return False, None


async def _health_check_impl(ctx: Context) -> HealthCheckResponse:
    """Implementation of the health check."""
    logger.info("health_check_starting")
    runtime = get_runtime()
    checks: dict[str, str] = {}
    status = "healthy"

    reachable, event_count = await asyncio.to_thread(_check_store, runtime)
    if reachable:
        checks["event_store"] = "healthy"
    else:
        checks["event_store"] = "unreachable"
        status = "unhealthy"

    breakers = get_circuit_breaker_status()
    open_breakers = sorted(name for name, info in breakers.items() if info["state"] != "closed")
    if open_breakers:
        checks["circuit_breakers"] = f"not closed: {', '.join(open_breakers)}"
        if status == "healthy":
            status = "degraded"
    else:
        checks["circuit_breakers"] = "healthy"

    report = runtime.expiry.last_report
    checks["retention_purge"] = "never run" if report is None else "ok"

    uptime_seconds = time.time() - _SERVER_START_TIME
    logger.info("health_check_complete", status=status, checks=checks)

    return HealthCheckResponse(
        status=status,
        timestamp=utc_now().isoformat(),
        version=VERSION,
        checks=checks,
        uptime_seconds=uptime_seconds,
        event_count=event_count,
        circuit_breakers=breakers,
        last_purge=report.as_dict() if report else None,
    )


@mcp.tool()
async def health_check(ctx: Context) -> HealthCheckResponse:
    """
    Check health of the insights server and its event store.

    Returns:
        HealthCheckResponse with overall status, per-component checks, the
        approximate event count, circuit breaker states and the last purge
    """
    return await _health_check_impl(ctx)
