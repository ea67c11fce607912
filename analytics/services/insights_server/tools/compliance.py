"""Data-retention compliance tools: expiry purge and customer erasure."""

from datetime import datetime

import structlog
from fastmcp import Context
from pydantic import BaseModel, Field

from analytics.services.insights_server.instance import mcp
from analytics.services.insights_server.metrics import record_events_deleted
from analytics.services.insights_server.state import get_runtime
from analytics.services.insights_server.tools._common import run_tool

logger = structlog.get_logger(__name__)


class CleanupExpiredDataRequest(BaseModel):
    as_of: datetime | None = Field(
        default=None, description="Cut-off; events expiring before it are deleted (defaults to now)"
    )


class CleanupExpiredDataResponse(BaseModel):
    deleted_count: int
    as_of: str
    duration_seconds: float


class EraseCustomerDataRequest(BaseModel):
    customer_id: str = Field(min_length=1, description="Customer whose events are deleted")


class EraseCustomerDataResponse(BaseModel):
    customer_id: str
    deleted_count: int


async def _cleanup_expired_data_impl(
    request: CleanupExpiredDataRequest, ctx: Context
) -> CleanupExpiredDataResponse:
    """Implementation of the retention purge."""
    runtime = get_runtime()

    await ctx.info("Purging expired events")
    report = await run_tool(
        "cleanup_expired_data", lambda: runtime.expiry.run_purge(request.as_of)
    )
    record_events_deleted(report.deleted_count, "expired")

    logger.info(
        "expired_data_cleaned", deleted_count=report.deleted_count, as_of=report.as_of.isoformat()
    )
    return CleanupExpiredDataResponse(**report.as_dict())


async def _erase_customer_data_impl(
    request: EraseCustomerDataRequest, ctx: Context
) -> EraseCustomerDataResponse:
    """Implementation of customer erasure."""
    runtime = get_runtime()

    deleted = await run_tool(
        "erase_customer_data", lambda: runtime.expiry.erase_customer(request.customer_id)
    )
    record_events_deleted(deleted, "erasure")

    logger.info("customer_data_erased", customer_id=request.customer_id, deleted_count=deleted)
    return EraseCustomerDataResponse(customer_id=request.customer_id, deleted_count=deleted)


@mcp.tool()
async def cleanup_expired_data(
    request: CleanupExpiredDataRequest, ctx: Context
) -> CleanupExpiredDataResponse:
    """
    Delete every event whose retention expiry has passed.

    Idempotent: running it again without new writes deletes nothing.
    """
    return await _cleanup_expired_data_impl(request, ctx)


@mcp.tool()
async def erase_customer_data(
    request: EraseCustomerDataRequest, ctx: Context
) -> EraseCustomerDataResponse:
    """
    Delete all events of one customer regardless of their retention expiry.
    """
    return await _erase_customer_data_impl(request, ctx)
