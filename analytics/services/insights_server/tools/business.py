"""Business-wide tools: KPI dashboard, real-time snapshot and summary."""

from datetime import datetime
from typing import Any

import structlog
from fastmcp import Context
from pydantic import BaseModel, Field

from customer_insights.analyses.business import analytics_summary, business_analytics
from customer_insights.analyses.realtime import real_time_snapshot

from analytics.services.insights_server.instance import mcp
from analytics.services.insights_server.state import get_runtime
from analytics.services.insights_server.tools._common import date_range_from, run_tool

logger = structlog.get_logger(__name__)


class BusinessAnalyticsRequest(BaseModel):
    """Request for the business dashboard."""

    start_date: datetime | None = Field(
        default=None, description="Range start (defaults to 30 days before end)"
    )
    end_date: datetime | None = Field(default=None, description="Range end (defaults to now)")
    granularity: str = Field(default="daily", description="Trend buckets: daily, weekly or monthly")
    segments: list[str] = Field(
        default_factory=list,
        description="Segment tokens such as 'customerType:Business' or 'country:US'",
    )


class BusinessAnalyticsResponse(BaseModel):
    date_range: dict[str, str]
    granularity: str
    segments: dict[str, list[str]]
    overview: dict[str, Any]
    trends: list[dict[str, Any]]
    conversion: dict[str, Any]
    demographics: dict[str, Any]
    performance: dict[str, Any]
    revenue: dict[str, Any]
    generated_at: str


class RealtimeAnalyticsRequest(BaseModel):
    window_minutes: int | None = Field(
        default=None, gt=0, description="Trailing window (defaults to the server setting)"
    )


class RealtimeAnalyticsResponse(BaseModel):
    timestamp: str
    window_minutes: int
    active_users: int
    current_events: int
    live_conversions: int
    system_health: dict[str, Any]


class AnalyticsSummaryRequest(BaseModel):
    days: int = Field(default=30, gt=0, le=3650, description="Trailing window in days")


class AnalyticsSummaryResponse(BaseModel):
    timeframe: str
    business: dict[str, Any]
    realtime: dict[str, Any]


async def _get_business_analytics_impl(
    request: BusinessAnalyticsRequest, ctx: Context
) -> BusinessAnalyticsResponse:
    """Implementation of the business dashboard."""
    runtime = get_runtime()
    deadline = runtime.new_deadline()
    date_range = date_range_from(request.start_date, request.end_date)

    await ctx.info(f"Computing business analytics ({request.granularity})")
    report = await run_tool(
        "get_business_analytics",
        lambda: business_analytics(
            runtime.store,
            date_range,
            request.granularity,
            request.segments,
            deadline=deadline,
        ),
    )
    logger.info(
        "business_analytics_generated",
        total_events=report.overview.total_events,
        buckets=len(report.trends),
    )
    return BusinessAnalyticsResponse(**report.as_dict())


async def _get_realtime_analytics_impl(
    request: RealtimeAnalyticsRequest, ctx: Context
) -> RealtimeAnalyticsResponse:
    """Implementation of the real-time snapshot."""
    runtime = get_runtime()
    deadline = runtime.new_deadline()
    window = request.window_minutes or runtime.config.realtime_window_minutes

    snapshot = await run_tool(
        "get_realtime_analytics",
        lambda: real_time_snapshot(runtime.store, window, deadline=deadline),
    )
    return RealtimeAnalyticsResponse(**snapshot.as_dict())


async def _get_analytics_summary_impl(
    request: AnalyticsSummaryRequest, ctx: Context
) -> AnalyticsSummaryResponse:
    """Implementation of the trailing summary."""
    runtime = get_runtime()
    deadline = runtime.new_deadline()

    summary = await run_tool(
        "get_analytics_summary",
        lambda: analytics_summary(
            runtime.store,
            request.days,
            window_minutes=runtime.config.realtime_window_minutes,
            deadline=deadline,
        ),
    )
    return AnalyticsSummaryResponse(**summary.as_dict())


@mcp.tool()
async def get_business_analytics(
    request: BusinessAnalyticsRequest, ctx: Context
) -> BusinessAnalyticsResponse:
    """
    Business KPI dashboard over a date range.

    Includes an overview, gap-free trend buckets at the requested
    granularity, the search-to-payment conversion summary, demographics,
    performance and revenue breakdowns. Segment tokens narrow the events
    considered.
    """
    return await _get_business_analytics_impl(request, ctx)


@mcp.tool()
async def get_realtime_analytics(
    request: RealtimeAnalyticsRequest, ctx: Context
) -> RealtimeAnalyticsResponse:
    """
    Activity in the trailing window: active users, events, live conversions
    and a system health verdict from the error rate.
    """
    return await _get_realtime_analytics_impl(request, ctx)


@mcp.tool()
async def get_analytics_summary(
    request: AnalyticsSummaryRequest, ctx: Context
) -> AnalyticsSummaryResponse:
    """
    Business analytics over the trailing ``days`` plus a real-time snapshot.
    """
    return await _get_analytics_summary_impl(request, ctx)
