"""Conversion funnel tool."""

from datetime import datetime
from typing import Any

import structlog
from fastmcp import Context
from pydantic import BaseModel, Field

from customer_insights.analyses.funnel import analyze_funnel

from analytics.services.insights_server.instance import mcp
from analytics.services.insights_server.state import get_runtime
from analytics.services.insights_server.tools._common import date_range_from, run_tool

logger = structlog.get_logger(__name__)


class FunnelAnalysisRequest(BaseModel):
    """Request to analyse an ordered funnel."""

    steps: list[str] = Field(
        description=(
            "Ordered step names. A step matches an event by event type, "
            "conversion step or funnel stage."
        )
    )
    start_date: datetime | None = Field(
        default=None, description="Range start (defaults to 30 days before end)"
    )
    end_date: datetime | None = Field(default=None, description="Range end (defaults to now)")
    segments: list[str] = Field(default_factory=list, description="Segment tokens")


class FunnelAnalysisResponse(BaseModel):
    steps: list[str]
    date_range: dict[str, str]
    per_step: list[dict[str, Any]]
    total_conversion_rate: float
    biggest_dropoff: dict[str, Any] | None


async def _get_funnel_analysis_impl(
    request: FunnelAnalysisRequest, ctx: Context
) -> FunnelAnalysisResponse:
    """Implementation of funnel analysis."""
    runtime = get_runtime()
    deadline = runtime.new_deadline()
    date_range = date_range_from(request.start_date, request.end_date)

    await ctx.info(f"Analysing {len(request.steps)}-step funnel")
    funnel = await run_tool(
        "get_funnel_analysis",
        lambda: analyze_funnel(
            runtime.store, request.steps, date_range, request.segments, deadline=deadline
        ),
    )
    logger.info(
        "funnel_analyzed",
        steps=list(funnel.steps),
        total_conversion_rate=funnel.total_conversion_rate,
        biggest_dropoff=funnel.biggest_dropoff.step if funnel.biggest_dropoff else None,
    )
    return FunnelAnalysisResponse(**funnel.as_dict())


@mcp.tool()
async def get_funnel_analysis(
    request: FunnelAnalysisRequest, ctx: Context
) -> FunnelAnalysisResponse:
    """
    Ordered conversion funnel over a date range.

    A customer reaches step N only after reaching steps 1..N-1 in order.
    Each step reports users, conversion rate from the previous step and
    drop-off; the biggest drop-off and the end-to-end conversion rate are
    returned too.
    """
    return await _get_funnel_analysis_impl(request, ctx)
