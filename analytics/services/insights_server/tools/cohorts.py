"""Cohort retention tool"""

from datetime import datetime
from typing import Any

import structlog
from fastmcp import Context
from pydantic import BaseModel, Field

from customer_insights.analyses.cohorts import analyze_cohorts

from analytics.services.insights_server.instance import mcp
from analytics.services.insights_server.state import get_runtime
from analytics.services.insights_server.tools._common import run_tool

logger = structlog.get_logger(__name__)


class CohortAnalysisRequest(BaseModel):
    """Request for acquisition cohorts and their retention."""

    cohort_type: str = Field(default="monthly", description="daily, weekly or monthly")
    retention_periods: list[int] | None = Field(
        default=None, description="Offsets in cohort units (defaults to 1, 3, 6, 12)"
    )
    start_date: datetime | None = Field(
        default=None, description="Earliest acquisition date (defaults to 12 cohort units ago)"
    )
    policy: str = Field(
        default="any_event",
        description="any_event: active in the period; unbroken: active in every period up to it",
    )


class CohortAnalysisResponse(BaseModel):
    cohort_type: str
    retention_periods: list[int]
    start_date: str
    policy: str
    per_cohort: list[dict[str, Any]]
    average_retention: dict[str, float | None]


async def _get_cohort_analysis_impl(
    request: CohortAnalysisRequest, ctx: Context
) -> CohortAnalysisResponse:
    """Implementation of cohort analysis."""
    runtime = get_runtime()
    deadline = runtime.new_deadline()

    await ctx.info(f"Building {request.cohort_type} cohorts")
    analysis = await run_tool(
        "get_cohort_analysis",
        lambda: analyze_cohorts(
            runtime.store,
            request.cohort_type,
            request.retention_periods,
            request.start_date,
            policy=request.policy,
            deadline=deadline,
        ),
    )
    await ctx.info(f"Built {len(analysis.per_cohort)} cohorts")
    logger.info(
        "cohorts_analyzed",
        cohort_type=analysis.cohort_type.value,
        cohorts=len(analysis.per_cohort),
    )
    return CohortAnalysisResponse(**analysis.as_dict())


@mcp.tool()
async def get_cohort_analysis(
    request: CohortAnalysisRequest, ctx: Context
) -> CohortAnalysisResponse:
    """
    Group customers by the period of their first event and measure how many
    are active again 1, 3, 6 and 12 periods later (or at custom offsets).

    Periods a cohort has not reached yet are reported as null.
    """
    return await _get_cohort_analysis_impl(request, ctx)
