"""Per-customer tools: insight dashboard, journey and predictive scores."""

from datetime import datetime
from typing import Any

import structlog
from fastmcp import Context
from pydantic import BaseModel, Field

from customer_insights.analyses.customer import customer_insights
from customer_insights.analyses.predictive import predictive_insights

from analytics.services.insights_server.instance import mcp
from analytics.services.insights_server.state import get_runtime
from analytics.services.insights_server.tools._common import date_range_from, run_tool

logger = structlog.get_logger(__name__)


class CustomerInsightsRequest(BaseModel):
    """Request for one customer's insight dashboard."""

    customer_id: str = Field(min_length=1, description="Customer identifier")
    start_date: datetime | None = Field(
        default=None, description="Range start (defaults to 30 days before end)"
    )
    end_date: datetime | None = Field(default=None, description="Range end (defaults to now)")
    include_journey: bool = Field(
        default=True, description="Include the chronological event journey"
    )
    segments: list[str] = Field(
        default_factory=list,
        description="Segment tokens such as 'customerType:Premium' or 'platform:Mobile'",
    )


class CustomerInsightsResponse(BaseModel):
    customer_id: str
    date_range: dict[str, str]
    overview: dict[str, Any]
    behavior: list[dict[str, Any]]
    engagement: dict[str, Any]
    preferences: dict[str, list[dict[str, Any]]]
    journey: list[dict[str, Any]]
    generated_at: str


class CustomerJourneyRequest(BaseModel):
    """Request for a customer's chronological journey."""

    customer_id: str = Field(min_length=1, description="Customer identifier")
    session_id: str | None = Field(default=None, description="Restrict to one session")
    limit: int = Field(default=50, ge=1, le=1000, description="Maximum steps returned")


class CustomerJourneyResponse(BaseModel):
    customer_id: str
    session_id: str | None
    journey: list[dict[str, Any]] = Field(description="Oldest step first")
    total_events: int = Field(description="Steps available before the limit was applied")


class PredictiveInsightsRequest(BaseModel):
    customer_id: str = Field(min_length=1, description="Customer identifier")


class PredictiveInsightsResponse(BaseModel):
    customer_id: str
    churn_risk: dict[str, Any]
    next_actions: dict[str, Any]
    value_score: dict[str, Any]
    recommendations: list[dict[str, Any]]
    confidence: float
    generated_at: str


async def _get_customer_insights_impl(
    request: CustomerInsightsRequest, ctx: Context
) -> CustomerInsightsResponse:
    """Implementation of the customer dashboard."""
    runtime = get_runtime()
    deadline = runtime.new_deadline()
    date_range = date_range_from(request.start_date, request.end_date)

    await ctx.info(f"Building insights for customer {request.customer_id}")
    insights = await run_tool(
        "get_customer_insights",
        lambda: customer_insights(
            runtime.store,
            request.customer_id,
            date_range,
            include_journey=request.include_journey,
            segments=request.segments,
            deadline=deadline,
        ),
    )
    logger.info(
        "customer_insights_generated",
        customer_id=request.customer_id,
        total_events=insights.overview.total_events,
    )
    return CustomerInsightsResponse(**insights.as_dict())


async def _get_customer_journey_impl(
    request: CustomerJourneyRequest, ctx: Context
) -> CustomerJourneyResponse:
    """Implementation of the journey lookup."""
    runtime = get_runtime()
    deadline = runtime.new_deadline()

    steps = await run_tool(
        "get_customer_journey",
        lambda: runtime.store.query_journey(
            request.customer_id, request.session_id, deadline=deadline
        ),
    )
    return CustomerJourneyResponse(
        customer_id=request.customer_id,
        session_id=request.session_id,
        journey=[step.as_dict() for step in steps[: request.limit]],
        total_events=len(steps),
    )


async def _get_predictive_insights_impl(
    request: PredictiveInsightsRequest, ctx: Context
) -> PredictiveInsightsResponse:
    """Implementation of the predictive scorer."""
    runtime = get_runtime()
    deadline = runtime.new_deadline()

    insights = await run_tool(
        "get_predictive_insights",
        lambda: predictive_insights(runtime.store, request.customer_id, deadline=deadline),
    )
    logger.info(
        "predictive_insights_generated",
        customer_id=request.customer_id,
        churn_risk=insights.churn_risk.score,
        value_segment=insights.value_score.value_segment,
    )
    return PredictiveInsightsResponse(**insights.as_dict())


@mcp.tool()
async def get_customer_insights(
    request: CustomerInsightsRequest, ctx: Context
) -> CustomerInsightsResponse:
    """
    Customer insight dashboard over a date range.

    Returns the customer's overview (event and session counts, first and
    last seen), per-event-type behaviour, engagement averages, top
    preferences and, optionally, the chronological journey.
    """
    return await _get_customer_insights_impl(request, ctx)


@mcp.tool()
async def get_customer_journey(
    request: CustomerJourneyRequest, ctx: Context
) -> CustomerJourneyResponse:
    """
    A customer's events in chronological order, optionally for one session.
    """
    return await _get_customer_journey_impl(request, ctx)


@mcp.tool()
async def get_predictive_insights(
    request: PredictiveInsightsRequest, ctx: Context
) -> PredictiveInsightsResponse:
    """
    Churn risk, likely next actions, value segment and recommendations for a customer.

    Scores are deterministic heuristics over the customer's history.
    """
    return await _get_predictive_insights_impl(request, ctx)
