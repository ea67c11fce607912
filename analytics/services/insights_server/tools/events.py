"""Raw event query tool with filtering and paging."""

from datetime import datetime
from typing import Any, Literal

import structlog
from fastmcp import Context
from pydantic import BaseModel, Field

from customer_insights.foundation import EventQuery, to_serialisable

from analytics.services.insights_server.instance import mcp
from analytics.services.insights_server.state import get_runtime
from analytics.services.insights_server.tools._common import run_tool

logger = structlog.get_logger(__name__)


class QueryEventsRequest(BaseModel):
    """Filters and paging for a raw event query. Unset filters match everything."""

    customer_id: str | None = None
    event_types: list[str] | None = Field(default=None, description="e.g. ['UNIT_VIEW']")
    event_category: str | None = None
    session_id: str | None = None
    customer_type: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    order: Literal["asc", "desc"] = "desc"
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=100, ge=1, le=1000)


class QueryEventsResponse(BaseModel):
    events: list[dict[str, Any]]
    total: int = Field(description="Matching events before paging")
    offset: int
    limit: int


async def _query_events_impl(request: QueryEventsRequest, ctx: Context) -> QueryEventsResponse:
    """Implementation of the raw event query."""
    runtime = get_runtime()
    deadline = runtime.new_deadline()

    def work():
        query = EventQuery(
            customer_id=request.customer_id,
            event_types=frozenset(request.event_types) if request.event_types else None,
            event_category=request.event_category,
            session_id=request.session_id,
            customer_type=request.customer_type,
            start=request.start_date,
            end=request.end_date,
            order=request.order,
            offset=request.offset,
            limit=request.limit,
        )
        page = runtime.store.find(query, deadline=deadline)
        total = runtime.store.count_matching(query, deadline=deadline)
        return page, total

    page, total = await run_tool("query_events", work)
    return QueryEventsResponse(
        events=[to_serialisable(event) for event in page],
        total=total,
        offset=request.offset,
        limit=request.limit,
    )


@mcp.tool()
async def query_events(request: QueryEventsRequest, ctx: Context) -> QueryEventsResponse:
    """
    Page through stored events matching the given filters, newest first by default.
    """
    return await _query_events_impl(request, ctx)
