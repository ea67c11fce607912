"""Event ingestion tools: validate raw payloads and append them to the store."""

from typing import Any

import structlog
from fastmcp import Context
from pydantic import BaseModel, Field

from customer_insights.errors import DuplicateEventId

from analytics.services.insights_server.instance import mcp
from analytics.services.insights_server.metrics import record_events_ingested
from analytics.services.insights_server.state import get_runtime
from analytics.services.insights_server.tools._common import run_tool

logger = structlog.get_logger(__name__)


class TrackEventRequest(BaseModel):
    """Request to record one analytics event."""

    event: dict[str, Any] = Field(
        description=(
            "Raw event payload. customerId and eventType are required; "
            "camelCase or snake_case keys are accepted."
        )
    )


class TrackEventResponse(BaseModel):
    """Identity of the stored event."""

    event_id: str
    timestamp: str
    data_retention_expiry: str


class TrackEventsRequest(BaseModel):
    """Request to record a batch of analytics events."""

    events: list[dict[str, Any]] = Field(
        min_length=1, description="Raw event payloads, validated independently"
    )


class RejectedRecord(BaseModel):
    record_index: int
    error: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class TrackEventsResponse(BaseModel):
    """Outcome of a batch ingestion."""

    accepted_count: int
    event_ids: list[str]
    rejected: list[RejectedRecord]
    duplicates: list[str] = Field(description="Event ids that were already stored")


async def _track_event_impl(request: TrackEventRequest, ctx: Context) -> TrackEventResponse:
    """Implementation of single-event ingestion."""
    runtime = get_runtime()
    deadline = runtime.new_deadline()

    def work():
        event = runtime.contract.validate(request.event)
        runtime.store.append(event, deadline=deadline)
        return event

    event = await run_tool("track_event", work)
    record_events_ingested(1)
    logger.info(
        "event_tracked",
        event_id=event.event_id,
        customer_id=event.customer_id,
        event_type=event.event_type.value,
    )
    return TrackEventResponse(
        event_id=event.event_id,
        timestamp=event.timestamp.isoformat(),
        data_retention_expiry=event.retention_expiry.isoformat(),
    )


async def _track_events_impl(request: TrackEventsRequest, ctx: Context) -> TrackEventsResponse:
    """Implementation of batch ingestion.

    Invalid records and duplicate ids are reported, not raised, so one bad
    record never blocks the rest of the batch.
    """
    runtime = get_runtime()
    deadline = runtime.new_deadline()
    await ctx.info(f"Validating {len(request.events)} events")

    def work():
        events, rejections = runtime.contract.validate_records(request.events)
        stored, duplicates = [], []
        for event in events:
            try:
                stored.append(runtime.store.append(event, deadline=deadline))
            except DuplicateEventId:
                duplicates.append(event.event_id)
        return stored, rejections, duplicates

    stored, rejections, duplicates = await run_tool("track_events", work)
    record_events_ingested(len(stored))

    await ctx.info(f"Stored {len(stored)} events, rejected {len(rejections)}")
    logger.info(
        "events_tracked",
        accepted=len(stored),
        rejected=len(rejections),
        duplicates=len(duplicates),
    )
    return TrackEventsResponse(
        accepted_count=len(stored),
        event_ids=stored,
        rejected=[RejectedRecord(**rejection) for rejection in rejections],
        duplicates=duplicates,
    )


@mcp.tool()
async def track_event(request: TrackEventRequest, ctx: Context) -> TrackEventResponse:
    """
    Validate, enrich and store one customer-behaviour event.

    Missing ids, timestamps and retention expiries are filled in. Invalid
    payloads are rejected and nothing is stored.

    Returns:
        The stored event's id, timestamp and retention expiry
    """
    return await _track_event_impl(request, ctx)


@mcp.tool()
async def track_events(request: TrackEventsRequest, ctx: Context) -> TrackEventsResponse:
    """
    Validate and store a batch of events.

    Each record is validated and stored on its own; rejected records are
    returned with their index and error.
    """
    return await _track_events_impl(request, ctx)
