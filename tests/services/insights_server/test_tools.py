"""Tests for the Customer Insights server tools.

Each tool is exercised through its ``_impl`` coroutine against an in-memory
store installed as the process runtime.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from customer_insights.errors import InvalidGranularity, MissingRequiredField
from customer_insights.foundation import InMemoryEventStore
from customer_insights.foundation.periods import utc_now

from analytics.services.insights_server.config import InsightsServerConfig
from analytics.services.insights_server.metrics import get_metrics_text
from analytics.services.insights_server.resilience import (
    call_through_breaker,
    get_circuit_breaker,
    reset_all_circuit_breakers,
)
from analytics.services.insights_server.state import InsightsRuntime, get_runtime, set_runtime
from analytics.services.insights_server.tools.business import (
    AnalyticsSummaryRequest,
    BusinessAnalyticsRequest,
    RealtimeAnalyticsRequest,
    _get_analytics_summary_impl as get_analytics_summary,
    _get_business_analytics_impl as get_business_analytics,
    _get_realtime_analytics_impl as get_realtime_analytics,
)
from analytics.services.insights_server.tools.cohorts import (
    CohortAnalysisRequest,
    _get_cohort_analysis_impl as get_cohort_analysis,
)
from analytics.services.insights_server.tools.compliance import (
    CleanupExpiredDataRequest,
    EraseCustomerDataRequest,
    _cleanup_expired_data_impl as cleanup_expired_data,
    _erase_customer_data_impl as erase_customer_data,
)
from analytics.services.insights_server.tools.customers import (
    CustomerInsightsRequest,
    CustomerJourneyRequest,
    PredictiveInsightsRequest,
    _get_customer_insights_impl as get_customer_insights,
    _get_customer_journey_impl as get_customer_journey,
    _get_predictive_insights_impl as get_predictive_insights,
)
from analytics.services.insights_server.tools.events import (
    QueryEventsRequest,
    _query_events_impl as query_events,
)
from analytics.services.insights_server.tools.funnel import (
    FunnelAnalysisRequest,
    _get_funnel_analysis_impl as get_funnel_analysis,
)
from analytics.services.insights_server.tools.health_check import _health_check_impl as health_check
from analytics.services.insights_server.tools.ingestion import (
    TrackEventRequest,
    TrackEventsRequest,
    _track_event_impl as track_event,
    _track_events_impl as track_events,
)


def create_mock_context():
    """Create a mock FastMCP Context for testing."""
    ctx = AsyncMock()
    ctx.state = {}

    def get_state(key):
        return ctx.state.get(key)

    def set_state(key, value):
        ctx.state[key] = value

    ctx.get_state = MagicMock(side_effect=get_state)
    ctx.set_state = MagicMock(side_effect=set_state)
    ctx.info = AsyncMock()
    ctx.report_progress = AsyncMock()

    return ctx


@pytest.fixture(autouse=True)
def runtime():
    """Fresh in-memory runtime and closed breakers for every test."""
    reset_all_circuit_breakers()
    installed = InsightsRuntime(InsightsServerConfig(), store=InMemoryEventStore())
    set_runtime(installed)
    yield installed
    set_runtime(None)
    reset_all_circuit_breakers()


def _raw(customer_id, event_type, minutes_ago=5, **extra):
    return {
        "customerId": customer_id,
        "eventType": event_type,
        "timestamp": (utc_now() - timedelta(minutes=minutes_ago)).isoformat(),
        **extra,
    }


async def _seed(*payloads):
    response = await track_events(TrackEventsRequest(events=list(payloads)), create_mock_context())
    assert not response.rejected
    return response.event_ids


class TestIngestionTools:
    """Test track_event and track_events."""

    @pytest.mark.asyncio
    async def test_track_event(self, runtime):
        """Test that a valid payload is enriched and stored."""
        response = await track_event(
            TrackEventRequest(event=_raw("C1", "UNIT_VIEW", sessionId="S1")),
            create_mock_context(),
        )

        assert response.event_id.startswith("evt_")
        stored = runtime.store.get(response.event_id)
        assert stored.customer_id == "C1"
        assert response.data_retention_expiry == stored.retention_expiry.isoformat()

    @pytest.mark.asyncio
    async def test_track_event_rejects_invalid_payload(self, runtime):
        """Test that nothing is stored for an invalid payload."""
        with pytest.raises(MissingRequiredField):
            await track_event(TrackEventRequest(event={"eventType": "UNIT_VIEW"}), create_mock_context())
        assert runtime.store.count() == 0

    @pytest.mark.asyncio
    async def test_track_events_batch(self, runtime):
        """Test that bad records and duplicates are reported without blocking the batch."""
        await _seed(_raw("C1", "UNIT_VIEW", eventId="evt-existing"))
        ctx = create_mock_context()

        response = await track_events(
            TrackEventsRequest(
                events=[
                    _raw("C2", "STORAGE_SEARCH", eventId="evt-new"),
                    {"customerId": "C3"},
                    _raw("C1", "UNIT_VIEW", eventId="evt-existing"),
                ]
            ),
            ctx,
        )

        assert response.accepted_count == 1
        assert response.event_ids == ["evt-new"]
        assert [r.record_index for r in response.rejected] == [1]
        assert response.rejected[0].details["missing_fields"] == ["event_type"]
        assert response.duplicates == ["evt-existing"]
        assert runtime.store.count() == 2
        assert ctx.info.await_count == 2

    def test_empty_batch_is_invalid(self):
        """Test that a batch needs at least one event."""
        with pytest.raises(ValueError):
            TrackEventsRequest(events=[])


class TestQueryEventsTool:
    """Test the raw event query."""

    @pytest.mark.asyncio
    async def test_filter_and_page(self):
        """Test filtering by customer, newest first, with a total before paging."""
        await _seed(
            _raw("C1", "UNIT_VIEW", minutes_ago=30, eventId="old"),
            _raw("C1", "UNIT_BOOKING", minutes_ago=10, eventId="new"),
            _raw("C2", "UNIT_VIEW"),
        )

        response = await query_events(QueryEventsRequest(customer_id="C1", limit=1), create_mock_context())

        assert response.total == 2
        assert [e["event_id"] for e in response.events] == ["new"]
        assert (response.offset, response.limit) == (0, 1)

    @pytest.mark.asyncio
    async def test_event_type_filter_ascending(self):
        """Test event type filtering with ascending order."""
        await _seed(
            _raw("C1", "UNIT_VIEW", minutes_ago=30, eventId="a"),
            _raw("C2", "UNIT_VIEW", minutes_ago=10, eventId="b"),
            _raw("C2", "STORAGE_SEARCH"),
        )

        response = await query_events(
            QueryEventsRequest(event_types=["UNIT_VIEW"], order="asc"), create_mock_context()
        )
        assert [e["event_id"] for e in response.events] == ["a", "b"]


class TestCustomerTools:
    """Test the per-customer tools."""

    @pytest.mark.asyncio
    async def test_customer_insights(self):
        """Test the dashboard over the default window."""
        await _seed(
            _raw("C1", "STORAGE_SEARCH", minutes_ago=20, sessionId="S1"),
            _raw("C1", "UNIT_VIEW", minutes_ago=15, sessionId="S1"),
            _raw("C2", "UNIT_VIEW"),
        )
        ctx = create_mock_context()

        response = await get_customer_insights(CustomerInsightsRequest(customer_id="C1"), ctx)

        assert response.customer_id == "C1"
        assert response.overview["total_events"] == 2
        assert response.overview["unique_sessions"] == 1
        assert len(response.journey) == 2
        ctx.info.assert_awaited()

    @pytest.mark.asyncio
    async def test_customer_insights_without_journey(self):
        """Test that the journey can be left out."""
        await _seed(_raw("C1", "UNIT_VIEW"))
        response = await get_customer_insights(
            CustomerInsightsRequest(customer_id="C1", include_journey=False), create_mock_context()
        )
        assert response.journey == []

    @pytest.mark.asyncio
    async def test_customer_journey_limit(self):
        """Test that the limit truncates the journey but not the total."""
        await _seed(
            _raw("C1", "STORAGE_SEARCH", minutes_ago=20),
            _raw("C1", "UNIT_VIEW", minutes_ago=10),
        )

        response = await get_customer_journey(
            CustomerJourneyRequest(customer_id="C1", limit=1), create_mock_context()
        )

        assert response.total_events == 2
        assert [step["event_type"] for step in response.journey] == ["STORAGE_SEARCH"]

    @pytest.mark.asyncio
    async def test_predictive_insights(self):
        """Test churn, value and next-action scoring for an active customer."""
        await _seed(
            _raw("C1", "UNIT_VIEW", minutes_ago=20),
            _raw("C1", "PAYMENT_COMPLETED", properties={"revenue": 1200}),
        )

        response = await get_predictive_insights(
            PredictiveInsightsRequest(customer_id="C1"), create_mock_context()
        )

        assert response.customer_id == "C1"
        assert response.churn_risk["score"] == "Medium"
        assert response.value_score["value_segment"] == "High"
        assert 0.7 <= response.confidence <= 1.0


class TestBusinessTools:
    """Test business-wide tools."""

    @pytest.mark.asyncio
    async def test_business_analytics(self):
        """Test weekly trends over the default window."""
        await _seed(
            _raw("C1", "UNIT_VIEW"),
            _raw("C2", "PAYMENT_COMPLETED", properties={"revenue": 80}),
        )

        response = await get_business_analytics(
            BusinessAnalyticsRequest(granularity="weekly"), create_mock_context()
        )

        assert response.granularity == "weekly"
        assert response.overview["total_events"] == 2
        assert sum(bucket["events"] for bucket in response.trends) == 2

    @pytest.mark.asyncio
    async def test_invalid_granularity(self):
        """Test that unknown granularities are rejected."""
        with pytest.raises(InvalidGranularity):
            await get_business_analytics(
                BusinessAnalyticsRequest(granularity="hourly"), create_mock_context()
            )

    @pytest.mark.asyncio
    async def test_realtime_defaults_to_configured_window(self, runtime):
        """Test that an unset window falls back to the server config."""
        await _seed(
            _raw("C1", "UNIT_VIEW", minutes_ago=2),
            _raw("C2", "UNIT_VIEW", minutes_ago=2 * runtime.config.realtime_window_minutes),
        )

        response = await get_realtime_analytics(RealtimeAnalyticsRequest(), create_mock_context())

        assert response.window_minutes == runtime.config.realtime_window_minutes
        assert response.current_events == 1
        assert response.active_users == 1
        assert response.system_health["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_analytics_summary(self):
        """Test the trailing summary bundle."""
        await _seed(_raw("C1", "UNIT_VIEW"))
        response = await get_analytics_summary(AnalyticsSummaryRequest(days=7), create_mock_context())

        assert response.timeframe == "7d"
        assert response.business["overview"]["total_events"] == 1
        assert response.realtime["current_events"] == 1


class TestFunnelAndCohortTools:
    """Test funnel and cohort tools."""

    @pytest.mark.asyncio
    async def test_funnel_analysis(self):
        """Test a two-step funnel."""
        await _seed(
            _raw("C1", "STORAGE_SEARCH", minutes_ago=20),
            _raw("C1", "UNIT_VIEW", minutes_ago=10),
            _raw("C2", "STORAGE_SEARCH"),
        )

        response = await get_funnel_analysis(
            FunnelAnalysisRequest(steps=["STORAGE_SEARCH", "UNIT_VIEW"]), create_mock_context()
        )

        assert [step["users"] for step in response.per_step] == [2, 1]
        assert response.total_conversion_rate == 50.0
        assert response.biggest_dropoff["step"] == "UNIT_VIEW"

    @pytest.mark.asyncio
    async def test_cohort_analysis(self):
        """Test that cohorts are built with the requested settings."""
        await _seed(_raw("C1", "APP_OPENED"), _raw("C2", "APP_OPENED"))

        response = await get_cohort_analysis(
            CohortAnalysisRequest(cohort_type="weekly", retention_periods=[0, 1]),
            create_mock_context(),
        )

        assert response.cohort_type == "weekly"
        assert response.retention_periods == [0, 1]
        assert response.policy == "any_event"
        assert sum(cohort["size"] for cohort in response.per_cohort) == 2
        assert response.average_retention["0"] == 1.0


class TestComplianceTools:
    """Test retention purge and erasure."""

    @pytest.mark.asyncio
    async def test_cleanup_expired_data(self, runtime):
        """Test that only expired events are purged and the run is recorded."""
        expired = (utc_now() - timedelta(days=1)).isoformat()
        await _seed(
            _raw("C1", "UNIT_VIEW", privacy={"dataRetentionExpiry": expired}),
            _raw("C1", "UNIT_BOOKING"),
        )

        response = await cleanup_expired_data(CleanupExpiredDataRequest(), create_mock_context())

        assert response.deleted_count == 1
        assert runtime.store.count() == 1
        assert runtime.expiry.last_report.deleted_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_cleanups_report_their_own_runs(self, runtime):
        """Test that simultaneous purges each report only what they deleted."""
        expired = (utc_now() - timedelta(days=1)).isoformat()
        await _seed(
            _raw("C1", "UNIT_VIEW", privacy={"dataRetentionExpiry": expired}),
            _raw("C2", "UNIT_VIEW", privacy={"dataRetentionExpiry": expired}),
            _raw("C1", "UNIT_BOOKING"),
        )

        responses = await asyncio.gather(
            *(cleanup_expired_data(CleanupExpiredDataRequest(), create_mock_context()) for _ in range(3))
        )

        assert sum(response.deleted_count for response in responses) == 2
        assert runtime.store.count() == 1

    @pytest.mark.asyncio
    async def test_erase_customer_data(self, runtime):
        """Test that erasure removes only the named customer's events."""
        await _seed(_raw("C1", "UNIT_VIEW"), _raw("C1", "UNIT_BOOKING"), _raw("C2", "UNIT_VIEW"))

        response = await erase_customer_data(
            EraseCustomerDataRequest(customer_id="C1"), create_mock_context()
        )

        assert response.deleted_count == 2
        assert runtime.store.query_by_customer("C1") == []
        assert runtime.store.count() == 1


class TestHealthCheck:
    """Test the health check tool."""

    @pytest.mark.asyncio
    async def test_healthy(self):
        """Test a reachable store with closed breakers."""
        await _seed(_raw("C1", "UNIT_VIEW"))

        response = await health_check(create_mock_context())

        assert response.status == "healthy"
        assert response.version == "1.0.0"
        assert response.event_count == 1
        assert response.checks["event_store"] == "healthy"
        assert response.checks["retention_purge"] == "never run"
        assert response.last_purge is None

    @pytest.mark.asyncio
    async def test_reports_last_purge(self):
        """Test that a completed purge shows up in the health check."""
        await cleanup_expired_data(CleanupExpiredDataRequest(), create_mock_context())

        response = await health_check(create_mock_context())

        assert response.checks["retention_purge"] == "ok"
        assert response.last_purge["deleted_count"] == 0

    @pytest.mark.asyncio
    async def test_unreachable_store(self, runtime):
        """Test that a closed store makes the server unhealthy."""
        runtime.store.close()

        response = await health_check(create_mock_context())

        assert response.status == "unhealthy"
        assert response.checks["event_store"] == "unreachable"
        assert response.event_count is None

    @pytest.mark.asyncio
    async def test_open_breaker_degrades(self):
        """Test that a tripped breaker degrades an otherwise healthy server."""
        breaker = get_circuit_breaker("health_check_tripped", fail_max=1)

        def fail():
            raise ConnectionError("store down")

        with pytest.raises(ConnectionError):
            call_through_breaker(breaker, fail)

        response = await health_check(create_mock_context())

        assert response.status == "degraded"
        assert "health_check_tripped" in response.checks["circuit_breakers"]


class TestRuntime:
    """Test runtime installation."""

    def test_installed_runtime_is_returned(self, runtime):
        """Test that get_runtime returns the installed runtime."""
        assert get_runtime() is runtime
        assert runtime.new_deadline().remaining() > 0


class TestMetrics:
    """Test that tool calls are exported to Prometheus."""

    @pytest.mark.asyncio
    async def test_tool_calls_are_counted(self):
        """Test that a completed tool call appears in the metrics text."""
        await track_event(TrackEventRequest(event=_raw("C1", "UNIT_VIEW")), create_mock_context())

        text = get_metrics_text()

        assert b"insights_tool_calls_total" in text
        assert b'tool="track_event"' in text
        assert b"insights_events_ingested_total" in text
