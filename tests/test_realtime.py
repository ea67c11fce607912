"""Unit tests for the real-time snapshot."""

from datetime import timedelta

import pytest

from customer_insights.analyses.realtime import (
    is_error_event,
    real_time_snapshot,
    system_health_from_events,
)


class TestRealTimeSnapshot:
    """Test activity in the trailing window."""

    def test_snapshot(self, store, make_event, now):
        """Test counts for events inside the window only."""
        store.append_many(
            [
                make_event("C1", "UNIT_VIEW", now - timedelta(minutes=30)),
                make_event(
                    "C2",
                    "UNIT_BOOKING",
                    now - timedelta(minutes=15),
                    properties={"conversionStep": "booking", "responseTime": 100},
                ),
                make_event(
                    "C1",
                    "ERROR_OCCURRED",
                    now - timedelta(minutes=10),
                    properties={"responseTime": 900},
                ),
                make_event("C3", "UNIT_VIEW", now - timedelta(hours=2)),
            ]
        )
        snapshot = real_time_snapshot(store, 60, now=now)

        assert snapshot.timestamp == now
        assert snapshot.window_minutes == 60
        assert snapshot.current_events == 3
        assert snapshot.active_users == 2
        assert snapshot.live_conversions == 1
        assert snapshot.system_health.error_events == 1
        assert snapshot.system_health.error_rate == 33.33
        assert snapshot.system_health.status == "unhealthy"
        assert snapshot.system_health.avg_response_time == 500.0

    def test_window_start_is_inclusive(self, store, make_event, now):
        """Test that an event exactly at the window start is counted."""
        store.append(make_event("C1", "UNIT_VIEW", now - timedelta(minutes=60)))
        assert real_time_snapshot(store, 60, now=now).current_events == 1

    def test_empty_window_is_healthy(self, store, now):
        """Test that no traffic reports zeros and a healthy status."""
        snapshot = real_time_snapshot(store, 5, now=now)
        assert snapshot.current_events == 0
        assert snapshot.system_health.status == "healthy"
        assert snapshot.as_dict()["system_health"]["error_rate"] == 0.0

    def test_window_must_be_positive(self, store, now):
        """Test that a zero-minute window is rejected."""
        with pytest.raises(ValueError):
            real_time_snapshot(store, 0, now=now)


class TestSystemHealth:
    """Test error-rate thresholds."""

    def _events(self, make_event, now, total, errors):
        events = [make_event("C1", "UNIT_VIEW", now) for _ in range(total - errors)]
        events += [make_event("C1", "ERROR_OCCURRED", now) for _ in range(errors)]
        return events

    @pytest.mark.parametrize(
        "total,errors,expected",
        [
            (20, 0, "healthy"),
            (25, 1, "healthy"),
            (20, 1, "degraded"),
            (20, 2, "degraded"),
            (20, 3, "unhealthy"),
        ],
    )
    def test_status_thresholds(self, make_event, now, total, errors, expected):
        """Test healthy below 5%, degraded from 5% and unhealthy from 15%."""
        health = system_health_from_events(self._events(make_event, now, total, errors))
        assert health.status == expected

    def test_error_category_counts_as_error(self, make_event, now):
        """Test that an error-category event counts regardless of its type."""
        event = make_event("C1", "FEATURE_USED", now, eventCategory="Error_Event")
        assert is_error_event(event)
        assert not is_error_event(make_event("C1", "FEATURE_USED", now))
