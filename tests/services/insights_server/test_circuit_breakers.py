"""Tests for the event-store circuit breakers."""

import asyncio
import threading

import pytest

from customer_insights.errors import DuplicateEventId, QueryTimeout, StoreUnavailable

from analytics.services.insights_server.resilience import (
    call_through_breaker,
    get_circuit_breaker,
    get_circuit_breaker_status,
    reset_all_circuit_breakers,
)
from analytics.services.insights_server.tools._common import run_tool


@pytest.fixture(autouse=True)
def closed_breakers():
    reset_all_circuit_breakers()
    yield
    reset_all_circuit_breakers()


def _raise(exc):
    def fail():
        raise exc

    return fail


class TestCircuitBreakers:
    """Test breaker creation, tripping and reset."""

    def test_singleton_per_name(self):
        """Test that the same name returns the same breaker."""
        breaker = get_circuit_breaker("breaker_singleton", fail_max=3, reset_timeout=10)

        assert get_circuit_breaker("breaker_singleton", fail_max=99) is breaker
        status = get_circuit_breaker_status()["breaker_singleton"]
        assert status == {"state": "closed", "fail_count": 0, "fail_max": 3, "reset_timeout": 10}

    def test_passes_results_through(self):
        """Test that successful calls return their value."""
        breaker = get_circuit_breaker("breaker_success")
        assert call_through_breaker(breaker, lambda x, y: x + y, 2, y=3) == 5

    def test_trips_and_fails_fast(self):
        """Test that store failures open the circuit and later calls fail fast."""
        breaker = get_circuit_breaker("breaker_trip", fail_max=2, reset_timeout=60)
        outage = _raise(ConnectionError("store down"))

        with pytest.raises(ConnectionError):
            call_through_breaker(breaker, outage)
        with pytest.raises(ConnectionError):
            call_through_breaker(breaker, outage)
        assert get_circuit_breaker_status()["breaker_trip"]["state"] == "open"

        with pytest.raises(StoreUnavailable) as exc_info:
            call_through_breaker(breaker, lambda: "never runs")
        assert exc_info.value.details == {"breaker": "breaker_trip"}

    @pytest.mark.parametrize(
        "error",
        [
            ValueError("bad input"),
            DuplicateEventId("Event id already exists"),
            QueryTimeout("find exceeded its deadline"),
        ],
    )
    def test_caller_errors_do_not_trip(self, error):
        """Test that rejected input, duplicates and timeouts are not store failures."""
        breaker = get_circuit_breaker(f"breaker_excluded_{type(error).__name__}", fail_max=2)

        for _ in range(4):
            with pytest.raises(type(error)):
                call_through_breaker(breaker, _raise(error))

        assert breaker.current_state == "closed"
        assert breaker.fail_counter == 0

    def test_reset_closes_open_breakers(self):
        """Test that reset_all_circuit_breakers closes tripped breakers."""
        breaker = get_circuit_breaker("breaker_reset", fail_max=1)
        with pytest.raises(ConnectionError):
            call_through_breaker(breaker, _raise(ConnectionError("store down")))
        assert breaker.current_state == "open"

        reset_all_circuit_breakers()

        assert breaker.current_state == "closed"
        assert call_through_breaker(breaker, lambda: "ok") == "ok"

    def test_success_clears_failure_count(self):
        """Test that a success after a store failure resets the count."""
        breaker = get_circuit_breaker("breaker_recover", fail_max=3)
        with pytest.raises(ConnectionError):
            call_through_breaker(breaker, _raise(ConnectionError("store down")))
        assert breaker.fail_counter == 1

        assert call_through_breaker(breaker, lambda: "ok") == "ok"
        assert breaker.fail_counter == 0
        assert breaker.current_state == "closed"


class TestConcurrentCalls:
    """Test that the breaker does not serialise store work."""

    def test_calls_overlap_in_threads(self):
        """Test that calls through one breaker run at the same time."""
        breaker = get_circuit_breaker("breaker_parallel")
        barrier = threading.Barrier(3, timeout=5)
        results = []

        def work():
            barrier.wait()
            results.append("done")

        threads = [threading.Thread(target=call_through_breaker, args=(breaker, work)) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == ["done"] * 3
        assert not barrier.broken

    @pytest.mark.asyncio
    async def test_tool_calls_overlap(self):
        """Test that concurrent tool calls are not queued behind each other."""
        barrier = threading.Barrier(3, timeout=5)

        def work():
            barrier.wait()
            return "done"

        results = await asyncio.gather(*(run_tool(name, work) for name in ("first", "second", "third")))

        assert results == ["done"] * 3
        assert get_circuit_breaker_status()["event_store"]["fail_count"] == 0
