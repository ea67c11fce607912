"""Prometheus Metrics Exporter

Exports insights server metrics to Prometheus for monitoring and alerting.

Metrics exported:
- insights_tool_duration_seconds: Histogram of tool execution times
- insights_tool_calls_total: Counter of tool calls by outcome
- insights_active_tool_calls: Gauge of tool calls currently running
- insights_events_ingested_total: Counter of events appended to the store
- insights_events_deleted_total: Counter of events deleted by purge or erasure
- circuit_breaker_state: Gauge of breaker states

Usage:
    >>> start_metrics_server(port=8000)
    # Metrics available at http://localhost:8000/metrics
"""

from threading import Lock

import structlog
from prometheus_client import Counter, Gauge, Histogram, generate_latest, start_http_server

logger = structlog.get_logger(__name__)

tool_duration = Histogram(
    "insights_tool_duration_seconds",
    "Tool execution duration in seconds",
    ["tool"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

tool_calls_total = Counter(
    "insights_tool_calls_total",
    "Total tool calls",
    ["tool", "status"],  # status: success, rejected, timeout or failure
)

active_tool_calls = Gauge("insights_active_tool_calls", "Number of tool calls in progress")

events_ingested_total = Counter(
    "insights_events_ingested_total", "Events appended to the event store"
)

events_deleted_total = Counter(
    "insights_events_deleted_total",
    "Events deleted from the event store",
    ["reason"],  # reason: expired or erasure
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["breaker_name"],
)

_metrics_server_started = False
_metrics_lock = Lock()


def start_metrics_server(port: int = 8000):
    """Start the Prometheus metrics HTTP server.

    Raises:
        RuntimeError: If the metrics server is already running
    """
    global _metrics_server_started

    with _metrics_lock:
        if _metrics_server_started:
            raise RuntimeError("Metrics server is already running")
        start_http_server(port)
        _metrics_server_started = True
        logger.info("prometheus_metrics_server_started", port=port)


def get_metrics_text() -> bytes:
    """Current metrics in Prometheus text format."""
    return generate_latest()


def record_tool_call(tool: str, duration_seconds: float, status: str):
    """Record one finished tool call.

    Example:
        >>> record_tool_call("get_funnel_analysis", 0.12, "success")
    """
    tool_duration.labels(tool=tool).observe(duration_seconds)
    tool_calls_total.labels(tool=tool, status=status).inc()


def increment_active_tool_calls():
    active_tool_calls.inc()


def decrement_active_tool_calls():
    active_tool_calls.dec()


def record_events_ingested(count: int):
    if count > 0:
        events_ingested_total.inc(count)


def record_events_deleted(count: int, reason: str):
    if count > 0:
        events_deleted_total.labels(reason=reason).inc(count)


def update_circuit_breaker_state(breaker_name: str, state: str):
    """Update the circuit breaker state gauge.

    Args:
        breaker_name: Name of the circuit breaker
        state: State name ('closed', 'open', 'half_open')
    """
    state_value = {"closed": 0, "open": 1, "half_open": 2}.get(state.lower(), 0)
    circuit_breaker_state.labels(breaker_name=breaker_name).set(state_value)
