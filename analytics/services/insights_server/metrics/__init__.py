"""Prometheus metrics for the insights server."""

from analytics.services.insights_server.metrics.prometheus_exporter import (
    decrement_active_tool_calls,
    get_metrics_text,
    increment_active_tool_calls,
    record_events_deleted,
    record_events_ingested,
    record_tool_call,
    start_metrics_server,
    update_circuit_breaker_state,
)

__all__ = [
    "start_metrics_server",
    "get_metrics_text",
    "record_tool_call",
    "increment_active_tool_calls",
    "decrement_active_tool_calls",
    "record_events_ingested",
    "record_events_deleted",
    "update_circuit_breaker_state",
]
