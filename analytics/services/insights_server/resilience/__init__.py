"""Resilience patterns for the insights server.

- Circuit breakers: fail fast while the event store is down
- Deadlines: every tool call carries one (see tools/_common.py)
"""

from analytics.services.insights_server.resilience.circuit_breakers import (
    EVENT_STORE_BREAKER,
    call_through_breaker,
    get_circuit_breaker,
    get_circuit_breaker_status,
    reset_all_circuit_breakers,
)

__all__ = [
    "EVENT_STORE_BREAKER",
    "call_through_breaker",
    "get_circuit_breaker",
    "get_circuit_breaker_status",
    "reset_all_circuit_breakers",
]
