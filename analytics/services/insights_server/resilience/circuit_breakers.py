"""Circuit Breakers

Circuit breakers stop the server from hammering an event store that keeps
failing. Once a breaker opens, calls fail fast with ``StoreUnavailable``
until the reset timeout elapses; nothing is retried.

Circuit breaker states:
- CLOSED: Normal operation, requests flow through
- OPEN: Failure threshold exceeded, requests fail fast
- HALF_OPEN: Testing if the store recovered, one trial request allowed

Only store outages count as failures. Rejected input, duplicate ids and
expired deadlines are the caller's problem and pass through untouched.

Usage:
    >>> breaker = get_circuit_breaker("event_store")
    >>> events = call_through_breaker(breaker, store.find, query)
"""

from collections.abc import Callable
from contextlib import suppress
from typing import Any, TypeVar

import structlog
from pybreaker import STATE_CLOSED, CircuitBreaker, CircuitBreakerError, CircuitBreakerListener

from customer_insights.errors import DuplicateEventId, QueryTimeout, StoreUnavailable

from analytics.services.insights_server.metrics import update_circuit_breaker_state

logger = structlog.get_logger(__name__)

T = TypeVar("T")

EVENT_STORE_BREAKER = "event_store"

# Caller errors never trip a breaker
_CALLER_ERRORS = (ValueError, DuplicateEventId, QueryTimeout)

_circuit_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    fail_max: int = 5,
    reset_timeout: int = 60,
) -> CircuitBreaker:
    """Get or create a circuit breaker by name.

    Circuit breakers are singletons per name; later calls with the same name
    return the existing breaker and ignore the other arguments.

    Args:
        name: Unique name for this circuit breaker (e.g., "event_store")
        fail_max: Consecutive failures before the circuit opens (default: 5)
        reset_timeout: Seconds to keep the circuit open before a trial call (default: 60)

    Returns:
        CircuitBreaker instance
    """
    if name not in _circuit_breakers:
        logger.info(
            "creating_circuit_breaker",
            name=name,
            fail_max=fail_max,
            reset_timeout=reset_timeout,
        )
        _circuit_breakers[name] = CircuitBreaker(
            fail_max=fail_max,
            reset_timeout=reset_timeout,
            exclude=list(_CALLER_ERRORS),
            name=name,
            listeners=[_CircuitBreakerListener(name)],
        )
        update_circuit_breaker_state(name, "closed")

    return _circuit_breakers[name]


def call_through_breaker(
    breaker: CircuitBreaker, func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run ``func`` under ``breaker``, translating an open circuit to ``StoreUnavailable``.

    pybreaker holds the breaker lock for the whole of ``breaker.call``, so with
    a closed circuit ``func`` runs outside the lock and only its outcome is
    recorded through the breaker. Calls never queue behind each other. An
    open or half-open circuit goes through ``breaker.call`` directly: it
    either fails fast or runs as the single trial call.
    """
    if breaker.current_state != STATE_CLOSED:
        return _locked_call(breaker, func, *args, **kwargs)

    try:
        result = func(*args, **kwargs)
    except _CALLER_ERRORS:
        raise
    except Exception as exc:
        _locked_call(breaker, _reraise, exc)
        raise

    if breaker.fail_counter:
        # A success that races an opening circuit is still returned
        with suppress(CircuitBreakerError):
            breaker.call(_succeed)
    return result


def _locked_call(breaker: CircuitBreaker, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    try:
        return breaker.call(func, *args, **kwargs)
    except CircuitBreakerError as exc:
        raise StoreUnavailable(
            "Event store circuit is open; failing fast",
            {"breaker": breaker.name},
        ) from exc


def _reraise(exc: BaseException):
    raise exc


def _succeed():
    return None


class _CircuitBreakerListener(CircuitBreakerListener):
    """Logs breaker activity and mirrors state into Prometheus."""

    def __init__(self, name: str):
        self.name = name

    def failure(self, cb: CircuitBreaker, exc: BaseException):
        logger.warning(
            "circuit_breaker_failure",
            name=self.name,
            state=cb.current_state,
            fail_count=cb.fail_counter,
            error_type=type(exc).__name__,
            error=str(exc),
        )

    def state_change(self, cb: CircuitBreaker, old_state, new_state):
        new_name = getattr(new_state, "name", str(new_state))
        logger.warning(
            "circuit_breaker_state_change",
            name=self.name,
            old_state=getattr(old_state, "name", None),
            new_state=new_name,
            fail_count=cb.fail_counter,
        )
        update_circuit_breaker_state(self.name, new_name.replace("-", "_"))


def get_circuit_breaker_status() -> dict[str, dict[str, Any]]:
    """Get current status of all circuit breakers.

    Returns:
        Dict mapping breaker names to their status, e.g.
        ``{"event_store": {"state": "closed", "fail_count": 0, "fail_max": 5,
        "reset_timeout": 60}}``
    """
    return {
        name: {
            "state": str(breaker.current_state).replace("-", "_"),
            "fail_count": breaker.fail_counter,
            "fail_max": breaker.fail_max,
            "reset_timeout": breaker.reset_timeout,
        }
        for name, breaker in _circuit_breakers.items()
    }


def reset_all_circuit_breakers():
    """Close every circuit breaker and clear its failure count.

    Useful in tests or after a store outage has been resolved by hand;
    breakers otherwise recover on their own.
    """
    logger.info("resetting_all_circuit_breakers", count=len(_circuit_breakers))
    for name, breaker in _circuit_breakers.items():
        breaker.close()
        update_circuit_breaker_state(name, "closed")
