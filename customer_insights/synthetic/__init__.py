"""Synthetic behaviour generation.

This package produces realistic-but-fake event streams to exercise the
store, the analyses and the tool server without production data.
"""

from .generator import (
    BASELINE_SCENARIO,
    HIGH_CHURN_SCENARIO,
    HIGH_CONVERSION_SCENARIO,
    Customer,
    ScenarioConfig,
    generate_customers,
    generate_events,
)

__all__ = [
    "Customer",
    "ScenarioConfig",
    "generate_customers",
    "generate_events",
    "BASELINE_SCENARIO",
    "HIGH_CHURN_SCENARIO",
    "HIGH_CONVERSION_SCENARIO",
]
