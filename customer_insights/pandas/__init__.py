"""Pandas DataFrame adapters for customer insights components."""

from .events import (
    events_to_dataframe,
    dataframe_to_events,
)
from .analyses import (
    trends_to_dataframe,
    funnel_to_dataframe,
    analyze_funnel_df,
    cohorts_to_dataframe,
)

__all__ = [
    # Event adapters
    "events_to_dataframe",
    "dataframe_to_events",
    # Analysis adapters
    "trends_to_dataframe",
    "funnel_to_dataframe",
    "analyze_funnel_df",
    "cohorts_to_dataframe",
]
