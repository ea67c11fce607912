"""Tools for the Customer Insights server.

Importing this package registers every tool with the shared FastMCP instance.
"""

# Ingestion
from .ingestion import track_event, track_events

# Queries
from .business import get_analytics_summary, get_business_analytics, get_realtime_analytics
from .cohorts import get_cohort_analysis
from .customers import get_customer_insights, get_customer_journey, get_predictive_insights
from .events import query_events
from .funnel import get_funnel_analysis

# Compliance
from .compliance import cleanup_expired_data, erase_customer_data

# Observability
from .health_check import health_check

__all__ = [
    # Ingestion
    "track_event",
    "track_events",
    # Queries
    "get_customer_insights",
    "get_customer_journey",
    "get_predictive_insights",
    "get_business_analytics",
    "get_realtime_analytics",
    "get_analytics_summary",
    "get_funnel_analysis",
    "get_cohort_analysis",
    "query_events",
    # Compliance
    "cleanup_expired_data",
    "erase_customer_data",
    # Observability
    "health_check",
]
