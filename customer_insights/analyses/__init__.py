"""Read-only analytical engines over the event store.

1. Customer aggregations - overview, behaviour, engagement, preferences
2. Real-time snapshot - trailing-window activity and system health
3. Business analytics - overview, trends, conversion, demographics,
   performance and revenue
4. Funnel analysis - ordered step-to-step conversion
5. Cohort analysis - acquisition cohorts and period retention
6. Predictive scores - churn risk, value segment, next actions
"""

from .business import AnalyticsSummary, BusinessAnalytics, analytics_summary, business_analytics
from .cohorts import (
    CohortAnalysis,
    CohortRetention,
    RetentionPolicy,
    analyze_cohorts,
    compute_cohorts,
)
from .customer import (
    CustomerInsights,
    CustomerOverview,
    CustomerPreferences,
    EngagementMetrics,
    EventTypeBehavior,
    customer_behavior,
    customer_insights,
    customer_overview,
    customer_preferences,
    engagement_metrics,
)
from .funnel import FunnelAnalysis, FunnelStep, analyze_funnel, compute_funnel
from .predictive import (
    ChurnRisk,
    CustomerValue,
    NextActionPrediction,
    PredictiveInsights,
    Recommendation,
    churn_risk,
    customer_value,
    generate_recommendations,
    predict_next_actions,
    prediction_confidence,
    predictive_insights,
)
from .realtime import RealTimeSnapshot, SystemHealth, real_time_snapshot

__all__ = [
    # Business
    "AnalyticsSummary",
    "BusinessAnalytics",
    "analytics_summary",
    "business_analytics",
    # Cohorts
    "CohortAnalysis",
    "CohortRetention",
    "RetentionPolicy",
    "analyze_cohorts",
    "compute_cohorts",
    # Customer
    "CustomerInsights",
    "CustomerOverview",
    "CustomerPreferences",
    "EngagementMetrics",
    "EventTypeBehavior",
    "customer_behavior",
    "customer_insights",
    "customer_overview",
    "customer_preferences",
    "engagement_metrics",
    # Funnel
    "FunnelAnalysis",
    "FunnelStep",
    "analyze_funnel",
    "compute_funnel",
    # Predictive
    "ChurnRisk",
    "CustomerValue",
    "NextActionPrediction",
    "PredictiveInsights",
    "Recommendation",
    "churn_risk",
    "customer_value",
    "generate_recommendations",
    "predict_next_actions",
    "prediction_confidence",
    "predictive_insights",
    # Real-time
    "RealTimeSnapshot",
    "SystemHealth",
    "real_time_snapshot",
]
