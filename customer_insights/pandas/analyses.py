"""Pandas DataFrame adapters for trends, funnels and cohorts."""

from typing import Sequence

import pandas as pd  # type: ignore

from customer_insights.analyses.business import BusinessAnalytics
from customer_insights.analyses.cohorts import CohortAnalysis
from customer_insights.analyses.funnel import FunnelAnalysis, FunnelStep, compute_funnel
from .events import dataframe_to_events


def trends_to_dataframe(report: BusinessAnalytics) -> pd.DataFrame:
    """Convert the trend buckets of a business report to a DataFrame.

    Args:
        report: BusinessAnalytics result

    Returns:
        DataFrame with columns: period_start, label, events,
        unique_customers, revenue, conversions (oldest bucket first)
    """
    columns = ["period_start", "label", "events", "unique_customers", "revenue", "conversions"]
    return pd.DataFrame([bucket.as_dict() for bucket in report.trends], columns=columns).assign(
        period_start=lambda df: pd.to_datetime(df["period_start"], utc=True)
    )


def _funnel_rows(per_step: Sequence[FunnelStep]) -> pd.DataFrame:
    columns = ["step", "index", "users", "conversions", "conversion_rate", "dropoff_rate"]
    return pd.DataFrame([step.as_dict() for step in per_step], columns=columns)


def funnel_to_dataframe(funnel: FunnelAnalysis) -> pd.DataFrame:
    """One row per funnel step.

    Example:
        >>> funnel = analyze_funnel(store, ["STORAGE_SEARCH", "UNIT_VIEW"])
        >>> funnel_to_dataframe(funnel)[["step", "conversion_rate"]]
    """
    return _funnel_rows(funnel.per_step)


def analyze_funnel_df(events_df: pd.DataFrame, steps: Sequence[str]) -> pd.DataFrame:
    """Run the funnel computation directly on an events DataFrame.

    Convenience function combining conversion and analysis; no store or
    date range is involved, every row takes part.
    """
    per_step, _, _ = compute_funnel(dataframe_to_events(events_df), steps)
    return _funnel_rows(per_step)


def cohorts_to_dataframe(analysis: CohortAnalysis) -> pd.DataFrame:
    """Cohort retention matrix.

    Returns:
        DataFrame indexed by cohort label with a ``size`` column and one
        ``period_<p>`` column per retention period (NaN where the cohort
        has not reached the period yet)
    """
    period_columns = [f"period_{period}" for period in analysis.retention_periods]
    rows = []
    for cohort in analysis.per_cohort:
        row = {"cohort": cohort.label, "size": cohort.size}
        for period in analysis.retention_periods:
            value = cohort.retention.get(period)
            row[f"period_{period}"] = float("nan") if value is None else value
        rows.append(row)
    df = pd.DataFrame(rows, columns=["cohort", "size", *period_columns])
    return df.set_index("cohort")
