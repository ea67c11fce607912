"""Pandas DataFrame adapters for analytics events."""

from dataclasses import fields
from datetime import datetime
from typing import Any, List, Optional, Sequence

import pandas as pd  # type: ignore

from customer_insights.foundation.event_contract import (
    AnalyticsEvent,
    EventMetrics,
    EventProperties,
    validate_and_enrich,
)

_PROPERTY_COLUMNS = [f.name for f in fields(EventProperties) if f.name != "custom_data"]
_METRIC_COLUMNS = [f.name for f in fields(EventMetrics)]

EVENT_COLUMNS = [
    "event_id",
    "customer_id",
    "customer_type",
    "event_type",
    "event_category",
    "session_id",
    "timestamp",
    "platform",
    "country",
    "data_source",
    "retention_expiry",
    *_PROPERTY_COLUMNS,
    *_METRIC_COLUMNS,
]


def events_to_dataframe(events: Sequence[AnalyticsEvent]) -> pd.DataFrame:
    """Flatten events into one row per event.

    Args:
        events: Sequence of AnalyticsEvent objects

    Returns:
        DataFrame with identity columns, device platform, country, every
        well-known property and every metric (missing values as NaN/None),
        sorted by timestamp.

    Example:
        >>> df = events_to_dataframe(store.query_by_customer("c1"))
        >>> df.groupby("event_type").size()
    """
    if not events:
        return pd.DataFrame(columns=EVENT_COLUMNS)

    rows = []
    for event in events:
        row: dict[str, Any] = {
            "event_id": event.event_id,
            "customer_id": event.customer_id,
            "customer_type": event.customer_type.value,
            "event_type": event.event_type.value,
            "event_category": event.event_category.value,
            "session_id": event.session_id,
            "timestamp": event.timestamp,
            "platform": (
                event.device.platform.value if event.device and event.device.platform else None
            ),
            "country": event.location.country if event.location else None,
            "data_source": event.data_quality.data_source.value,
            "retention_expiry": event.retention_expiry,
        }
        for name in _PROPERTY_COLUMNS:
            row[name] = getattr(event.properties, name)
        for name in _METRIC_COLUMNS:
            row[name] = getattr(event.metrics, name)
        rows.append(row)

    df = pd.DataFrame(rows, columns=EVENT_COLUMNS)
    df = df.sort_values(["timestamp", "event_id"]).reset_index(drop=True)
    return df


def _clean(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    return value


def dataframe_to_events(
    events_df: pd.DataFrame, *, now: Optional[datetime] = None
) -> List[AnalyticsEvent]:
    """Validate DataFrame rows into events.

    Columns named after well-known properties or metrics are routed into
    ``properties`` / ``metrics``; ``platform`` and ``country`` become device
    and location context, and ``retention_expiry`` is kept as the
    privacy expiry. Other columns are ignored.

    Args:
        events_df: DataFrame with at least ``customer_id`` and ``event_type``
        now: Creation time for defaults (current UTC time when omitted)

    Returns:
        List of validated AnalyticsEvent objects, in row order

    Raises:
        ValueError: If required columns are missing or a row fails
            validation (the row index is included in the message)
    """
    required_cols = {"customer_id", "event_type"}
    missing_cols = required_cols - set(events_df.columns)
    if missing_cols:
        raise ValueError(f"DataFrame missing required columns: {missing_cols}")

    events = []
    for idx, record in enumerate(events_df.to_dict("records")):
        record = {key: _clean(value) for key, value in record.items()}
        payload: dict[str, Any] = {
            key: record.get(key)
            for key in ("event_id", "customer_id", "customer_type", "event_type",
                        "event_category", "session_id", "timestamp")
            if record.get(key) is not None
        }
        payload["properties"] = {
            name: record[name] for name in _PROPERTY_COLUMNS if record.get(name) is not None
        }
        payload["metrics"] = {
            name: record[name] for name in _METRIC_COLUMNS if record.get(name) is not None
        }
        if record.get("platform"):
            payload["device"] = {"platform": record["platform"]}
        if record.get("country"):
            payload["location"] = {"country": record["country"]}
        if record.get("retention_expiry") is not None:
            payload["privacy"] = {"data_retention_expiry": record["retention_expiry"]}
        if record.get("data_source"):
            payload["data_source"] = record["data_source"]
        try:
            events.append(validate_and_enrich(payload, now=now))
        except ValueError as exc:
            raise ValueError(f"Row {idx}: {exc}") from exc
    return events
