"""Environment-driven configuration for the insights server.

The core library takes its settings as explicit arguments; only the server
reads the process environment, once, at startup.
"""

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field

from customer_insights.analyses.realtime import DEFAULT_WINDOW_MINUTES
from customer_insights.foundation.backends import MEMORY_URL
from customer_insights.foundation.event_store import DEFAULT_PURGE_BATCH_SIZE

VERSION = "1.0.0"


class InsightsServerConfig(BaseModel):
    """Settings for one server process."""

    store_url: str = Field(
        default=MEMORY_URL,
        description="Event store URL: memory:// or a SQLAlchemy database URL",
    )
    query_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Deadline applied to every tool call"
    )
    purge_batch_size: int = Field(
        default=DEFAULT_PURGE_BATCH_SIZE, gt=0, description="Records per purge batch"
    )
    retention_days: int | None = Field(
        default=None,
        gt=0,
        description="Retention for events without an explicit expiry (None = one calendar year)",
    )
    realtime_window_minutes: int = Field(
        default=DEFAULT_WINDOW_MINUTES, gt=0, description="Default real-time window"
    )
    environment: str = Field(default="development")
    otlp_endpoint: str | None = Field(default=None, description="OTLP gRPC endpoint")
    sampling_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    metrics_port: int = Field(default=8000, description="Prometheus metrics port")
    log_level: str = Field(default="INFO")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "InsightsServerConfig":
        """Build a config from ``environ`` (defaults to ``os.environ``).

        Unset variables keep the field defaults; malformed values raise
        pydantic's ``ValidationError``.
        """
        env = os.environ if environ is None else environ
        names = {
            "store_url": "INSIGHTS_STORE_URL",
            "query_timeout_seconds": "INSIGHTS_QUERY_TIMEOUT_SECONDS",
            "purge_batch_size": "INSIGHTS_PURGE_BATCH_SIZE",
            "retention_days": "INSIGHTS_RETENTION_DAYS",
            "realtime_window_minutes": "INSIGHTS_REALTIME_WINDOW_MINUTES",
            "environment": "ENVIRONMENT",
            "otlp_endpoint": "OTLP_ENDPOINT",
            "sampling_rate": "SAMPLING_RATE",
            "metrics_port": "PROMETHEUS_METRICS_PORT",
            "log_level": "LOG_LEVEL",
        }
        values = {field: env[var] for field, var in names.items() if env.get(var)}
        return cls(**values)
