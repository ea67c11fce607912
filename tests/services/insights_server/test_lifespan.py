"""Tests for server startup: lifespan and observability."""

from unittest.mock import MagicMock

import pytest
from opentelemetry.sdk.trace.sampling import ParentBasedTraceIdRatio, TraceIdRatioBased

from analytics.services.insights_server import lifespan
from analytics.services.insights_server.config import InsightsServerConfig
from analytics.services.insights_server.observability import (
    Telemetry,
    _create_sampler,
    configure_observability,
)
from analytics.services.insights_server.state import get_runtime, set_runtime


class TestLifespan:
    """Test the server lifespan."""

    @pytest.mark.asyncio
    async def test_opens_and_closes_the_store(self, monkeypatch):
        """Test that the runtime is installed while the server runs."""
        monkeypatch.setenv("INSIGHTS_STORE_URL", "sqlite://")
        monkeypatch.setenv("ENVIRONMENT", "test")
        observability = MagicMock()
        metrics_server = MagicMock(side_effect=RuntimeError("Metrics server is already running"))
        monkeypatch.setattr(lifespan, "configure_observability", observability)
        monkeypatch.setattr(lifespan, "start_metrics_server", metrics_server)

        async with lifespan.app_lifespan(None):
            runtime = get_runtime()
            assert runtime.config.store_url == "sqlite://"
            assert runtime.store.ping()

        assert not runtime.store.ping()
        observability.assert_called_once()
        assert observability.call_args.args[0].environment == "test"
        observability.return_value.shutdown.assert_called_once()
        metrics_server.assert_called_once_with(port=8000)
        assert set_runtime(None) is None


class TestSampler:
    """Test trace sampler selection."""

    def test_disabled_sampling(self):
        """Test that a zero rate drops every trace."""
        assert isinstance(_create_sampler(0.0), TraceIdRatioBased)

    def test_ratio_sampling(self):
        """Test that positive rates respect the parent decision."""
        assert isinstance(_create_sampler(0.25), ParentBasedTraceIdRatio)

    def test_console_export(self):
        """Test that providers are built for console export and shut down cleanly."""
        telemetry = configure_observability(InsightsServerConfig(environment="test", sampling_rate=0.5))

        assert isinstance(telemetry, Telemetry)
        assert isinstance(telemetry.tracer_provider.sampler, ParentBasedTraceIdRatio)
        telemetry.shutdown()
