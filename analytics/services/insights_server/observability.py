"""
OpenTelemetry setup for the insights server.

Spans (one per tool call, see tools/_common.py) and OTel metrics go to
stderr by default, or over gRPC when ``OTLP_ENDPOINT`` is set. The
providers are returned so the lifespan can flush them on shutdown.
"""

import sys
from dataclasses import dataclass

import structlog
from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.trace.sampling import ParentBasedTraceIdRatio, Sampler, TraceIdRatioBased

from analytics.services.insights_server.config import VERSION, InsightsServerConfig

logger = structlog.get_logger(__name__)

SERVICE_NAME = "customer-insights"
METRIC_EXPORT_INTERVAL_MS = 60_000


@dataclass
class Telemetry:
    """Installed providers, kept for shutdown."""

    tracer_provider: TracerProvider
    meter_provider: MeterProvider

    def shutdown(self) -> None:
        self.tracer_provider.shutdown()
        self.meter_provider.shutdown()
        logger.info("observability_shut_down")


def configure_observability(config: InsightsServerConfig) -> Telemetry:
    """Install global tracer and meter providers for ``config``.

    Args:
        config: Server configuration; ``environment``, ``otlp_endpoint`` and
            ``sampling_rate`` are used

    Returns:
        Telemetry holding the providers
    """
    resource = Resource.create(
        {
            "service.name": SERVICE_NAME,
            "service.version": VERSION,
            "deployment.environment": config.environment,
        }
    )

    tracer_provider = TracerProvider(resource=resource, sampler=_create_sampler(config.sampling_rate))
    tracer_provider.add_span_processor(BatchSpanProcessor(_span_exporter(config.otlp_endpoint)))
    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[
            PeriodicExportingMetricReader(
                _metric_exporter(config.otlp_endpoint),
                export_interval_millis=METRIC_EXPORT_INTERVAL_MS,
            )
        ],
    )

    trace.set_tracer_provider(tracer_provider)
    metrics.set_meter_provider(meter_provider)

    logger.info(
        "observability_configured",
        environment=config.environment,
        otlp_endpoint=config.otlp_endpoint,
        sampling_rate=config.sampling_rate,
    )
    return Telemetry(tracer_provider=tracer_provider, meter_provider=meter_provider)


def _span_exporter(otlp_endpoint: str | None) -> SpanExporter:
    if otlp_endpoint is None:
        return ConsoleSpanExporter(out=sys.stderr)
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

    # Plain gRPC to a local collector
    return OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)


def _metric_exporter(otlp_endpoint: str | None) -> MetricExporter:
    if otlp_endpoint is None:
        return ConsoleMetricExporter(out=sys.stderr)
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

    return OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True)


def _create_sampler(sampling_rate: float) -> Sampler:
    """Sample nothing at 0, otherwise follow the parent with a ratio fallback."""
    if sampling_rate <= 0.0:
        return TraceIdRatioBased(0.0)
    return ParentBasedTraceIdRatio(min(sampling_rate, 1.0))
