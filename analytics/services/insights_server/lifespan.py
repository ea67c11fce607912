"""Server lifespan: observability, metrics endpoint and the shared event store."""

from contextlib import asynccontextmanager

import structlog

from analytics.services.insights_server.config import VERSION, InsightsServerConfig
from analytics.services.insights_server.metrics import start_metrics_server
from analytics.services.insights_server.observability import configure_observability
from analytics.services.insights_server.state import InsightsRuntime, set_runtime

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def app_lifespan(app):
    """Open the event store and observability for the server's lifetime."""
    config = InsightsServerConfig.from_env()
    logger.info(
        "insights_server_starting",
        version=VERSION,
        store_url=config.store_url,
        environment=config.environment,
    )

    telemetry = configure_observability(config)

    try:
        start_metrics_server(port=config.metrics_port)
    except RuntimeError as e:
        # Already running (e.g. hot reload)
        logger.warning("prometheus_metrics_server_already_running", error=str(e))
    except OSError as e:
        logger.error("prometheus_metrics_server_failed", error=str(e), port=config.metrics_port)

    runtime = InsightsRuntime(config).open()
    set_runtime(runtime)
    try:
        yield
    finally:
        set_runtime(None)
        runtime.close()
        telemetry.shutdown()
        logger.info("insights_server_stopping")
