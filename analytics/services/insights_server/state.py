"""Process-wide runtime for the insights server.

FastMCP's Context is per-request, so the event store, the event contract
and the expiry manager live in a single runtime object shared by all tool
calls. The lifespan in main.py installs it; tools fall back to a runtime
built from the environment when none has been installed yet.
"""

import threading

import structlog

from customer_insights.compliance.expiry import ExpiryManager
from customer_insights.foundation import Deadline, EventContract, EventStore, create_event_store

from analytics.services.insights_server.config import InsightsServerConfig

logger = structlog.get_logger(__name__)


class InsightsRuntime:
    """Open store plus the collaborators built around it.

    Args:
        config: Server configuration
        store: Store to use; when omitted one is created from
            ``config.store_url``
    """

    def __init__(self, config: InsightsServerConfig, store: EventStore | None = None):
        self.config = config
        self.store = store if store is not None else create_event_store(config.store_url)
        self.contract = EventContract(retention_days=config.retention_days)
        self.expiry = ExpiryManager(self.store, batch_size=config.purge_batch_size)

    def open(self) -> "InsightsRuntime":
        self.store.open()
        logger.info("event_store_opened", store_url=self.config.store_url)
        return self

    def close(self) -> None:
        self.store.close()
        logger.info("event_store_closed", store_url=self.config.store_url)

    def new_deadline(self) -> Deadline:
        """Deadline for one tool call."""
        return Deadline.after(self.config.query_timeout_seconds)


_runtime: InsightsRuntime | None = None
_runtime_lock = threading.RLock()


def get_runtime() -> InsightsRuntime:
    """Return the installed runtime, creating one from the environment if needed."""
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = InsightsRuntime(InsightsServerConfig.from_env()).open()
        return _runtime


def set_runtime(runtime: InsightsRuntime | None) -> InsightsRuntime | None:
    """Install ``runtime`` (or clear it with ``None``) and return the previous one."""
    global _runtime
    with _runtime_lock:
        previous, _runtime = _runtime, runtime
        return previous
