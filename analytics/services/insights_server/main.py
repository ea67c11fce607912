"""
Customer Insights Server

Main entry point for the insights tool server: configures structured
logging and registers every tool with the shared FastMCP instance.
"""

import logging
import os
import sys

import structlog

_log_level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
if not isinstance(_log_level, int):
    _log_level = logging.INFO

# Logs go to stderr; stdout carries the MCP protocol
logging.basicConfig(format="%(message)s", stream=sys.stderr, level=_log_level)

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(_log_level),
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
)

logger = structlog.get_logger(__name__)

from analytics.services.insights_server.instance import VERSION, mcp  # noqa: E402

# Each tool module registers itself with @mcp.tool() on import
from analytics.services.insights_server import tools  # noqa: E402

logger.info(
    "insights_server_initialized",
    version=VERSION,
    tools_registered=len(tools.__all__),
)


if __name__ == "__main__":
    mcp.run()
