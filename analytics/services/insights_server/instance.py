"""
Insights Server Instance

This module provides the global FastMCP instance that every tool registers with.
It must be imported before tools are loaded to avoid circular imports.

Layout:
- instance.py: Creates the mcp object (imported by main.py and all tool modules)
- lifespan.py: Opens the event store and observability while the server runs
- main.py: Configures logging, registers the tools and runs the server
- tools/*.py: Import mcp from this module and register tools with @mcp.tool()
"""

from fastmcp import FastMCP

from analytics.services.insights_server.config import VERSION
from analytics.services.insights_server.lifespan import app_lifespan


mcp = FastMCP(name="Customer Insights", version=VERSION, lifespan=app_lifespan)
