"""Entry point for running the insights server as a module.

    python -m analytics.services.insights_server
"""

from analytics.services.insights_server.main import mcp


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
