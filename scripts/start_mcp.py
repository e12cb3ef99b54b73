#!/usr/bin/env python3
"""Start the pwcapture MCP server.

This script launches the pwcapture MCP (Model Context Protocol) server for a
Playwright project, so MCP clients can run tests and inspect captured
actions, network traffic, console output and DOM snapshots.

Usage:
    python scripts/start_mcp.py [--cwd DIR] [--transport stdio|sse] [--port 8001]

    # Run with stdio transport (default):
    python scripts/start_mcp.py --cwd ~/src/web-app

    # Run with SSE transport (HTTP):
    python scripts/start_mcp.py --transport sse --port 8001

Configuration:
    Capture settings are read from config/pwcapture.yaml (or --config).
    Environment variables override YAML configuration:
      - PWCAPTURE_<SETTING>: any capture setting, e.g. PWCAPTURE_SINGLE_TIMEOUT_SECONDS
      - PWCAPTURE_MCP_TRANSPORT: stdio or sse
      - PWCAPTURE_MCP_SSE_PORT: SSE port
      - PWCAPTURE_MCP_SSE_HOST: SSE bind address
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import structlog

from pwcapture.config import DEFAULT_CONFIG_PATH, load_settings
from pwcapture.mcp_server import CaptureToolServer


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="pwcapture MCP server")
    parser.add_argument("--cwd", default=os.getcwd(), help="Playwright project directory")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="YAML settings file")
    parser.add_argument("--transport", choices=("stdio", "sse"), default=None)
    parser.add_argument("--host", default=None, help="SSE bind address")
    parser.add_argument("--port", type=int, default=None, help="SSE port")
    return parser.parse_args(argv)


def configure_logging() -> None:
    # stdout carries the stdio transport, so logs go to stderr.
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


async def main(argv: list[str]) -> None:
    """Main entry point."""
    configure_logging()
    logger = structlog.get_logger(__name__)
    args = parse_args(argv)

    transport = args.transport or os.getenv("PWCAPTURE_MCP_TRANSPORT", "stdio")
    sse_host = args.host or os.getenv("PWCAPTURE_MCP_SSE_HOST", "127.0.0.1")
    sse_port = args.port or int(os.getenv("PWCAPTURE_MCP_SSE_PORT", "8001"))
    cwd = os.path.abspath(os.path.expanduser(args.cwd))

    if not os.path.isdir(cwd):
        logger.error("invalid_project_dir", cwd=cwd)
        sys.exit(1)

    settings = load_settings(args.config)
    logger.info(
        "starting_pwcapture_mcp",
        transport=transport,
        cwd=cwd,
        sse_port=sse_port if transport == "sse" else None,
    )

    try:
        server = CaptureToolServer(cwd, settings)
        if transport == "stdio":
            await server.run_stdio()
        elif transport == "sse":
            logger.info("mcp_server_ready", transport="sse", url=f"http://{sse_host}:{sse_port}/sse")
            await server.run_sse(host=sse_host, port=sse_port)
        else:
            logger.error("invalid_transport", transport=transport)
            sys.exit(1)
    except KeyboardInterrupt:
        logger.info("mcp_server_shutdown", reason="User interrupt")
    except Exception as e:
        logger.error("mcp_server_fatal_error", error=str(e), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
