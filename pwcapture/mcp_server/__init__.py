"""pwcapture MCP server.

Exposes test execution and captured-evidence queries through the Model
Context Protocol so MCP clients can run and debug Playwright tests.
"""

from pwcapture.mcp_server.server import CaptureToolServer

__all__ = ["CaptureToolServer"]
