"""
MCP stdio server exposing the memlink operations as tools.

Register with an MCP client, e.g.:

    {
      "mcpServers": {
        "memlink": {
          "command": "memlink",
          "args": ["--config", "/path/to/config.yaml", "mcp"]
        }
      }
    }
"""

import asyncio
import json
import logging
from functools import partial
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from memlink.core.cli import build_runtime
from memlink.core.outcomes import ToolOutcome
from memlink.core.tools import MemoryGraph, tool_definitions

logger = logging.getLogger(__name__)


async def run_sync(func, *args, **kwargs):
    """Run a synchronous function in a thread pool to avoid blocking."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))


def build_tools() -> list[Tool]:
    return [
        Tool(
            name=definition["name"],
            description=definition["description"],
            inputSchema=definition["input_schema"],
        )
        for definition in tool_definitions()
    ]


def render_outcome(outcome: ToolOutcome) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(outcome.to_dict(), indent=2))]


def create_server(graph: MemoryGraph) -> Server:
    server = Server("memlink")

    @server.list_tools()
    async def list_tools():
        return build_tools()

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any] | None):
        outcome = await run_sync(graph.call, name, arguments or {})
        return render_outcome(outcome)

    return server


async def serve_stdio(config: dict[str, Any]) -> None:
    """Serve MCP over stdin/stdout until the client disconnects."""
    storage, graph = build_runtime(config)
    logger.info("MCP server using store %s", storage.location)
    server = create_server(graph)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        storage.close()
