"""
FastMCP-based lousy-agents MCP server.

Tools are plain :class:`~.tools_base.Tool` subclasses; the server wraps each
``apply`` so FastMCP sees the real parameters instead of ``**kwargs``.
"""

import functools
import inspect
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from mcp.server.fastmcp.server import FastMCP

from .tools import ALL_TOOLS
from .tools_base import Tool

logger = logging.getLogger(__name__)

SERVER_NAME = "lousy-agents"


class LousyAgentsServer:
    """FastMCP-based lousy-agents server."""

    def __init__(self):
        """Initialize the server with all tools."""
        self.tools = [tool_cls() for tool_cls in ALL_TOOLS]

    @staticmethod
    def _wrap_tool(tool_instance: Tool) -> Callable[..., str]:
        """Expose ``apply``'s signature while routing calls through ``apply_ex``."""

        @functools.wraps(tool_instance.apply)
        def wrapper(**kwargs) -> str:
            return tool_instance.apply_ex(log_call=True, catch_exceptions=True, **kwargs)

        wrapper.__signature__ = inspect.signature(tool_instance.apply)
        return wrapper

    def create_fastmcp_server(self) -> FastMCP:
        """Create a FastMCP server instance with every tool registered."""
        mcp = FastMCP(SERVER_NAME, lifespan=self.server_lifespan)
        for tool_instance in self.tools:
            mcp.add_tool(
                self._wrap_tool(tool_instance),
                name=tool_instance.get_name(),
                description=tool_instance.get_apply_docstring(),
            )
        return mcp

    @asynccontextmanager
    async def server_lifespan(self, mcp_server: FastMCP) -> AsyncIterator[None]:
        """Log startup and shutdown of the server."""
        logger.info("Registered %d tools: %s", len(self.tools), ", ".join(t.get_name() for t in self.tools))
        logger.info("Ready to handle requests")
        try:
            yield
        finally:
            logger.info("Shutting down")


def run_stdio_server() -> None:
    """Run the server over stdio until the client disconnects."""
    mcp = LousyAgentsServer().create_fastmcp_server()
    logger.info("Starting lousy-agents MCP server in stdio mode")
    try:
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
