"""Shared context types for the MCP server.

Kept apart from server and tools to avoid circular imports.
"""

from dataclasses import dataclass

from mcp.server.fastmcp import Context
from mcp.server.session import ServerSession

from .engine import ExpressionEngine


@dataclass
class AppContext:
    """Resources shared by every MCP tool call.

    Created once during server startup and injected into tools through
    the Context parameter.
    """

    engine: ExpressionEngine


# Type alias for MCP tool context parameter
AppContextType = Context[ServerSession, AppContext]


__all__ = ["AppContext", "AppContextType"]
