"""
MCP module - remote tools from Model Context Protocol servers.
"""

from .adapter import MCPToolAdapter, discover_mcp_tools
from .client import MCPClient, MCPConnectionError, MCPError, MCPToolCallError

__all__ = [
    "MCPClient",
    "MCPError",
    "MCPConnectionError",
    "MCPToolCallError",
    "MCPToolAdapter",
    "discover_mcp_tools",
]
