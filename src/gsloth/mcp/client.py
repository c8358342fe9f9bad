"""
Async HTTP client for MCP (Model Context Protocol) servers.

JSON-RPC 2.0 over HTTP with:
- the mandatory ``initialize`` handshake
- ``mcp-session-id`` session tracking
- SSE (Server-Sent Events) and plain JSON responses
- Bearer token authentication

Clients are long-lived: the runner opens them at init and closes them
in cleanup.
"""

import json as _json
import os
from typing import Any

import httpx
import structlog

from ..config.schema import MCPServerConfig

logger = structlog.get_logger()

_MCP_PROTOCOL_VERSION = "2024-11-05"

_CLIENT_INFO = {"name": "gsloth", "version": "0.1"}


class MCPError(Exception):
    """Base error for MCP operations."""

    pass


class MCPConnectionError(MCPError):
    """Connection error with an MCP server."""

    pass


class MCPToolCallError(MCPError):
    """Error while executing a tool on an MCP server."""

    pass


class MCPClient:
    """Async HTTP client for one MCP server.

    Connection flow:
    1. POST initialize -> session ID from the response headers
    2. POST tools/list (with session ID)
    3. POST tools/call (with session ID)
    """

    def __init__(self, server_config: MCPServerConfig, http: httpx.AsyncClient | None = None):
        self.config = server_config
        self.base_url = server_config.url
        self.log = logger.bind(component="mcp_client", server=server_config.name)
        self.token = self._resolve_token()
        self._session_id: str | None = None
        self._initialized = False
        self._request_id = 0
        self._closed = False

        # Accept SSE is mandatory for MCP
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        self.http = http or httpx.AsyncClient(
            headers=headers,
            timeout=30.0,
            follow_redirects=True,
        )

    def _resolve_token(self) -> str | None:
        """Token from the config, else from the ``token_env`` variable."""
        if self.config.token:
            return self.config.token

        if self.config.token_env:
            return os.environ.get(self.config.token_env) or None

        return None

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _ensure_initialized(self) -> None:
        """Run the initialize handshake once.

        Raises:
            MCPConnectionError: If initialization fails
        """
        if self._initialized:
            return

        request = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": "initialize",
            "params": {
                "protocolVersion": _MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": _CLIENT_INFO,
            },
        }

        try:
            response = await self.http.post(self.base_url, json=request)
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.log.error("mcp.initialize.connection_error", error=str(e), url=self.base_url)
            raise MCPConnectionError(
                f"Error initializing MCP server '{self.config.name}' at {self.base_url}: {e}"
            ) from e

        self._session_id = response.headers.get("mcp-session-id")

        data = self._parse_response(response)
        if "error" in data:
            raise MCPConnectionError(
                f"initialize failed: {data['error'].get('message', 'Unknown error')}"
            )

        server_info = data.get("result", {}).get("serverInfo", {})
        self.log.info(
            "mcp.initialize.success",
            server_name=server_info.get("name", "unknown"),
            server_version=server_info.get("version", "unknown"),
        )
        self._initialized = True

    async def _post_rpc(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """Send a JSON-RPC request, initializing the session lazily.

        Raises:
            MCPConnectionError: On network errors
            MCPError: If the response cannot be parsed
        """
        await self._ensure_initialized()

        request = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params,
        }
        headers = {"mcp-session-id": self._session_id} if self._session_id else {}

        try:
            response = await self.http.post(self.base_url, json=request, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise MCPConnectionError(
                f"Error in {method} on MCP server '{self.config.name}': {e}"
            ) from e

        return self._parse_response(response)

    def _parse_response(self, response: httpx.Response) -> dict[str, Any]:
        """Parse a JSON or SSE response body into a JSON-RPC message."""
        content_type = response.headers.get("content-type", "")

        if "text/event-stream" in content_type:
            return self._parse_sse(response.text)

        try:
            return response.json()
        except ValueError as e:
            raise MCPError(
                f"Unsupported response (Content-Type: {content_type}): {response.text[:200]}"
            ) from e

    def _parse_sse(self, text: str) -> dict[str, Any]:
        """Return the first ``data:`` event carrying a JSON-RPC message."""
        for line in text.splitlines():
            line = line.strip()
            if not line.startswith("data:"):
                continue
            payload = line[5:].strip()
            if not payload:
                continue
            try:
                data = _json.loads(payload)
            except _json.JSONDecodeError:
                continue
            if isinstance(data, dict) and "jsonrpc" in data:
                return data

        raise MCPError(f"No valid JSON-RPC event in SSE response: {text[:200]}")

    async def list_tools(self) -> list[dict[str, Any]]:
        """List the tools the server offers.

        Raises:
            MCPConnectionError: On connection errors
            MCPError: If the server returns an error
        """
        data = await self._post_rpc("tools/list", {})

        if "error" in data:
            error = data["error"]
            self.log.error("mcp.list_tools.rpc_error", code=error.get("code"))
            raise MCPError(f"MCP server error: {error.get('message', 'Unknown error')}")

        tools = data.get("result", {}).get("tools", [])
        self.log.info("mcp.list_tools.success", count=len(tools))
        return tools

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Execute a tool on the server.

        Raises:
            MCPConnectionError: On connection errors
            MCPToolCallError: If the tool execution fails
        """
        self.log.info("mcp.call_tool.start", tool=tool_name)

        try:
            data = await self._post_rpc("tools/call", {"name": tool_name, "arguments": arguments})
        except MCPConnectionError:
            raise
        except MCPError as e:
            raise MCPToolCallError(str(e)) from e

        if "error" in data:
            error = data["error"]
            raise MCPToolCallError(
                f"Error executing tool: {error.get('message', 'Unknown error')}"
            )

        return data.get("result", {})

    async def aclose(self) -> None:
        """Close the HTTP client. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self.http.aclose()
        self.log.info("mcp.client.closed")

    def __repr__(self) -> str:
        return f"<MCPClient(server='{self.config.name}', url='{self.base_url}')>"
