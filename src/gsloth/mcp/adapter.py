"""
Adapter that turns remote MCP tools into local BaseTool instances.
"""

import json
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, create_model
from pydantic import ValidationError as ArgsValidationError

from ..config.schema import MCPServerConfig
from ..tools.base import BaseTool, ToolError, ToolResult
from .client import MCPClient, MCPConnectionError, MCPError, MCPToolCallError

logger = structlog.get_logger()

_JSON_TYPES = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "array": list,
    "object": dict,
}

_RESERVED = frozenset(dir(BaseModel))


class MCPToolAdapter(BaseTool):
    """A remote MCP tool behind the local BaseTool interface.

    Names are prefixed ``mcp_{server}_{tool}`` to avoid collisions
    between servers.
    """

    def __init__(self, client: MCPClient, tool_definition: dict[str, Any], server_name: str):
        self.client = client
        self._original_name = tool_definition.get("name", "unknown")
        self._server_name = server_name
        self.name = f"mcp_{server_name}_{self._original_name}"
        self.description = tool_definition.get(
            "description", f"Remote MCP tool: {self._original_name}"
        )
        self.kind = None
        self._raw_schema = tool_definition.get("inputSchema", {})
        self.args_model = self._build_args_model()

    def _build_args_model(self) -> type[BaseModel]:
        """Build a Pydantic model from the tool's JSON Schema."""
        properties = self._raw_schema.get("properties", {}) if self._raw_schema else {}
        required = set(self._raw_schema.get("required", [])) if self._raw_schema else set()

        fields: dict[str, Any] = {}
        for field_name, field_schema in properties.items():
            field_type = _JSON_TYPES.get(field_schema.get("type", "string"), str)
            # Names like "schema" collide with BaseModel attributes
            alias = field_name if field_name in _RESERVED else None
            python_name = f"{field_name}_" if alias else field_name
            if field_name in required:
                fields[python_name] = (field_type, Field(..., alias=alias))
            else:
                fields[python_name] = (field_type | None, Field(default=None, alias=alias))

        return create_model(
            f"{self.name}_Args",
            __config__=ConfigDict(extra="forbid", populate_by_name=True),
            **fields,
        )

    def get_schema(self) -> dict[str, Any]:
        """Forward the server's own JSON Schema to the model."""
        schema = self._raw_schema or {"type": "object", "properties": {}}
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": schema,
            },
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        try:
            args = self.validate_args(kwargs).model_dump(by_alias=True, exclude_none=True)
        except ArgsValidationError as e:
            raise ToolError(f"Invalid arguments for {self.name}: {e}") from e

        try:
            result = await self.client.call_tool(self._original_name, args)
        except MCPConnectionError as e:
            return ToolResult(
                success=False,
                output="",
                error=f"Connection error with MCP server '{self._server_name}': {e}",
            )
        except MCPToolCallError as e:
            return ToolResult(success=False, output="", error=f"Remote tool failed: {e}")

        return ToolResult(success=not result.get("isError", False), output=_extract_content(result),
                          error="Remote tool reported an error" if result.get("isError") else None)

    def __repr__(self) -> str:
        return f"<MCPToolAdapter(name='{self.name}', server='{self._server_name}')>"


def _extract_content(result: dict[str, Any]) -> str:
    """Flatten the MCP result content blocks to text."""
    content = result.get("content")
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict) and "text" in block:
                parts.append(block["text"])
            elif isinstance(block, dict) and "data" in block:
                parts.append(str(block["data"]))
            else:
                parts.append(str(block))
        return "\n".join(parts)
    if isinstance(content, str):
        return content
    return json.dumps(result, indent=2)


async def discover_mcp_tools(
    servers: list[MCPServerConfig],
) -> tuple[list[BaseTool], list[MCPClient]]:
    """Connect to every server and adapt its tools.

    A failing server is logged and skipped. The returned clients stay
    open and must be closed by the caller.
    """
    log = logger.bind(component="mcp_discovery")
    tools: list[BaseTool] = []
    clients: list[MCPClient] = []

    for server in servers:
        client = MCPClient(server)
        try:
            definitions = await client.list_tools()
        except MCPError as e:
            log.error("mcp.discovery.server_failed", server=server.name, error=str(e))
            await client.aclose()
            continue

        clients.append(client)
        for definition in definitions:
            tools.append(MCPToolAdapter(client, definition, server.name))
        log.info("mcp.discovery.server_done", server=server.name, tools=len(definitions))

    return tools, clients
