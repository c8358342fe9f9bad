"""
Tools module - tools the agent can call.

Exports the base classes, pool deduplication, filesystem tools and the custom
command toolkit.
"""

from .base import BaseTool, NoArgs, ToolError, ToolException, ToolResult
from .custom import (
    CommandRejectedError,
    CustomCommandTool,
    CustomCommandToolkit,
    DevToolkit,
    ParameterValidationError,
    build_custom_command,
    execute_command,
    validate_parameter_value,
)
from .filesystem import EditFileTool, ListFilesTool, ReadFileTool, WriteFileTool, filesystem_tools
from .registry import dedupe_tools

__all__ = [
    # Base
    "BaseTool",
    "NoArgs",
    "ToolError",
    "ToolException",
    "ToolResult",
    # Pool
    "dedupe_tools",
    # Filesystem tools
    "ReadFileTool",
    "ListFilesTool",
    "WriteFileTool",
    "EditFileTool",
    "filesystem_tools",
    # Custom commands
    "CustomCommandTool",
    "CustomCommandToolkit",
    "DevToolkit",
    "CommandRejectedError",
    "ParameterValidationError",
    "build_custom_command",
    "execute_command",
    "validate_parameter_value",
]
