"""
Abstract base for every tool exposed to the model.

Tools come from several sources (filesystem, MCP servers, custom commands,
checklist and rating middleware) and all share this interface: a unique
name, a description, a Pydantic args model and an async ``execute``.
"""

from abc import ABC, abstractmethod
from typing import Any, Literal

from pydantic import BaseModel

ToolKind = Literal["read", "write", "execute"]


class ToolError(Exception):
    """Recoverable tool failure.

    The engine turns it into an error tool result so the model can see
    what went wrong and retry.
    """

    pass


class ToolException(Exception):
    """Tool execution fault.

    Unlike ToolError it ends the turn: the engine reports
    "Tool execution failed: ..." instead of continuing the conversation.
    """

    pass


class ToolResult(BaseModel):
    """Result of a tool execution.

    Attributes:
        success: True if the tool ran correctly
        output: Tool output (always a string)
        error: Error message when success=False
    """

    success: bool
    output: str
    error: str | None = None

    model_config = {"extra": "forbid"}

    def as_content(self) -> str:
        """Text sent back to the model as the tool message content."""
        if self.success:
            return self.output
        return f"Error: {self.error}"


class BaseTool(ABC):
    """Abstract base class for all tools.

    Each tool must:
    1. Define name, description and args_model
    2. Implement async execute()
    3. Optionally declare its ``kind`` (``"write"`` tools are hidden
       while the checklist is still planning)

    get_schema() derives the OpenAI function-calling schema from args_model.
    """

    name: str
    description: str
    kind: ToolKind | None = None
    args_model: type[BaseModel]

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Raises:
            ToolError: recoverable failure reported back to the model
            ToolException: execution fault that ends the turn
        """

    def get_schema(self) -> dict[str, Any]:
        """Build the JSON schema in OpenAI tool/function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_model.model_json_schema(),
            },
        }

    def validate_args(self, args: dict[str, Any]) -> BaseModel:
        """Validate arguments with the Pydantic model.

        Raises:
            pydantic.ValidationError: If the arguments are invalid
        """
        return self.args_model(**args)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}', kind={self.kind})>"


class NoArgs(BaseModel):
    """Args model for tools without parameters."""

    model_config = {"extra": "forbid"}
