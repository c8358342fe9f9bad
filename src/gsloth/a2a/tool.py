"""
Delegation tools: one ``a2a_agent_{id}`` tool per configured external agent.
"""

from typing import Any

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as ArgsValidationError

from ..config.schema import A2AAgentConfig
from ..tools.base import BaseTool, ToolError, ToolResult
from .client import A2AClient, A2AError

logger = structlog.get_logger()


class A2AMessageArgs(BaseModel):
    message: str = Field(description="The message or task description to send to the agent.")

    model_config = {"extra": "forbid"}


class A2AAgentTool(BaseTool):
    """Sends the model's message to an external agent and returns the reply.

    Communication failures come back as error results so the model can
    carry on without the agent.
    """

    args_model = A2AMessageArgs

    def __init__(self, client: A2AClient):
        self.client = client
        self.name = f"a2a_agent_{client.agent_id}"
        self.description = (
            f"Interact with the external A2A agent '{client.agent_id}'. Use this tool "
            "to delegate tasks or ask questions to the external agent."
        )
        self.kind = None

    async def execute(self, **kwargs: Any) -> ToolResult:
        try:
            args = self.validate_args(kwargs)
        except ArgsValidationError as e:
            raise ToolError(f"Invalid arguments for {self.name}: {e}") from e

        try:
            reply = await self.client.send_message(args.message)
        except A2AError as e:
            logger.warning("a2a.tool.failed", tool=self.name, error=str(e))
            return ToolResult(
                success=False, output="", error=f"Error communicating with agent: {e}"
            )
        return ToolResult(success=True, output=reply)


def a2a_agent_tools(
    agents: dict[str, A2AAgentConfig],
) -> tuple[list[BaseTool], list[A2AClient]]:
    """Build the delegation tools and the clients the caller must close."""
    clients = [A2AClient(agent_id, config) for agent_id, config in agents.items()]
    return [A2AAgentTool(client) for client in clients], clients
