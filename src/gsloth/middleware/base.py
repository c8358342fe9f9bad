"""
Base class for agent middleware.

A middleware is a named bundle of optional async hooks around the agent
loop. Every hook has a pass-through default, so subclasses only override
what they need:

- ``before_agent`` / ``after_agent``: once per run
- ``before_model`` / ``after_model``: around every model call, on the state
- ``wrap_model_call``: wraps the model call itself (request -> response)
- ``wrap_tool_call``: wraps every tool dispatch (request -> ToolResult)

State hooks return a new ``AgentState`` or None to keep the current one.
Wrap hooks receive the next handler of the chain and must await it (or
deliberately short-circuit it).

Middleware may contribute tools through ``tools``; they are added to the
pool handed to the engine.
"""

from typing import Awaitable, Callable

from ..llm.adapter import LLMResponse
from ..state.conversation import AgentState, ModelRequest, ToolCallRequest
from ..tools.base import BaseTool, ToolResult

ModelHandler = Callable[[ModelRequest], Awaitable[LLMResponse]]
ToolHandler = Callable[[ToolCallRequest], Awaitable[ToolResult]]


class AgentMiddleware:
    """Pass-through middleware; subclass and override hooks."""

    name: str = "middleware"

    def __init__(self) -> None:
        self.tools: list[BaseTool] = []

    async def before_agent(self, state: AgentState) -> AgentState | None:
        return None

    async def before_model(self, state: AgentState) -> AgentState | None:
        return None

    async def wrap_model_call(self, request: ModelRequest, handler: ModelHandler) -> LLMResponse:
        return await handler(request)

    async def after_model(self, state: AgentState) -> AgentState | None:
        return None

    async def wrap_tool_call(self, request: ToolCallRequest, handler: ToolHandler) -> ToolResult:
        return await handler(request)

    async def after_agent(self, state: AgentState) -> AgentState | None:
        return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}', tools={len(self.tools)})>"
