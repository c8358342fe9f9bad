"""
Middleware Pipeline - ordered execution of middleware hooks.

Ordering contract:
- hooks of the same kind run in registration order
- ``wrap_*`` hooks nest: the first registered middleware is the
  outermost layer and sees the request first and the result last
"""

from functools import partial
from typing import Sequence

import structlog

from ..llm.adapter import LLMResponse
from ..state.conversation import AgentState, ModelRequest, ToolCallRequest
from ..tools.base import BaseTool, ToolResult
from .base import AgentMiddleware, ModelHandler, ToolHandler

logger = structlog.get_logger()


class MiddlewarePipeline:
    """Runs the hooks of an ordered middleware list."""

    def __init__(self, middleware: Sequence[AgentMiddleware]) -> None:
        self.middleware = list(middleware)
        self.log = logger.bind(component="middleware_pipeline")

    @property
    def names(self) -> list[str]:
        return [m.name for m in self.middleware]

    @property
    def tools(self) -> list[BaseTool]:
        """Tools contributed by the middleware, in registration order."""
        return [tool for m in self.middleware for tool in m.tools]

    async def _run_state_hook(self, hook: str, state: AgentState) -> AgentState:
        for m in self.middleware:
            result = await getattr(m, hook)(state)
            if result is not None:
                self.log.debug("middleware.state_updated", hook=hook, middleware=m.name)
                state = result
        return state

    async def before_agent(self, state: AgentState) -> AgentState:
        return await self._run_state_hook("before_agent", state)

    async def before_model(self, state: AgentState) -> AgentState:
        return await self._run_state_hook("before_model", state)

    async def after_model(self, state: AgentState) -> AgentState:
        return await self._run_state_hook("after_model", state)

    async def after_agent(self, state: AgentState) -> AgentState:
        return await self._run_state_hook("after_agent", state)

    async def call_model(self, request: ModelRequest, handler: ModelHandler) -> LLMResponse:
        """Run ``handler`` wrapped by every ``wrap_model_call`` hook."""
        chain = handler
        for m in reversed(self.middleware):
            chain = partial(m.wrap_model_call, handler=chain)
        return await chain(request)

    async def call_tool(self, request: ToolCallRequest, handler: ToolHandler) -> ToolResult:
        """Run ``handler`` wrapped by every ``wrap_tool_call`` hook."""
        chain = handler
        for m in reversed(self.middleware):
            chain = partial(m.wrap_tool_call, handler=chain)
        return await chain(request)

    def __repr__(self) -> str:
        return f"<MiddlewarePipeline({', '.join(self.names) or 'empty'})>"
