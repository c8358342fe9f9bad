"""
Agent Engine - drives one conversation to a final answer.

The engine binds a model, a deduplicated tool pool and an ordered
middleware list. Each run loops:

1. ``before_model`` hooks
2. model call, wrapped by every ``wrap_model_call`` hook
3. ``after_model`` hooks (may rewrite the requested tool calls)
4. no tool calls -> done; otherwise every call is dispatched through the
   ``wrap_tool_call`` hooks and its result appended, then back to 1

``before_agent`` / ``after_agent`` hooks run once around the loop.

Tool failures:
- ``ToolError`` becomes an error tool result the model can react to
- ``ToolException`` ends the run; ``invoke`` reports it as
  "Tool execution failed: ..."

Safety net: after ``max_steps`` model calls the model is asked to wrap
up without tools.
"""

import asyncio
from dataclasses import replace
from typing import Any, AsyncIterator, Callable, Sequence

import structlog

from ..llm.adapter import LLMAdapter, LLMResponse, StreamChunk, ToolCall
from ..logging.human import HumanLog
from ..logging.status import StatusCallback, StatusLevel, silent_status
from ..middleware.base import AgentMiddleware, ModelHandler
from ..middleware.pipeline import MiddlewarePipeline
from ..state.conversation import (
    AgentState,
    ModelRequest,
    ToolCallRequest,
    assistant_message,
    message_text,
    message_tool_calls,
    response_message,
    tool_message,
    user_message,
)
from ..tools.base import BaseTool, ToolError, ToolException, ToolResult
from ..tools.registry import dedupe_tools
from .interrupt import CancellationToken, EscapeListener, ListenerFactory

logger = structlog.get_logger()

INTERRUPTED_MESSAGE = "\n\nInterrupted by user, exiting\n\n"

CLOSE_INSTRUCTION = (
    "You have reached the step limit for this task. Do not call any more tools. "
    "Summarize what was done and what remains to be done."
)


class AgentInterrupted(Exception):
    """The user cancelled a streaming run. Not a failure."""

    pass


_DONE = object()


class _StreamFailure:
    def __init__(self, error: Exception) -> None:
        self.error = error


def final_answer(state: AgentState, after_agent_start: int | None = None) -> str:
    """The model's last answer followed by any after-agent reports.

    ``after_agent_start`` is the index of the first message added by the
    ``after_agent`` hooks; the answer is the assistant message before it.
    """
    if after_agent_start is None:
        after_agent_start = len(state.messages)
    parts = []
    if after_agent_start > 0:
        last = state.messages[after_agent_start - 1]
        if last.get("role") == "assistant":
            parts.append(message_text(last))
    for message in state.messages[after_agent_start:]:
        if message.get("role") == "assistant":
            parts.append(message_text(message))
    return "\n\n".join(part for part in parts if part)


class AgentEngine:
    """Executable conversation driver for one session.

    Built once; create a new engine for a new session.
    """

    def __init__(
        self,
        model: LLMAdapter,
        tools: Sequence[BaseTool],
        middleware: Sequence[AgentMiddleware],
        status: StatusCallback = silent_status,
        max_steps: int = 50,
        listener_factory: ListenerFactory | None = None,
    ):
        self.model = model
        self.pipeline = MiddlewarePipeline(middleware)
        self.tools = dedupe_tools([*tools, *self.pipeline.tools])
        self._tools_by_name = {tool.name: tool for tool in self.tools}
        self.status = status
        self.max_steps = max_steps
        self.listener_factory = listener_factory
        self.interrupted = False
        self.log = logger.bind(component="agent_engine")
        self.hlog = HumanLog(self.log)

    # ── Public API ───────────────────────────────────────────────────────

    async def invoke(self, messages: list[dict[str, Any]]) -> str:
        """Run to completion and return the final answer.

        A ``ToolException`` is reported as "Tool execution failed: ...";
        any other failure is reported as a warning and yields "".
        """
        self.interrupted = False
        try:
            state, after_agent_start = await self._run(messages, self._model_call)
        except ToolException as e:
            self.log.error("agent.tool_exception", error=str(e))
            self.status(StatusLevel.ERROR, f"Tool execution failed: {e}")
            return f"Tool execution failed: {e}"
        except Exception as e:
            self.log.error("agent.invoke.failed", error=str(e), error_type=type(e).__name__)
            self.status(StatusLevel.WARNING, f"Something went wrong {e}")
            return ""

        answer = final_answer(state, after_agent_start)
        self.status(StatusLevel.DISPLAY, answer)
        return answer

    async def stream(self, messages: list[dict[str, Any]]) -> AsyncIterator[str]:
        """Run to completion, yielding model text as it arrives.

        Pressing ESC (when a listener is available) cancels the run: the
        model stream is closed, one interruption notice is shown and the
        iteration ends normally.

        Raises:
            ToolException: If a tool fault ends the run
            Exception: Model and middleware errors
        """
        self.interrupted = False
        self.status(StatusLevel.INFO, "\nThinking...\n")

        token = CancellationToken()
        token.on_cancel(self._on_interrupt)
        listener = self.listener_factory(token) if self.listener_factory else None
        queue: asyncio.Queue = asyncio.Queue()

        def emit(text: str) -> None:
            self.status(StatusLevel.STREAM, text)
            queue.put_nowait(text)

        async def produce() -> None:
            try:
                await self._run(
                    messages, self._streaming_model_call(emit, token), listener, token, emit
                )
            except AgentInterrupted:
                token.notify_once()
            except Exception as e:
                queue.put_nowait(_StreamFailure(e))
            finally:
                queue.put_nowait(_DONE)

        producer = asyncio.create_task(produce())
        if listener is not None:
            listener.start()
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                if isinstance(item, _StreamFailure):
                    if isinstance(item.error, ToolException):
                        self.status(StatusLevel.ERROR, f"Tool execution failed: {item.error}")
                    raise item.error
                yield item
        finally:
            if not producer.done():
                producer.cancel()
                try:
                    await producer
                except asyncio.CancelledError:
                    pass
            if listener is not None:
                listener.stop()

    # ── Loop ─────────────────────────────────────────────────────────────

    def _on_interrupt(self) -> None:
        self.interrupted = True
        self.hlog.safety_net("user_interrupt")
        self.status(StatusLevel.WARNING, INTERRUPTED_MESSAGE)

    async def _run(
        self,
        messages: list[dict[str, Any]],
        model_handler: ModelHandler,
        listener: EscapeListener | None = None,
        token: CancellationToken | None = None,
        emit: Callable[[str], None] | None = None,
    ) -> tuple[AgentState, int]:
        state = await self.pipeline.before_agent(AgentState(messages=list(messages)))
        self.log.info(
            "agent.run.start",
            messages=len(state.messages),
            tools=len(self.tools),
            middleware=self.pipeline.names,
        )

        while True:
            if token is not None and token.cancelled:
                raise AgentInterrupted()

            if state.step >= self.max_steps:
                state = await self._close_at_step_limit(state, model_handler)
                break

            state = await self.pipeline.before_model(state)
            state = await self._call_model(state, self.tools, model_handler)
            state = await self.pipeline.after_model(state)

            calls = message_tool_calls(state.last_message or {})
            if not calls:
                self.hlog.agent_done(state.step)
                break

            self.log.info("agent.tool_calls_received", step=state.step, tools=[c.name for c in calls])
            state = await self._dispatch_tools(state, calls, listener)

        before = len(state.messages)
        state = await self.pipeline.after_agent(state)
        if emit is not None:
            for message in state.messages[before:]:
                if message.get("role") == "assistant" and message_text(message):
                    emit(f"\n\n{message_text(message)}")

        self.log.info("agent.run.complete", steps=state.step, messages=len(state.messages))
        return state, before

    async def _call_model(
        self, state: AgentState, tools: list[BaseTool], handler: ModelHandler
    ) -> AgentState:
        request = ModelRequest(messages=state.messages, tools=tools, state=state)
        self.hlog.llm_call(state.step, messages_count=len(request.messages))
        try:
            response = await self.pipeline.call_model(request, handler)
        except AgentInterrupted:
            raise
        except Exception as e:
            self.log.error("agent.llm_error", error=str(e), step=state.step)
            self.hlog.llm_error(str(e))
            raise
        return replace(
            state,
            messages=[*state.messages, response_message(response)],
            step=state.step + 1,
        )

    async def _close_at_step_limit(
        self, state: AgentState, handler: ModelHandler
    ) -> AgentState:
        """Ask the model for a final answer without tools."""
        self.log.warning("agent.max_steps", step=state.step, max_steps=self.max_steps)
        self.hlog.safety_net("max_steps", step=state.step, max_steps=self.max_steps)

        state = await self.pipeline.before_model(state.append(user_message(CLOSE_INSTRUCTION)))
        state = await self._call_model(state, [], handler)
        state = await self.pipeline.after_model(state)

        last = state.last_message or {}
        if message_tool_calls(last):
            # Requested tools will never run; keep the transcript consistent
            state = state.with_messages([*state.messages[:-1], assistant_message(last.get("content"))])
        return state

    async def _dispatch_tools(
        self,
        state: AgentState,
        calls: list[ToolCall],
        listener: EscapeListener | None,
    ) -> AgentState:
        # Tools may prompt on stdin (override confirmation)
        if listener is not None:
            listener.suspend()
        try:
            for call in calls:
                request = ToolCallRequest(call=call, tool=self._tools_by_name.get(call.name), state=state)
                self.hlog.tool_call(call.name, call.arguments)
                result = await self.pipeline.call_tool(request, self._execute_tool)
                self.hlog.tool_result(call.name, result.success, result.error)
                state = state.append(tool_message(call.id, call.name, result.as_content()))
        finally:
            if listener is not None:
                listener.resume()
        return state

    async def _execute_tool(self, request: ToolCallRequest) -> ToolResult:
        """Innermost tool handler.

        Raises:
            ToolException: Propagated so the run ends
        """
        call = request.call
        if request.tool is None:
            available = ", ".join(self._tools_by_name) or "(none)"
            return ToolResult(
                success=False,
                output="",
                error=f"Tool '{call.name}' not found. Available tools: {available}",
            )

        try:
            return await request.tool.execute(**call.arguments)
        except ToolException:
            raise
        except ToolError as e:
            self.log.info("agent.tool_call.rejected", tool=call.name, error=str(e))
            return ToolResult(success=False, output="", error=str(e))
        except Exception as e:
            self.log.error(
                "agent.tool_call.unexpected_error",
                tool=call.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ToolResult(success=False, output="", error=f"Unexpected error in {call.name}: {e}")

    # ── Model handlers ───────────────────────────────────────────────────

    async def _model_call(self, request: ModelRequest) -> LLMResponse:
        schemas = [tool.get_schema() for tool in request.tools]
        return await self.model.acompletion(request.messages, schemas or None)

    def _streaming_model_call(
        self, emit: Callable[[str], None], token: CancellationToken
    ) -> ModelHandler:
        async def call(request: ModelRequest) -> LLMResponse:
            schemas = [tool.get_schema() for tool in request.tools]
            stream = self.model.acompletion_stream(request.messages, schemas or None)
            response: LLMResponse | None = None
            try:
                async for item in stream:
                    if isinstance(item, StreamChunk):
                        if item.data:
                            emit(item.data)
                    else:
                        response = item
                    if token.cancelled:
                        raise AgentInterrupted()
            finally:
                close = getattr(stream, "aclose", None)
                if close is not None:
                    await close()

            if response is None:
                raise RuntimeError("Streaming completed without returning final response")
            return response

        return call

    def __repr__(self) -> str:
        return f"<AgentEngine(tools={len(self.tools)}, middleware={self.pipeline.names})>"
