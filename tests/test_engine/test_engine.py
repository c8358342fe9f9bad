"""Tests for gsloth.core.engine: invoke, stream, interruption, tool failures."""

from typing import Any

import pytest
from pydantic import BaseModel

from gsloth.core.engine import CLOSE_INSTRUCTION, INTERRUPTED_MESSAGE, AgentEngine
from gsloth.core.interrupt import CancellationToken
from gsloth.llm.adapter import LLMResponse, StreamChunk, ToolCall
from gsloth.logging.status import StatusLevel
from gsloth.middleware.base import AgentMiddleware
from gsloth.middleware.pipeline import MiddlewarePipeline
from gsloth.state.conversation import AgentState, ModelRequest, assistant_message
from gsloth.tools.base import BaseTool, NoArgs, ToolError, ToolException, ToolResult


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeModel:
    """Scripted model: returns the queued responses in order."""

    model = "gpt-4o"

    def __init__(self, responses=None, streams=None, error=None):
        self.responses = list(responses or [])
        self.streams = list(streams or [])
        self.error = error
        self.calls: list[tuple[list[dict[str, Any]], Any]] = []
        self.stream_closed = False

    async def acompletion(self, messages, tools=None):
        self.calls.append((messages, tools))
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)

    async def acompletion_stream(self, messages, tools=None):
        self.calls.append((messages, tools))
        if self.error is not None:
            raise self.error
        chunks, response = self.streams.pop(0)
        try:
            for chunk in chunks:
                if callable(chunk):
                    chunk()
                    continue
                yield StreamChunk(data=chunk)
            yield response
        finally:
            self.stream_closed = True


class RecordingStatus:
    def __init__(self):
        self.events: list[tuple[StatusLevel, str]] = []

    def __call__(self, level, message):
        self.events.append((level, message))

    def messages(self, level):
        return [m for lvl, m in self.events if lvl == level]


class EchoArgs(BaseModel):
    text: str = ""


class EchoTool(BaseTool):
    name = "echo"
    description = "Echo the text"
    args_model = EchoArgs

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = 0

    async def execute(self, **kwargs):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return ToolResult(success=True, output=f"echo: {kwargs.get('text', '')}")


def _tool_call(name="echo", call_id="call_1", **arguments):
    return LLMResponse(
        content=None,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)],
        finish_reason="tool_calls",
    )


def _answer(text):
    return LLMResponse(content=text)


USER = [{"role": "user", "content": "hi"}]


# ===================================================================
# 1. invoke
# ===================================================================

class TestInvoke:
    @pytest.mark.asyncio
    async def test_returns_final_answer_and_displays_it(self):
        status = RecordingStatus()
        engine = AgentEngine(FakeModel([_answer("hello")]), [], [], status=status)

        assert await engine.invoke(USER) == "hello"
        assert status.messages(StatusLevel.DISPLAY) == ["hello"]

    @pytest.mark.asyncio
    async def test_tool_result_is_sent_back_to_model(self):
        model = FakeModel([_tool_call(text="x"), _answer("done")])
        engine = AgentEngine(model, [EchoTool()], [])

        assert await engine.invoke(USER) == "done"
        second_messages = model.calls[1][0]
        assert second_messages[-1]["role"] == "tool"
        assert second_messages[-1]["content"] == "echo: x"
        assert second_messages[-1]["tool_call_id"] == "call_1"

    @pytest.mark.asyncio
    async def test_tools_are_offered_as_schemas(self):
        model = FakeModel([_answer("ok")])
        engine = AgentEngine(model, [EchoTool()], [])
        await engine.invoke(USER)

        tools = model.calls[0][1]
        assert tools[0]["function"]["name"] == "echo"

    @pytest.mark.asyncio
    async def test_no_tools_sends_none(self):
        model = FakeModel([_answer("ok")])
        await AgentEngine(model, [], []).invoke(USER)
        assert model.calls[0][1] is None

    @pytest.mark.asyncio
    async def test_tool_error_becomes_error_result(self):
        model = FakeModel([_tool_call(), _answer("recovered")])
        engine = AgentEngine(model, [EchoTool(error=ToolError("bad input"))], [])

        assert await engine.invoke(USER) == "recovered"
        assert model.calls[1][0][-1]["content"] == "Error: bad input"

    @pytest.mark.asyncio
    async def test_tool_exception_ends_run(self):
        status = RecordingStatus()
        model = FakeModel([_tool_call(), _answer("never")])
        engine = AgentEngine(model, [EchoTool(error=ToolException("disk gone"))], [], status=status)

        result = await engine.invoke(USER)

        assert result == "Tool execution failed: disk gone"
        assert len(model.calls) == 1
        assert "Tool execution failed: disk gone" in status.messages(StatusLevel.ERROR)

    @pytest.mark.asyncio
    async def test_unexpected_tool_error_is_reported_to_model(self):
        model = FakeModel([_tool_call(), _answer("ok")])
        engine = AgentEngine(model, [EchoTool(error=RuntimeError("kaboom"))], [])

        await engine.invoke(USER)
        assert model.calls[1][0][-1]["content"] == "Error: Unexpected error in echo: kaboom"

    @pytest.mark.asyncio
    async def test_unknown_tool_lists_available(self):
        model = FakeModel([_tool_call(name="nope"), _answer("ok")])
        engine = AgentEngine(model, [EchoTool()], [])

        await engine.invoke(USER)
        content = model.calls[1][0][-1]["content"]
        assert "Tool 'nope' not found" in content
        assert "echo" in content

    @pytest.mark.asyncio
    async def test_model_failure_warns_and_returns_empty(self):
        status = RecordingStatus()
        engine = AgentEngine(FakeModel(error=RuntimeError("offline")), [], [], status=status)

        assert await engine.invoke(USER) == ""
        assert status.messages(StatusLevel.WARNING) == ["Something went wrong offline"]

    @pytest.mark.asyncio
    async def test_duplicate_tools_are_deduped(self):
        engine = AgentEngine(FakeModel([]), [EchoTool(), EchoTool()], [])
        assert [t.name for t in engine.tools] == ["echo"]


# ===================================================================
# 2. Step limit
# ===================================================================

class TestStepLimit:
    @pytest.mark.asyncio
    async def test_closes_without_tools_at_limit(self):
        model = FakeModel([_tool_call(), _answer("summary of work")])
        engine = AgentEngine(model, [EchoTool()], [], max_steps=1)

        assert await engine.invoke(USER) == "summary of work"
        close_messages, close_tools = model.calls[1]
        assert close_tools is None
        assert close_messages[-1] == {"role": "user", "content": CLOSE_INSTRUCTION}

    @pytest.mark.asyncio
    async def test_tool_calls_in_closing_reply_are_dropped(self):
        tool = EchoTool()
        model = FakeModel([_tool_call(), _tool_call(call_id="call_2")])
        engine = AgentEngine(model, [tool], [], max_steps=1)

        await engine.invoke(USER)
        assert tool.calls == 1


# ===================================================================
# 3. stream
# ===================================================================

class FakeListener:
    def __init__(self, token):
        self.token = token
        self.started = self.stopped = False
        self.suspended = 0

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def suspend(self):
        self.suspended += 1

    def resume(self):
        pass


class TestStream:
    @pytest.mark.asyncio
    async def test_yields_chunks_in_order(self):
        status = RecordingStatus()
        model = FakeModel(streams=[(["Hel", "lo"], _answer("Hello"))])
        engine = AgentEngine(model, [], [], status=status)

        chunks = [c async for c in engine.stream(USER)]

        assert chunks == ["Hel", "lo"]
        assert status.messages(StatusLevel.STREAM) == ["Hel", "lo"]
        assert "\nThinking...\n" in status.messages(StatusLevel.INFO)

    @pytest.mark.asyncio
    async def test_streams_across_tool_calls(self):
        model = FakeModel(streams=[
            (["Looking"], _tool_call(text="a")),
            ([" found it"], _answer(" found it")),
        ])
        engine = AgentEngine(model, [EchoTool()], [])

        chunks = [c async for c in engine.stream(USER)]
        assert "".join(chunks) == "Looking found it"

    @pytest.mark.asyncio
    async def test_model_error_propagates(self):
        engine = AgentEngine(FakeModel(error=RuntimeError("stream broke")), [], [])

        with pytest.raises(RuntimeError, match="stream broke"):
            [c async for c in engine.stream(USER)]

    @pytest.mark.asyncio
    async def test_tool_exception_propagates(self):
        model = FakeModel(streams=[([], _tool_call())])
        engine = AgentEngine(model, [EchoTool(error=ToolException("fatal"))], [])

        with pytest.raises(ToolException):
            [c async for c in engine.stream(USER)]

    @pytest.mark.asyncio
    async def test_escape_interrupts_once(self):
        status = RecordingStatus()
        listeners: list[FakeListener] = []

        def factory(token):
            listeners.append(FakeListener(token))
            return listeners[-1]

        def press_escape():
            listeners[0].token.cancel()
            listeners[0].token.cancel()

        model = FakeModel(streams=[(["partial", press_escape, " more"], _answer("x"))])
        engine = AgentEngine(model, [], [], status=status, listener_factory=factory)

        chunks = [c async for c in engine.stream(USER)]

        assert chunks[0] == "partial"
        assert engine.interrupted is True
        assert status.messages(StatusLevel.WARNING).count(INTERRUPTED_MESSAGE) == 1
        assert model.stream_closed is True
        assert listeners[0].started and listeners[0].stopped

    @pytest.mark.asyncio
    async def test_listener_suspended_during_tools(self):
        listeners: list[FakeListener] = []

        def factory(token):
            listeners.append(FakeListener(token))
            return listeners[-1]

        model = FakeModel(streams=[([], _tool_call()), (["ok"], _answer("ok"))])
        engine = AgentEngine(model, [EchoTool()], [], listener_factory=factory)

        [c async for c in engine.stream(USER)]
        assert listeners[0].suspended == 1

    @pytest.mark.asyncio
    async def test_after_agent_messages_are_streamed(self):
        class Closing(AgentMiddleware):
            name = "closing"

            async def after_agent(self, state):
                return state.append(assistant_message("Remember the tests."))

        model = FakeModel(streams=[(["answer"], _answer("answer"))])
        engine = AgentEngine(model, [], [Closing()])

        chunks = [c async for c in engine.stream(USER)]
        assert chunks == ["answer", "\n\nRemember the tests."]


# ===================================================================
# 4. CancellationToken
# ===================================================================

class TestCancellationToken:
    def test_callbacks_run_once(self):
        token = CancellationToken()
        seen = []
        token.on_cancel(lambda: seen.append(1))

        token.cancel()
        token.cancel()
        token.notify_once()

        assert token.cancelled is True
        assert seen == [1]

    def test_not_cancelled_initially(self):
        assert CancellationToken().cancelled is False


# ===================================================================
# 5. MiddlewarePipeline
# ===================================================================

class Tracing(AgentMiddleware):
    def __init__(self, name, trace):
        super().__init__()
        self.name = name
        self.trace = trace

    async def before_model(self, state):
        self.trace.append(f"{self.name}.before")
        return None

    async def wrap_model_call(self, request, handler):
        self.trace.append(f"{self.name}.enter")
        response = await handler(request)
        self.trace.append(f"{self.name}.exit")
        return response


class TestMiddlewarePipeline:
    @pytest.mark.asyncio
    async def test_first_registered_is_outermost(self):
        trace: list[str] = []
        pipeline = MiddlewarePipeline([Tracing("a", trace), Tracing("b", trace)])
        state = AgentState(messages=list(USER))

        async def handler(request):
            trace.append("model")
            return _answer("ok")

        await pipeline.before_model(state)
        await pipeline.call_model(ModelRequest(messages=state.messages, tools=[], state=state), handler)

        assert trace == ["a.before", "b.before", "a.enter", "b.enter", "model", "b.exit", "a.exit"]

    @pytest.mark.asyncio
    async def test_none_keeps_state(self):
        pipeline = MiddlewarePipeline([AgentMiddleware()])
        state = AgentState(messages=list(USER))
        assert await pipeline.after_model(state) is state

    def test_collects_middleware_tools(self):
        m = AgentMiddleware()
        m.tools = [EchoTool()]
        assert [t.name for t in MiddlewarePipeline([m]).tools] == ["echo"]
