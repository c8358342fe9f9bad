"""Tests for middleware resolution, tool-call status, prompt caching and summarization."""

import pytest

from gsloth.config.schema import AppConfig
from gsloth.llm.adapter import LLMResponse, ToolCall
from gsloth.logging.status import StatusLevel
from gsloth.middleware.base import AgentMiddleware
from gsloth.middleware.caching import AnthropicPromptCachingMiddleware, mark_system_cache_control
from gsloth.middleware.registry import (
    PREDEFINED_MIDDLEWARE,
    UnknownMiddlewareError,
    build_middleware_stack,
    create_predefined_middleware,
    middleware_entry_name,
    resolve_middleware,
)
from gsloth.middleware.status import ToolCallStatusMiddleware, format_tool_calls, truncate
from gsloth.middleware.summarization import SUMMARY_PREFIX, SummarizationMiddleware, estimate_tokens
from gsloth.state.artifacts import ArtifactStore
from gsloth.state.conversation import AgentState, ModelRequest, assistant_message
from gsloth.state.session import SessionContext


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class RecordingStatus:
    def __init__(self):
        self.events = []

    def __call__(self, level, message):
        self.events.append((level, message))

    def messages(self, level):
        return [m for lvl, m in self.events if lvl == level]


class ScriptedModel:
    model = "gpt-4o"

    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.calls = []

    async def acompletion(self, messages, tools=None):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)


def _session(status=None, **config):
    return SessionContext(
        config=AppConfig(**config),
        artifacts=ArtifactStore(),
        status=status or RecordingStatus(),
        llm=ScriptedModel(),
    )


class Custom(AgentMiddleware):
    name = "custom"


# ===================================================================
# 1. Registry
# ===================================================================

class TestRegistry:
    def test_predefined_names(self):
        assert set(PREDEFINED_MIDDLEWARE) == {
            "anthropic-prompt-caching", "summarization", "review-rate", "checklist",
        }

    def test_unknown_name_raises(self):
        with pytest.raises(UnknownMiddlewareError, match="Unknown predefined middleware: nope"):
            create_predefined_middleware("nope", {}, _session())

    def test_resolves_all_entry_forms_in_order(self):
        custom = Custom()
        resolved = resolve_middleware(
            ["checklist", {"name": "summarization", "messages_to_keep": 4}, custom], _session()
        )
        assert [m.name for m in resolved] == ["checklist", "summarization", "custom"]
        assert resolved[1].messages_to_keep == 4
        assert resolved[2] is custom

    def test_unknown_entry_warns_and_is_skipped(self):
        status = RecordingStatus()
        resolved = resolve_middleware(["bogus", "checklist"], _session(status))

        assert [m.name for m in resolved] == ["checklist"]
        assert status.messages(StatusLevel.WARNING) == [
            "Failed to create middleware: Unknown predefined middleware: bogus"
        ]

    def test_bad_settings_warn_and_skip(self):
        status = RecordingStatus()
        resolved = resolve_middleware([{"name": "summarization", "bogus": 1}], _session(status))
        assert resolved == []
        assert status.messages(StatusLevel.WARNING)[0].startswith("Failed to create middleware:")

    def test_unsupported_entry_type(self):
        status = RecordingStatus()
        assert resolve_middleware([42], _session(status)) == []
        assert len(status.messages(StatusLevel.WARNING)) == 1

    def test_stack_ends_with_tool_call_status(self):
        status = RecordingStatus()
        stack = build_middleware_stack(["checklist"], _session(status))

        assert isinstance(stack[-1], ToolCallStatusMiddleware)
        assert "Loaded middleware: checklist, tool-call-status" in status.messages(StatusLevel.INFO)

    def test_entry_names(self):
        assert middleware_entry_name("checklist") == "checklist"
        assert middleware_entry_name({"name": "review-rate"}) == "review-rate"
        assert middleware_entry_name(Custom()) == "custom"
        assert middleware_entry_name(3) is None

    def test_review_rate_uses_merged_settings(self):
        session = _session(review={"pass_threshold": 4})
        middleware = create_predefined_middleware("review-rate", {"max_rating": 5}, session)
        assert middleware.scale.pass_threshold == 4
        assert middleware.scale.max_rating == 5


# ===================================================================
# 2. Tool-call status
# ===================================================================

class TestToolCallStatus:
    def test_truncate(self):
        assert truncate("abcdef", 10) == "abcdef"
        assert truncate("abcdefghijkl", 10) == "abcdefg..."

    def test_format_tool_calls(self):
        calls = [
            ToolCall(id="1", name="read_file", arguments={"path": "src/a.py"}),
            ToolCall(id="2", name="run_tests", arguments={}),
        ]
        assert format_tool_calls(calls) == "read_file(path: src/a.py), run_tests()"

    def test_long_values_truncated_to_50(self):
        text = format_tool_calls([ToolCall(id="1", name="t", arguments={"x": "a" * 80})])
        assert text == f"t(x: {'a' * 47}...)"

    def test_summary_capped(self):
        calls = [ToolCall(id=str(i), name=f"tool_{i}", arguments={"v": "b" * 40}) for i in range(20)]
        text = format_tool_calls(calls)
        assert len(text) == 255
        assert text.endswith("...")

    @pytest.mark.asyncio
    async def test_emits_requested_tools(self):
        status = RecordingStatus()
        state = AgentState(messages=[assistant_message(None, [ToolCall(id="1", name="list_files", arguments={"path": "."})])])

        assert await ToolCallStatusMiddleware(status).after_model(state) is None
        assert status.messages(StatusLevel.INFO) == ["\nRequested tools: list_files(path: .)\n"]

    @pytest.mark.asyncio
    async def test_silent_without_tool_calls(self):
        status = RecordingStatus()
        await ToolCallStatusMiddleware(status).after_model(AgentState(messages=[{"role": "assistant", "content": "hi"}]))
        assert status.events == []


# ===================================================================
# 3. Prompt caching
# ===================================================================

class TestPromptCaching:
    def test_marks_system_message(self):
        messages = mark_system_cache_control(
            [{"role": "system", "content": "preamble"}, {"role": "user", "content": "q"}]
        )
        assert messages[0]["content"] == [
            {"type": "text", "text": "preamble", "cache_control": {"type": "ephemeral"}}
        ]
        assert messages[1] == {"role": "user", "content": "q"}

    def test_one_hour_ttl(self):
        messages = mark_system_cache_control([{"role": "system", "content": "p"}], ttl="1h")
        assert messages[0]["content"][0]["cache_control"] == {"type": "ephemeral", "ttl": "1h"}

    def test_original_is_not_modified(self):
        original = [{"role": "system", "content": [{"type": "text", "text": "p"}]}]
        mark_system_cache_control(original)
        assert "cache_control" not in original[0]["content"][0]

    @pytest.mark.asyncio
    async def test_noop_for_other_providers(self):
        middleware = AnthropicPromptCachingMiddleware("gpt-4o")
        state = AgentState(messages=[{"role": "system", "content": "p"}])
        request = ModelRequest(messages=state.messages, tools=[], state=state)
        seen = []

        async def handler(req):
            seen.append(req)
            return LLMResponse(content="ok")

        await middleware.wrap_model_call(request, handler)
        assert seen[0] is request

    @pytest.mark.asyncio
    async def test_applies_for_claude(self):
        middleware = AnthropicPromptCachingMiddleware("anthropic/claude-sonnet-4-6")
        state = AgentState(messages=[{"role": "system", "content": "p"}])
        seen = []

        async def handler(req):
            seen.append(req)
            return LLMResponse(content="ok")

        await middleware.wrap_model_call(ModelRequest(messages=state.messages, tools=[], state=state), handler)
        assert isinstance(seen[0].messages[0]["content"], list)


# ===================================================================
# 4. Summarization
# ===================================================================

def _conversation(n, size=400):
    messages = [{"role": "system", "content": "sys"}]
    for i in range(n):
        messages.append({"role": "user" if i % 2 == 0 else "assistant", "content": "x" * size})
    return messages


class TestSummarization:
    def test_estimate_tokens(self):
        assert estimate_tokens([{"role": "user", "content": "a" * 400}]) == 104

    @pytest.mark.asyncio
    async def test_below_threshold_passes_through(self):
        model = ScriptedModel()
        middleware = SummarizationMiddleware(model, max_tokens_before_summary=10_000)
        assert await middleware.before_model(AgentState(messages=_conversation(4))) is None
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_summarizes_old_messages(self):
        model = ScriptedModel([LLMResponse(content="the gist")])
        middleware = SummarizationMiddleware(model, max_tokens_before_summary=100, messages_to_keep=2)
        messages = _conversation(6)

        updated = await middleware.before_model(AgentState(messages=messages))

        assert updated.messages[0] == {"role": "system", "content": "sys"}
        assert updated.messages[1] == {"role": "user", "content": SUMMARY_PREFIX + "the gist"}
        assert updated.messages[2:] == messages[-2:]

    @pytest.mark.asyncio
    async def test_kept_tail_never_starts_with_tool_result(self):
        model = ScriptedModel([LLMResponse(content="s")])
        middleware = SummarizationMiddleware(model, max_tokens_before_summary=10, messages_to_keep=1)
        messages = [
            {"role": "user", "content": "x" * 200},
            assistant_message(None, [ToolCall(id="1", name="read_file", arguments={"path": "a"})]),
            {"role": "tool", "tool_call_id": "1", "name": "read_file", "content": "y" * 200},
        ]

        updated = await middleware.before_model(AgentState(messages=messages))

        assert updated.messages[1]["role"] == "assistant"
        assert updated.messages[2]["role"] == "tool"

    @pytest.mark.asyncio
    async def test_failure_passes_through(self):
        middleware = SummarizationMiddleware(
            ScriptedModel(error=RuntimeError("down")), max_tokens_before_summary=10, messages_to_keep=1
        )
        assert await middleware.before_model(AgentState(messages=_conversation(4))) is None
