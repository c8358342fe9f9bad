"""
Conversation state passed through the engine and the middleware hooks.

Messages use the OpenAI/litellm dict format::

    {"role": "system" | "user" | "assistant" | "tool", "content": ...}

Assistant messages may carry ``tool_calls`` and tool messages carry the
``tool_call_id`` and ``name`` of the call they answer.

``AgentState`` and the request objects are replaced, never mutated in
place: hooks return a new instance (``with_messages``, ``override``) or
None to pass the current one through.
"""

import json
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from ..llm.adapter import LLMResponse, ToolCall

if TYPE_CHECKING:
    from ..tools.base import BaseTool


# ── Message helpers ──────────────────────────────────────────────────────


def system_message(content: str) -> dict[str, Any]:
    return {"role": "system", "content": content}


def user_message(content: str) -> dict[str, Any]:
    return {"role": "user", "content": content}


def assistant_message(
    content: str | None, tool_calls: list[ToolCall] | None = None
) -> dict[str, Any]:
    """Assistant message, with tool calls in OpenAI format when present."""
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {
                    "name": tc.name,
                    "arguments": json.dumps(tc.arguments),
                },
            }
            for tc in tool_calls
        ]
    return message


def response_message(response: LLMResponse) -> dict[str, Any]:
    """Assistant message recording a model response."""
    return assistant_message(response.content, response.tool_calls)


def tool_message(call_id: str, name: str, content: str) -> dict[str, Any]:
    return {"role": "tool", "tool_call_id": call_id, "name": name, "content": content}


def message_tool_calls(message: dict[str, Any]) -> list[ToolCall]:
    """Tool calls carried by an assistant message (empty for other roles)."""
    if message.get("role") != "assistant":
        return []

    calls: list[ToolCall] = []
    for raw in message.get("tool_calls") or []:
        function = raw.get("function", {})
        arguments = function.get("arguments") or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError:
                arguments = {}
        calls.append(ToolCall(id=raw.get("id", ""), name=function.get("name", ""), arguments=arguments))
    return calls


def with_tool_calls(message: dict[str, Any], tool_calls: list[ToolCall]) -> dict[str, Any]:
    """Copy of an assistant message with its tool calls replaced."""
    return assistant_message(message.get("content"), tool_calls)


def message_text(message: dict[str, Any]) -> str:
    """Plain text of a message, joining text blocks of list content."""
    content = message.get("content")
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block.get("text", "") for block in content if isinstance(block, dict)
        )
    return str(content)


# ── State and requests ───────────────────────────────────────────────────


@dataclass(frozen=True)
class AgentState:
    """Conversation state seen by the middleware hooks.

    Attributes:
        messages: Working copy of the conversation
        step: Number of model calls made in this run
        extras: Auxiliary fields owned by individual middleware
    """

    messages: list[dict[str, Any]] = field(default_factory=list)
    step: int = 0
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def last_message(self) -> dict[str, Any] | None:
        return self.messages[-1] if self.messages else None

    def with_messages(self, messages: list[dict[str, Any]]) -> "AgentState":
        return replace(self, messages=list(messages))

    def append(self, *messages: dict[str, Any]) -> "AgentState":
        return replace(self, messages=[*self.messages, *messages])

    def __repr__(self) -> str:
        return f"<AgentState(messages={len(self.messages)}, step={self.step})>"


@dataclass(frozen=True)
class ModelRequest:
    """One model call: the messages sent and the tools offered."""

    messages: list[dict[str, Any]]
    tools: list["BaseTool"]
    state: AgentState

    def override(self, **changes: Any) -> "ModelRequest":
        return replace(self, **changes)

    @property
    def tool_names(self) -> list[str]:
        return [tool.name for tool in self.tools]


@dataclass(frozen=True)
class ToolCallRequest:
    """One tool call about to be dispatched.

    ``tool`` is None when the model asked for a tool that does not exist.
    """

    call: ToolCall
    tool: "BaseTool | None"
    state: AgentState

    def override(self, **changes: Any) -> "ToolCallRequest":
        return replace(self, **changes)
