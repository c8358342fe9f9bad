"""
Tool-call status middleware.

Always appended last to the resolved middleware list so that it reports
the tool calls that will actually run, after every other middleware had
a chance to rewrite them.
"""

import json
from typing import Any

from ..llm.adapter import ToolCall
from ..logging.status import StatusCallback, StatusLevel
from ..state.conversation import AgentState, message_tool_calls
from .base import AgentMiddleware

MAX_SUMMARY_LENGTH = 255
MAX_VALUE_LENGTH = 50


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def format_tool_call_args(args: dict[str, Any]) -> str:
    parts = []
    for key, value in args.items():
        if isinstance(value, str):
            display = value
        elif isinstance(value, (dict, list)):
            display = json.dumps(value)
        else:
            display = str(value)
        parts.append(f"{key}: {truncate(display, MAX_VALUE_LENGTH)}")
    return ", ".join(parts)


def format_tool_calls(tool_calls: list[ToolCall], max_length: int = MAX_SUMMARY_LENGTH) -> str:
    """One-line summary like ``read_file(path: src/a.py), run_tests()``."""
    formatted = ", ".join(
        f"{tc.name}({format_tool_call_args(tc.arguments)})" for tc in tool_calls
    )
    return truncate(formatted, max_length)


class ToolCallStatusMiddleware(AgentMiddleware):
    """Emits an INFO status event listing the tools the model requested."""

    name = "tool-call-status"

    def __init__(self, status: StatusCallback) -> None:
        super().__init__()
        self.status = status

    async def after_model(self, state: AgentState) -> AgentState | None:
        last = state.last_message
        calls = message_tool_calls(last) if last else []
        if calls:
            self.status(StatusLevel.INFO, f"\nRequested tools: {format_tool_calls(calls)}\n")
        return None
