"""
State module - artifact store, session context and conversation state.
"""

from .artifacts import ArtifactStore
from .conversation import (
    AgentState,
    ModelRequest,
    ToolCallRequest,
    assistant_message,
    message_text,
    message_tool_calls,
    response_message,
    system_message,
    tool_message,
    user_message,
    with_tool_calls,
)
from .session import SessionContext

__all__ = [
    "ArtifactStore",
    "SessionContext",
    "AgentState",
    "ModelRequest",
    "ToolCallRequest",
    "assistant_message",
    "message_text",
    "message_tool_calls",
    "response_message",
    "system_message",
    "tool_message",
    "user_message",
    "with_tool_calls",
]
