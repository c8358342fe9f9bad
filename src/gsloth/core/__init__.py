"""
Core module - agent engine, runner and cooperative cancellation.
"""

from .engine import AgentEngine, AgentInterrupted, final_answer
from .interrupt import CancellationToken, EscapeListener, escape_listener_factory
from .runner import (
    AgentProcessingError,
    AgentRunner,
    EmptyResponseError,
    StreamProcessingError,
    enhance_vertex_unauthorized_message,
)

__all__ = [
    "AgentEngine",
    "AgentInterrupted",
    "final_answer",
    "AgentRunner",
    "AgentProcessingError",
    "EmptyResponseError",
    "StreamProcessingError",
    "enhance_vertex_unauthorized_message",
    "CancellationToken",
    "EscapeListener",
    "escape_listener_factory",
]
