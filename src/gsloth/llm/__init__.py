"""
LLM module - async LiteLLM adapter and normalized response models.
"""

from .adapter import (
    LLMAdapter,
    LLMResponse,
    StreamChunk,
    ToolCall,
    is_anthropic_model,
    is_vertex_model,
)

__all__ = [
    "LLMAdapter",
    "LLMResponse",
    "StreamChunk",
    "ToolCall",
    "is_anthropic_model",
    "is_vertex_model",
]
