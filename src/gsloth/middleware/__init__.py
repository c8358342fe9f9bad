"""
Middleware module - hooks around model and tool calls.

Exports the base class, the pipeline, the registry and the predefined
middleware (prompt caching, summarization, checklist, review rating).
"""

from .base import AgentMiddleware, ModelHandler, ToolHandler
from .caching import AnthropicPromptCachingMiddleware, mark_system_cache_control
from .checklist import (
    CHECKLIST_ARTIFACT_KEY,
    Checklist,
    ChecklistError,
    ChecklistItem,
    ChecklistMiddleware,
    ChecklistMutation,
    apply_checklist_mutation,
)
from .pipeline import MiddlewarePipeline
from .registry import (
    PREDEFINED_MIDDLEWARE,
    UnknownMiddlewareError,
    build_middleware_stack,
    create_predefined_middleware,
    middleware_entry_name,
    resolve_middleware,
)
from .review_rate import (
    REVIEW_RATE_ARTIFACT_KEY,
    ReviewRateMiddleware,
    ReviewRating,
    format_score,
    normalize_rating_config,
    rating_verdict,
)
from .status import ToolCallStatusMiddleware, format_tool_calls
from .summarization import SummarizationMiddleware

__all__ = [
    # Base
    "AgentMiddleware",
    "ModelHandler",
    "ToolHandler",
    "MiddlewarePipeline",
    # Registry
    "PREDEFINED_MIDDLEWARE",
    "UnknownMiddlewareError",
    "build_middleware_stack",
    "create_predefined_middleware",
    "middleware_entry_name",
    "resolve_middleware",
    # Predefined
    "AnthropicPromptCachingMiddleware",
    "mark_system_cache_control",
    "SummarizationMiddleware",
    "ChecklistMiddleware",
    "Checklist",
    "ChecklistItem",
    "ChecklistMutation",
    "ChecklistError",
    "CHECKLIST_ARTIFACT_KEY",
    "apply_checklist_mutation",
    "ReviewRateMiddleware",
    "ReviewRating",
    "REVIEW_RATE_ARTIFACT_KEY",
    "format_score",
    "normalize_rating_config",
    "rating_verdict",
    "ToolCallStatusMiddleware",
    "format_tool_calls",
]
