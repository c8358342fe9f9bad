"""
Anthropic prompt caching middleware.

Marks the system prompt with ``cache_control`` so Anthropic caches the
repeated preamble between model calls. For other providers the
middleware is a no-op.
"""

from typing import Any, Literal

import structlog
from pydantic import BaseModel

from ..llm.adapter import LLMResponse, is_anthropic_model
from ..state.conversation import ModelRequest
from ..state.session import SessionContext
from .base import AgentMiddleware, ModelHandler

logger = structlog.get_logger()


class PromptCachingSettings(BaseModel):
    ttl: Literal["5m", "1h"] = "5m"

    model_config = {"extra": "forbid"}


def mark_system_cache_control(messages: list[dict[str, Any]], ttl: str = "5m") -> list[dict[str, Any]]:
    """Copy of ``messages`` with cache_control on the system message content.

    Anthropic requires the content as a list of blocks; string content is
    converted, list content gets the marker on its last block.
    """
    cache_control: dict[str, str] = {"type": "ephemeral"}
    if ttl != "5m":
        cache_control["ttl"] = ttl

    result: list[dict[str, Any]] = []
    for msg in messages:
        if msg.get("role") != "system":
            result.append(msg)
            continue

        content = msg.get("content") or ""
        if isinstance(content, str):
            blocks = [{"type": "text", "text": content, "cache_control": cache_control}]
        else:
            blocks = [dict(block) for block in content]
            if blocks:
                blocks[-1]["cache_control"] = cache_control
        result.append({**msg, "content": blocks})
    return result


class AnthropicPromptCachingMiddleware(AgentMiddleware):
    name = "anthropic-prompt-caching"

    def __init__(self, model: str, ttl: str = "5m") -> None:
        super().__init__()
        self.ttl = ttl
        self.enabled = is_anthropic_model(model)
        if not self.enabled:
            logger.debug("middleware.caching.noop", model=model)

    async def wrap_model_call(self, request: ModelRequest, handler: ModelHandler) -> LLMResponse:
        if not self.enabled:
            return await handler(request)
        return await handler(
            request.override(messages=mark_system_cache_control(request.messages, self.ttl))
        )


def create_prompt_caching_middleware(
    settings: dict[str, Any], session: SessionContext
) -> AnthropicPromptCachingMiddleware:
    parsed = PromptCachingSettings(**settings)
    logger.debug("middleware.caching.create", ttl=parsed.ttl)
    return AnthropicPromptCachingMiddleware(session.config.llm.model, ttl=parsed.ttl)
