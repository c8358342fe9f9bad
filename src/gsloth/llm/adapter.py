"""
Adapter for LiteLLM - Abstraction over multiple LLM providers.

Provides a unified async interface for calling any model supported by
LiteLLM, with automatic retries, response normalization and streaming.

Retries are configured from LLMConfig:
- Only for transient errors: RateLimitError, ServiceUnavailableError,
  APIConnectionError and Timeout.
- Authentication and configuration errors are not retried.
- A structured log line is emitted on each retry.
"""

import json
import os
from typing import Any, AsyncIterator

import litellm
import structlog
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config.schema import LLMConfig

logger = structlog.get_logger()

# Transient errors that justify retries
_RETRYABLE_ERRORS = (
    litellm.RateLimitError,
    litellm.ServiceUnavailableError,
    litellm.APIConnectionError,
    litellm.Timeout,
)

_VERTEX_PREFIXES = ("vertex_ai/", "vertex_ai_beta/")


class StreamChunk(BaseModel):
    """A streamed fragment of model text."""

    type: str = Field(default="content", description="Chunk type: 'content'")
    data: str = Field(description="Chunk content")

    model_config = {"extra": "forbid"}


class ToolCall(BaseModel):
    """A tool call requested by the model, independent of the provider."""

    id: str = Field(description="Unique ID of the tool call")
    name: str = Field(description="Name of the tool to execute")
    arguments: dict[str, Any] = Field(default_factory=dict, description="Arguments for the tool")

    model_config = {"extra": "forbid"}


class LLMResponse(BaseModel):
    """Normalized model response."""

    content: str | None = Field(
        default=None,
        description="Response text",
    )
    tool_calls: list[ToolCall] = Field(
        default_factory=list,
        description="Tool calls requested by the model",
    )
    finish_reason: str = Field(
        default="stop",
        description="Finish reason: stop, tool_calls, length, etc.",
    )
    usage: dict[str, Any] | None = Field(
        default=None,
        description="Token usage information",
    )

    model_config = {"extra": "forbid"}


def is_vertex_model(model: str) -> bool:
    """True when the model is served by Google Vertex AI."""
    return model.startswith(_VERTEX_PREFIXES)


def is_anthropic_model(model: str) -> bool:
    """True for Anthropic Claude models, whatever the routing prefix."""
    return model.startswith("anthropic/") or "claude" in model.lower()


class LLMAdapter:
    """Async adapter for LiteLLM with configuration, retries and normalization.

    Exposes the two calls the agent engine needs:
    ``acompletion`` (whole response) and ``acompletion_stream``
    (content chunks followed by the assembled response).
    """

    def __init__(self, config: LLMConfig):
        self.config = config
        self.log = logger.bind(component="llm_adapter", model=config.model)

        self._configure_litellm()

        self.log.info(
            "llm.adapter.initialized",
            model=config.model,
            retries=config.retries,
            stream=config.stream,
        )

    @property
    def model(self) -> str:
        return self.config.model

    def _on_retry_sleep(self, retry_state: RetryCallState) -> None:
        """Log each retry attempt and its wait time."""
        next_wait = retry_state.next_action.sleep if retry_state.next_action else 0
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self.log.warning(
            "llm.retry",
            attempt=retry_state.attempt_number,
            wait_seconds=round(next_wait, 1),
            error=str(exc) if exc else None,
            error_type=type(exc).__name__ if exc else None,
        )

    async def _call_with_retry(self, fn, *args, **kwargs) -> Any:
        """Await fn with retries for transient errors only."""
        max_attempts = self.config.retries + 1
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=60),
            before_sleep=self._on_retry_sleep,
            reraise=True,
        ):
            with attempt:
                return await fn(*args, **kwargs)

    def _configure_litellm(self) -> None:
        api_key = os.environ.get(self.config.api_key_env)
        if api_key:
            os.environ["LITELLM_API_KEY"] = api_key
            self.log.debug("llm.api_key_configured", env_var=self.config.api_key_env)

        litellm.suppress_debug_info = True

    def _request_kwargs(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        stream: bool,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "timeout": self.config.timeout,
            "stream": stream,
        }
        if self.config.api_base:
            kwargs["api_base"] = self.config.api_base
        if tools:
            kwargs["tools"] = tools
        return kwargs

    async def acompletion(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        """Call the model and return the whole normalized response.

        Raises:
            litellm.AuthenticationError: Immediately (no retry)
            Exception: Any other error after exhausting retries
        """
        self.log.info(
            "llm.completion.start",
            messages_count=len(messages),
            tools_count=len(tools) if tools else 0,
        )

        try:
            response = await self._call_with_retry(
                litellm.acompletion, **self._request_kwargs(messages, tools, stream=False)
            )
        except Exception as e:
            self.log.error("llm.completion.error", error=str(e), error_type=type(e).__name__)
            raise

        normalized = self._normalize_response(response)
        self.log.info(
            "llm.completion.success",
            finish_reason=normalized.finish_reason,
            has_content=bool(normalized.content),
            tool_calls_count=len(normalized.tool_calls),
            usage=normalized.usage,
        )
        return normalized

    async def acompletion_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamChunk | LLMResponse]:
        """Call the model with streaming.

        Yields:
            StreamChunk: content fragments as they arrive
            LLMResponse: the assembled response (last item)

        Closing the generator early (``aclose()``) closes the provider
        stream as well.
        """
        self.log.info(
            "llm.completion_stream.start",
            messages_count=len(messages),
            tools_count=len(tools) if tools else 0,
        )

        stream = await self._call_with_retry(
            litellm.acompletion, **self._request_kwargs(messages, tools, stream=True)
        )

        collected_content: list[str] = []
        collected_tool_calls: dict[int, dict[str, Any]] = {}
        finish_reason = "stop"

        try:
            async for chunk in stream:
                choice = chunk.choices[0] if chunk.choices else None
                if not choice:
                    continue

                delta = choice.delta

                if getattr(delta, "content", None):
                    collected_content.append(delta.content)
                    yield StreamChunk(data=delta.content)

                # Tool calls arrive split across chunks, keyed by index
                for tc_delta in getattr(delta, "tool_calls", None) or []:
                    entry = collected_tool_calls.setdefault(
                        tc_delta.index, {"id": "", "name": "", "arguments": ""}
                    )
                    if tc_delta.id:
                        entry["id"] = tc_delta.id
                    function = getattr(tc_delta, "function", None)
                    if function is not None:
                        if function.name:
                            entry["name"] = function.name
                        if function.arguments:
                            entry["arguments"] += function.arguments

                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except Exception as e:
            self.log.error(
                "llm.completion_stream.error", error=str(e), error_type=type(e).__name__
            )
            raise
        finally:
            close = getattr(stream, "aclose", None)
            if close is not None:
                await close()

        response = LLMResponse(
            content="".join(collected_content) or None,
            tool_calls=[
                ToolCall(
                    id=tc["id"],
                    name=tc["name"],
                    arguments=self._parse_arguments(tc["arguments"]),
                )
                for tc in collected_tool_calls.values()
            ],
            finish_reason=finish_reason,
        )

        self.log.info(
            "llm.completion_stream.complete",
            finish_reason=response.finish_reason,
            has_content=bool(response.content),
            tool_calls_count=len(response.tool_calls),
        )
        yield response

    def _normalize_response(self, response: Any) -> LLMResponse:
        """Normalize a LiteLLM ModelResponse to LLMResponse."""
        choice = response.choices[0]
        message = choice.message

        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=self._parse_arguments(tc.function.arguments),
            )
            for tc in getattr(message, "tool_calls", None) or []
        ]

        usage = None
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": getattr(response.usage, "prompt_tokens", 0) or 0,
                "completion_tokens": getattr(response.usage, "completion_tokens", 0) or 0,
                "total_tokens": getattr(response.usage, "total_tokens", 0) or 0,
            }

        return LLMResponse(
            content=getattr(message, "content", None),
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    def _parse_arguments(self, arguments: Any) -> dict[str, Any]:
        """Parse tool call arguments, which come as a JSON string or a dict."""
        if isinstance(arguments, dict):
            return arguments

        if isinstance(arguments, str):
            if not arguments.strip():
                return {}
            try:
                return json.loads(arguments)
            except json.JSONDecodeError:
                self.log.warning("llm.arguments_parse_error", arguments=arguments)
                return {}

        return {}

    def __repr__(self) -> str:
        return f"<LLMAdapter(model='{self.config.model}')>"
