"""
Summarization middleware - keeps long conversations inside the context window.

Before each model call the conversation size is estimated (~4 chars per
token). Above ``max_tokens_before_summary`` the older messages are
condensed into a single summary message by the model, keeping the
leading system message and the last ``messages_to_keep`` messages.

If summarizing fails (model error, network) the messages pass through
unchanged.
"""

from typing import Any

import structlog
from pydantic import BaseModel, Field

from ..llm.adapter import LLMAdapter
from ..state.conversation import AgentState, message_text, system_message, user_message
from ..state.session import SessionContext
from .base import AgentMiddleware

logger = structlog.get_logger()

DEFAULT_SUMMARY_PROMPT = (
    "Summarize the conversation below so that the work can continue from the "
    "summary alone. Keep the user's goals, decisions taken, files read or "
    "modified, tool results that still matter and open questions. Reply with "
    "the summary only."
)

SUMMARY_PREFIX = "Here is a summary of the conversation to date:\n\n"


class SummarizationSettings(BaseModel):
    model: str | None = Field(default=None, description="Model used for summaries")
    max_tokens_before_summary: int = Field(default=10000, ge=1)
    messages_to_keep: int = Field(default=20, ge=0)
    summary_prompt: str | None = None

    model_config = {"extra": "forbid"}


def estimate_tokens(messages: list[dict[str, Any]]) -> int:
    """Rough token estimate: ~4 characters per token plus per-message overhead."""
    total_chars = 0
    for m in messages:
        total_chars += len(message_text(m))
        for tc in m.get("tool_calls") or []:
            if isinstance(tc, dict):
                func = tc.get("function", {})
                total_chars += len(str(func.get("name", "")))
                total_chars += len(str(func.get("arguments", "")))
        total_chars += 16
    return total_chars // 4


def _format_for_summary(messages: list[dict[str, Any]]) -> str:
    parts: list[str] = []
    for msg in messages:
        role = msg.get("role", "")
        if role == "assistant" and msg.get("tool_calls"):
            names = [tc["function"]["name"] for tc in msg["tool_calls"] if "function" in tc]
            parts.append(f"assistant called tools: {', '.join(names)}")
            if msg.get("content"):
                parts.append(f"assistant: {message_text(msg)}")
        elif role == "tool":
            parts.append(f"tool {msg.get('name', 'unknown')}: {message_text(msg)[:1000]}")
        else:
            parts.append(f"{role}: {message_text(msg)}")
    return "\n".join(parts) or "(no messages)"


class SummarizationMiddleware(AgentMiddleware):
    name = "summarization"

    def __init__(
        self,
        llm: LLMAdapter,
        max_tokens_before_summary: int = 10000,
        messages_to_keep: int = 20,
        summary_prompt: str | None = None,
    ) -> None:
        super().__init__()
        self.llm = llm
        self.max_tokens_before_summary = max_tokens_before_summary
        self.messages_to_keep = messages_to_keep
        self.summary_prompt = summary_prompt or DEFAULT_SUMMARY_PROMPT
        self.log = logger.bind(component="summarization")

    def _split(
        self, messages: list[dict[str, Any]]
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]], list[dict[str, Any]]]:
        """Split into (leading system, to summarize, to keep).

        The kept tail never starts with a tool message, so a tool result is
        never separated from the assistant message that requested it.
        """
        head = messages[:1] if messages and messages[0].get("role") == "system" else []
        body = messages[len(head):]

        cut = max(len(body) - self.messages_to_keep, 0)
        while 0 < cut < len(body) and body[cut].get("role") == "tool":
            cut -= 1
        return head, body[:cut], body[cut:]

    async def before_model(self, state: AgentState) -> AgentState | None:
        tokens = estimate_tokens(state.messages)
        if tokens <= self.max_tokens_before_summary:
            return None

        head, old, recent = self._split(state.messages)
        if not old:
            return None

        self.log.info("summarization.start", estimated_tokens=tokens, summarized=len(old), kept=len(recent))
        try:
            response = await self.llm.acompletion(
                [system_message(self.summary_prompt), user_message(_format_for_summary(old))]
            )
        except Exception as e:
            self.log.warning("summarization.failed", error=str(e))
            return None

        if not response.content:
            self.log.warning("summarization.empty")
            return None

        summarized = [*head, user_message(SUMMARY_PREFIX + response.content), *recent]
        self.log.info("summarization.done", before=len(state.messages), after=len(summarized))
        return state.with_messages(summarized)


def create_summarization_middleware(
    settings: dict[str, Any], session: SessionContext
) -> SummarizationMiddleware:
    parsed = SummarizationSettings(**settings)
    if parsed.model:
        llm = LLMAdapter(session.config.llm.model_copy(update={"model": parsed.model}))
    elif session.llm is not None:
        llm = session.llm
    else:
        llm = LLMAdapter(session.config.llm)

    return SummarizationMiddleware(
        llm,
        max_tokens_before_summary=parsed.max_tokens_before_summary,
        messages_to_keep=parsed.messages_to_keep,
        summary_prompt=parsed.summary_prompt,
    )
