"""
Chat module - interactive multi-turn session over one runner.

The engine keeps no memory between calls, so the session owns the
history: the system prompt goes first, then every user message and
answer in order. A failed turn leaves the history untouched and the
operator may retry the same prompt.
"""

import asyncio
from typing import Any, Callable

import structlog

from ..config.schema import AppConfig
from ..core.runner import AgentRunner
from ..llm.adapter import LLMAdapter
from ..logging.status import StatusCallback, StatusLevel, silent_status
from ..state.conversation import assistant_message, system_message, user_message
from .prompts import system_prompt

logger = structlog.get_logger()

PROMPT = "  > "
EXIT_WORDS = frozenset({"exit", "/exit"})


class ChatSession:
    """Conversation history plus the runner that answers it."""

    def __init__(self, runner: AgentRunner, mode: str = "chat") -> None:
        self.runner = runner
        self.mode = mode
        self.history: list[dict[str, Any]] = []
        self.log = logger.bind(component="chat", mode=mode)

    def _turn_messages(self, text: str) -> list[dict[str, Any]]:
        if not self.history:
            return [system_message(system_prompt(self.mode)), user_message(text)]
        return [user_message(text)]

    async def send(self, text: str) -> str:
        """Answer ``text``; the history only grows when the turn succeeds."""
        turn = self._turn_messages(text)
        answer = await self.runner.process_messages([*self.history, *turn])
        self.history.extend(turn)
        self.history.append(assistant_message(answer))
        self.log.debug("chat.turn", messages=len(self.history))
        return answer


async def run_chat(
    config: AppConfig,
    status: StatusCallback = silent_status,
    llm: LLMAdapter | None = None,
    mode: str = "chat",
    input_fn: Callable[[str], str] = input,
    first_message: str | None = None,
) -> None:
    """Read prompts until ``exit``, ``/exit`` or end of input."""
    runner = AgentRunner(status)
    try:
        await runner.init(mode, config, llm=llm)
        session = ChatSession(runner, mode)
        status(StatusLevel.INFO, "Type 'exit' or '/exit' to leave.")

        pending = first_message
        while True:
            if pending is None:
                try:
                    line = await asyncio.to_thread(input_fn, PROMPT)
                except EOFError:
                    break
                pending = line.strip()
            if not pending:
                pending = None
                continue
            if pending.lower() in EXIT_WORDS:
                break

            try:
                await session.send(pending)
                pending = None
            except Exception as e:
                session.log.error("chat.turn_failed", error=str(e))
                status(StatusLevel.ERROR, f"\n❌ Error processing message: {e}\n")
                try:
                    retry = await asyncio.to_thread(
                        input_fn, "Do you want to try again with the same prompt? (y/n): "
                    )
                except EOFError:
                    break
                if retry.strip().lower() not in ("y", "yes"):
                    pending = None
    finally:
        await runner.cleanup()
