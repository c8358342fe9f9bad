"""
Ask module - one-shot question answering.
"""

import structlog

from ..config.schema import AppConfig
from ..core.runner import AgentRunner
from ..llm.adapter import LLMAdapter
from ..logging.status import StatusCallback, silent_status
from ..state.conversation import system_message, user_message
from .prompts import system_prompt

logger = structlog.get_logger()


async def ask_question(
    question: str,
    config: AppConfig,
    status: StatusCallback = silent_status,
    llm: LLMAdapter | None = None,
) -> str:
    """Answer one question with a fresh runner.

    Raises:
        AgentProcessingError: If the run fails
    """
    log = logger.bind(component="ask")
    runner = AgentRunner(status)
    try:
        await runner.init("ask", config, llm=llm)
        messages = [system_message(system_prompt("ask")), user_message(question)]
        answer = await runner.process_messages(messages)
        log.info("ask.done", length=len(answer))
        return answer
    finally:
        await runner.cleanup()
