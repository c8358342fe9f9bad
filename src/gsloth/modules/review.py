"""
Review module - runs a code review and turns the rating into an exit code.

When rating is enabled for the command, the ``review-rate`` middleware is
appended to the configured stack (replacing a configured entry of the same
name, so the command's effective rating settings win). After the run the
rating artifact is consumed and deleted.
"""

from typing import Any

import structlog

from ..config.loader import get_effective_config
from ..config.schema import AppConfig
from ..core.runner import AgentProcessingError, AgentRunner
from ..llm.adapter import LLMAdapter
from ..logging.status import StatusCallback, StatusLevel, silent_status
from ..middleware.registry import middleware_entry_name
from ..middleware.review_rate import (
    REVIEW_RATE_ARTIFACT_KEY,
    ReviewRating,
    format_score,
    rating_verdict,
)
from ..state.artifacts import ArtifactStore
from ..state.conversation import system_message, user_message
from .prompts import system_prompt

logger = structlog.get_logger()

REVIEW_RATE_MIDDLEWARE = "review-rate"


def with_review_rate_middleware(config: AppConfig, command: str) -> AppConfig:
    """Return ``config`` with the review-rate middleware appended when enabled."""
    rating = get_effective_config(config, command).review
    if not rating.enabled:
        return config

    middleware: list[Any] = [
        entry for entry in config.middleware
        if middleware_entry_name(entry) != REVIEW_RATE_MIDDLEWARE
    ]
    middleware.append({"name": REVIEW_RATE_MIDDLEWARE, **rating.model_dump()})
    return config.model_copy(update={"middleware": middleware})


def report_rating(
    artifacts: ArtifactStore,
    command: str,
    status: StatusCallback,
    error_on_review_fail: bool = True,
) -> int:
    """Print the stored rating and return the exit code it implies.

    The artifact is deleted afterwards so a later run cannot report it again.
    """
    stored = artifacts.get(REVIEW_RATE_ARTIFACT_KEY)
    artifacts.delete(REVIEW_RATE_ARTIFACT_KEY)

    if stored is None:
        status(
            StatusLevel.WARNING,
            f"Rating middleware did not return a score for {command} command.",
        )
        return 0

    rating = stored if isinstance(stored, ReviewRating) else ReviewRating(**stored)
    verdict = rating_verdict(rating)
    score = (
        f"{verdict} {format_score(rating.rate)}/{format_score(rating.max_rating)} "
        f"(threshold: {format_score(rating.pass_threshold)})"
    )

    status(StatusLevel.INFO, "\nREVIEW RATING")
    if verdict == "PASS":
        status(StatusLevel.SUCCESS, score)
    else:
        status(StatusLevel.ERROR, score)
    if rating.comment:
        status(StatusLevel.INFO, rating.comment)

    logger.info("review.rating", command=command, verdict=verdict, rate=rating.rate)
    return 1 if verdict == "FAIL" and error_on_review_fail else 0


async def run_review(
    content: str,
    config: AppConfig,
    status: StatusCallback = silent_status,
    llm: LLMAdapter | None = None,
    command: str = "review",
) -> int:
    """Review ``content`` and return the process exit code.

    Returns:
        0 on success or PASS, 1 on a processing failure or a FAIL verdict
        (the latter only when ``error_on_review_fail`` is set)
    """
    log = logger.bind(component="review", command=command)
    rating = get_effective_config(config, command).review
    runner = AgentRunner(status)

    try:
        await runner.init(command, with_review_rate_middleware(config, command), llm=llm)
        messages = [system_message(system_prompt("review")), user_message(content)]
        await runner.process_messages(messages)
    except AgentProcessingError as e:
        log.error("review.failed", error=str(e))
        status(StatusLevel.ERROR, "Failed to run review with agent.")
        status(StatusLevel.ERROR, str(e))
        return 1
    finally:
        await runner.cleanup()

    if not rating.enabled:
        return 0
    return report_rating(runner.artifacts, command, status, rating.error_on_review_fail)
