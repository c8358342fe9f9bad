"""
Review rating middleware - scores the reviewed code after the review.

Once the main conversation is over, a secondary engine with a single
tool (``gsloth_review_rate``) is shown the whole transcript plus rating
instructions. The tool stores the score under ``gsloth.review.rate``;
the review module consumes and deletes it.

A failed rating never fails the review itself: errors are debug-logged
and the conversation result is returned unchanged.
"""

from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as ArgsValidationError

from ..config.schema import RatingConfig
from ..llm.adapter import LLMAdapter
from ..logging.human import HumanLog
from ..state.artifacts import ArtifactStore
from ..state.conversation import AgentState, user_message
from ..state.session import SessionContext
from ..tools.base import BaseTool, ToolError, ToolResult
from .base import AgentMiddleware

logger = structlog.get_logger()

REVIEW_RATE_ARTIFACT_KEY = "gsloth.review.rate"
REVIEW_RATE_TOOL_NAME = "gsloth_review_rate"

DEFAULT_MIN_RATING = 0
DEFAULT_MAX_RATING = 10
DEFAULT_PASS_THRESHOLD = 6


@dataclass(frozen=True)
class RatingScale:
    min_rating: float
    max_rating: float
    pass_threshold: float


class ReviewRating(BaseModel):
    """Rating artifact stored by the rating tool."""

    rate: float
    comment: str
    pass_threshold: float
    min_rating: float
    max_rating: float

    model_config = {"extra": "forbid"}


def normalize_rating_config(config: RatingConfig | dict[str, Any] | None) -> RatingScale:
    """Resolve the rating scale, swapping reversed bounds and clamping the threshold."""
    if isinstance(config, RatingConfig):
        config = config.model_dump()
    config = config or {}

    low = config.get("min_rating")
    high = config.get("max_rating")
    low = DEFAULT_MIN_RATING if low is None else low
    high = DEFAULT_MAX_RATING if high is None else high
    min_rating, max_rating = (low, high) if low <= high else (high, low)

    threshold = config.get("pass_threshold")
    threshold = DEFAULT_PASS_THRESHOLD if threshold is None else threshold

    return RatingScale(
        min_rating=min_rating,
        max_rating=max_rating,
        pass_threshold=min(max(threshold, min_rating), max_rating),
    )


def format_score(value: float) -> str:
    """``6`` for whole numbers, one decimal place otherwise."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.1f}"


def rating_verdict(rating: ReviewRating | dict[str, Any]) -> str:
    """PASS when the rate reaches the threshold (inclusive), FAIL otherwise."""
    if isinstance(rating, dict):
        rating = ReviewRating(**rating)
    return "PASS" if rating.rate >= rating.pass_threshold else "FAIL"


def build_rating_instructions(scale: RatingScale) -> str:
    threshold = format_score(scale.pass_threshold)
    high = format_score(scale.max_rating)
    low = format_score(scale.min_rating)
    middle = format_score((scale.pass_threshold + scale.max_rating) / 2)

    return "\n".join([
        "A reviewer just finished assessing a code change.",
        "Your job is to inspect the entire conversation above, focus on the code being "
        "discussed (not the review quality),",
        f"and call the {REVIEW_RATE_TOOL_NAME} tool exactly once.",
        f"Assign a score between {low}-{high} that reflects the code quality only.",
        f"Pass threshold is {threshold}, everything below will be considered a fail.",
        "",
        "Additional guidelines:",
        f"- Never give {threshold}/{high} or more to code which would explode with syntax error.",
        f"- Rate excellent code as {high}/{high}",
        f"- Rate code needing improvements as {middle}/{high}",
        "- Use the comment field of the tool call for a concise summary referencing the code state.",
    ])


class RateArgs(BaseModel):
    rate: float = Field(description="Review rating within the configured range")
    comment: str = Field(description="Comment explaining the rating")

    model_config = {"extra": "forbid"}


class ReviewRateTool(BaseTool):
    """Stores the rating artifact."""

    def __init__(self, store: ArtifactStore, scale: RatingScale):
        self.name = REVIEW_RATE_TOOL_NAME
        self.description = "Stores the final review rating and summary comment."
        self.args_model = RateArgs
        self.store = store
        self.scale = scale
        self.log = logger.bind(component="review_rate")

    async def execute(self, **kwargs: Any) -> ToolResult:
        try:
            args = self.validate_args(kwargs)
        except ArgsValidationError as e:
            raise ToolError(f"Invalid arguments for {self.name}: {e}") from e

        if not self.scale.min_rating <= args.rate <= self.scale.max_rating:
            raise ToolError(
                f"Rating {format_score(args.rate)} is outside the range "
                f"{format_score(self.scale.min_rating)}-{format_score(self.scale.max_rating)}"
            )

        rating = ReviewRating(
            rate=args.rate,
            comment=args.comment,
            pass_threshold=self.scale.pass_threshold,
            min_rating=self.scale.min_rating,
            max_rating=self.scale.max_rating,
        )
        self.store.set(REVIEW_RATE_ARTIFACT_KEY, rating.model_dump())
        HumanLog(self.log).rating_stored(args.rate, self.scale.max_rating)
        return ToolResult(
            success=True,
            output=f"Stored rating {format_score(args.rate)}/{format_score(self.scale.max_rating)}",
        )


class ReviewRateMiddleware(AgentMiddleware):
    name = "review-rate"

    def __init__(self, llm: LLMAdapter, store: ArtifactStore, scale: RatingScale) -> None:
        super().__init__()
        self.llm = llm
        self.store = store
        self.scale = scale
        self.log = logger.bind(component="review_rate")

    async def after_agent(self, state: AgentState) -> AgentState | None:
        if not state.messages:
            return None

        # Engine import is deferred: the engine itself depends on this package
        from ..core.engine import AgentEngine

        self.store.delete(REVIEW_RATE_ARTIFACT_KEY)
        self.log.debug("review.rating.request")

        try:
            engine = AgentEngine(
                self.llm,
                tools=[ReviewRateTool(self.store, self.scale)],
                middleware=[],
                max_steps=3,
            )
            await engine.invoke(
                [*state.messages, user_message(build_rating_instructions(self.scale))]
            )
        except Exception as e:
            self.log.debug("review.rating.failed", error=str(e), error_type=type(e).__name__)
        return None


def create_review_rate_middleware(
    settings: dict[str, Any], session: SessionContext
) -> ReviewRateMiddleware:
    merged = {**session.config.review.model_dump(), **settings}
    rating = RatingConfig(**merged)
    llm = session.llm if session.llm is not None else LLMAdapter(session.config.llm)
    return ReviewRateMiddleware(llm, session.artifacts, normalize_rating_config(rating))
