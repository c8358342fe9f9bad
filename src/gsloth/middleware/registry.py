"""
Middleware registry - resolves configured middleware entries.

Entries of ``AppConfig.middleware`` may be:

- a predefined name: ``"summarization"`` (default settings)
- a mapping: ``{"name": "summarization", "messages_to_keep": 10}``
- an ``AgentMiddleware`` instance (programmatic configuration)

Resolution keeps the input order. An entry that cannot be built is
reported as a warning and skipped; the rest of the list still resolves.
"""

from typing import Any, Callable, Sequence

import structlog

from ..logging.status import StatusLevel
from ..state.session import SessionContext
from .base import AgentMiddleware
from .caching import create_prompt_caching_middleware
from .checklist import create_checklist_middleware
from .review_rate import create_review_rate_middleware
from .status import ToolCallStatusMiddleware
from .summarization import create_summarization_middleware

logger = structlog.get_logger()

MiddlewareFactory = Callable[[dict[str, Any], SessionContext], AgentMiddleware]

PREDEFINED_MIDDLEWARE: dict[str, MiddlewareFactory] = {
    "anthropic-prompt-caching": create_prompt_caching_middleware,
    "summarization": create_summarization_middleware,
    "review-rate": create_review_rate_middleware,
    "checklist": create_checklist_middleware,
}


class UnknownMiddlewareError(Exception):
    """The entry names no predefined middleware."""

    pass


def middleware_entry_name(entry: Any) -> str | None:
    """Name of a configured entry, whatever its form."""
    if isinstance(entry, str):
        return entry
    if isinstance(entry, AgentMiddleware):
        return entry.name
    if isinstance(entry, dict) and isinstance(entry.get("name"), str):
        return entry["name"]
    return None


def create_predefined_middleware(
    name: str, settings: dict[str, Any], session: SessionContext
) -> AgentMiddleware:
    """Build a predefined middleware.

    Raises:
        UnknownMiddlewareError: If ``name`` is not a predefined middleware
    """
    factory = PREDEFINED_MIDDLEWARE.get(name)
    if factory is None:
        raise UnknownMiddlewareError(f"Unknown predefined middleware: {name}")
    logger.debug("middleware.create", name=name, settings=list(settings))
    return factory(settings, session)


def resolve_middleware(
    entries: Sequence[Any] | None, session: SessionContext
) -> list[AgentMiddleware]:
    """Turn configured entries into middleware instances, in order."""
    resolved: list[AgentMiddleware] = []

    for entry in entries or []:
        try:
            if isinstance(entry, AgentMiddleware):
                logger.debug("middleware.custom", name=entry.name)
                resolved.append(entry)
            elif isinstance(entry, str):
                resolved.append(create_predefined_middleware(entry, {}, session))
            elif isinstance(entry, dict) and isinstance(entry.get("name"), str):
                settings = {k: v for k, v in entry.items() if k != "name"}
                resolved.append(create_predefined_middleware(entry["name"], settings, session))
            else:
                raise UnknownMiddlewareError(f"Unsupported middleware entry: {entry!r}")
        except Exception as e:
            logger.warning("middleware.create_failed", entry=repr(entry), error=str(e))
            session.status(StatusLevel.WARNING, f"Failed to create middleware: {e}")

    return resolved


def build_middleware_stack(
    entries: Sequence[Any] | None, session: SessionContext
) -> list[AgentMiddleware]:
    """Resolved middleware followed by the tool-call status middleware."""
    middleware = [*resolve_middleware(entries, session), ToolCallStatusMiddleware(session.status)]
    session.status(
        StatusLevel.INFO, f"Loaded middleware: {', '.join(m.name for m in middleware)}"
    )
    return middleware
