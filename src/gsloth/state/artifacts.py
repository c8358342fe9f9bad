"""
Artifact Store - keyed store for transient cross-cutting state.

One store lives for one command invocation and is handed explicitly to
every component that shares state through it. Key ownership:

    gsloth.checklist            checklist middleware (items + phase flags)
    gsloth.checklist.offered    checklist middleware (tools offered last call)
    gsloth.review.rate          review-rate middleware, consumed by review

Values must be JSON-serializable. Nothing is evicted automatically:
consumers delete what they have used. Reads and writes of one key happen
inside a single synchronous section of a hook, with no ``await`` between
them.
"""

import copy
from typing import Any

import structlog

logger = structlog.get_logger()


class ArtifactStore:
    """In-process key/value store scoped to one session."""

    def __init__(self) -> None:
        self._artifacts: dict[str, Any] = {}
        self.log = logger.bind(component="artifact_store")

    def set(self, key: str, value: Any) -> None:
        """Store a value, replacing any previous one."""
        self._artifacts[key] = copy.deepcopy(value)
        self.log.debug("artifact.set", key=key)

    def get(self, key: str, default: Any = None) -> Any:
        """Return a copy of the stored value, or ``default``.

        Callers get a copy so mutating it never changes the store behind
        a writer's back; persist changes with ``set``.
        """
        if key not in self._artifacts:
            return default
        return copy.deepcopy(self._artifacts[key])

    def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""
        if key in self._artifacts:
            del self._artifacts[key]
            self.log.debug("artifact.delete", key=key)

    def clear(self) -> None:
        """Drop every artifact. Called at the start of each session."""
        self._artifacts.clear()
        self.log.debug("artifact.clear")

    def has(self, key: str) -> bool:
        return key in self._artifacts

    def __len__(self) -> int:
        return len(self._artifacts)

    def __repr__(self) -> str:
        return f"<ArtifactStore({len(self)} keys)>"
