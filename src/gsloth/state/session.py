"""
Session context handed to middleware factories.

Groups the collaborators a middleware may need while it is being built:
the effective configuration, the artifact store of the session, the
status sink and the model adapter.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..config.schema import AppConfig
from ..logging.status import StatusCallback, silent_status
from .artifacts import ArtifactStore

if TYPE_CHECKING:
    from ..llm.adapter import LLMAdapter


@dataclass
class SessionContext:
    config: AppConfig
    artifacts: ArtifactStore = field(default_factory=ArtifactStore)
    status: StatusCallback = silent_status
    llm: "LLMAdapter | None" = None
