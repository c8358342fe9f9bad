"""
Agent Runner - session lifecycle around one AgentEngine.

Typical use::

    runner = AgentRunner(status)
    try:
        await runner.init("review", config)
        answer = await runner.process_messages(messages)
    finally:
        await runner.cleanup()

``init`` may open network connections (MCP servers, A2A agents), so callers always
pair it with ``cleanup`` in a ``finally`` block.
"""

import re
from typing import Any

import structlog

from ..a2a.client import A2AClient
from ..a2a.tool import a2a_agent_tools
from ..config.loader import get_effective_config
from ..config.schema import AppConfig
from ..execution.policies import OverridePolicy
from ..llm.adapter import LLMAdapter, is_vertex_model
from ..logging.human import HumanLog
from ..logging.status import StatusCallback, StatusLevel, silent_status
from ..mcp.adapter import discover_mcp_tools
from ..mcp.client import MCPClient
from ..middleware.registry import build_middleware_stack
from ..state.artifacts import ArtifactStore
from ..state.session import SessionContext
from ..tools.base import BaseTool
from ..tools.custom import CustomCommandToolkit, DevToolkit
from ..tools.filesystem import filesystem_tools
from ..tools.registry import dedupe_tools
from .engine import AgentEngine
from .interrupt import escape_listener_factory

logger = structlog.get_logger()

_UNAUTHORIZED = re.compile(r"\b401\b|unauthori[sz]ed", re.IGNORECASE)

VERTEX_UNAUTHORIZED_HINT = (
    "Vertex AI authentication failed (401). "
    "If you use ADC, run `gcloud auth application-default login`. "
    "Also make sure `GOOGLE_API_KEY` is unset or not a Google AI Studio key, "
    "since AI Studio keys are not valid for Vertex AI endpoints."
)


class EmptyResponseError(Exception):
    """The model produced no text, even after the fallback call."""

    pass


class StreamProcessingError(Exception):
    """The streaming run failed."""

    pass


class AgentProcessingError(Exception):
    """Any failure of ``process_messages``, prefixed "Agent processing failed: "."""

    pass


def enhance_vertex_unauthorized_message(message: str, model: str) -> str:
    """Append the Vertex AI authentication hint to 401-like errors of Vertex models."""
    if not is_vertex_model(model) or not _UNAUTHORIZED.search(message):
        return message
    return f"{message}\n{VERTEX_UNAUTHORIZED_HINT}"


class AgentRunner:
    """Owns one engine and its connections for a session."""

    def __init__(
        self,
        status: StatusCallback = silent_status,
        artifacts: ArtifactStore | None = None,
    ):
        self.status = status
        self.artifacts = artifacts if artifacts is not None else ArtifactStore()
        self.engine: AgentEngine | None = None
        self.config: AppConfig | None = None
        self.stream_output = True
        self._mcp_clients: list[MCPClient] = []
        self._a2a_clients: list[A2AClient] = []
        self.log = logger.bind(component="agent_runner")
        self.hlog = HumanLog(self.log)

    async def init(
        self,
        command: str | None,
        config: AppConfig,
        llm: LLMAdapter | None = None,
        override_policy: OverridePolicy | None = None,
    ) -> None:
        """Build the engine for ``command``.

        The streaming policy is captured here and the artifact store is
        cleared so nothing leaks from a previous session.
        """
        self.config = get_effective_config(config, command)
        self.stream_output = self.config.llm.stream
        self.artifacts.clear()
        self.log.info("runner.init", command=command or "default", stream=self.stream_output)

        llm = llm or LLMAdapter(self.config.llm)
        tools = await self._collect_tools(self.config, override_policy or OverridePolicy())
        if tools:
            self.status(StatusLevel.INFO, f"Loaded tools: {', '.join(t.name for t in tools)}")

        session = SessionContext(
            config=self.config,
            artifacts=self.artifacts,
            status=self.status,
            llm=llm,
        )
        middleware = build_middleware_stack(self.config.middleware, session)

        self.engine = AgentEngine(
            llm,
            tools,
            middleware,
            status=self.status,
            max_steps=self.config.max_steps,
            listener_factory=escape_listener_factory(self.config.can_interrupt_with_esc),
        )

    async def _collect_tools(self, config: AppConfig, override_policy: OverridePolicy) -> list[BaseTool]:
        tools: list[BaseTool] = list(filesystem_tools(config.filesystem, config.workspace.root))

        if "dev" in config.builtin_tools:
            tools.extend(DevToolkit(config.dev_commands, self.status, override_policy).get_tools())

        tools.extend(
            CustomCommandToolkit(config.custom_tools, self.status, override_policy).get_tools()
        )

        if config.mcp.servers:
            mcp_tools, self._mcp_clients = await discover_mcp_tools(config.mcp.servers)
            tools.extend(mcp_tools)

        if config.a2a_agents:
            a2a_tools, self._a2a_clients = a2a_agent_tools(config.a2a_agents)
            tools.extend(a2a_tools)

        return dedupe_tools(tools)

    async def process_messages(self, messages: list[dict[str, Any]]) -> str:
        """Run one turn, streaming or batched depending on the captured policy.

        Raises:
            RuntimeError: If the runner was not initialized
            AgentProcessingError: On any failure, including empty responses
        """
        if self.engine is None or self.config is None:
            raise RuntimeError("AgentRunner not initialized. Call init() first.")

        try:
            if self.stream_output:
                return await self._process_streaming(messages)
            return await self._process_batched(messages)
        except Exception as e:
            self.log.error("runner.processing_failed", error=str(e), error_type=type(e).__name__)
            message = enhance_vertex_unauthorized_message(str(e), self.config.llm.model)
            raise AgentProcessingError(f"Agent processing failed: {message}") from e

    async def _process_streaming(self, messages: list[dict[str, Any]]) -> str:
        try:
            chunks = [chunk async for chunk in self.engine.stream(messages)]
        except Exception as e:
            raise StreamProcessingError(f"Stream processing failed: {e}") from e

        result = "".join(chunks)
        self.log.debug("runner.stream_complete", length=len(result))
        if self.engine.interrupted or result.strip():
            return result

        # Some providers do not flush streamed content after tool calls
        self.hlog.stream_fallback()
        fallback = await self.engine.invoke(messages)
        if not fallback.strip():
            raise EmptyResponseError(
                "Model returned an empty response after tool execution. "
                "Try again or switch to a more stable model."
            )
        return fallback

    async def _process_batched(self, messages: list[dict[str, Any]]) -> str:
        result = await self.engine.invoke(messages)
        if not result.strip():
            raise EmptyResponseError(
                "Model returned an empty response. Try again or switch to a more stable model."
            )
        return result

    async def cleanup(self) -> None:
        """Close connections and drop the engine. Safe to call at any time."""
        mcp_clients, self._mcp_clients = self._mcp_clients, []
        a2a_clients, self._a2a_clients = self._a2a_clients, []
        for client in [*mcp_clients, *a2a_clients]:
            try:
                await client.aclose()
            except Exception as e:
                self.log.warning("runner.client_close_failed", client=repr(client), error=str(e))
        if self.engine is not None or mcp_clients or a2a_clients:
            self.log.info("runner.cleanup", mcp_clients=len(mcp_clients), a2a_clients=len(a2a_clients))
        self.engine = None
        self.config = None
