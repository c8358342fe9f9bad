"""
Pydantic models for the complete gsloth configuration.

Every section is validated with ``extra="forbid"`` so that typos in the
YAML file surface as errors instead of silently falling back to defaults.
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

ValidationCheck = Literal[
    "absolute-path",
    "directory-traversal",
    "shell-injection",
    "null-bytes",
]

FilesystemAccess = Literal["all", "read", "none"]


class LLMConfig(BaseModel):
    """LLM provider configuration."""

    model: str = "gpt-4o"
    api_base: str | None = None
    api_key_env: str = "LITELLM_API_KEY"
    timeout: int = 60
    retries: int = 2
    stream: bool = Field(
        default=True,
        description=(
            "Streaming policy. When True the runner consumes the model "
            "incrementally and falls back to one batched call on empty output."
        ),
    )

    model_config = {"extra": "forbid"}


class RatingConfig(BaseModel):
    """Review rating configuration.

    The score range is normalized by the review-rate middleware:
    reversed bounds are swapped and the threshold is clamped into range.
    """

    enabled: bool = True
    pass_threshold: float = Field(default=6, description="Minimum score that counts as PASS")
    min_rating: float = Field(default=0, description="Lowest score the model may assign")
    max_rating: float = Field(default=10, description="Highest score the model may assign")
    error_on_review_fail: bool = Field(
        default=True,
        description="Exit with code 1 when the review verdict is FAIL",
    )

    model_config = {"extra": "forbid"}


class CustomParameterConfig(BaseModel):
    """Parameter of a custom command tool."""

    description: str = ""
    allow: list[ValidationCheck] = Field(
        default_factory=list,
        description="Validation checks explicitly waived for this parameter",
    )

    model_config = {"extra": "forbid"}


class CustomCommandConfig(BaseModel):
    """Shell command template exposed to the model as a tool.

    Example (YAML)::

        custom_tools:
          migrate:
            command: "npm run migrate -- ${name}"
            description: "Run a named migration"
            parameters:
              name:
                description: "Migration name"
    """

    command: str = Field(description="Command template, may contain ${param} placeholders")
    description: str = Field(description="Tool description shown to the model")
    parameters: dict[str, CustomParameterConfig] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}


class DevCommandsConfig(BaseModel):
    """Commands behind the built-in dev toolkit.

    Each tool is only exposed when its command is configured.
    ``run_single_test`` must contain the ``${test_path}`` placeholder
    or gets the path appended.
    """

    run_tests: str | None = None
    run_single_test: str | None = None
    run_lint: str | None = None
    run_build: str | None = None

    model_config = {"extra": "forbid"}


class CommandConfig(BaseModel):
    """Per-command overrides (ask, review, chat, code).

    ``filesystem`` and ``builtin_tools`` replace the global value wholesale
    when set; they are never merged with it.
    """

    filesystem: FilesystemAccess | list[str] | None = None
    builtin_tools: list[str] | None = None
    rating: RatingConfig | None = None

    model_config = {"extra": "forbid"}


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["debug", "info", "human", "warn", "error"] = "human"
    file: Path | None = None
    verbose: int = 0

    model_config = {"extra": "forbid"}


class WorkspaceConfig(BaseModel):
    """Workspace configuration."""

    root: Path = Path(".")

    model_config = {"extra": "forbid"}


class MCPServerConfig(BaseModel):
    """Remote MCP server reachable over HTTP."""

    name: str
    url: str
    token_env: str | None = None
    token: str | None = None

    model_config = {"extra": "forbid"}


class MCPConfig(BaseModel):
    """MCP configuration."""

    servers: list[MCPServerConfig] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class A2AAgentConfig(BaseModel):
    """External agent reachable over the A2A (agent-to-agent) protocol.

    The key under ``a2a_agents`` is the agent id; the model sees the agent
    as the tool ``a2a_agent_{id}``.
    """

    agent_url: str
    token_env: str | None = None
    timeout: float = Field(default=120.0, gt=0, description="Seconds to wait for the agent's reply")

    model_config = {"extra": "forbid"}


class AppConfig(BaseModel):
    """Root configuration.

    ``middleware`` entries may be a predefined name (``"summarization"``),
    a mapping ``{"name": ..., **settings}`` or an already built
    middleware instance (programmatic configs only).
    """

    llm: LLMConfig = Field(default_factory=LLMConfig)
    filesystem: FilesystemAccess | list[str] = Field(
        default="read",
        description="Filesystem tools: 'all', 'read', 'none' or explicit tool names",
    )
    builtin_tools: list[str] = Field(
        default_factory=list,
        description="Built-in toolkits to enable, e.g. ['dev']",
    )
    dev_commands: DevCommandsConfig = Field(default_factory=DevCommandsConfig)
    custom_tools: dict[str, CustomCommandConfig] = Field(default_factory=dict)
    middleware: list[Any] = Field(default_factory=list)
    commands: dict[str, CommandConfig] = Field(default_factory=dict)
    review: RatingConfig = Field(default_factory=RatingConfig)
    can_interrupt_with_esc: bool = True
    max_steps: int = Field(default=50, ge=1, description="Model round-trips per turn")
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    mcp: MCPConfig = Field(default_factory=MCPConfig)
    a2a_agents: dict[str, A2AAgentConfig] = Field(
        default_factory=dict,
        description="External agents the model may delegate tasks to",
    )

    model_config = {"extra": "forbid", "arbitrary_types_allowed": True}

