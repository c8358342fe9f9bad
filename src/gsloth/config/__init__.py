"""
Configuration module - Pydantic schemas and layered YAML/env/CLI loader.
"""

from .loader import deep_merge, get_effective_config, load_config
from .schema import (
    A2AAgentConfig,
    AppConfig,
    CommandConfig,
    CustomCommandConfig,
    CustomParameterConfig,
    DevCommandsConfig,
    LLMConfig,
    LoggingConfig,
    MCPConfig,
    MCPServerConfig,
    RatingConfig,
    ValidationCheck,
    WorkspaceConfig,
)

__all__ = [
    "A2AAgentConfig",
    "AppConfig",
    "CommandConfig",
    "CustomCommandConfig",
    "CustomParameterConfig",
    "DevCommandsConfig",
    "LLMConfig",
    "LoggingConfig",
    "MCPConfig",
    "MCPServerConfig",
    "RatingConfig",
    "ValidationCheck",
    "WorkspaceConfig",
    "deep_merge",
    "get_effective_config",
    "load_config",
]
