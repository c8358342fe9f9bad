"""
Configuration loader with deep merge.

Precedence (lowest to highest):
1. Defaults (defined in the Pydantic schemas)
2. YAML file
3. Environment variables
4. CLI arguments

Merging is recursive so every key survives at every level.
"""

import os
from pathlib import Path
from typing import Any

import yaml

from .schema import AppConfig


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary whose values win on leaf conflicts

    Returns:
        New merged dictionary

    Example:
        >>> deep_merge({"a": {"b": 1, "c": 2}}, {"a": {"b": 99}, "e": 4})
        {'a': {'b': 99, 'c': 2}, 'e': 4}
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_yaml_config(config_path: Path | None) -> dict[str, Any]:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file, or None to skip

    Returns:
        Configuration dictionary, empty when there is no file

    Raises:
        FileNotFoundError: If config_path does not exist
    """
    if not config_path:
        return {}

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
        return data if data else {}


def load_env_overrides() -> dict[str, Any]:
    """Load overrides from environment variables.

    Supported variables:
        GSLOTH_MODEL: overrides llm.model
        GSLOTH_API_BASE: overrides llm.api_base
        GSLOTH_LOG_LEVEL: overrides logging.level
    """
    overrides: dict[str, Any] = {}

    if model := os.environ.get("GSLOTH_MODEL"):
        overrides.setdefault("llm", {})["model"] = model

    if api_base := os.environ.get("GSLOTH_API_BASE"):
        overrides.setdefault("llm", {})["api_base"] = api_base

    if log_level := os.environ.get("GSLOTH_LOG_LEVEL"):
        overrides.setdefault("logging", {})["level"] = log_level.lower()

    return overrides


def apply_cli_overrides(config_dict: dict[str, Any], cli_args: dict[str, Any]) -> dict[str, Any]:
    """Apply overrides coming from CLI arguments."""
    overrides: dict[str, Any] = {}

    if cli_args.get("model"):
        overrides.setdefault("llm", {})["model"] = cli_args["model"]

    if cli_args.get("no_stream") is not None:
        overrides.setdefault("llm", {})["stream"] = not cli_args["no_stream"]

    if cli_args.get("log_file"):
        overrides.setdefault("logging", {})["file"] = cli_args["log_file"]

    if cli_args.get("verbose") is not None:
        overrides.setdefault("logging", {})["verbose"] = cli_args["verbose"]

    return deep_merge(config_dict, overrides)


def load_config(
    config_path: Path | None = None,
    cli_args: dict[str, Any] | None = None,
) -> AppConfig:
    """Load and validate the full application configuration.

    Raises:
        FileNotFoundError: If config_path does not exist
        ValidationError: If the merged configuration is invalid
    """
    cli_args = cli_args or {}

    yaml_config = load_yaml_config(config_path)
    merged = deep_merge(yaml_config, load_env_overrides())
    merged = apply_cli_overrides(merged, cli_args)

    return AppConfig(**merged)


def get_effective_config(config: AppConfig, command: str | None) -> AppConfig:
    """Return the configuration seen by one command.

    A command-scoped ``filesystem`` or ``builtin_tools`` value replaces the
    global one as a whole; lists are never merged item by item.
    """
    if not command or command not in config.commands:
        return config

    command_config = config.commands[command]
    update: dict[str, Any] = {}
    if command_config.filesystem is not None:
        update["filesystem"] = command_config.filesystem
    if command_config.builtin_tools is not None:
        update["builtin_tools"] = command_config.builtin_tools
    if command_config.rating is not None:
        update["review"] = command_config.rating

    if not update:
        return config
    return config.model_copy(update=update)
