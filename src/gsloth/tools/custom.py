"""
Custom Command Toolkit - user-declared shell commands as model-callable tools.

Every entry of ``custom_tools`` becomes one tool. The model only supplies
parameter values; the command shape is fixed by the configuration.
Values are checked before they reach the shell:

- absolute paths                      (check ``absolute-path``)
- ``..`` traversal, also after normalization   (``directory-traversal``)
- shell metacharacters ``| & ; ` $ ' \\n \\r``    (``shell-injection``)
- null bytes                          (``null-bytes``)

A parameter may waive individual checks with ``allow``. When a check
fails on an interactive terminal the operator can allow the as-typed
command once; a refusal is a hard failure.

The dev toolkit (run_tests, run_single_test, run_lint, run_build) is
built from the same machinery.
"""

import asyncio
import codecs
import os
import re
from typing import Iterable

import structlog
from pydantic import ConfigDict, Field, create_model
from pydantic import ValidationError as ArgsValidationError

from ..config.schema import CustomCommandConfig, CustomParameterConfig, DevCommandsConfig
from ..execution.policies import OverridePolicy
from ..logging.status import StatusCallback, StatusLevel
from .base import BaseTool, ToolError, ToolException, ToolResult

logger = structlog.get_logger()

SHELL_METACHARACTERS = ("|", "&", ";", "`", "$", "'", "\n", "\r")

_PLACEHOLDER = re.compile(r"\$\{(\w+)\}")
_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:[\\/]")
_READ_CHUNK = 4096


class ParameterValidationError(ToolError):
    """A custom command parameter failed one of the security checks.

    Attributes:
        check: Name of the failed check, usable in an ``allow`` list
        parameter: Name of the offending parameter
    """

    def __init__(self, message: str, check: str, parameter: str) -> None:
        super().__init__(message)
        self.check = check
        self.parameter = parameter


class CommandRejectedError(ToolException):
    """The operator refused to run a command that failed validation."""

    pass


def _is_absolute(value: str) -> bool:
    return os.path.isabs(value) or value.startswith("\\") or bool(_WINDOWS_DRIVE.match(value))


def validate_parameter_value(value: str, name: str, allow: Iterable[str] = ()) -> str:
    """Check one parameter value against the security rules.

    Args:
        value: Value provided by the model
        name: Parameter name, used in error messages
        allow: Checks waived for this parameter

    Returns:
        The value, unchanged

    Raises:
        ParameterValidationError: naming the failed check and the parameter
    """
    allowed = set(allow)

    if "absolute-path" not in allowed and _is_absolute(value):
        raise ParameterValidationError(
            f"Absolute paths are not allowed for parameter '{name}'",
            check="absolute-path",
            parameter=name,
        )

    if "directory-traversal" not in allowed and ".." in value:
        raise ParameterValidationError(
            f"Directory traversal attempts are not allowed in parameter '{name}'",
            check="directory-traversal",
            parameter=name,
        )

    if "shell-injection" not in allowed and any(c in value for c in SHELL_METACHARACTERS):
        raise ParameterValidationError(
            f"Shell injection attempts are not allowed in parameter '{name}'",
            check="shell-injection",
            parameter=name,
        )

    if "null-bytes" not in allowed and "\0" in value:
        raise ParameterValidationError(
            f"Null bytes are not allowed in parameter '{name}'",
            check="null-bytes",
            parameter=name,
        )

    # Second pass on the normalized form
    if "directory-traversal" not in allowed and value:
        normalized = os.path.normpath(value.replace("\\", "/").replace("\0", ""))
        if ".." in normalized:
            raise ParameterValidationError(
                f"Directory traversal attempts are not allowed in parameter '{name}'",
                check="directory-traversal",
                parameter=name,
            )

    return value


def build_custom_command(
    template: str,
    parameters: dict[str, str],
    parameter_config: dict[str, CustomParameterConfig] | None = None,
    validate: bool = True,
) -> str:
    """Interpolate parameter values into a command template.

    Two modes share the same template syntax:

    - placeholders: every ``${name}`` of a known parameter is replaced by
      its value; other ``${...}`` sequences are left to the shell
    - positional: without placeholders, values are appended in the order
      the parameters are declared in ``parameter_config``

    Args:
        template: Command template from the configuration
        parameters: Values provided by the model
        parameter_config: Declared parameters (order and ``allow`` lists)
        validate: Run the security checks (disabled only for an approved override)

    Raises:
        ParameterValidationError: If a value fails validation
        ToolError: If a placeholder has no value
    """
    parameter_config = parameter_config or {}

    def checked(name: str) -> str:
        value = parameters[name]
        if not validate:
            return value
        allow = parameter_config[name].allow if name in parameter_config else ()
        return validate_parameter_value(value, name, allow)

    known = set(parameter_config) | set(parameters)
    referenced = [name for name in _PLACEHOLDER.findall(template) if name in known]
    if referenced:
        missing = [name for name in referenced if name not in parameters]
        if missing:
            raise ToolError(f"Missing value for parameter '{missing[0]}'")
        values = {name: checked(name) for name in dict.fromkeys(referenced)}
        return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), template)

    appended = [checked(name) for name in parameter_config if name in parameters]
    if appended:
        return f"{template} {' '.join(appended)}"
    return template


async def execute_command(command: str, tool_name: str, status: StatusCallback) -> str:
    """Run a shell command, echoing its output live and returning it.

    A nonzero exit code is reported in the returned text so the model can
    react to it.

    Raises:
        ToolException: If the command cannot be launched at all
    """
    log = logger.bind(component="custom_command", tool=tool_name)
    status(StatusLevel.INFO, f"\nExecuting {tool_name}: {command}")
    log.info("custom_command.start", command=command)

    try:
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        message = f"Failed to execute command '{command}': {e}"
        status(StatusLevel.ERROR, message)
        log.error("custom_command.spawn_failed", error=str(e))
        raise ToolException(message) from e

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    output: list[str] = []
    while True:
        chunk = await process.stdout.read(_READ_CHUNK)
        if not chunk:
            break
        text = decoder.decode(chunk)
        if text:
            status(StatusLevel.STREAM, text)
            output.append(text)
    tail = decoder.decode(b"", final=True)
    if tail:
        status(StatusLevel.STREAM, tail)
        output.append(tail)

    exit_code = await process.wait()
    log.info("custom_command.complete", exit_code=exit_code)

    if exit_code == 0:
        outcome = f"Command '{command}' completed successfully"
    else:
        outcome = f"Command '{command}' exited with code {exit_code}"

    return (
        f"Executing '{command}'...\n\n"
        f"<COMMAND_OUTPUT>\n"
        f"{''.join(output)}"
        f"</COMMAND_OUTPUT>\n"
        f"\n\n{outcome}"
    )


class CustomCommandTool(BaseTool):
    """One configured command template exposed as a tool."""

    def __init__(
        self,
        name: str,
        config: CustomCommandConfig,
        status: StatusCallback,
        override_policy: OverridePolicy | None = None,
        description: str | None = None,
    ):
        self.name = name
        self.config = config
        self.description = (description or config.description) + (
            f"\nThe configured command is [{config.command}]."
        )
        self.kind = "execute"
        self.status = status
        self.override_policy = override_policy
        self.args_model = create_model(
            f"{name}_Args",
            __config__=ConfigDict(extra="forbid"),
            **{
                param: (str, Field(description=param_config.description))
                for param, param_config in config.parameters.items()
            },
        )

    async def execute(self, **kwargs) -> ToolResult:
        try:
            values = self.validate_args(kwargs).model_dump()
        except ArgsValidationError as e:
            raise ToolError(f"Invalid arguments for {self.name}: {e}") from e

        try:
            command = build_custom_command(self.config.command, values, self.config.parameters)
        except ParameterValidationError as e:
            if self.override_policy is None or not self.override_policy.can_prompt():
                raise
            command = await self._request_override(values, e)

        output = await execute_command(command, self.name, self.status)
        return ToolResult(success=True, output=output)

    async def _request_override(self, values: dict[str, str], error: ParameterValidationError) -> str:
        as_typed = build_custom_command(
            self.config.command, values, self.config.parameters, validate=False
        )
        approved = await self.override_policy.request_override(
            self.name, as_typed, str(error), error.check, error.parameter
        )
        if not approved:
            raise CommandRejectedError(
                f"Execution of '{as_typed}' was rejected by the operator ({error})"
            )
        logger.warning(
            "custom_command.override_approved",
            tool=self.name,
            check=error.check,
            parameter=error.parameter,
        )
        return as_typed


class CustomCommandToolkit:
    """Builds one CustomCommandTool per ``custom_tools`` entry."""

    def __init__(
        self,
        custom_tools: dict[str, CustomCommandConfig],
        status: StatusCallback,
        override_policy: OverridePolicy | None = None,
    ):
        self.tools: list[BaseTool] = [
            CustomCommandTool(name, config, status, override_policy)
            for name, config in custom_tools.items()
        ]

    def get_tools(self) -> list[BaseTool]:
        return list(self.tools)


_DEV_DESCRIPTIONS = {
    "run_tests": (
        "Execute the test suite for this project. Runs the configured test command "
        "and returns the output."
    ),
    "run_single_test": (
        "Execute a single test file. The test path must be relative and cannot "
        "contain directory traversal attempts or shell injection."
    ),
    "run_lint": (
        "Run the linter on the project code and return any errors or warnings."
    ),
    "run_build": "Build the project and return the build output.",
}


class DevToolkit:
    """Built-in development tools backed by ``dev_commands``.

    Tools whose command is not configured are not exposed.
    """

    def __init__(
        self,
        commands: DevCommandsConfig,
        status: StatusCallback,
        override_policy: OverridePolicy | None = None,
    ):
        self.tools: list[BaseTool] = []
        for name, description in _DEV_DESCRIPTIONS.items():
            command = getattr(commands, name)
            if not command:
                continue
            parameters = {}
            if name == "run_single_test":
                parameters["test_path"] = CustomParameterConfig(
                    description="Relative path to the test file to run"
                )
            config = CustomCommandConfig(
                command=command, description=description, parameters=parameters
            )
            self.tools.append(CustomCommandTool(name, config, status, override_policy))

    def get_tools(self) -> list[BaseTool]:
        return list(self.tools)
