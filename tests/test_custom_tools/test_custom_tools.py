"""Tests for gsloth.tools.custom: parameter checks, command building, execution."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from gsloth.config.schema import CustomCommandConfig, CustomParameterConfig, DevCommandsConfig
from gsloth.execution.policies import NoTTYError, OverridePolicy
from gsloth.logging.status import StatusLevel, silent_status
from gsloth.tools.base import ToolError, ToolException
from gsloth.tools.custom import (
    CommandRejectedError,
    CustomCommandTool,
    CustomCommandToolkit,
    DevToolkit,
    ParameterValidationError,
    build_custom_command,
    execute_command,
    validate_parameter_value,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fake_process(chunks=(b"",), exit_code=0):
    process = MagicMock()
    process.stdout.read = AsyncMock(side_effect=[*chunks, b""])
    process.wait = AsyncMock(return_value=exit_code)
    return process


def _params(**allow):
    return {name: CustomParameterConfig(description=name, allow=checks) for name, checks in allow.items()}


# ===================================================================
# 1. validate_parameter_value
# ===================================================================

class TestValidateParameterValue:
    def test_plain_value_passes_unchanged(self):
        assert validate_parameter_value("add-users-table", "name") == "add-users-table"

    def test_relative_path_passes(self):
        assert validate_parameter_value("tests/test_api.py", "path") == "tests/test_api.py"

    @pytest.mark.parametrize("value", ["/etc/passwd", "\\server\\share", "C:\\Windows", "c:/x"])
    def test_absolute_paths(self, value):
        with pytest.raises(ParameterValidationError) as exc_info:
            validate_parameter_value(value, "path")
        assert exc_info.value.check == "absolute-path"
        assert exc_info.value.parameter == "path"

    @pytest.mark.parametrize("value", ["../evil", "a/../../b", "..\\x"])
    def test_directory_traversal(self, value):
        with pytest.raises(ParameterValidationError) as exc_info:
            validate_parameter_value(value, "name")
        assert exc_info.value.check == "directory-traversal"

    @pytest.mark.parametrize("value", ["a|b", "a&b", "a;b", "a`b", "$HOME", "it's", "a\nb", "a\rb"])
    def test_shell_injection(self, value):
        with pytest.raises(ParameterValidationError) as exc_info:
            validate_parameter_value(value, "name")
        assert exc_info.value.check == "shell-injection"

    def test_null_bytes(self):
        with pytest.raises(ParameterValidationError) as exc_info:
            validate_parameter_value("a\0b", "name")
        assert exc_info.value.check == "null-bytes"

    def test_error_message_names_parameter(self):
        with pytest.raises(ParameterValidationError, match="parameter 'name'"):
            validate_parameter_value("a;b", "name")

    def test_allow_waives_only_listed_check(self):
        assert validate_parameter_value("/tmp/x", "path", ["absolute-path"]) == "/tmp/x"
        with pytest.raises(ParameterValidationError):
            validate_parameter_value("/tmp/x;rm", "path", ["absolute-path"])

    def test_validation_error_is_recoverable_tool_error(self):
        assert issubclass(ParameterValidationError, ToolError)


# ===================================================================
# 2. build_custom_command
# ===================================================================

class TestBuildCustomCommand:
    def test_placeholders(self):
        command = build_custom_command(
            "npm run migrate -- ${name} --env ${env}",
            {"name": "users", "env": "dev"},
            _params(name=[], env=[]),
        )
        assert command == "npm run migrate -- users --env dev"

    def test_repeated_placeholder(self):
        assert build_custom_command("echo ${x} ${x}", {"x": "a"}, _params(x=[])) == "echo a a"

    def test_unknown_placeholder_left_to_shell(self):
        command = build_custom_command("echo ${HOME} ${x}", {"x": "a"}, _params(x=[]))
        assert command == "echo ${HOME} a"

    def test_positional_mode_appends_in_declared_order(self):
        command = build_custom_command("pytest", {"b": "2", "a": "1"}, _params(a=[], b=[]))
        assert command == "pytest 1 2"

    def test_no_parameters(self):
        assert build_custom_command("npm run deploy", {}) == "npm run deploy"

    def test_missing_placeholder_value(self):
        with pytest.raises(ToolError, match="Missing value for parameter 'name'"):
            build_custom_command("migrate ${name}", {}, _params(name=[]))

    def test_validation_applies(self):
        with pytest.raises(ParameterValidationError):
            build_custom_command("migrate ${name}", {"name": "../evil"}, _params(name=[]))

    def test_validation_can_be_skipped(self):
        command = build_custom_command("migrate ${name}", {"name": "../evil"}, _params(name=[]), validate=False)
        assert command == "migrate ../evil"

    def test_allow_list_from_config(self):
        command = build_custom_command("cat ${path}", {"path": "/tmp/x"}, _params(path=["absolute-path"]))
        assert command == "cat /tmp/x"


# ===================================================================
# 3. execute_command
# ===================================================================

class TestExecuteCommand:
    @pytest.mark.asyncio
    async def test_success_output(self):
        events = []
        process = _fake_process([b"building...\n", b"done\n"])
        with patch("asyncio.create_subprocess_shell", AsyncMock(return_value=process)):
            output = await execute_command("npm run build", "run_build", lambda lvl, msg: events.append((lvl, msg)))

        assert "<COMMAND_OUTPUT>\nbuilding...\ndone\n</COMMAND_OUTPUT>" in output
        assert output.endswith("Command 'npm run build' completed successfully")
        assert (StatusLevel.STREAM, "building...\n") in events

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_reported(self):
        with patch("asyncio.create_subprocess_shell", AsyncMock(return_value=_fake_process([b"FAILED\n"], 2))):
            output = await execute_command("pytest", "run_tests", silent_status)
        assert output.endswith("Command 'pytest' exited with code 2")

    @pytest.mark.asyncio
    async def test_multibyte_split_across_chunks(self):
        encoded = "héllo".encode("utf-8")
        process = _fake_process([encoded[:2], encoded[2:]])
        with patch("asyncio.create_subprocess_shell", AsyncMock(return_value=process)):
            output = await execute_command("echo", "t", silent_status)
        assert "héllo" in output

    @pytest.mark.asyncio
    async def test_spawn_failure_is_tool_exception(self):
        with patch("asyncio.create_subprocess_shell", AsyncMock(side_effect=OSError("no shell"))):
            with pytest.raises(ToolException, match="Failed to execute command 'x': no shell"):
                await execute_command("x", "t", silent_status)


# ===================================================================
# 4. CustomCommandTool
# ===================================================================

class TestCustomCommandTool:
    @pytest.mark.asyncio
    async def test_deploy_runs_configured_command(self):
        config = CustomCommandConfig(command="npm run deploy", description="Deploy the app")
        tool = CustomCommandTool("deploy", config, silent_status)
        spawn = AsyncMock(return_value=_fake_process([b"deployed\n"]))

        with patch("asyncio.create_subprocess_shell", spawn):
            result = await tool.execute()

        assert result.success
        assert "completed successfully" in result.output
        assert spawn.await_args.args[0] == "npm run deploy"

    @pytest.mark.asyncio
    async def test_migrate_rejects_traversal_without_spawning(self):
        config = CustomCommandConfig(
            command="npm run migrate -- ${name}",
            description="Run a migration",
            parameters={"name": CustomParameterConfig(description="Migration name")},
        )
        tool = CustomCommandTool("migrate", config, silent_status, OverridePolicy("never"))
        spawn = AsyncMock()

        with patch("asyncio.create_subprocess_shell", spawn):
            with pytest.raises(ParameterValidationError) as exc_info:
                await tool.execute(name="../evil")

        assert exc_info.value.check == "directory-traversal"
        spawn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_argument_is_tool_error(self):
        tool = CustomCommandTool("deploy", CustomCommandConfig(command="x", description="d"), silent_status)
        with pytest.raises(ToolError, match="Invalid arguments"):
            await tool.execute(target="prod")

    @pytest.mark.asyncio
    async def test_operator_refusal_is_fatal(self):
        config = CustomCommandConfig(
            command="cat ${path}", description="d", parameters={"path": CustomParameterConfig()}
        )
        policy = MagicMock()
        policy.can_prompt.return_value = True
        policy.request_override = AsyncMock(return_value=False)
        tool = CustomCommandTool("cat", config, silent_status, policy)

        with pytest.raises(CommandRejectedError):
            await tool.execute(path="/etc/passwd")

    @pytest.mark.asyncio
    async def test_operator_approval_runs_as_typed(self):
        config = CustomCommandConfig(
            command="cat ${path}", description="d", parameters={"path": CustomParameterConfig()}
        )
        policy = MagicMock()
        policy.can_prompt.return_value = True
        policy.request_override = AsyncMock(return_value=True)
        tool = CustomCommandTool("cat", config, silent_status, policy)
        spawn = AsyncMock(return_value=_fake_process())

        with patch("asyncio.create_subprocess_shell", spawn):
            await tool.execute(path="/etc/hosts")

        assert spawn.await_args.args[0] == "cat /etc/hosts"
        assert policy.request_override.call_args.args[3] == "absolute-path"

    def test_schema_lists_parameters(self):
        config = CustomCommandConfig(
            command="migrate ${name}", description="Migrate", parameters={"name": CustomParameterConfig(description="n")}
        )
        schema = CustomCommandTool("migrate", config, silent_status).get_schema()
        assert schema["function"]["name"] == "migrate"
        assert "name" in schema["function"]["parameters"]["properties"]
        assert "[migrate ${name}]" in schema["function"]["description"]


# ===================================================================
# 5. Toolkits
# ===================================================================

class TestToolkits:
    def test_custom_toolkit_builds_one_tool_per_entry(self):
        toolkit = CustomCommandToolkit(
            {
                "deploy": CustomCommandConfig(command="npm run deploy", description="Deploy"),
                "lint": CustomCommandConfig(command="ruff .", description="Lint"),
            },
            silent_status,
        )
        assert [t.name for t in toolkit.get_tools()] == ["deploy", "lint"]

    def test_dev_toolkit_exposes_configured_commands_only(self):
        toolkit = DevToolkit(DevCommandsConfig(run_tests="pytest", run_single_test="pytest ${test_path}"), silent_status)
        assert [t.name for t in toolkit.get_tools()] == ["run_tests", "run_single_test"]

    def test_single_test_path_is_validated(self):
        toolkit = DevToolkit(DevCommandsConfig(run_single_test="pytest"), silent_status)
        tool = toolkit.get_tools()[0]
        with pytest.raises(ParameterValidationError):
            build_custom_command(tool.config.command, {"test_path": "../x"}, tool.config.parameters)


# ===================================================================
# 6. OverridePolicy
# ===================================================================

class TestOverridePolicy:
    @pytest.mark.asyncio
    async def test_prompt_runs_off_the_event_loop(self):
        to_thread = AsyncMock(return_value="y")
        with patch("gsloth.execution.policies.is_interactive", return_value=True), \
                patch("gsloth.execution.policies.asyncio.to_thread", to_thread):
            approved = await OverridePolicy().request_override(
                "cat", "cat /etc/hosts", "Absolute paths are not allowed", "absolute-path", "path"
            )

        assert approved is True
        assert to_thread.await_args.args[0] is input

    @pytest.mark.asyncio
    async def test_eof_declines(self):
        with patch("gsloth.execution.policies.is_interactive", return_value=True), \
                patch("gsloth.execution.policies.asyncio.to_thread", AsyncMock(side_effect=EOFError)):
            approved = await OverridePolicy().request_override("cat", "cat /x", "r", "absolute-path", "path")
        assert approved is False

    @pytest.mark.asyncio
    async def test_no_tty_raises(self):
        with patch("gsloth.execution.policies.is_interactive", return_value=False):
            with pytest.raises(NoTTYError):
                await OverridePolicy().request_override("cat", "cat /x", "r", "absolute-path", "path")
