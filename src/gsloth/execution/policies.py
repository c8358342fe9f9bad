"""
Operator override policy for rejected custom commands.

When a custom command parameter fails validation, an operator sitting at
an interactive terminal may allow that exact command once. Headless
environments (CI, pipes) never prompt.
"""

import asyncio
import sys

import click


class NoTTYError(Exception):
    """Raised when an override is requested but there is no TTY.

    Happens in headless environments (CI, cron, pipelines) where nobody
    can answer the prompt.
    """

    pass


def is_interactive() -> bool:
    """True when both stdin and stdout are attached to a terminal."""
    return sys.stdin.isatty() and sys.stdout.isatty()


class OverridePolicy:
    """Decides whether a rejected command may run once anyway.

    Modes:
        - "prompt": ask the operator when a TTY is available
        - "never": always keep the rejection
    """

    def __init__(self, mode: str = "prompt"):
        valid_modes = {"prompt", "never"}
        if mode not in valid_modes:
            raise ValueError(
                f"Invalid mode '{mode}'. Valid modes: {', '.join(sorted(valid_modes))}"
            )
        self.mode = mode

    def can_prompt(self) -> bool:
        return self.mode == "prompt" and is_interactive()

    async def request_override(
        self,
        tool_name: str,
        command: str,
        reason: str,
        check: str,
        parameter: str,
    ) -> bool:
        """Ask the operator whether to run ``command`` once.

        Returns:
            True if the operator allows the execution, False otherwise

        Raises:
            NoTTYError: If there is no TTY to ask on
        """
        if not is_interactive():
            raise NoTTYError(
                f"Override requested for '{tool_name}' but no TTY is available"
            )

        click.secho(f"\n{reason}", fg="yellow", err=True)
        click.echo(f"The model asked {tool_name} to run:\n  {command}")
        click.echo(self.permanent_exception_hint(tool_name, check, parameter))

        while True:
            try:
                answer = await asyncio.to_thread(input, "\nAllow this command once? [y/N]: ")
                response = answer.strip().lower()
            except (KeyboardInterrupt, EOFError):
                click.echo("")
                return False

            if response in ("y", "yes"):
                return True
            if response in ("", "n", "no"):
                return False
            click.echo("Invalid answer. Use 'y' (yes) or 'n' (no)")

    @staticmethod
    def permanent_exception_hint(tool_name: str, check: str, parameter: str) -> str:
        """How to waive the check permanently in the configuration."""
        return (
            f"To always allow this, add the check to the parameter in your config:\n"
            f"  custom_tools:\n"
            f"    {tool_name}:\n"
            f"      parameters:\n"
            f"        {parameter}:\n"
            f"          allow: [\"{check}\"]"
        )

    def __repr__(self) -> str:
        return f"<OverridePolicy(mode='{self.mode}')>"
