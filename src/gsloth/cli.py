"""
Main CLI for gsloth using Click.

Commands:
    ask     one question, one answer
    review  review a diff or file, exit code reflects the rating verdict
    chat    interactive session
    code    interactive coding session (filesystem writes allowed by config)
"""

import asyncio
import sys
from pathlib import Path
from typing import Any

import click

from .config.loader import load_config
from .config.schema import AppConfig
from .core.runner import AgentProcessingError
from .logging import ConsoleStatus, configure_logging
from .modules import ask_question, run_chat, run_review

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130

_VERSION = "0.1.0"


def _common_options(func):
    """Options shared by every command."""
    decorators = [
        click.option(
            "-c",
            "--config",
            type=click.Path(exists=True, path_type=Path),
            help="Path to the YAML configuration file",
        ),
        click.option("--model", help="LLM model to use (e.g.: gpt-4o, claude-sonnet-4-6)"),
        click.option("--no-stream", is_flag=True, help="Disable response streaming"),
        click.option("-v", "--verbose", count=True, help="Verbosity (-v info, -vv debug)"),
        click.option("--log-file", type=click.Path(path_type=Path), help="JSON log file"),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def _setup(kwargs: dict[str, Any]) -> tuple[AppConfig, ConsoleStatus]:
    # Unset flags must not override the YAML values
    cli_args = {k: v for k, v in kwargs.items() if v}
    config = load_config(config_path=kwargs.get("config"), cli_args=cli_args)
    configure_logging(config.logging)
    return config, ConsoleStatus(debug=config.logging.verbose > 1)


def _read_content(path: Path | None) -> str:
    if path is not None:
        return path.read_text(encoding="utf-8")
    if sys.stdin.isatty():
        raise click.UsageError("Provide a file to review or pipe the content on stdin.")
    return sys.stdin.read()


def _fail(message: str, verbose: int) -> None:
    click.echo(message, err=True)
    if verbose > 1:
        import traceback
        traceback.print_exc()
    sys.exit(EXIT_FAILED)


@click.group()
@click.version_option(version=_VERSION, prog_name="gsloth")
def main() -> None:
    """gsloth - LLM agent for code review and questions about your project."""
    pass


@main.command()
@click.argument("question", required=True)
@_common_options
def ask(question: str, **kwargs) -> None:  # type: ignore
    """Ask a question about the project.

    Examples:

        \b
        $ gsloth ask "what does the runner do on an empty stream?"
    """
    try:
        config, status = _setup(kwargs)
        asyncio.run(ask_question(question, config, status))
        sys.exit(EXIT_SUCCESS)
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        sys.exit(EXIT_INTERRUPTED)
    except FileNotFoundError as e:
        _fail(f"Configuration error: {e}", kwargs.get("verbose", 0))
    except AgentProcessingError as e:
        _fail(str(e), kwargs.get("verbose", 0))
    except Exception as e:
        _fail(f"Unexpected error: {e}", kwargs.get("verbose", 0))


@main.command()
@click.argument("file", required=False, type=click.Path(exists=True, path_type=Path))
@_common_options
def review(file: Path | None, **kwargs) -> None:  # type: ignore
    """Review a file or a diff piped on stdin.

    Exits with 1 when the review fails the rating threshold.

    Examples:

        \b
        $ git diff | gsloth review
        $ gsloth review patch.diff --model gpt-4o
    """
    try:
        config, status = _setup(kwargs)
        content = _read_content(file)
        sys.exit(asyncio.run(run_review(content, config, status)))
    except click.ClickException:
        raise
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        sys.exit(EXIT_INTERRUPTED)
    except FileNotFoundError as e:
        _fail(f"Configuration error: {e}", kwargs.get("verbose", 0))
    except Exception as e:
        _fail(f"Unexpected error: {e}", kwargs.get("verbose", 0))


@main.command()
@click.argument("message", required=False)
@_common_options
def chat(message: str | None, **kwargs) -> None:  # type: ignore
    """Start an interactive session, optionally with a first message."""
    try:
        config, status = _setup(kwargs)
        asyncio.run(run_chat(config, status, first_message=message))
        sys.exit(EXIT_SUCCESS)
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        sys.exit(EXIT_INTERRUPTED)
    except FileNotFoundError as e:
        _fail(f"Configuration error: {e}", kwargs.get("verbose", 0))
    except Exception as e:
        _fail(f"Unexpected error: {e}", kwargs.get("verbose", 0))


@main.command()
@click.argument("message", required=False)
@_common_options
def code(message: str | None, **kwargs) -> None:  # type: ignore
    """Start an interactive coding session that may edit the project.

    Examples:

        \b
        $ gsloth code "add a --dry-run flag to the deploy script"
    """
    try:
        config, status = _setup(kwargs)
        asyncio.run(run_chat(config, status, mode="code", first_message=message))
        sys.exit(EXIT_SUCCESS)
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        sys.exit(EXIT_INTERRUPTED)
    except FileNotFoundError as e:
        _fail(f"Configuration error: {e}", kwargs.get("verbose", 0))
    except Exception as e:
        _fail(f"Unexpected error: {e}", kwargs.get("verbose", 0))


if __name__ == "__main__":
    main()
