"""
Leveled status events - the console sink of the agent core.

Core components never print directly: they call a ``StatusCallback`` with
one of the ``StatusLevel`` values. ``ConsoleStatus`` is the default sink;
tests and embedding applications pass their own callable.
"""

from enum import Enum
from typing import Callable

import click
import structlog

logger = structlog.get_logger()


class StatusLevel(str, Enum):
    """Level of a status event."""

    DEBUG = "debug"
    INFO = "info"
    DISPLAY = "display"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    STREAM = "stream"


StatusCallback = Callable[[StatusLevel, str], None]

_STYLES: dict[StatusLevel, dict] = {
    StatusLevel.DEBUG: {"dim": True},
    StatusLevel.INFO: {"dim": True},
    StatusLevel.SUCCESS: {"fg": "green"},
    StatusLevel.WARNING: {"fg": "yellow"},
    StatusLevel.ERROR: {"fg": "red"},
}


class ConsoleStatus:
    """Renders status events on the terminal.

    - STREAM chunks are written as-is, without a trailing newline.
    - DISPLAY is the model's final answer, printed unstyled on stdout.
    - WARNING and ERROR go to stderr.
    - DEBUG is only shown when ``debug`` is enabled.

    Every non-stream event is mirrored to structlog.
    """

    def __init__(self, debug: bool = False) -> None:
        self.debug = debug
        self.log = logger.bind(component="status")

    def __call__(self, level: StatusLevel, message: str) -> None:
        if level != StatusLevel.STREAM:
            self.log.debug("status.event", level=level.value, text=message[:200])

        match level:
            case StatusLevel.STREAM:
                click.echo(message, nl=False)
            case StatusLevel.DISPLAY:
                click.echo(message)
            case StatusLevel.DEBUG:
                if self.debug:
                    click.secho(message, err=True, **_STYLES[level])
            case StatusLevel.WARNING | StatusLevel.ERROR:
                click.secho(message, err=True, **_STYLES[level])
            case _:
                click.secho(message, **_STYLES[level])


def silent_status(level: StatusLevel, message: str) -> None:
    """Status callback that drops every event."""
    return None
