"""
Logging module - structlog setup, HUMAN traceability level and status sink.
"""

from .human import HumanLog, HumanLogHandler, _summarize_args
from .levels import HUMAN
from .setup import configure_logging, get_logger
from .status import ConsoleStatus, StatusCallback, StatusLevel, silent_status

__all__ = [
    "configure_logging",
    "get_logger",
    "HUMAN",
    "HumanLog",
    "HumanLogHandler",
    "_summarize_args",
    "ConsoleStatus",
    "StatusCallback",
    "StatusLevel",
    "silent_status",
]
