"""Shared pytest setup: logging configured the way the CLI does it."""

import pytest

from gsloth.config.schema import LoggingConfig
from gsloth.logging.setup import configure_logging


@pytest.fixture(autouse=True, scope="session")
def _configured_logging():
    configure_logging(LoggingConfig(), quiet=True)
    yield
