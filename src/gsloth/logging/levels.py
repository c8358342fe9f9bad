"""
HUMAN logging level - readable agent traceability.

Sits between INFO (20) and WARNING (30). It does not express severity:
it marks the high-level events a user follows to understand what the
agent is doing (model calls, tool calls, interruptions, fallbacks).

Hierarchy:
    debug  (10) -> payloads, full args, timing
    info   (20) -> system operations (config loaded, middleware resolved)
    human  (25) -> what the agent does
    warn   (30) -> non-fatal problems
    error  (40) -> errors
"""

import logging

import structlog

HUMAN = 25
logging.addLevelName(HUMAN, "HUMAN")


def _human_method(self, message, *args, **kwargs):
    if self.isEnabledFor(HUMAN):
        self._log(HUMAN, message, args, **kwargs)


logging.Logger.human = _human_method

# structlog needs the name mapping or it raises KeyError: 25
structlog.stdlib.LEVEL_TO_NAME[HUMAN] = "human"
