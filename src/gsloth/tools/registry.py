"""
Tool pool assembly.

Tools reach the engine from several sources (filesystem, dev toolkit,
custom commands, MCP servers, middleware). Names must be unique in the
pool offered to the model; the first definition of a name wins.
"""

from typing import Iterable

import structlog

from .base import BaseTool

logger = structlog.get_logger()


def dedupe_tools(tools: Iterable[BaseTool]) -> list[BaseTool]:
    """Drop tools whose name was already seen, keeping the first definition.

    Order is preserved. Every dropped duplicate is logged.
    """
    seen: set[str] = set()
    result: list[BaseTool] = []
    for tool in tools:
        if tool.name in seen:
            logger.warning("tools.duplicate_dropped", tool=tool.name)
            continue
        seen.add(tool.name)
        result.append(tool)
    return result
