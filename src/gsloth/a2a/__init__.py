"""
A2A module - delegation to external agents over the agent-to-agent protocol.
"""

from .client import A2AClient, A2AConnectionError, A2AError, reply_text
from .tool import A2AAgentTool, a2a_agent_tools

__all__ = [
    "A2AClient",
    "A2AError",
    "A2AConnectionError",
    "reply_text",
    "A2AAgentTool",
    "a2a_agent_tools",
]
