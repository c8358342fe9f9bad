"""
Async HTTP client for external agents speaking the A2A protocol.

Flow:
1. GET the agent card from ``{agent_url}/.well-known/agent-card.json``
   (older agents publish ``agent.json``) to learn the RPC endpoint
2. POST JSON-RPC ``message/send`` with one text part per message

The card is fetched once per client. Agents without a card are called
directly at ``agent_url``.
"""

import json
import os
import uuid
from typing import Any

import httpx
import structlog

from ..config.schema import A2AAgentConfig

logger = structlog.get_logger()

_CARD_PATHS = ("/.well-known/agent-card.json", "/.well-known/agent.json")


class A2AError(Exception):
    """The agent answered with a JSON-RPC error or an unreadable reply."""

    pass


class A2AConnectionError(A2AError):
    """The agent could not be reached."""

    pass


class A2AClient:
    """Client for one external agent."""

    def __init__(
        self,
        agent_id: str,
        config: A2AAgentConfig,
        http: httpx.AsyncClient | None = None,
    ):
        self.agent_id = agent_id
        self.config = config
        self.agent_url = config.agent_url.rstrip("/")
        self.log = logger.bind(component="a2a_client", agent=agent_id)
        self._endpoint: str | None = None
        self._closed = False

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        token = os.environ.get(config.token_env) if config.token_env else None
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.http = http or httpx.AsyncClient(
            headers=headers,
            timeout=config.timeout,
            follow_redirects=True,
        )

    async def _resolve_endpoint(self) -> str:
        if self._endpoint is not None:
            return self._endpoint

        endpoint = self.agent_url
        for path in _CARD_PATHS:
            try:
                response = await self.http.get(self.agent_url + path)
            except httpx.HTTPError as e:
                raise A2AConnectionError(
                    f"Cannot reach A2A agent '{self.agent_id}' at {self.agent_url}: {e}"
                ) from e
            if response.status_code != 200:
                continue
            try:
                card = response.json()
            except ValueError:
                continue
            endpoint = card.get("url") or card.get("endpoints", {}).get("a2a") or endpoint
            self.log.info("a2a.card.loaded", name=card.get("name"), endpoint=endpoint)
            break

        self._endpoint = endpoint
        return endpoint

    async def send_message(self, text: str) -> str:
        """Send ``text`` to the agent and return its reply as text.

        Raises:
            A2AConnectionError: On network or HTTP errors
            A2AError: If the agent answers with an error
        """
        endpoint = await self._resolve_endpoint()
        request = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": "message/send",
            "params": {
                "message": {
                    "kind": "message",
                    "messageId": str(uuid.uuid4()),
                    "role": "user",
                    "parts": [{"kind": "text", "text": text}],
                },
            },
        }
        self.log.debug("a2a.send", endpoint=endpoint, length=len(text))

        try:
            response = await self.http.post(endpoint, json=request)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise A2AConnectionError(
                f"Error sending message to A2A agent '{self.agent_id}': {e}"
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise A2AError(f"Unreadable reply from A2A agent: {response.text[:200]}") from e

        if "error" in data:
            raise A2AError(f"A2A Error: {json.dumps(data['error'])}")

        return reply_text(data.get("result", {}))

    async def aclose(self) -> None:
        """Close the HTTP client. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self.http.aclose()

    def __repr__(self) -> str:
        return f"<A2AClient(agent='{self.agent_id}', url='{self.agent_url}')>"


def reply_text(result: Any) -> str:
    """Text of a ``message/send`` result.

    The result is either a message (``parts``) or a task whose status may
    carry a message; anything else is returned as JSON.
    """
    if not isinstance(result, dict):
        return json.dumps(result)

    for message in (result.get("message"), result, (result.get("status") or {}).get("message")):
        if isinstance(message, dict) and message.get("parts"):
            texts = [part["text"] for part in message["parts"] if isinstance(part, dict) and part.get("text")]
            if texts:
                return "\n".join(texts)
            return json.dumps(message["parts"])

    state = result.get("state") or (result.get("status") or {}).get("state")
    if state:
        return f"Task state: {state}"
    return json.dumps(result)
