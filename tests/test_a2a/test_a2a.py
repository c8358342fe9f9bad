"""Tests for gsloth.a2a: agent card discovery, message/send and the delegation tool."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from gsloth.a2a.client import A2AClient, A2AConnectionError, A2AError, reply_text
from gsloth.a2a.tool import A2AAgentTool, a2a_agent_tools
from gsloth.config.schema import A2AAgentConfig
from gsloth.tools.base import ToolError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

AGENT = A2AAgentConfig(agent_url="http://planner.test/")


def _message_result(*texts):
    return {
        "kind": "message",
        "role": "agent",
        "parts": [{"kind": "text", "text": t} for t in texts],
    }


def _agent(card=None, result=None, error=None, seen=None):
    """MockTransport serving an optional agent card and answering message/send."""

    def handle(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.method == "GET":
            if card is not None and request.url.path == "/.well-known/agent-card.json":
                return httpx.Response(200, json=card)
            return httpx.Response(404)
        body = json.loads(request.content)
        if error is not None:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": error})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    return httpx.AsyncClient(transport=httpx.MockTransport(handle))


# ===================================================================
# 1. A2AClient
# ===================================================================

class TestA2AClient:
    @pytest.mark.asyncio
    async def test_sends_text_message_to_card_endpoint(self):
        seen = []
        http = _agent(
            card={"name": "Planner", "url": "http://planner.test/rpc"},
            result=_message_result("Plan ready"),
            seen=seen,
        )
        client = A2AClient("planner", AGENT, http=http)

        reply = await client.send_message("Plan the release")

        assert reply == "Plan ready"
        post = seen[-1]
        assert str(post.url) == "http://planner.test/rpc"
        body = json.loads(post.content)
        assert body["method"] == "message/send"
        message = body["params"]["message"]
        assert message["role"] == "user"
        assert message["parts"] == [{"kind": "text", "text": "Plan the release"}]
        assert message["messageId"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_endpoint_from_card_endpoints_field(self):
        seen = []
        http = _agent(
            card={"endpoints": {"a2a": "http://planner.test/a2a"}},
            result=_message_result("ok"),
            seen=seen,
        )
        client = A2AClient("planner", AGENT, http=http)

        await client.send_message("hi")

        assert str(seen[-1].url) == "http://planner.test/a2a"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_without_card_posts_to_agent_url(self):
        seen = []
        http = _agent(result=_message_result("ok"), seen=seen)
        client = A2AClient("planner", AGENT, http=http)

        await client.send_message("hi")

        assert [r.method for r in seen] == ["GET", "GET", "POST"]
        assert seen[-1].url.host == "planner.test"
        assert seen[-1].url.path == "/"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_card_is_fetched_once(self):
        seen = []
        http = _agent(card={"url": "http://planner.test/rpc"}, result=_message_result("ok"), seen=seen)
        client = A2AClient("planner", AGENT, http=http)

        await client.send_message("one")
        await client.send_message("two")

        assert [r.method for r in seen] == ["GET", "POST", "POST"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_rpc_error(self):
        http = _agent(error={"code": -32601, "message": "Method not found"})
        client = A2AClient("planner", AGENT, http=http)

        with pytest.raises(A2AError, match="A2A Error: .*Method not found"):
            await client.send_message("hi")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_http_error_is_connection_error(self):
        def handle(request):
            if request.method == "GET":
                return httpx.Response(404)
            return httpx.Response(503)

        client = A2AClient("planner", AGENT, http=httpx.AsyncClient(transport=httpx.MockTransport(handle)))

        with pytest.raises(A2AConnectionError, match="Error sending message to A2A agent 'planner'"):
            await client.send_message("hi")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unreachable_agent_is_connection_error(self):
        def handle(request):
            raise httpx.ConnectError("refused", request=request)

        client = A2AClient("planner", AGENT, http=httpx.AsyncClient(transport=httpx.MockTransport(handle)))

        with pytest.raises(A2AConnectionError, match="Cannot reach A2A agent 'planner'"):
            await client.send_message("hi")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_aclose_is_idempotent(self):
        http = AsyncMock()
        client = A2AClient("planner", AGENT, http=http)
        await client.aclose()
        await client.aclose()
        http.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_bearer_token_from_env(self, monkeypatch):
        monkeypatch.setenv("PLANNER_TOKEN", "from-env")
        client = A2AClient("planner", A2AAgentConfig(agent_url="http://x", token_env="PLANNER_TOKEN"))
        assert client.http.headers["Authorization"] == "Bearer from-env"
        await client.aclose()


# ===================================================================
# 2. reply_text
# ===================================================================

class TestReplyText:
    def test_message_parts_joined(self):
        assert reply_text(_message_result("first", "second")) == "first\nsecond"

    def test_nested_message(self):
        assert reply_text({"message": _message_result("nested")}) == "nested"

    def test_task_status_message(self):
        task = {
            "kind": "task",
            "id": "t-1",
            "status": {"state": "completed", "message": _message_result("done")},
        }
        assert reply_text(task) == "done"

    def test_task_without_message_reports_state(self):
        assert reply_text({"kind": "task", "status": {"state": "working"}}) == "Task state: working"

    def test_parts_without_text_are_dumped(self):
        parts = [{"kind": "data", "data": {"x": 1}}]
        assert json.loads(reply_text({"parts": parts})) == parts

    def test_unknown_shape_is_dumped(self):
        assert json.loads(reply_text({"foo": "bar"})) == {"foo": "bar"}


# ===================================================================
# 3. A2AAgentTool
# ===================================================================

class TestA2AAgentTool:
    def test_name_and_schema(self):
        tool = A2AAgentTool(A2AClient("planner", AGENT, http=AsyncMock()))
        schema = tool.get_schema()
        assert tool.name == "a2a_agent_planner"
        assert "external A2A agent 'planner'" in tool.description
        assert schema["function"]["parameters"]["required"] == ["message"]

    @pytest.mark.asyncio
    async def test_execute_returns_reply(self):
        client = A2AClient("planner", AGENT, http=AsyncMock())
        client.send_message = AsyncMock(return_value="Plan ready")
        tool = A2AAgentTool(client)

        result = await tool.execute(message="Plan the release")

        client.send_message.assert_awaited_once_with("Plan the release")
        assert result.success
        assert result.output == "Plan ready"

    @pytest.mark.asyncio
    async def test_agent_failure_is_error_result(self):
        client = A2AClient("planner", AGENT, http=AsyncMock())
        client.send_message = AsyncMock(side_effect=A2AConnectionError("refused"))

        result = await A2AAgentTool(client).execute(message="hi")

        assert not result.success
        assert result.error == "Error communicating with agent: refused"

    @pytest.mark.asyncio
    async def test_missing_message(self):
        tool = A2AAgentTool(A2AClient("planner", AGENT, http=AsyncMock()))
        with pytest.raises(ToolError, match="Invalid arguments for a2a_agent_planner"):
            await tool.execute()

    @pytest.mark.asyncio
    async def test_tools_built_per_agent(self):
        tools, clients = a2a_agent_tools({
            "planner": AGENT,
            "tester": A2AAgentConfig(agent_url="http://tester.test"),
        })

        assert [t.name for t in tools] == ["a2a_agent_planner", "a2a_agent_tester"]
        assert [c.agent_id for c in clients] == ["planner", "tester"]
        for client in clients:
            await client.aclose()
