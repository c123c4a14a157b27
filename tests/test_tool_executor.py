"""Tests for agentgate.tools.executor — validation, timeouts, error capture, HTTP delegate."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from agentgate.tools.executor import (
    HttpActionDelegate,
    ToolExecutor,
    ToolOutput,
    unconfigured_delegate,
    validate_tool_input,
)
from fakes import RecordingDelegate

SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "limit": {"type": "integer"},
        "priority": {"type": "string", "enum": ["low", "high"]},
    },
    "required": ["title"],
}


class TestValidateToolInput:
    def test_valid(self) -> None:
        assert validate_tool_input(SCHEMA, {"title": "x", "limit": 3, "priority": "low"}) is None

    def test_missing_required(self) -> None:
        assert validate_tool_input(SCHEMA, {}) == "Missing required parameter(s): title"

    def test_wrong_type(self) -> None:
        assert "expected integer, got str" in validate_tool_input(SCHEMA, {"title": "x", "limit": "3"})

    def test_bool_is_not_integer(self) -> None:
        assert "got boolean" in validate_tool_input(SCHEMA, {"title": "x", "limit": True})

    def test_enum(self) -> None:
        assert "must be one of: low, high" in validate_tool_input(SCHEMA, {"title": "x", "priority": "urgent"})

    def test_non_object_input(self) -> None:
        assert validate_tool_input(SCHEMA, ["x"]) == "Tool input must be an object, got list"

    def test_unknown_properties_ignored(self) -> None:
        assert validate_tool_input(SCHEMA, {"title": "x", "extra": object()}) is None


class TestToolExecutor:
    @pytest.mark.asyncio
    async def test_success_passes_arguments(self) -> None:
        delegate = RecordingDelegate(result={"id": 7})
        executor = ToolExecutor(delegate)
        output = await executor.execute("create_task", "tasks.create", {"title": "x"}, agent_id="a1", schema=SCHEMA)
        assert output == ToolOutput(result='{"id": 7}', is_error=False)
        assert delegate.calls == [("create_task", "tasks.create", {"title": "x"}, "a1")]
        assert executor.stats == {"ok": 1, "total": 1}

    @pytest.mark.asyncio
    async def test_invalid_input_never_reaches_delegate(self) -> None:
        delegate = RecordingDelegate()
        executor = ToolExecutor(delegate)
        output = await executor.execute("create_task", "tasks.create", {}, schema=SCHEMA)
        assert output.is_error
        assert json.loads(output.result) == {"error": "Missing required parameter(s): title"}
        assert delegate.calls == []
        assert executor.stats["invalid_input"] == 1

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        async def slow(*args):
            await asyncio.sleep(5)

        executor = ToolExecutor(slow, default_timeout=0.05)
        output = await executor.execute("t", "tasks.list", {})
        assert output.is_error
        assert json.loads(output.result) == {"error": "Tool execution timed out after 0.05s"}
        assert executor.stats["timeout"] == 1

    @pytest.mark.asyncio
    async def test_exception_captured(self) -> None:
        executor = ToolExecutor(RecordingDelegate(error=RuntimeError("boom")))
        output = await executor.execute("t", "tasks.list", {})
        assert output.is_error
        assert json.loads(output.result) == {"error": "RuntimeError: boom"}
        assert executor.stats["exception"] == 1

    @pytest.mark.asyncio
    async def test_delegate_tool_output_error_counts_as_failure(self) -> None:
        executor = ToolExecutor(RecordingDelegate(result=ToolOutput("nope", is_error=True)))
        output = await executor.execute("t", "tasks.list", {})
        assert output.is_error
        assert executor.stats == {"error": 1, "total": 1}

    @pytest.mark.asyncio
    async def test_unconfigured_delegate(self) -> None:
        output = await ToolExecutor(unconfigured_delegate).execute("t", "tasks.list", {})
        assert output.is_error
        assert "No action gateway configured for: tasks.list" in output.result


class TestHttpActionDelegate:
    @pytest.mark.asyncio
    async def test_posts_action_payload(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"tasks": []})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        delegate = HttpActionDelegate("http://actions.test/execute", token="secret", client=client)
        output = await delegate("list_tasks", "tasks.list", {"limit": 5}, "a1")
        await client.aclose()

        assert output == ToolOutput(result='{"tasks": []}')
        request = seen[0]
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {
            "action": "tasks.list",
            "agent_id": "a1",
            "parameters": {"limit": 5},
        }

    @pytest.mark.asyncio
    async def test_non_2xx_is_error_with_gateway_message(self) -> None:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(403, json={"error": "forbidden"}))
        )
        output = await HttpActionDelegate("http://actions.test", client=client)("t", "tasks.list", {}, "a1")
        await client.aclose()
        assert output.is_error
        assert json.loads(output.result) == {"error": "forbidden"}

    @pytest.mark.asyncio
    async def test_non_json_error_body(self) -> None:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(502, text="<html>bad gateway</html>"))
        )
        output = await HttpActionDelegate("http://actions.test", client=client)("t", "tasks.list", {}, "a1")
        await client.aclose()
        assert output.is_error
        assert json.loads(output.result) == {"error": "<html>bad gateway</html>"}

    @pytest.mark.asyncio
    async def test_transport_error_becomes_tool_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        executor = ToolExecutor(HttpActionDelegate("http://actions.test", client=client))
        output = await executor.execute("t", "tasks.list", {})
        await client.aclose()
        assert output.is_error
        assert "ConnectError" in output.result
