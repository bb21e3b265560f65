"""Tests for JSON-RPC handling and the stdio transport."""

import asyncio
import io
import json

import pytest

from k8s_mcp.errors import ClusterConnectionError
from k8s_mcp.mcp.stdio_transport import StdioTransport


def rpc(method, params=None, request_id=1):
    request = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        request["params"] = params
    return request


class TestHandleRequest:
    async def test_initialize(self, mcp_server):
        response = await mcp_server.handle_request(rpc("initialize", {"clientInfo": {"name": "test"}}))
        result = response["result"]
        assert result["protocolVersion"] == "2024-11-05"
        assert set(result["capabilities"]) == {"tools", "resources", "prompts"}
        assert result["serverInfo"] == {"name": "k8s-mcp-server", "version": "1.0.0"}
        assert mcp_server.initialized

    async def test_ping(self, mcp_server):
        assert await mcp_server.handle_request(rpc("ping", request_id="abc")) == {
            "jsonrpc": "2.0",
            "id": "abc",
            "result": {},
        }

    async def test_notifications_get_no_response(self, mcp_server):
        assert await mcp_server.handle_request({"jsonrpc": "2.0", "method": "notifications/initialized"}) is None

    async def test_unknown_method(self, mcp_server):
        response = await mcp_server.handle_request(rpc("tools/frobnicate"))
        assert response["error"]["code"] == -32601

    async def test_tools_list(self, mcp_server):
        response = await mcp_server.handle_request(rpc("tools/list"))
        names = [tool["name"] for tool in response["result"]["tools"]]
        assert "get_pods" in names
        assert "kubectl" in names

    async def test_tools_call(self, mcp_server):
        response = await mcp_server.handle_request(
            rpc("tools/call", {"name": "get_pods", "arguments": {"namespace": "default"}})
        )
        assert response["result"]["isError"] is False
        assert json.loads(response["result"]["content"][0]["text"])["pods"][0]["name"] == "web-1"

    async def test_tools_call_unknown_tool_is_a_result(self, mcp_server):
        response = await mcp_server.handle_request(rpc("tools/call", {"name": "nope"}))
        assert response["result"]["isError"] is True

    async def test_tools_call_requires_name(self, mcp_server):
        response = await mcp_server.handle_request(rpc("tools/call", {"arguments": {}}))
        assert response["error"]["code"] == -32602

    async def test_resources_read(self, mcp_server):
        response = await mcp_server.handle_request(rpc("resources/read", {"uri": "k8s-pod://default/web-1"}))
        contents = response["result"]["contents"]
        assert contents[0]["uri"] == "k8s-pod://default/web-1"
        assert contents[0]["mimeType"] == "application/json"

    async def test_resources_read_failure_is_protocol_error(self, mcp_server):
        response = await mcp_server.handle_request(rpc("resources/read", {"uri": "k8s-pod://default"}))
        assert response["error"]["code"] == -32602
        assert "k8s-pod://namespace/name" in response["error"]["message"]

    async def test_resources_read_unknown_scheme(self, mcp_server):
        response = await mcp_server.handle_request(rpc("resources/read", {"uri": "k8s-foo://a/b"}))
        assert response["error"]["code"] == -32002

    async def test_prompts(self, mcp_server):
        listing = await mcp_server.handle_request(rpc("prompts/list"))
        assert len(listing["result"]["prompts"]) == 12

        response = await mcp_server.handle_request(
            rpc("prompts/get", {"name": "k8s-pod-diagnose", "arguments": {"podName": "web-1"}})
        )
        assert response["result"]["messages"][0]["role"] == "user"

    async def test_prompt_not_found(self, mcp_server):
        response = await mcp_server.handle_request(rpc("prompts/get", {"name": "missing"}))
        assert response["error"]["code"] == -32002

    async def test_unexpected_errors_hide_details(self, mcp_server, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("secret internals")

        monkeypatch.setattr(mcp_server.dispatcher, "read_resource", broken)
        response = await mcp_server.handle_request(rpc("resources/read", {"uri": "k8s-pod://default/web-1"}))
        assert response["error"] == {"code": -32603, "message": "Internal error"}


class TestLifecycle:
    async def test_health_check(self, mcp_server):
        report = await mcp_server.health_check()
        assert report["healthy"] is True
        assert report["server"]["prompts"] == 12
        assert "requests_total" in report["metrics"]

    async def test_start_degraded(self, mcp_server, monkeypatch):
        async def refuse():
            raise ClusterConnectionError("no credentials")

        monkeypatch.setattr(mcp_server.k8s, "initialize", refuse)
        await mcp_server.start(require_cluster=False)

        with pytest.raises(ClusterConnectionError):
            await mcp_server.start(require_cluster=True)


class TestStdioTransport:
    async def test_round_trip(self, mcp_server):
        stdin = io.StringIO(
            "\n".join(
                [
                    json.dumps(rpc("ping", request_id=1)),
                    "",
                    "{not json",
                    json.dumps([1, 2]),
                    json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}),
                    json.dumps(rpc("tools/list", request_id=2)),
                ]
            )
            + "\n"
        )
        stdout = io.StringIO()
        await StdioTransport(stdin=stdin, stdout=stdout).start(mcp_server.handle_request)

        responses = [json.loads(line) for line in stdout.getvalue().splitlines()]
        assert [r.get("id") for r in responses] == [1, None, None, 2]
        assert responses[1]["error"]["code"] == -32700
        assert responses[2]["error"]["code"] == -32600
        assert "tools" in responses[3]["result"]

    async def test_cancellation_propagates(self):
        async def cancelled(request):
            raise asyncio.CancelledError

        transport = StdioTransport(stdin=io.StringIO(json.dumps(rpc("ping")) + "\n"), stdout=io.StringIO())
        with pytest.raises(asyncio.CancelledError):
            await transport.start(cancelled)
        assert transport.running is False


class TestRegistries:
    async def test_listings_match_names(self, mcp_server):
        assert mcp_server.tools.names() == [t["name"] for t in mcp_server.tools.list()]
        assert mcp_server.resources.schemes() == [r["name"] for r in mcp_server.resources.list()]
        assert mcp_server.prompts.names() == [p["name"] for p in mcp_server.prompts.list()]
        assert "delete_pod" in mcp_server.tools.destructive_names()
