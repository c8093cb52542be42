"""
Tests for request dispatch through McpServer.

Tests:
- Built-in protocol methods (initialize, ping, list methods)
- Direct calls with positional and named parameters
- tools/call, resources/read and prompts/get indirections
- Error mapping (method not found, invalid params, internal errors)
- Injected McpContext notifications
- Server composition via import_server
"""

import json

import pytest

from src.core.context import CancellationToken
from src.core.exceptions import (
    AUTHORIZATION_ERROR,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
)
from src.protocol import JsonRpcRequest
from src.server import CallerIdentity, McpServer


def request(method, params=None, request_id=1):
    return JsonRpcRequest(id=request_id, method=method, params=params)


class TestBuiltins:
    """Test built-in protocol methods."""

    @pytest.mark.asyncio
    async def test_initialize(self, server):
        """initialize reports protocol version, server info and capabilities."""
        response = await server.handle_request(request("initialize", {}))

        assert response.result == {
            "protocolVersion": "2024-11-05",
            "serverInfo": {"name": "Test Server", "version": "1.2.3"},
            "capabilities": {"tools": {}, "resources": {}, "prompts": {}},
        }

    @pytest.mark.asyncio
    async def test_ping_returns_empty_object(self, server):
        """ping answers with an empty result object."""
        response = await server.handle_request(request("ping"))

        assert response.result == {}
        assert response.error is None

    @pytest.mark.asyncio
    async def test_tools_list_schema(self, server):
        """tools/list describes parameters with JSON types, excluding injected ones."""
        response = await server.handle_request(request("tools/list"))
        tools = {t["name"]: t for t in response.result["tools"]}

        assert tools["add"]["description"] == "Add two integers."
        assert tools["add"]["inputSchema"] == {
            "type": "object",
            "properties": {"a": {"type": "integer"}, "b": {"type": "integer"}},
            "required": ["a", "b"],
        }
        assert tools["echo"]["inputSchema"]["required"] == ["message"]
        assert "ctx" not in tools["notify"]["inputSchema"]["properties"]
        assert "identity" not in tools["secret"]["inputSchema"]["properties"]

    @pytest.mark.asyncio
    async def test_resources_list(self, server):
        """resources/list exposes uri, name and mime type."""
        response = await server.handle_request(request("resources/list"))

        assert response.result["resources"] == [
            {
                "uri": "config://app",
                "name": "app_config",
                "description": "",
                "mimeType": "application/json",
            },
        ]

    @pytest.mark.asyncio
    async def test_prompts_list(self, server):
        """prompts/list exposes argument names and requiredness."""
        response = await server.handle_request(request("prompts/list"))
        prompt = response.result["prompts"][0]

        assert prompt["name"] == "greet"
        assert {a["name"]: a["required"] for a in prompt["arguments"]} == {
            "name": True,
            "excited": False,
        }

    @pytest.mark.asyncio
    async def test_initialized_notification_gets_no_response(self, server):
        """Notifications produce no response from handle_message."""
        response = await server.handle_message(
            '{"jsonrpc":"2.0","method":"notifications/initialized"}',
        )

        assert response is None


class TestDirectCalls:
    """Test calling registered methods by name."""

    @pytest.mark.asyncio
    async def test_positional_params(self, server):
        """Array params bind in declaration order."""
        response = await server.handle_request(request("add", [5, 3]))

        assert response.result == 8

    @pytest.mark.asyncio
    async def test_named_params(self, server):
        """Object params bind by name."""
        response = await server.handle_request(request("add", {"a": 10, "b": 20}))

        assert response.result == 30

    @pytest.mark.asyncio
    async def test_named_params_are_case_insensitive(self, server):
        """Parameter names match regardless of case."""
        response = await server.handle_request(request("add", {"A": 1, "B": 2}))

        assert response.result == 3

    @pytest.mark.asyncio
    async def test_unknown_named_params_are_ignored(self, server):
        """Extra keys in named params do not fail the call."""
        response = await server.handle_request(request("add", {"a": 1, "b": 2, "c": 99}))

        assert response.result == 3

    @pytest.mark.asyncio
    async def test_default_used_for_missing_param(self, server):
        """Omitted optional parameters take their default."""
        response = await server.handle_request(request("echo", {"message": "hi"}))

        assert response.result == "hi"

    @pytest.mark.asyncio
    async def test_string_numbers_are_coerced(self, server):
        """Wire values are converted to the declared parameter type."""
        response = await server.handle_request(request("add", ["2", "3"]))

        assert response.result == 5

    @pytest.mark.asyncio
    async def test_unknown_method(self, server):
        """Unknown methods yield -32601 with the documented message."""
        response = await server.handle_request(request("NoSuchMethod"))

        assert response.error.code == METHOD_NOT_FOUND
        assert response.error.message == "Method 'NoSuchMethod' not found."
        assert response.id == 1

    @pytest.mark.asyncio
    async def test_missing_required_param(self, server):
        """A missing required parameter yields -32602 naming it."""
        response = await server.handle_request(request("add", {"a": 1}))

        assert response.error.code == INVALID_PARAMS
        assert response.error.message == "Missing required parameter: b"

    @pytest.mark.asyncio
    async def test_too_many_positional_params(self, server):
        """More array items than parameters is rejected."""
        response = await server.handle_request(request("add", [1, 2, 3]))

        assert response.error.code == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_uncoercible_value(self, server):
        """Values that cannot be converted yield -32602."""
        response = await server.handle_request(request("add", {"a": "x", "b": 1}))

        assert response.error.code == INVALID_PARAMS
        assert "'a'" in response.error.message

    @pytest.mark.asyncio
    async def test_handler_exception_uses_innermost_message(self, server):
        """Handler failures surface the root cause as -32603."""
        response = await server.handle_request(request("explode"))

        assert response.error.code == INTERNAL_ERROR
        assert response.error.message == "'inner cause'"

    @pytest.mark.asyncio
    async def test_string_ids_are_echoed(self, server):
        """Response id matches the request id."""
        response = await server.handle_request(request("add", [1, 1], request_id="abc"))

        assert response.id == "abc"

    @pytest.mark.asyncio
    async def test_unserializable_result_is_internal_error(self, server):
        """Results that cannot be rendered as JSON become -32603 responses."""

        @server.tool()
        def opaque() -> object:
            return object()

        response = await server.handle_request(request("tools/call", {"name": "opaque", "arguments": {}}))

        assert response.error.code == INTERNAL_ERROR
        assert "not JSON serializable" in response.error.message
        assert json.loads(response.to_json())["error"]["code"] == INTERNAL_ERROR

    @pytest.mark.asyncio
    async def test_cancelled_handler_is_internal_error(self, server):
        """A handler that stops on its cancellation token still gets a response."""

        @server.tool()
        def stop_early(cancellation: CancellationToken) -> str:
            cancellation.cancel()
            cancellation.raise_if_cancelled()
            return "unreachable"

        response = await server.handle_message(
            json.dumps({"jsonrpc": "2.0", "id": 7, "method": "stop_early"}),
        )

        assert response.id == 7
        assert response.error.code == INTERNAL_ERROR
        assert response.error.message == "Request was cancelled"


class TestIndirections:
    """Test tools/call, resources/read and prompts/get."""

    @pytest.mark.asyncio
    async def test_tools_call(self, server):
        """tools/call invokes the named tool with its arguments."""
        response = await server.handle_request(
            request("tools/call", {"name": "add", "arguments": {"a": 2, "b": 40}}),
        )

        assert response.result == 42

    @pytest.mark.asyncio
    async def test_tools_call_unknown_tool(self, server):
        """tools/call for a missing tool yields -32601."""
        response = await server.handle_request(
            request("tools/call", {"name": "nope", "arguments": {}}),
        )

        assert response.error.code == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_resources_read_by_uri(self, server):
        """resources/read wraps the result in contents."""
        response = await server.handle_request(
            request("resources/read", {"uri": "CONFIG://APP"}),
        )

        assert response.result == {"contents": {"debug": False}}

    @pytest.mark.asyncio
    async def test_resources_read_by_alias(self, server):
        """Resources can also be read by registered name."""
        response = await server.handle_request(
            request("resources/read", {"uri": "app_config"}),
        )

        assert response.result == {"contents": {"debug": False}}

    @pytest.mark.asyncio
    async def test_resources_read_missing(self, server):
        """Unknown resources yield -32601."""
        response = await server.handle_request(
            request("resources/read", {"uri": "config://missing"}),
        )

        assert response.error.code == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_prompts_get(self, server):
        """prompts/get renders the prompt with arguments."""
        response = await server.handle_request(
            request("prompts/get", {"name": "greet", "arguments": {"name": "Ada", "excited": True}}),
        )

        assert response.result == "Hello Ada!"

    @pytest.mark.asyncio
    async def test_prompts_get_without_arguments_reports_missing(self, server):
        """Required prompt arguments are enforced."""
        response = await server.handle_request(request("prompts/get", {"name": "greet"}))

        assert response.error.code == INVALID_PARAMS


class TestContextInjection:
    """Test injected McpContext and identity."""

    @pytest.mark.asyncio
    async def test_context_notifications(self, server, sink):
        """McpContext sends log and progress notifications through the sink."""
        response = await server.handle_request(
            request("notify", {"text": "working"}, request_id=9),
            sink=sink,
        )

        assert response.result == "working"
        assert sink.notifications == [
            (
                "notifications/message",
                {"level": "info", "logger": "tool", "data": "working"},
            ),
            (
                "notifications/progress",
                {"progressToken": 9, "progress": 1, "total": 2},
            ),
        ]

    @pytest.mark.asyncio
    async def test_identity_injected(self, server):
        """The caller identity is passed to handlers that declare it."""
        identity = CallerIdentity(subject="alice", authentication_type="Bearer")
        response = await server.handle_request(request("secret"), identity=identity)

        assert response.result == "hello alice"

    @pytest.mark.asyncio
    async def test_unauthenticated_identity_denied(self, server):
        """A present but unauthenticated identity fails protected methods."""
        response = await server.handle_request(
            request("secret"),
            identity=CallerIdentity.anonymous(),
        )

        assert response.error.code == AUTHORIZATION_ERROR


class TestImportServer:
    """Test composing servers."""

    @pytest.mark.asyncio
    async def test_prefixed_import(self, server):
        """Imported capabilities are reachable under prefix_name."""
        parent = McpServer("Parent")
        parent.import_server(server, prefix="child")

        response = await parent.handle_request(request("child_add", [1, 2]))

        assert response.result == 3
        assert "child_add" in parent.registry.tools

    def test_duplicate_registration_rejected(self, server):
        """Registering the same tool name twice fails."""
        with pytest.raises(ValueError, match="already registered"):

            @server.tool(name="add")
            def another_add(a: int) -> int:
                return a


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
