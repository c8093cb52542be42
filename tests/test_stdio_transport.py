"""
Tests for the line-delimited stdio transport.

Tests:
- One response line per request
- Parse errors answered with a null id
- Notifications produce no response
- Tool notifications interleaved as whole lines
- Cancellation of in-flight requests
"""

import io
import json

import pytest

from src.core.exceptions import INTERNAL_ERROR, PARSE_ERROR
from src.transports import run_stdio


async def serve(server, *messages):
    """Feed ``messages`` to run_stdio and return the decoded output lines."""
    lines = [m if isinstance(m, str) else json.dumps(m) for m in messages]
    stdin = io.StringIO("\n".join(lines) + "\n")
    stdout = io.StringIO()

    await run_stdio(server, stdin=stdin, stdout=stdout)

    return [json.loads(line) for line in stdout.getvalue().splitlines() if line]


def request(method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


class TestStdioTransport:
    """Test run_stdio()."""

    @pytest.mark.asyncio
    async def test_responses_per_request(self, server):
        """Every request gets exactly one response with its id."""
        output = await serve(
            server,
            request("ping", request_id=1),
            request("tools/call", {"name": "add", "arguments": {"a": 1, "b": 2}}, request_id=2),
        )

        by_id = {message["id"]: message for message in output}
        assert by_id[1]["result"] == {}
        assert by_id[2]["result"] == 3

    @pytest.mark.asyncio
    async def test_parse_error(self, server):
        """Invalid JSON gets an error with a null id."""
        output = await serve(server, "{not json")

        assert len(output) == 1
        assert output[0]["id"] is None
        assert output[0]["error"]["code"] == PARSE_ERROR

    @pytest.mark.asyncio
    async def test_notifications_have_no_response(self, server):
        """Client notifications are handled silently."""
        output = await serve(server, {"jsonrpc": "2.0", "method": "notifications/initialized"})

        assert output == []

    @pytest.mark.asyncio
    async def test_blank_lines_ignored(self, server):
        """Empty lines between messages are skipped."""
        output = await serve(server, "", request("ping"), "   ")

        assert [message["id"] for message in output] == [1]

    @pytest.mark.asyncio
    async def test_tool_notifications_written(self, server):
        """Notifications from a tool precede its response on stdout."""
        output = await serve(
            server,
            request("tools/call", {"name": "notify", "arguments": {"text": "working"}}, request_id=7),
        )

        methods = [message.get("method") for message in output]
        assert methods[:2] == ["notifications/message", "notifications/progress"]
        assert output[-1] == {"jsonrpc": "2.0", "id": 7, "result": "working"}

    @pytest.mark.asyncio
    async def test_cancel_unknown_request_is_ignored(self, server):
        """Cancelling an id that is not in flight does nothing."""
        output = await serve(
            server,
            {"jsonrpc": "2.0", "method": "notifications/cancelled", "params": {"requestId": 99}},
            request("ping", request_id=1),
        )

        assert [message["id"] for message in output] == [1]

    @pytest.mark.asyncio
    async def test_cancellation_reaches_tool(self, server):
        """notifications/cancelled trips the in-flight request's token."""
        from src.core.context import McpContext

        @server.tool()
        async def wait_for_cancel(ctx: McpContext) -> str:
            await ctx.cancellation.wait()
            return "cancelled"

        output = await serve(
            server,
            request("tools/call", {"name": "wait_for_cancel", "arguments": {}}, request_id="slow"),
            {"jsonrpc": "2.0", "method": "notifications/cancelled", "params": {"requestId": "slow"}},
        )

        assert output == [{"jsonrpc": "2.0", "id": "slow", "result": "cancelled"}]

    @pytest.mark.asyncio
    async def test_cancelled_tool_still_answers(self, server):
        """A tool stopping via raise_if_cancelled gets an error line, not silence."""
        from src.core.context import McpContext

        @server.tool()
        async def abort_on_cancel(ctx: McpContext) -> str:
            await ctx.cancellation.wait()
            ctx.cancellation.raise_if_cancelled()
            return "unreachable"

        output = await serve(
            server,
            request("tools/call", {"name": "abort_on_cancel", "arguments": {}}, request_id="slow"),
            {"jsonrpc": "2.0", "method": "notifications/cancelled", "params": {"requestId": "slow"}},
        )

        assert len(output) == 1
        assert output[0]["id"] == "slow"
        assert output[0]["error"]["code"] == INTERNAL_ERROR

    @pytest.mark.asyncio
    async def test_unserializable_result_still_answers(self, server):
        """A result that cannot be rendered as JSON is reported on stdout."""

        @server.tool()
        def opaque() -> object:
            return object()

        output = await serve(server, request("tools/call", {"name": "opaque", "arguments": {}}))

        assert len(output) == 1
        assert output[0]["id"] == 1
        assert output[0]["error"]["code"] == INTERNAL_ERROR


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
