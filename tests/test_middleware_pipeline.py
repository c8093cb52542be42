"""
Tests for the interceptor pipeline and built-in interceptors.

Tests:
- Onion ordering of interceptors
- Short-circuit responses
- call_next single-use guard
- Pipeline immutability after build
- LoggingMiddleware request id binding
- TelemetryMiddleware counters
"""

import logging

import pytest

from src.core.logging import request_id_ctx
from src.protocol import JsonRpcRequest, JsonRpcResponse
from src.server import (
    LoggingMiddleware,
    McpServer,
    Middleware,
    MiddlewareContext,
    MiddlewarePipeline,
    TelemetryMiddleware,
)


class Recorder(Middleware):
    """Appends enter/exit markers to a shared trace."""

    def __init__(self, name, trace):
        self.name = name
        self.trace = trace

    async def invoke(self, context, call_next):
        self.trace.append(f"{self.name}:in")
        response = await call_next(context)
        self.trace.append(f"{self.name}:out")
        return response


class ShortCircuit(Middleware):
    async def invoke(self, context, call_next):
        return JsonRpcResponse.success(context.request.id, "intercepted")


class CallsTwice(Middleware):
    async def invoke(self, context, call_next):
        await call_next(context)
        return await call_next(context)


def make_context(method="ping", params=None, request_id=1):
    return MiddlewareContext(request=JsonRpcRequest(id=request_id, method=method, params=params))


class TestPipelineOrdering:
    """Test composition order."""

    @pytest.mark.asyncio
    async def test_first_registered_is_outermost(self):
        """Interceptors wrap the terminal like an onion."""
        trace = []

        async def terminal(context):
            trace.append("terminal")
            return JsonRpcResponse.success(context.request.id, "ok")

        pipeline = MiddlewarePipeline(terminal, [Recorder("a", trace), Recorder("b", trace)])
        response = await pipeline(make_context())

        assert response.result == "ok"
        assert trace == ["a:in", "b:in", "terminal", "b:out", "a:out"]

    @pytest.mark.asyncio
    async def test_short_circuit_skips_terminal(self):
        """An interceptor may answer without calling the rest of the pipeline."""
        called = []

        async def terminal(context):
            called.append(True)
            return JsonRpcResponse.success(context.request.id, "ok")

        pipeline = MiddlewarePipeline(terminal, [ShortCircuit()])
        response = await pipeline(make_context())

        assert response.result == "intercepted"
        assert called == []

    @pytest.mark.asyncio
    async def test_call_next_twice_is_an_error(self):
        """Awaiting call_next a second time raises."""

        async def terminal(context):
            return JsonRpcResponse.success(context.request.id, "ok")

        pipeline = MiddlewarePipeline(terminal, [CallsTwice()])

        with pytest.raises(RuntimeError, match="only be awaited once"):
            await pipeline(make_context())

    @pytest.mark.asyncio
    async def test_empty_pipeline_calls_terminal(self):
        """Without interceptors the terminal handles the request."""

        async def terminal(context):
            return JsonRpcResponse.success(context.request.id, context.method)

        response = await MiddlewarePipeline(terminal)(make_context("tools/list"))

        assert response.result == "tools/list"


class TestServerPipeline:
    """Test McpServer pipeline lifecycle."""

    @pytest.mark.asyncio
    async def test_add_middleware_after_build_fails(self):
        """The pipeline is frozen once requests start flowing."""
        server = McpServer("Frozen")
        await server.handle_request(JsonRpcRequest(id=1, method="ping"))

        with pytest.raises(RuntimeError):
            server.add_middleware(ShortCircuit())

    @pytest.mark.asyncio
    async def test_middleware_sees_target_name(self, server):
        """tools/call exposes the tool name to interceptors."""
        seen = []

        class Capture(Middleware):
            async def invoke(self, context, call_next):
                seen.append(context.target_name)
                return await call_next(context)

        server.add_middleware(Capture())
        await server.handle_request(
            JsonRpcRequest(id=1, method="tools/call", params={"name": "add", "arguments": [1, 2]}),
        )

        assert seen == ["add"]


class TestLoggingMiddleware:
    """Test LoggingMiddleware."""

    @pytest.mark.asyncio
    async def test_binds_request_id_during_call(self, caplog):
        """The JSON-RPC id is visible to log records inside the call only."""
        observed = []

        async def terminal(context):
            observed.append(request_id_ctx.get())
            return JsonRpcResponse.success(context.request.id, None)

        pipeline = MiddlewarePipeline(terminal, [LoggingMiddleware()])
        with caplog.at_level(logging.INFO):
            await pipeline(make_context(request_id=42))

        assert observed == ["42"]
        assert request_id_ctx.get() is None
        assert any("Completed ping" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_logs_error_responses(self, server, caplog):
        """Error responses are logged at WARNING."""
        server.add_middleware(LoggingMiddleware())
        with caplog.at_level(logging.WARNING):
            await server.handle_request(JsonRpcRequest(id=1, method="NoSuchMethod"))

        assert any("-32601" in r.getMessage() for r in caplog.records)


class TestTelemetryMiddleware:
    """Test TelemetryMiddleware."""

    @pytest.mark.asyncio
    async def test_counts_methods_and_tools(self, server):
        """Calls and errors are counted per method and per tool."""
        telemetry = TelemetryMiddleware()
        server.add_middleware(telemetry)

        await server.handle_request(
            JsonRpcRequest(id=1, method="tools/call", params={"name": "add", "arguments": [1, 2]}),
        )
        await server.handle_request(
            JsonRpcRequest(id=2, method="tools/call", params={"name": "explode"}),
        )
        await server.handle_request(JsonRpcRequest(id=3, method="ping"))

        snapshot = telemetry.snapshot()
        assert snapshot["methods"]["tools/call"]["calls"] == 2
        assert snapshot["methods"]["tools/call"]["errors"] == 1
        assert snapshot["methods"]["ping"]["calls"] == 1
        assert snapshot["tools"]["add"] == {
            "calls": 1,
            "errors": 0,
            "total_seconds": snapshot["tools"]["add"]["total_seconds"],
            "average_seconds": snapshot["tools"]["add"]["average_seconds"],
        }
        assert snapshot["tools"]["explode"]["errors"] == 1

    def test_reset(self):
        """reset() clears every counter."""
        telemetry = TelemetryMiddleware()
        telemetry._methods["ping"].calls = 3

        telemetry.reset()

        assert telemetry.snapshot() == {"methods": {}, "tools": {}}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
