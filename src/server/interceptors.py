"""Built-in interceptors for request tracing and telemetry."""

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

from src.core.logging import bound_request_id
from src.protocol.messages import JsonRpcResponse
from src.server.middleware import CallNext, Middleware, MiddlewareContext

logger = logging.getLogger(__name__)


class LoggingMiddleware(Middleware):
    """Log every request with timing, binding the JSON-RPC id to log records."""

    def __init__(self, log_params: bool = False) -> None:
        self.log_params = log_params

    async def invoke(
        self,
        context: MiddlewareContext,
        call_next: CallNext,
    ) -> JsonRpcResponse:
        request = context.request
        with bound_request_id(request.id):
            start_time = time.perf_counter()
            logger.info("Starting %s (%s)", context.method, context.target_name)
            if self.log_params and logger.isEnabledFor(logging.DEBUG):
                logger.debug("Params: %s", request.params)

            try:
                response = await call_next(context)
            except Exception as e:
                duration = time.perf_counter() - start_time
                logger.error("Failed %s after %.2fs: %s", context.method, duration, e)
                raise

            duration = time.perf_counter() - start_time
            if response.error is not None:
                logger.warning(
                    "Completed %s in %.2fs with error %s: %s",
                    context.method,
                    duration,
                    response.error.code,
                    response.error.message,
                )
            else:
                logger.info("Completed %s in %.2fs", context.method, duration)
            return response


@dataclass
class MethodStats:
    calls: int = 0
    errors: int = 0
    total_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        average = self.total_seconds / self.calls if self.calls else 0.0
        return {
            "calls": self.calls,
            "errors": self.errors,
            "total_seconds": self.total_seconds,
            "average_seconds": average,
        }


class TelemetryMiddleware(Middleware):
    """Count calls, errors and latency per method and per tool name."""

    def __init__(self) -> None:
        self._methods: dict[str, MethodStats] = defaultdict(MethodStats)
        self._tools: dict[str, MethodStats] = defaultdict(MethodStats)

    async def invoke(
        self,
        context: MiddlewareContext,
        call_next: CallNext,
    ) -> JsonRpcResponse:
        start_time = time.perf_counter()
        failed = True
        try:
            response = await call_next(context)
            failed = response.is_error
            return response
        finally:
            elapsed = time.perf_counter() - start_time
            self._record(self._methods[context.method], elapsed, failed)
            if context.method == "tools/call":
                self._record(self._tools[context.target_name], elapsed, failed)

    @staticmethod
    def _record(stats: MethodStats, elapsed: float, failed: bool) -> None:
        stats.calls += 1
        stats.total_seconds += elapsed
        if failed:
            stats.errors += 1

    def snapshot(self) -> dict[str, dict[str, dict[str, Any]]]:
        """Current counters keyed by method and by tool name."""
        return {
            "methods": {name: s.to_dict() for name, s in self._methods.items()},
            "tools": {name: s.to_dict() for name, s in self._tools.items()},
        }

    def reset(self) -> None:
        self._methods.clear()
        self._tools.clear()
