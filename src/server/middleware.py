"""Interceptor pipeline wrapped around the request dispatcher.

The pipeline is composed once from an ordered list of interceptors. The
first registered interceptor runs outermost: first on the way in, last on
the way out.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from src.core.context import CancellationToken, NotificationSink, NullNotificationSink
from src.protocol.messages import JsonRpcRequest, JsonRpcResponse
from src.server.authorization import CallerIdentity

if TYPE_CHECKING:
    from src.server.server import McpServer

CallNext = Callable[["MiddlewareContext"], Awaitable[JsonRpcResponse]]


@dataclass
class MiddlewareContext:
    """State shared by every interceptor handling one request.

    ``items`` is free-form storage for interceptors; everything else is set
    by the transport.
    """

    request: JsonRpcRequest
    server: "McpServer | None" = None
    identity: CallerIdentity | None = None
    sink: NotificationSink = field(default_factory=NullNotificationSink)
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    items: dict[str, Any] = field(default_factory=dict)

    @property
    def method(self) -> str:
        return self.request.method

    @property
    def target_name(self) -> str:
        """Tool, resource or prompt addressed by the call (the method otherwise)."""
        params = self.request.params
        if isinstance(params, dict):
            name = params.get("name")
            if self.method in ("tools/call", "prompts/get") and isinstance(name, str):
                return name
            if self.method == "resources/read" and isinstance(params.get("uri"), str):
                return params["uri"]
        return self.method


class Middleware(ABC):
    """Interceptor around request handling.

    Implementations must either await ``call_next`` exactly once or return
    their own response without calling it.
    """

    @abstractmethod
    async def invoke(
        self,
        context: MiddlewareContext,
        call_next: CallNext,
    ) -> JsonRpcResponse: ...


class _CallOnce:
    __slots__ = ("_step", "_called")

    def __init__(self, step: CallNext) -> None:
        self._step = step
        self._called = False

    async def __call__(self, context: MiddlewareContext) -> JsonRpcResponse:
        if self._called:
            msg = "call_next may only be awaited once per request"
            raise RuntimeError(msg)
        self._called = True
        return await self._step(context)


class _Step:
    __slots__ = ("_middleware", "_next")

    def __init__(self, middleware: Middleware, next_step: CallNext) -> None:
        self._middleware = middleware
        self._next = next_step

    async def __call__(self, context: MiddlewareContext) -> JsonRpcResponse:
        return await self._middleware.invoke(context, _CallOnce(self._next))


class MiddlewarePipeline:
    """Immutable composition of interceptors and a terminal handler."""

    def __init__(self, terminal: CallNext, middleware: Sequence[Middleware] = ()) -> None:
        self._middleware = tuple(middleware)
        handler: CallNext = terminal
        for interceptor in reversed(self._middleware):
            handler = _Step(interceptor, handler)
        self._handler = handler

    @property
    def middleware(self) -> tuple[Middleware, ...]:
        return self._middleware

    async def __call__(self, context: MiddlewareContext) -> JsonRpcResponse:
        return await self._handler(context)
