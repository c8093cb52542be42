"""MCP server facade: registry, authorization gate and request pipeline."""

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar

from src.core.context import CancellationToken, NotificationSink, NullNotificationSink
from src.core.exceptions import McpError
from src.protocol.messages import (
    JsonRpcRequest,
    JsonRpcResponse,
    error_response_for,
    parse_request,
)
from src.server.authorization import (
    AuthorizationGate,
    AuthorizationRequirement,
    CallerIdentity,
    Policy,
)
from src.server.dispatcher import RequestDispatcher, ServerInfo
from src.server.middleware import Middleware, MiddlewareContext, MiddlewarePipeline
from src.server.registry import MethodKind, MethodRegistry

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class McpServer:
    """Holds the capabilities of one server and runs requests through them.

    Capabilities and interceptors are registered up front. The interceptor
    pipeline is built on the first request (or an explicit :meth:`build`) and
    cannot change afterwards.

    Example:
        >>> server = McpServer("Calculator")
        >>> @server.tool()
        ... def add(a: int, b: int) -> int:
        ...     return a + b
    """

    def __init__(
        self,
        name: str,
        version: str = "0.1.0",
        *,
        middleware: Sequence[Middleware] = (),
        policies: Mapping[str, Policy] | None = None,
        allow_anonymous_transport: bool = True,
    ) -> None:
        self.info = ServerInfo(name=name, version=version)
        self.registry = MethodRegistry()
        self.gate = AuthorizationGate(
            policies,
            allow_anonymous_transport=allow_anonymous_transport,
        )
        self._middleware: list[Middleware] = list(middleware)
        self._pipeline: MiddlewarePipeline | None = None

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def version(self) -> str:
        return self.info.version

    # ========== Registration ==========

    def add_middleware(self, middleware: Middleware) -> None:
        if self._pipeline is not None:
            msg = "Middleware cannot be added after the pipeline is built"
            raise RuntimeError(msg)
        self._middleware.append(middleware)

    def add_policy(self, name: str, policy: Policy) -> None:
        self.gate.add_policy(name, policy)

    def tool(
        self,
        name: str | None = None,
        *,
        description: str | None = None,
        authorization: AuthorizationRequirement | None = None,
    ) -> Callable[[F], F]:
        """Register the decorated function as a tool."""

        def decorator(func: F) -> F:
            self.registry.register(
                func,
                kind=MethodKind.TOOL,
                name=name,
                description=description,
                authorization=authorization,
            )
            return func

        return decorator

    def resource(
        self,
        uri: str,
        *,
        name: str | None = None,
        description: str | None = None,
        mime_type: str | None = None,
        authorization: AuthorizationRequirement | None = None,
    ) -> Callable[[F], F]:
        """Register the decorated function as a resource readable at ``uri``."""

        def decorator(func: F) -> F:
            self.registry.register(
                func,
                kind=MethodKind.RESOURCE,
                name=name,
                description=description,
                uri=uri,
                mime_type=mime_type,
                authorization=authorization,
            )
            return func

        return decorator

    def prompt(
        self,
        name: str | None = None,
        *,
        description: str | None = None,
        authorization: AuthorizationRequirement | None = None,
    ) -> Callable[[F], F]:
        """Register the decorated function as a prompt."""

        def decorator(func: F) -> F:
            self.registry.register(
                func,
                kind=MethodKind.PROMPT,
                name=name,
                description=description,
                authorization=authorization,
            )
            return func

        return decorator

    def import_server(self, other: "McpServer", prefix: str | None = None) -> None:
        """Mount another server's capabilities, optionally prefixed ``prefix_``."""
        count = self.registry.import_from(other.registry, prefix)
        logger.info("Imported %d capabilities from %s", count, other.name)

    # ========== Request Handling ==========

    def build(self) -> MiddlewarePipeline:
        if self._pipeline is None:
            dispatcher = RequestDispatcher(self.registry, self.gate, self.info)
            self._pipeline = MiddlewarePipeline(dispatcher, self._middleware)
            logger.info(
                "Pipeline built for %s: %d interceptor(s), %d capabilities",
                self.name,
                len(self._middleware),
                len(self.registry),
            )
        return self._pipeline

    async def handle_request(
        self,
        request: JsonRpcRequest,
        identity: CallerIdentity | None = None,
        sink: NotificationSink | None = None,
        cancellation: CancellationToken | None = None,
    ) -> JsonRpcResponse:
        """Run one parsed request through the pipeline."""
        context = MiddlewareContext(
            request=request,
            server=self,
            identity=identity,
            sink=sink or NullNotificationSink(),
            cancellation=cancellation or CancellationToken(),
        )
        return await self.build()(context)

    async def handle_message(
        self,
        raw: str | bytes | dict[str, Any],
        identity: CallerIdentity | None = None,
        sink: NotificationSink | None = None,
        cancellation: CancellationToken | None = None,
    ) -> JsonRpcResponse | None:
        """Parse and handle one message. Returns None for notifications."""
        try:
            request = parse_request(raw)
        except McpError as e:
            logger.warning("Rejected malformed message: %s", e.message)
            return error_response_for(e)
        response = await self.handle_request(request, identity, sink, cancellation)
        if request.is_notification:
            return None
        return response
