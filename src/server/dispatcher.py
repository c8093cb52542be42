"""Terminal step of the pipeline: resolves, authorizes, binds and invokes.

Resolution order:
1. Built-in protocol methods (initialize, ping, the list methods ...)
2. ``tools/call``, ``resources/read`` and ``prompts/get`` indirections, which
   re-dispatch to the named capability
3. Direct lookup of the method name in the handler table
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic_core import PydanticSerializationError, to_jsonable_python

from src.core.context import McpContext
from src.core.exceptions import (
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    McpError,
    MethodNotFoundError,
    RequestCancelledError,
    innermost_message,
)
from src.protocol.messages import JSONRPC_VERSION, JsonRpcResponse
from src.server.authorization import AuthorizationGate
from src.server.binding import bind_arguments
from src.server.middleware import MiddlewareContext
from src.server.registry import InjectedKind, MethodDescriptor, MethodRegistry

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"


@dataclass(frozen=True)
class ServerInfo:
    name: str
    version: str = "0.1.0"


class RequestDispatcher:
    """Resolves a request to a handler and packages the outcome."""

    def __init__(
        self,
        registry: MethodRegistry,
        gate: AuthorizationGate,
        server_info: ServerInfo,
    ) -> None:
        self.registry = registry
        self.gate = gate
        self.server_info = server_info
        self._builtins: dict[str, Callable[[MiddlewareContext], Awaitable[Any]]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "notifications/initialized": self._initialized,
            "tools/list": self._tools_list,
            "resources/list": self._resources_list,
            "prompts/list": self._prompts_list,
            "tools/call": self._tools_call,
            "resources/read": self._resources_read,
            "prompts/get": self._prompts_get,
        }

    async def __call__(self, context: MiddlewareContext) -> JsonRpcResponse:
        return await self.dispatch(context)

    async def dispatch(self, context: MiddlewareContext) -> JsonRpcResponse:
        request = context.request
        try:
            if request.jsonrpc != JSONRPC_VERSION or not request.method:
                msg = "Invalid JSON-RPC request."
                raise InvalidRequestError(msg)
            builtin = self._builtins.get(request.method)
            if builtin is not None:
                result = await builtin(context)
            else:
                descriptor = self.registry.lookup(request.method)
                if descriptor is None:
                    msg = f"Method '{request.method}' not found."
                    raise MethodNotFoundError(msg)
                result = await self.invoke(descriptor, context, request.params)
            result = _jsonable(result, request.method)
        except McpError as e:
            return JsonRpcResponse.from_exception(request.id, e)
        except Exception as e:
            logger.exception("Unhandled error dispatching %s", request.method)
            return JsonRpcResponse.from_exception(
                request.id,
                InternalError(innermost_message(e)),
            )
        return JsonRpcResponse.success(request.id, result)

    # ========== Invocation ==========

    async def invoke(
        self,
        descriptor: MethodDescriptor,
        context: MiddlewareContext,
        params: list[Any] | dict[str, Any] | None,
    ) -> Any:
        """Authorize, bind and run one capability."""
        self.gate.enforce(descriptor.authorization, context.identity)

        injected = {
            InjectedKind.IDENTITY: context.identity,
            InjectedKind.CANCELLATION: context.cancellation,
            InjectedKind.CONTEXT: McpContext(
                context.request.id,
                context.sink,
                context.cancellation,
            ),
        }
        arguments = bind_arguments(descriptor, params, injected)

        try:
            result = descriptor.handler(**arguments)
            if inspect.isawaitable(result):
                result = await result
        except McpError:
            raise
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if not context.cancellation.cancelled or (task is not None and task.cancelling()):
                raise
            logger.info("Handler %s stopped after cancellation", descriptor.name)
            raise RequestCancelledError() from None
        except Exception as e:
            logger.exception("Handler %s failed", descriptor.name)
            raise InternalError(innermost_message(e)) from e
        return result

    # ========== Built-in Methods ==========

    async def _initialize(self, context: MiddlewareContext) -> dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "serverInfo": {
                "name": self.server_info.name,
                "version": self.server_info.version,
            },
            "capabilities": {"tools": {}, "resources": {}, "prompts": {}},
        }

    async def _ping(self, context: MiddlewareContext) -> dict[str, Any]:
        return {}

    async def _initialized(self, context: MiddlewareContext) -> None:
        logger.debug("Client finished initialization")
        return None

    async def _tools_list(self, context: MiddlewareContext) -> dict[str, Any]:
        tools = [
            {
                "name": d.name,
                "description": d.description,
                "inputSchema": d.input_schema(),
            }
            for d in self.registry.tools.values()
        ]
        return {"tools": tools}

    async def _resources_list(self, context: MiddlewareContext) -> dict[str, Any]:
        resources = []
        for d in self.registry.resources.values():
            entry: dict[str, Any] = {
                "uri": d.uri or d.name,
                "name": d.name,
                "description": d.description,
            }
            if d.mime_type:
                entry["mimeType"] = d.mime_type
            resources.append(entry)
        return {"resources": resources}

    async def _prompts_list(self, context: MiddlewareContext) -> dict[str, Any]:
        prompts = [
            {
                "name": d.name,
                "description": d.description,
                "arguments": d.prompt_arguments(),
            }
            for d in self.registry.prompts.values()
        ]
        return {"prompts": prompts}

    async def _tools_call(self, context: MiddlewareContext) -> Any:
        name, arguments = _named_call(context, "tools/call")
        descriptor = self.registry.tools.get(name)
        if descriptor is None:
            msg = f"Method '{name}' not found."
            raise MethodNotFoundError(msg)
        return await self.invoke(descriptor, context, arguments)

    async def _prompts_get(self, context: MiddlewareContext) -> Any:
        name, arguments = _named_call(context, "prompts/get")
        descriptor = self.registry.prompts.get(name)
        if descriptor is None:
            msg = f"Prompt '{name}' not found"
            raise MethodNotFoundError(msg)
        if arguments is None:
            arguments = {}
        return await self.invoke(descriptor, context, arguments)

    async def _resources_read(self, context: MiddlewareContext) -> dict[str, Any]:
        params = context.request.params
        if not isinstance(params, dict):
            msg = "Invalid params for resources/read"
            raise InvalidParamsError(msg)
        uri = params.get("uri")
        if not isinstance(uri, str):
            msg = "Missing 'uri' parameter"
            raise InvalidParamsError(msg)
        descriptor = self.registry.find_resource(uri)
        if descriptor is None:
            msg = f"Resource '{uri}' not found"
            raise MethodNotFoundError(msg)
        contents = await self.invoke(descriptor, context, params)
        return {"contents": contents}


def _named_call(context: MiddlewareContext, method: str) -> tuple[str, Any]:
    params = context.request.params
    if not isinstance(params, dict):
        msg = f"Invalid params for {method}"
        raise InvalidParamsError(msg)
    name = params.get("name")
    if not isinstance(name, str) or not name:
        msg = "Missing 'name' parameter"
        raise InvalidParamsError(msg)
    arguments = params.get("arguments")
    if arguments is not None and not isinstance(arguments, (list, dict)):
        msg = "'arguments' must be an object or an array"
        raise InvalidParamsError(msg)
    return name, arguments


def _jsonable(result: Any, method: str) -> Any:
    try:
        return to_jsonable_python(result)
    except PydanticSerializationError as e:
        logger.error("Result of %s is not serializable: %s", method, e)
        msg = f"Result of '{method}' is not JSON serializable"
        raise InternalError(msg) from e
