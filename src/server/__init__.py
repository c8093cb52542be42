"""Request dispatch, authorization and middleware for the MCP server."""

from src.server.authorization import (
    AuthorizationGate,
    AuthorizationRequirement,
    CallerIdentity,
    require_claim,
    require_scopes,
)
from src.server.dispatcher import PROTOCOL_VERSION, RequestDispatcher, ServerInfo
from src.server.interceptors import LoggingMiddleware, TelemetryMiddleware
from src.server.middleware import Middleware, MiddlewareContext, MiddlewarePipeline
from src.server.registry import MethodDescriptor, MethodKind, MethodRegistry
from src.server.server import McpServer

__all__ = [
    "PROTOCOL_VERSION",
    "AuthorizationGate",
    "AuthorizationRequirement",
    "CallerIdentity",
    "LoggingMiddleware",
    "McpServer",
    "MethodDescriptor",
    "MethodKind",
    "MethodRegistry",
    "Middleware",
    "MiddlewareContext",
    "MiddlewarePipeline",
    "RequestDispatcher",
    "ServerInfo",
    "TelemetryMiddleware",
    "require_claim",
    "require_scopes",
]
