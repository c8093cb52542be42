"""Core functionality for the MCP server."""

from .context import CancellationToken, McpContext, NotificationSink, NullNotificationSink
from .exceptions import (
    AuthorizationError,
    ConfigurationError,
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    McpError,
    MethodNotFoundError,
    ParseError,
    RequestCancelledError,
)
from .logging import bound_request_id, configure_logging, logger, request_id_ctx

__all__ = [
    # Context
    "CancellationToken",
    "McpContext",
    "NotificationSink",
    "NullNotificationSink",
    # Errors
    "AuthorizationError",
    "ConfigurationError",
    "InternalError",
    "InvalidParamsError",
    "InvalidRequestError",
    "McpError",
    "MethodNotFoundError",
    "ParseError",
    "RequestCancelledError",
    # Logging
    "bound_request_id",
    "configure_logging",
    "logger",
    "request_id_ctx",
]
