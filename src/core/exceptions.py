"""Custom exceptions for the MCP server."""

from typing import Any


# ========================================
# JSON-RPC Error Codes
# ========================================

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
# Implementation-defined server error range (-32000 to -32099)
AUTHORIZATION_ERROR = -32001


# ========================================
# Base Exceptions
# ========================================


class McpError(Exception):
    """Exception that is returned to the caller as a JSON-RPC error."""

    code: int = INTERNAL_ERROR

    def __init__(self, message: str, code: int | None = None, data: Any = None):
        self.message = message
        if code is not None:
            self.code = code
        self.data = data
        super().__init__(message)

    def to_error(self) -> dict[str, Any]:
        """Render the JSON-RPC error object."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


# ========================================
# Protocol Exceptions
# ========================================


class ParseError(McpError):
    """Request text is not valid JSON."""

    code = PARSE_ERROR


class InvalidRequestError(McpError):
    """Request is not a valid JSON-RPC 2.0 envelope."""

    code = INVALID_REQUEST


class MethodNotFoundError(McpError):
    """No built-in or registered method matches the request."""

    code = METHOD_NOT_FOUND


class InvalidParamsError(McpError):
    """Parameters could not be bound to the handler signature."""

    code = INVALID_PARAMS


class InternalError(McpError):
    """Handler failed while executing."""

    code = INTERNAL_ERROR


class RequestCancelledError(InternalError):
    """Handler stopped because the client cancelled the request."""

    def __init__(self, message: str = "Request was cancelled"):
        super().__init__(message)


# ========================================
# Authorization Exceptions
# ========================================


class AuthorizationError(McpError):
    """Caller identity does not satisfy the method's requirement.

    ``authenticated`` tells transports whether the caller presented a valid
    credential at all (HTTP maps False to 401 and True to 403).
    """

    code = AUTHORIZATION_ERROR

    def __init__(self, message: str = "Unauthorized", *, authenticated: bool = False):
        self.authenticated = authenticated
        super().__init__(message)


class TokenVerificationError(Exception):
    """Token could not be verified. Never escapes a TokenVerifier."""


# ========================================
# Configuration Exceptions
# ========================================


class ConfigurationError(Exception):
    """Configuration validation failed."""


def innermost_message(exc: BaseException) -> str:
    """Return the message of the root cause in an exception chain."""
    seen: set[int] = set()
    current = exc
    while id(current) not in seen:
        seen.add(id(current))
        nested = current.__cause__
        if nested is None and not current.__suppress_context__:
            nested = current.__context__
        if nested is None:
            break
        current = nested
    return str(current) or current.__class__.__name__
