"""JSON-RPC 2.0 protocol layer."""

from src.protocol.messages import (
    JSONRPC_VERSION,
    JsonRpcError,
    JsonRpcRequest,
    JsonRpcResponse,
    error_response_for,
    make_notification,
    parse_request,
)

__all__ = [
    "JSONRPC_VERSION",
    "JsonRpcError",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "error_response_for",
    "make_notification",
    "parse_request",
]
