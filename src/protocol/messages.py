"""JSON-RPC 2.0 message models.

Requests are parsed into immutable :class:`JsonRpcRequest` values; every
request yields exactly one :class:`JsonRpcResponse` carrying either a result
or an error.
"""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_core import to_jsonable_python

from src.core.exceptions import (
    InvalidRequestError,
    McpError,
    ParseError,
)

JSONRPC_VERSION = "2.0"


class JsonRpcRequest(BaseModel):
    """One inbound RPC call."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    jsonrpc: str = JSONRPC_VERSION
    id: str | int | None = None
    method: str
    params: list[Any] | dict[str, Any] | None = None

    @property
    def is_notification(self) -> bool:
        """Notifications carry no id member and get no response."""
        return "id" not in self.model_fields_set

    def with_call(self, method: str, params: Any) -> "JsonRpcRequest":
        """Re-target this request at another method, keeping its id."""
        return self.model_copy(update={"method": method, "params": params})


class JsonRpcError(BaseModel):
    """Error member of a failed response."""

    code: int
    message: str
    data: Any = None


class JsonRpcResponse(BaseModel):
    """One RPC reply. ``result`` and ``error`` are mutually exclusive."""

    jsonrpc: str = JSONRPC_VERSION
    id: str | int | None = None
    result: Any = None
    error: JsonRpcError | None = Field(default=None)

    @classmethod
    def success(cls, request_id: Any, result: Any) -> "JsonRpcResponse":
        return cls(id=request_id, result=result)

    @classmethod
    def failure(
        cls,
        request_id: Any,
        code: int,
        message: str,
        data: Any = None,
    ) -> "JsonRpcResponse":
        return cls(id=request_id, error=JsonRpcError(code=code, message=message, data=data))

    @classmethod
    def from_exception(cls, request_id: Any, exc: McpError) -> "JsonRpcResponse":
        return cls.failure(request_id, exc.code, exc.message, exc.data)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        """Render the wire envelope."""
        payload: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.model_dump(exclude_none=True)
        else:
            payload["result"] = to_jsonable_python(self.result)
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def parse_request(raw: str | bytes | dict[str, Any]) -> JsonRpcRequest:
    """Parse request text (or an already-decoded object) into a request.

    Raises:
        ParseError: If the text is not valid JSON
        InvalidRequestError: If the payload is not a JSON-RPC 2.0 request
    """
    if isinstance(raw, (str, bytes)):
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            msg = f"Parse error: {e}"
            raise ParseError(msg) from e
    else:
        payload = raw

    if not isinstance(payload, dict):
        msg = "Invalid JSON-RPC request: expected an object"
        raise InvalidRequestError(msg)

    request_id = payload.get("id")
    if not isinstance(request_id, (str, int)) or isinstance(request_id, bool):
        request_id = None
    if payload.get("jsonrpc") != JSONRPC_VERSION:
        msg = "Invalid JSON-RPC request: jsonrpc must be '2.0'"
        raise InvalidRequestError(msg, data={"id": request_id})
    method = payload.get("method")
    if not isinstance(method, str) or not method:
        msg = "Invalid JSON-RPC request: missing method"
        raise InvalidRequestError(msg, data={"id": request_id})

    try:
        return JsonRpcRequest.model_validate(payload)
    except ValidationError as e:
        msg = f"Invalid JSON-RPC request: {e.errors()[0]['msg']}"
        raise InvalidRequestError(msg, data={"id": request_id}) from e


def error_response_for(exc: McpError) -> JsonRpcResponse:
    """Build the response for a request that failed before it could be parsed."""
    request_id = exc.data.get("id") if isinstance(exc.data, dict) else None
    return JsonRpcResponse.failure(request_id, exc.code, exc.message)


def make_notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a server-to-client notification envelope."""
    message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        message["params"] = to_jsonable_python(params)
    return message


__all__ = [
    "JSONRPC_VERSION",
    "JsonRpcError",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "error_response_for",
    "make_notification",
    "parse_request",
]
