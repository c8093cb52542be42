"""Binding of untyped wire parameters to handler arguments."""

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from src.core.exceptions import InvalidParamsError
from src.server.registry import EMPTY, InjectedKind, MethodDescriptor, ParameterSpec


def _coerce(param: ParameterSpec, value: Any) -> Any:
    if param.adapter is None:
        return value
    try:
        return param.adapter.validate_python(value)
    except ValidationError as e:
        detail = e.errors()[0]["msg"] if e.errors() else str(e)
        msg = f"Invalid value for parameter '{param.name}': {detail}"
        raise InvalidParamsError(msg) from e


def _missing(param: ParameterSpec) -> Any:
    if param.default is not EMPTY:
        return param.default
    msg = f"Missing required parameter: {param.name}"
    raise InvalidParamsError(msg)


def bind_arguments(
    descriptor: MethodDescriptor,
    params: list[Any] | dict[str, Any] | None,
    injected: Mapping[InjectedKind, Any],
) -> dict[str, Any]:
    """Build keyword arguments for ``descriptor.handler``.

    Framework-injected parameters are filled first. The remaining parameters
    bind positionally from an array or by case-insensitive name from an
    object; absent ones fall back to their declared default.

    Args:
        descriptor: Method being invoked
        params: Wire params (array, object or None)
        injected: Values for framework-injected parameter kinds

    Returns:
        Keyword arguments for the handler

    Raises:
        InvalidParamsError: On a missing required parameter, a value that
            cannot be coerced, or params of the wrong shape
    """
    arguments: dict[str, Any] = {}
    bindable: list[ParameterSpec] = []
    for param in descriptor.parameters:
        if param.injected is not None:
            arguments[param.name] = injected.get(param.injected)
        else:
            bindable.append(param)

    if params is None:
        for param in bindable:
            arguments[param.name] = _missing(param)
    elif isinstance(params, list):
        if len(params) > len(bindable):
            msg = (
                f"Too many positional parameters: expected at most {len(bindable)}, "
                f"got {len(params)}"
            )
            raise InvalidParamsError(msg)
        for index, param in enumerate(bindable):
            if index < len(params):
                arguments[param.name] = _coerce(param, params[index])
            else:
                arguments[param.name] = _missing(param)
    elif isinstance(params, dict):
        by_name = {str(key).lower(): value for key, value in params.items()}
        for param in bindable:
            key = param.name.lower()
            if key in by_name:
                arguments[param.name] = _coerce(param, by_name[key])
            else:
                arguments[param.name] = _missing(param)
    else:
        msg = "Parameters must be an object or an array"
        raise InvalidParamsError(msg)

    return arguments
