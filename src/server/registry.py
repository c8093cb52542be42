"""Registry of tools, resources and prompts.

Capabilities are registered explicitly as :class:`MethodDescriptor` values.
The parameter signature is read once from the handler at registration time;
nothing is discovered by scanning modules.
"""

import inspect
import logging
import types
import typing
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from pydantic import PydanticSchemaGenerationError, TypeAdapter

from src.core.context import CancellationToken, McpContext
from src.server.authorization import AuthorizationRequirement, CallerIdentity

logger = logging.getLogger(__name__)

EMPTY = inspect.Parameter.empty


class MethodKind(str, Enum):
    TOOL = "tool"
    RESOURCE = "resource"
    PROMPT = "prompt"


class InjectedKind(str, Enum):
    """Parameter types filled by the framework instead of the wire."""

    IDENTITY = "identity"
    CANCELLATION = "cancellation"
    CONTEXT = "context"


_INJECTABLE = {
    CallerIdentity: InjectedKind.IDENTITY,
    CancellationToken: InjectedKind.CANCELLATION,
    McpContext: InjectedKind.CONTEXT,
}

_JSON_TYPES = {
    bool: "boolean",
    int: "integer",
    float: "number",
    str: "string",
    list: "array",
    tuple: "array",
    set: "array",
    dict: "object",
}


def _injected_kind(annotation: Any) -> InjectedKind | None:
    if annotation in _INJECTABLE:
        return _INJECTABLE[annotation]
    # Optional[CallerIdentity] and friends
    if typing.get_origin(annotation) in (typing.Union, types.UnionType):
        for arg in typing.get_args(annotation):
            if arg in _INJECTABLE:
                return _INJECTABLE[arg]
    return None


def _json_type(annotation: Any) -> str:
    if annotation is EMPTY:
        return "string"
    origin = typing.get_origin(annotation)
    if origin in (typing.Union, types.UnionType):
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        return _json_type(args[0]) if len(args) == 1 else "string"
    if origin is typing.Annotated:
        return _json_type(typing.get_args(annotation)[0])
    target = origin or annotation
    return _JSON_TYPES.get(target, "string")


@dataclass(frozen=True)
class ParameterSpec:
    """One handler parameter."""

    name: str
    annotation: Any = EMPTY
    default: Any = EMPTY
    injected: InjectedKind | None = None
    adapter: TypeAdapter | None = field(default=None, compare=False, repr=False)

    @property
    def required(self) -> bool:
        return self.default is EMPTY

    @property
    def json_type(self) -> str:
        return _json_type(self.annotation)


def _read_parameters(handler: Callable[..., Any]) -> tuple[ParameterSpec, ...]:
    try:
        hints = typing.get_type_hints(handler, include_extras=True)
    except (NameError, TypeError):
        hints = {}
    specs = []
    for param in inspect.signature(handler).parameters.values():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            msg = f"Handler {handler.__name__!r} may not take *args or **kwargs"
            raise ValueError(msg)
        annotation = hints.get(param.name, param.annotation)
        injected = _injected_kind(annotation)
        adapter = None
        if injected is None and annotation is not EMPTY:
            try:
                adapter = TypeAdapter(annotation)
            except PydanticSchemaGenerationError:
                logger.debug("No coercion for %s.%s", handler.__name__, param.name)
        specs.append(
            ParameterSpec(
                name=param.name,
                annotation=annotation,
                default=param.default,
                injected=injected,
                adapter=adapter,
            ),
        )
    return tuple(specs)


def _first_paragraph(handler: Callable[..., Any]) -> str:
    doc = inspect.getdoc(handler) or ""
    return doc.split("\n\n", 1)[0].replace("\n", " ").strip()


@dataclass(frozen=True)
class MethodDescriptor:
    """A registered capability: name, kind, signature, requirement and callable."""

    name: str
    kind: MethodKind
    handler: Callable[..., Any] = field(repr=False)
    description: str = ""
    parameters: tuple[ParameterSpec, ...] = ()
    authorization: AuthorizationRequirement | None = None
    uri: str | None = None
    mime_type: str | None = None

    @classmethod
    def from_callable(
        cls,
        handler: Callable[..., Any],
        *,
        kind: MethodKind,
        name: str | None = None,
        description: str | None = None,
        authorization: AuthorizationRequirement | None = None,
        uri: str | None = None,
        mime_type: str | None = None,
    ) -> "MethodDescriptor":
        return cls(
            name=name or handler.__name__,
            kind=kind,
            handler=handler,
            description=(
                description if description is not None else _first_paragraph(handler)
            ),
            parameters=_read_parameters(handler),
            authorization=authorization,
            uri=uri,
            mime_type=mime_type,
        )

    @property
    def bindable_parameters(self) -> tuple[ParameterSpec, ...]:
        return tuple(p for p in self.parameters if p.injected is None)

    def renamed(self, name: str) -> "MethodDescriptor":
        return replace(self, name=name)

    def input_schema(self) -> dict[str, Any]:
        """JSON schema of the wire parameters."""
        properties: dict[str, Any] = {}
        required: list[str] = []
        for param in self.bindable_parameters:
            properties[param.name] = {"type": param.json_type}
            if param.required:
                required.append(param.name)
        return {"type": "object", "properties": properties, "required": required}

    def prompt_arguments(self) -> list[dict[str, Any]]:
        return [
            {"name": p.name, "description": "", "required": p.required}
            for p in self.bindable_parameters
        ]


class MethodRegistry:
    """Handler table keyed by tool name, resource alias and prompt name."""

    def __init__(self) -> None:
        self.tools: dict[str, MethodDescriptor] = {}
        self.resources: dict[str, MethodDescriptor] = {}
        self.prompts: dict[str, MethodDescriptor] = {}

    def _table(self, kind: MethodKind) -> dict[str, MethodDescriptor]:
        return {
            MethodKind.TOOL: self.tools,
            MethodKind.RESOURCE: self.resources,
            MethodKind.PROMPT: self.prompts,
        }[kind]

    def add(self, descriptor: MethodDescriptor) -> MethodDescriptor:
        table = self._table(descriptor.kind)
        if descriptor.name in table:
            msg = f"{descriptor.kind.value} '{descriptor.name}' is already registered"
            raise ValueError(msg)
        table[descriptor.name] = descriptor
        logger.debug("Registered %s %s", descriptor.kind.value, descriptor.name)
        return descriptor

    def register(
        self,
        handler: Callable[..., Any],
        *,
        kind: MethodKind,
        **options: Any,
    ) -> MethodDescriptor:
        return self.add(MethodDescriptor.from_callable(handler, kind=kind, **options))

    # ========== Lookup ==========

    def lookup(self, name: str) -> MethodDescriptor | None:
        """Direct lookup of a method name across tools, resources and prompts."""
        return self.tools.get(name) or self.resources.get(name) or self.prompts.get(name)

    def find_resource(self, uri: str) -> MethodDescriptor | None:
        """Find a resource by alias or URI (URI match is case-insensitive)."""
        if uri in self.resources:
            return self.resources[uri]
        lowered = uri.lower()
        for descriptor in self.resources.values():
            if (descriptor.uri or "").lower() == lowered:
                return descriptor
        return None

    def __iter__(self) -> Iterator[MethodDescriptor]:
        yield from self.tools.values()
        yield from self.resources.values()
        yield from self.prompts.values()

    def __len__(self) -> int:
        return len(self.tools) + len(self.resources) + len(self.prompts)

    def import_from(self, other: "MethodRegistry", prefix: str | None = None) -> int:
        """Copy another registry's descriptors, optionally as ``prefix_name``.

        Resource URIs are kept as-is so they stay readable by URI.
        """
        count = 0
        for descriptor in other:
            name = f"{prefix}_{descriptor.name}" if prefix else descriptor.name
            self.add(descriptor.renamed(name))
            count += 1
        return count
