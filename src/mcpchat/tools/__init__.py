"""
Tool registry for mcpchat.

Two things live here:

* :class:`ToolRegistry` - the read-only snapshot of tools a transport advertised at connect time.
  It is handed verbatim to the completion provider on every iteration.
* :func:`register_tool` / :data:`LOCAL_TOOLS` - plain Python functions that can be served as tools
  in-process by :class:`mcpchat.transport.local.LocalToolTransport`.
"""

import inspect
import logging
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    get_type_hints,
)

from mcpchat.core.schema import ToolDescriptor

logger = logging.getLogger(__name__)

LOCAL_TOOLS: Dict[str, Callable] = {}
"""Global registry of in-process tool functions."""


class ToolRegistry:
    """Immutable, name-indexed collection of :class:`ToolDescriptor`."""

    def __init__(self, descriptors: Iterable[ToolDescriptor] = ()) -> None:
        by_name: Dict[str, ToolDescriptor] = {}
        for desc in descriptors:
            if desc.name in by_name:
                raise ValueError(f"Tool '{desc.name}' is advertised more than once.")
            by_name[desc.name] = desc
        self._by_name = by_name
        self._descriptors: Tuple[ToolDescriptor, ...] = tuple(by_name.values())

    @property
    def descriptors(self) -> Tuple[ToolDescriptor, ...]:
        return self._descriptors

    def names(self) -> List[str]:
        return [d.name for d in self._descriptors]

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._by_name.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def __repr__(self) -> str:
        return f"ToolRegistry({self.names()!r})"


def register_tool(name: str) -> Callable:
    """
    Register a local tool function under *name*.

    The function must accept keyword arguments and return a JSON-serializable value.  Its
    docstring becomes the tool description and its signature the parameter schema:

        @register_tool("add")
        def add(a: int, b: int) -> int:
            return a + b

    Raises
    ------
    ValueError
        If a function with the same name is already registered.
    """
    if name in LOCAL_TOOLS:
        raise ValueError(f"Tool '{name}' is already registered.")
    logger.debug("Registering tool '%s'", name)

    def wrapper(fn: Callable) -> Callable:
        LOCAL_TOOLS[name] = fn
        return fn

    return wrapper


_JSON_TYPES: Mapping[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


def _parameter_schema(func: Callable) -> Dict[str, Any]:
    sig = inspect.signature(func)
    type_hints = get_type_hints(func)
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for param_name, param in sig.parameters.items():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        hint = type_hints.get(param_name)
        json_type = _JSON_TYPES.get(getattr(hint, "__origin__", hint))
        properties[param_name] = {"type": json_type} if json_type else {}
        if param.default is inspect.Parameter.empty:
            required.append(param_name)

    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def get_tool_schemas(tools: Mapping[str, Callable] | None = None) -> List[ToolDescriptor]:
    """Describe registered local tools as :class:`ToolDescriptor` objects."""
    source = LOCAL_TOOLS if tools is None else tools
    return [
        ToolDescriptor(
            name=name,
            description=inspect.getdoc(func) or "",
            parameter_schema=_parameter_schema(func),
        )
        for name, func in source.items()
    ]


@register_tool("echo")
def echo_tool(text: str) -> str:
    """Echo the input text back to the caller."""
    return text
