"""In-process transport serving functions from ``mcpchat.tools.LOCAL_TOOLS``."""

import json
import logging
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
)

from mcpchat.core.schema import (
    ToolCallOutcome,
    ToolDescriptor,
)
from mcpchat.core.tool_executor import ToolExecutionError
from mcpchat.tools import (
    LOCAL_TOOLS,
    get_tool_schemas,
)
from mcpchat.transport.base import ToolTransport

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


class LocalToolTransport(ToolTransport):
    """
    Serve plain Python callables through the :class:`ToolTransport` interface.

    Results are wrapped in MCP-style text content blocks so the rest of the pipeline cannot
    tell a local tool from a remote one.
    """

    def __init__(self, tools: Mapping[str, Callable] | None = None) -> None:
        self._tools: Mapping[str, Callable] = LOCAL_TOOLS if tools is None else tools
        self._connected = False

    async def connect(self) -> None:
        self._connected = True
        logger.info("Local tool transport ready with tools: %s", list(self._tools))

    async def close(self) -> None:
        self._connected = False

    async def list_tools(self) -> List[ToolDescriptor]:
        return get_tool_schemas(self._tools)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> ToolCallOutcome:
        """
        Look up *name* and invoke it with *arguments*.

        Raises
        ------
        ToolExecutionError
            If the transport is closed, the tool is missing, or its invocation raises.
        """
        if not self._connected:
            raise ToolExecutionError("Local tool transport is not connected.")

        tool_fn = self._tools.get(name)
        if tool_fn is None:
            raise ToolExecutionError(f"Tool '{name}' is not registered.")

        try:
            logger.debug("Executing tool '%s' with args=%s", name, arguments)
            result = tool_fn(**arguments)
        except TypeError as exc:
            logger.exception("Argument error while executing tool '%s'", name)
            raise ToolExecutionError(f"Invalid arguments for tool '{name}': {exc}") from exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled error in tool '%s'", name)
            raise ToolExecutionError(f"Tool '{name}' raised an error: {exc}") from exc

        return ToolCallOutcome(content=[{"type": "text", "text": _as_text(result)}])
