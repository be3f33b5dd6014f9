"""Dispatches tool calls to the transport and folds every fault into a :class:`ToolResult`."""

from __future__ import annotations

import json
import logging
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
)

from mcpchat.core.schema import (
    ToolCallOutcome,
    ToolResult,
)

if TYPE_CHECKING:
    from mcpchat.tools import ToolRegistry
    from mcpchat.transport.base import ToolTransport

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


def error_text(content: Any) -> str:
    """Flatten MCP content blocks (or any JSON value) into a readable error message."""
    if content is None:
        return "tool reported an error"
    if isinstance(content, str):
        return content or "tool reported an error"
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict) and isinstance(block.get("text"), str):
                parts.append(block["text"])
            else:
                parts.append(json.dumps(block, default=str))
        joined = "\n".join(p for p in parts if p).strip()
        return joined or "tool reported an error"
    return json.dumps(content, default=str)


class ToolInvoker:
    """
    Execute one tool call against the transport.

    :meth:`invoke` never raises: unknown tools, transport faults and ``is_error`` outcomes all come
    back as :meth:`ToolResult.failure`.  There is no retry here; the model decides what to do
    with a failure on its next turn.
    """

    def __init__(self, transport: ToolTransport, registry: ToolRegistry) -> None:
        self.transport = transport
        self.registry = registry

    async def invoke(
        self, tool_call_id: str, name: str, arguments: Dict[str, Any] | None = None
    ) -> ToolResult:
        """
        Run tool *name* with *arguments*.

        Parameters
        ----------
        tool_call_id:
            Identifier of the provider request this call answers.
        name:
            The advertised tool name.
        arguments:
            Decoded keyword arguments.  If *None*, an empty dict is assumed.

        Returns
        -------
        ToolResult
            ``success(content)`` or ``failure(reason)``.
        """

        if arguments is None:
            arguments = {}

        if name not in self.registry:
            logger.warning("Model requested unknown tool '%s'", name)
            return ToolResult.failure(tool_call_id, f"Tool '{name}' is not registered.")

        try:
            logger.debug("Calling tool '%s' with args=%s", name, arguments)
            outcome: ToolCallOutcome = await self.transport.call_tool(name, arguments)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Tool '%s' failed: %s", name, exc)
            return ToolResult.failure(tool_call_id, str(exc) or type(exc).__name__)

        if outcome.is_error:
            reason = error_text(outcome.content)
            logger.warning("Tool '%s' reported an error: %s", name, reason)
            return ToolResult.failure(tool_call_id, reason)

        return ToolResult.success(tool_call_id, outcome.content)
