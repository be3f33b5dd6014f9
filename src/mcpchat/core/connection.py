"""Explicit, caller-owned connection to a tool server."""

import logging
from types import TracebackType
from typing import (
    Optional,
    Type,
)

from mcpchat.core.errors import NotConnectedError
from mcpchat.core.tool_executor import ToolInvoker
from mcpchat.tools import ToolRegistry
from mcpchat.transport.base import ToolTransport

logger = logging.getLogger(__name__)


class Connection:
    """
    A transport plus the tool registry fetched from it.

    The registry is listed once in :meth:`open` and reused by every query until :meth:`close`.
    Use as an async context manager to guarantee the transport is released.
    """

    def __init__(self, transport: ToolTransport) -> None:
        self.transport = transport
        self._registry: Optional[ToolRegistry] = None
        self._invoker: Optional[ToolInvoker] = None

    @property
    def is_open(self) -> bool:
        return self._registry is not None

    @property
    def registry(self) -> ToolRegistry:
        if self._registry is None:
            raise NotConnectedError("Not connected to server")
        return self._registry

    @property
    def invoker(self) -> ToolInvoker:
        if self._invoker is None:
            raise NotConnectedError("Not connected to server")
        return self._invoker

    async def open(self) -> ToolRegistry:
        """Connect the transport and snapshot its tools."""
        if self._registry is not None:
            return self._registry

        await self.transport.connect()
        try:
            registry = ToolRegistry(await self.transport.list_tools())
        except BaseException:
            await self.transport.close()
            raise

        self._registry = registry
        self._invoker = ToolInvoker(self.transport, registry)
        logger.info("Connection open with %d tools: %s", len(registry), registry.names())
        return registry

    async def close(self) -> None:
        self._registry = None
        self._invoker = None
        await self.transport.close()

    async def __aenter__(self) -> "Connection":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.close()
