"""Abstract tool transport: the process that actually owns and runs the tools."""

from abc import (
    ABC,
    abstractmethod,
)
from types import TracebackType
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Type,
)

from mcpchat.core.schema import (
    ToolCallOutcome,
    ToolDescriptor,
)


class ToolTransport(ABC):
    """
    Request/response channel to a tool server.

    Implementations must release the underlying process or socket in :meth:`close`, and
    :meth:`close` must be safe to call more than once.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Acquire the channel."""

    @abstractmethod
    async def close(self) -> None:
        """Release the channel."""

    @abstractmethod
    async def list_tools(self) -> List[ToolDescriptor]:
        """Return the tools the server exposes."""

    @abstractmethod
    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> ToolCallOutcome:
        """Run tool *name* with *arguments*."""

    async def __aenter__(self) -> "ToolTransport":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.close()
