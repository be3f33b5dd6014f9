"""
MCP tool transport over stdio.

Spawns the tool server as a child process and talks to it through the ``mcp`` SDK's
:class:`ClientSession`.  Everything acquired during :meth:`MCPStdioTransport.connect` is pushed onto
one :class:`AsyncExitStack`, so :meth:`close` tears down the session and the child process on every
exit path.
"""

import logging
from contextlib import AsyncExitStack
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from mcp import (
    ClientSession,
    StdioServerParameters,
)
from mcp.client.stdio import stdio_client

from mcpchat.config import Settings
from mcpchat.core.schema import (
    ToolCallOutcome,
    ToolDescriptor,
)
from mcpchat.core.tool_executor import ToolExecutionError
from mcpchat.transport.base import ToolTransport

logger = logging.getLogger(__name__)


def sqlite_server_args(server_path: str, db_path: str) -> List[str]:
    """Arguments that make ``uv`` launch the reference SQLite MCP server."""
    return ["--directory", server_path, "run", "mcp-server-sqlite", "--db-path", db_path]


def _block_to_json(block: Any) -> Any:
    if hasattr(block, "model_dump"):
        return block.model_dump(mode="json", exclude_none=True)
    return block


class MCPStdioTransport(ToolTransport):
    """Talk to one MCP server launched as ``command *args``."""

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> None:
        self.params = StdioServerParameters(command=command, args=list(args), env=env, cwd=cwd)
        self._stack: AsyncExitStack | None = None
        self._session: ClientSession | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "MCPStdioTransport":
        """Build the transport from ``TOOL_SERVER_*`` / ``SQLITE_*`` settings."""
        args = settings.TOOL_SERVER_ARGS
        if args is None:
            args = sqlite_server_args(settings.SQLITE_SERVER_PATH, settings.SQLITE_DB_PATH)
        return cls(command=settings.TOOL_SERVER_COMMAND, args=args)

    @property
    def session(self) -> ClientSession:
        if self._session is None:
            raise ToolExecutionError("MCP server is not connected.")
        return self._session

    async def connect(self) -> None:
        if self._session is not None:
            return

        logger.info("Starting MCP server: %s %s", self.params.command, " ".join(self.params.args))
        stack = AsyncExitStack()
        try:
            read_stream, write_stream = await stack.enter_async_context(stdio_client(self.params))
            session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
            await session.initialize()
        except BaseException:
            await stack.aclose()
            raise

        self._stack = stack
        self._session = session

    async def close(self) -> None:
        stack, self._stack, self._session = self._stack, None, None
        if stack is not None:
            await stack.aclose()
            logger.info("MCP server connection closed")

    async def list_tools(self) -> List[ToolDescriptor]:
        result = await self.session.list_tools()
        descriptors: List[ToolDescriptor] = []
        for tool in result.tools:
            schema = tool.inputSchema if isinstance(tool.inputSchema, dict) else {}
            descriptors.append(
                ToolDescriptor(
                    name=tool.name,
                    description=tool.description or "",
                    parameter_schema=dict(schema),
                )
            )
        logger.info("Connected to server with tools: %s", [d.name for d in descriptors])
        return descriptors

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> ToolCallOutcome:
        result = await self.session.call_tool(name, arguments=arguments)
        content = [_block_to_json(block) for block in result.content or []]
        return ToolCallOutcome(content=content, is_error=bool(result.isError))
