"""Tool transports: the MCP stdio client and the in-process local transport."""

from mcpchat.config import Settings
from mcpchat.transport.base import ToolTransport


def build_transport(cfg: Settings) -> ToolTransport:
    """Create the transport selected by ``TOOL_TRANSPORT``."""
    kind = cfg.TOOL_TRANSPORT.lower()
    if kind == "local":
        from mcpchat.transport.local import (  # pylint: disable=import-outside-toplevel
            LocalToolTransport,
        )

        return LocalToolTransport()
    if kind == "mcp":
        # Lazy import to avoid mcp SDK imports if not needed
        from mcpchat.transport.mcp_stdio import (  # pylint: disable=import-outside-toplevel
            MCPStdioTransport,
        )

        return MCPStdioTransport.from_settings(cfg)
    raise ValueError(f"Unknown tool transport '{cfg.TOOL_TRANSPORT}'.")
