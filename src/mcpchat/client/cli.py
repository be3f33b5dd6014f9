"""Interactive shell: read questions from stdin until 'exit', answer them through the loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Tuple

from mcpchat.common import (
    AnsiColors,
    colored_print,
    print_event,
)
from mcpchat.config import (
    Settings,
    settings,
)
from mcpchat.core.connection import Connection
from mcpchat.core.errors import McpChatError
from mcpchat.core.orchestrator import Orchestrator
from mcpchat.core.providers import load_provider
from mcpchat.transport import build_transport

logger = logging.getLogger(__name__)

EXIT_WORDS = {"exit", "quit"}


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


async def chat_loop(orchestrator: Orchestrator) -> None:
    """Prompt, answer, repeat.  Query errors are reported and the loop keeps going."""
    colored_print("\n🔮 mcpchat shell - type 'exit' (or Ctrl+C) to quit", AnsiColors.GREEN)
    while True:
        colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
        user_msg, ok = await asyncio.to_thread(get_user_message)
        if not ok or user_msg.lower() in EXIT_WORDS:
            colored_print("Closing connection...", AnsiColors.YELLOW)
            break
        if not user_msg:
            continue

        try:
            reply = await orchestrator.process_query(user_msg)
        except McpChatError as exc:
            logger.error("Query failed: %s", exc)
            colored_print(f"⚠️ {exc}", AnsiColors.RED)
            continue

        colored_print(f"\n✅ Assistant: {reply}", AnsiColors.YELLOW)


async def run_cli_async(cfg: Settings | None = None) -> None:
    """Open the tool-server connection, run the shell, always close the connection."""
    cfg = cfg or settings
    provider = load_provider(cfg=cfg)
    colored_print(f"Using provider: {provider.name} ({provider.model})", AnsiColors.GREY)

    async with Connection(build_transport(cfg)) as connection:
        tool_names = connection.registry.names()
        colored_print(f"Connected to server with tools: {tool_names}", AnsiColors.GREY)
        orchestrator = Orchestrator(
            connection, provider, max_iterations=cfg.MAX_ITERATIONS, on_event=print_event
        )
        await chat_loop(orchestrator)


def run_cli() -> None:
    """Run the interactive shell."""
    try:
        asyncio.run(run_cli_async())
    except KeyboardInterrupt:
        colored_print("\nGracefully shutting down...", AnsiColors.YELLOW)


if __name__ == "__main__":
    run_cli()
