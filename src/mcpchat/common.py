"""Common utility functions for the project."""

import json
from enum import Enum
from typing import Any

from mcpchat.core.schema import ProgressEvent


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    GREY = "\033[90m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def format_event(event: ProgressEvent) -> tuple[str, AnsiColors] | None:
    """
    Render a progress event as one terminal line.

    Returns None for events that are not worth showing (the final answer is printed by the
    caller).
    """
    if event.kind == "step":
        return f"\n📝 Step {event.step}", AnsiColors.GREY
    if event.kind == "thinking":
        return f"💭 Assistant: {event.message}", AnsiColors.GREY
    if event.kind == "tool_call":
        args = json.dumps(event.arguments or {}, indent=2, ensure_ascii=False)
        return f"🔧 Running tool: {event.tool_name}\n📥 Arguments: {args}", AnsiColors.BLUE
    if event.kind == "tool_result":
        result = json.dumps(event.result, ensure_ascii=False, default=str)
        return f"📤 Result: {result}", AnsiColors.GREEN
    if event.kind == "tool_error":
        return f"❌ Tool {event.tool_name} failed: {event.message}", AnsiColors.RED
    if event.kind == "forced_termination":
        return f"⚠️ {event.message}", AnsiColors.RED
    return None


def print_event(event: ProgressEvent) -> None:
    """Progress callback for the terminal."""
    rendered = format_event(event)
    if rendered is not None:
        text, color = rendered
        colored_print(text, color)
