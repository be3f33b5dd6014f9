"""
Shared fixtures: a scripted completion provider and an in-memory tool transport.

Run with:
$ pytest -q
"""

import json
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Sequence,
)

import pytest
import pytest_asyncio

from mcpchat.config import Settings
from mcpchat.core.connection import Connection
from mcpchat.core.providers import (
    SYSTEM_PROMPT,
    BaseCompletionProvider,
)
from mcpchat.core.schema import (
    Completion,
    ToolCallOutcome,
    ToolCallRequest,
    ToolDescriptor,
    Turn,
)
from mcpchat.transport.base import ToolTransport


def tool_call(call_id: str, name: str, args: Any = None) -> ToolCallRequest:
    """Build a provider tool request; *args* may be a dict or a raw string."""
    raw = args if isinstance(args, str) else json.dumps(args or {})
    return ToolCallRequest(id=call_id, tool_name=name, raw_arguments=raw)


def text_block(text: str) -> List[Dict[str, str]]:
    return [{"type": "text", "text": text}]


class ScriptedProvider(BaseCompletionProvider):
    """Returns canned completions in order; the last one repeats once the script runs out.

    A script entry that is an exception instance is raised instead of returned.
    """

    name = "scripted"

    def __init__(self, *responses: Any) -> None:
        self.responses: List[Any] = list(responses)
        self.model = "scripted-model"
        self.calls: List[Dict[str, Any]] = []

    @classmethod
    def from_settings(cls, cfg: Settings) -> "ScriptedProvider":
        return cls(Completion(content="ok"))

    async def complete(
        self,
        turns: Sequence[Turn],
        tools: Sequence[ToolDescriptor],
        system_prompt: str = SYSTEM_PROMPT,
    ) -> Completion:
        self.calls.append(
            {"turns": list(turns), "tools": list(tools), "system_prompt": system_prompt}
        )
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, BaseException):
            raise response
        return response


class FakeTransport(ToolTransport):
    """In-memory tool server.  Handlers map tool name -> callable(arguments)."""

    def __init__(
        self,
        tools: Sequence[ToolDescriptor],
        handlers: Dict[str, Callable[[Dict[str, Any]], Any]] | None = None,
    ) -> None:
        self.tools = list(tools)
        self.handlers = handlers or {}
        self.calls: List[tuple] = []
        self.connected = False
        self.connect_count = 0
        self.close_count = 0

    async def connect(self) -> None:
        self.connected = True
        self.connect_count += 1

    async def close(self) -> None:
        self.connected = False
        self.close_count += 1

    async def list_tools(self) -> List[ToolDescriptor]:
        return list(self.tools)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> ToolCallOutcome:
        self.calls.append((name, arguments))
        result = self.handlers[name](arguments)
        if isinstance(result, ToolCallOutcome):
            return result
        return ToolCallOutcome(content=result)


QUERY_TOOL = ToolDescriptor(
    name="query",
    description="Run a SQL query",
    parameter_schema={
        "type": "object",
        "properties": {"sql": {"type": "string"}},
        "required": ["sql"],
    },
)
LIST_TABLES_TOOL = ToolDescriptor(name="list_tables", description="List all tables")


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport(
        [QUERY_TOOL, LIST_TABLES_TOOL],
        handlers={
            "query": lambda args: ToolCallOutcome(content=text_block('["books"]')),
            "list_tables": lambda args: ToolCallOutcome(content=text_block('["books"]')),
        },
    )


@pytest_asyncio.fixture
async def connection(fake_transport):
    conn = Connection(fake_transport)
    await conn.open()
    yield conn
    await conn.close()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        PROVIDER="openai",
        TOOL_TRANSPORT="local",
        MAX_ITERATIONS=10,
        LOG_LEVEL="debug",
    )
