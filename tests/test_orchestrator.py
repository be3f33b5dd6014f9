"""Behaviour of the tool-calling loop."""

import json
from unittest.mock import MagicMock

import pytest
from conftest import (
    QUERY_TOOL,
    FakeTransport,
    ScriptedProvider,
    text_block,
    tool_call,
)

from mcpchat.core.connection import Connection
from mcpchat.core.errors import (
    NoAssistantContentError,
    NotConnectedError,
    ProviderFaultError,
)
from mcpchat.core.orchestrator import (
    FORCED_TERMINATION_MESSAGE,
    Orchestrator,
)
from mcpchat.core.providers import SYSTEM_PROMPT
from mcpchat.core.schema import (
    Completion,
    Role,
    ToolCallOutcome,
)


@pytest.mark.asyncio
async def test_plain_text_answer(connection) -> None:
    """A text-only first response is returned and recorded as user + assistant turns."""

    provider = ScriptedProvider(Completion(content="Hello!"))
    outcome = await Orchestrator(connection, provider).run("hi")

    assert outcome.text == "Hello!"
    assert outcome.iterations == 1
    assert [t.role for t in outcome.transcript] == [Role.USER, Role.ASSISTANT]
    assert outcome.transcript[0].content == "hi"
    assert outcome.transcript[1].content == "Hello!"


@pytest.mark.asyncio
async def test_process_query_returns_text(connection) -> None:
    provider = ScriptedProvider(Completion(content="42"))

    assert await Orchestrator(connection, provider).process_query("answer?") == "42"


@pytest.mark.asyncio
async def test_list_tables_scenario(connection, fake_transport) -> None:
    """One tool round followed by an answer leaves four turns in order."""

    provider = ScriptedProvider(
        Completion(tool_calls=[tool_call("call_1", "query", {"sql": "SELECT name FROM x"})]),
        Completion(content="The tables are: books."),
    )
    outcome = await Orchestrator(connection, provider).run("list tables")

    assert outcome.text == "The tables are: books."
    roles = [t.role for t in outcome.transcript]
    assert roles == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]

    call_turn, tool_turn, final_turn = outcome.transcript[1:]
    assert call_turn.content is None
    assert [c.id for c in call_turn.tool_calls] == ["call_1"]
    assert tool_turn.tool_call_id == "call_1"
    assert json.loads(tool_turn.content) == text_block('["books"]')
    assert final_turn.content == "The tables are: books."
    assert fake_transport.calls == [("query", {"sql": "SELECT name FROM x"})]


@pytest.mark.asyncio
async def test_provider_sees_system_prompt_tools_and_growing_transcript(connection) -> None:
    provider = ScriptedProvider(
        Completion(tool_calls=[tool_call("call_1", "list_tables")]),
        Completion(content="done"),
    )
    await Orchestrator(connection, provider).run("list tables")

    first, second = provider.calls
    assert first["system_prompt"] == SYSTEM_PROMPT
    assert [t.name for t in first["tools"]] == ["query", "list_tables"]
    assert len(first["turns"]) == 1
    assert [t.role for t in second["turns"]] == [Role.USER, Role.ASSISTANT, Role.TOOL]


@pytest.mark.asyncio
async def test_batch_runs_in_order_with_one_assistant_turn(connection, fake_transport) -> None:
    """A batch of N calls yields one assistant turn followed by N tool turns in request order."""

    batch = [
        tool_call("a", "list_tables"),
        tool_call("b", "query", {"sql": "SELECT 1"}),
        tool_call("c", "query", {"sql": "SELECT 2"}),
    ]
    provider = ScriptedProvider(Completion(tool_calls=batch), Completion(content="ok"))
    outcome = await Orchestrator(connection, provider).run("go")

    middle = outcome.transcript[1:-1]
    assert middle[0].role is Role.ASSISTANT
    assert [c.id for c in middle[0].tool_calls] == ["a", "b", "c"]
    assert [t.tool_call_id for t in middle[1:]] == ["a", "b", "c"]
    assert all(t.role is Role.TOOL for t in middle[1:])
    assert [name for name, _ in fake_transport.calls] == ["list_tables", "query", "query"]
    assert [args.get("sql") for _, args in fake_transport.calls] == [None, "SELECT 1", "SELECT 2"]


@pytest.mark.asyncio
async def test_thinking_text_is_kept_on_the_call_turn(connection) -> None:
    provider = ScriptedProvider(
        Completion(content="Let me look.", tool_calls=[tool_call("c1", "list_tables")]),
        Completion(content="done"),
    )
    outcome = await Orchestrator(connection, provider).run("tables?")

    assert outcome.transcript[1].content == "Let me look."
    assert outcome.transcript[1].tool_calls


@pytest.mark.asyncio
async def test_malformed_arguments_become_empty_dict(connection, fake_transport) -> None:
    """The raw payload '{' is not an error: the tool runs with no arguments."""

    provider = ScriptedProvider(
        Completion(tool_calls=[tool_call("c1", "query", "{")]),
        Completion(content="recovered"),
    )
    outcome = await Orchestrator(connection, provider).run("query it")

    assert outcome.text == "recovered"
    assert fake_transport.calls == [("query", {})]


@pytest.mark.asyncio
async def test_tool_is_error_becomes_failure_turn_and_loop_continues() -> None:
    transport = FakeTransport(
        [QUERY_TOOL],
        handlers={
            "query": lambda args: ToolCallOutcome(
                content=text_block("no such table: book"), is_error=True
            )
        },
    )
    provider = ScriptedProvider(
        Completion(tool_calls=[tool_call("c1", "query", {"sql": "SELECT * FROM book"})]),
        Completion(content="That table does not exist."),
    )
    async with Connection(transport) as conn:
        outcome = await Orchestrator(conn, provider).run("books?")

    tool_turn = outcome.transcript[2]
    assert tool_turn.content == "execution failed: no such table: book"
    assert outcome.text == "That table does not exist."
    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_tool_exception_does_not_escape() -> None:
    def boom(args):
        raise ConnectionError("pipe closed")

    transport = FakeTransport([QUERY_TOOL], handlers={"query": boom})
    provider = ScriptedProvider(
        Completion(tool_calls=[tool_call("c1", "query", {"sql": "SELECT 1"})]),
        Completion(content="sorry"),
    )
    async with Connection(transport) as conn:
        outcome = await Orchestrator(conn, provider).run("q")

    assert outcome.transcript[2].content == "execution failed: pipe closed"
    assert outcome.text == "sorry"


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_to_the_model(connection, fake_transport) -> None:
    provider = ScriptedProvider(
        Completion(tool_calls=[tool_call("c1", "drop_everything")]),
        Completion(content="I cannot do that."),
    )
    outcome = await Orchestrator(connection, provider).run("q")

    expected = "execution failed: Tool 'drop_everything' is not registered."
    assert outcome.transcript[2].content == expected
    assert fake_transport.calls == []


@pytest.mark.asyncio
async def test_iteration_ceiling_forces_termination(connection) -> None:
    """A provider that always wants a tool is stopped after the 11th round."""

    provider = ScriptedProvider(Completion(tool_calls=[tool_call("c", "list_tables")]))
    outcome = await Orchestrator(connection, provider).run("loop forever")

    assert outcome.text == FORCED_TERMINATION_MESSAGE
    assert outcome.forced_termination is True
    assert outcome.iterations == 11
    assert len(provider.calls) == 11


@pytest.mark.asyncio
async def test_custom_iteration_ceiling(connection) -> None:
    provider = ScriptedProvider(Completion(tool_calls=[tool_call("c", "list_tables")]))
    text = await Orchestrator(connection, provider, max_iterations=2).process_query("loop")

    assert text == FORCED_TERMINATION_MESSAGE
    assert len(provider.calls) == 3


@pytest.mark.asyncio
async def test_answer_on_last_allowed_round_is_not_forced(connection) -> None:
    responses = [Completion(tool_calls=[tool_call(f"c{i}", "list_tables")]) for i in range(10)]
    provider = ScriptedProvider(*responses, Completion(content="finally"))
    outcome = await Orchestrator(connection, provider).run("slow")

    assert outcome.text == "finally"
    assert outcome.iterations == 11
    assert outcome.forced_termination is False


@pytest.mark.asyncio
async def test_empty_completion_raises_no_assistant_content(connection) -> None:
    provider = ScriptedProvider(Completion())

    with pytest.raises(NoAssistantContentError):
        await Orchestrator(connection, provider).run("hello")


@pytest.mark.asyncio
async def test_provider_failure_is_wrapped_with_query(connection) -> None:
    provider = ScriptedProvider(TimeoutError("read timed out"))

    with pytest.raises(ProviderFaultError) as excinfo:
        await Orchestrator(connection, provider).run("what time is it")

    assert "what time is it" in str(excinfo.value)
    assert "read timed out" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, TimeoutError)


@pytest.mark.asyncio
async def test_provider_failure_after_tool_round_aborts(connection) -> None:
    provider = ScriptedProvider(
        Completion(tool_calls=[tool_call("c1", "list_tables")]),
        RuntimeError("malformed response"),
    )

    with pytest.raises(ProviderFaultError):
        await Orchestrator(connection, provider).run("q")


@pytest.mark.asyncio
async def test_not_connected_without_open_connection(fake_transport) -> None:
    provider = ScriptedProvider(Completion(content="x"))

    with pytest.raises(NotConnectedError):
        await Orchestrator(Connection(fake_transport), provider).run("q")
    with pytest.raises(NotConnectedError):
        await Orchestrator(None, provider).run("q")


@pytest.mark.asyncio
async def test_not_connected_without_provider(connection) -> None:
    with pytest.raises(NotConnectedError):
        await Orchestrator(connection, None).process_query("q")


@pytest.mark.asyncio
async def test_each_query_starts_a_fresh_transcript(connection) -> None:
    provider = ScriptedProvider(Completion(content="one"), Completion(content="two"))
    orchestrator = Orchestrator(connection, provider)

    await orchestrator.run("first")
    second = await orchestrator.run("second")

    assert [t.content for t in second.transcript] == ["second", "two"]
    assert len(provider.calls[1]["turns"]) == 1


@pytest.mark.asyncio
async def test_progress_events(connection) -> None:
    events = []
    provider = ScriptedProvider(
        Completion(tool_calls=[tool_call("c1", "query", {"sql": "SELECT 1"})]),
        Completion(content="done"),
    )
    await Orchestrator(connection, provider, on_event=events.append).run("q")

    kinds = [e.kind for e in events]
    assert kinds == ["query", "step", "tool_call", "tool_result", "step", "answer"]
    tool_event = events[2]
    assert tool_event.tool_name == "query"
    assert tool_event.arguments == {"sql": "SELECT 1"}
    assert events[4].step == 2


@pytest.mark.asyncio
async def test_failing_event_callback_does_not_change_the_result(connection) -> None:
    callback = MagicMock(side_effect=ValueError("bad renderer"))
    provider = ScriptedProvider(
        Completion(tool_calls=[tool_call("c1", "list_tables")]),
        Completion(content="done"),
    )

    text = await Orchestrator(connection, provider, on_event=callback).process_query("q")

    assert text == "done"
    assert callback.call_count > 0
