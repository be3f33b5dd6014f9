"""
Tool-calling orchestration loop.

One :meth:`Orchestrator.run` call owns one :class:`ConversationState`:

    user turn -> provider -> tool calls? -> run each tool in order -> provider -> ... -> answer

The loop is strictly sequential.  Tool failures and malformed arguments become transcript content
so the model can recover; only provider faults (and a missing connection) abort the query.  After
``max_iterations`` provider rounds that still ask for tools, the loop stops and returns
:data:`FORCED_TERMINATION_MESSAGE` as a normal answer.
"""

from __future__ import annotations

import json
import logging
from typing import (
    Any,
    Callable,
    Dict,
    Optional,
    Sequence,
)

from mcpchat.core.arguments import decode_arguments
from mcpchat.core.connection import Connection
from mcpchat.core.conversation import ConversationState
from mcpchat.core.errors import (
    NoAssistantContentError,
    NotConnectedError,
    ProviderFaultError,
)
from mcpchat.core.providers import (
    SYSTEM_PROMPT,
    BaseCompletionProvider,
)
from mcpchat.core.schema import (
    Completion,
    ProgressEvent,
    QueryOutcome,
    ToolCallRequest,
    ToolDescriptor,
    ToolResult,
    Turn,
)
from mcpchat.core.tool_executor import ToolInvoker

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10
FORCED_TERMINATION_MESSAGE = "Execution was forcibly stopped because the step limit was exceeded."
FAILURE_PREFIX = "execution failed: "

EventCallback = Callable[[ProgressEvent], None]


def serialize_payload(payload: Any) -> str:
    """JSON text for a tool result payload, as recorded in the tool turn."""
    try:
        return json.dumps(payload, ensure_ascii=False)
    except (TypeError, ValueError):
        return json.dumps(payload, ensure_ascii=False, default=str)


class Orchestrator:
    """Drive the conversation between one provider and one connection."""

    def __init__(
        self,
        connection: Optional[Connection],
        provider: Optional[BaseCompletionProvider],
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        system_prompt: str = SYSTEM_PROMPT,
        on_event: Optional[EventCallback] = None,
    ) -> None:
        self.connection = connection
        self.provider = provider
        self.max_iterations = max_iterations
        self.system_prompt = system_prompt
        self.on_event = on_event

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    async def process_query(self, user_text: str) -> str:
        """Answer *user_text*, returning the model's final text."""
        outcome = await self.run(user_text)
        return outcome.text

    async def run(self, user_text: str) -> QueryOutcome:
        """
        Answer *user_text* and return the text together with the transcript.

        Raises
        ------
        NotConnectedError
            If the connection is not open or no provider is configured.
        ProviderFaultError
            If the provider fails or returns neither text nor tool calls.
        """
        if self.connection is None or not self.connection.is_open or self.provider is None:
            raise NotConnectedError("Not connected to server")

        provider = self.provider
        registry = self.connection.registry
        invoker = self.connection.invoker
        state = ConversationState()
        state.append(Turn.user(user_text))
        iteration = 0
        self._emit(ProgressEvent(kind="query", message=user_text))

        while True:
            iteration += 1
            self._emit(ProgressEvent(kind="step", step=iteration))

            completion = await self._complete(provider, state, registry.descriptors, user_text)

            if not completion.tool_calls:
                text = completion.content or ""
                state.append(Turn.assistant(text))
                self._emit(ProgressEvent(kind="answer", step=iteration, message=text))
                return QueryOutcome(text=text, transcript=state.snapshot(), iterations=iteration)

            if completion.content:
                self._emit(
                    ProgressEvent(kind="thinking", step=iteration, message=completion.content)
                )

            state.append(Turn.assistant(completion.content, completion.tool_calls))
            for call in completion.tool_calls:
                result = await self._run_tool(invoker, call, iteration)
                state.append(Turn.tool(call.id, self._tool_content(result)))

            if iteration > self.max_iterations:
                logger.warning("Step limit exceeded after %d iterations, forcing stop", iteration)
                self._emit(
                    ProgressEvent(
                        kind="forced_termination",
                        step=iteration,
                        message=FORCED_TERMINATION_MESSAGE,
                    )
                )
                return QueryOutcome(
                    text=FORCED_TERMINATION_MESSAGE,
                    transcript=state.snapshot(),
                    iterations=iteration,
                    forced_termination=True,
                )

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #
    async def _complete(
        self,
        provider: BaseCompletionProvider,
        state: ConversationState,
        tools: Sequence[ToolDescriptor],
        user_text: str,
    ) -> Completion:
        try:
            completion = await provider.complete(state.snapshot(), tools, self.system_prompt)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Provider '%s' failed: %s", provider.name, exc)
            error_cls = (
                NoAssistantContentError
                if isinstance(exc, NoAssistantContentError)
                else ProviderFaultError
            )
            raise error_cls(f"Failed to process query {user_text!r}: {exc}") from exc

        if completion.is_empty:
            raise NoAssistantContentError(
                f"Failed to process query {user_text!r}: no content in AI's response"
            )
        return completion

    async def _run_tool(self, invoker: ToolInvoker, call: ToolCallRequest, step: int) -> ToolResult:
        arguments: Dict[str, Any] = decode_arguments(call.raw_arguments)
        logger.info("Step %d: executing tool '%s' with %s", step, call.tool_name, arguments)
        self._emit(
            ProgressEvent(
                kind="tool_call", step=step, tool_name=call.tool_name, arguments=arguments
            )
        )

        result: ToolResult = await invoker.invoke(call.id, call.tool_name, arguments)

        if result.ok:
            self._emit(
                ProgressEvent(
                    kind="tool_result", step=step, tool_name=call.tool_name, result=result.payload
                )
            )
        else:
            logger.error("Error executing tool '%s': %s", call.tool_name, result.error)
            self._emit(
                ProgressEvent(
                    kind="tool_error", step=step, tool_name=call.tool_name, message=result.error
                )
            )
        return result

    @staticmethod
    def _tool_content(result: ToolResult) -> str:
        if result.ok:
            return serialize_payload(result.payload)
        return f"{FAILURE_PREFIX}{result.error}"

    def _emit(self, event: ProgressEvent) -> None:
        logger.debug("Progress: %s", event.model_dump(exclude_none=True))
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Progress callback failed for %s event", event.kind)
