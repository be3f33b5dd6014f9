"""
Completion providers for mcpchat.

This module is the only place that *directly* calls an LLM.  Everything else (orchestrator, tools,
transport) stays model-agnostic: every provider answers :meth:`BaseCompletionProvider.complete`
with the same normalized :class:`Completion`.

Two strategies are supported:

1. **Native tool calls** - OpenAI-compatible chat completions (OpenAI, LM Studio, OpenRouter) and
   Anthropic messages, which carry tool requests in dedicated response fields.
2. **JSON envelope** - models without tool support are asked to answer with a single JSON object
   (``{"tool": ..., "args": ...}`` or ``{"status": "complete", "result": ...}``) which is parsed
   back into the same shape.  Used by the Text-Generation-Inference (TGI) provider.

Additional providers can be added by subclassing :class:`BaseCompletionProvider` and registering
via :func:`register_provider`.
"""

import json
import logging
import re
import uuid
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Sequence,
    Type,
)

import httpx
from pydantic import (
    BaseModel,
    Field,
    ValidationError,
)

from mcpchat.config import (
    Settings,
    settings,
)
from mcpchat.core.arguments import decode_arguments
from mcpchat.core.errors import NoAssistantContentError
from mcpchat.core.schema import (
    Completion,
    Role,
    ToolCallRequest,
    ToolDescriptor,
    Turn,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are a database assistant. Based on the user's request and the results so far, decide what to \
do next.
If you need a tool, first say in one sentence what you are about to do, then use the tool.
If no tool is needed, reply directly with the final result.
"""


def new_call_id() -> str:
    """Identifier for tool calls whose provider did not supply one."""
    return f"call_{uuid.uuid4().hex[:24]}"


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PROVIDER_REGISTRY: dict[str, Type["BaseCompletionProvider"]] = {}


def register_provider(name: str) -> Callable:
    """Decorator to register a provider class under *name*."""

    def wrapper(cls: Type["BaseCompletionProvider"]) -> Type["BaseCompletionProvider"]:
        _PROVIDER_REGISTRY[name] = cls
        cls.name = name
        return cls

    return wrapper


def available_providers() -> List[str]:
    return sorted(_PROVIDER_REGISTRY)


def load_provider(name: str | None = None, cfg: Settings | None = None) -> "BaseCompletionProvider":
    """
    Factory that returns an instantiated provider.

    Fallback order:
    1. *name* arg
    2. ``settings.PROVIDER`` env option
    3. default: ``"openai"``
    """

    cfg = cfg or settings
    target = name or getattr(cfg, "PROVIDER", "openai")
    cls = _PROVIDER_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Provider '{target}' is not registered.")
    return cls.from_settings(cfg)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseCompletionProvider(ABC):
    """Abstract provider that turns a transcript + tool schemas into a :class:`Completion`."""

    name: ClassVar[str] = "base"
    model: str = ""

    @classmethod
    @abstractmethod
    def from_settings(cls, cfg: Settings) -> "BaseCompletionProvider":
        """Build the provider from application settings."""

    @abstractmethod
    async def complete(
        self,
        turns: Sequence[Turn],
        tools: Sequence[ToolDescriptor],
        system_prompt: str = SYSTEM_PROMPT,
    ) -> Completion:
        """Return text and/or tool calls for the next assistant step."""


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions
# ---------------------------------------------------------------------------
def to_openai_tools(tools: Sequence[ToolDescriptor]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameter_schema,
            },
        }
        for tool in tools
    ]


def to_openai_messages(turns: Sequence[Turn]) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    for turn in turns:
        if turn.role is Role.TOOL:
            messages.append(
                {"role": "tool", "tool_call_id": turn.tool_call_id, "content": turn.content or ""}
            )
        elif turn.role is Role.ASSISTANT and turn.tool_calls:
            messages.append(
                {
                    "role": "assistant",
                    "content": turn.content,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.tool_name, "arguments": call.raw_arguments},
                        }
                        for call in turn.tool_calls
                    ],
                }
            )
        else:
            messages.append({"role": turn.role.value, "content": turn.content or ""})
    return messages


@register_provider("openai")
class OpenAIProvider(BaseCompletionProvider):
    """OpenAI chat completions with native tool calls."""

    def __init__(self, client: Any, model: str, temperature: float = 0.7) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature

    @classmethod
    def from_settings(cls, cfg: Settings) -> "OpenAIProvider":
        import openai  # pylint: disable=import-outside-toplevel

        client = openai.AsyncOpenAI(api_key=cfg.OPENAI_API_KEY, base_url=cfg.OPENAI_BASE_URL)
        return cls(client, model=cfg.OPENAI_MODEL, temperature=cfg.TEMPERATURE)

    async def complete(
        self,
        turns: Sequence[Turn],
        tools: Sequence[ToolDescriptor],
        system_prompt: str = SYSTEM_PROMPT,
    ) -> Completion:
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}, *to_openai_messages(turns)],
            "temperature": self.temperature,
        }
        if tools:
            request["tools"] = to_openai_tools(tools)

        resp = await self.client.chat.completions.create(**request)
        if not resp.choices:
            raise NoAssistantContentError("No content in AI's response")

        message = resp.choices[0].message
        calls = [
            ToolCallRequest(
                id=call.id or new_call_id(),
                tool_name=call.function.name,
                raw_arguments=call.function.arguments or "",
            )
            for call in (message.tool_calls or [])
        ]
        logger.debug(
            "%s response: content=%r tool_calls=%d", self.name, message.content, len(calls)
        )
        return Completion(content=message.content, tool_calls=calls)


@register_provider("lm_studio")
class LMStudioProvider(OpenAIProvider):
    """Local OpenAI-compatible server (LM Studio); no API key needed."""

    @classmethod
    def from_settings(cls, cfg: Settings) -> "LMStudioProvider":
        import openai  # pylint: disable=import-outside-toplevel

        client = openai.AsyncOpenAI(api_key="not-needed", base_url=cfg.LM_STUDIO_BASE_URL)
        return cls(client, model=cfg.LM_STUDIO_MODEL, temperature=cfg.TEMPERATURE)


@register_provider("openrouter")
class OpenRouterProvider(OpenAIProvider):
    """OpenRouter gateway, speaking the OpenAI protocol."""

    @classmethod
    def from_settings(cls, cfg: Settings) -> "OpenRouterProvider":
        import openai  # pylint: disable=import-outside-toplevel

        client = openai.AsyncOpenAI(
            api_key=cfg.OPENROUTER_API_KEY,
            base_url=cfg.OPENROUTER_BASE_URL,
            default_headers={
                "HTTP-Referer": f"http://localhost:{cfg.API_PORT}",
                "X-Title": "mcpchat",
            },
        )
        return cls(client, model=cfg.OPENROUTER_MODEL, temperature=cfg.TEMPERATURE)


# ---------------------------------------------------------------------------
# Anthropic messages
# ---------------------------------------------------------------------------
def to_anthropic_tools(tools: Sequence[ToolDescriptor]) -> List[Dict[str, Any]]:
    return [
        {"name": tool.name, "description": tool.description, "input_schema": tool.parameter_schema}
        for tool in tools
    ]


def _is_tool_result_message(message: Dict[str, Any]) -> bool:
    content = message.get("content")
    return (
        message.get("role") == "user"
        and isinstance(content, list)
        and all(block.get("type") == "tool_result" for block in content)
    )


def to_anthropic_messages(turns: Sequence[Turn]) -> List[Dict[str, Any]]:
    """
    Convert turns to Anthropic messages.

    Tool results travel as ``tool_result`` blocks in a *user* message; consecutive results are
    merged into one message because roles must alternate.
    """
    messages: List[Dict[str, Any]] = []
    for turn in turns:
        if turn.role is Role.USER:
            messages.append({"role": "user", "content": turn.content or ""})
        elif turn.role is Role.ASSISTANT:
            blocks: List[Dict[str, Any]] = []
            if turn.content:
                blocks.append({"type": "text", "text": turn.content})
            for call in turn.tool_calls:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.tool_name,
                        "input": decode_arguments(call.raw_arguments),
                    }
                )
            messages.append({"role": "assistant", "content": blocks})
        else:
            block = {
                "type": "tool_result",
                "tool_use_id": turn.tool_call_id,
                "content": turn.content or "",
            }
            if messages and _is_tool_result_message(messages[-1]):
                messages[-1]["content"].append(block)
            else:
                messages.append({"role": "user", "content": [block]})
    return messages


@register_provider("anthropic")
class AnthropicProvider(BaseCompletionProvider):
    """Anthropic Claude with native ``tool_use`` blocks."""

    def __init__(
        self, client: Any, model: str, temperature: float = 0.7, max_tokens: int = 4096
    ) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, cfg: Settings) -> "AnthropicProvider":
        import anthropic  # pylint: disable=import-outside-toplevel

        client = anthropic.AsyncAnthropic(api_key=cfg.ANTHROPIC_API_KEY)
        return cls(client, model=cfg.ANTHROPIC_MODEL, temperature=cfg.TEMPERATURE)

    async def complete(
        self,
        turns: Sequence[Turn],
        tools: Sequence[ToolDescriptor],
        system_prompt: str = SYSTEM_PROMPT,
    ) -> Completion:
        request: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system_prompt,
            "messages": to_anthropic_messages(turns),
            "temperature": self.temperature,
        }
        if tools:
            request["tools"] = to_anthropic_tools(tools)

        response = await self.client.messages.create(**request)

        texts: List[str] = []
        calls: List[ToolCallRequest] = []
        for block in response.content or []:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                calls.append(
                    ToolCallRequest(
                        id=block.id, tool_name=block.name, raw_arguments=json.dumps(block.input)
                    )
                )

        content = "\n".join(t for t in texts if t) or None
        logger.debug("Anthropic response: content=%r tool_calls=%d", content, len(calls))
        return Completion(content=content, tool_calls=calls)


# ---------------------------------------------------------------------------
# JSON envelope strategy
# ---------------------------------------------------------------------------
ENVELOPE_INSTRUCTIONS = """\
Every reply must be exactly one JSON object, no extra text.
When you need to use a tool, respond with:
{"tool": "<name>", "args": { ... }}
When the task is finished, respond with:
{"status": "complete", "reason": "<why you are done>", "result": "<final reply to user>"}
"""


class Envelope(BaseModel):
    """Validates JSON-envelope replies."""

    tool: str | None = None
    args: Any = None
    tool_calls: List[Dict[str, Any]] = Field(default_factory=list)
    answer: str | None = None
    status: str | None = None
    reason: str | None = None
    result: Any = None


def sanitize_json_string(content: str) -> str:
    """Clean up JSON strings returned by LLMs: strip code fences, control chars and chatter."""
    if "```" in content:
        match = re.search(r"```(?:json)?\s*(.+?)```", content, re.DOTALL)
        if match:
            content = match.group(1).strip()

    content = "".join(ch for ch in content if ch >= " " or ch in "\n\r\t")

    # Keep only the outermost {...} object, ignoring braces inside strings
    start = content.find("{")
    if start < 0:
        return content.strip()
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(content)):
        ch = content[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return content[start : i + 1]
    return content.strip()


def _raw_args(args: Any) -> str:
    if args is None:
        return ""
    if isinstance(args, str):
        return args
    return json.dumps(args)


def parse_envelope(text: str | None) -> Completion:
    """
    Normalize a JSON-envelope reply.

    Non-JSON text (or JSON of an unknown shape) is taken as a plain answer.  A ``continue``
    status without a tool request is surfaced as text as well, since only tool calls keep the
    loop going.
    """
    if not text or not text.strip():
        return Completion()

    cleaned = sanitize_json_string(text)
    try:
        envelope = Envelope.model_validate_json(cleaned)
    except ValidationError as exc:
        logger.debug("Reply is not a JSON envelope, treating as text: %s", exc)
        return Completion(content=text.strip())

    if envelope.tool:
        return Completion(
            tool_calls=[
                ToolCallRequest(
                    id=new_call_id(),
                    tool_name=envelope.tool,
                    raw_arguments=_raw_args(envelope.args),
                )
            ]
        )
    calls = [
        ToolCallRequest(
            id=new_call_id(), tool_name=str(call["name"]), raw_arguments=_raw_args(call.get("args"))
        )
        for call in envelope.tool_calls
        if call.get("name")
    ]
    if calls:
        return Completion(tool_calls=calls)

    if envelope.answer is not None:
        return Completion(content=envelope.answer)
    if envelope.status is not None:
        logger.debug("Envelope status=%s reason=%s", envelope.status, envelope.reason)
        final = envelope.result if envelope.result is not None else envelope.reason
        if final is None:
            return Completion()
        return Completion(content=final if isinstance(final, str) else json.dumps(final))

    # Inline JSON inside prose is part of the answer, not an envelope
    return Completion(content=text.strip())


def build_envelope_prompt(system_prompt: str, tools: Sequence[ToolDescriptor]) -> str:
    """System prompt plus envelope protocol and a one-line summary per tool."""
    prompt = f"{system_prompt}\n{ENVELOPE_INSTRUCTIONS}"
    if tools:
        tools_info = []
        for tool in tools:
            properties = tool.parameter_schema.get("properties", {}) or {}
            param_desc = ", ".join(
                f"{name}: {info.get('type', 'any')}" for name, info in properties.items()
            )
            tools_info.append(f"- {tool.name}({param_desc}): {tool.description}")
        prompt += "\nAvailable tools:\n" + "\n".join(tools_info)
    return prompt


def render_transcript(turns: Sequence[Turn]) -> str:
    lines: List[str] = []
    for turn in turns:
        if turn.role is Role.USER:
            lines.append(f"User: {turn.content or ''}")
        elif turn.role is Role.ASSISTANT:
            for call in turn.tool_calls:
                envelope = {"tool": call.tool_name, "args": decode_arguments(call.raw_arguments)}
                lines.append(f"Assistant: {json.dumps(envelope)}")
            if turn.content and not turn.tool_calls:
                lines.append(f"Assistant: {turn.content}")
        else:
            lines.append(f"Tool result [{turn.tool_call_id}]: {turn.content or ''}")
    return "\n".join(lines)


@register_provider("tgi")
class TGIProvider(BaseCompletionProvider):
    """Hugging Face Text-Generation-Inference endpoint driven through the JSON envelope."""

    def __init__(
        self,
        endpoint: str,
        temperature: float = 0.2,
        max_new_tokens: int = 512,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.model = endpoint
        self.temperature = temperature
        self.max_new_tokens = max_new_tokens
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, cfg: Settings) -> "TGIProvider":
        return cls(cfg.TGI_ENDPOINT, temperature=cfg.TEMPERATURE)

    async def complete(
        self,
        turns: Sequence[Turn],
        tools: Sequence[ToolDescriptor],
        system_prompt: str = SYSTEM_PROMPT,
    ) -> Completion:
        prompt = build_envelope_prompt(system_prompt, tools)
        payload = {
            "inputs": f"{prompt}\n{render_transcript(turns)}\nAssistant:",
            "parameters": {
                "max_new_tokens": self.max_new_tokens,
                "temperature": self.temperature,
                "stop": ["User:", "</s>"],
            },
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(self.endpoint, json=payload)
            resp.raise_for_status()
            content = resp.json()["generated_text"]

        logger.debug("TGI response: %s", content)
        return parse_envelope(content)
