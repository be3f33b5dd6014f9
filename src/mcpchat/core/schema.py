"""
Schema definitions for provider <-> orchestrator <-> tool messages.

These data models serve as the contract between the completion provider, the orchestration loop,
and the tool transport.  We keep them separate from runtime logic so they can be imported anywhere
without side-effects.
"""

from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


class Role(str, Enum):
    """Author of a transcript turn."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallRequest(BaseModel):
    """A call that the provider wants the orchestrator to execute."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Identifier scoped to one completion response")
    tool_name: str = Field(..., description="Name of the tool to invoke")
    raw_arguments: str = Field("", description="Provider-supplied argument payload, undecoded")


class Turn(BaseModel):
    """A single entry of the conversation transcript."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: Optional[str] = None
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    tool_call_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_role_fields(self) -> "Turn":
        if self.tool_calls and self.role is not Role.ASSISTANT:
            raise ValueError("only assistant turns may carry tool calls")
        if self.role is Role.TOOL and not self.tool_call_id:
            raise ValueError("tool turns must reference a tool_call_id")
        if self.role is not Role.TOOL and self.tool_call_id is not None:
            raise ValueError("tool_call_id is only valid on tool turns")
        return self

    @classmethod
    def user(cls, content: str) -> "Turn":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(
        cls, content: Optional[str] = None, tool_calls: Optional[List[ToolCallRequest]] = None
    ) -> "Turn":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> "Turn":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)


class ToolDescriptor(BaseModel):
    """A tool advertised by the transport: name, description and JSON parameter schema."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameter_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ToolCallOutcome(BaseModel):
    """Raw answer of a transport ``call_tool`` request."""

    content: Any = None
    is_error: bool = False


class ToolResult(BaseModel):
    """Outcome of one tool invocation, as seen by the orchestrator."""

    tool_call_id: str
    ok: bool
    payload: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, tool_call_id: str, payload: Any) -> "ToolResult":
        return cls(tool_call_id=tool_call_id, ok=True, payload=payload)

    @classmethod
    def failure(cls, tool_call_id: str, message: str) -> "ToolResult":
        return cls(tool_call_id=tool_call_id, ok=False, error=message)


class Completion(BaseModel):
    """Normalized provider response: free text, tool calls, or both."""

    content: Optional[str] = None
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.content and not self.tool_calls


class ProgressEvent(BaseModel):
    """Structured progress notification emitted while a query runs."""

    kind: str
    step: int = 0
    tool_name: Optional[str] = None
    arguments: Optional[Dict[str, Any]] = None
    result: Any = None
    message: Optional[str] = None


class QueryOutcome(BaseModel):
    """Everything one ``Orchestrator.run`` call produced."""

    text: str
    transcript: List[Turn] = Field(default_factory=list)
    iterations: int = 0
    forced_termination: bool = False
