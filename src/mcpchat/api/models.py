"""
Pydantic models for mcpchat API requests and responses.
This module defines the request and response schemas used by the mcpchat API.
"""

from pydantic import (
    BaseModel,
    Field,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class ChatRequest(BaseModel):
    """Incoming user message."""

    message: str = Field(..., min_length=1, description="User question for the assistant")


class ChatResponse(BaseModel):
    """Final answer returned to the caller."""

    response: str


class ModelRequest(BaseModel):
    """Request to switch the completion provider."""

    model: str = Field(..., description="Registered provider name, e.g. 'openai' or 'lm_studio'")


class ModelResponse(BaseModel):
    """Provider now in use."""

    model: str


class HealthResponse(BaseModel):
    """Liveness payload."""

    status: str = "ok"
    connected: bool
    model: str | None = None
