"""Exceptions surfaced by the orchestration core."""


class McpChatError(RuntimeError):
    """Base class for errors that terminate a query."""


class NotConnectedError(McpChatError):
    """Raised when a query is processed before the connection and provider are ready."""


class ProviderFaultError(McpChatError):
    """Raised when the completion backend fails or answers with an unusable shape."""


class NoAssistantContentError(ProviderFaultError):
    """Raised when the provider returns neither text nor tool calls."""
