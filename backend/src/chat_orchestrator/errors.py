"""Exception hierarchy for the chat service."""

from __future__ import annotations

from typing import Any


class ChatServiceError(Exception):
    """Base exception for all chat service errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(ChatServiceError):
    """Empty or missing user input."""


class ConfigurationError(ChatServiceError):
    """No provider configuration could be resolved for a model."""


class ProviderError(ChatServiceError):
    """Backend returned a non-success status or a malformed body."""

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        super().__init__(message, details={"status": status, "body": body})
        self.status = status
        self.body = body


class ProviderTimeoutError(ProviderError, TimeoutError):
    """Backend did not answer within the request timeout."""


class ToolExecutionError(ChatServiceError):
    """A single tool call failed; folded into that call's result."""


class StreamWriteError(ChatServiceError):
    """The output channel of a streaming turn is no longer writable."""
