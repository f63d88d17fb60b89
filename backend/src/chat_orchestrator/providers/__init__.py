"""Provider adapters: one per backend wire protocol."""

from .base import (
    AuthScheme,
    ProviderAdapter,
    ProviderResponse,
    classify_auth,
    compose_system_message,
)
from .gemini_provider import GeminiProvider
from .openai_provider import OpenAIProvider, ToolCallAccumulator

__all__ = [
    "AuthScheme",
    "ProviderAdapter",
    "ProviderResponse",
    "classify_auth",
    "compose_system_message",
    "GeminiProvider",
    "OpenAIProvider",
    "ToolCallAccumulator",
]
