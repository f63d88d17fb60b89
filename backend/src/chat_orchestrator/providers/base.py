"""Abstract provider adapter interface for the chat orchestrator."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from ..config import HISTORY_WINDOW
from ..errors import ProviderError
from ..models import Message, ProviderConfig, ToolCall

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]


@dataclass
class ProviderResponse:
    """Normalized result of one provider round-trip."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)


class AuthScheme(str, Enum):
    BEARER = "bearer"
    API_KEY_HEADER = "api_key_header"
    X_API_KEY = "x_api_key"
    BEARER_AND_KEY_HEADERS = "bearer_and_key_headers"
    QUERY_KEY = "query_key"
    NONE = "none"


_BEARER_HOSTS = ("api.openai.com", "api.x.ai", "xai-api", "api.groq.com", "api.deepseek.com")
_LOCAL_HOSTS = ("localhost", "127.0.0.1", "ollama")


def classify_auth(base_url: str) -> AuthScheme:
    """Pick the auth header scheme for an OpenAI-compatible base URL."""
    if "azure.com" in base_url:
        return AuthScheme.API_KEY_HEADER
    if "api.anthropic.com" in base_url:
        return AuthScheme.X_API_KEY
    if any(host in base_url for host in _BEARER_HOSTS):
        return AuthScheme.BEARER
    if any(host in base_url for host in _LOCAL_HOSTS):
        return AuthScheme.NONE
    # Proxies and custom gateways: send every common header.
    return AuthScheme.BEARER_AND_KEY_HEADERS


def auth_headers(scheme: AuthScheme, api_key: str) -> dict[str, str]:
    if scheme is AuthScheme.BEARER:
        return {"Authorization": f"Bearer {api_key}"}
    if scheme is AuthScheme.API_KEY_HEADER:
        return {"api-key": api_key}
    if scheme is AuthScheme.X_API_KEY:
        return {"x-api-key": api_key}
    if scheme is AuthScheme.BEARER_AND_KEY_HEADERS:
        return {
            "Authorization": f"Bearer {api_key}",
            "X-API-Key": api_key,
            "api-key": api_key,
        }
    return {}


def compose_system_message(system_prompt: str | None, personality: str | None) -> str | None:
    """Combine an agent's system prompt and personality into one instruction."""
    system_message = system_prompt or ""
    if personality and personality not in system_message:
        if system_message:
            system_message = f"{system_message}\n\nYour personality: {personality}"
        else:
            system_message = f"Your personality: {personality}"
    return system_message or None


def history_window(history: list[Message], size: int = HISTORY_WINDOW) -> list[Message]:
    """The last ``size`` messages that belong in the model's context."""
    eligible = [m for m in history if m.include_in_history]
    if size <= 0:
        return []
    return eligible[-size:]


class ProviderAdapter(ABC):
    """
    Translates the normalized request into one backend's wire protocol.

    The orchestrator only depends on this interface.
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport

    @property
    def kind(self) -> str:
        return self.config.type.value

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    @staticmethod
    async def _raise_for_status(response: httpx.Response, label: str) -> None:
        if response.is_success:
            return
        body = (await response.aread()).decode("utf-8", errors="replace")
        logger.warning("%s request failed with status %s", label, response.status_code)
        raise ProviderError(
            f"{label} API error: {response.status_code}",
            response.status_code,
            body,
        )

    @abstractmethod
    async def send(
        self,
        history: list[Message],
        message: str,
        model_name: str,
        *,
        streaming: bool = False,
        on_chunk: ChunkCallback | None = None,
    ) -> ProviderResponse:
        """
        Run one turn against the backend.

        ``history`` excludes the current ``message``. When ``streaming`` is set,
        partial output is passed to ``on_chunk`` in order; the returned content
        is always the complete final text.
        """
        ...


def parse_json_body(response: httpx.Response, label: str) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise ProviderError(f"{label} returned a non-JSON body", response.status_code, response.text) from exc
    if not isinstance(data, dict):
        raise ProviderError(f"{label} returned an unexpected body", response.status_code, response.text)
    return data
