"""Google Gemini provider: role-remapped batch protocol over ``generateContent``."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from ..config import (
    GEMINI_ACKNOWLEDGEMENT,
    GEMINI_MAX_OUTPUT_TOKENS,
    GEMINI_TEMPERATURE,
    GEMINI_TIMEOUT_SECONDS,
)
from ..errors import ProviderError, ProviderTimeoutError
from ..models import Message, ProviderConfig
from .base import (
    AuthScheme,
    ChunkCallback,
    ProviderAdapter,
    ProviderResponse,
    compose_system_message,
    history_window,
    parse_json_body,
)

logger = logging.getLogger(__name__)

_LABEL = "Gemini"


class GeminiProvider(ProviderAdapter):
    """
    Gemini has no ``system`` role and no token stream here: instructions are
    sent as a leading user/model exchange, and streaming is simulated by
    replaying the final text one character at a time.
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = GEMINI_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(config, transport=transport)
        self.auth_scheme = AuthScheme.QUERY_KEY
        self.timeout = timeout

    def _url(self, model_name: str) -> str:
        endpoint = self.config.endpoint or "/v1/models/{model}:generateContent"
        return f"{self.config.base_url.rstrip('/')}{endpoint.replace('{model}', model_name)}"

    def _to_gemini_contents(self, history: list[Message], message: str) -> list[dict[str, Any]]:
        """Convert history and the current message into Gemini ``contents``."""
        contents: list[dict[str, Any]] = []
        system_message = compose_system_message(self.config.system_prompt, self.config.personality)
        if system_message:
            contents.append({"role": "user", "parts": [{"text": system_message}]})
            contents.append({"role": "model", "parts": [{"text": GEMINI_ACKNOWLEDGEMENT}]})
        for m in history_window(history):
            role = "user" if m.role == "user" else "model"
            contents.append({"role": role, "parts": [{"text": m.content}]})
        contents.append({"role": "user", "parts": [{"text": message}]})
        return contents

    async def send(
        self,
        history: list[Message],
        message: str,
        model_name: str,
        *,
        streaming: bool = False,
        on_chunk: ChunkCallback | None = None,
    ) -> ProviderResponse:
        contents = self._to_gemini_contents(history, message)
        body = {
            "contents": contents,
            "generationConfig": {
                "maxOutputTokens": GEMINI_MAX_OUTPUT_TOKENS,
                "temperature": GEMINI_TEMPERATURE,
            },
        }
        logger.debug("Gemini request: model=%s contents=%d", model_name, len(contents))

        try:
            # Deadline covers connect, upload and the whole body, not each step.
            data = await asyncio.wait_for(self._post(model_name, body), timeout=self.timeout)
        except ProviderError:
            raise
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise ProviderTimeoutError(
                f"{_LABEL} request timed out after {self.timeout:g}s", None, str(exc)
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{_LABEL} request failed: {exc}", None, str(exc)) from exc

        content = self._extract_text(data)
        if streaming and on_chunk is not None:
            for char in content:
                on_chunk(char)
                await asyncio.sleep(0)
        return ProviderResponse(content=content)

    async def _post(self, model_name: str, body: dict[str, Any]) -> dict[str, Any]:
        async with self._client(self.timeout) as client:
            response = await client.post(
                self._url(model_name),
                params={"key": self.config.api_key},
                json=body,
                headers={"Content-Type": "application/json"},
            )
            await self._raise_for_status(response, _LABEL)
            return parse_json_body(response, _LABEL)

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError(f"{_LABEL} response has no candidates", 200, json.dumps(data))
        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts:
            return ""
        return parts[0].get("text") or ""
