"""Turn-based delta protocol adapter (OpenAI Chat Completions and compatibles)."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from ..config import DEFAULT_SYSTEM_PROMPT, EMPTY_REPLY, OPENAI_MAX_TOKENS, OPENAI_TIMEOUT_SECONDS
from ..errors import ProviderError
from ..models import Message, ProviderConfig, ToolCallRequest
from ..tools import ToolRegistry, build_follow_up_messages, execute_tool_calls
from .base import (
    ChunkCallback,
    ProviderAdapter,
    ProviderResponse,
    auth_headers,
    classify_auth,
    compose_system_message,
    history_window,
    parse_json_body,
)

logger = logging.getLogger(__name__)

_LABEL = "OpenAI"


class ToolCallAccumulator:
    """Rebuilds complete tool calls from streamed deltas keyed by index."""

    def __init__(self) -> None:
        self._calls: dict[int, ToolCallRequest] = {}

    def feed(self, delta: dict[str, Any]) -> None:
        idx = delta.get("index", 0)
        fn = delta.get("function") or {}
        name = fn.get("name") or ""
        arguments = fn.get("arguments") or ""
        call = self._calls.get(idx)
        if call is None:
            self._calls[idx] = ToolCallRequest(
                id=delta.get("id") or f"call_{idx}",
                name=name,
                arguments=arguments,
            )
            return
        if name and not call.name:
            call.name = name
        if arguments:
            call.arguments += arguments

    def calls(self) -> list[ToolCallRequest]:
        return [self._calls[i] for i in sorted(self._calls)]


class OpenAIProvider(ProviderAdapter):
    """Adapter for the OpenAI-style ``/chat/completions`` wire protocol."""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        tools: ToolRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config, transport=transport)
        self.tools = tools
        self.auth_scheme = classify_auth(config.base_url)
        self._headers = {
            "Content-Type": "application/json",
            **auth_headers(self.auth_scheme, config.api_key),
        }
        logger.debug("OpenAI adapter for %s uses %s auth", config.base_url, self.auth_scheme.value)

    def _url(self, model_name: str) -> str:
        endpoint = self.config.endpoint or "/chat/completions"
        return f"{self.config.base_url.rstrip('/')}{endpoint.replace('{model}', model_name)}"

    def _build_messages(self, history: list[Message], message: str) -> list[dict[str, Any]]:
        system_message = compose_system_message(self.config.system_prompt, self.config.personality)
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system_message or DEFAULT_SYSTEM_PROMPT}
        ]
        messages.extend(m.to_chat_dict() for m in history_window(history))
        messages.append({"role": "user", "content": message})
        return messages

    def _body(self, model_name: str, messages: list[dict[str, Any]], streaming: bool) -> dict[str, Any]:
        body: dict[str, Any] = {"model": model_name, "messages": messages, "stream": streaming}
        if streaming:
            body["max_completion_tokens"] = OPENAI_MAX_TOKENS
        else:
            body["max_tokens"] = OPENAI_MAX_TOKENS
        definitions = self.tools.definitions() if self.tools is not None else []
        if definitions:
            body["tools"] = definitions
        return body

    async def send(
        self,
        history: list[Message],
        message: str,
        model_name: str,
        *,
        streaming: bool = False,
        on_chunk: ChunkCallback | None = None,
    ) -> ProviderResponse:
        messages = self._build_messages(history, message)
        body = self._body(model_name, messages, streaming)
        logger.debug("OpenAI request: model=%s messages=%d stream=%s", model_name, len(messages), streaming)

        if streaming:
            content, requests = await self._stream(body, on_chunk)
        else:
            content, requests = await self._complete(body)

        if not requests:
            return ProviderResponse(content=content)

        if self.tools is None:
            raise ProviderError("Backend requested tools but no tool registry is configured")
        executed = await execute_tool_calls(requests, self.tools)
        follow_up = build_follow_up_messages(history, message, requests, executed)
        final, _ = await self._complete(
            {"model": model_name, "messages": follow_up, "max_tokens": OPENAI_MAX_TOKENS, "stream": False},
        )
        if streaming:
            if on_chunk is not None and final:
                on_chunk(final)
            # Text streamed before the tool calls was already relayed; keep it.
            final = content + final
        return ProviderResponse(content=final, tool_calls=executed)

    async def _complete(self, body: dict[str, Any]) -> tuple[str, list[ToolCallRequest]]:
        """Single-shot call; returns (content, requested tool calls)."""
        try:
            async with self._client(OPENAI_TIMEOUT_SECONDS) as client:
                response = await client.post(self._url(body["model"]), json=body, headers=self._headers)
                await self._raise_for_status(response, _LABEL)
                data = parse_json_body(response, _LABEL)
        except httpx.HTTPError as exc:
            raise ProviderError(f"{_LABEL} request failed: {exc}", None, str(exc)) from exc

        choices = data.get("choices") or []
        if not choices:
            raise ProviderError(f"{_LABEL} response has no choices", 200, json.dumps(data))
        choice_message = choices[0].get("message") or {}
        requests = [
            ToolCallRequest(
                id=tc.get("id") or f"call_{i}",
                name=(tc.get("function") or {}).get("name", ""),
                arguments=(tc.get("function") or {}).get("arguments") or "",
            )
            for i, tc in enumerate(choice_message.get("tool_calls") or [])
        ]
        content = choice_message.get("content") or ""
        if isinstance(content, list):
            # Multi-part content; join text fragments
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in content
            )
        if not content and not requests:
            content = EMPTY_REPLY
        return content, requests

    async def _stream(
        self,
        body: dict[str, Any],
        on_chunk: ChunkCallback | None,
    ) -> tuple[str, list[ToolCallRequest]]:
        """Consume a server-sent-event stream of deltas."""
        content_parts: list[str] = []
        accumulator = ToolCallAccumulator()
        try:
            async with self._client(OPENAI_TIMEOUT_SECONDS) as client:
                async with client.stream(
                    "POST", self._url(body["model"]), json=body, headers=self._headers
                ) as response:
                    await self._raise_for_status(response, _LABEL)
                    async for line in response.aiter_lines():
                        payload = _sse_payload(line)
                        if payload is None:
                            continue
                        if payload == "[DONE]":
                            break
                        try:
                            fragment = json.loads(payload)
                        except json.JSONDecodeError as exc:
                            raise ProviderError(f"{_LABEL} sent a malformed stream fragment", 200, payload) from exc
                        choices = fragment.get("choices") or []
                        if not choices:
                            continue
                        delta = choices[0].get("delta") or {}
                        text = delta.get("content")
                        if text:
                            content_parts.append(text)
                            if on_chunk is not None:
                                on_chunk(text)
                        for tc in delta.get("tool_calls") or []:
                            accumulator.feed(tc)
        except httpx.HTTPError as exc:
            raise ProviderError(f"{_LABEL} stream failed: {exc}", None, str(exc)) from exc
        return "".join(content_parts), accumulator.calls()


def _sse_payload(line: str) -> str | None:
    line = line.strip()
    if not line.startswith("data:"):
        return None
    return line[len("data:") :].strip() or None
