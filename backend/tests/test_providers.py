"""Unit tests for provider adapters: auth, system messages, wire bodies, streaming, tools."""
from __future__ import annotations

import asyncio
import json
import time
import unittest
from typing import Any

import httpx

from src.chat_orchestrator.config import (
    DEFAULT_SYSTEM_PROMPT,
    EMPTY_REPLY,
    GEMINI_ACKNOWLEDGEMENT,
    OPENAI_MAX_TOKENS,
)
from src.chat_orchestrator.errors import ProviderError, ProviderTimeoutError
from src.chat_orchestrator.models import ProviderConfig, ProviderKind, create_message
from src.chat_orchestrator.providers import (
    AuthScheme,
    GeminiProvider,
    OpenAIProvider,
    ToolCallAccumulator,
    classify_auth,
    compose_system_message,
)
from src.chat_orchestrator.tools import BaseTool, StaticToolRegistry


def _openai_config(**overrides: Any) -> ProviderConfig:
    values: dict[str, Any] = {
        "base_url": "https://api.openai.com/v1",
        "api_key": "sk-test",
        "type": ProviderKind.OPENAI,
    }
    values.update(overrides)
    return ProviderConfig(**values)


def _gemini_config(**overrides: Any) -> ProviderConfig:
    values: dict[str, Any] = {
        "base_url": "https://generativelanguage.googleapis.com",
        "api_key": "g-key",
        "type": ProviderKind.GEMINI,
    }
    values.update(overrides)
    return ProviderConfig(**values)


def _completion(content: str | None = None, tool_calls: list[dict] | None = None) -> dict:
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {"choices": [{"message": message}]}


def _sse(*fragments: dict) -> bytes:
    lines = [f"data: {json.dumps(f)}\n\n" for f in fragments]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


class EchoTool(BaseTool):
    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echo the arguments back."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {"a": {"type": "integer"}}}

    async def execute(self, params: dict[str, Any]) -> Any:
        return {"echo": params}


class TestComposeSystemMessage(unittest.TestCase):
    def test_prompt_and_personality(self) -> None:
        self.assertEqual(
            compose_system_message("Be brief.", "cheerful"),
            "Be brief.\n\nYour personality: cheerful",
        )

    def test_personality_only(self) -> None:
        self.assertEqual(compose_system_message(None, "cheerful"), "Your personality: cheerful")

    def test_personality_already_in_prompt_not_repeated(self) -> None:
        self.assertEqual(compose_system_message("You are cheerful.", "cheerful"), "You are cheerful.")

    def test_neither_returns_none(self) -> None:
        self.assertIsNone(compose_system_message(None, None))
        self.assertIsNone(compose_system_message("", ""))


class TestClassifyAuth(unittest.TestCase):
    def test_known_hosts(self) -> None:
        self.assertIs(classify_auth("https://api.openai.com/v1"), AuthScheme.BEARER)
        self.assertIs(classify_auth("https://api.groq.com/openai/v1"), AuthScheme.BEARER)
        self.assertIs(classify_auth("https://myres.openai.azure.com/openai"), AuthScheme.API_KEY_HEADER)
        self.assertIs(classify_auth("https://api.anthropic.com/v1"), AuthScheme.X_API_KEY)

    def test_local_hosts_send_no_auth(self) -> None:
        self.assertIs(classify_auth("http://localhost:11434/v1"), AuthScheme.NONE)
        self.assertIs(classify_auth("http://127.0.0.1:8080"), AuthScheme.NONE)

    def test_unknown_gateway_gets_all_headers(self) -> None:
        self.assertIs(classify_auth("https://llm-proxy.example.com/v1"), AuthScheme.BEARER_AND_KEY_HEADERS)


class TestToolCallAccumulator(unittest.TestCase):
    def test_fragments_merge_into_one_call(self) -> None:
        acc = ToolCallAccumulator()
        acc.feed({"index": 0, "function": {"name": "f"}})
        acc.feed({"index": 0, "function": {"arguments": '{"a":'}})
        acc.feed({"index": 0, "function": {"arguments": "1}"}})
        calls = acc.calls()
        self.assertEqual(len(calls), 1)
        self.assertEqual(calls[0].name, "f")
        self.assertEqual(json.loads(calls[0].arguments), {"a": 1})

    def test_indices_kept_separate_and_ordered(self) -> None:
        acc = ToolCallAccumulator()
        acc.feed({"index": 1, "id": "b", "function": {"name": "second", "arguments": "{}"}})
        acc.feed({"index": 0, "id": "a", "function": {"name": "first", "arguments": "{}"}})
        self.assertEqual([c.id for c in acc.calls()], ["a", "b"])

    def test_later_name_does_not_override(self) -> None:
        acc = ToolCallAccumulator()
        acc.feed({"index": 0, "id": "x", "function": {"name": "f"}})
        acc.feed({"index": 0, "function": {"name": "g"}})
        self.assertEqual(acc.calls()[0].name, "f")


class TestOpenAIProvider(unittest.IsolatedAsyncioTestCase):
    async def test_non_streaming_request_shape(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_completion("Hello!"))

        provider = OpenAIProvider(_openai_config(), transport=httpx.MockTransport(handler))
        history = [create_message("user", "earlier"), create_message("assistant", "reply")]
        response = await provider.send(history, "hi", "gpt-4o-mini")

        self.assertEqual(response.content, "Hello!")
        self.assertEqual(response.tool_calls, [])
        request = seen[0]
        self.assertEqual(str(request.url), "https://api.openai.com/v1/chat/completions")
        self.assertEqual(request.headers["Authorization"], "Bearer sk-test")
        body = json.loads(request.content)
        self.assertEqual(body["model"], "gpt-4o-mini")
        self.assertEqual(body["max_tokens"], OPENAI_MAX_TOKENS)
        self.assertFalse(body["stream"])
        self.assertNotIn("tools", body)
        self.assertEqual(body["messages"][0], {"role": "system", "content": DEFAULT_SYSTEM_PROMPT})
        self.assertEqual([m["content"] for m in body["messages"][1:]], ["earlier", "reply", "hi"])

    async def test_persona_becomes_system_message(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=_completion("ok"))

        config = _openai_config(system_prompt="Be brief.", personality="dry")
        provider = OpenAIProvider(config, transport=httpx.MockTransport(handler))
        await provider.send([], "hi", "gpt-4o")
        self.assertEqual(bodies[0]["messages"][0]["content"], "Be brief.\n\nYour personality: dry")

    async def test_history_window_excludes_hidden_messages(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=_completion("ok"))

        history = [create_message("user", f"m{i}") for i in range(8)]
        history.append(create_message("assistant", "oops", include_in_history=False))
        provider = OpenAIProvider(_openai_config(), transport=httpx.MockTransport(handler))
        await provider.send(history, "now", "gpt-4o")
        contents = [m["content"] for m in bodies[0]["messages"][1:]]
        self.assertEqual(contents, ["m3", "m4", "m5", "m6", "m7", "now"])

    async def test_empty_reply_is_replaced(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=_completion("")))
        provider = OpenAIProvider(_openai_config(), transport=transport)
        response = await provider.send([], "hi", "gpt-4o")
        self.assertEqual(response.content, EMPTY_REPLY)

    async def test_error_status_raises_provider_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="bad key"))
        provider = OpenAIProvider(_openai_config(), transport=transport)
        with self.assertRaises(ProviderError) as ctx:
            await provider.send([], "hi", "gpt-4o")
        self.assertEqual(ctx.exception.status, 401)
        self.assertEqual(ctx.exception.body, "bad key")

    async def test_custom_endpoint_and_azure_header(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_completion("ok"))

        config = _openai_config(
            base_url="https://myres.openai.azure.com/",
            endpoint="/openai/deployments/{model}/chat/completions",
        )
        provider = OpenAIProvider(config, transport=httpx.MockTransport(handler))
        await provider.send([], "hi", "gpt-4o")
        self.assertEqual(
            seen[0].url.path, "/openai/deployments/gpt-4o/chat/completions"
        )
        self.assertEqual(seen[0].headers["api-key"], "sk-test")
        self.assertNotIn("Authorization", seen[0].headers)

    async def test_streaming_relays_deltas_in_order(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            content = _sse(
                {"choices": [{"delta": {"role": "assistant"}}]},
                {"choices": [{"delta": {"content": "Hel"}}]},
                {"choices": [{"delta": {"content": "lo"}}]},
            )
            return httpx.Response(200, content=content, headers={"Content-Type": "text/event-stream"})

        chunks: list[str] = []
        provider = OpenAIProvider(_openai_config(), transport=httpx.MockTransport(handler))
        response = await provider.send([], "hi", "gpt-4o", streaming=True, on_chunk=chunks.append)
        self.assertEqual(chunks, ["Hel", "lo"])
        self.assertEqual(response.content, "Hello")
        self.assertTrue(bodies[0]["stream"])
        self.assertEqual(bodies[0]["max_completion_tokens"], OPENAI_MAX_TOKENS)
        self.assertNotIn("max_tokens", bodies[0])

    async def test_malformed_stream_fragment_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"data: {not json\n\n")

        provider = OpenAIProvider(_openai_config(), transport=httpx.MockTransport(handler))
        with self.assertRaises(ProviderError):
            await provider.send([], "hi", "gpt-4o", streaming=True, on_chunk=lambda c: None)

    async def test_tool_calls_trigger_follow_up(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            bodies.append(body)
            if len(bodies) == 1:
                return httpx.Response(
                    200,
                    json=_completion(
                        None,
                        [{"id": "call_1", "type": "function", "function": {"name": "echo", "arguments": '{"a": 1}'}}],
                    ),
                )
            return httpx.Response(200, json=_completion("The echo says a=1."))

        registry = StaticToolRegistry([EchoTool()])
        provider = OpenAIProvider(_openai_config(), tools=registry, transport=httpx.MockTransport(handler))
        response = await provider.send([], "echo 1", "gpt-4o")

        self.assertEqual(response.content, "The echo says a=1.")
        self.assertEqual(len(response.tool_calls), 1)
        call = response.tool_calls[0]
        self.assertEqual((call.id, call.name, call.arguments), ("call_1", "echo", {"a": 1}))
        self.assertEqual(call.result, {"echo": {"a": 1}})

        self.assertEqual(bodies[0]["tools"][0]["function"]["name"], "echo")
        follow_up = bodies[1]["messages"]
        self.assertEqual(follow_up[0]["role"], "system")
        self.assertEqual(follow_up[-2]["role"], "assistant")
        self.assertEqual(follow_up[-2]["tool_calls"][0]["id"], "call_1")
        self.assertEqual(follow_up[-1]["role"], "tool")
        self.assertEqual(follow_up[-1]["tool_call_id"], "call_1")
        self.assertEqual(json.loads(follow_up[-1]["content"]), {"echo": {"a": 1}})

    async def test_failed_follow_up_raises(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                return httpx.Response(
                    200,
                    json=_completion(
                        None,
                        [{"id": "call_1", "type": "function", "function": {"name": "echo", "arguments": "{}"}}],
                    ),
                )
            return httpx.Response(500, text="upstream exploded")

        registry = StaticToolRegistry([EchoTool()])
        provider = OpenAIProvider(_openai_config(), tools=registry, transport=httpx.MockTransport(handler))
        with self.assertRaises(ProviderError) as ctx:
            await provider.send([], "echo", "gpt-4o")
        self.assertEqual(ctx.exception.status, 500)
        self.assertEqual(calls, 2)

    async def test_text_before_tool_calls_kept_in_streamed_reply(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                content = _sse(
                    {"choices": [{"delta": {"content": "Let me check. "}}]},
                    {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "c0", "function": {"name": "echo", "arguments": "{}"}}]}}]},
                )
                return httpx.Response(200, content=content)
            return httpx.Response(200, json=_completion("All done."))

        chunks: list[str] = []
        registry = StaticToolRegistry([EchoTool()])
        provider = OpenAIProvider(_openai_config(), tools=registry, transport=httpx.MockTransport(handler))
        response = await provider.send([], "echo", "gpt-4o", streaming=True, on_chunk=chunks.append)

        self.assertEqual(chunks, ["Let me check. ", "All done."])
        self.assertEqual(response.content, "".join(chunks))

    async def test_streamed_tool_call_fragments_are_assembled(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                content = _sse(
                    {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "c0", "function": {"name": "echo"}}]}}]},
                    {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": '{"a":'}}]}}]},
                    {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": "2}"}}]}}]},
                )
                return httpx.Response(200, content=content)
            return httpx.Response(200, json=_completion("Done."))

        chunks: list[str] = []
        registry = StaticToolRegistry([EchoTool()])
        provider = OpenAIProvider(_openai_config(), tools=registry, transport=httpx.MockTransport(handler))
        response = await provider.send([], "echo 2", "gpt-4o", streaming=True, on_chunk=chunks.append)

        self.assertEqual(response.tool_calls[0].arguments, {"a": 2})
        self.assertEqual(response.content, "Done.")
        self.assertEqual("".join(chunks), "Done.")


class TestGeminiProvider(unittest.IsolatedAsyncioTestCase):
    async def test_persona_becomes_leading_exchange(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "Hey!"}]}}]})

        config = _gemini_config(system_prompt="Be brief.")
        provider = GeminiProvider(config, transport=httpx.MockTransport(handler))
        response = await provider.send([], "hi", "gemini-2.5-flash")

        self.assertEqual(response.content, "Hey!")
        request = seen[0]
        self.assertEqual(request.url.path, "/v1/models/gemini-2.5-flash:generateContent")
        self.assertEqual(request.url.params["key"], "g-key")
        body = json.loads(request.content)
        self.assertEqual(
            body["contents"],
            [
                {"role": "user", "parts": [{"text": "Be brief."}]},
                {"role": "model", "parts": [{"text": GEMINI_ACKNOWLEDGEMENT}]},
                {"role": "user", "parts": [{"text": "hi"}]},
            ],
        )
        self.assertEqual(body["generationConfig"], {"maxOutputTokens": 8000, "temperature": 0.7})

    async def test_without_persona_and_role_mapping(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}]})

        history = [create_message("user", "q"), create_message("assistant", "a")]
        provider = GeminiProvider(_gemini_config(), transport=httpx.MockTransport(handler))
        await provider.send(history, "next", "gemini-2.0-flash")
        self.assertEqual([c["role"] for c in bodies[0]["contents"]], ["user", "model", "user"])

    async def test_streaming_replays_characters(self) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "abc"}]}}]})
        )
        chunks: list[str] = []
        provider = GeminiProvider(_gemini_config(), transport=transport)
        response = await provider.send([], "hi", "gemini-2.5-flash", streaming=True, on_chunk=chunks.append)
        self.assertEqual(chunks, ["a", "b", "c"])
        self.assertEqual(response.content, "abc")

    async def test_no_candidates_raises(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []}))
        provider = GeminiProvider(_gemini_config(), transport=transport)
        with self.assertRaises(ProviderError):
            await provider.send([], "hi", "gemini-2.5-flash")

    async def test_empty_parts_give_empty_text(self) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"candidates": [{"content": {"parts": []}}]})
        )
        provider = GeminiProvider(_gemini_config(), transport=transport)
        response = await provider.send([], "hi", "gemini-2.5-flash")
        self.assertEqual(response.content, "")

    async def test_deadline_covers_slow_body(self) -> None:
        payload = json.dumps({"candidates": [{"content": {"parts": [{"text": "ok"}]}}]}).encode("utf-8")

        async def trickle():
            for i in range(0, len(payload), 10):
                await asyncio.sleep(0.05)
                yield payload[i : i + 10]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=trickle(), headers={"Content-Type": "application/json"})

        provider = GeminiProvider(_gemini_config(), transport=httpx.MockTransport(handler), timeout=0.2)
        started = time.monotonic()
        with self.assertRaises(ProviderTimeoutError) as ctx:
            await provider.send([], "hi", "gemini-2.5-flash")
        self.assertLess(time.monotonic() - started, 1.0)
        self.assertIsInstance(ctx.exception, TimeoutError)

    async def test_fast_body_within_deadline(self) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}]})
        )
        provider = GeminiProvider(_gemini_config(), transport=transport, timeout=0.5)
        response = await provider.send([], "hi", "gemini-2.5-flash")
        self.assertEqual(response.content, "ok")

    async def test_timeout_is_a_timeout_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        provider = GeminiProvider(_gemini_config(), transport=httpx.MockTransport(handler))
        with self.assertRaises(ProviderTimeoutError) as ctx:
            await provider.send([], "hi", "gemini-2.5-flash")
        self.assertIsInstance(ctx.exception, TimeoutError)
        self.assertIsInstance(ctx.exception, ProviderError)

    async def test_error_status_raises_provider_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(429, text="quota"))
        provider = GeminiProvider(_gemini_config(), transport=transport)
        with self.assertRaises(ProviderError) as ctx:
            await provider.send([], "hi", "gemini-2.5-flash")
        self.assertEqual(ctx.exception.status, 429)


if __name__ == "__main__":
    unittest.main()
