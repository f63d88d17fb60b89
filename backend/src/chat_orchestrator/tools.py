"""Tool registry capability and the tool invocation bridge."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from .config import DEFAULT_TOOL_CONCURRENCY, FOLLOW_UP_HISTORY, TOOL_FOLLOW_UP_PROMPT
from .errors import ToolExecutionError
from .models import Message, ToolCall, ToolCallRequest

logger = logging.getLogger(__name__)


class BaseTool(ABC):
    """Base class for tools exposed to the model."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for parameters."""
        ...

    @abstractmethod
    async def execute(self, params: dict[str, Any]) -> Any:
        ...

    def to_tool_schema(self) -> dict[str, Any]:
        """Function-calling schema for the turn-based delta protocol."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class GetTimeTool(BaseTool):
    """Returns current UTC time as ISO string."""

    @property
    def name(self) -> str:
        return "get_time"

    @property
    def description(self) -> str:
        return "Get the current UTC date and time in ISO format."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "required": []}

    async def execute(self, params: dict[str, Any]) -> Any:
        return {"utc": datetime.now(timezone.utc).isoformat()}


class ToolRegistry(ABC):
    """External capability: tool definitions plus ``execute(name, args)``."""

    @abstractmethod
    def definitions(self) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def execute(self, name: str, arguments: dict[str, Any]) -> Any:
        ...


class StaticToolRegistry(ToolRegistry):
    """Registry over a fixed list of in-process tools."""

    def __init__(self, tools: list[BaseTool] | None = None) -> None:
        self._tools = {t.name: t for t in (tools or [])}

    def definitions(self) -> list[dict[str, Any]]:
        return [t.to_tool_schema() for t in self._tools.values()]

    async def execute(self, name: str, arguments: dict[str, Any]) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolExecutionError(f"Unknown tool: {name}")
        return await tool.execute(arguments)


def default_tool_registry() -> StaticToolRegistry:
    return StaticToolRegistry([GetTimeTool()])


def _parse_arguments(raw: str) -> dict[str, Any]:
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ToolExecutionError(f"Invalid tool arguments: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise ToolExecutionError("Tool arguments must be a JSON object")
    return parsed


async def execute_tool_calls(
    requests: list[ToolCallRequest],
    registry: ToolRegistry,
    *,
    max_concurrency: int = DEFAULT_TOOL_CONCURRENCY,
) -> list[ToolCall]:
    """
    Execute a batch of tool calls concurrently, one result per request.

    Order follows ``requests``. A failing call (bad arguments, unknown tool,
    exception inside the tool) gets ``{"error": ...}`` as its result and never
    affects the other calls.
    """
    if not requests:
        return []
    semaphore = asyncio.Semaphore(max(1, min(max_concurrency, len(requests))))

    async def _run(request: ToolCallRequest) -> ToolCall:
        arguments: dict[str, Any] = {}
        async with semaphore:
            try:
                arguments = _parse_arguments(request.arguments)
                result = await registry.execute(request.name, arguments)
            except Exception as exc:
                logger.warning("Tool %s failed: %s", request.name, exc)
                message = exc.message if isinstance(exc, ToolExecutionError) else str(exc)
                result = {"error": f"Failed to execute {request.name}: {message}"}
        return ToolCall(id=request.id, name=request.name, arguments=arguments, result=result)

    return list(await asyncio.gather(*(_run(r) for r in requests)))


def build_follow_up_messages(
    history: list[Message],
    message: str,
    requests: list[ToolCallRequest],
    results: list[ToolCall],
) -> list[dict[str, Any]]:
    """Delta-protocol messages asking for a final answer over tool results."""
    recent = [m for m in history if m.include_in_history][-FOLLOW_UP_HISTORY:]
    messages: list[dict[str, Any]] = [{"role": "system", "content": TOOL_FOLLOW_UP_PROMPT}]
    messages.extend(m.to_chat_dict() for m in recent)
    messages.append({"role": "user", "content": message})
    messages.append(
        {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {
                    "id": r.id,
                    "type": "function",
                    "function": {"name": r.name, "arguments": r.arguments or "{}"},
                }
                for r in requests
            ],
        }
    )
    for request, executed in zip(requests, results):
        messages.append(
            {
                "role": "tool",
                "content": json.dumps(executed.result, default=str),
                "tool_call_id": request.id,
            }
        )
    return messages
