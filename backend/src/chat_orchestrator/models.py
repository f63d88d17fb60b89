"""Data models for messages, chat state, tools and provider configuration."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolCall(_WireModel):
    """One executed tool invocation; ``result`` is set once the bridge returns."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: Any | None = None


@dataclass
class ToolCallRequest:
    """A tool call as requested by the backend, arguments still unparsed."""

    id: str
    name: str
    arguments: str = ""


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def _now_ms() -> int:
    return int(time.time() * 1000)


class Message(_WireModel):
    """A single message in a conversation. Immutable once created."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    role: Literal["user", "assistant", "system"]
    content: str = ""
    timestamp: int = Field(default_factory=_now_ms)
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tool_calls: list[ToolCall] | None = None
    visible_in_chat: bool = True
    include_in_history: bool = True

    def to_chat_dict(self) -> dict[str, Any]:
        """Format for LLM chat APIs."""
        return {"role": self.role, "content": self.content or ""}


def create_message(
    role: Literal["user", "assistant", "system"],
    content: str,
    tool_calls: list[ToolCall] | None = None,
    *,
    after: Message | None = None,
    include_in_history: bool = True,
) -> Message:
    """Build a message whose timestamp never precedes ``after``."""
    timestamp = _now_ms()
    if after is not None and timestamp < after.timestamp:
        timestamp = after.timestamp
    return Message(
        role=role,
        content=content,
        timestamp=timestamp,
        tool_calls=tool_calls or None,
        include_in_history=include_in_history,
    )


def prune_messages(messages: list[Message], limit: int) -> list[Message]:
    """Keep the newest ``limit`` messages, dropping from the head."""
    if len(messages) <= limit:
        return list(messages)
    return list(messages[len(messages) - limit :])


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


class ChatState(_WireModel):
    """Per-session conversation state; the unit of durability."""

    messages: list[Message] = Field(default_factory=list)
    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    is_processing: bool = False
    model: str = ""
    streaming_message: str | None = None


# ---------------------------------------------------------------------------
# Providers and agents
# ---------------------------------------------------------------------------


class ProviderKind(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"


@dataclass(frozen=True)
class ProviderConfig:
    """Connection settings for one backend; fixed for an adapter's lifetime."""

    base_url: str
    api_key: str
    type: ProviderKind
    endpoint: str | None = None
    system_prompt: str | None = None
    personality: str | None = None

    def with_persona(self, system_prompt: str | None, personality: str | None) -> ProviderConfig:
        return replace(self, system_prompt=system_prompt, personality=personality)

    def __repr__(self) -> str:
        # never print the key
        return (
            f"ProviderConfig(type={self.type.value!r}, base_url={self.base_url!r}, "
            f"endpoint={self.endpoint!r}, has_key={bool(self.api_key)})"
        )


@dataclass(frozen=True)
class AgentIdentity:
    """A logical assistant persona bound to a model."""

    id: str
    name: str
    model: str
    system_prompt: str | None = None
    personality: str | None = None
    provider: ProviderConfig | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> AgentIdentity:
        """Build from the exported agent JSON shape (camelCase keys accepted)."""
        provider_raw = raw.get("apiConfig") or raw.get("provider")
        provider = None
        if provider_raw:
            provider = ProviderConfig(
                base_url=provider_raw.get("baseURL") or provider_raw.get("base_url") or "",
                api_key=provider_raw.get("apiKey") or provider_raw.get("api_key") or "",
                type=ProviderKind(provider_raw.get("type", "openai")),
                endpoint=provider_raw.get("endpoint"),
            )
        return cls(
            id=str(raw.get("id") or uuid.uuid4()),
            name=raw.get("name", ""),
            model=raw["model"],
            system_prompt=raw.get("systemPrompt") or raw.get("system_prompt"),
            personality=raw.get("personality"),
            provider=provider,
        )
