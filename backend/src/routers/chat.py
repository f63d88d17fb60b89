"""Chat router: the per-session gateway over the conversation orchestrator."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Path
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from src.chat_orchestrator.config import ProviderSettings
from src.chat_orchestrator.agents import AgentDirectory
from src.chat_orchestrator.errors import ConfigurationError, ValidationError
from src.chat_orchestrator.models import ChatState
from src.chat_orchestrator.orchestrator import ConversationOrchestrator
from src.chat_orchestrator.session_store import SessionRegistry
from src.chat_orchestrator.streaming import StreamChannel
from src.chat_orchestrator.tools import default_tool_registry

logger = logging.getLogger(__name__)


class ApiMessages:
    NOT_FOUND = "Not found"
    INTERNAL_ERROR = "Internal server error"
    MISSING_MESSAGE = "Message is required"
    MISSING_MODEL = "Model is required"
    CONFIGURATION_ERROR = "No valid API configuration found"
    PROCESSING_ERROR = "Failed to process message"


router = APIRouter(prefix="/api/chat/{session_id}", tags=["chat"])

_registry: SessionRegistry | None = None


def get_registry() -> SessionRegistry:
    """Process-wide session registry, built from the environment on first use."""
    global _registry
    if _registry is None:
        settings = ProviderSettings.from_env()
        directory = (
            AgentDirectory.from_file(settings.agents_file) if settings.agents_file else AgentDirectory()
        )
        _registry = SessionRegistry(
            directory=directory,
            settings=settings,
            tools=default_tool_registry(),
        )
    return _registry


def set_registry(registry: SessionRegistry | None) -> None:
    global _registry
    _registry = registry


def get_session(
    session_id: str = Path(..., description="Session routing key"),
    registry: SessionRegistry = Depends(get_registry),
) -> ConversationOrchestrator:
    if not registry.is_valid_key(session_id):
        raise ValidationError("Invalid session id")
    return registry.get(session_id)


class ChatRequest(BaseModel):
    """Request body for POST /chat."""

    message: str | None = Field(None, description="User message")
    model: str | None = Field(
        None,
        description="Model override, e.g. 'google-ai-studio/gemini-2.5-flash' or 'gpt-4o-mini'",
    )
    stream: bool = Field(False, description="Stream the reply as plain text chunks")


class ModelRequest(BaseModel):
    """Request body for POST /model."""

    model: str | None = Field(None, description="Model to switch to")


def envelope(
    success: bool,
    state: ChatState | None = None,
    error: str | None = None,
    status_code: int = 200,
) -> JSONResponse:
    """``{success, data?, error?}`` response."""
    body: dict[str, Any] = {"success": success}
    if state is not None:
        body["data"] = state.to_wire()
    if error is not None:
        body["error"] = error
    return JSONResponse(body, status_code=status_code)


async def _relay_body(channel: StreamChannel):
    async for chunk in channel:
        yield chunk.encode("utf-8")


@router.get("/messages")
async def get_messages(session: ConversationOrchestrator = Depends(get_session)) -> JSONResponse:
    """Return the current chat state."""
    return envelope(True, session.state)


@router.post("/chat")
async def chat(
    request: ChatRequest,
    session: ConversationOrchestrator = Depends(get_session),
):
    """Submit a turn; streams the reply when ``stream`` is set."""
    try:
        if request.stream:
            channel = await session.submit_stream(request.message, request.model)
            return StreamingResponse(
                _relay_body(channel),
                media_type="text/plain; charset=utf-8",
                headers={"Cache-Control": "no-cache"},
            )
        result = await session.submit(request.message, request.model)
    except ValidationError:
        return envelope(False, error=ApiMessages.MISSING_MESSAGE, status_code=400)
    except ConfigurationError as e:
        logger.error("Chat configuration error: %s", e.message)
        return envelope(False, error=ApiMessages.CONFIGURATION_ERROR, status_code=500)

    if not result.ok:
        return envelope(False, result.state, ApiMessages.PROCESSING_ERROR, status_code=500)
    return envelope(True, result.state)


@router.delete("/clear")
async def clear(session: ConversationOrchestrator = Depends(get_session)) -> JSONResponse:
    """Empty the message history; the session id is kept."""
    return envelope(True, await session.clear())


@router.post("/model")
async def update_model(
    request: ModelRequest,
    session: ConversationOrchestrator = Depends(get_session),
) -> JSONResponse:
    """Switch the active model without sending a message."""
    try:
        state = await session.set_model(request.model or "")
    except ValidationError:
        return envelope(False, error=ApiMessages.MISSING_MODEL, status_code=400)
    except ConfigurationError as e:
        logger.error("Model update configuration error: %s", e.message)
        return envelope(False, error=ApiMessages.CONFIGURATION_ERROR, status_code=500)
    return envelope(True, state)
