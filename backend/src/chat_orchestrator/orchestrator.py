"""Conversation orchestrator: owns one session's ChatState and drives its turns."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from .agents import AgentDirectory
from .config import DEFAULT_MODEL, ERROR_REPLY, MAX_MESSAGES, ProviderSettings
from .errors import ChatServiceError, ConfigurationError, StreamWriteError, ValidationError
from .llm import AdapterFactory, ProviderSelection, resolve_adapter
from .models import ChatState, Message, create_message, prune_messages
from .providers import ProviderAdapter, ProviderResponse
from .streaming import StreamChannel
from .tools import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    """Outcome of a non-streaming turn."""

    state: ChatState
    ok: bool


@dataclass(frozen=True)
class _Turn:
    """A validated turn, bound to the adapter that will serve it."""

    text: str
    history: list[Message]
    adapter: ProviderAdapter
    model_name: str


class ConversationOrchestrator:
    """
    Single writer for one session.

    Every mutation runs under ``self._lock``; a streaming turn keeps the lock
    until its relay task has finalized the state, so turn N+1 never observes
    turn N half-done. Reads (``state``) return the latest immutable snapshot.
    """

    def __init__(
        self,
        state: ChatState | None = None,
        *,
        directory: AgentDirectory | None = None,
        settings: ProviderSettings | None = None,
        tools: ToolRegistry | None = None,
        adapter_factory: AdapterFactory = resolve_adapter,
        on_commit: Callable[[ChatState], None] | None = None,
        max_messages: int = MAX_MESSAGES,
    ) -> None:
        self._state = state or ChatState(model=DEFAULT_MODEL)
        if not self._state.model:
            self._state = self._state.model_copy(update={"model": DEFAULT_MODEL})
        self.directory = directory or AgentDirectory()
        self.settings = settings or ProviderSettings()
        self.tools = tools
        self._adapter_factory = adapter_factory
        self._on_commit = on_commit
        self._max_messages = max_messages
        self._lock = asyncio.Lock()
        self._adapter: ProviderAdapter | None = None
        self._selection: ProviderSelection | None = None
        self._relay: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def session_id(self) -> str:
        return self._state.session_id

    @property
    def is_busy(self) -> bool:
        """True while a turn or another mutation holds the session."""
        return self._lock.locked()

    @property
    def adapter(self) -> ProviderAdapter | None:
        return self._adapter

    @property
    def selection(self) -> ProviderSelection | None:
        return self._selection

    def _commit(self, persist: bool = True, **changes: object) -> ChatState:
        """Replace the state snapshot, enforcing the message cap."""
        messages = changes.get("messages")
        if messages is not None:
            kept = prune_messages(messages, self._max_messages)  # type: ignore[arg-type]
            dropped = len(messages) - len(kept)  # type: ignore[arg-type]
            if dropped:
                logger.warning(
                    "Pruned %d old messages from session %s to fit storage limits",
                    dropped,
                    self._state.session_id,
                )
            changes["messages"] = kept
        self._state = self._state.model_copy(update=changes)
        if persist and self._on_commit is not None:
            try:
                self._on_commit(self._state)
            except Exception:
                logger.exception("Persisting session %s failed", self._state.session_id)
        return self._state

    # ------------------------------------------------------------------
    # Model switching
    # ------------------------------------------------------------------

    def _resolve(self, model: str) -> tuple[ProviderAdapter, ProviderSelection]:
        return self._adapter_factory(model, self.directory, self.settings, self.tools)

    def _switch_model(self, model: str) -> None:
        """Resolve first, then swap model and adapter in one step."""
        adapter, selection = self._resolve(model)
        if adapter is None or selection is None:
            raise ConfigurationError(f"No provider resolved for model {model!r}", details={"model": model})
        previous = self._state.model
        self._adapter, self._selection = adapter, selection
        if model != previous:
            self._commit(model=model)
            logger.info(
                "Session %s switched model %s -> %s (%s)",
                self._state.session_id,
                previous,
                model,
                selection.kind.value,
            )

    def _prepare_model(self, model: str | None) -> tuple[ProviderAdapter, ProviderSelection]:
        if model and model != self._state.model:
            self._switch_model(model)
        elif self._adapter is None:
            self._switch_model(self._state.model)
        if self._adapter is None or self._selection is None:
            raise ConfigurationError("No provider resolved for this session")
        return self._adapter, self._selection

    async def set_model(self, model: str) -> ChatState:
        """Switch the active model without sending a message."""
        if not model or not model.strip():
            raise ValidationError("Model is required")
        async with self._lock:
            self._switch_model(model.strip())
            return self._state

    async def clear(self) -> ChatState:
        """Drop all history; the session id and model are kept."""
        async with self._lock:
            return self._commit(messages=[], streaming_message=None)

    async def wait_idle(self) -> None:
        """Wait for an in-flight streaming turn to settle."""
        async with self._lock:
            return None

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def _begin_turn(self, message: str | None, model: str | None) -> _Turn:
        """Validate, switch model if asked, append the user message. Caller holds the lock."""
        text = (message or "").strip()
        if not text:
            raise ValidationError("Message is required")
        adapter, selection = self._prepare_model(model.strip() if model else None)
        history = list(self._state.messages)
        last = history[-1] if history else None
        user_message = create_message("user", text, after=last)
        self._commit(messages=[*history, user_message], is_processing=True)
        return _Turn(text, history, adapter, selection.model_name)

    def _finish_turn(self, response: ProviderResponse | None) -> ChatState:
        """Append the reply (or the synthetic error reply) and return to idle."""
        last = self._state.messages[-1] if self._state.messages else None
        if response is None:
            reply = create_message("assistant", ERROR_REPLY, after=last, include_in_history=False)
        else:
            reply = create_message("assistant", response.content, response.tool_calls, after=last)
        return self._commit(
            messages=[*self._state.messages, reply],
            is_processing=False,
            streaming_message=None,
        )

    async def submit(self, message: str | None, model: str | None = None) -> TurnResult:
        """Run one non-streaming turn."""
        async with self._lock:
            turn = self._begin_turn(message, model)
            try:
                response = await turn.adapter.send(turn.history, turn.text, turn.model_name)
            except Exception as exc:
                self._log_turn_failure(exc)
                return TurnResult(state=self._finish_turn(None), ok=False)
            return TurnResult(state=self._finish_turn(response), ok=True)

    async def submit_stream(self, message: str | None, model: str | None = None) -> StreamChannel:
        """
        Start a streaming turn and return its output channel immediately.

        Validation and configuration errors are raised here, before any state
        changes. Everything after the user message is appended happens in the
        relay task, which releases the session lock when it is done.
        """
        await self._lock.acquire()
        try:
            turn = self._begin_turn(message, model)
        except BaseException:
            self._lock.release()
            raise
        channel = StreamChannel()
        self._relay = asyncio.create_task(self._run_relay(turn, channel))
        return channel

    async def _run_relay(self, turn: _Turn, channel: StreamChannel) -> None:
        writable = True

        def on_chunk(chunk: str) -> None:
            nonlocal writable
            self._commit(
                persist=False,
                streaming_message=(self._state.streaming_message or "") + chunk,
            )
            if not writable:
                return
            try:
                channel.send(chunk)
            except StreamWriteError as exc:
                writable = False
                logger.warning("Session %s stream write failed: %s", self._state.session_id, exc)

        try:
            self._commit(persist=False, streaming_message="")
            response: ProviderResponse | None = None
            try:
                response = await turn.adapter.send(
                    turn.history,
                    turn.text,
                    turn.model_name,
                    streaming=True,
                    on_chunk=on_chunk,
                )
            except Exception as exc:
                self._log_turn_failure(exc)
                if writable:
                    try:
                        channel.send(ERROR_REPLY)
                    except StreamWriteError:
                        logger.warning("Session %s could not write error reply", self._state.session_id)
            self._finish_turn(response)
        finally:
            channel.close()
            self._relay = None
            self._lock.release()

    def _log_turn_failure(self, exc: Exception) -> None:
        if isinstance(exc, ChatServiceError):
            logger.error("Turn failed in session %s: %s", self._state.session_id, exc.message)
        else:
            logger.exception("Unexpected error in session %s", self._state.session_id)
