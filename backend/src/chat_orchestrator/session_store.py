"""Session registry: one orchestrator per session, with optional JSON snapshots."""

from __future__ import annotations

import json
import logging
import re
from collections import OrderedDict
from pathlib import Path

from .agents import AgentDirectory
from .config import ProviderSettings
from .llm import AdapterFactory, resolve_adapter
from .models import ChatState
from .orchestrator import ConversationOrchestrator
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


def _session_path(sessions_dir: Path, key: str) -> Path:
    sessions_dir.mkdir(parents=True, exist_ok=True)
    return sessions_dir / f"{key}.json"


def load_state(sessions_dir: Path, key: str) -> ChatState | None:
    """Load a session snapshot; returns None if the file does not exist."""
    path = _session_path(sessions_dir, key)
    if not path.exists():
        return None
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    state = ChatState.model_validate(raw)
    # A turn cannot survive a restart.
    return state.model_copy(update={"is_processing": False, "streaming_message": None})


def save_state(sessions_dir: Path, key: str, state: ChatState) -> None:
    """Persist a session snapshot to {sessions_dir}/{key}.json."""
    path = _session_path(sessions_dir, key)
    tmp = path.with_suffix(".json.tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(state.to_wire(), f, indent=2)
    tmp.replace(path)


class SessionRegistry:
    """
    Maps routing keys to their orchestrators.

    The directory, settings and tool registry are read-only and shared by every
    session; each orchestrator exclusively owns its own ChatState.

    Sessions stay in memory until evicted. With ``max_sessions`` set, opening a
    new session evicts the least recently used idle ones; a busy session is never
    evicted. Evicted sessions with snapshots are reloaded on next access.
    """

    def __init__(
        self,
        *,
        directory: AgentDirectory | None = None,
        settings: ProviderSettings | None = None,
        tools: ToolRegistry | None = None,
        adapter_factory: AdapterFactory = resolve_adapter,
        max_sessions: int | None = None,
    ) -> None:
        self.settings = settings or ProviderSettings()
        self.directory = directory or AgentDirectory()
        self.tools = tools
        self._adapter_factory = adapter_factory
        self.max_sessions = max_sessions if max_sessions is not None else self.settings.max_sessions
        self._sessions: OrderedDict[str, ConversationOrchestrator] = OrderedDict()

    @staticmethod
    def is_valid_key(key: str) -> bool:
        return bool(_SAFE_KEY.match(key))

    def get(self, key: str) -> ConversationOrchestrator:
        """Return the session's orchestrator, creating it on first access."""
        orchestrator = self._sessions.get(key)
        if orchestrator is not None:
            self._sessions.move_to_end(key)
            return orchestrator

        sessions_dir = self.settings.sessions_dir
        state: ChatState | None = None
        on_commit = None
        if sessions_dir is not None:
            state = load_state(sessions_dir, key)

            def on_commit(snapshot: ChatState, _key: str = key, _dir: Path = sessions_dir) -> None:
                save_state(_dir, _key, snapshot)

        orchestrator = ConversationOrchestrator(
            state,
            directory=self.directory,
            settings=self.settings,
            tools=self.tools,
            adapter_factory=self._adapter_factory,
            on_commit=on_commit,
        )
        self._sessions[key] = orchestrator
        logger.info("Opened session %s (state id %s)", key, orchestrator.session_id)
        self._evict_idle()
        return orchestrator

    def evict(self, key: str) -> bool:
        """Drop an idle session from memory; returns False if it is absent or busy."""
        orchestrator = self._sessions.get(key)
        if orchestrator is None or orchestrator.is_busy:
            return False
        del self._sessions[key]
        logger.info("Evicted session %s", key)
        return True

    def _evict_idle(self) -> None:
        if not self.max_sessions:
            return
        # The session just opened (last) is kept.
        for key in list(self._sessions)[:-1]:
            if len(self._sessions) <= self.max_sessions:
                break
            self.evict(key)

    def __contains__(self, key: str) -> bool:
        return key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
