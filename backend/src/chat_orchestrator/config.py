"""Orchestrator configuration: paths, limits and provider endpoints."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from main_config import (
    AGENTS_FILE as _AGENTS_FILE,
    DB_DIR as _DB_DIR,
    SESSIONS_DIR as _SESSIONS_DIR,
)

from .models import ProviderConfig, ProviderKind

load_dotenv()

# Path objects for use in this package (main_config uses os.path strings)
DB_DIR = Path(_DB_DIR)
SESSIONS_DIR = Path(_SESSIONS_DIR)
AGENTS_FILE = Path(_AGENTS_FILE)

DEFAULT_MODEL = "google-ai-studio/gemini-2.5-flash"
MAX_MESSAGES = 200
HISTORY_WINDOW = 5
FOLLOW_UP_HISTORY = 3
DEFAULT_TOOL_CONCURRENCY = 4

OPENAI_MAX_TOKENS = 16000
GEMINI_MAX_OUTPUT_TOKENS = 8000
GEMINI_TEMPERATURE = 0.7
GEMINI_TIMEOUT_SECONDS = 30.0
OPENAI_TIMEOUT_SECONDS = 120.0

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant that helps users build and deploy web applications. "
    "You provide clear, concise guidance on development, deployment, and troubleshooting. "
    "Keep responses practical and actionable."
)
TOOL_FOLLOW_UP_PROMPT = "You are a helpful AI assistant. Respond naturally to the tool results."
GEMINI_ACKNOWLEDGEMENT = "Understood. I will follow these guidelines."
EMPTY_REPLY = "I apologize, but I encountered an issue."
ERROR_REPLY = "Sorry, I encountered an error processing your request."

DEFAULT_BASE_URLS: dict[ProviderKind, str] = {
    ProviderKind.OPENAI: "https://api.openai.com/v1",
    ProviderKind.GEMINI: "https://generativelanguage.googleapis.com",
    ProviderKind.ANTHROPIC: "https://api.anthropic.com/v1",
}

_LOCAL_HOST_PATTERNS = ("localhost", "127.0.0.1", "ollama")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ProviderSettings:
    """Base URL / API key pairs keyed by provider type, plus session persistence."""

    providers: dict[ProviderKind, ProviderConfig] = field(default_factory=dict)
    sessions_dir: Path | None = None
    agents_file: Path | None = None
    max_sessions: int | None = None

    @classmethod
    def from_env(cls) -> ProviderSettings:
        """Read provider endpoints from the environment (.env already loaded)."""
        keys = {
            ProviderKind.OPENAI: os.getenv("OPENAI_API_KEY", ""),
            ProviderKind.GEMINI: os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY", ""),
            ProviderKind.ANTHROPIC: os.getenv("ANTHROPIC_API_KEY", ""),
        }
        providers: dict[ProviderKind, ProviderConfig] = {}
        for kind, api_key in keys.items():
            base_url = os.getenv(f"{kind.name}_BASE_URL") or DEFAULT_BASE_URLS[kind]
            is_local = any(p in base_url for p in _LOCAL_HOST_PATTERNS)
            if not api_key and not is_local:
                continue
            providers[kind] = ProviderConfig(base_url=base_url, api_key=api_key, type=kind)

        agents_file = os.getenv("AGENTS_FILE")
        max_sessions = int(os.getenv("CHAT_MAX_SESSIONS", "0")) or None
        return cls(
            providers=providers,
            sessions_dir=SESSIONS_DIR if _env_bool("CHAT_SESSIONS_PERSIST") else None,
            agents_file=Path(agents_file) if agents_file else (AGENTS_FILE if AGENTS_FILE.exists() else None),
            max_sessions=max_sessions,
        )

    def for_kind(self, kind: ProviderKind) -> ProviderConfig | None:
        return self.providers.get(kind)
