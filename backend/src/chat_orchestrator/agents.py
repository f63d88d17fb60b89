"""Agent identity directory: maps a model string to a persona and provider config."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from .models import AgentIdentity

logger = logging.getLogger(__name__)


def normalize_model(model: str) -> str:
    """Drop a leading ``provider/`` segment ("google-ai-studio/gemini-2.5-flash" -> "gemini-2.5-flash")."""
    head, sep, tail = model.partition("/")
    return tail if sep and head else model


DEFAULT_AGENTS: tuple[AgentIdentity, ...] = (
    AgentIdentity(
        id="agent-primary-facilitator",
        name="Facilitator",
        model="google-ai-studio/gemini-2.5-flash",
        personality=(
            "A helpful and neutral facilitator that guides the conversation, asks clarifying "
            "questions, and summarizes key points. Aims to ensure a productive discussion."
        ),
        system_prompt=(
            "You are a helpful AI assistant. Your primary role is to facilitate the conversation "
            "between the user and other AI agents. Keep the discussion on track, summarize key "
            "points, and ask clarifying questions when needed."
        ),
    ),
    AgentIdentity(
        id="agent-observer-researcher",
        name="Researcher",
        model="google-ai-studio/gemini-2.5-pro",
        personality=(
            "A fact-focused researcher that provides data, evidence, and sources to support "
            "claims. Prioritizes accuracy and objectivity."
        ),
        system_prompt=(
            "You are an AI assistant specializing in research. When you contribute, provide "
            "factual, data-driven information. If possible, cite sources. Your goal is to ensure "
            "the conversation is well-informed."
        ),
    ),
    AgentIdentity(
        id="agent-observer-creative",
        name="Creative",
        model="google-ai-studio/gemini-2.0-flash",
        personality=(
            "An imaginative and out-of-the-box thinker that suggests innovative ideas, "
            "alternative perspectives, and creative solutions."
        ),
        system_prompt=(
            "You are a creative AI assistant. Your role is to brainstorm, offer novel "
            "perspectives, and challenge conventional thinking. Don't be afraid to suggest "
            "unconventional ideas."
        ),
    ),
)


class AgentDirectory:
    """Read-only lookup table shared by every session."""

    def __init__(self, agents: list[AgentIdentity] | tuple[AgentIdentity, ...] | None = None) -> None:
        self._agents = tuple(DEFAULT_AGENTS if agents is None else agents)

    @classmethod
    def from_file(cls, path: Path) -> AgentDirectory:
        """Load agents from an exported JSON list."""
        raw = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(raw, dict):
            raw = raw.get("agents", [])
        agents = [AgentIdentity.from_dict(item) for item in raw]
        logger.info("Loaded %d agent identities from %s", len(agents), path)
        return cls(agents)

    @property
    def agents(self) -> tuple[AgentIdentity, ...]:
        return self._agents

    def find(self, model: str) -> AgentIdentity | None:
        """First agent whose model matches ``model`` once provider prefixes are stripped."""
        wanted = normalize_model(model)
        for agent in self._agents:
            if normalize_model(agent.model) == wanted:
                return agent
        return None
