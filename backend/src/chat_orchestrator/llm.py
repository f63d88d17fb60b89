"""Provider selection: model string -> provider kind, config and adapter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Tuple

import httpx

from .agents import AgentDirectory, normalize_model
from .config import ProviderSettings
from .errors import ConfigurationError
from .models import AgentIdentity, ProviderConfig, ProviderKind
from .providers import GeminiProvider, OpenAIProvider, ProviderAdapter
from .tools import ToolRegistry

_ROUTING_PREFIXES: dict[str, ProviderKind] = {
    "google-ai-studio/": ProviderKind.GEMINI,
    "gemini/": ProviderKind.GEMINI,
    "openai/": ProviderKind.OPENAI,
    "anthropic/": ProviderKind.ANTHROPIC,
}
_OPENAI_NAME_PREFIXES = ("gpt-", "chatgpt", "o1", "o3", "o4")


@dataclass(frozen=True)
class ProviderSelection:
    kind: ProviderKind
    model_name: str
    config: ProviderConfig
    identity: AgentIdentity | None = None


def resolve_model_name(model: str) -> str:
    """
    Underlying model name sent to the backend.

    Only routing prefixes are stripped; other slashes (``meta-llama/...``) are
    part of the model name on OpenAI-compatible gateways.
    """
    for prefix in _ROUTING_PREFIXES:
        if model.startswith(prefix):
            return model[len(prefix) :]
    return model


def infer_provider_kind(model: str) -> ProviderKind | None:
    """Guess the provider family from the model string; ``None`` if it is not recognisable."""
    lowered = model.strip().lower()
    for prefix, kind in _ROUTING_PREFIXES.items():
        if lowered.startswith(prefix):
            return kind
    name = normalize_model(lowered)
    if name.startswith("gemini"):
        return ProviderKind.GEMINI
    if name.startswith("claude"):
        return ProviderKind.ANTHROPIC
    if name.startswith(_OPENAI_NAME_PREFIXES):
        return ProviderKind.OPENAI
    return None


def select_provider(
    model: str,
    directory: AgentDirectory,
    settings: ProviderSettings,
) -> ProviderSelection:
    """
    Resolve the provider for ``model``.

    An agent identity matching the normalized model supplies the persona and,
    if it carries one, its own provider config. Otherwise the provider family is
    inferred from the model string and its base URL / key pair is taken from
    ``settings``. There is no fallback family: an unrecognised model without a
    matching identity is a configuration error.
    """
    if not model or not model.strip():
        raise ConfigurationError("No model given")
    identity = directory.find(model)

    config: ProviderConfig | None = None
    if identity is not None and identity.provider is not None:
        config = identity.provider
    else:
        kind = infer_provider_kind(model)
        if kind is None and identity is not None:
            kind = infer_provider_kind(identity.model)
        if kind is None:
            raise ConfigurationError(
                f"Cannot determine provider for model {model!r}", details={"model": model}
            )
        config = settings.for_kind(kind)
        if config is None:
            raise ConfigurationError(
                f"No API configuration for provider {kind.value!r}",
                details={"model": model, "provider": kind.value},
            )

    if identity is not None:
        config = config.with_persona(identity.system_prompt, identity.personality)
    return ProviderSelection(
        kind=config.type,
        model_name=resolve_model_name(model),
        config=config,
        identity=identity,
    )


def build_adapter(
    config: ProviderConfig,
    tools: ToolRegistry | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderAdapter:
    """One adapter implementation per provider kind."""
    if config.type is ProviderKind.GEMINI:
        return GeminiProvider(config, transport=transport)
    if config.type in (ProviderKind.OPENAI, ProviderKind.ANTHROPIC):
        # Anthropic is reached through its OpenAI-compatible endpoint.
        return OpenAIProvider(config, tools=tools, transport=transport)
    raise ConfigurationError(f"Unsupported provider type: {config.type}")


def resolve_adapter(
    model: str,
    directory: AgentDirectory,
    settings: ProviderSettings,
    tools: ToolRegistry | None = None,
) -> Tuple[ProviderAdapter, ProviderSelection]:
    """Select the provider for ``model`` and build a fresh adapter for it."""
    selection = select_provider(model, directory, settings)
    return build_adapter(selection.config, tools), selection


AdapterFactory = Callable[
    [str, AgentDirectory, ProviderSettings, "ToolRegistry | None"],
    Tuple[ProviderAdapter, ProviderSelection],
]
