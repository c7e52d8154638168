"""Provider registry - identities, alias resolution and adapter construction.

Built-in providers:
    openai      (aliases: gpt)        OpenAI-compatible
    groq                              OpenAI-compatible
    openrouter                        OpenAI-compatible
    anthropic   (aliases: claude)     Anthropic Messages
    google      (aliases: gemini)     Google Generative Language
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Union

import httpx

from ..types import ProviderIdentity
from .anthropic import AnthropicProvider
from .base import ChatProvider
from .google import GoogleProvider
from .openai_compatible import OpenAICompatibleProvider

OPENAI = ProviderIdentity(
    name="openai",
    aliases=("gpt",),
    env_key="OPENAI_API_KEY",
    default_base_url="https://api.openai.com/v1",
    known_models=frozenset({"gpt-4o", "gpt-4o-mini", "gpt-4.1", "gpt-4.1-mini", "gpt-3.5-turbo"}),
)

GROQ = ProviderIdentity(
    name="groq",
    env_key="GROQ_API_KEY",
    default_base_url="https://api.groq.com/openai/v1",
    known_models=frozenset({"llama-3.3-70b-versatile", "llama-3.1-8b-instant"}),
)

OPENROUTER = ProviderIdentity(
    name="openrouter",
    env_key="OPENROUTER_API_KEY",
    default_base_url="https://openrouter.ai/api/v1",
    known_models=frozenset({"openai/gpt-4o-mini", "anthropic/claude-3.5-sonnet"}),
)

ANTHROPIC = ProviderIdentity(
    name="anthropic",
    aliases=("claude",),
    env_key="ANTHROPIC_API_KEY",
    default_base_url="https://api.anthropic.com/v1",
    known_models=frozenset(
        {"claude-3-haiku-20240307", "claude-3-5-sonnet-latest", "claude-3-5-haiku-latest"}
    ),
)

GOOGLE = ProviderIdentity(
    name="google",
    aliases=("gemini",),
    env_key="GOOGLE_AI_API_KEY",
    default_base_url="https://generativelanguage.googleapis.com/v1beta",
    known_models=frozenset({"gemini-1.5-flash", "gemini-1.5-pro", "gemini-2.0-flash"}),
)

ProviderFactory = Callable[..., ChatProvider]

_FACTORIES: dict[str, tuple[ProviderIdentity, ProviderFactory]] = {
    OPENAI.name: (OPENAI, OpenAICompatibleProvider),
    GROQ.name: (GROQ, OpenAICompatibleProvider),
    OPENROUTER.name: (OPENROUTER, OpenAICompatibleProvider),
    ANTHROPIC.name: (ANTHROPIC, AnthropicProvider),
    GOOGLE.name: (GOOGLE, GoogleProvider),
}


def list_identities() -> list[ProviderIdentity]:
    """All registered provider identities."""
    return [identity for identity, _ in _FACTORIES.values()]


def register_provider(identity: ProviderIdentity, factory: ProviderFactory) -> None:
    """Register an extra provider (e.g. a private OpenAI-compatible gateway)."""
    _FACTORIES[identity.name] = (identity, factory)


def resolve_identity(name: str) -> ProviderIdentity:
    """Resolve a provider name or alias.

    Raises:
        ValueError: If no registered provider matches
    """
    for identity, _ in _FACTORIES.values():
        if identity.matches(name):
            return identity
    raise ValueError(
        f"Unknown provider: {name}. Choose from: {sorted(_FACTORIES.keys())}"
    )


def parse_selector(selector: str) -> tuple[ProviderIdentity, str]:
    """Split ``provider:model`` into a resolved identity and a model name.

    Raises:
        ValueError: If the selector is malformed or the provider is unknown
    """
    provider_name, sep, model = selector.partition(":")
    if not sep:
        raise ValueError(f"Invalid model format '{selector}'. Expected 'provider:model'")
    if not model.strip():
        raise ValueError("Model name cannot be empty")
    return resolve_identity(provider_name), model.strip()


def create_provider(
    provider: Union[str, ProviderIdentity],
    api_key: str,
    *,
    base_url: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    **options: Any,
) -> ChatProvider:
    """Build the adapter for ``provider`` (name, alias or identity)."""
    identity = provider if isinstance(provider, ProviderIdentity) else resolve_identity(provider)
    entry = _FACTORIES.get(identity.name)
    if entry is None:
        raise ValueError(f"No adapter registered for provider: {identity.name}")
    _, factory = entry
    return factory(identity, api_key, base_url=base_url, http_client=http_client, **options)


__all__ = [
    "OPENAI",
    "GROQ",
    "OPENROUTER",
    "ANTHROPIC",
    "GOOGLE",
    "ProviderFactory",
    "list_identities",
    "register_provider",
    "resolve_identity",
    "parse_selector",
    "create_provider",
]
