"""Providers module - one adapter per vendor family.

- ChatProvider: Capability contract (identity, completion, streaming, models, health)
- OpenAICompatibleProvider: OpenAI, Groq, OpenRouter and compatible gateways
- AnthropicProvider: Claude via the Messages API
- GoogleProvider: Gemini via generateContent
- registry: Built-in identities, alias resolution and create_provider()
"""

from .anthropic import AnthropicProvider
from .base import ChatProvider, HttpChatProvider
from .google import GoogleProvider
from .openai_compatible import OpenAICompatibleProvider
from .registry import (
    ANTHROPIC,
    GOOGLE,
    GROQ,
    OPENAI,
    OPENROUTER,
    create_provider,
    list_identities,
    parse_selector,
    register_provider,
    resolve_identity,
)

__all__ = [
    "ChatProvider",
    "HttpChatProvider",
    "OpenAICompatibleProvider",
    "AnthropicProvider",
    "GoogleProvider",
    "OPENAI",
    "GROQ",
    "OPENROUTER",
    "ANTHROPIC",
    "GOOGLE",
    "create_provider",
    "list_identities",
    "parse_selector",
    "register_provider",
    "resolve_identity",
]
