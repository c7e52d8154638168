"""Unified types - vendor-neutral request/response model.

This module defines the shapes every provider adapter maps to and from:
- ChatRole/ChatMessage: A single conversation turn
- ChatRequest/ChatRequestBuilder: Immutable request plus its accumulating builder
- TokenUsage/ChatResponse: Result of a one-shot completion
- ChatStreamEvent: Token / Done / Error events of a streaming completion
- ProviderIdentity: Static provider metadata
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Optional

from .errors import InvalidRequestError

if TYPE_CHECKING:
    from .errors import LlmError


class ChatRole(str, Enum):
    """Role of the message sender."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    """A chat message.

    Attributes:
        role: Message role (system, user, assistant)
        content: Message text
    """

    role: ChatRole
    content: str

    def to_dict(self) -> dict[str, str]:
        """Convert to the common ``{"role", "content"}`` wire shape."""
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class ChatRequest:
    """An immutable chat completion request.

    Build one with :class:`ChatRequestBuilder`; construction validates the
    generic parameter ranges. Vendor-specific limits are left to adapters.
    """

    messages: tuple[ChatMessage, ...]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    stop: tuple[str, ...] = ()
    stream: bool = False
    extra_params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # frozen: coerce caller-supplied lists and dicts to read-only containers
        object.__setattr__(self, "messages", tuple(self.messages))
        object.__setattr__(self, "stop", tuple(self.stop))
        object.__setattr__(self, "extra_params", MappingProxyType(dict(self.extra_params)))
        if not self.messages:
            raise InvalidRequestError("A chat request needs at least one message")
        _check_range("temperature", self.temperature, 0.0, 2.0)
        _check_range("top_p", self.top_p, 0.0, 1.0)
        _check_range("frequency_penalty", self.frequency_penalty, -2.0, 2.0)
        _check_range("presence_penalty", self.presence_penalty, -2.0, 2.0)
        if self.max_tokens is not None and self.max_tokens < 1:
            raise InvalidRequestError(f"max_tokens must be >= 1, got {self.max_tokens}")
        for seq in self.stop:
            if not seq:
                raise InvalidRequestError("Stop sequences must be non-empty strings")

    @property
    def system_prompt(self) -> Optional[str]:
        """All system messages joined by blank lines, or None."""
        parts = [m.content for m in self.messages if m.role is ChatRole.SYSTEM]
        return "\n\n".join(parts) if parts else None

    def with_stream(self, stream: bool) -> ChatRequest:
        """Return a copy with the stream flag set."""
        return ChatRequest(
            messages=self.messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            top_p=self.top_p,
            frequency_penalty=self.frequency_penalty,
            presence_penalty=self.presence_penalty,
            stop=self.stop,
            stream=stream,
            extra_params=self.extra_params,
        )


def _check_range(name: str, value: Optional[float], low: float, high: float) -> None:
    if value is not None and not (low <= value <= high):
        raise InvalidRequestError(f"{name} must be between {low} and {high}, got {value}")


class ChatRequestBuilder:
    """Accumulating builder for :class:`ChatRequest`.

    Example:
        request = (
            ChatRequestBuilder()
            .system("You are terse.")
            .user("Name a prime.")
            .temperature(0.2)
            .build()
        )
    """

    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []
        self._params: dict[str, Any] = {}
        self._stop: list[str] = []
        self._extra: dict[str, Any] = {}

    def add_message(self, role: ChatRole | str, content: str) -> ChatRequestBuilder:
        self._messages.append(ChatMessage(role=ChatRole(role), content=content))
        return self

    def system(self, content: str) -> ChatRequestBuilder:
        return self.add_message(ChatRole.SYSTEM, content)

    def user(self, content: str) -> ChatRequestBuilder:
        return self.add_message(ChatRole.USER, content)

    def assistant(self, content: str) -> ChatRequestBuilder:
        return self.add_message(ChatRole.ASSISTANT, content)

    def temperature(self, value: float) -> ChatRequestBuilder:
        self._params["temperature"] = value
        return self

    def max_tokens(self, value: int) -> ChatRequestBuilder:
        self._params["max_tokens"] = value
        return self

    def top_p(self, value: float) -> ChatRequestBuilder:
        self._params["top_p"] = value
        return self

    def frequency_penalty(self, value: float) -> ChatRequestBuilder:
        self._params["frequency_penalty"] = value
        return self

    def presence_penalty(self, value: float) -> ChatRequestBuilder:
        self._params["presence_penalty"] = value
        return self

    def stop(self, *sequences: str) -> ChatRequestBuilder:
        self._stop.extend(sequences)
        return self

    def stream(self, enabled: bool = True) -> ChatRequestBuilder:
        self._params["stream"] = enabled
        return self

    def extra_param(self, key: str, value: Any) -> ChatRequestBuilder:
        self._extra[key] = value
        return self

    def build(self) -> ChatRequest:
        """Freeze the accumulated state into a validated request.

        Raises:
            InvalidRequestError: If there are no messages or a parameter is out of range
        """
        return ChatRequest(
            messages=tuple(self._messages),
            stop=tuple(self._stop),
            extra_params=dict(self._extra),
            **self._params,
        )


@dataclass(frozen=True)
class TokenUsage:
    """Token usage statistics; total is always prompt + completion."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class ChatResponse:
    """Response from a one-shot chat completion.

    Attributes:
        message: The assistant message
        model: Model that generated the response
        usage: Token usage statistics
        finish_reason: Why generation stopped, when the vendor says
    """

    message: ChatMessage
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: Optional[str] = None

    @property
    def content(self) -> str:
        return self.message.content


class StreamEventKind(str, Enum):
    TOKEN = "token"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class ChatStreamEvent:
    """One event of a streaming completion.

    A stream is zero or more TOKEN events followed by exactly one terminal
    event (DONE or ERROR). ERROR events carry the classified error.
    """

    kind: StreamEventKind
    text: str = ""
    error: Optional[LlmError] = None

    @classmethod
    def token(cls, text: str) -> ChatStreamEvent:
        return cls(StreamEventKind.TOKEN, text=text)

    @classmethod
    def done(cls) -> ChatStreamEvent:
        return cls(StreamEventKind.DONE)

    @classmethod
    def failure(cls, error: LlmError) -> ChatStreamEvent:
        return cls(StreamEventKind.ERROR, text=error.message, error=error)

    @property
    def is_token(self) -> bool:
        return self.kind is StreamEventKind.TOKEN

    @property
    def is_terminal(self) -> bool:
        return self.kind is not StreamEventKind.TOKEN

    @property
    def message(self) -> str:
        """Error message of an ERROR event (empty otherwise)."""
        return self.text if self.kind is StreamEventKind.ERROR else ""


@dataclass(frozen=True)
class ProviderIdentity:
    """Static provider metadata, shared by every adapter built from it.

    Attributes:
        name: Canonical provider name (e.g. "openai")
        aliases: Other names that resolve to this provider (e.g. "gpt")
        env_key: Environment variable expected to hold the credential
        default_base_url: Endpoint used when no override is supplied
        known_models: Models known to work without listing
    """

    name: str
    aliases: tuple[str, ...] = ()
    env_key: str = ""
    default_base_url: str = ""
    known_models: frozenset[str] = frozenset()

    def matches(self, name: str) -> bool:
        candidate = name.strip().lower()
        return candidate == self.name or candidate in self.aliases


__all__ = [
    "ChatRole",
    "ChatMessage",
    "ChatRequest",
    "ChatRequestBuilder",
    "TokenUsage",
    "ChatResponse",
    "StreamEventKind",
    "ChatStreamEvent",
    "ProviderIdentity",
]
