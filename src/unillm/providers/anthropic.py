"""Anthropic Messages API adapter."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Iterable, Iterator, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from ..errors import DecodeError, StreamError
from ..types import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatRole,
    ChatStreamEvent,
    ProviderIdentity,
    TokenUsage,
)
from .base import DEFAULT_HTTP_TIMEOUT, HttpChatProvider, optional_fields

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 1000

# Stream events that carry nothing for us
_IGNORED_EVENTS = frozenset(
    {"ping", "message_start", "message_delta", "content_block_start", "content_block_stop"}
)


class _ContentBlock(BaseModel):
    type: str = "text"
    text: str = ""


class _Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class _Message(BaseModel):
    model: str = ""
    content: list[_ContentBlock]
    usage: _Usage = Field(default_factory=_Usage)
    stop_reason: Optional[str] = None


def translate_anthropic_event(event: Optional[str], payload: Any) -> Iterator[ChatStreamEvent]:
    """Map one Anthropic SSE record to events."""
    if not isinstance(payload, dict):
        return
    event_type = payload.get("type") or event
    if event_type == "content_block_delta":
        text = (payload.get("delta") or {}).get("text")
        if text:
            yield ChatStreamEvent.token(text)
    elif event_type == "message_stop":
        yield ChatStreamEvent.done()
    elif event_type == "error":
        error = payload.get("error") or {}
        yield ChatStreamEvent.failure(
            StreamError(error.get("message") or "Provider reported an error", provider="anthropic")
        )
    elif event_type not in _IGNORED_EVENTS:
        logger.debug("Skipping unknown Anthropic stream event %r", event_type)


class AnthropicProvider(HttpChatProvider):
    """Adapter for Claude models via ``/v1/messages``."""

    chars_per_token = 3.5

    def __init__(
        self,
        identity: ProviderIdentity,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(
            identity, api_key, base_url=base_url, timeout=timeout, http_client=http_client
        )

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def _models_url(self) -> str:
        return f"{self.base_url}/models"

    def _parse_models(self, data: Any) -> Iterable[str]:
        entries = data.get("data") if isinstance(data, dict) else data
        if not isinstance(entries, list):
            raise DecodeError("Model listing has no 'data' array", provider=self.name)
        names = []
        for entry in entries:
            if isinstance(entry, dict):
                name = entry.get("id") or entry.get("name")
                if isinstance(name, str):
                    names.append(name)
        return names

    def build_payload(self, request: ChatRequest, model: str, *, stream: bool) -> dict[str, Any]:
        messages = [m.to_dict() for m in request.messages if m.role is not ChatRole.SYSTEM]
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": messages,
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        payload.update(optional_fields(temperature=request.temperature, top_p=request.top_p))
        if request.stop:
            payload["stop_sequences"] = list(request.stop)
        if request.frequency_penalty is not None or request.presence_penalty is not None:
            logger.debug("Anthropic does not support frequency/presence penalties; dropping them")
        if stream:
            payload["stream"] = True
        payload.update(request.extra_params)
        return payload

    def parse_response(self, data: Any, model: str) -> ChatResponse:
        try:
            message = _Message.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Unexpected message payload: {e}", provider=self.name) from e

        text = "".join(block.text for block in message.content if block.type == "text")
        return ChatResponse(
            message=ChatMessage(role=ChatRole.ASSISTANT, content=text),
            model=message.model or model,
            usage=TokenUsage(
                prompt_tokens=message.usage.input_tokens,
                completion_tokens=message.usage.output_tokens,
            ),
            finish_reason=message.stop_reason,
        )

    async def chat_completion(self, request: ChatRequest, model: str) -> ChatResponse:
        data = await self._post_json(
            f"{self.base_url}/messages", self.build_payload(request, model, stream=False)
        )
        return self.parse_response(data, model)

    def chat_completion_stream(
        self, request: ChatRequest, model: str
    ) -> AsyncIterator[ChatStreamEvent]:
        payload = self.build_payload(request, model, stream=True)
        return self._stream_events(
            f"{self.base_url}/messages", payload, translate_anthropic_event
        )


__all__ = ["AnthropicProvider", "translate_anthropic_event"]
