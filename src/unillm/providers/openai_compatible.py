"""OpenAI-compatible adapter.

One implementation shared by every vendor speaking the OpenAI chat completions
dialect (OpenAI, Groq, OpenRouter, self-hosted gateways). Vendors differ only
in their :class:`~unillm.types.ProviderIdentity`.
"""

from __future__ import annotations

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


class _Message(BaseModel):
    role: str = "assistant"
    content: Optional[str] = None


class _Choice(BaseModel):
    message: _Message
    finish_reason: Optional[str] = None


class _Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0


class _Completion(BaseModel):
    model: str = ""
    choices: list[_Choice] = Field(min_length=1)
    usage: Optional[_Usage] = None


def translate_openai_chunk(event: Optional[str], payload: Any) -> Iterator[ChatStreamEvent]:
    """Map one OpenAI stream chunk to events (``[DONE]`` is handled upstream)."""
    if not isinstance(payload, dict):
        return
    if "error" in payload:
        error = payload["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        yield ChatStreamEvent.failure(StreamError(message or "Provider reported an error"))
        return
    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return
    delta = choices[0].get("delta") or {}
    content = delta.get("content")
    if content:
        yield ChatStreamEvent.token(content)


class OpenAICompatibleProvider(HttpChatProvider):
    """Adapter for OpenAI-style ``/chat/completions`` endpoints.

    Args:
        identity: Which OpenAI-compatible vendor this instance talks to
        api_key: Bearer token
        base_url: Endpoint override (e.g. a local gateway)
        organization: Optional ``OpenAI-Organization`` header
        project: Optional ``OpenAI-Project`` header
    """

    def __init__(
        self,
        identity: ProviderIdentity,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        project: Optional[str] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(
            identity, api_key, base_url=base_url, timeout=timeout, http_client=http_client
        )
        self.organization = organization
        self.project = project

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.organization:
            headers["OpenAI-Organization"] = self.organization
        if self.project:
            headers["OpenAI-Project"] = self.project
        return headers

    def _models_url(self) -> str:
        return f"{self.base_url}/models"

    def _parse_models(self, data: Any) -> Iterable[str]:
        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise DecodeError("Model listing has no 'data' array", provider=self.name)
        return [m["id"] for m in entries if isinstance(m, dict) and isinstance(m.get("id"), str)]

    def build_payload(self, request: ChatRequest, model: str, *, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [m.to_dict() for m in request.messages],
        }
        payload.update(
            optional_fields(
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                top_p=request.top_p,
                frequency_penalty=request.frequency_penalty,
                presence_penalty=request.presence_penalty,
            )
        )
        if request.stop:
            payload["stop"] = list(request.stop)
        if stream:
            payload["stream"] = True
        payload.update(request.extra_params)
        return payload

    def parse_response(self, data: Any, model: str) -> ChatResponse:
        try:
            completion = _Completion.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Unexpected completion payload: {e}", provider=self.name) from e

        choice = completion.choices[0]
        usage = completion.usage or _Usage()
        try:
            role = ChatRole(choice.message.role)
        except ValueError as e:
            raise DecodeError(f"Unknown role: {choice.message.role}", provider=self.name) from e

        return ChatResponse(
            message=ChatMessage(role=role, content=choice.message.content or ""),
            model=completion.model or model,
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
            ),
            finish_reason=choice.finish_reason,
        )

    async def chat_completion(self, request: ChatRequest, model: str) -> ChatResponse:
        url = f"{self.base_url}/chat/completions"
        data = await self._post_json(url, self.build_payload(request, model, stream=False))
        return self.parse_response(data, model)

    def chat_completion_stream(
        self, request: ChatRequest, model: str
    ) -> AsyncIterator[ChatStreamEvent]:
        url = f"{self.base_url}/chat/completions"
        payload = self.build_payload(request, model, stream=True)
        return self._stream_events(url, payload, translate_openai_chunk)


__all__ = ["OpenAICompatibleProvider", "translate_openai_chunk"]
