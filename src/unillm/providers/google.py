"""Google Generative Language (Gemini) adapter."""

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

_ROLE_MAP = {ChatRole.USER: "user", ChatRole.ASSISTANT: "model"}


class _Part(BaseModel):
    text: str = ""


class _Content(BaseModel):
    parts: list[_Part] = Field(default_factory=list)


class _Candidate(BaseModel):
    content: _Content = Field(default_factory=_Content)
    finishReason: Optional[str] = None


class _UsageMetadata(BaseModel):
    promptTokenCount: int = 0
    candidatesTokenCount: int = 0


class _GenerateResponse(BaseModel):
    candidates: list[_Candidate] = Field(min_length=1)
    usageMetadata: _UsageMetadata = Field(default_factory=_UsageMetadata)
    modelVersion: Optional[str] = None


def translate_google_chunk(event: Optional[str], payload: Any) -> Iterator[ChatStreamEvent]:
    """Map one ``streamGenerateContent`` chunk; a finishReason ends the stream."""
    if isinstance(payload, list):
        # Some gateways wrap each chunk in a one-element array
        payload = payload[0] if payload else None
    if not isinstance(payload, dict):
        return
    if "error" in payload:
        error = payload["error"] or {}
        message = error.get("message") if isinstance(error, dict) else str(error)
        yield ChatStreamEvent.failure(
            StreamError(message or "Provider reported an error", provider="google")
        )
        return
    candidates = payload.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return
    candidate = candidates[0]
    for part in (candidate.get("content") or {}).get("parts") or []:
        text = part.get("text") if isinstance(part, dict) else None
        if text:
            yield ChatStreamEvent.token(text)
    if candidate.get("finishReason"):
        yield ChatStreamEvent.done()


class GoogleProvider(HttpChatProvider):
    """Adapter for Gemini models via ``generateContent``."""

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
        return {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

    def _models_url(self) -> str:
        return f"{self.base_url}/models"

    def _parse_models(self, data: Any) -> Iterable[str]:
        entries = data.get("models") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise DecodeError("Model listing has no 'models' array", provider=self.name)
        names = []
        for entry in entries:
            name = entry.get("name") if isinstance(entry, dict) else None
            if isinstance(name, str):
                names.append(name.removeprefix("models/"))
        return names

    def build_payload(self, request: ChatRequest) -> dict[str, Any]:
        contents = [
            {"role": _ROLE_MAP[m.role], "parts": [{"text": m.content}]}
            for m in request.messages
            if m.role is not ChatRole.SYSTEM
        ]
        payload: dict[str, Any] = {"contents": contents}
        if request.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": request.system_prompt}]}

        generation_config = optional_fields(
            temperature=request.temperature,
            maxOutputTokens=request.max_tokens,
            topP=request.top_p,
            frequencyPenalty=request.frequency_penalty,
            presencePenalty=request.presence_penalty,
        )
        if request.stop:
            generation_config["stopSequences"] = list(request.stop)
        if generation_config:
            payload["generationConfig"] = generation_config
        payload.update(request.extra_params)
        return payload

    def parse_response(self, data: Any, model: str) -> ChatResponse:
        try:
            response = _GenerateResponse.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Unexpected generateContent payload: {e}", provider=self.name) from e

        candidate = response.candidates[0]
        return ChatResponse(
            message=ChatMessage(
                role=ChatRole.ASSISTANT,
                content="".join(part.text for part in candidate.content.parts),
            ),
            model=response.modelVersion or model,
            usage=TokenUsage(
                prompt_tokens=response.usageMetadata.promptTokenCount,
                completion_tokens=response.usageMetadata.candidatesTokenCount,
            ),
            finish_reason=candidate.finishReason,
        )

    async def chat_completion(self, request: ChatRequest, model: str) -> ChatResponse:
        url = f"{self.base_url}/models/{model}:generateContent"
        data = await self._post_json(url, self.build_payload(request))
        return self.parse_response(data, model)

    def chat_completion_stream(
        self, request: ChatRequest, model: str
    ) -> AsyncIterator[ChatStreamEvent]:
        url = f"{self.base_url}/models/{model}:streamGenerateContent?alt=sse"
        return self._stream_events(url, self.build_payload(request), translate_google_chunk)


__all__ = ["GoogleProvider", "translate_google_chunk"]
