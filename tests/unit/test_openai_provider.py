"""Unit tests for the OpenAI-compatible adapter (httpx.MockTransport, no network)."""

import json

import httpx
import pytest
from fakes import collect, joined_text, sse

from unillm.errors import (
    AuthenticationError,
    DecodeError,
    InvalidRequestError,
    ProviderUnavailableError,
    RateLimitedError,
)
from unillm.providers import GROQ, OPENAI, OpenAICompatibleProvider
from unillm.types import ChatRequestBuilder, ChatRole, StreamEventKind

COMPLETION = {
    "id": "chatcmpl-1",
    "model": "gpt-4o-mini-2024-07-18",
    "choices": [
        {"message": {"role": "assistant", "content": "Hello, world!"}, "finish_reason": "stop"}
    ],
    "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
}


def _provider(handler, identity=OPENAI, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAICompatibleProvider(identity, "sk-test", http_client=client, **kwargs)


class TestOpenAIChatCompletion:
    """Tests for one-shot completions."""

    @pytest.mark.asyncio
    async def test_request_shape_and_response_mapping(self, chat_request):
        """Payload carries the model and messages; response maps to the neutral model."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["payload"] = json.loads(request.content)
            return httpx.Response(200, json=COMPLETION)

        provider = _provider(handler)
        response = await provider.chat_completion(chat_request, "gpt-4o-mini")

        assert seen["url"] == "https://api.openai.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["payload"]["model"] == "gpt-4o-mini"
        assert seen["payload"]["messages"] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Say hello"},
        ]
        assert "stream" not in seen["payload"]
        assert response.content == "Hello, world!"
        assert response.message.role is ChatRole.ASSISTANT
        assert response.model == "gpt-4o-mini-2024-07-18"
        assert response.usage.total_tokens == 15
        assert response.finish_reason == "stop"

    @pytest.mark.asyncio
    async def test_optional_parameters_and_extras(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(200, json=COMPLETION)

        request = (
            ChatRequestBuilder()
            .user("Hi")
            .temperature(0.3)
            .max_tokens(20)
            .stop("END")
            .extra_param("seed", 42)
            .build()
        )
        await _provider(handler).chat_completion(request, "gpt-4o")

        assert seen["temperature"] == 0.3
        assert seen["max_tokens"] == 20
        assert seen["stop"] == ["END"]
        assert seen["seed"] == 42
        assert "top_p" not in seen

    @pytest.mark.asyncio
    async def test_organization_and_project_headers(self, chat_request):
        seen = {}

        def handler(request):
            seen["openai-organization"] = request.headers.get("openai-organization")
            seen["openai-project"] = request.headers.get("openai-project")
            return httpx.Response(200, json=COMPLETION)

        provider = _provider(handler, organization="org-1", project="proj-1")
        await provider.chat_completion(chat_request, "gpt-4o")

        assert seen["openai-organization"] == "org-1"
        assert seen["openai-project"] == "proj-1"

    @pytest.mark.asyncio
    async def test_base_url_override(self, chat_request):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json=COMPLETION)

        provider = _provider(handler, base_url="http://localhost:8000/v1/")
        await provider.chat_completion(chat_request, "local")

        assert seen["url"] == "http://localhost:8000/v1/chat/completions"

    @pytest.mark.asyncio
    async def test_groq_uses_its_own_endpoint(self, chat_request):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json=COMPLETION)

        provider = _provider(handler, identity=GROQ)
        await provider.chat_completion(chat_request, "llama-3.1-8b-instant")

        assert seen["url"].startswith("https://api.groq.com/openai/v1/")
        assert provider.identity() is GROQ

    @pytest.mark.asyncio
    async def test_null_usage_is_zero(self, chat_request):
        body = {**COMPLETION, "usage": None}
        provider = _provider(lambda r: httpx.Response(200, json=body))

        response = await provider.chat_completion(chat_request, "gpt-4o")

        assert response.usage.total_tokens == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error_type",
        [
            (401, AuthenticationError),
            (429, RateLimitedError),
            (400, InvalidRequestError),
            (500, ProviderUnavailableError),
            (503, ProviderUnavailableError),
        ],
    )
    async def test_status_classification(self, chat_request, status, error_type):
        provider = _provider(lambda r: httpx.Response(status, text="nope"))

        with pytest.raises(error_type) as exc_info:
            await provider.chat_completion(chat_request, "gpt-4o")

        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_retry_after_propagated(self, chat_request):
        provider = _provider(
            lambda r: httpx.Response(429, text="slow down", headers={"Retry-After": "2"})
        )

        with pytest.raises(RateLimitedError) as exc_info:
            await provider.chat_completion(chat_request, "gpt-4o")

        assert exc_info.value.retry_after == 2.0

    @pytest.mark.asyncio
    async def test_connect_error_is_unavailable(self, chat_request):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderUnavailableError, match="connection refused"):
            await _provider(handler).chat_completion(chat_request, "gpt-4o")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"choices": []},
            {"unexpected": True},
            {"choices": [{"message": {"role": "robot", "content": "beep"}}]},
        ],
    )
    async def test_malformed_payload_is_decode_error(self, chat_request, body):
        provider = _provider(lambda r: httpx.Response(200, json=body))

        with pytest.raises(DecodeError):
            await provider.chat_completion(chat_request, "gpt-4o")

    @pytest.mark.asyncio
    async def test_non_json_body_is_decode_error(self, chat_request):
        provider = _provider(lambda r: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(DecodeError):
            await provider.chat_completion(chat_request, "gpt-4o")

    def test_missing_key_rejected(self):
        with pytest.raises(AuthenticationError, match="OPENAI_API_KEY"):
            OpenAICompatibleProvider(OPENAI, "")


class TestOpenAIStreaming:
    """Tests for streaming completions."""

    @pytest.mark.asyncio
    async def test_stream_tokens_then_done(self, chat_request):
        seen = {}

        def handler(request):
            seen["payload"] = json.loads(request.content)
            seen["accept"] = request.headers["accept"]
            body = sse(
                {"choices": [{"delta": {"role": "assistant"}}]},
                {"choices": [{"delta": {"content": "Hel"}}]},
                {"choices": [{"delta": {"content": "lo"}}]},
                "[DONE]",
            )
            return httpx.Response(200, content=body)

        events = await collect(_provider(handler).chat_completion_stream(chat_request, "gpt-4o"))

        assert seen["payload"]["stream"] is True
        assert seen["accept"] == "text/event-stream"
        assert joined_text(events) == "Hello"
        assert events[-1].kind is StreamEventKind.DONE

    @pytest.mark.asyncio
    async def test_stream_status_error_raised_before_events(self, chat_request):
        provider = _provider(lambda r: httpx.Response(503, text="overloaded"))
        stream = provider.chat_completion_stream(chat_request, "gpt-4o")

        with pytest.raises(ProviderUnavailableError):
            await stream.__anext__()

    @pytest.mark.asyncio
    async def test_stream_cut_short_ends_with_error(self, chat_request):
        body = sse({"choices": [{"delta": {"content": "Hel"}}]})
        provider = _provider(lambda r: httpx.Response(200, content=body))

        events = await collect(provider.chat_completion_stream(chat_request, "gpt-4o"))

        assert joined_text(events) == "Hel"
        assert events[-1].kind is StreamEventKind.ERROR

    @pytest.mark.asyncio
    async def test_stream_is_lazy(self, chat_request):
        """Creating the iterator sends nothing until the first pull."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, content=sse("[DONE]"))

        stream = _provider(handler).chat_completion_stream(chat_request, "gpt-4o")
        assert calls == []

        await collect(stream)
        assert len(calls) == 1


class TestOpenAIModels:
    """Tests for model listing, health check and token estimation."""

    @pytest.mark.asyncio
    async def test_available_models_cached(self):
        calls = []

        def handler(request):
            calls.append(str(request.url))
            return httpx.Response(200, json={"data": [{"id": "gpt-4o"}, {"id": "gpt-4o-mini"}]})

        provider = _provider(handler)

        first = await provider.available_models()
        second = await provider.available_models()

        assert first == second == frozenset({"gpt-4o", "gpt-4o-mini"})
        assert calls == ["https://api.openai.com/v1/models"]

    @pytest.mark.asyncio
    async def test_empty_listing_falls_back_to_known_models(self):
        provider = _provider(lambda r: httpx.Response(200, json={"data": []}))
        assert await provider.available_models() == OPENAI.known_models

    @pytest.mark.asyncio
    async def test_health_check_raises_on_bad_key(self):
        provider = _provider(lambda r: httpx.Response(401, text="invalid key"))

        with pytest.raises(AuthenticationError):
            await provider.health_check()

    @pytest.mark.asyncio
    async def test_health_check_ok(self):
        provider = _provider(lambda r: httpx.Response(200, json={"data": []}))
        assert await provider.health_check() is None

    def test_estimate_tokens(self):
        provider = _provider(lambda r: httpx.Response(200))
        assert provider.estimate_tokens("abcdefgh") == 2
        assert provider.estimate_tokens("abcdefghi") == 3
        assert provider.estimate_tokens("") == 0
