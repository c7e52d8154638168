"""Unit tests for the vendor-neutral request/response model."""

import pytest

from unillm.errors import InvalidRequestError, StreamError
from unillm.types import (
    ChatMessage,
    ChatRequest,
    ChatRequestBuilder,
    ChatResponse,
    ChatRole,
    ChatStreamEvent,
    ProviderIdentity,
    StreamEventKind,
    TokenUsage,
)


class TestChatRequestBuilder:
    """Tests for ChatRequestBuilder."""

    def test_accumulates_messages_in_order(self):
        """Messages keep the order they were added in."""
        request = (
            ChatRequestBuilder()
            .system("You are terse.")
            .user("Hi")
            .assistant("Hello")
            .add_message("user", "Again")
            .build()
        )

        assert [m.role for m in request.messages] == [
            ChatRole.SYSTEM,
            ChatRole.USER,
            ChatRole.ASSISTANT,
            ChatRole.USER,
        ]
        assert request.messages[-1].content == "Again"

    def test_sets_sampling_parameters(self):
        """Every sampling setter lands on the built request."""
        request = (
            ChatRequestBuilder()
            .user("Hi")
            .temperature(0.2)
            .max_tokens(64)
            .top_p(0.9)
            .frequency_penalty(0.5)
            .presence_penalty(-0.5)
            .stop("END", "STOP")
            .stream()
            .extra_param("seed", 7)
            .build()
        )

        assert request.temperature == 0.2
        assert request.max_tokens == 64
        assert request.top_p == 0.9
        assert request.frequency_penalty == 0.5
        assert request.presence_penalty == -0.5
        assert request.stop == ("END", "STOP")
        assert request.stream is True
        assert request.extra_params == {"seed": 7}

    def test_empty_request_rejected(self):
        """A request without messages is invalid."""
        with pytest.raises(InvalidRequestError, match="at least one message"):
            ChatRequestBuilder().temperature(0.5).build()

    @pytest.mark.parametrize(
        "setter,value",
        [
            ("temperature", 2.5),
            ("temperature", -0.1),
            ("top_p", 1.5),
            ("frequency_penalty", 3.0),
            ("presence_penalty", -2.5),
            ("max_tokens", 0),
        ],
    )
    def test_out_of_range_parameters_rejected(self, setter, value):
        """Generic parameter ranges are validated at build time."""
        builder = ChatRequestBuilder().user("Hi")
        getattr(builder, setter)(value)

        with pytest.raises(InvalidRequestError):
            builder.build()

    def test_empty_stop_sequence_rejected(self):
        with pytest.raises(InvalidRequestError, match="Stop sequences"):
            ChatRequestBuilder().user("Hi").stop("").build()

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError):
            ChatRequestBuilder().add_message("tool", "result")


class TestChatRequest:
    """Tests for ChatRequest helpers."""

    def test_is_immutable(self, chat_request):
        with pytest.raises(AttributeError):
            chat_request.temperature = 1.0

    def test_system_prompt_joins_system_messages(self):
        request = ChatRequestBuilder().system("One").user("Hi").system("Two").build()
        assert request.system_prompt == "One\n\nTwo"

    def test_system_prompt_none_without_system_messages(self):
        request = ChatRequestBuilder().user("Hi").build()
        assert request.system_prompt is None

    def test_with_stream_copies(self, chat_request):
        """with_stream returns a new request and leaves the original alone."""
        streaming = chat_request.with_stream(True)

        assert streaming.stream is True
        assert chat_request.stream is False
        assert streaming.messages == chat_request.messages

    def test_direct_construction_validates(self):
        with pytest.raises(InvalidRequestError):
            ChatRequest(messages=())

    def test_direct_construction_freezes_containers(self):
        """Lists and dicts passed to the constructor are copied into read-only containers."""
        messages = [ChatMessage(role=ChatRole.USER, content="Hi")]
        extra = {"seed": 7}

        request = ChatRequest(messages=messages, stop=["END"], extra_params=extra)
        messages.append(ChatMessage(role=ChatRole.USER, content="Again"))
        extra["seed"] = 8

        assert isinstance(request.messages, tuple)
        assert len(request.messages) == 1
        assert request.stop == ("END",)
        assert request.extra_params == {"seed": 7}
        with pytest.raises(TypeError):
            request.extra_params["seed"] = 9


class TestResponseTypes:
    """Tests for TokenUsage and ChatResponse."""

    def test_total_is_prompt_plus_completion(self):
        usage = TokenUsage(prompt_tokens=12, completion_tokens=30)
        assert usage.total_tokens == 42

    def test_default_usage_is_zero(self):
        assert TokenUsage().total_tokens == 0

    def test_response_content(self):
        response = ChatResponse(
            message=ChatMessage(role=ChatRole.ASSISTANT, content="Hi there"),
            model="m",
        )
        assert response.content == "Hi there"
        assert response.usage.total_tokens == 0
        assert response.finish_reason is None

    def test_message_to_dict(self):
        assert ChatMessage(ChatRole.USER, "Hi").to_dict() == {"role": "user", "content": "Hi"}


class TestChatStreamEvent:
    """Tests for ChatStreamEvent constructors."""

    def test_token(self):
        event = ChatStreamEvent.token("abc")
        assert event.kind is StreamEventKind.TOKEN
        assert event.is_token
        assert not event.is_terminal
        assert event.text == "abc"

    def test_done(self):
        event = ChatStreamEvent.done()
        assert event.is_terminal
        assert event.error is None
        assert event.message == ""

    def test_failure_carries_error(self):
        error = StreamError("connection reset", provider="openai")
        event = ChatStreamEvent.failure(error)

        assert event.kind is StreamEventKind.ERROR
        assert event.is_terminal
        assert event.error is error
        assert event.message == "connection reset"


class TestProviderIdentity:
    """Tests for ProviderIdentity.matches()."""

    def test_matches_name_and_aliases(self):
        identity = ProviderIdentity(name="anthropic", aliases=("claude",))

        assert identity.matches("anthropic")
        assert identity.matches("Claude")
        assert identity.matches(" claude ")
        assert not identity.matches("openai")
