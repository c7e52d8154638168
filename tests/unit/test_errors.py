"""Unit tests for the error taxonomy and HTTP classification."""

import httpx
import pytest

from unillm.errors import (
    AuthenticationError,
    CircuitOpenError,
    DecodeError,
    InvalidRequestError,
    LlmTimeoutError,
    ProviderUnavailableError,
    RateLimitedError,
    classify_status,
    classify_transport_error,
    parse_retry_after,
)


class TestErrorFlags:
    """Retry and breaker flags per error kind."""

    @pytest.mark.parametrize(
        "error,retryable,counts",
        [
            (AuthenticationError("bad key"), False, False),
            (InvalidRequestError("bad request"), False, False),
            (RateLimitedError("slow down"), True, False),
            (ProviderUnavailableError("503"), True, True),
            (CircuitOpenError("open"), False, False),
            (DecodeError("garbage"), False, False),
            (LlmTimeoutError(1.0), False, True),
        ],
    )
    def test_flags(self, error, retryable, counts):
        assert error.retryable is retryable
        assert error.counts_as_failure is counts

    def test_circuit_open_is_provider_unavailable(self):
        assert isinstance(CircuitOpenError("open"), ProviderUnavailableError)

    def test_str_includes_provider(self):
        error = InvalidRequestError("bad temperature", provider="openai")
        assert str(error) == "[openai] bad temperature"
        assert error.message == "bad temperature"

    def test_timeout_message(self):
        assert LlmTimeoutError(2.5).message == "Request timed out after 2.50s"


class TestClassifyStatus:
    """Tests for classify_status()."""

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_failures(self, status):
        assert isinstance(classify_status("openai", status, "nope"), AuthenticationError)

    def test_rate_limited_with_retry_after(self):
        error = classify_status("openai", 429, "slow", {"retry-after": "3"})

        assert isinstance(error, RateLimitedError)
        assert error.retry_after == 3.0

    def test_rate_limited_without_header(self):
        error = classify_status("openai", 429, "slow")
        assert isinstance(error, RateLimitedError)
        assert error.retry_after is None

    @pytest.mark.parametrize("status", [400, 404, 422])
    def test_other_client_errors_are_invalid_requests(self, status):
        assert isinstance(classify_status("groq", status, "bad"), InvalidRequestError)

    @pytest.mark.parametrize("status", [408, 500, 502, 503, 529])
    def test_server_errors_are_unavailable(self, status):
        error = classify_status("anthropic", status, "")

        assert isinstance(error, ProviderUnavailableError)
        assert error.status_code == status
        assert error.provider == "anthropic"

    def test_body_included_in_message(self):
        error = classify_status("google", 400, '{"error": "bad field"}')
        assert "bad field" in error.message
        assert "HTTP 400" in error.message


class TestClassifyTransportError:
    def test_connect_error(self):
        request = httpx.Request("POST", "https://api.example.com")
        error = classify_transport_error("openai", httpx.ConnectError("refused", request=request))

        assert isinstance(error, ProviderUnavailableError)
        assert "refused" in error.message

    def test_http_timeout_is_unavailable_not_client_timeout(self):
        """Per-request HTTP timeouts are provider failures, not the client deadline."""
        error = classify_transport_error("openai", httpx.ReadTimeout("slow"))
        assert type(error) is ProviderUnavailableError


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("12") == 12.0

    def test_missing(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None

    def test_garbage(self):
        assert parse_retry_after("soon") is None

    def test_http_date_in_the_past_clamps_to_zero(self):
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0
