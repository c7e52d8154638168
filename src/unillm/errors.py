"""Error taxonomy - every failure a caller can see.

Adapters classify raw transport and vendor failures into these types at the
boundary; the middleware stack only ever inspects the taxonomy:

- AuthenticationError: missing or rejected credential (never retried)
- InvalidRequestError: request rejected by validation or a vendor 4xx (never retried)
- RateLimitedError: vendor 429-equivalent (retried)
- ProviderUnavailableError: 5xx, network failure, open circuit (retried)
- DecodeError: vendor payload could not be mapped to the neutral model (never retried)
- LlmTimeoutError: the client-level deadline expired (never retried)
- StreamError: streaming-only terminal failure reported by the vendor
- StreamDroppedError: the stream ended without a terminal event (retried, counts
  against the circuit breaker)
"""

from __future__ import annotations

import email.utils
import time
from typing import Mapping, Optional

import httpx


class LlmError(Exception):
    """Base class for all unillm errors."""

    kind: str = "unknown"
    retryable: bool = False
    # Whether the failure says something about provider health (breaker input)
    counts_as_failure: bool = False

    def __init__(self, message: str, *, provider: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message


class AuthenticationError(LlmError):
    kind = "authentication"


class InvalidRequestError(LlmError):
    kind = "invalid_request"


class RateLimitedError(LlmError):
    kind = "rate_limited"
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


class ProviderUnavailableError(LlmError):
    kind = "provider_unavailable"
    retryable = True
    counts_as_failure = True

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, provider=provider)
        self.status_code = status_code


class CircuitOpenError(ProviderUnavailableError):
    """Short-circuited by an open breaker; no network attempt was made."""

    retryable = False
    counts_as_failure = False


class DecodeError(LlmError):
    kind = "decode"


class LlmTimeoutError(LlmError):
    kind = "timeout"
    counts_as_failure = True

    def __init__(self, timeout: float, *, provider: Optional[str] = None):
        super().__init__(f"Request timed out after {timeout:.2f}s", provider=provider)
        self.timeout = timeout


class StreamError(LlmError):
    kind = "stream"


class StreamDroppedError(StreamError):
    """The stream ended without DONE or ERROR (connection dropped mid-stream)."""

    retryable = True
    counts_as_failure = True


# ============================================================================
# Classification helpers (adapter boundary)
# ============================================================================


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header (delta-seconds or HTTP date) into seconds."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(0.0, when.timestamp() - time.time())


def classify_status(
    provider: str,
    status_code: int,
    body: str = "",
    headers: Optional[Mapping[str, str]] = None,
) -> LlmError:
    """Map a non-success HTTP status to the error taxonomy."""
    detail = body.strip()[:500] or "no response body"
    message = f"HTTP {status_code}: {detail}"
    if status_code in (401, 403):
        return AuthenticationError(message, provider=provider)
    if status_code == 429:
        retry_after = parse_retry_after((headers or {}).get("retry-after"))
        return RateLimitedError(message, provider=provider, retry_after=retry_after)
    if status_code in (408, 425):
        return ProviderUnavailableError(message, provider=provider, status_code=status_code)
    if 400 <= status_code < 500:
        return InvalidRequestError(message, provider=provider)
    return ProviderUnavailableError(message, provider=provider, status_code=status_code)


def classify_transport_error(provider: str, exc: httpx.HTTPError) -> LlmError:
    """Map an httpx transport failure to the error taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        return ProviderUnavailableError(f"Request timed out: {exc}", provider=provider)
    return ProviderUnavailableError(f"Request failed: {exc}", provider=provider)


__all__ = [
    "LlmError",
    "AuthenticationError",
    "InvalidRequestError",
    "RateLimitedError",
    "ProviderUnavailableError",
    "CircuitOpenError",
    "DecodeError",
    "LlmTimeoutError",
    "StreamError",
    "StreamDroppedError",
    "parse_retry_after",
    "classify_status",
    "classify_transport_error",
]
