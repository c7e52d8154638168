"""Middleware stack - resilience around one provider adapter.

Nesting, outermost first:

    timeout -> retry -> [circuit breaker -> rate limiter -> adapter] per attempt

The timeout bounds the whole logical call, retries and backoff included.
The retry loop drives attempts, and every attempt is individually gated by
the breaker of its (provider, model) pair and consumes one rate-limit token
before reaching the adapter. An attempt still in flight when the deadline
expires is recorded against the breaker as a timeout.

Streams are retried only while nothing has been delivered to the caller. Once
the first token is out, a failure becomes the terminal ERROR event instead.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, AsyncIterator, Awaitable, Optional, TypeVar

from opentelemetry import trace
from tenacity import AsyncRetrying, RetryCallState

from ..errors import LlmError, LlmTimeoutError, StreamDroppedError
from ..providers.base import ChatProvider
from ..types import ChatRequest, ChatResponse, ChatStreamEvent
from .breaker import CircuitBreaker, Clock, Permit
from .policy import MiddlewarePolicy
from .ratelimit import RateLimiter
from .retry import Sleep, build_retrying

logger = logging.getLogger(__name__)

# Get tracer for completion spans
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

# Timer callbacks may run this far ahead of their scheduled time
_CLOCK_SLACK = time.get_clock_info("monotonic").resolution


class MiddlewareStack:
    """Policy-driven wrapper around a :class:`ChatProvider`.

    Owns the client-wide rate limiter and one circuit breaker per model.

    Args:
        provider: Adapter to protect
        policy: Resilience policy (defaults to ``MiddlewarePolicy()``)
        sleep: Backoff sleep, injectable for tests
        clock: Monotonic clock for the breakers, injectable for tests
    """

    def __init__(
        self,
        provider: ChatProvider,
        policy: Optional[MiddlewarePolicy] = None,
        *,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ):
        self.provider = provider
        self.policy = policy or MiddlewarePolicy()
        self._sleep = sleep
        self._clock = clock
        self.rate_limiter = (
            RateLimiter(self.policy.rate_limit) if self.policy.rate_limit else None
        )
        self._breakers: dict[str, CircuitBreaker] = {}
        self._breakers_lock = threading.Lock()

    @property
    def provider_name(self) -> str:
        return self.provider.name

    def breaker_for(self, model: str) -> CircuitBreaker:
        """Breaker of the (provider, model) pair, created on first use."""
        with self._breakers_lock:
            breaker = self._breakers.get(model)
            if breaker is None:
                breaker = CircuitBreaker(
                    self.policy.breaker,
                    name=f"{self.provider_name}:{model}",
                    provider=self.provider_name,
                    clock=self._clock,
                )
                self._breakers[model] = breaker
            return breaker

    # ========================================================================
    # One-shot completions
    # ========================================================================

    async def call(self, request: ChatRequest, model: str) -> ChatResponse:
        """Run one completion through the full stack.

        Raises:
            LlmError: The classified error of the last attempt, CircuitOpenError,
                or LlmTimeoutError when the deadline expires
        """
        with tracer.start_as_current_span(
            "llm.chat_completion",
            attributes=self._span_attributes(request, model),
        ) as span:
            deadline = self._deadline()
            retrying = self._retrying(span)
            try:
                response = await self.bounded(
                    self._call_with_retry(retrying, request, model, deadline)
                )
            except LlmError as e:
                span.set_attribute("llm.attempts", retrying.statistics.get("attempt_number", 1))
                span.set_attribute("llm.status", "error")
                span.set_attribute("llm.error.kind", e.kind)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise

            span.set_attribute("llm.attempts", retrying.statistics.get("attempt_number", 1))
            span.set_attribute("llm.usage.prompt_tokens", response.usage.prompt_tokens)
            span.set_attribute("llm.usage.completion_tokens", response.usage.completion_tokens)
            span.set_attribute("llm.usage.total_tokens", response.usage.total_tokens)
            span.set_attribute("llm.response.length", len(response.content))
            span.set_attribute("llm.status", "success")
            span.set_status(trace.Status(trace.StatusCode.OK))
            return response

    async def bounded(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` under the policy timeout."""
        timeout = self.policy.timeout
        if timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError:
            logger.warning("Call to %s timed out after %.2fs", self.provider_name, timeout)
            raise LlmTimeoutError(timeout, provider=self.provider_name) from None

    async def _call_with_retry(
        self,
        retrying: AsyncRetrying,
        request: ChatRequest,
        model: str,
        deadline: Optional[float],
    ) -> ChatResponse:
        response: Optional[ChatResponse] = None
        async for attempt in retrying:
            with attempt:
                response = await self._attempt(request, model, deadline)
        assert response is not None
        return response

    async def _attempt(
        self, request: ChatRequest, model: str, deadline: Optional[float]
    ) -> ChatResponse:
        async with self.breaker_for(model).guard() as permit:
            await self._acquire_token()
            try:
                response = await self.provider.chat_completion(request, model)
            except asyncio.CancelledError:
                self._record_expiry(permit, deadline)
                raise
            permit.record()
            return response

    # ========================================================================
    # Streaming completions
    # ========================================================================

    async def stream(self, request: ChatRequest, model: str) -> AsyncIterator[ChatStreamEvent]:
        """Stream one completion through the full stack.

        Never raises for provider failures: the sequence always ends with
        exactly one terminal event (DONE or ERROR).
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        timeout = self.policy.timeout
        deadline = None if timeout is None else started + timeout

        span = tracer.start_span(
            "llm.chat_completion_stream",
            attributes=self._span_attributes(request, model),
        )
        retrying = self._retrying(span)
        events: Optional[AsyncIterator[ChatStreamEvent]] = None
        terminal: Optional[ChatStreamEvent] = None
        token_count = 0

        try:
            try:
                events, event = await self._until(
                    self._open_stream(retrying, request, model, deadline), deadline
                )
            except LlmError as e:
                event = ChatStreamEvent.failure(e)

            while True:
                if event.is_token:
                    if token_count == 0:
                        span.set_attribute(
                            "llm.stream.first_token_ms", (loop.time() - started) * 1000.0
                        )
                    token_count += 1
                else:
                    terminal = event
                yield event
                if event.is_terminal:
                    return

                assert events is not None
                try:
                    event = await self._until(events.__anext__(), deadline)
                except LlmError as e:
                    event = ChatStreamEvent.failure(e)
        finally:
            if events is not None:
                await _aclose(events)
            span.set_attribute("llm.attempts", retrying.statistics.get("attempt_number", 1))
            span.set_attribute("llm.stream.tokens", token_count)
            self._finish_stream_span(span, terminal)

    async def _open_stream(
        self,
        retrying: AsyncRetrying,
        request: ChatRequest,
        model: str,
        deadline: Optional[float],
    ) -> tuple[AsyncIterator[ChatStreamEvent], ChatStreamEvent]:
        """Retry until an attempt produces its first event."""
        events: Optional[AsyncIterator[ChatStreamEvent]] = None
        first: Optional[ChatStreamEvent] = None
        async for attempt in retrying:
            with attempt:
                events = self._stream_attempt(request, model, deadline)
                try:
                    first = await events.__anext__()
                except BaseException:
                    await _aclose(events)
                    raise
                if first.error is not None and first.error.retryable:
                    await _aclose(events)
                    raise first.error
        assert events is not None and first is not None
        return events, first

    async def _stream_attempt(
        self, request: ChatRequest, model: str, deadline: Optional[float]
    ) -> AsyncIterator[ChatStreamEvent]:
        """One breaker-gated attempt; always ends with a terminal event or an LlmError."""
        async with self.breaker_for(model).guard() as permit:
            await self._acquire_token()
            events = self.provider.chat_completion_stream(request, model)
            try:
                async for event in events:
                    if event.is_terminal:
                        permit.record(event.error)
                    yield event
                    if event.is_terminal:
                        return
            except asyncio.CancelledError:
                self._record_expiry(permit, deadline)
                raise
            finally:
                await _aclose(events)

            dropped = StreamDroppedError(
                "Stream ended without a terminal event", provider=self.provider_name
            )
            permit.record(dropped)
            yield ChatStreamEvent.failure(dropped)

    async def _until(self, awaitable: Awaitable[T], deadline: Optional[float]) -> T:
        if deadline is None:
            return await awaitable
        remaining = max(deadline - asyncio.get_running_loop().time(), 0.0)
        try:
            return await asyncio.wait_for(awaitable, remaining)
        except asyncio.TimeoutError:
            timeout = self.policy.timeout or 0.0
            logger.warning("Stream from %s timed out after %.2fs", self.provider_name, timeout)
            raise LlmTimeoutError(timeout, provider=self.provider_name) from None

    def _finish_stream_span(self, span: Any, terminal: Optional[ChatStreamEvent]) -> None:
        if terminal is not None and terminal.error is None:
            span.set_attribute("llm.status", "success")
            span.set_status(trace.Status(trace.StatusCode.OK))
        elif terminal is not None and terminal.error is not None:
            span.set_attribute("llm.status", "error")
            span.set_attribute("llm.error.kind", terminal.error.kind)
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(terminal.error)))
            span.record_exception(terminal.error)
        else:
            # Consumer stopped reading before the terminal event
            span.set_attribute("llm.status", "abandoned")
        span.end()

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _acquire_token(self) -> None:
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

    def _deadline(self) -> Optional[float]:
        if self.policy.timeout is None:
            return None
        return asyncio.get_running_loop().time() + self.policy.timeout

    def _record_expiry(self, permit: Permit, deadline: Optional[float]) -> None:
        """Charge an attempt cancelled by the stack's own deadline as a timeout."""
        if deadline is None:
            return
        if asyncio.get_running_loop().time() + _CLOCK_SLACK >= deadline:
            permit.record(LlmTimeoutError(self.policy.timeout or 0.0, provider=self.provider_name))

    def _retrying(self, span: Any) -> AsyncRetrying:
        def on_retry(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            error = outcome.exception() if outcome is not None else None
            span.add_event(
                "llm.retry",
                {
                    "attempt": retry_state.attempt_number,
                    "error.kind": getattr(error, "kind", type(error).__name__),
                },
            )

        return build_retrying(self.policy.retry, sleep=self._sleep, on_retry=on_retry)

    def _span_attributes(self, request: ChatRequest, model: str) -> dict[str, Any]:
        attributes: dict[str, Any] = {
            "llm.provider": self.provider_name,
            "llm.model": model,
            "llm.messages.count": len(request.messages),
        }
        if request.temperature is not None:
            attributes["llm.temperature"] = request.temperature
        if request.max_tokens is not None:
            attributes["llm.max_tokens"] = request.max_tokens
        return attributes


async def _aclose(events: AsyncIterator[Any]) -> None:
    aclose = getattr(events, "aclose", None)
    if aclose is not None:
        await aclose()


__all__ = ["MiddlewareStack"]
