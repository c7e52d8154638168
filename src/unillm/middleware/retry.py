"""Retry - exponential backoff with full jitter, built on tenacity.

Only errors flagged ``retryable`` are retried (RateLimited, ProviderUnavailable,
StreamDropped).
The delay before retry ``n`` (1-based) is drawn uniformly from
``[0, min(max_delay, base_delay * 2 ** (n - 1))]``. A vendor Retry-After
hint raises the delay to at least the hint, still capped by ``max_delay``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)
from tenacity.wait import wait_base

from ..errors import LlmError
from .policy import RetryPolicy

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, LlmError) and exc.retryable


class wait_full_jitter(wait_base):
    """Full-jitter exponential wait that honours ``retry_after`` hints."""

    def __init__(self, base_delay: float, max_delay: float):
        self.max_delay = max_delay
        self._backoff = wait_random_exponential(multiplier=base_delay, max=max_delay)

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self._backoff(retry_state)
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            hint = getattr(outcome.exception(), "retry_after", None)
            if hint:
                delay = max(delay, min(hint, self.max_delay))
        return delay


def backoff_ceiling(policy: RetryPolicy, retry_number: int) -> float:
    """Upper bound of the delay before retry ``retry_number`` (1-based)."""
    return min(policy.max_delay, policy.base_delay * 2 ** (retry_number - 1))


def build_retrying(
    policy: RetryPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
    on_retry: Optional[Callable[[RetryCallState], None]] = None,
) -> AsyncRetrying:
    """Fresh retry controller for one logical call.

    AsyncRetrying keeps per-iteration state on the instance, so never share
    one between concurrent calls.
    """

    def before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Attempt %d/%d failed (%s); retrying in %.2fs",
            retry_state.attempt_number,
            policy.max_attempts,
            error,
            wait,
        )
        if on_retry is not None:
            on_retry(retry_state)

    return AsyncRetrying(
        sleep=sleep,
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_full_jitter(policy.base_delay, policy.max_delay),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep,
        reraise=True,
    )


__all__ = [
    "Sleep",
    "is_retryable",
    "wait_full_jitter",
    "backoff_ceiling",
    "build_retrying",
]
