"""Client-wide token bucket on top of aiolimiter."""

from __future__ import annotations

from aiolimiter import AsyncLimiter

from .policy import RateLimitPolicy


class RateLimiter:
    """Token bucket: ``capacity`` burst, one token back every ``refill_interval``.

    A full bucket admits ``capacity`` requests immediately; after that requests
    wait in FIFO order until a token drips back.
    """

    def __init__(self, policy: RateLimitPolicy):
        self.policy = policy
        self._limiter = AsyncLimiter(
            max_rate=policy.capacity,
            time_period=policy.capacity * policy.refill_interval,
        )

    def has_capacity(self) -> bool:
        return self._limiter.has_capacity()

    async def acquire(self) -> None:
        """Wait for and consume one token."""
        await self._limiter.acquire()


__all__ = ["RateLimiter"]
