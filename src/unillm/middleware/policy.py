"""Middleware policy - knobs for the resilience stack.

Every field has a documented default and can be overridden individually:

    policy = MiddlewarePolicy(
        timeout=10.0,
        retry=RetryPolicy(max_attempts=5),
        rate_limit=RateLimitPolicy(capacity=2, refill_interval=0.5),
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with full jitter.

    Attributes:
        max_attempts: Total attempts including the first one (1 disables retry)
        base_delay: Delay ceiling in seconds for the first retry; doubles per attempt
        max_delay: Upper bound for any single delay in seconds
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 5.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be >= 0")


@dataclass(frozen=True)
class RateLimitPolicy:
    """Token bucket shared by every request of one client.

    Attributes:
        capacity: Maximum burst of requests (bucket size)
        refill_interval: Seconds to regain one token
    """

    capacity: int = 10
    refill_interval: float = 0.1

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError("capacity must be >= 1")
        if self.refill_interval <= 0:
            raise ValueError("refill_interval must be > 0")


@dataclass(frozen=True)
class BreakerPolicy:
    """Circuit breaker thresholds, applied per (provider, model).

    Attributes:
        failure_threshold: Failures inside the window that open the circuit
        cooldown: Seconds the circuit stays open before a trial call is allowed
        window: Length of the rolling failure window in seconds
    """

    failure_threshold: int = 5
    cooldown: float = 30.0
    window: float = 60.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.cooldown < 0 or self.window <= 0:
            raise ValueError("cooldown must be >= 0 and window > 0")


@dataclass(frozen=True)
class MiddlewarePolicy:
    """Complete resilience policy for one client.

    Attributes:
        timeout: Deadline in seconds for a whole call, retries included (None disables)
        rate_limit: Token bucket settings (None disables rate limiting)
        breaker: Circuit breaker settings
        retry: Retry settings
    """

    timeout: Optional[float] = 30.0
    rate_limit: Optional[RateLimitPolicy] = field(default_factory=RateLimitPolicy)
    breaker: BreakerPolicy = field(default_factory=BreakerPolicy)
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")


__all__ = [
    "RetryPolicy",
    "RateLimitPolicy",
    "BreakerPolicy",
    "MiddlewarePolicy",
]
