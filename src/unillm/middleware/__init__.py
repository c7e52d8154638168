"""Middleware module - resilience around provider adapters.

- MiddlewarePolicy: Timeout, rate limit, breaker and retry settings
- MiddlewareStack: Applies the policy to one adapter
- CircuitBreaker: Per (provider, model) fail-fast state machine
- RateLimiter: Client-wide token bucket
- build_retrying: Full-jitter exponential backoff controller
"""

from .breaker import BreakerState, CircuitBreaker, Permit
from .policy import BreakerPolicy, MiddlewarePolicy, RateLimitPolicy, RetryPolicy
from .ratelimit import RateLimiter
from .retry import backoff_ceiling, build_retrying, is_retryable, wait_full_jitter
from .stack import MiddlewareStack

__all__ = [
    "MiddlewarePolicy",
    "RetryPolicy",
    "RateLimitPolicy",
    "BreakerPolicy",
    "MiddlewareStack",
    "CircuitBreaker",
    "BreakerState",
    "Permit",
    "RateLimiter",
    "build_retrying",
    "backoff_ceiling",
    "is_retryable",
    "wait_full_jitter",
]
