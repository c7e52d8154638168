"""Circuit breaker - stop hammering a provider that keeps failing.

States:
    CLOSED     calls flow; health failures inside the rolling window are counted
    OPEN       calls fail fast with CircuitOpenError until the cooldown elapses
    HALF_OPEN  exactly one trial call is admitted; its outcome decides the next state

The state machine is a ``pybreaker.CircuitBreaker``. Outcomes of async calls
are replayed into it once the call has finished, so its lock is never held
across an ``await``. This module adds what pybreaker leaves out: the single
trial slot, the rolling failure window, an injectable clock for the cooldown
and :class:`Permit` bookkeeping for scoped acquisition.

Only errors that say something about provider health (``counts_as_failure``)
move the breaker. Abandoned calls (cancelled by the caller, closed streams)
are neutral and release their slot.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Callable, Optional

import pybreaker

from ..errors import CircuitOpenError, LlmError
from .policy import BreakerPolicy

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_STATES = {
    pybreaker.STATE_CLOSED: BreakerState.CLOSED,
    pybreaker.STATE_OPEN: BreakerState.OPEN,
    pybreaker.STATE_HALF_OPEN: BreakerState.HALF_OPEN,
}


def _is_neutral(error: BaseException) -> bool:
    """pybreaker ``exclude`` predicate: errors that say nothing about provider health."""
    return not getattr(error, "counts_as_failure", False)


def _succeed() -> None:
    return None


def _fail(error: LlmError) -> None:
    raise error


class Permit:
    """Admission ticket handed out by :meth:`CircuitBreaker.guard`.

    The guarded body reports the outcome with :meth:`record`; a permit that
    is never recorded counts as neither success nor failure.
    """

    __slots__ = ("is_trial", "error", "recorded")

    def __init__(self, is_trial: bool):
        self.is_trial = is_trial
        self.error: Optional[LlmError] = None
        self.recorded = False

    def record(self, error: Optional[LlmError] = None) -> None:
        """Record success (``error is None``) or the error the call ended with."""
        self.error = error
        self.recorded = True

    @property
    def failed(self) -> bool:
        return self.recorded and self.error is not None and self.error.counts_as_failure


class _TransitionListener(pybreaker.CircuitBreakerListener):
    """Logs transitions and keeps the owner's cooldown and window in step."""

    def __init__(self, owner: CircuitBreaker):
        self._owner = owner

    def state_change(self, cb, old_state, new_state) -> None:
        old_name = getattr(old_state, "name", None)
        if old_name == new_state.name:
            return
        owner = self._owner
        if new_state.name == pybreaker.STATE_OPEN:
            owner._opened_at = owner._clock()
            owner._failures.clear()
            logger.warning(
                "Circuit %s opened; failing fast for %.1fs", owner.name, owner.policy.cooldown
            )
        elif new_state.name == pybreaker.STATE_HALF_OPEN:
            logger.info("Circuit %s half-open; admitting one trial call", owner.name)
        else:
            owner._failures.clear()
            logger.info("Circuit %s closed", owner.name)


class CircuitBreaker:
    """Rolling-window circuit breaker for one (provider, model) pair.

    Args:
        policy: Thresholds
        name: Label used in logs and errors (e.g. "openai:gpt-4o")
        provider: Provider name attached to CircuitOpenError
        clock: Monotonic time source for the cooldown, injectable for tests
    """

    def __init__(
        self,
        policy: BreakerPolicy,
        *,
        name: str = "",
        provider: Optional[str] = None,
        clock: Clock = time.monotonic,
    ):
        self.policy = policy
        self.name = name
        self.provider = provider
        self._clock = clock
        # Reentrant: pybreaker notifies the listener while we hold it
        self._lock = threading.RLock()
        self._storage = pybreaker.CircuitMemoryStorage(pybreaker.STATE_CLOSED)
        self._breaker = pybreaker.CircuitBreaker(
            fail_max=policy.failure_threshold,
            reset_timeout=policy.cooldown,
            exclude=[_is_neutral],
            listeners=[_TransitionListener(self)],
            state_storage=self._storage,
            name=name or None,
        )
        self._failures: deque[float] = deque()
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._in_flight = 0

    @property
    def state(self) -> BreakerState:
        with self._lock:
            self._refresh(self._clock())
            return _STATES[self._breaker.current_state]

    @property
    def in_flight(self) -> int:
        """Calls currently admitted and not yet finished."""
        return self._in_flight

    @asynccontextmanager
    async def guard(self) -> AsyncIterator[Permit]:
        """Admit one call or raise :class:`CircuitOpenError`.

        The slot is released when the block exits, whichever way it exits.
        An :class:`LlmError` escaping the block is recorded automatically.
        """
        permit = self._admit()
        try:
            yield permit
        except LlmError as e:
            if not permit.recorded:
                permit.record(e)
            raise
        finally:
            self._release(permit)

    def reset(self) -> None:
        """Force the breaker back to CLOSED and forget past failures."""
        with self._lock:
            self._breaker.close()
            self._failures.clear()
            self._trial_in_flight = False

    # ------------------------------------------------------------------
    # Admission and outcome replay
    # ------------------------------------------------------------------

    def _admit(self) -> Permit:
        with self._lock:
            now = self._clock()
            self._refresh(now)
            current = self._breaker.current_state
            if current == pybreaker.STATE_OPEN:
                remaining = self.policy.cooldown - (now - self._opened_at)
                raise CircuitOpenError(
                    f"Circuit open for {self.name}; retry in {max(remaining, 0.0):.1f}s",
                    provider=self.provider,
                )
            is_trial = False
            if current == pybreaker.STATE_HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(
                        f"Circuit half-open for {self.name}; trial call already in flight",
                        provider=self.provider,
                    )
                self._trial_in_flight = True
                is_trial = True
            self._in_flight += 1
            return Permit(is_trial)

    def _release(self, permit: Permit) -> None:
        with self._lock:
            self._in_flight -= 1
            if permit.is_trial:
                self._trial_in_flight = False
            if not permit.recorded:
                return
            current = self._breaker.current_state
            if permit.is_trial and current == pybreaker.STATE_HALF_OPEN:
                # Any answer from the provider decides the trial; neutral errors close it
                self._replay(permit.error)
            elif permit.failed and current == pybreaker.STATE_CLOSED:
                self._count_failure(permit.error)

    def _count_failure(self, error: LlmError) -> None:
        now = self._clock()
        self._failures.append(now)
        horizon = now - self.policy.window
        while self._failures and self._failures[0] < horizon:
            self._failures.popleft()
        # pybreaker counts failures since the last reset; align it with the window
        # before it adds this one and compares against fail_max
        self._storage.reset_counter()
        for _ in range(len(self._failures) - 1):
            self._storage.increment_counter()
        self._replay(error)

    def _replay(self, error: Optional[LlmError]) -> None:
        try:
            if error is None:
                self._breaker.call(_succeed)
            else:
                self._breaker.call(_fail, error)
        except (LlmError, pybreaker.CircuitBreakerError):
            # the real outcome already reached the caller
            pass

    def _refresh(self, now: float) -> None:
        if (
            self._breaker.current_state == pybreaker.STATE_OPEN
            and now - self._opened_at >= self.policy.cooldown
        ):
            self._breaker.half_open()


__all__ = ["BreakerState", "CircuitBreaker", "Permit"]
