"""Async circuit breaker, one per refinement backend.

Implements the standard three-state circuit breaker:

    CLOSED    →  (failure_threshold reached)         →  OPEN
    OPEN      →  (reset_timeout elapsed, next call)  →  HALF_OPEN
    HALF_OPEN →  (half_open_max trial calls succeed) →  CLOSED
    HALF_OPEN →  (any trial call fails)              →  OPEN

The HALF_OPEN trial budget is cumulative: at most ``half_open_max`` calls
are admitted after entering HALF_OPEN, whether they overlap or not.  Each
backend gets its own ``CircuitBreaker`` via ``CircuitBreakerRegistry`` so a
single failing backend never blocks the others.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from prompt_refiner.core.errors import CircuitOpenError, RefinementCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class Admission:
    """Ticket returned by ``pre_check()`` for one admitted call.

    Attributes:
        state:      State the call was admitted in.
        generation: Transition counter at admission.  A ticket from an
                    earlier generation no longer affects HALF_OPEN accounting.
    """

    state: CircuitState
    generation: int


class CircuitBreaker:
    """Async-safe circuit breaker for a single backend.

    Args:
        name:               Backend identifier (for logging/errors).
        failure_threshold:  Consecutive failures before opening the circuit.
        reset_timeout:      Seconds the circuit stays OPEN before probing.
        half_open_max:      Trial calls admitted in HALF_OPEN; the same number of
                            successes closes the circuit.
        clock:              Monotonic time source.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        reset_timeout: float = 30.0,
        half_open_max: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.half_open_max = half_open_max
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0
        self._last_failure_time: float | None = None
        self._generation = 0
        self._lock = asyncio.Lock()

        # Metrics
        self.total_calls = 0
        self.total_failures = 0
        self.total_rejections = 0
        self.total_successes = 0

    # ── Public properties ────────────────────────────────────────────

    @property
    def state(self) -> CircuitState:
        """Return the observable state, reporting HALF_OPEN once OPEN has timed out."""
        if self._state == CircuitState.OPEN and self._reset_timeout_elapsed():
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    @property
    def half_open_calls(self) -> int:
        return self._half_open_calls

    @property
    def last_failure_time(self) -> float | None:
        return self._last_failure_time

    # ── Core call wrapper ────────────────────────────────────────────

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run *operation* under breaker protection.

        Raises:
            CircuitOpenError: If the breaker rejects the call; *operation*
                is not invoked.
        """
        admission = await self.pre_check()
        try:
            result = await operation()
        except (RefinementCancelledError, asyncio.CancelledError):
            await self.on_cancelled(admission)
            raise
        except Exception:
            await self.on_failure(admission)
            raise
        await self.on_success(admission)
        return result

    async def pre_check(self) -> Admission:
        """Admit or reject a call; raise ``CircuitOpenError`` on rejection.

        Returns the ``Admission`` to hand back to ``on_success``,
        ``on_failure`` or ``on_cancelled`` once the call finishes.
        """
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if not self._reset_timeout_elapsed():
                    self.total_rejections += 1
                    raise CircuitOpenError(self.name, CircuitState.OPEN.value, self._retry_after())
                self._transition(CircuitState.HALF_OPEN)
                logger.info("Circuit breaker '%s' half-opened", self.name)

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max:
                    self.total_rejections += 1
                    raise CircuitOpenError(self.name, CircuitState.HALF_OPEN.value, 1.0)
                self._half_open_calls += 1

            self.total_calls += 1
            return Admission(self._state, self._generation)

    async def on_success(self, admission: Admission | None = None) -> None:
        """Record a successful call; close the circuit once enough trial calls pass.

        A call admitted before the last state change only counts towards
        the totals.
        """
        async with self._lock:
            self.total_successes += 1
            if not self._is_current(admission):
                return
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.half_open_max:
                    self._transition(CircuitState.CLOSED)
                    logger.info("Circuit breaker '%s' closed", self.name)

    async def on_failure(self, admission: Admission | None = None) -> None:
        """Record a failed call; potentially open the circuit."""
        async with self._lock:
            self.total_failures += 1
            if not self._is_current(admission):
                return
            self._failure_count += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
                logger.warning("Circuit breaker '%s' re-opened after failed trial call", self.name)
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._transition(CircuitState.OPEN)
                logger.warning(
                    "Circuit breaker '%s' opened after %d consecutive failures",
                    self.name,
                    self._failure_count,
                )

    async def on_cancelled(self, admission: Admission | None = None) -> None:
        """Undo the admission of a call that was cancelled before completing.

        Only a trial call admitted in the current HALF_OPEN period gives its
        slot back.
        """
        async with self._lock:
            self.total_calls = max(0, self.total_calls - 1)
            if (
                self._is_current(admission)
                and self._state == CircuitState.HALF_OPEN
                and self._half_open_calls > 0
            ):
                self._half_open_calls -= 1

    async def reset(self) -> None:
        """Force-reset the circuit breaker to CLOSED state."""
        async with self._lock:
            self._transition(CircuitState.CLOSED)
            logger.info("Circuit breaker '%s' manually reset", self.name)

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot for health/metrics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "half_open_calls": self._half_open_calls,
            "last_failure_time": self._last_failure_time,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
            "total_successes": self.total_successes,
        }

    # ── Internals (caller holds the lock) ────────────────────────────

    def _is_current(self, admission: Admission | None) -> bool:
        return admission is None or admission.generation == self._generation

    def _reset_timeout_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return True
        return self._clock() - self._last_failure_time >= self.reset_timeout

    def _retry_after(self) -> float:
        if self._last_failure_time is None:
            return 0.0
        return self.reset_timeout - (self._clock() - self._last_failure_time)

    def _transition(self, state: CircuitState) -> None:
        self._state = state
        self._generation += 1
        self._half_open_calls = 0
        self._success_count = 0
        if state == CircuitState.CLOSED:
            self._failure_count = 0


class CircuitBreakerRegistry:
    """Manages per-backend ``CircuitBreaker`` instances.

    Breakers are created on first access and live as long as the registry.

    Usage::

        registry = CircuitBreakerRegistry(failure_threshold=3, reset_timeout=30.0)
        result = await registry.get("openai").execute(call_backend)
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_timeout: float = 30.0,
        half_open_max: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._half_open_max = half_open_max
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, backend_id: str) -> CircuitBreaker:
        """Return (or create) the circuit breaker for *backend_id*."""
        if backend_id not in self._breakers:
            self._breakers[backend_id] = CircuitBreaker(
                name=backend_id,
                failure_threshold=self._threshold,
                reset_timeout=self._reset_timeout,
                half_open_max=self._half_open_max,
                clock=self._clock,
            )
        return self._breakers[backend_id]

    def __contains__(self, backend_id: str) -> bool:
        return backend_id in self._breakers

    def all_snapshots(self) -> list[dict]:
        """Return snapshots for every registered breaker."""
        return [cb.snapshot() for cb in self._breakers.values()]

    async def reset_all(self) -> None:
        """Reset every circuit breaker to CLOSED."""
        for cb in self._breakers.values():
            await cb.reset()
