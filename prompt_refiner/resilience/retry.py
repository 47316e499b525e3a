"""Bounded retry with exponential backoff and jitter.

``with_retry`` runs a single async operation up to ``max_retries + 1``
times.  Only transient failures are retried: core errors say so through
their ``retryable`` flag, anything else (and core errors that do not know)
is matched case-insensitively against the policy's ``retryable_patterns``.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from prompt_refiner.core.cancellation import CancellationToken, cancellable_sleep
from prompt_refiner.core.errors import PromptRefinerError

if TYPE_CHECKING:
    from prompt_refiner.core.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_PATTERNS: tuple[str, ...] = (
    "ETIMEDOUT",
    "ECONNRESET",
    "ENOTFOUND",
    "timeout",
    "rate limit",
)

# Jitter band around the exponential delay: ±25 %.
JITTER_RATIO = 0.25

_rng = random.SystemRandom()


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration, passed per call.

    Attributes:
        max_retries:        Retries after the initial attempt.
        base_delay:         Delay before the first retry, in seconds.
        max_delay:          Upper bound on any single delay, in seconds.
        retryable_patterns: Message substrings marking a failure as transient.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    retryable_patterns: tuple[str, ...] = DEFAULT_RETRYABLE_PATTERNS

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError(f"Retry delays must be >= 0, got base={self.base_delay} max={self.max_delay}")

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.RETRY_MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            retryable_patterns=tuple(settings.RETRY_PATTERNS),
        )


def is_retryable(exc: BaseException, patterns: Sequence[str]) -> bool:
    """Return ``True`` if *exc* looks transient.

    Core errors with an explicit ``retryable`` flag are trusted; otherwise
    the message is matched against *patterns*.
    """
    if isinstance(exc, PromptRefinerError) and exc.retryable is not None:
        return exc.retryable
    message = str(exc).lower()
    return any(pattern.lower() in message for pattern in patterns)


def compute_delay(retry_number: int, policy: RetryPolicy, rng: random.Random = _rng) -> float:
    """Delay before retry *retry_number* (1-indexed), jittered and capped."""
    exponential = policy.base_delay * (2 ** (retry_number - 1))
    jitter = exponential * JITTER_RATIO * rng.uniform(-1.0, 1.0)
    return min(exponential + jitter, policy.max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    cancellation: CancellationToken | None = None,
) -> T:
    """Run *operation* with retries according to *policy*.

    Raises:
        RefinementCancelledError: If *cancellation* fires before an attempt
            or during a backoff delay.
        Exception: The first non-retryable failure, or the last failure once
            every attempt is spent (annotated with the attempt count).
    """
    attempts = policy.max_retries + 1
    for attempt in range(1, attempts + 1):
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc, policy.retryable_patterns):
                logger.debug("Non-retryable error, failing fast: %s", exc)
                raise
            if attempt == attempts:
                logger.warning("Max retries exceeded after %d attempts: %s", attempt, exc)
                exc.add_note(f"Gave up after {attempt} attempt(s)")
                raise
            delay = compute_delay(attempt, policy)
            logger.warning(
                "Retrying after error (attempt %d/%d), waiting %.2fs: %s",
                attempt,
                attempts,
                delay,
                exc,
            )
            await cancellable_sleep(delay, cancellation)

    raise AssertionError("unreachable")  # pragma: no cover
