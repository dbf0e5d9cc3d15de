"""Bounded async retry for a single provider call.

Retries stay within one provider; crossing to another provider is the
facade's job. Decisions use the structured ``APIError.retryable`` flag, never
message matching.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

from switchyard.errors import APIError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and optional jitter."""

    max_attempts: int = 3
    initial_delay_s: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay_s: float = 8.0
    jitter: bool = True  # "full jitter" when enabled
    max_elapsed_s: float | None = 30.0

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.initial_delay_s < 0:
            raise ValueError("RetryPolicy.initial_delay_s must be >= 0")
        if self.backoff_multiplier <= 0:
            raise ValueError("RetryPolicy.backoff_multiplier must be > 0")
        if self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0")
        if self.max_elapsed_s is not None and self.max_elapsed_s < 0:
            raise ValueError("RetryPolicy.max_elapsed_s must be >= 0 or None")

    @classmethod
    def from_max_retries(cls, max_retries: int) -> RetryPolicy:
        return cls(max_attempts=max_retries + 1)


def should_retry(exc: BaseException) -> bool:
    """Return True when *exc* is worth another attempt on the same provider.

    Cancellation is never retried; only ``APIError`` marked retryable is.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    return isinstance(exc, APIError) and exc.retryable


def _compute_backoff_delay(policy: RetryPolicy, *, retry_index: int) -> float:
    # retry_index starts at 1 for the first retry sleep.
    base = policy.initial_delay_s * (
        policy.backoff_multiplier ** max(0, retry_index - 1)
    )
    base = min(policy.max_delay_s, base)
    if base <= 0:
        return 0.0
    if not policy.jitter:
        return base
    return random.random() * base  # noqa: S311


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry,
) -> T:
    """Run an async factory with bounded retries; re-raise the last failure."""
    start = time.monotonic()

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await factory()
        except Exception as exc:
            if not should_retry(exc) or attempt >= policy.max_attempts:
                raise

            delay = _compute_backoff_delay(policy, retry_index=attempt)
            if isinstance(exc, APIError) and exc.retry_after_s is not None:
                delay = max(delay, exc.retry_after_s)

            if policy.max_elapsed_s is not None:
                remaining = policy.max_elapsed_s - (time.monotonic() - start)
                if remaining <= 0:
                    raise
                delay = min(delay, remaining)

            logger.debug(
                "Attempt %d/%d failed (%s); retrying in %.2fs",
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)

    raise RuntimeError("retry_async exhausted without an exception")  # pragma: no cover
