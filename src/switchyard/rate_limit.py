"""Per-provider admission control.

Each provider owns one :class:`RateLimiter`. It tracks a 60-second sliding
window of request timestamps and token samples plus the number of in-flight
requests, and makes callers wait until all three ceilings have headroom.
"""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

logger = logging.getLogger(__name__)

WINDOW_S = 60.0


def _require_positive_int(value: object, field_name: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{field_name}: must be an int")
    if value <= 0:
        raise ValueError(f"{field_name}: must be > 0, got {value}")


@dataclass(frozen=True)
class RateLimits:
    """Immutable admission ceilings. All rates are per minute."""

    requests_per_minute: int
    tokens_per_minute: int
    max_concurrent: int

    def __post_init__(self) -> None:
        _require_positive_int(self.requests_per_minute, "requests_per_minute")
        _require_positive_int(self.tokens_per_minute, "tokens_per_minute")
        _require_positive_int(self.max_concurrent, "max_concurrent")


# Conservative tier-1 style defaults; override per deployment via
# ProviderConfig.rate_limits.
DEFAULT_RATE_LIMITS: dict[str, RateLimits] = {
    "openai": RateLimits(
        requests_per_minute=3500, tokens_per_minute=200_000, max_concurrent=64
    ),
    "anthropic": RateLimits(
        requests_per_minute=50, tokens_per_minute=40_000, max_concurrent=8
    ),
    "gemini": RateLimits(
        requests_per_minute=300, tokens_per_minute=1_000_000, max_concurrent=16
    ),
}


@dataclass(frozen=True)
class RateLimitSnapshot:
    requests_in_window: int
    tokens_in_window: int
    in_flight: int


class RateLimiter:
    """Sliding-window limiter over requests, tokens and concurrency.

    ``acquire`` never fails; it only delays. The check-and-record step runs
    under an ``asyncio.Lock`` so concurrent callers cannot both pass the same
    check, but the lock is never held while waiting.
    """

    def __init__(
        self,
        limits: RateLimits,
        *,
        name: str = "provider",
        clock: Callable[[], float] = time.monotonic,
        poll_interval_s: float = 1.0,
    ) -> None:
        if poll_interval_s <= 0:
            raise ValueError("poll_interval_s: must be > 0")
        self.limits = limits
        self.name = name
        self._clock = clock
        self._poll_interval_s = poll_interval_s
        self._requests: deque[float] = deque()
        self._tokens: deque[tuple[float, int]] = deque()
        self._token_sum = 0
        self._in_flight = 0
        self._lock = asyncio.Lock()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def _prune(self, now: float) -> None:
        cutoff = now - WINDOW_S
        while self._requests and self._requests[0] <= cutoff:
            self._requests.popleft()
        while self._tokens and self._tokens[0][0] <= cutoff:
            _, tokens = self._tokens.popleft()
            self._token_sum -= tokens

    def _blocked_by(self, estimated_tokens: int) -> str | None:
        if self._in_flight >= self.limits.max_concurrent:
            return "concurrency"
        if len(self._requests) >= self.limits.requests_per_minute:
            return "requests_per_minute"
        # An estimate larger than the whole budget could never pass; let it
        # through once the window has drained.
        if (
            self._tokens
            and self._token_sum + estimated_tokens > self.limits.tokens_per_minute
        ):
            return "tokens_per_minute"
        return None

    def _try_admit(self, estimated_tokens: int) -> str | None:
        now = self._clock()
        self._prune(now)
        blocked = self._blocked_by(estimated_tokens)
        if blocked is not None:
            return blocked
        self._requests.append(now)
        if estimated_tokens > 0:
            self._tokens.append((now, estimated_tokens))
            self._token_sum += estimated_tokens
        self._in_flight += 1
        return None

    async def acquire(self, estimated_tokens: int = 0) -> float:
        """Wait until admitted; return the seconds spent waiting."""
        if estimated_tokens < 0:
            raise ValueError(f"estimated_tokens: must be >= 0, got {estimated_tokens}")
        start = self._clock()
        while True:
            async with self._lock:
                blocked = self._try_admit(estimated_tokens)
            if blocked is None:
                return max(0.0, self._clock() - start)
            logger.debug(
                "Rate limiter for %s waiting on %s (in_flight=%d)",
                self.name,
                blocked,
                self._in_flight,
            )
            await asyncio.sleep(self._poll_interval_s)

    def release(self) -> None:
        """Return one in-flight slot."""
        if self._in_flight <= 0:
            raise RuntimeError(f"release() without matching acquire() for {self.name}")
        self._in_flight -= 1

    @asynccontextmanager
    async def permit(self, estimated_tokens: int = 0) -> AsyncIterator[None]:
        """Hold one admission for the duration of the block."""
        await self.acquire(estimated_tokens)
        try:
            yield
        finally:
            self.release()

    def snapshot(self) -> RateLimitSnapshot:
        """Current window usage, after aging out expired samples."""
        self._prune(self._clock())
        return RateLimitSnapshot(
            requests_in_window=len(self._requests),
            tokens_in_window=self._token_sum,
            in_flight=self._in_flight,
        )


def limiter_for(
    provider: str,
    override: RateLimits | None = None,
    *,
    clock: Callable[[], float] = time.monotonic,
    poll_interval_s: float = 1.0,
) -> RateLimiter:
    """Build a limiter from the vendor default table or an explicit override."""
    limits = override if override is not None else DEFAULT_RATE_LIMITS[provider]
    return RateLimiter(
        limits, name=provider, clock=clock, poll_interval_s=poll_interval_s
    )
