"""Token-bucket limiter shared by every outbound API call."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog

log = structlog.get_logger()


class TokenBucket:
    """Token bucket refilled continuously at ``refill_per_minute``.

    One instance is created per process and handed to every API client, so
    immediate resets, deferred resets and all accounts draw from the same
    budget. ``try_consume`` never awaits, which makes its read-modify-write
    atomic on the event loop.
    """

    def __init__(
        self,
        capacity: int,
        refill_per_minute: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        poll_interval: float = 1.0,
    ) -> None:
        self.capacity = capacity
        self.refill_per_minute = refill_per_minute
        self._clock = clock
        self._sleep = sleep
        self._poll_interval = poll_interval
        self._tokens = float(capacity)
        self._last_refill = clock()
        log.info("rate_limiter_initialized", capacity=capacity, refill_per_minute=refill_per_minute)

    def refill(self) -> None:
        now = self._clock()
        elapsed_minutes = (now - self._last_refill) / 60
        if elapsed_minutes > 0:
            self._tokens = min(
                float(self.capacity), self._tokens + elapsed_minutes * self.refill_per_minute
            )
            self._last_refill = now

    def try_consume(self) -> bool:
        self.refill()
        if self._tokens >= 1:
            self._tokens -= 1
            log.debug("rate_limit_token_consumed", remaining=round(self._tokens, 2))
            return True
        log.debug("rate_limit_no_token", tokens=round(self._tokens, 2))
        return False

    async def wait_for_token(self, max_wait: float = 60.0) -> bool:
        """Poll until a token is available; False once ``max_wait`` seconds pass."""
        start = self._clock()
        while True:
            if self.try_consume():
                return True
            if self._clock() - start >= max_wait:
                log.error("rate_limit_wait_timeout", max_wait=max_wait)
                return False
            await self._sleep(self._poll_interval)

    @property
    def available(self) -> int:
        self.refill()
        return int(self._tokens)

    def status(self) -> dict:
        self.refill()
        return {
            "capacity": self.capacity,
            "available": int(self._tokens),
            "refill_per_minute": self.refill_per_minute,
            "utilization_pct": round((self.capacity - self._tokens) / self.capacity * 100, 1),
        }
