"""Bounded exponential-backoff retries for API calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
import structlog

log = structlog.get_logger()

T = TypeVar("T")

# Connection resets, timeouts and half-closed sockets are worth another try.
RETRYABLE_TRANSPORT_ERRORS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)


def default_should_retry(exc: BaseException) -> bool:
    """Retry transport failures, HTTP 5xx and HTTP 429; nothing else."""
    if isinstance(exc, RETRYABLE_TRANSPORT_ERRORS):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status == 429
    return False


def should_retry_reset(exc: BaseException) -> bool:
    """Reset calls never retry credential failures."""
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in (401, 403):
        return False
    return default_should_retry(exc)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    should_retry: Callable[[BaseException], bool] = default_should_retry,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``max_retries + 1`` times.

    The last error is re-raised as soon as ``should_retry`` rejects it or the
    attempts are used up. Between attempts the delay doubles from
    ``base_delay`` and is capped at ``max_delay``.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= max_retries or not should_retry(exc):
                raise
            delay = min(base_delay * (2**attempt), max_delay)
            log.warning(
                "retrying",
                attempt=attempt + 1,
                max_retries=max_retries,
                delay=delay,
                error=str(exc) or type(exc).__name__,
            )
            await sleep(delay)
            attempt += 1
