"""Async client for the 88code subscription API."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from autoreset.api.rate_limit import TokenBucket
from autoreset.api.retry import default_should_retry, should_retry_reset, with_retry
from autoreset.api.schemas import ResetResponse, SubscriptionSchema
from autoreset.config import Settings
from autoreset.engine.base import Subscription

log = structlog.get_logger()


class ApiError(Exception):
    """The API answered, but not with something we can use."""


class RateLimitTimeout(ApiError):
    """No rate-limit token became available in time."""


def mask_api_key(key: str) -> str:
    if len(key) <= 10:
        return "***"
    return f"{key[:6]}...{key[-4:]}"


class ResetApiClient:
    SUBSCRIPTIONS = "/api/subscription"
    RESET_CREDITS = "/api/reset-credits/{subscription_id}"
    USAGE = "/api/usage"

    def __init__(
        self,
        settings: Settings,
        api_key: str,
        limiter: TokenBucket | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._api_key = api_key
        self._limiter = limiter
        self._sleep = sleep
        self.key_mask = mask_api_key(api_key)
        self._client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.api_timeout_seconds,
            headers={"Content-Type": "application/json", "Authorization": api_key},
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ── Public methods ──────────────────────────────────────────────

    async def fetch_all(self) -> list[Subscription]:
        """Fetch every subscription on this account as fresh snapshots."""
        resp = await self._request(self.SUBSCRIPTIONS)
        payload = resp.json()
        if not isinstance(payload, list):
            raise ApiError(f"unexpected subscription payload: {type(payload).__name__}")

        subscriptions: list[Subscription] = []
        for raw in payload:
            try:
                schema = SubscriptionSchema.model_validate(raw)
            except ValidationError as exc:
                log.warning("subscription_unreadable", account=self.key_mask, errors=exc.error_count())
                continue
            subscriptions.append(schema.to_subscription(self._settings.api_zone))

        log.info("subscriptions_fetched", account=self.key_mask, count=len(subscriptions))
        return subscriptions

    async def reset_one(self, subscription_id: int | str) -> ResetResponse:
        """Ask the API to reset one subscription's credits."""
        log.info("reset_requested", account=self.key_mask, subscription_id=subscription_id)
        resp = await self._request(
            self.RESET_CREDITS.format(subscription_id=subscription_id),
            should_retry=should_retry_reset,
        )
        # 204 or an empty body counts as success
        if resp.status_code == 204 or not resp.content:
            return ResetResponse(success=True, message="reset accepted")
        data = resp.json()
        if not isinstance(data, dict):
            return ResetResponse(success=True, message="reset accepted")
        return ResetResponse.model_validate(data)

    async def get_usage(self) -> dict[str, Any]:
        resp = await self._request(self.USAGE)
        return resp.json()

    async def test_connection(self) -> bool:
        try:
            await self.get_usage()
        except (httpx.HTTPError, ApiError, ValueError):
            log.exception("connection_test_failed", account=self.key_mask)
            return False
        return True

    # ── Internal ────────────────────────────────────────────────────

    async def _request(
        self,
        path: str,
        should_retry: Callable[[BaseException], bool] = default_should_retry,
    ) -> httpx.Response:
        if not self._settings.enable_retry:
            return await self._post(path)
        return await with_retry(
            lambda: self._post(path),
            max_retries=self._settings.max_retries,
            base_delay=self._settings.retry_base_delay_seconds,
            max_delay=self._settings.retry_max_delay_seconds,
            should_retry=should_retry,
            sleep=self._sleep,
        )

    async def _post(self, path: str) -> httpx.Response:
        if self._limiter is not None:
            timeout = self._settings.rate_limit_wait_timeout_seconds
            if not await self._limiter.wait_for_token(timeout):
                raise RateLimitTimeout(f"no rate-limit token within {timeout:g}s")

        resp = await self._client.post(path)
        if resp.is_error:
            log.error(
                "api_error",
                account=self.key_mask,
                path=path,
                status=resp.status_code,
                body=resp.text[:200],
            )
        resp.raise_for_status()
        log.debug("api_response", account=self.key_mask, path=path, status=resp.status_code)
        return resp
