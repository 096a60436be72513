"""Perform one reset and verify that it actually changed something."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol

import structlog

from autoreset.api.schemas import ResetResponse
from autoreset.engine.base import (
    CheckpointKind,
    ResetDetail,
    ResetStatus,
    SkipReason,
    Subscription,
)

log = structlog.get_logger()

CREDIT_EPSILON = 0.01


class SubscriptionGateway(Protocol):
    key_mask: str

    async def fetch_all(self) -> list[Subscription]: ...

    async def reset_one(self, subscription_id: int | str) -> ResetResponse: ...


def find_subscription(
    subscriptions: list[Subscription], subscription_id: int | str
) -> Subscription | None:
    for sub in subscriptions:
        if str(sub.id) == str(subscription_id):
            return sub
    return None


class ResetExecutor:
    """Reset one subscription, wait for the API to settle, then re-read it.

    A 200 from the reset endpoint is not proof of a reset: some accounts
    accept the call and change nothing. Only an observed change in credits
    or reset count is reported as SUCCESS.
    """

    def __init__(
        self,
        gateway: SubscriptionGateway,
        *,
        settle_seconds: float = 3.0,
        dry_run: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._settle_seconds = settle_seconds
        self.dry_run = dry_run
        self._sleep = sleep

    async def execute(self, sub: Subscription, kind: CheckpointKind) -> ResetDetail:
        detail = ResetDetail(
            subscription_id=sub.id,
            subscription_name=sub.display_name,
            status=ResetStatus.SUCCESS,
            before_credits=sub.current_credits,
            before_reset_times=sub.reset_times,
        )
        log.info(
            "reset_starting",
            account=self._gateway.key_mask,
            checkpoint=kind.value,
            subscription=sub.label,
            reset_times=sub.reset_times,
            credits=round(sub.current_credits, 2),
        )

        if self.dry_run:
            log.info("reset_dry_run", subscription=sub.label)
            detail.status = ResetStatus.SKIPPED
            detail.reason = SkipReason.DRY_RUN
            detail.message = "[dry-run] reset not sent"
            return detail

        try:
            response = await self._gateway.reset_one(sub.id)
        except Exception as exc:
            log.exception("reset_failed", subscription=sub.label)
            detail.status = ResetStatus.FAILED
            detail.message = str(exc) or type(exc).__name__
            return detail

        if not response.success:
            log.error("reset_rejected", subscription=sub.label, message=response.message)
            detail.status = ResetStatus.FAILED
            detail.message = response.message or "reset rejected by API"
            return detail

        await self._sleep(self._settle_seconds)
        return await self._verify(sub, detail)

    async def _verify(self, sub: Subscription, detail: ResetDetail) -> ResetDetail:
        try:
            updated = find_subscription(await self._gateway.fetch_all(), sub.id)
        except Exception:
            log.exception("reset_verification_fetch_failed", subscription=sub.label)
            updated = None

        if updated is None:
            log.warning("reset_unverified", subscription=sub.label)
            detail.verified = False
            detail.message = "reset accepted (unverified)"
            return detail

        detail.after_credits = updated.current_credits
        detail.after_reset_times = updated.reset_times
        credits_unchanged = abs(sub.current_credits - updated.current_credits) < CREDIT_EPSILON
        times_unchanged = sub.reset_times == updated.reset_times

        if credits_unchanged and times_unchanged:
            log.warning(
                "reset_no_effect",
                subscription=sub.label,
                credits=round(sub.current_credits, 2),
                reset_times=sub.reset_times,
            )
            detail.status = ResetStatus.SKIPPED
            detail.reason = SkipReason.NO_EFFECT
            detail.message = "API reported success but nothing changed"
        elif updated.reset_times > sub.reset_times:
            log.info(
                "reset_succeeded",
                subscription=sub.label,
                credits_before=round(sub.current_credits, 2),
                credits_after=round(updated.current_credits, 2),
                reset_times_before=sub.reset_times,
                reset_times_after=updated.reset_times,
                cross_day_refill=True,
            )
            detail.message = "reset succeeded (cross-day refill detected)"
        else:
            log.info(
                "reset_succeeded",
                subscription=sub.label,
                credits_before=round(sub.current_credits, 2),
                credits_after=round(updated.current_credits, 2),
                reset_times_before=sub.reset_times,
                reset_times_after=updated.reset_times,
            )
            detail.message = "reset succeeded"
        return detail
