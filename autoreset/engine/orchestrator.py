"""Run one checkpoint end to end for one account."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime

import structlog

from autoreset.alerts.notifier import Notifier, notify_safely
from autoreset.engine.base import (
    CHECKPOINT_POLICIES,
    CheckpointKind,
    ResetDetail,
    ResetStatus,
    RunSummary,
    Subscription,
)
from autoreset.engine.deferred import DelayedResetScheduler, utcnow
from autoreset.engine.eligibility import EligibilityPolicy, classify
from autoreset.engine.executor import ResetExecutor, SubscriptionGateway

log = structlog.get_logger()


class CheckpointOrchestrator:
    def __init__(
        self,
        gateway: SubscriptionGateway,
        executor: ResetExecutor,
        delayed: DelayedResetScheduler,
        notifier: Notifier,
        policy: EligibilityPolicy,
        *,
        request_interval_seconds: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._executor = executor
        self._delayed = delayed
        self._notifier = notifier
        self._policy = policy
        self._interval = request_interval_seconds
        self._clock = clock
        self._sleep = sleep

    async def run(self, kind: CheckpointKind) -> RunSummary:
        """Fetch, classify and process every eligible subscription.

        Never raises: a failed fetch yields an empty summary with ``error``
        set so the scheduler keeps running.
        """
        summary = RunSummary(checkpoint=kind, account=self._gateway.key_mask, started_at=self._clock())
        log.info(
            "checkpoint_start",
            checkpoint=kind.value,
            account=summary.account,
            dry_run=self._executor.dry_run,
        )

        try:
            subscriptions = await self._gateway.fetch_all()
        except Exception as exc:
            log.exception("checkpoint_fetch_failed", checkpoint=kind.value, account=summary.account)
            summary.error = str(exc) or type(exc).__name__
            summary.finished_at = self._clock()
            await notify_safely(self._notifier, summary)
            return summary

        summary.total = len(subscriptions)
        eligible = self._select_eligible(subscriptions, kind)
        summary.eligible = len(eligible)
        log.info("checkpoint_eligible", checkpoint=kind.value, total=summary.total, eligible=summary.eligible)

        for index, sub in enumerate(eligible):
            if index > 0:
                await self._sleep(self._interval)
            summary.add(await self._process(sub, kind))

        summary.finished_at = self._clock()
        log.info(
            "checkpoint_done",
            checkpoint=kind.value,
            account=summary.account,
            success=summary.success,
            failed=summary.failed,
            skipped=summary.skipped,
            scheduled=summary.scheduled,
            duration_seconds=round(summary.duration_seconds, 2),
        )
        await notify_safely(self._notifier, summary)
        return summary

    def _select_eligible(
        self, subscriptions: list[Subscription], kind: CheckpointKind
    ) -> list[Subscription]:
        now = self._clock()
        eligible = []
        for sub in subscriptions:
            verdict = classify(sub, kind, self._policy, now)
            if verdict.eligible:
                eligible.append(sub)
            else:
                log.info(
                    "subscription_not_eligible",
                    subscription=sub.label,
                    reason=verdict.reason.value if verdict.reason else None,
                    detail=verdict.message,
                )
        return eligible

    async def _process(self, sub: Subscription, kind: CheckpointKind) -> ResetDetail:
        try:
            if CHECKPOINT_POLICIES[kind].defers_on_cooldown:
                return await self._delayed.handle(sub, kind)
            return await self._executor.execute(sub, kind)
        except Exception as exc:
            log.exception("subscription_processing_failed", subscription=sub.label)
            return ResetDetail(
                subscription_id=sub.id,
                subscription_name=sub.display_name,
                status=ResetStatus.FAILED,
                message=str(exc) or type(exc).__name__,
                before_credits=sub.current_credits,
                before_reset_times=sub.reset_times,
            )
