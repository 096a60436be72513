"""Deferred resets for subscriptions whose cooldown ends later today."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Protocol

import structlog

from autoreset.alerts.notifier import Notifier, notify_safely
from autoreset.engine.base import (
    CheckpointKind,
    ResetDetail,
    ResetStatus,
    RunSummary,
    SkipReason,
    Subscription,
)
from autoreset.engine.executor import ResetExecutor, SubscriptionGateway, find_subscription
from autoreset.timeutils import check_cooldown, format_datetime, next_midnight

log = structlog.get_logger()

FIRE_MARGIN = timedelta(seconds=1)

Callback = Callable[[], Awaitable[None]]
Recorder = Callable[[RunSummary], Awaitable[object]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskHandle(Protocol):
    def cancel(self) -> None: ...


class DeferredExecutor(Protocol):
    """Runs a callback once at a given instant."""

    def schedule(self, fire_at: datetime, callback: Callback) -> TaskHandle: ...

    async def wait_all(self) -> None: ...


class _AsyncioHandle:
    def __init__(self) -> None:
        self.task: asyncio.Task | None = None
        self.started = False

    def cancel(self) -> None:
        # A fire that already started runs to completion.
        if self.task is not None and not self.started:
            self.task.cancel()


class AsyncioDeferredExecutor:
    """Real-clock deferred executor backed by asyncio tasks."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()

    def schedule(self, fire_at: datetime, callback: Callback) -> TaskHandle:
        handle = _AsyncioHandle()
        delay = max(0.0, (fire_at - self._clock()).total_seconds())

        async def runner() -> None:
            await asyncio.sleep(delay)
            handle.started = True
            await callback()

        task = asyncio.create_task(runner())
        handle.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return handle

    async def wait_all(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)


@dataclass
class ScheduledTask:
    key: str
    subscription_id: int | str
    subscription_name: str
    fire_at: datetime
    checkpoint: CheckpointKind
    handle: TaskHandle | None = None


def task_key(subscription_id: int | str) -> str:
    return f"delayed-reset-{subscription_id}"


class TaskRegistry:
    """At most one live deferred task per key."""

    def __init__(self) -> None:
        self._tasks: dict[str, ScheduledTask] = {}

    def set(self, task: ScheduledTask) -> None:
        self.clear(task.key)
        self._tasks[task.key] = task
        log.debug("deferred_task_registered", key=task.key, fire_at=task.fire_at.isoformat())

    def clear(self, key: str) -> None:
        """Cancel and drop the task under ``key``, if any."""
        task = self._tasks.pop(key, None)
        if task is not None and task.handle is not None:
            task.handle.cancel()
            log.debug("deferred_task_cancelled", key=key)

    def discard(self, task: ScheduledTask) -> None:
        """Drop ``task`` after it fired, unless it was already replaced."""
        if self._tasks.get(task.key) is task:
            del self._tasks[task.key]

    def clear_all(self) -> int:
        count = len(self._tasks)
        for key in list(self._tasks):
            self.clear(key)
        return count

    def get(self, key: str) -> ScheduledTask | None:
        return self._tasks.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)


class DelayedResetScheduler:
    """Reset now when the cooldown has passed, otherwise schedule the reset.

    A deferred reset is only armed when it would fire before local midnight.
    The vendor refills reset quotas at day rollover, so a reset that slips
    past midnight burns a reset the subscription would have gotten back for
    free; those subscriptions are skipped instead.
    """

    def __init__(
        self,
        gateway: SubscriptionGateway,
        executor: ResetExecutor,
        notifier: Notifier,
        deferred: DeferredExecutor,
        *,
        cooldown: timedelta,
        zone: tzinfo,
        clock: Callable[[], datetime] = utcnow,
        registry: TaskRegistry | None = None,
        recorder: Recorder | None = None,
    ) -> None:
        self._gateway = gateway
        self._executor = executor
        self._notifier = notifier
        self._deferred = deferred
        self._cooldown = cooldown
        self._zone = zone
        self._clock = clock
        self.registry = registry if registry is not None else TaskRegistry()
        self._recorder = recorder

    async def handle(self, sub: Subscription, kind: CheckpointKind) -> ResetDetail:
        now = self._clock()
        cooldown = check_cooldown(sub.last_reset_at, self._cooldown, now)
        if cooldown.passed:
            return await self._executor.execute(sub, kind)

        # cooldown only fails when there is a last reset
        fire_at = sub.last_reset_at + self._cooldown + FIRE_MARGIN  # type: ignore[operator]
        if fire_at >= next_midnight(now, self._zone):
            log.warning(
                "deferred_reset_crosses_midnight",
                subscription=sub.label,
                last_reset=format_datetime(sub.last_reset_at, self._zone),
                would_fire_at=format_datetime(fire_at, self._zone),
            )
            return ResetDetail(
                subscription_id=sub.id,
                subscription_name=sub.display_name,
                status=ResetStatus.SKIPPED,
                reason=SkipReason.CROSS_MIDNIGHT,
                message="deferred reset would cross midnight, keeping tomorrow's quota",
                before_credits=sub.current_credits,
                before_reset_times=sub.reset_times,
            )

        task = ScheduledTask(
            key=task_key(sub.id),
            subscription_id=sub.id,
            subscription_name=sub.display_name,
            fire_at=fire_at,
            checkpoint=kind,
        )
        task.handle = self._deferred.schedule(fire_at, lambda: self._fire(task))
        self.registry.set(task)

        log.info(
            "deferred_reset_scheduled",
            subscription=sub.label,
            checkpoint=kind.value,
            fire_at=format_datetime(fire_at, self._zone),
            wait=cooldown.formatted,
        )
        return ResetDetail(
            subscription_id=sub.id,
            subscription_name=sub.display_name,
            status=ResetStatus.SCHEDULED,
            message=f"reset scheduled for {format_datetime(fire_at, self._zone)}",
            before_credits=sub.current_credits,
            before_reset_times=sub.reset_times,
            scheduled_for=fire_at,
        )

    async def _fire(self, task: ScheduledTask) -> None:
        log.info("deferred_reset_firing", key=task.key, checkpoint=task.checkpoint.value)
        try:
            detail = await self._run(task)
            if detail is not None:
                summary = RunSummary(
                    checkpoint=task.checkpoint,
                    account=self._gateway.key_mask,
                    total=1,
                    eligible=1,
                    delayed=True,
                )
                summary.add(detail)
                summary.finished_at = utcnow()
                await notify_safely(self._notifier, summary)
                await self._record(summary)
        finally:
            self.registry.discard(task)

    async def _record(self, summary: RunSummary) -> None:
        if self._recorder is None:
            return
        try:
            await self._recorder(summary)
        except Exception:
            log.exception("history_record_failed", checkpoint=summary.checkpoint.value, delayed=True)

    async def _run(self, task: ScheduledTask) -> ResetDetail | None:
        try:
            # Never trust the snapshot from scheduling time; quota and cooldown may have moved.
            current = find_subscription(await self._gateway.fetch_all(), task.subscription_id)
            if current is None:
                log.warning("deferred_reset_subscription_missing", key=task.key)
                return None
            return await self._executor.execute(current, task.checkpoint)
        except Exception as exc:
            log.exception("deferred_reset_failed", key=task.key)
            return ResetDetail(
                subscription_id=task.subscription_id,
                subscription_name=task.subscription_name,
                status=ResetStatus.FAILED,
                message=str(exc) or type(exc).__name__,
            )

    def cancel_all(self) -> int:
        """Drop every pending deferred reset without running it."""
        count = self.registry.clear_all()
        log.info("deferred_resets_cancelled", count=count)
        return count

    async def wait_idle(self) -> None:
        await self._deferred.wait_all()
