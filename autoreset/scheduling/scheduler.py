"""APScheduler-based checkpoint scheduler."""

from __future__ import annotations

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from autoreset.config import Settings
from autoreset.db.repository import Repository
from autoreset.engine.account import AccountService
from autoreset.engine.base import CheckpointKind, RunSummary
from autoreset.scheduling.lock import ExecutionLock
from autoreset.timeutils import parse_hhmm

log = structlog.get_logger()


class CheckpointTrigger:
    def __init__(
        self,
        accounts: list[AccountService],
        lock: ExecutionLock,
        settings: Settings,
        repo: Repository | None = None,
    ) -> None:
        self._accounts = accounts
        self._lock = lock
        self._settings = settings
        self._repo = repo

    async def fire(self, kind: CheckpointKind) -> list[RunSummary] | None:
        """Run ``kind`` for every account unless a run of it is still going.

        Returns None when the firing was skipped because of the lock.
        """
        if not self._lock.acquire(kind.value):
            log.warning("checkpoint_already_running", checkpoint=kind.value)
            return None

        try:
            summaries = []
            for account in self._accounts:
                summary = await account.orchestrator.run(kind)
                summaries.append(summary)
                await self._record(summary)
            return summaries
        finally:
            self._lock.release(kind.value)

    async def _record(self, summary: RunSummary) -> None:
        if self._repo is None or not self._settings.enable_history:
            return
        try:
            await self._repo.record_run(summary)
        except Exception:
            log.exception("history_record_failed", checkpoint=summary.checkpoint.value)

    async def first_checkpoint(self) -> None:
        await self.fire(CheckpointKind.FIRST)

    async def second_checkpoint(self) -> None:
        await self.fire(CheckpointKind.SECOND)

    async def low_balance_check(self) -> None:
        await self.fire(CheckpointKind.LOW_BALANCE)

    async def prune_history(self) -> None:
        """Drop run history older than the configured retention."""
        if self._repo is None:
            return
        try:
            deleted = await self._repo.prune_history(self._settings.history_max_days)
            log.info("history_pruned", deleted=deleted, max_days=self._settings.history_max_days)
        except Exception:
            log.exception("history_prune_error")


def create_scheduler(trigger: CheckpointTrigger, settings: Settings) -> AsyncIOScheduler:
    """Create and configure the APScheduler instance."""
    scheduler = AsyncIOScheduler(timezone=settings.zone)

    hour, minute = parse_hhmm(settings.first_reset_time)
    scheduler.add_job(
        trigger.first_checkpoint,
        "cron",
        hour=hour,
        minute=minute,
        id="first_checkpoint",
        name="First reset checkpoint",
        misfire_grace_time=300,
    )

    hour, minute = parse_hhmm(settings.second_reset_time)
    scheduler.add_job(
        trigger.second_checkpoint,
        "cron",
        hour=hour,
        minute=minute,
        id="second_checkpoint",
        name="Second reset checkpoint",
        misfire_grace_time=300,
    )

    if settings.enable_low_balance_reset:
        hour, minute = parse_hhmm(settings.low_balance_check_time)
        scheduler.add_job(
            trigger.low_balance_check,
            "cron",
            hour=hour,
            minute=minute,
            id="low_balance_check",
            name="Low-balance reset check",
            misfire_grace_time=300,
        )

    # Prune history daily at 04:00 local time
    scheduler.add_job(
        trigger.prune_history,
        "cron",
        hour=4,
        minute=0,
        id="prune_history",
        name="Prune run history",
    )

    return scheduler
