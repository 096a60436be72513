"""Entry point for the autoreset service."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import structlog

from autoreset import __version__
from autoreset.alerts.discord import build_notifier
from autoreset.alerts.notifier import NotifierManager
from autoreset.config import Settings
from autoreset.db.migrations import init_db
from autoreset.db.repository import Repository
from autoreset.engine.account import AccountService, build_accounts, create_limiter
from autoreset.engine.deferred import AsyncioDeferredExecutor
from autoreset.scheduling.lock import ExecutionLock
from autoreset.scheduling.scheduler import CheckpointTrigger, create_scheduler

log = structlog.get_logger()


def configure_logging(level: str) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
    )


async def startup_check(accounts: list[AccountService], notifier: NotifierManager) -> None:
    """Test every key, log its subscriptions and announce the start."""
    for account in accounts:
        if not await account.client.test_connection():
            log.error("startup_connection_failed", account=account.key_mask)
            continue
        try:
            subscriptions = await account.client.fetch_all()
        except Exception:
            log.exception("startup_fetch_failed", account=account.key_mask)
            continue

        log.info("startup_connection_ok", account=account.key_mask, subscriptions=len(subscriptions))
        for sub in subscriptions:
            percent = sub.credit_percent
            log.info(
                "subscription",
                subscription=sub.label,
                plan=sub.plan_category.value,
                credits_percent=round(percent, 1) if percent is not None else None,
                reset_times=sub.reset_times,
            )
        if notifier.enabled:
            await notifier.notify_startup(account.key_mask, subscriptions)


async def run() -> None:
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings.log_level)

    log.info(
        "starting",
        version=__version__,
        timezone=settings.timezone,
        accounts=len(settings.api_keys),
        dry_run=settings.dry_run,
    )

    db = await init_db(settings.db_path)
    repo = Repository(db)
    limiter = create_limiter(settings)
    notifier = build_notifier(settings)
    deferred = AsyncioDeferredExecutor()
    accounts = build_accounts(settings, limiter, notifier, deferred, repo=repo)

    trigger = CheckpointTrigger(accounts, ExecutionLock(), settings, repo)
    scheduler = create_scheduler(trigger, settings)

    if settings.run_test_on_start:
        await startup_check(accounts, notifier)

    stop_event = asyncio.Event()

    def handle_shutdown(*_: object) -> None:
        log.info("shutdown_requested")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, handle_shutdown)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler for SIGTERM
            pass

    scheduler.start()
    log.info(
        "scheduler_started",
        first=settings.first_reset_time,
        second=settings.second_reset_time,
        low_balance=settings.low_balance_check_time if settings.enable_low_balance_reset else None,
    )

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.shutdown(wait=False)
        cancelled = sum(account.delayed.cancel_all() for account in accounts)
        if cancelled:
            log.info("deferred_resets_dropped", count=cancelled)
        for account in accounts:
            await account.close()
        await db.close()
        log.info("shutdown_complete")


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
