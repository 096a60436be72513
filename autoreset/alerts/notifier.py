"""Notification fan-out. Sending is best effort and never fails a run."""

from __future__ import annotations

from typing import Protocol

import structlog

from autoreset.engine.base import RunSummary, Subscription

log = structlog.get_logger()


class Notifier(Protocol):
    async def notify(self, summary: RunSummary) -> None: ...


async def notify_safely(notifier: Notifier, summary: RunSummary) -> None:
    try:
        await notifier.notify(summary)
    except Exception:
        log.exception("notification_failed", checkpoint=summary.checkpoint.value)


class NotifierManager:
    """Send each summary to every configured notifier."""

    def __init__(self, notifiers: list[Notifier] | None = None) -> None:
        self._notifiers = list(notifiers or [])

    @property
    def enabled(self) -> bool:
        return bool(self._notifiers)

    async def notify(self, summary: RunSummary) -> None:
        if not self._notifiers:
            return
        for notifier in self._notifiers:
            await notify_safely(notifier, summary)
        log.info("notifications_sent", count=len(self._notifiers), checkpoint=summary.checkpoint.value)

    async def notify_startup(self, account: str, subscriptions: list[Subscription]) -> None:
        for notifier in self._notifiers:
            send = getattr(notifier, "notify_startup", None)
            if send is None:
                continue
            try:
                await send(account, subscriptions)
            except Exception:
                log.exception("startup_notification_failed", account=account)
