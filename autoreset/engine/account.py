"""Wire the reset engine together for each configured API key."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from autoreset.alerts.notifier import Notifier
from autoreset.api.client import ResetApiClient
from autoreset.api.rate_limit import TokenBucket
from autoreset.config import Settings
from autoreset.db.repository import Repository
from autoreset.engine.deferred import DeferredExecutor, DelayedResetScheduler
from autoreset.engine.eligibility import EligibilityPolicy
from autoreset.engine.executor import ResetExecutor
from autoreset.engine.orchestrator import CheckpointOrchestrator


@dataclass
class AccountService:
    client: ResetApiClient
    executor: ResetExecutor
    delayed: DelayedResetScheduler
    orchestrator: CheckpointOrchestrator

    @property
    def key_mask(self) -> str:
        return self.client.key_mask

    async def close(self) -> None:
        await self.client.close()


def create_limiter(settings: Settings) -> TokenBucket | None:
    if not settings.enable_rate_limit:
        return None
    return TokenBucket(settings.rate_limit_capacity, settings.rate_limit_refill_rate)


def build_accounts(
    settings: Settings,
    limiter: TokenBucket | None,
    notifier: Notifier,
    deferred: DeferredExecutor,
    *,
    dry_run: bool | None = None,
    repo: Repository | None = None,
) -> list[AccountService]:
    """One engine per API key; all of them share ``limiter``.

    Deferred fires are written to ``repo`` when history is enabled.
    """
    policy = EligibilityPolicy.from_settings(settings)
    recorder = repo.record_run if repo is not None and settings.enable_history else None
    accounts = []
    for api_key in settings.api_keys:
        client = ResetApiClient(settings, api_key, limiter)
        executor = ResetExecutor(
            client,
            settle_seconds=settings.reset_verification_wait_seconds,
            dry_run=settings.dry_run if dry_run is None else dry_run,
        )
        delayed = DelayedResetScheduler(
            client,
            executor,
            notifier,
            deferred,
            cooldown=timedelta(hours=settings.cooldown_hours),
            zone=settings.zone,
            recorder=recorder,
        )
        orchestrator = CheckpointOrchestrator(
            client,
            executor,
            delayed,
            notifier,
            policy,
            request_interval_seconds=settings.request_interval_seconds,
        )
        accounts.append(AccountService(client, executor, delayed, orchestrator))
    return accounts
