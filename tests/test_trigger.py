"""Tests for the execution lock, checkpoint trigger and cron wiring."""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from types import SimpleNamespace

import pytest

from autoreset.engine.base import CheckpointKind, RunSummary
from autoreset.engine.deferred import DelayedResetScheduler
from autoreset.engine.eligibility import EligibilityPolicy
from autoreset.engine.executor import ResetExecutor
from autoreset.engine.orchestrator import CheckpointOrchestrator
from autoreset.scheduling.lock import ExecutionLock
from autoreset.scheduling.scheduler import CheckpointTrigger, create_scheduler

from conftest import NOW, SHANGHAI, make_sub, no_sleep


class StubOrchestrator:
    def __init__(self, account: str, gate: asyncio.Event | None = None, error: Exception | None = None) -> None:
        self.account = account
        self.gate = gate
        self.error = error
        self.runs: list[CheckpointKind] = []

    async def run(self, kind: CheckpointKind) -> RunSummary:
        self.runs.append(kind)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return RunSummary(checkpoint=kind, account=self.account)


def _account(orchestrator: StubOrchestrator) -> SimpleNamespace:
    return SimpleNamespace(orchestrator=orchestrator)


def test_lock_acquire_release():
    lock = ExecutionLock()
    assert lock.acquire("FIRST") is True
    assert lock.acquire("FIRST") is False
    assert lock.acquire("SECOND") is True
    assert lock.is_held("FIRST") is True

    lock.release("FIRST")
    assert lock.is_held("FIRST") is False
    assert lock.acquire("FIRST") is True


@pytest.mark.asyncio
async def test_fire_runs_accounts_serially_and_records(settings, repo):
    first, second = StubOrchestrator("a"), StubOrchestrator("b")
    trigger = CheckpointTrigger([_account(first), _account(second)], ExecutionLock(), settings, repo)

    summaries = await trigger.fire(CheckpointKind.SECOND)

    assert [s.account for s in summaries] == ["a", "b"]
    assert first.runs == second.runs == [CheckpointKind.SECOND]
    rows = await repo.get_history(days=1)
    assert {row["account"] for row in rows} == {"a", "b"}


@pytest.mark.asyncio
async def test_history_disabled(settings, repo):
    settings = settings.model_copy(update={"enable_history": False})
    trigger = CheckpointTrigger([_account(StubOrchestrator("a"))], ExecutionLock(), settings, repo)

    await trigger.fire(CheckpointKind.FIRST)

    assert await repo.get_history(days=1) == []


@pytest.mark.asyncio
async def test_overlapping_fire_is_skipped(settings):
    gate = asyncio.Event()
    orchestrator = StubOrchestrator("a", gate=gate)
    lock = ExecutionLock()
    trigger = CheckpointTrigger([_account(orchestrator)], lock, settings)

    running = asyncio.create_task(trigger.fire(CheckpointKind.FIRST))
    await asyncio.sleep(0)
    assert lock.is_held("FIRST")

    assert await trigger.fire(CheckpointKind.FIRST) is None
    other = StubOrchestrator("b")
    # a different checkpoint is not blocked
    assert await CheckpointTrigger([_account(other)], lock, settings).fire(CheckpointKind.LOW_BALANCE)

    gate.set()
    assert len(await running) == 1
    assert orchestrator.runs == [CheckpointKind.FIRST]
    assert lock.is_held("FIRST") is False


@pytest.mark.asyncio
async def test_lock_released_when_run_raises(settings):
    lock = ExecutionLock()
    trigger = CheckpointTrigger(
        [_account(StubOrchestrator("a", error=RuntimeError("boom")))], lock, settings
    )

    with pytest.raises(RuntimeError):
        await trigger.fire(CheckpointKind.FIRST)

    assert lock.is_held("FIRST") is False


@pytest.mark.asyncio
async def test_prune_history_job(settings, repo):
    trigger = CheckpointTrigger([], ExecutionLock(), settings, repo)
    await trigger.prune_history()


def test_create_scheduler_jobs(settings):
    trigger = CheckpointTrigger([], ExecutionLock(), settings)
    scheduler = create_scheduler(trigger, settings)

    jobs = {job.id: job for job in scheduler.get_jobs()}
    assert set(jobs) == {"first_checkpoint", "second_checkpoint", "low_balance_check", "prune_history"}
    fields = {f.name: str(f) for f in jobs["first_checkpoint"].trigger.fields}
    assert (fields["hour"], fields["minute"]) == ("18", "55")
    fields = {f.name: str(f) for f in jobs["low_balance_check"].trigger.fields}
    assert (fields["hour"], fields["minute"]) == ("0", "1")
    assert str(jobs["second_checkpoint"].trigger.timezone) == "Asia/Shanghai"


def test_create_scheduler_without_low_balance(settings):
    settings = settings.model_copy(update={"enable_low_balance_reset": False})
    scheduler = create_scheduler(CheckpointTrigger([], ExecutionLock(), settings), settings)
    assert "low_balance_check" not in {job.id for job in scheduler.get_jobs()}


def _engine_account(gateway, notifier, deferred, clock, recorder=None) -> SimpleNamespace:
    executor = ResetExecutor(gateway, settle_seconds=0, sleep=no_sleep)
    delayed = DelayedResetScheduler(
        gateway,
        executor,
        notifier,
        deferred,
        cooldown=timedelta(hours=5),
        zone=SHANGHAI,
        clock=clock,
        recorder=recorder,
    )
    orchestrator = CheckpointOrchestrator(
        gateway,
        executor,
        delayed,
        notifier,
        EligibilityPolicy(cooldown=timedelta(hours=5)),
        clock=clock,
        sleep=no_sleep,
    )
    return SimpleNamespace(orchestrator=orchestrator, delayed=delayed)


@pytest.mark.asyncio
async def test_deferred_fire_is_recorded_in_history(
    settings, db, repo, gateway, notifier, deferred, clock
):
    later = make_sub(id=7, reset_times=1, last_reset_at=NOW - timedelta(hours=3))
    gateway.subscriptions = [later]
    gateway.refill(later)
    account = _engine_account(gateway, notifier, deferred, clock, recorder=repo.record_run)
    trigger = CheckpointTrigger([account], ExecutionLock(), settings, repo)

    [summary] = await trigger.fire(CheckpointKind.SECOND)
    assert summary.scheduled == 1

    await deferred.wait_all()

    cursor = await db.execute("SELECT checkpoint, delayed, success, details_json FROM reset_history ORDER BY id")
    rows = await cursor.fetchall()
    assert [(row["checkpoint"], row["delayed"]) for row in rows] == [("SECOND", 0), ("SECOND", 1)]
    assert rows[1]["success"] == 1
    assert json.loads(rows[1]["details_json"])[0]["subscription_id"] == 7
    assert [s.delayed for s in notifier.summaries] == [False, True]


@pytest.mark.asyncio
async def test_deferred_fire_without_recorder_leaves_history_alone(
    settings, db, repo, gateway, notifier, deferred, clock
):
    later = make_sub(id=7, reset_times=1, last_reset_at=NOW - timedelta(hours=3))
    gateway.subscriptions = [later]
    gateway.refill(later)
    trigger = CheckpointTrigger(
        [_engine_account(gateway, notifier, deferred, clock)], ExecutionLock(), settings, repo
    )

    await trigger.fire(CheckpointKind.SECOND)
    await deferred.wait_all()

    cursor = await db.execute("SELECT delayed FROM reset_history")
    assert [row["delayed"] for row in await cursor.fetchall()] == [0]
    assert gateway.reset_calls == [7]
