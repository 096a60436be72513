"""Tests for run history and the once-per-day idempotency store."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from autoreset.db.migrations import init_db
from autoreset.db.state import IdempotencyStore
from autoreset.engine.base import CheckpointKind, ResetDetail, ResetStatus, RunSummary

from conftest import NOW, SHANGHAI, FakeClock


def _summary(started_at: datetime, **counts) -> RunSummary:
    summary = RunSummary(checkpoint=CheckpointKind.FIRST, account="test_k...7890", started_at=started_at)
    summary.total = counts.get("total", 2)
    summary.eligible = counts.get("eligible", 1)
    summary.add(ResetDetail(subscription_id=1, subscription_name="PRO", status=ResetStatus.SUCCESS, message="reset succeeded"))
    summary.finished_at = started_at + timedelta(seconds=4)
    return summary


@pytest.mark.asyncio
async def test_record_and_read_history(repo):
    now = datetime.now(timezone.utc)
    await repo.record_run(_summary(now - timedelta(days=1)))
    await repo.record_run(_summary(now - timedelta(hours=1)))
    await repo.record_run(_summary(now - timedelta(days=30)))

    rows = await repo.get_history(days=7)

    assert len(rows) == 2
    assert rows[0]["started_at"] > rows[1]["started_at"]
    assert rows[0]["checkpoint"] == "FIRST"
    assert rows[0]["success"] == 1
    details = json.loads(rows[0]["details_json"])
    assert details[0]["status"] == "SUCCESS"


@pytest.mark.asyncio
async def test_prune_history(repo):
    now = datetime.now(timezone.utc)
    await repo.record_run(_summary(now - timedelta(days=100)))
    await repo.record_run(_summary(now - timedelta(days=2)))

    assert await repo.prune_history(max_days=90) == 1
    assert len(await repo.get_history(days=365)) == 1


@pytest.mark.asyncio
async def test_has_run_today_after_success(repo):
    clock = FakeClock()
    store = IdempotencyStore(repo, SHANGHAI, clock)

    assert await store.has_run_today(CheckpointKind.FIRST) is False
    await store.record_success(CheckpointKind.FIRST, {"success": 2})

    assert await store.has_run_today(CheckpointKind.FIRST) is True
    assert await store.has_run_today(CheckpointKind.SECOND) is False


@pytest.mark.asyncio
async def test_success_result_may_carry_status_and_checkpoint_keys(repo, db):
    store = IdempotencyStore(repo, SHANGHAI, FakeClock())
    result = {"status": "partial", "checkpoint": "SECOND", "success": 1}

    await store.record_success(CheckpointKind.SECOND, result)

    assert await store.has_run_today(CheckpointKind.SECOND) is True
    cursor = await db.execute("SELECT status, result_json FROM execution_log")
    row = await cursor.fetchone()
    assert row["status"] == "success"
    assert json.loads(row["result_json"]) == result

@pytest.mark.asyncio
async def test_failure_does_not_count_as_run(repo):
    store = IdempotencyStore(repo, SHANGHAI, FakeClock())
    await store.record_failure(CheckpointKind.SECOND, RuntimeError("api down"))

    assert await store.has_run_today(CheckpointKind.SECOND) is False
    assert await store.recent_failure_count() == 1


@pytest.mark.asyncio
async def test_day_boundary_follows_local_zone(repo):
    # 23:30 in Shanghai
    clock = FakeClock(datetime(2025, 1, 15, 15, 30, tzinfo=timezone.utc))
    store = IdempotencyStore(repo, SHANGHAI, clock)
    await store.record_success(CheckpointKind.SECOND, {})

    clock.advance(timedelta(minutes=40))  # 00:10 the next local day

    assert await store.has_run_today(CheckpointKind.SECOND) is False


@pytest.mark.asyncio
async def test_recent_failures_window(repo):
    clock = FakeClock()
    store = IdempotencyStore(repo, SHANGHAI, clock)
    await store.record_failure(CheckpointKind.FIRST, "old")
    clock.advance(timedelta(hours=25))
    await store.record_failure(CheckpointKind.FIRST, "new")
    await store.record_failure(CheckpointKind.SECOND, "new too")

    assert await store.recent_failure_count(24) == 2


@pytest.mark.asyncio
async def test_old_entries_pruned(repo):
    clock = FakeClock()
    store = IdempotencyStore(repo, SHANGHAI, clock)
    await store.record_success(CheckpointKind.FIRST, {})
    clock.advance(timedelta(days=31))
    await store.record_success(CheckpointKind.SECOND, {})

    assert await repo.count_executions("success") == 1


@pytest.mark.asyncio
async def test_stats(repo):
    store = IdempotencyStore(repo, SHANGHAI, FakeClock(NOW))
    await store.record_success(CheckpointKind.FIRST, {"success": 1})
    await store.record_failure(CheckpointKind.SECOND, "boom")

    stats = await store.stats()

    assert stats["today"]["FIRST"] is True
    assert stats["today"]["SECOND"] is False
    assert stats["last_execution_date"] == "2025-01-15"
    assert stats["total_executions"] == 1
    assert stats["recent_failures"] == 1
    assert stats["total_failures"] == 1


@pytest.mark.asyncio
async def test_init_db_creates_parent_directory(tmp_path):
    path = tmp_path / "nested" / "dir" / "autoreset.db"
    db = await init_db(str(path))
    await db.close()
    assert path.exists()
