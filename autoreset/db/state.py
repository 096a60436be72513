"""Once-per-day guard for single-shot runs (cron / CI invocations)."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any

import structlog

from autoreset.db.repository import Repository
from autoreset.engine.base import CheckpointKind
from autoreset.timeutils import local_date_str

log = structlog.get_logger()

RETENTION_DAYS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdempotencyStore:
    def __init__(
        self,
        repo: Repository,
        zone: tzinfo,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repo
        self._zone = zone
        self._clock = clock

    def _today(self) -> str:
        return local_date_str(self._clock(), self._zone)

    async def has_run_today(self, kind: CheckpointKind) -> bool:
        ran = await self._repo.has_execution(kind.value, self._today())
        if ran:
            log.info("checkpoint_already_ran_today", checkpoint=kind.value, date=self._today())
        return ran

    async def record_success(self, kind: CheckpointKind, result: dict[str, Any]) -> None:
        now = self._clock()
        await self._repo.record_execution(
            kind.value,
            self._today(),
            "success",
            result_json=json.dumps(result, ensure_ascii=False),
            recorded_at=now.isoformat(),
        )
        await self._prune(now)
        log.info("execution_recorded", checkpoint=kind.value, status="success", result=result)

    async def record_failure(self, kind: CheckpointKind, error: BaseException | str) -> None:
        now = self._clock()
        await self._repo.record_execution(
            kind.value,
            self._today(),
            "failure",
            error=str(error),
            recorded_at=now.isoformat(),
        )
        await self._prune(now)
        log.error("execution_recorded", checkpoint=kind.value, status="failure", error=str(error))

    async def recent_failure_count(self, hours: int = 24) -> int:
        since = (self._clock() - timedelta(hours=hours)).isoformat()
        return await self._repo.count_executions_since("failure", since)

    async def stats(self) -> dict[str, Any]:
        ran_today = await self._repo.get_checkpoints_run_on(self._today())
        return {
            "today": {kind.value: kind.value in ran_today for kind in CheckpointKind},
            "last_execution_date": await self._repo.get_last_execution_date(),
            "total_executions": await self._repo.count_executions("success"),
            "recent_failures": await self.recent_failure_count(24),
            "total_failures": await self._repo.count_executions("failure"),
        }

    async def _prune(self, now: datetime) -> None:
        await self._repo.prune_executions((now - timedelta(days=RETENTION_DAYS)).isoformat())
