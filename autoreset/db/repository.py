"""Data access layer for autoreset."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import aiosqlite
import structlog

from autoreset.engine.base import RunSummary

log = structlog.get_logger()


class Repository:
    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    # ── Reset history ───────────────────────────────────────────────

    async def record_run(self, summary: RunSummary) -> None:
        sql = """
            INSERT INTO reset_history
                (account, checkpoint, started_at, finished_at, total, eligible,
                 success, failed, skipped, scheduled, delayed, error, details_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        await self._db.execute(
            sql,
            (
                summary.account,
                summary.checkpoint.value,
                summary.started_at.isoformat(),
                summary.finished_at.isoformat() if summary.finished_at else None,
                summary.total,
                summary.eligible,
                summary.success,
                summary.failed,
                summary.skipped,
                summary.scheduled,
                int(summary.delayed),
                summary.error,
                json.dumps([d.to_dict() for d in summary.details], ensure_ascii=False),
            ),
        )
        await self._db.commit()
        log.debug("run_recorded", checkpoint=summary.checkpoint.value, account=summary.account)

    async def get_history(self, days: int = 7) -> list[aiosqlite.Row]:
        """Runs started in the last ``days`` days, newest first."""
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        sql = """
            SELECT * FROM reset_history
            WHERE started_at >= ?
            ORDER BY started_at DESC, id DESC
        """
        cursor = await self._db.execute(sql, (since,))
        return await cursor.fetchall()

    async def prune_history(self, max_days: int) -> int:
        """Delete runs older than ``max_days`` days. Returns count deleted."""
        cutoff = (datetime.now(timezone.utc) - timedelta(days=max_days)).isoformat()
        cursor = await self._db.execute(
            "DELETE FROM reset_history WHERE started_at < ?", (cutoff,)
        )
        await self._db.commit()
        return cursor.rowcount

    # ── Execution log (single-shot idempotency) ─────────────────────

    async def record_execution(
        self,
        checkpoint: str,
        run_date: str,
        status: str,
        result_json: str | None = None,
        error: str | None = None,
        recorded_at: str | None = None,
    ) -> None:
        now = recorded_at or datetime.now(timezone.utc).isoformat()
        sql = """
            INSERT INTO execution_log (checkpoint, run_date, status, recorded_at, result_json, error)
            VALUES (?, ?, ?, ?, ?, ?)
        """
        await self._db.execute(sql, (checkpoint, run_date, status, now, result_json, error))
        await self._db.commit()

    async def has_execution(self, checkpoint: str, run_date: str, status: str = "success") -> bool:
        sql = """
            SELECT 1 FROM execution_log
            WHERE checkpoint = ? AND run_date = ? AND status = ?
            LIMIT 1
        """
        cursor = await self._db.execute(sql, (checkpoint, run_date, status))
        return (await cursor.fetchone()) is not None

    async def count_executions_since(self, status: str, since: str) -> int:
        sql = "SELECT COUNT(*) AS cnt FROM execution_log WHERE status = ? AND recorded_at > ?"
        cursor = await self._db.execute(sql, (status, since))
        row = await cursor.fetchone()
        return row["cnt"] if row else 0

    async def count_executions(self, status: str) -> int:
        sql = "SELECT COUNT(*) AS cnt FROM execution_log WHERE status = ?"
        cursor = await self._db.execute(sql, (status,))
        row = await cursor.fetchone()
        return row["cnt"] if row else 0

    async def get_checkpoints_run_on(self, run_date: str) -> set[str]:
        sql = """
            SELECT DISTINCT checkpoint FROM execution_log
            WHERE run_date = ? AND status = 'success'
        """
        cursor = await self._db.execute(sql, (run_date,))
        rows = await cursor.fetchall()
        return {row["checkpoint"] for row in rows}

    async def get_last_execution_date(self) -> str | None:
        sql = "SELECT MAX(run_date) AS last FROM execution_log WHERE status = 'success'"
        cursor = await self._db.execute(sql)
        row = await cursor.fetchone()
        return row["last"] if row else None

    async def prune_executions(self, before: str) -> int:
        cursor = await self._db.execute(
            "DELETE FROM execution_log WHERE recorded_at < ?", (before,)
        )
        await self._db.commit()
        return cursor.rowcount
