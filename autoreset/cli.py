"""CLI commands for autoreset (single-shot runs, stats, checks)."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys

import structlog

from autoreset.alerts.discord import build_notifier
from autoreset.config import Settings
from autoreset.db.migrations import init_db
from autoreset.db.repository import Repository
from autoreset.db.state import IdempotencyStore
from autoreset.engine.account import build_accounts, create_limiter
from autoreset.engine.base import CHECKPOINT_LABELS, CheckpointKind
from autoreset.engine.deferred import AsyncioDeferredExecutor, utcnow
from autoreset.engine.eligibility import EligibilityPolicy, classify
from autoreset.main import configure_logging
from autoreset.scheduling.lock import ExecutionLock
from autoreset.scheduling.scheduler import CheckpointTrigger
from autoreset.timeutils import format_datetime

log = structlog.get_logger()

MAX_RECENT_FAILURES = 3

CHECKPOINT_CHOICES = {
    "first": CheckpointKind.FIRST,
    "second": CheckpointKind.SECOND,
    "low-balance": CheckpointKind.LOW_BALANCE,
    "manual": CheckpointKind.MANUAL,
}


async def run_checkpoint(kind: CheckpointKind, force: bool, dry_run: bool, wait: bool) -> bool:
    """Run one checkpoint once. Returns True when every account succeeded."""
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings.log_level)
    dry_run = dry_run or settings.dry_run

    db = await init_db(settings.db_path)
    repo = Repository(db)
    store = IdempotencyStore(repo, settings.zone)

    if not force and not dry_run:
        if await store.has_run_today(kind):
            print(f"{CHECKPOINT_LABELS[kind]} already ran today; use --force to run again.")
            await db.close()
            return True
        failures = await store.recent_failure_count(24)
        if failures >= MAX_RECENT_FAILURES:
            print(f"{failures} failures in the last 24h; use --force to run anyway.")
            await db.close()
            return True

    notifier = build_notifier(settings)
    deferred = AsyncioDeferredExecutor()
    accounts = build_accounts(
        settings, create_limiter(settings), notifier, deferred, dry_run=dry_run, repo=repo
    )
    trigger = CheckpointTrigger(accounts, ExecutionLock(), settings, repo)

    ok = False
    try:
        summaries = await trigger.fire(kind) or []
        ok = all(s.ok for s in summaries)
        for summary in summaries:
            print(
                f"[{summary.account}] {CHECKPOINT_LABELS[kind]}: "
                f"{summary.success} ok, {summary.failed} failed, "
                f"{summary.skipped} skipped, {summary.scheduled} scheduled"
                + (f" (error: {summary.error})" if summary.error else "")
            )

        if wait and not dry_run:
            pending = sum(len(a.delayed.registry) for a in accounts)
            if pending:
                print(f"Waiting for {pending} deferred reset(s)...")
                for account in accounts:
                    await account.delayed.wait_idle()

        if not dry_run:
            if ok:
                await store.record_success(
                    kind,
                    {
                        "accounts": len(summaries),
                        "success": sum(s.success for s in summaries),
                        "scheduled": sum(s.scheduled for s in summaries),
                    },
                )
            else:
                errors = [s.error for s in summaries if s.error]
                failed = sum(s.failed for s in summaries)
                await store.record_failure(kind, "; ".join(errors) or f"{failed} reset(s) failed")
    except Exception as exc:
        log.exception("single_shot_run_failed", checkpoint=kind.value)
        if not dry_run:
            await store.record_failure(kind, exc)
        ok = False
    finally:
        for account in accounts:
            account.delayed.cancel_all()
            await account.close()
        await db.close()
    return ok


async def run_stats() -> None:
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings.log_level)

    db = await init_db(settings.db_path)
    store = IdempotencyStore(Repository(db), settings.zone)
    stats = await store.stats()

    print("Today:")
    for kind, ran in stats["today"].items():
        print(f"  {kind}: {'done' if ran else 'pending'}")
    print(f"Last execution date: {stats['last_execution_date'] or 'never'}")
    print(f"Successful executions: {stats['total_executions']}")
    print(f"Failures (24h / total): {stats['recent_failures']} / {stats['total_failures']}")

    await db.close()


async def run_check(threshold: float | None) -> bool:
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings.log_level)

    policy = EligibilityPolicy.from_settings(settings)
    if threshold is not None:
        policy = dataclasses.replace(policy, low_balance_threshold=threshold)

    accounts = build_accounts(settings, create_limiter(settings), build_notifier(settings), AsyncioDeferredExecutor())
    all_ok = True
    try:
        for account in accounts:
            if not await account.client.test_connection():
                print(f"{account.key_mask}: connection FAILED")
                all_ok = False
                continue
            subscriptions = await account.client.fetch_all()
            print(f"{account.key_mask}: connection ok, {len(subscriptions)} subscription(s)")
            now = utcnow()
            for sub in subscriptions:
                print(
                    f"  {sub.label} [{sub.plan_category.value}] "
                    f"credits {sub.current_credits:.2f}/{sub.credit_limit:.2f}, "
                    f"resets left {sub.reset_times}, "
                    f"last reset {format_datetime(sub.last_reset_at, settings.zone)}"
                )
                for kind in (CheckpointKind.FIRST, CheckpointKind.SECOND, CheckpointKind.LOW_BALANCE):
                    verdict = classify(sub, kind, policy, now)
                    status = "eligible" if verdict.eligible else f"no ({verdict.message})"
                    print(f"    {kind.value}: {status}")
    finally:
        for account in accounts:
            await account.close()
    return all_ok


async def run_history(days: int) -> None:
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings.log_level)

    db = await init_db(settings.db_path)
    rows = await Repository(db).get_history(days)

    if not rows:
        print(f"No runs in the last {days} day(s).")
    for row in rows:
        tag = " (deferred)" if row["delayed"] else ""
        line = (
            f"{row['started_at']}  {row['checkpoint']}{tag}  {row['account']}: "
            f"{row['success']} ok, {row['failed']} failed, {row['skipped']} skipped, "
            f"{row['scheduled']} scheduled of {row['eligible']}/{row['total']}"
        )
        if row["error"]:
            line += f"  error={row['error']}"
        print(line)
        for detail in json.loads(row["details_json"] or "[]"):
            print(f"    {detail['status']:<9} {detail['subscription_name']}: {detail['message']}")

    await db.close()


def cli() -> None:
    parser = argparse.ArgumentParser(prog="autoreset-tools", description="autoreset CLI tools")
    sub = parser.add_subparsers(dest="command")

    rn = sub.add_parser("run", help="Run one checkpoint now")
    rn.add_argument("checkpoint", choices=list(CHECKPOINT_CHOICES), help="Checkpoint to run")
    rn.add_argument("--force", action="store_true", help="Ignore the once-per-day and failure guards")
    rn.add_argument("--dry-run", action="store_true", help="Classify only, send no resets")
    rn.add_argument("--no-wait", action="store_true", help="Do not wait for deferred resets")

    sub.add_parser("stats", help="Show single-shot execution stats")

    ck = sub.add_parser("check", help="Test API keys and show eligibility per checkpoint")
    ck.add_argument("--threshold", type=float, default=None, help="Override the low-balance threshold")

    hs = sub.add_parser("history", help="Show recent run history")
    hs.add_argument("--days", type=int, default=7, help="How many days back (default 7)")

    args = parser.parse_args()

    if args.command == "run":
        ok = asyncio.run(
            run_checkpoint(
                CHECKPOINT_CHOICES[args.checkpoint],
                force=args.force,
                dry_run=args.dry_run,
                wait=not args.no_wait,
            )
        )
        if not ok:
            sys.exit(1)
    elif args.command == "stats":
        asyncio.run(run_stats())
    elif args.command == "check":
        if not asyncio.run(run_check(args.threshold)):
            sys.exit(1)
    elif args.command == "history":
        asyncio.run(run_history(args.days))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    cli()
