"""Shared test fixtures."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
import aiosqlite

from autoreset.api.schemas import ResetResponse
from autoreset.config import Settings
from autoreset.db.models import SCHEMA_SQL
from autoreset.db.repository import Repository
from autoreset.engine.base import PlanCategory, RunSummary, Subscription

SHANGHAI = ZoneInfo("Asia/Shanghai")

# 2025-01-15 20:00 in Shanghai
NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_sub(**overrides) -> Subscription:
    """An otherwise-eligible fixed plan with both resets left."""
    fields = dict(
        id=1,
        plan_category=PlanCategory.FIXED,
        plan_name="PRO",
        display_name="PRO",
        is_active=True,
        status_label="活跃中",
        remaining_days=20,
        current_credits=5.0,
        credit_limit=50.0,
        reset_times=2,
        last_reset_at=None,
        invalid_fields=(),
    )
    fields.update(overrides)
    return Subscription(**fields)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeGateway:
    """In-memory stand-in for the 88code API client."""

    key_mask = "test_k...7890"

    def __init__(self, subscriptions: list[Subscription] | None = None) -> None:
        self.subscriptions = list(subscriptions or [])
        self.after_reset: dict[int | str, Subscription] = {}
        self.reset_calls: list[int | str] = []
        self.fetch_calls = 0
        self.fetch_error: Exception | None = None
        self.reset_errors: dict[int | str, Exception] = {}
        self.reset_response = ResetResponse(success=True, message="ok")

    async def fetch_all(self) -> list[Subscription]:
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.subscriptions)

    async def reset_one(self, subscription_id: int | str) -> ResetResponse:
        self.reset_calls.append(subscription_id)
        if subscription_id in self.reset_errors:
            raise self.reset_errors[subscription_id]
        if subscription_id in self.after_reset:
            updated = self.after_reset[subscription_id]
            self.subscriptions = [
                updated if s.id == subscription_id else s for s in self.subscriptions
            ]
        return self.reset_response

    def refill(self, sub: Subscription, **changes) -> None:
        """Make a reset of ``sub`` take effect with the given changes."""
        defaults = dict(current_credits=sub.credit_limit, reset_times=sub.reset_times - 1)
        defaults.update(changes)
        self.after_reset[sub.id] = replace(sub, **defaults)


class _ManualHandle:
    def __init__(self, fire_at: datetime, callback) -> None:
        self.fire_at = fire_at
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        if not self.fired:
            self.cancelled = True


class ManualDeferredExecutor:
    """Deferred executor driven by explicit ticks instead of wall time."""

    def __init__(self) -> None:
        self.handles: list[_ManualHandle] = []

    def schedule(self, fire_at: datetime, callback) -> _ManualHandle:
        handle = _ManualHandle(fire_at, callback)
        self.handles.append(handle)
        return handle

    @property
    def live(self) -> list[_ManualHandle]:
        return [h for h in self.handles if not h.cancelled and not h.fired]

    async def run_until(self, instant: datetime) -> int:
        """Fire every live task due at or before ``instant``."""
        due = sorted((h for h in self.live if h.fire_at <= instant), key=lambda h: h.fire_at)
        for handle in due:
            handle.fired = True
            await handle.callback()
        return len(due)

    async def wait_all(self) -> None:
        for handle in sorted(self.live, key=lambda h: h.fire_at):
            handle.fired = True
            await handle.callback()


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.summaries: list[RunSummary] = []
        self.fail = fail

    async def notify(self, summary: RunSummary) -> None:
        if self.fail:
            raise RuntimeError("webhook down")
        self.summaries.append(summary)


async def no_sleep(_: float) -> None:
    return None


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_keys=["test_key_1234567890"],
        discord_webhook_url="https://discord.com/api/webhooks/test/test",
        db_path=":memory:",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def deferred() -> ManualDeferredExecutor:
    return ManualDeferredExecutor()


@pytest.fixture
async def db():
    conn = await aiosqlite.connect(":memory:")
    conn.row_factory = aiosqlite.Row
    await conn.executescript(SCHEMA_SQL)
    await conn.commit()
    yield conn
    await conn.close()


@pytest.fixture
async def repo(db) -> Repository:
    return Repository(db)
