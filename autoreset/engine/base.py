"""Core types shared by the eligibility, execution and scheduling layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class PlanCategory(str, Enum):
    FIXED = "fixed"
    METERED = "metered"  # PAYGO / pay-per-use, never auto-reset


class CheckpointKind(str, Enum):
    FIRST = "FIRST"
    SECOND = "SECOND"
    LOW_BALANCE = "LOW_BALANCE"
    MANUAL = "MANUAL"


class ResetStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    SCHEDULED = "SCHEDULED"


class SkipReason(str, Enum):
    METERED_PLAN = "metered_plan"
    EXCLUDED_NAME = "excluded_name"
    INACTIVE = "inactive"
    STATUS_NOT_ACTIVE = "status_not_active"
    EXPIRED = "expired"
    MALFORMED = "malformed"
    COOLDOWN_ACTIVE = "cooldown_active"
    INSUFFICIENT_RESET_TIMES = "insufficient_reset_times"
    BALANCE_ABOVE_THRESHOLD = "balance_above_threshold"
    CROSS_MIDNIGHT = "cross_midnight"
    NO_EFFECT = "no_effect"
    DRY_RUN = "dry_run"


@dataclass(frozen=True)
class CheckpointPolicy:
    defers_on_cooldown: bool
    min_reset_times: int
    requires_low_balance: bool = False


CHECKPOINT_POLICIES: dict[CheckpointKind, CheckpointPolicy] = {
    # Early pass: only touch subscriptions with both resets left, keep one for later.
    CheckpointKind.FIRST: CheckpointPolicy(defers_on_cooldown=False, min_reset_times=2),
    # Late pass: use whatever is left, waiting out the cooldown if it ends today.
    CheckpointKind.SECOND: CheckpointPolicy(defers_on_cooldown=True, min_reset_times=1),
    CheckpointKind.LOW_BALANCE: CheckpointPolicy(
        defers_on_cooldown=True, min_reset_times=1, requires_low_balance=True
    ),
    CheckpointKind.MANUAL: CheckpointPolicy(defers_on_cooldown=False, min_reset_times=1),
}

CHECKPOINT_LABELS: dict[CheckpointKind, str] = {
    CheckpointKind.FIRST: "First checkpoint",
    CheckpointKind.SECOND: "Second checkpoint",
    CheckpointKind.LOW_BALANCE: "Low-balance check",
    CheckpointKind.MANUAL: "Manual reset",
}


@dataclass(frozen=True)
class Subscription:
    """Read model of one subscription, as fetched from the API."""

    id: int | str
    plan_category: PlanCategory
    plan_name: str
    display_name: str
    is_active: bool
    status_label: str
    remaining_days: float | None
    current_credits: float
    credit_limit: float
    reset_times: int
    last_reset_at: datetime | None
    invalid_fields: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return f"{self.display_name or 'UNKNOWN'}({self.id})"

    @property
    def credit_percent(self) -> float | None:
        if not self.credit_limit:
            return None
        return self.current_credits / self.credit_limit * 100


@dataclass
class ResetDetail:
    subscription_id: int | str
    subscription_name: str
    status: ResetStatus
    message: str = ""
    reason: SkipReason | None = None
    before_credits: float | None = None
    after_credits: float | None = None
    before_reset_times: int | None = None
    after_reset_times: int | None = None
    scheduled_for: datetime | None = None
    verified: bool = True

    def to_dict(self) -> dict:
        return {
            "subscription_id": self.subscription_id,
            "subscription_name": self.subscription_name,
            "status": self.status.value,
            "message": self.message,
            "reason": self.reason.value if self.reason else None,
            "before_credits": self.before_credits,
            "after_credits": self.after_credits,
            "before_reset_times": self.before_reset_times,
            "after_reset_times": self.after_reset_times,
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "verified": self.verified,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunSummary:
    checkpoint: CheckpointKind
    account: str
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None
    total: int = 0
    eligible: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    scheduled: int = 0
    details: list[ResetDetail] = field(default_factory=list)
    error: str | None = None
    delayed: bool = False

    def add(self, detail: ResetDetail) -> None:
        self.details.append(detail)
        if detail.status == ResetStatus.SUCCESS:
            self.success += 1
        elif detail.status == ResetStatus.SCHEDULED:
            self.scheduled += 1
        elif detail.status == ResetStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def ok(self) -> bool:
        return self.error is None and self.failed == 0

    def to_dict(self) -> dict:
        return {
            "checkpoint": self.checkpoint.value,
            "account": self.account,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "total": self.total,
            "eligible": self.eligible,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "scheduled": self.scheduled,
            "error": self.error,
            "delayed": self.delayed,
            "details": [d.to_dict() for d in self.details],
        }
