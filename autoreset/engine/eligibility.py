"""Decide whether a subscription may be reset at a given checkpoint."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from autoreset.config import Settings
from autoreset.engine.base import (
    CHECKPOINT_POLICIES,
    CheckpointKind,
    PlanCategory,
    SkipReason,
    Subscription,
)
from autoreset.timeutils import check_cooldown

ACTIVE_STATUS_LABELS = {"active", "活跃中"}


@dataclass(frozen=True)
class EligibilityPolicy:
    cooldown: timedelta
    excluded_plan_names: frozenset[str] = frozenset()
    low_balance_threshold: float = 1.0

    @classmethod
    def from_settings(cls, settings: Settings) -> EligibilityPolicy:
        return cls(
            cooldown=timedelta(hours=settings.cooldown_hours),
            excluded_plan_names=frozenset(
                name.strip().lower() for name in settings.exclude_plan_names
            ),
            low_balance_threshold=settings.low_balance_threshold,
        )


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: SkipReason | None = None
    message: str = ""


def _reject(reason: SkipReason, message: str) -> Eligibility:
    return Eligibility(eligible=False, reason=reason, message=message)


def classify(
    sub: Subscription,
    kind: CheckpointKind,
    policy: EligibilityPolicy,
    now: datetime,
) -> Eligibility:
    """Apply the eligibility rules in priority order; the first failure wins.

    Cooldown is only fatal for checkpoints that cannot defer. Checkpoints
    that can defer let a cooling-down subscription through and leave the
    wait-or-skip decision to the delayed reset scheduler.
    """
    try:
        return _classify(sub, kind, policy, now)
    except (TypeError, ValueError) as exc:
        return _reject(SkipReason.MALFORMED, f"unreadable subscription data: {exc}")


def _classify(
    sub: Subscription,
    kind: CheckpointKind,
    policy: EligibilityPolicy,
    now: datetime,
) -> Eligibility:
    checkpoint = CHECKPOINT_POLICIES[kind]

    if sub.plan_category is PlanCategory.METERED:
        return _reject(SkipReason.METERED_PLAN, "pay-as-you-go plan is never reset")

    if sub.plan_name.strip().lower() in policy.excluded_plan_names:
        return _reject(SkipReason.EXCLUDED_NAME, f"plan name {sub.plan_name!r} is excluded")

    if not sub.is_active:
        return _reject(SkipReason.INACTIVE, "subscription is not active")

    status = sub.status_label.strip()
    if status and status.lower() not in ACTIVE_STATUS_LABELS:
        return _reject(SkipReason.STATUS_NOT_ACTIVE, f"status is {status!r}")

    if sub.remaining_days is not None and sub.remaining_days <= 0:
        return _reject(SkipReason.EXPIRED, f"{sub.remaining_days:g} days remaining")

    if "last_credit_reset" in sub.invalid_fields:
        return _reject(SkipReason.MALFORMED, "last reset time is unreadable")

    cooldown = check_cooldown(sub.last_reset_at, policy.cooldown, now)
    if not cooldown.passed and not checkpoint.defers_on_cooldown:
        return _reject(SkipReason.COOLDOWN_ACTIVE, f"cooldown active, {cooldown.formatted} left")

    if sub.reset_times < checkpoint.min_reset_times:
        return _reject(
            SkipReason.INSUFFICIENT_RESET_TIMES,
            f"{sub.reset_times} resets left, {checkpoint.min_reset_times} required",
        )

    if checkpoint.requires_low_balance and not (
        sub.current_credits < policy.low_balance_threshold
    ):
        return _reject(
            SkipReason.BALANCE_ABOVE_THRESHOLD,
            f"balance {sub.current_credits:.2f} not below {policy.low_balance_threshold:g}",
        )

    return Eligibility(eligible=True)
