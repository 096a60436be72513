"""Pydantic models for 88code API responses."""

from __future__ import annotations

import math
from datetime import tzinfo
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from autoreset.engine.base import PlanCategory, Subscription
from autoreset.timeutils import parse_api_datetime

METERED_PLAN_TYPES = {"PAYGO", "PAY_PER_USE"}
METERED_PLAN_NAME = "PAYGO"


def _number_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _finite_or_reject(value: Any) -> Any:
    """Refuse infinite or NaN counters; a zero in their place would look like real data."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return value
    except OverflowError:
        raise ValueError("number out of range") from None
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {value!r}")
    return value


class SubscriptionPlanSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    subscription_name: str = Field(default="", alias="subscriptionName")
    plan_type: str = Field(default="", alias="planType")
    credit_limit: float = Field(default=0.0, alias="creditLimit")

    @field_validator("subscription_name", "plan_type", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("credit_limit", mode="before")
    @classmethod
    def _limit(cls, value: Any) -> float:
        return _number_or_none(value) or 0.0


class SubscriptionSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int | str
    subscription_plan_name: str = Field(default="", alias="subscriptionPlanName")
    subscription_plan: SubscriptionPlanSchema = Field(
        default_factory=SubscriptionPlanSchema, alias="subscriptionPlan"
    )
    is_active: bool = Field(default=False, alias="isActive")
    subscription_status: str = Field(default="", alias="subscriptionStatus")
    remaining_days: float | None = Field(default=None, alias="remainingDays")
    current_credits: float = Field(default=0.0, alias="currentCredits")
    reset_times: int = Field(default=0, alias="resetTimes")
    last_credit_reset: str | None = Field(default=None, alias="lastCreditReset")

    @field_validator("subscription_plan_name", "subscription_status", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("subscription_plan", mode="before")
    @classmethod
    def _plan(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("is_active", mode="before")
    @classmethod
    def _active(cls, value: Any) -> bool:
        return value is True

    @field_validator("remaining_days", mode="before")
    @classmethod
    def _days(cls, value: Any) -> float | None:
        return _number_or_none(value)

    @field_validator("current_credits", mode="before")
    @classmethod
    def _credits(cls, value: Any) -> float:
        _finite_or_reject(value)
        return _number_or_none(value) or 0.0

    @field_validator("reset_times", mode="before")
    @classmethod
    def _reset_times(cls, value: Any) -> int:
        _finite_or_reject(value)
        number = _number_or_none(value)
        return int(number) if number is not None else 0

    @field_validator("last_credit_reset", mode="before")
    @classmethod
    def _last_reset(cls, value: Any) -> str | None:
        return None if value is None else str(value)

    def plan_category(self) -> PlanCategory:
        plan = self.subscription_plan
        if (
            self.subscription_plan_name == METERED_PLAN_NAME
            or plan.subscription_name == METERED_PLAN_NAME
            or plan.plan_type in METERED_PLAN_TYPES
        ):
            return PlanCategory.METERED
        return PlanCategory.FIXED

    def to_subscription(self, api_zone: tzinfo) -> Subscription:
        invalid: list[str] = []
        try:
            last_reset = parse_api_datetime(self.last_credit_reset, api_zone)
        except ValueError:
            last_reset = None
            invalid.append("last_credit_reset")

        return Subscription(
            id=self.id,
            plan_category=self.plan_category(),
            plan_name=self.subscription_plan.subscription_name,
            display_name=self.subscription_plan_name,
            is_active=self.is_active,
            status_label=self.subscription_status,
            remaining_days=self.remaining_days,
            current_credits=self.current_credits,
            credit_limit=self.subscription_plan.credit_limit,
            reset_times=self.reset_times,
            last_reset_at=last_reset,
            invalid_fields=tuple(invalid),
        )


class ResetResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool = True
    message: str = ""

    @field_validator("message", mode="before")
    @classmethod
    def _message(cls, value: Any) -> str:
        return "" if value is None else str(value)
