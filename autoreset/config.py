from __future__ import annotations

import json
from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from autoreset.timeutils import minutes_between, parse_hhmm


def _split_list(value: object) -> object:
    """Accept a JSON array or a comma-separated string for list settings."""
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            value = json.loads(text)
        else:
            value = text.split(",")
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # 88code API: one or more keys (comma-separated or JSON array in .env)
    api_keys: Annotated[list[str], NoDecode]
    api_base_url: str = "https://www.88code.org"
    api_timeout_seconds: float = Field(default=30.0, ge=1, le=120)
    # Time zone the API uses for lastCreditReset
    api_timezone: str = "Asia/Shanghai"

    # Checkpoints (HH:MM, local to `timezone`)
    first_reset_time: str = "18:55"
    second_reset_time: str = "23:55"
    timezone: str = "Asia/Shanghai"

    # Vendor cooldown between two resets of the same subscription
    cooldown_hours: float = Field(default=5.0, gt=0)

    # Low-balance checkpoint
    enable_low_balance_reset: bool = True
    low_balance_threshold: float = 1.0
    low_balance_check_time: str = "00:01"

    # Plan names that must never be reset (comma-separated or JSON array)
    exclude_plan_names: Annotated[list[str], NoDecode] = Field(default_factory=list)

    # Classify and log, but never send reset calls
    dry_run: bool = False

    # Retry
    enable_retry: bool = True
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 10.0

    # Rate limiting (token bucket shared by every account)
    enable_rate_limit: bool = True
    rate_limit_capacity: int = Field(default=10, ge=1)
    rate_limit_refill_rate: float = Field(default=10.0, gt=0)  # tokens per minute
    rate_limit_wait_timeout_seconds: float = 60.0

    # Pacing
    request_interval_seconds: float = 1.0
    reset_verification_wait_seconds: float = 3.0

    # Discord: summaries are only sent when a webhook is configured
    discord_webhook_url: str | None = None

    # History / idempotency database
    db_path: str = "autoreset.db"
    enable_history: bool = True
    history_max_days: int = 90

    # Run a connection test and list subscriptions when the service starts
    run_test_on_start: bool = True

    # Logging
    log_level: str = "INFO"

    @field_validator("api_keys", "exclude_plan_names", mode="before")
    @classmethod
    def _parse_list(cls, value: object) -> object:
        return _split_list(value)

    @field_validator("api_keys")
    @classmethod
    def _check_api_keys(cls, keys: list[str]) -> list[str]:
        if not keys:
            raise ValueError("API_KEYS must contain at least one key")
        for key in keys:
            if len(key) < 10:
                raise ValueError(f"API key too short: {key[:4]}...")
        return keys

    @field_validator("first_reset_time", "second_reset_time", "low_balance_check_time")
    @classmethod
    def _check_hhmm(cls, value: str) -> str:
        parse_hhmm(value)
        return value

    @field_validator("timezone", "api_timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown time zone: {value}") from exc
        return value

    @model_validator(mode="after")
    def _check_checkpoint_interval(self) -> Settings:
        # The second checkpoint must leave room for a full cooldown after the first.
        gap = minutes_between(self.first_reset_time, self.second_reset_time)
        required = self.cooldown_hours * 60
        if gap < required:
            raise ValueError(
                f"checkpoint interval {self.first_reset_time} -> {self.second_reset_time} "
                f"is {gap} minutes, at least {required:g} minutes required"
            )
        return self

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def api_zone(self) -> ZoneInfo:
        return ZoneInfo(self.api_timezone)
