"""Time helpers: cooldown arithmetic, day boundaries, API timestamp parsing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, tzinfo

API_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class CooldownStatus:
    passed: bool
    remaining: timedelta

    @property
    def formatted(self) -> str:
        return format_duration(self.remaining)


def parse_hhmm(value: str) -> tuple[int, int]:
    """Parse an ``HH:MM`` string into (hour, minute)."""
    parts = value.strip().split(":")
    if len(parts) != 2:
        raise ValueError(f"invalid time {value!r}, expected HH:MM")
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError as exc:
        raise ValueError(f"invalid time {value!r}, hour and minute must be numbers") from exc
    if not 0 <= hour <= 23:
        raise ValueError(f"hour out of range in {value!r}")
    if not 0 <= minute <= 59:
        raise ValueError(f"minute out of range in {value!r}")
    return hour, minute


def minutes_between(first: str, second: str) -> int:
    """Minutes from ``first`` forward to ``second``, wrapping past midnight."""
    h1, m1 = parse_hhmm(first)
    h2, m2 = parse_hhmm(second)
    diff = (h2 * 60 + m2) - (h1 * 60 + m1)
    if diff < 0:
        diff += 24 * 60
    return diff


def parse_api_datetime(value: str | datetime | None, zone: tzinfo) -> datetime | None:
    """Parse an API timestamp.

    The API sends naive ``YYYY-MM-DD HH:MM:SS`` strings in its own reference
    zone. ISO-8601 strings are accepted too; naive ones are taken to be in
    ``zone``. Empty input returns None, anything unreadable raises ValueError.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=zone)
    text = value.strip()
    if not text:
        return None
    try:
        parsed = datetime.strptime(text, API_TIME_FORMAT)
    except ValueError:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed


def check_cooldown(
    last_reset: datetime | None, cooldown: timedelta, now: datetime
) -> CooldownStatus:
    """A subscription that was never reset has no cooldown."""
    if last_reset is None:
        return CooldownStatus(passed=True, remaining=timedelta(0))
    elapsed = now - last_reset
    if elapsed >= cooldown:
        return CooldownStatus(passed=True, remaining=timedelta(0))
    return CooldownStatus(passed=False, remaining=cooldown - elapsed)


def next_midnight(now: datetime, zone: tzinfo) -> datetime:
    """Start of the next local day in ``zone``."""
    local = now.astimezone(zone)
    return datetime.combine(local.date() + timedelta(days=1), time(0), tzinfo=zone)


def local_date_str(now: datetime, zone: tzinfo) -> str:
    return now.astimezone(zone).strftime("%Y-%m-%d")


def format_datetime(value: datetime | None, zone: tzinfo) -> str:
    if value is None:
        return "never"
    return value.astimezone(zone).strftime(API_TIME_FORMAT)


def format_duration(delta: timedelta) -> str:
    seconds = max(0, int(delta.total_seconds()))
    minutes, secs = divmod(seconds, 60)
    hours, mins = divmod(minutes, 60)
    if hours:
        return f"{hours}h{mins:02d}m"
    if minutes:
        return f"{mins}m{secs:02d}s"
    return f"{secs}s"
