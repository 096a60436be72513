"""Discord webhook notifier."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone, tzinfo

import structlog
from discord_webhook import DiscordEmbed, DiscordWebhook

from autoreset import __version__
from autoreset.alerts.models import STATUS_COLORS, STATUS_ICONS, STATUS_LABELS
from autoreset.alerts.notifier import NotifierManager
from autoreset.config import Settings
from autoreset.engine.base import (
    CHECKPOINT_LABELS,
    ResetDetail,
    ResetStatus,
    RunSummary,
    Subscription,
)
from autoreset.timeutils import format_datetime

log = structlog.get_logger()

# Discord caps embed descriptions at 4096 characters.
MAX_DETAIL_LINES = 25
MAX_DESCRIPTION = 4000


def _format_credits(value: float | None) -> str:
    return "?" if value is None else f"{value:.2f}"


def _summary_color(summary: RunSummary) -> int:
    if summary.error or (summary.failed and not summary.success):
        return STATUS_COLORS["failed"]
    if summary.failed:
        return STATUS_COLORS["partial"]
    if summary.success or summary.scheduled:
        return STATUS_COLORS["ok"]
    return STATUS_COLORS["idle"]


def format_detail(detail: ResetDetail, zone: tzinfo) -> str:
    """One line per subscription: icon, name, then what happened."""
    icon = STATUS_ICONS.get(detail.status, "•")
    line = f"{icon} **{detail.subscription_name}**"
    if detail.status == ResetStatus.SUCCESS:
        line += (
            f"\n   credits {_format_credits(detail.before_credits)}"
            f" → **{_format_credits(detail.after_credits)}**"
        )
        if not detail.verified:
            line += " (unverified)"
    elif detail.status == ResetStatus.SCHEDULED and detail.scheduled_for:
        line += f"\n   reset at {format_datetime(detail.scheduled_for, zone)}"
    elif detail.message:
        line += f"\n   {detail.message}"
    return line


def build_description(summary: RunSummary, zone: tzinfo) -> str:
    if summary.error:
        return f"Could not fetch subscriptions: `{summary.error}`"
    if not summary.details:
        return f"No eligible subscriptions ({summary.total} checked)."

    lines = [format_detail(d, zone) for d in summary.details[:MAX_DETAIL_LINES]]
    hidden = len(summary.details) - MAX_DETAIL_LINES
    if hidden > 0:
        lines.append(f"… and {hidden} more")
    text = "\n".join(lines)
    if len(text) > MAX_DESCRIPTION:
        text = text[: MAX_DESCRIPTION - 1] + "…"
    return text


def build_summary_embed(summary: RunSummary, zone: tzinfo) -> DiscordEmbed:
    title = CHECKPOINT_LABELS.get(summary.checkpoint, summary.checkpoint.value)
    if summary.delayed:
        title += " (deferred)"

    embed = DiscordEmbed(
        title=title,
        description=build_description(summary, zone),
        color=_summary_color(summary),
    )
    embed.add_embed_field(name=STATUS_LABELS[ResetStatus.SUCCESS], value=str(summary.success))
    embed.add_embed_field(name=STATUS_LABELS[ResetStatus.FAILED], value=str(summary.failed))
    embed.add_embed_field(name=STATUS_LABELS[ResetStatus.SKIPPED], value=str(summary.skipped))
    if summary.scheduled:
        embed.add_embed_field(
            name=STATUS_LABELS[ResetStatus.SCHEDULED], value=str(summary.scheduled)
        )
    embed.set_timestamp(datetime.now(timezone.utc).isoformat())
    embed.set_footer(text=f"autoreset {__version__} • {summary.account}")
    return embed


def build_startup_embed(account: str, subscriptions: list[Subscription], zone: tzinfo) -> DiscordEmbed:
    lines = []
    for sub in subscriptions[:MAX_DETAIL_LINES]:
        lines.append(
            f"• **{sub.label}** {sub.current_credits:.2f}/{sub.credit_limit:.2f}"
            f", resets left {sub.reset_times}"
            f", last reset {format_datetime(sub.last_reset_at, zone)}"
        )
    embed = DiscordEmbed(
        title="Service started",
        description="\n".join(lines) or "No subscriptions found.",
        color=STATUS_COLORS["startup"],
    )
    embed.add_embed_field(name="Subscriptions", value=str(len(subscriptions)))
    embed.set_timestamp(datetime.now(timezone.utc).isoformat())
    embed.set_footer(text=f"autoreset {__version__} • {account}")
    return embed


class DiscordNotifier:
    def __init__(self, settings: Settings) -> None:
        self._url = settings.discord_webhook_url
        self._zone = settings.zone

    async def notify(self, summary: RunSummary) -> None:
        await self._send(build_summary_embed(summary, self._zone))
        log.info(
            "discord_notification_sent",
            checkpoint=summary.checkpoint.value,
            delayed=summary.delayed,
        )

    async def notify_startup(self, account: str, subscriptions: list[Subscription]) -> None:
        await self._send(build_startup_embed(account, subscriptions, self._zone))

    async def _send(self, embed: DiscordEmbed) -> None:
        webhook = DiscordWebhook(url=self._url)
        webhook.add_embed(embed)
        # discord_webhook is blocking; keep the event loop free.
        resp = await asyncio.to_thread(webhook.execute)
        if resp is not None and hasattr(resp, "status_code") and resp.status_code >= 400:
            log.error("discord_webhook_error", status=resp.status_code)


def build_notifier(settings: Settings) -> NotifierManager:
    notifiers = []
    if settings.discord_webhook_url:
        notifiers.append(DiscordNotifier(settings))
    else:
        log.info("notifications_disabled", reason="no discord_webhook_url")
    return NotifierManager(notifiers)
