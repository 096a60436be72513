"""Tests for Discord notification formatting."""

from __future__ import annotations

from datetime import timedelta

import pytest

from autoreset.alerts import discord
from autoreset.alerts.discord import (
    DiscordNotifier,
    build_description,
    build_notifier,
    build_startup_embed,
    build_summary_embed,
)
from autoreset.alerts.models import STATUS_COLORS
from autoreset.engine.base import (
    CheckpointKind,
    ResetDetail,
    ResetStatus,
    RunSummary,
    SkipReason,
)

from conftest import NOW, SHANGHAI, make_sub


def _summary(*details: ResetDetail, **kwargs) -> RunSummary:
    summary = RunSummary(checkpoint=CheckpointKind.SECOND, account="test_k...7890", **kwargs)
    summary.total = len(details)
    summary.eligible = len(details)
    for detail in details:
        summary.add(detail)
    return summary


def test_summary_embed_fields_and_lines():
    summary = _summary(
        ResetDetail(1, "PRO", ResetStatus.SUCCESS, "reset succeeded", before_credits=2.5, after_credits=50.0),
        ResetDetail(
            2, "PLUS", ResetStatus.SCHEDULED, "scheduled", scheduled_for=NOW + timedelta(hours=2)
        ),
        ResetDetail(3, "MAX", ResetStatus.FAILED, "HTTP 500"),
    )

    embed = build_summary_embed(summary, SHANGHAI)

    assert embed.title == "Second checkpoint"
    assert embed.color == STATUS_COLORS["partial"]
    fields = {f["name"]: f["value"] for f in embed.fields}
    assert fields == {"Success": "1", "Failed": "1", "Skipped": "0", "Scheduled": "1"}
    assert "2.50 → **50.00**" in embed.description
    assert "reset at 2025-01-15 22:00:00" in embed.description
    assert "HTTP 500" in embed.description


def test_deferred_summary_title():
    summary = _summary(ResetDetail(1, "PRO", ResetStatus.SUCCESS, verified=False), delayed=True)
    embed = build_summary_embed(summary, SHANGHAI)
    assert embed.title == "Second checkpoint (deferred)"
    assert "(unverified)" in embed.description
    assert embed.color == STATUS_COLORS["ok"]


def test_error_and_empty_descriptions():
    failed = _summary()
    failed.error = "connection refused"
    assert "connection refused" in build_description(failed, SHANGHAI)
    assert build_summary_embed(failed, SHANGHAI).color == STATUS_COLORS["failed"]

    idle = _summary()
    idle.total = 4
    assert build_description(idle, SHANGHAI) == "No eligible subscriptions (4 checked)."


def test_long_summaries_are_truncated():
    details = [
        ResetDetail(i, f"SUB{i}", ResetStatus.SKIPPED, "x" * 200, reason=SkipReason.NO_EFFECT)
        for i in range(40)
    ]
    text = build_description(_summary(*details), SHANGHAI)
    assert len(text) <= discord.MAX_DESCRIPTION
    assert "more" in text or text.endswith("…")


def test_startup_embed_lists_subscriptions():
    embed = build_startup_embed("test_k...7890", [make_sub(id=7, display_name="PRO")], SHANGHAI)
    assert embed.title == "Service started"
    assert "PRO(7)" in embed.description
    assert "last reset never" in embed.description


@pytest.mark.asyncio
async def test_notify_sends_webhook(settings, monkeypatch):
    sent = []

    class FakeWebhook:
        def __init__(self, url: str) -> None:
            self.url = url
            self.embeds = []

        def add_embed(self, embed) -> None:
            self.embeds.append(embed)

        def execute(self):
            sent.append(self)
            return None

    monkeypatch.setattr(discord, "DiscordWebhook", FakeWebhook)
    notifier = DiscordNotifier(settings)

    await notifier.notify(_summary(ResetDetail(1, "PRO", ResetStatus.SUCCESS)))

    assert len(sent) == 1
    assert sent[0].url == settings.discord_webhook_url
    assert sent[0].embeds[0].title == "Second checkpoint"


def test_build_notifier_without_webhook(settings):
    assert build_notifier(settings).enabled is True
    settings = settings.model_copy(update={"discord_webhook_url": None})
    assert build_notifier(settings).enabled is False
