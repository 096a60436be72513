"""Color, label and icon mappings for run notifications."""

from __future__ import annotations

from autoreset.engine.base import ResetStatus

# Discord embed colors (decimal)
STATUS_COLORS: dict[str, int] = {
    "ok": 0x2ECC71,         # green
    "partial": 0xFFD700,    # gold
    "failed": 0xE74C3C,     # red
    "idle": 0x95A5A6,       # grey
    "startup": 0x4169E1,    # blue
}

STATUS_LABELS: dict[ResetStatus, str] = {
    ResetStatus.SUCCESS: "Success",
    ResetStatus.FAILED: "Failed",
    ResetStatus.SKIPPED: "Skipped",
    ResetStatus.SCHEDULED: "Scheduled",
}

STATUS_ICONS: dict[ResetStatus, str] = {
    ResetStatus.SUCCESS: "✅",
    ResetStatus.FAILED: "❌",
    ResetStatus.SKIPPED: "⏭️",
    ResetStatus.SCHEDULED: "⏲️",
}
