"""Scheduled credit resets for 88code subscriptions."""

__version__ = "0.3.0"
