"""Telegram course bot: submissions, curator review and audio intake."""

__version__ = "0.4.0"
