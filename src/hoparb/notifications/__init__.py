"""Operator alerts."""

from hoparb.notifications.telegram import TelegramNotifier, close_bot, get_bot

__all__ = ["TelegramNotifier", "close_bot", "get_bot"]
