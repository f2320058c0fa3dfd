"""Telegram transport."""

from .bot import TelegramBot

__all__ = ["TelegramBot"]
