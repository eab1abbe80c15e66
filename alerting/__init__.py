"""Alerting module: sink routing, Telegram and Discord delivery."""

from .discord import DiscordSender
from .dispatcher import NotificationDispatcher, SinkConfig, load_sinks
from .formatter import MessageFormatter, SwapContext, TelegramMessage
from .telegram import TelegramSender

__all__ = [
    "DiscordSender",
    "NotificationDispatcher",
    "SinkConfig",
    "load_sinks",
    "MessageFormatter",
    "SwapContext",
    "TelegramMessage",
    "TelegramSender",
]
