"""
Notifications Package.

Notifier implementations for indicator execution and alert events.
"""

from .notifier import CompositeNotifier, LoggingNotifier
from .telegram import (
    TelegramFormatter,
    TelegramNotifier,
    TelegramRateLimiter,
)


__all__ = [
    "CompositeNotifier",
    "LoggingNotifier",
    "TelegramFormatter",
    "TelegramNotifier",
    "TelegramRateLimiter",
]
