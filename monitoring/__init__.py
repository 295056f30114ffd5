"""
Monitoring Package.

Delivery of indicator engine events to operators.

Modules:
- notifications/: logging, composite and Telegram notifiers
"""

from .notifications import (
    CompositeNotifier,
    LoggingNotifier,
    TelegramNotifier,
)

__all__ = [
    "CompositeNotifier",
    "LoggingNotifier",
    "TelegramNotifier",
]
