"""
Telegram Notifier.

============================================================
PURPOSE
============================================================
Pushes indicator alerts and failed executions into one or
more Telegram chats through the Bot API ``sendMessage`` call.

Messages are HTML-formatted. Outbound traffic is capped per
minute and per hour; a capped message is dropped and logged,
never queued. The bot only talks, it does not accept commands.

============================================================
"""

import asyncio
import html
import logging
import os
from collections import deque
from datetime import timedelta
from decimal import Decimal
from typing import Deque, List, Optional

import aiohttp

from core.clock import ClockFactory, ClockProtocol
from execution_engine.interfaces import Notifier
from execution_engine.types import AlertRecord, ExecutionContext, Indicator


logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


# ============================================================
# FORMATTING
# ============================================================

class TelegramFormatter:
    """Renders engine events as Telegram HTML."""

    PRIORITY_ICONS = {
        "high": "🚨",
        "medium": "⚠️",
        "low": "ℹ️",
    }

    @staticmethod
    def _value(value) -> str:
        if value is None:
            return "n/a"
        if isinstance(value, (Decimal, float)):
            return f"{value:.4f}"
        return str(value)

    @classmethod
    def format_alert(cls, indicator: Indicator, alert: AlertRecord) -> str:
        icon = cls.PRIORITY_ICONS.get(indicator.priority, "📌")
        fields = [
            ("current", cls._value(alert.current_value)),
            ("threshold", f"{alert.comparison.symbol} {cls._value(alert.threshold_value)}"),
        ]
        if alert.historical_value is not None:
            fields.append(("baseline", cls._value(alert.historical_value)))
        fields.append(("deviation", f"{cls._value(alert.deviation_percent)}%"))
        if indicator.owner:
            fields.append(("owner", html.escape(indicator.owner)))

        parts = [f"{icon} <b>{html.escape(indicator.name)}</b>", "", html.escape(alert.message), ""]
        parts += [f"• <code>{label}</code>: {text}" for label, text in fields]
        parts += ["", f"🕐 {alert.trigger_time:%Y-%m-%d %H:%M:%S} UTC"]
        return "\n".join(parts)

    @classmethod
    def format_execution_started(cls, indicator: Indicator, context: ExecutionContext) -> str:
        return f"▶️ <b>{html.escape(indicator.name)}</b> started <code>[{context.value}]</code>"

    @classmethod
    def format_execution_completed(
        cls,
        indicator: Indicator,
        success: bool,
        value=None,
        error: Optional[str] = None,
    ) -> str:
        name = html.escape(indicator.name)
        if success:
            return f"✅ <b>{name}</b> completed: <code>{cls._value(value)}</code>"
        return f"❌ <b>{name}</b> failed\n\n{html.escape(error or 'unknown error')}"


# ============================================================
# RATE LIMITING
# ============================================================

class TelegramRateLimiter:
    """Sliding one-minute and one-hour send limits."""

    def __init__(
        self,
        max_per_minute: int = 20,
        max_per_hour: int = 100,
        clock: Optional[ClockProtocol] = None,
    ):
        self._per_minute = max_per_minute
        self._per_hour = max_per_hour
        self._clock = clock or ClockFactory.get_clock()
        self._sent: Deque = deque()
        self._guard = asyncio.Lock()

    def _recent(self, window: timedelta) -> int:
        cutoff = self._clock.now() - window
        return sum(1 for sent_at in self._sent if sent_at > cutoff)

    async def acquire(self) -> bool:
        """Claim one send; False when either limit is reached."""
        async with self._guard:
            now = self._clock.now()
            while self._sent and self._sent[0] <= now - timedelta(hours=1):
                self._sent.popleft()

            if self._recent(timedelta(minutes=1)) >= self._per_minute:
                return False
            if len(self._sent) >= self._per_hour:
                return False

            self._sent.append(now)
            return True

    @property
    def remaining_minute(self) -> int:
        return max(0, self._per_minute - self._recent(timedelta(minutes=1)))


# ============================================================
# NOTIFIER
# ============================================================

class TelegramNotifier(Notifier):
    """
    Notifier backed by a Telegram bot.

    Alerts and failures always go out. Start events and successful
    completions are only sent with ``send_execution_events=True``.
    Without a token and at least one chat id the notifier stays
    disabled and every call is a no-op.
    """

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_ids: Optional[List[str]] = None,
        rate_limiter: Optional[TelegramRateLimiter] = None,
        send_execution_events: bool = False,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            bot_token: Defaults to TELEGRAM_BOT_TOKEN
            chat_ids: Defaults to TELEGRAM_CHAT_ID (comma separated)
            rate_limiter: Shared limiter; a fresh one by default
            send_execution_events: Also announce starts and successes
            session: aiohttp session to post with; created lazily otherwise
        """
        self._token = bot_token or os.getenv("TELEGRAM_BOT_TOKEN", "")
        if chat_ids:
            self._chats = list(chat_ids)
        else:
            raw = os.getenv("TELEGRAM_CHAT_ID", "")
            self._chats = [chat.strip() for chat in raw.split(",") if chat.strip()]

        self._limiter = rate_limiter or TelegramRateLimiter()
        self._send_execution_events = send_execution_events
        self._session = session
        self._enabled = bool(self._token and self._chats)

        if self._enabled:
            logger.info(f"Telegram notifications go to {len(self._chats)} chat(s)")
        else:
            logger.warning(
                "Telegram notifications disabled: TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID is empty"
            )

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # =========================================================
    # NOTIFIER INTERFACE
    # =========================================================

    async def notify_execution_started(self, indicator: Indicator, context: ExecutionContext) -> None:
        if self._send_execution_events:
            await self.send_message(TelegramFormatter.format_execution_started(indicator, context))

    async def notify_execution_completed(
        self,
        indicator: Indicator,
        success: bool,
        value=None,
        error: Optional[str] = None,
    ) -> None:
        if success and not self._send_execution_events:
            return
        await self.send_message(
            TelegramFormatter.format_execution_completed(indicator, success, value, error)
        )

    async def notify_alert(self, indicator: Indicator, alert: AlertRecord) -> None:
        await self.send_message(TelegramFormatter.format_alert(indicator, alert))

    # =========================================================
    # DELIVERY
    # =========================================================

    async def send_message(self, text: str) -> bool:
        """Post ``text`` to every chat; True only if all of them accepted it."""
        if not self._enabled:
            return False
        if not await self._limiter.acquire():
            logger.warning("Telegram rate limit reached, dropping message")
            return False

        delivered = [await self._post(chat, text) for chat in self._chats]
        return all(delivered)

    async def _post(self, chat_id: str, text: str) -> bool:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

        endpoint = f"{TELEGRAM_API}/bot{self._token}/sendMessage"
        body = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            async with self._session.post(endpoint, json=body) as response:
                if response.status == 200:
                    return True
                detail = await response.text()
                logger.error(
                    f"Telegram rejected message for chat {chat_id}: {response.status} {detail}"
                )
                return False
        except aiohttp.ClientError as e:
            logger.error(f"Telegram request for chat {chat_id} failed: {e}")
            return False
