"""
Basic Notifiers.

- LoggingNotifier: writes events to the log
- CompositeNotifier: fans events out to several notifiers
"""

import asyncio
import logging
from typing import List, Optional

from execution_engine.interfaces import Notifier
from execution_engine.types import AlertRecord, ExecutionContext, Indicator


logger = logging.getLogger(__name__)


class LoggingNotifier(Notifier):
    """Logs execution and alert events."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger

    async def notify_execution_started(
        self,
        indicator: Indicator,
        context: ExecutionContext,
    ) -> None:
        self._log.info(
            f"Indicator {indicator.indicator_id} ({indicator.name}) started [{context.value}]"
        )

    async def notify_execution_completed(
        self,
        indicator: Indicator,
        success: bool,
        value=None,
        error: Optional[str] = None,
    ) -> None:
        if success:
            self._log.info(
                f"Indicator {indicator.indicator_id} ({indicator.name}) completed: value={value}"
            )
        else:
            self._log.warning(
                f"Indicator {indicator.indicator_id} ({indicator.name}) failed: {error}"
            )

    async def notify_alert(self, indicator: Indicator, alert: AlertRecord) -> None:
        self._log.warning(
            f"ALERT indicator {indicator.indicator_id} ({indicator.name}): {alert.message}",
            extra={
                "indicator_id": indicator.indicator_id,
                "current_value": str(alert.current_value),
                "deviation_percent": str(alert.deviation_percent),
            },
        )


class CompositeNotifier(Notifier):
    """
    Delivers every event to all child notifiers.

    Children run concurrently; a failing child is logged and does
    not stop delivery to the others.
    """

    def __init__(self, notifiers: List[Notifier]) -> None:
        self._notifiers = list(notifiers)

    @property
    def notifiers(self) -> List[Notifier]:
        return list(self._notifiers)

    async def _fan_out(self, method: str, *args, **kwargs) -> None:
        results = await asyncio.gather(
            *(getattr(n, method)(*args, **kwargs) for n in self._notifiers),
            return_exceptions=True,
        )
        for notifier, result in zip(self._notifiers, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"{type(notifier).__name__}.{method} failed: {result}"
                )

    async def notify_execution_started(
        self,
        indicator: Indicator,
        context: ExecutionContext,
    ) -> None:
        await self._fan_out("notify_execution_started", indicator, context)

    async def notify_execution_completed(
        self,
        indicator: Indicator,
        success: bool,
        value=None,
        error: Optional[str] = None,
    ) -> None:
        await self._fan_out(
            "notify_execution_completed", indicator, success, value=value, error=error
        )

    async def notify_alert(self, indicator: Indicator, alert: AlertRecord) -> None:
        await self._fan_out("notify_alert", indicator, alert)
