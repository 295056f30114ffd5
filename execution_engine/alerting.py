"""
Execution Engine - Alert Coordinator.

============================================================
PURPOSE
============================================================
Decides whether a breach becomes an alert, and persists it.

An alert is created only when ALL hold:
1. The evaluation breached
2. The current value is not below the minimum threshold floor
   (applies to every threshold type)
3. The latest alert of the indicator is at least the cooldown
   old (exactly at the cooldown boundary fires again)

============================================================
"""

import logging
from datetime import datetime
from typing import Optional

from core.clock import ensure_utc
from .interfaces import AlertStore
from .types import AlertRecord, Evaluation, Indicator, ThresholdType


logger = logging.getLogger(__name__)


class AlertCoordinator:
    """Breach → deduplicated AlertRecord."""

    def __init__(self, store: AlertStore):
        self._store = store

    async def maybe_alert(
        self,
        indicator: Indicator,
        evaluation: Evaluation,
        now: datetime,
    ) -> Optional[AlertRecord]:
        """
        Create and persist an alert if the breach qualifies.

        Raises:
            PersistenceError: alert store read or write failed
        """
        if not evaluation.breached:
            return None

        floor = indicator.minimum_threshold
        if floor is not None and evaluation.current_value < floor:
            logger.info(
                f"Indicator {indicator.indicator_id}: breach suppressed, "
                f"current {evaluation.current_value} below minimum {floor}"
            )
            return None

        now = ensure_utc(now)

        if indicator.cooldown_minutes and indicator.cooldown_minutes > 0:
            latest = await self._store.latest_for_indicator(indicator.indicator_id)
            if latest is not None:
                since_last = now - ensure_utc(latest.trigger_time)
                if since_last < indicator.cooldown:
                    logger.info(
                        f"Indicator {indicator.indicator_id}: breach suppressed by cooldown "
                        f"({since_last.total_seconds() / 60:.1f} of {indicator.cooldown_minutes} min)"
                    )
                    return None

        alert = AlertRecord(
            indicator_id=indicator.indicator_id,
            trigger_time=now,
            current_value=evaluation.current_value,
            threshold_value=evaluation.threshold_value,
            deviation_percent=evaluation.deviation_percent,
            comparison=evaluation.comparison,
            historical_value=evaluation.historical_value,
            message=build_alert_message(indicator, evaluation),
        )
        saved = await self._store.append(alert)

        logger.warning(
            f"ALERT indicator {indicator.indicator_id} ({indicator.name}): {saved.message}",
            extra={"indicator_id": indicator.indicator_id, "alert_id": saved.alert_id},
        )
        return saved


def build_alert_message(indicator: Indicator, evaluation: Evaluation) -> str:
    """One-line human readable alert text."""
    symbol = evaluation.comparison.symbol
    if indicator.threshold.threshold_type == ThresholdType.VOLUME_AVERAGE:
        return (
            f"{indicator.name}: current {evaluation.current_value} deviates "
            f"{evaluation.deviation_percent}% from average {evaluation.historical_value} "
            f"({symbol} {evaluation.threshold_value}%)"
        )
    return (
        f"{indicator.name}: current {evaluation.current_value} "
        f"{symbol} threshold {evaluation.threshold_value}"
    )
