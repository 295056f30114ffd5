"""
Execution Engine - Threshold Evaluator.

============================================================
PURPOSE
============================================================
Applies an indicator's threshold rule to collected values.

    threshold_value   comparison(current, threshold)
    volume_average    deviation = |current - historical| / historical * 100
                      comparison(deviation, threshold percent)

A volume_average rule without a usable baseline (missing or
zero) never breaches and reports a deviation of 0.

The collected value already represents the configured field;
field selection happens at collection time.

============================================================
"""

import logging
from decimal import Decimal
from typing import Optional

from .types import (
    Evaluation,
    Indicator,
    ThresholdType,
    to_decimal,
)


logger = logging.getLogger(__name__)

DEVIATION_QUANTUM = Decimal("0.0001")
HUNDRED = Decimal("100")


def deviation_percent(current: Decimal, reference: Decimal) -> Decimal:
    """Relative difference to ``reference`` in percent, 0 for a zero reference."""
    if reference == 0:
        return Decimal("0").quantize(DEVIATION_QUANTUM)
    return (abs(current - reference) / abs(reference) * HUNDRED).quantize(DEVIATION_QUANTUM)


class ThresholdEvaluator:
    """Pure breach decision for one indicator."""

    def evaluate(
        self,
        indicator: Indicator,
        current_value: Decimal,
        historical_value: Optional[Decimal] = None,
    ) -> Evaluation:
        rule = indicator.threshold
        current = to_decimal(current_value)
        historical = to_decimal(historical_value)

        if rule.threshold_type == ThresholdType.VOLUME_AVERAGE:
            if historical is None or historical == 0:
                logger.debug(
                    f"Indicator {indicator.indicator_id}: no usable baseline, not breached"
                )
                return Evaluation(
                    breached=False,
                    deviation_percent=Decimal("0").quantize(DEVIATION_QUANTUM),
                    current_value=current,
                    threshold_value=rule.value,
                    comparison=rule.comparison,
                    historical_value=historical,
                )

            deviation = deviation_percent(current, historical)
            breached = rule.comparison.apply(deviation, rule.value)

        else:
            deviation = deviation_percent(current, rule.value)
            breached = rule.comparison.apply(current, rule.value)

        logger.debug(
            f"Indicator {indicator.indicator_id}: {rule.threshold_type.value} "
            f"current={current} threshold={rule.value} deviation={deviation}% "
            f"breached={breached}"
        )

        return Evaluation(
            breached=breached,
            deviation_percent=deviation,
            current_value=current,
            threshold_value=rule.value,
            comparison=rule.comparison,
            historical_value=historical,
        )
