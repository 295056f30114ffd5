"""
Execution Engine - Indicator Validation.

============================================================
PURPOSE
============================================================
Validates an indicator's configuration before it is run.

Errors mean the indicator cannot run and is skipped by the
scheduler until fixed. Warnings are logged only.

============================================================
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List

from core.exceptions import ConfigurationError
from .types import Indicator, ThresholdType


logger = logging.getLogger(__name__)

MAX_WINDOW_MINUTES_WARNING = 10080  # 7 days
MAX_AVERAGE_DAYS_WARNING = 365
VALID_PRIORITIES = ("high", "medium", "low")


# ============================================================
# VALIDATION RESULT
# ============================================================

@dataclass
class ValidationResult:
    """Result of indicator validation."""

    errors: List[str] = field(default_factory=list)
    """Problems that prevent execution."""

    warnings: List[str] = field(default_factory=list)
    """Non-fatal warnings."""

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def raise_if_invalid(self, indicator_id: int) -> None:
        """
        Raises:
            ConfigurationError: If any error was found
        """
        if self.errors:
            raise ConfigurationError(
                f"Indicator {indicator_id} is misconfigured: " + "; ".join(self.errors),
                indicator_id=indicator_id,
                context={"errors": list(self.errors)},
            )


# ============================================================
# VALIDATOR
# ============================================================

def validate_indicator(indicator: Indicator) -> ValidationResult:
    """Check the business rules of one indicator's configuration."""
    result = ValidationResult()
    rule = indicator.threshold

    if not indicator.collector_ref:
        result.errors.append("No collector configured")

    if rule.value is None:
        result.errors.append("Threshold value is required")
    elif rule.threshold_type == ThresholdType.VOLUME_AVERAGE and rule.value < 0:
        result.errors.append("Deviation percent threshold must not be negative")

    if indicator.window_minutes is None or indicator.window_minutes <= 0:
        result.errors.append("Window minutes must be greater than 0")
    elif indicator.window_minutes > MAX_WINDOW_MINUTES_WARNING:
        result.warnings.append("Window is very large (> 7 days), consider if this is intentional")

    if rule.threshold_type == ThresholdType.VOLUME_AVERAGE:
        if indicator.average_last_days is None or indicator.average_last_days <= 0:
            result.errors.append("Average last days must be greater than 0 for volume_average")
        elif indicator.average_last_days > MAX_AVERAGE_DAYS_WARNING:
            result.warnings.append("Average last days is very large (> 1 year), consider performance impact")

    if indicator.cooldown_minutes is not None and indicator.cooldown_minutes < 0:
        result.errors.append("Cooldown minutes must not be negative")

    if indicator.minimum_threshold is not None and indicator.minimum_threshold < Decimal("0"):
        result.errors.append("Minimum threshold must not be negative")

    if indicator.schedule_id is None:
        if not indicator.frequency_minutes or indicator.frequency_minutes <= 0:
            result.errors.append("Frequency minutes must be greater than 0 when no schedule is assigned")

    if (indicator.priority or "").lower() not in VALID_PRIORITIES:
        result.errors.append(f"Invalid priority: {indicator.priority}")

    if result.warnings:
        logger.debug(
            f"Indicator {indicator.indicator_id} validation warnings: {result.warnings}"
        )

    return result
