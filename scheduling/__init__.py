"""
Scheduling Package.

Schedule descriptors and the resolver that decides when an
indicator is due.
"""

from .models import (
    CronSpec,
    IntervalSpec,
    OneTimeSpec,
    Schedule,
    ScheduleSpec,
    ScheduleType,
    ScheduleValidationResult,
)
from .resolver import ScheduleResolver
from .validation import describe_schedule, validate_schedule

__all__ = [
    "CronSpec",
    "IntervalSpec",
    "OneTimeSpec",
    "Schedule",
    "ScheduleSpec",
    "ScheduleType",
    "ScheduleValidationResult",
    "ScheduleResolver",
    "describe_schedule",
    "validate_schedule",
]
