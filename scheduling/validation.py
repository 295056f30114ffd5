"""
Scheduling - Validation.

Checks schedule configuration before it is saved or loaded
into the engine, and renders a human readable description.
"""

from datetime import datetime
from typing import Optional

from croniter import croniter

from core.clock import ensure_utc
from core.exceptions import ConfigurationError
from .models import (
    CronSpec,
    IntervalSpec,
    OneTimeSpec,
    Schedule,
    ScheduleValidationResult,
)
from .resolver import ScheduleResolver


def validate_schedule(
    schedule: Schedule,
    now: Optional[datetime] = None,
) -> ScheduleValidationResult:
    """
    Validate a schedule.

    Errors make the schedule unusable; warnings are informational
    (e.g. a one-time schedule whose execution time already passed).
    """
    result = ScheduleValidationResult()
    spec = schedule.spec

    try:
        ScheduleResolver._zone(schedule.timezone)
    except ConfigurationError as e:
        result.errors.append(e.message)

    if isinstance(spec, IntervalSpec):
        if spec.interval_minutes is None or spec.interval_minutes <= 0:
            result.errors.append("Interval minutes must be greater than 0 for interval schedules")

    elif isinstance(spec, CronSpec):
        if not spec.cron_expression or not spec.cron_expression.strip():
            result.errors.append("Cron expression is required for cron schedules")
        elif len(spec.cron_expression.split()) != 5 or not croniter.is_valid(spec.cron_expression):
            result.errors.append(f"Invalid cron expression format: {spec.cron_expression}")

    elif isinstance(spec, OneTimeSpec):
        if spec.execution_datetime is None:
            result.errors.append("Execution date/time is required for one-time schedules")
        elif now is not None and ensure_utc(spec.execution_datetime) <= ensure_utc(now):
            result.warnings.append("Execution date/time is in the past; the schedule fires on the next tick")

    else:
        result.errors.append(f"Unsupported schedule variant: {type(spec).__name__}")

    if (
        schedule.start_date
        and schedule.end_date
        and ensure_utc(schedule.start_date) >= ensure_utc(schedule.end_date)
    ):
        result.errors.append("Start date must be before end date")

    if not schedule.enabled:
        result.warnings.append("Schedule is disabled and will never be due")

    return result


def describe_schedule(schedule: Schedule) -> str:
    """Short description of a schedule for logs and status output."""
    spec = schedule.spec

    if isinstance(spec, IntervalSpec):
        minutes = spec.interval_minutes
        if minutes % 1440 == 0:
            text = _plural(minutes // 1440, "day")
        elif minutes % 60 == 0:
            text = _plural(minutes // 60, "hour")
        else:
            text = _plural(minutes, "minute")
        text = f"Every {text}"
    elif isinstance(spec, CronSpec):
        text = f"Cron '{spec.cron_expression}' ({schedule.timezone})"
    else:
        text = f"Once at {spec.execution_datetime.isoformat()} ({schedule.timezone})"

    if not schedule.enabled:
        text += " [disabled]"
    return text


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"
