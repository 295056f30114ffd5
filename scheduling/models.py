"""
Scheduling - Models.

============================================================
PURPOSE
============================================================
Schedule descriptors shared by many indicators.

A schedule carries exactly one variant:

    IntervalSpec   every N minutes since the last run
    CronSpec       cron occurrences in the schedule timezone
    OneTimeSpec    a single execution datetime

The variant IS the schedule type; there are no nullable
per-type fields on the schedule itself.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


# ============================================================
# SCHEDULE TYPE
# ============================================================

class ScheduleType(Enum):
    """Persisted discriminator of the schedule variant."""

    INTERVAL = "interval"
    CRON = "cron"
    ONETIME = "onetime"


# ============================================================
# SCHEDULE VARIANTS
# ============================================================

@dataclass(frozen=True)
class IntervalSpec:
    """Run every ``interval_minutes`` after the previous run."""

    interval_minutes: int

    @property
    def schedule_type(self) -> ScheduleType:
        return ScheduleType.INTERVAL


@dataclass(frozen=True)
class CronSpec:
    """Run at each occurrence of a five-field cron expression."""

    cron_expression: str

    @property
    def schedule_type(self) -> ScheduleType:
        return ScheduleType.CRON


@dataclass(frozen=True)
class OneTimeSpec:
    """Run once at ``execution_datetime``."""

    execution_datetime: datetime

    @property
    def schedule_type(self) -> ScheduleType:
        return ScheduleType.ONETIME


ScheduleSpec = Union[IntervalSpec, CronSpec, OneTimeSpec]


# ============================================================
# SCHEDULE
# ============================================================

@dataclass
class Schedule:
    """
    Reusable schedule descriptor.

    Naive datetimes (validity window, one-time execution) are
    interpreted in ``timezone``.
    """

    schedule_id: int
    name: str
    spec: ScheduleSpec
    timezone: str = "UTC"
    enabled: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def schedule_type(self) -> ScheduleType:
        return self.spec.schedule_type

    @classmethod
    def from_fields(
        cls,
        schedule_id: int,
        name: str,
        schedule_type: str,
        interval_minutes: Optional[int] = None,
        cron_expression: Optional[str] = None,
        execution_datetime: Optional[datetime] = None,
        **kwargs,
    ) -> "Schedule":
        """
        Build a schedule from flat, persisted fields.

        Raises:
            ValueError: unknown type or the variant's field is missing
        """
        kind = ScheduleType(schedule_type.lower())

        spec: ScheduleSpec
        if kind == ScheduleType.INTERVAL:
            if interval_minutes is None:
                raise ValueError("interval_minutes is required for interval schedules")
            spec = IntervalSpec(interval_minutes=int(interval_minutes))
        elif kind == ScheduleType.CRON:
            if not cron_expression:
                raise ValueError("cron_expression is required for cron schedules")
            spec = CronSpec(cron_expression=cron_expression.strip())
        else:
            if execution_datetime is None:
                raise ValueError("execution_datetime is required for onetime schedules")
            spec = OneTimeSpec(execution_datetime=execution_datetime)

        return cls(schedule_id=schedule_id, name=name, spec=spec, **kwargs)


@dataclass
class ScheduleValidationResult:
    """Outcome of schedule validation."""

    errors: list = field(default_factory=list)
    warnings: list = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors
