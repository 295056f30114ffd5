"""
Storage Models Package.

ORM models for the indicator engine database.

- ScheduleRow
- IndicatorRow
- ExecutionAttemptRow
- AlertRecordRow
"""

from storage.models.base import Base, TimestampMixin
from storage.models.monitoring import (
    AlertRecordRow,
    ExecutionAttemptRow,
    IndicatorRow,
    ScheduleRow,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "AlertRecordRow",
    "ExecutionAttemptRow",
    "IndicatorRow",
    "ScheduleRow",
]
