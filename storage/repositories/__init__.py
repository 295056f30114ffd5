"""
Repository Layer Package.

============================================================
PURPOSE
============================================================
The only code that issues SQL against the engine tables.

- IndicatorRepository: indicator config plus the conditional
  running-state updates behind the execution gate
- ScheduleRepository: schedule definitions
- ExecutionHistoryRepository / AlertRecordRepository:
  append-only logs

Every SQLAlchemy error leaves this package as a
RepositoryException.

============================================================
"""

from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import (
    IntegrityError,
    QueryError,
    RepositoryConnectionError,
    RepositoryException,
)
from storage.repositories.indicators import IndicatorRepository, ScheduleRepository
from storage.repositories.monitoring import AlertRecordRepository, ExecutionHistoryRepository

__all__ = [
    "BaseRepository",
    "IntegrityError",
    "QueryError",
    "RepositoryConnectionError",
    "RepositoryException",
    "IndicatorRepository",
    "ScheduleRepository",
    "AlertRecordRepository",
    "ExecutionHistoryRepository",
]
