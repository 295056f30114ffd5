"""
Execution History and Alert Repositories.

Both tables are append-only: there are no update or delete
methods here.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from storage.models.monitoring import AlertRecordRow, ExecutionAttemptRow
from storage.repositories.base import BaseRepository


class ExecutionHistoryRepository(BaseRepository[ExecutionAttemptRow]):
    """Repository for execution attempts."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, ExecutionAttemptRow, "ExecutionHistoryRepository")

    def append(self, row: ExecutionAttemptRow) -> ExecutionAttemptRow:
        return self._add(row)

    def list_for_indicator(self, indicator_id: int, limit: int = 50) -> List[ExecutionAttemptRow]:
        stmt = (
            select(ExecutionAttemptRow)
            .where(ExecutionAttemptRow.indicator_id == indicator_id)
            .order_by(
                ExecutionAttemptRow.executed_at.desc(),
                ExecutionAttemptRow.attempt_id.desc(),
            )
            .limit(limit)
        )
        return self._execute_query(stmt)


class AlertRecordRepository(BaseRepository[AlertRecordRow]):
    """Repository for alert records."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, AlertRecordRow, "AlertRecordRepository")

    def append(self, row: AlertRecordRow) -> AlertRecordRow:
        return self._add(row)

    def latest_for_indicator(self, indicator_id: int) -> Optional[AlertRecordRow]:
        stmt = (
            select(AlertRecordRow)
            .where(AlertRecordRow.indicator_id == indicator_id)
            .order_by(AlertRecordRow.trigger_time.desc(), AlertRecordRow.alert_id.desc())
            .limit(1)
        )
        return self._execute_scalar(stmt)

    def list_for_indicator(self, indicator_id: int, limit: int = 50) -> List[AlertRecordRow]:
        stmt = (
            select(AlertRecordRow)
            .where(AlertRecordRow.indicator_id == indicator_id)
            .order_by(AlertRecordRow.trigger_time.desc(), AlertRecordRow.alert_id.desc())
            .limit(limit)
        )
        return self._execute_query(stmt)
