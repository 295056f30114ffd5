"""
Indicator and Schedule Repositories.

============================================================
PURPOSE
============================================================
Data access for indicator configuration and the persisted
running state.

The running-state methods are single conditional UPDATE
statements; the affected row count tells the caller whether
it won. This is what keeps two engine processes from running
the same indicator at the same time.

    acquire_running  WHERE is_running = false
    reclaim_stale    WHERE is_running = true  AND version = :seen
    clear_running    WHERE is_running = true  AND version = :lease
    force_clear      WHERE is_running = true  AND version = :seen

Each successful update increments ``version``.

============================================================
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import case, or_, select, update
from sqlalchemy.orm import Session

from storage.models.monitoring import IndicatorRow, ScheduleRow
from storage.repositories.base import BaseRepository


class IndicatorRepository(BaseRepository[IndicatorRow]):
    """Repository for indicators."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, IndicatorRow, "IndicatorRepository")

    # =========================================================
    # READS
    # =========================================================

    def get(self, indicator_id: int) -> Optional[IndicatorRow]:
        return self._get_by_id(indicator_id)

    def list_active(self) -> List[IndicatorRow]:
        stmt = (
            select(IndicatorRow)
            .where(IndicatorRow.is_active.is_(True))
            .order_by(IndicatorRow.indicator_id)
        )
        return self._execute_query(stmt)

    def list_all(self) -> List[IndicatorRow]:
        stmt = select(IndicatorRow).order_by(IndicatorRow.indicator_id)
        return self._execute_query(stmt)

    def current_version(self, indicator_id: int) -> Optional[int]:
        stmt = select(IndicatorRow.version).where(IndicatorRow.indicator_id == indicator_id)
        return self._execute_scalar(stmt)

    # =========================================================
    # WRITES
    # =========================================================

    def add(self, row: IndicatorRow) -> IndicatorRow:
        return self._add(row)

    # =========================================================
    # RUNNING STATE
    # =========================================================

    def acquire_running(
        self,
        indicator_id: int,
        context: str,
        started_at: datetime,
    ) -> Optional[int]:
        """Set the running state iff clear. Returns the new version or None."""
        stmt = (
            update(IndicatorRow)
            .where(
                IndicatorRow.indicator_id == indicator_id,
                IndicatorRow.is_running.is_(False),
            )
            .values(
                is_running=True,
                execution_start=started_at,
                execution_context=context,
                version=IndicatorRow.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if self._execute_update(stmt, "acquire_running") != 1:
            return None
        return self.current_version(indicator_id)

    def reclaim_stale(
        self,
        indicator_id: int,
        expected_version: int,
        context: str,
        started_at: datetime,
    ) -> Optional[int]:
        """Take over a running state still at ``expected_version``."""
        stmt = (
            update(IndicatorRow)
            .where(
                IndicatorRow.indicator_id == indicator_id,
                IndicatorRow.is_running.is_(True),
                IndicatorRow.version == expected_version,
            )
            .values(
                execution_start=started_at,
                execution_context=context,
                version=IndicatorRow.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if self._execute_update(stmt, "reclaim_stale") != 1:
            return None
        return self.current_version(indicator_id)

    def clear_running(
        self,
        indicator_id: int,
        lease_version: int,
        started_at: datetime,
    ) -> bool:
        """
        Release a lease and advance last_run to its start.

        last_run only moves forward.
        """
        stmt = (
            update(IndicatorRow)
            .where(
                IndicatorRow.indicator_id == indicator_id,
                IndicatorRow.is_running.is_(True),
                IndicatorRow.version == lease_version,
            )
            .values(
                is_running=False,
                execution_start=None,
                execution_context=None,
                version=IndicatorRow.version + 1,
                last_run=case(
                    (
                        or_(
                            IndicatorRow.last_run.is_(None),
                            IndicatorRow.last_run < started_at,
                        ),
                        started_at,
                    ),
                    else_=IndicatorRow.last_run,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        return self._execute_update(stmt, "clear_running") == 1

    def force_clear(self, indicator_id: int, expected_version: int) -> bool:
        """Clear the running state without touching last_run."""
        stmt = (
            update(IndicatorRow)
            .where(
                IndicatorRow.indicator_id == indicator_id,
                IndicatorRow.is_running.is_(True),
                IndicatorRow.version == expected_version,
            )
            .values(
                is_running=False,
                execution_start=None,
                execution_context=None,
                version=IndicatorRow.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return self._execute_update(stmt, "force_clear") == 1


class ScheduleRepository(BaseRepository[ScheduleRow]):
    """Repository for schedules."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, ScheduleRow, "ScheduleRepository")

    def get(self, schedule_id: int) -> Optional[ScheduleRow]:
        return self._get_by_id(schedule_id)

    def list_all(self) -> List[ScheduleRow]:
        stmt = select(ScheduleRow).order_by(ScheduleRow.schedule_id)
        return self._execute_query(stmt)

    def add(self, row: ScheduleRow) -> ScheduleRow:
        return self._add(row)
