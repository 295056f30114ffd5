"""
Execution Engine - SQL Stores.

============================================================
PURPOSE
============================================================
IndicatorStore, ExecutionHistoryWriter and AlertStore backed
by the storage repositories.

Repositories are synchronous; every call runs in a worker
thread inside its own session_scope() transaction. The
running-state operations map one-to-one onto the conditional
UPDATE statements of IndicatorRepository, so exclusivity holds
across processes sharing the database.

============================================================
ERROR MAPPING
============================================================
RepositoryException, SQLAlchemyError -> PersistenceError
Unparseable configuration row       -> ConfigurationError
    (list operations log and skip the row instead)

============================================================
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from core.clock import ensure_utc
from core.exceptions import ConfigurationError, PersistenceError
from scheduling.models import CronSpec, IntervalSpec, OneTimeSpec, Schedule
from storage.database import get_session_factory, session_scope
from storage.models import AlertRecordRow, ExecutionAttemptRow, IndicatorRow, ScheduleRow
from storage.repositories import (
    AlertRecordRepository,
    ExecutionHistoryRepository,
    IndicatorRepository,
    RepositoryException,
    ScheduleRepository,
)

from ..interfaces import AlertStore, ExecutionHistoryWriter, IndicatorStore
from ..types import (
    AlertRecord,
    Comparison,
    ExecutionAttempt,
    ExecutionContext,
    Indicator,
    Lease,
    ThresholdField,
    ThresholdRule,
    ThresholdType,
)


logger = logging.getLogger(__name__)

R = TypeVar("R")


# ============================================================
# ROW MAPPING
# ============================================================

def _utc(value):
    return ensure_utc(value) if value is not None else None


def row_to_indicator(row: IndicatorRow) -> Indicator:
    """
    Raises:
        ConfigurationError: unknown threshold type, field or comparison
    """
    threshold = ThresholdRule(
        threshold_type=ThresholdType.parse(row.threshold_type),
        comparison=Comparison.parse(row.threshold_comparison),
        value=row.threshold_value,
        field=ThresholdField.parse(row.threshold_field),
    )
    context = None
    if row.execution_context:
        try:
            context = ExecutionContext(row.execution_context)
        except ValueError:
            logger.warning(
                f"Indicator {row.indicator_id} has unknown execution_context "
                f"'{row.execution_context}'"
            )

    return Indicator(
        indicator_id=row.indicator_id,
        name=row.name,
        threshold=threshold,
        owner=row.owner,
        is_active=row.is_active,
        schedule_id=row.schedule_id,
        frequency_minutes=row.frequency_minutes,
        last_run=_utc(row.last_run),
        is_running=row.is_running,
        execution_start=_utc(row.execution_start),
        execution_context=context,
        version=row.version,
        minimum_threshold=row.minimum_threshold,
        cooldown_minutes=row.cooldown_minutes or 0,
        collector_ref=row.collector_ref,
        collector_item_name=row.collector_item_name,
        window_minutes=row.window_minutes,
        average_last_days=row.average_last_days,
        priority=row.priority,
        description=row.description,
    )


def apply_indicator_config(row: IndicatorRow, indicator: Indicator) -> None:
    """Copy configuration fields onto a row. Running state is left alone."""
    row.name = indicator.name
    row.description = indicator.description
    row.owner = indicator.owner
    row.priority = indicator.priority
    row.is_active = indicator.is_active
    row.schedule_id = indicator.schedule_id
    row.frequency_minutes = indicator.frequency_minutes
    row.threshold_type = indicator.threshold.threshold_type.value
    row.threshold_field = indicator.threshold.field.value
    row.threshold_comparison = indicator.threshold.comparison.value
    row.threshold_value = indicator.threshold.value
    row.minimum_threshold = indicator.minimum_threshold
    row.cooldown_minutes = indicator.cooldown_minutes
    row.collector_ref = indicator.collector_ref
    row.collector_item_name = indicator.collector_item_name
    row.window_minutes = indicator.window_minutes
    row.average_last_days = indicator.average_last_days


def indicator_to_row(indicator: Indicator) -> IndicatorRow:
    row = IndicatorRow(
        indicator_id=indicator.indicator_id,
        last_run=indicator.last_run,
        is_running=indicator.is_running,
        execution_start=indicator.execution_start,
        execution_context=indicator.execution_context.value if indicator.execution_context else None,
        version=indicator.version,
    )
    apply_indicator_config(row, indicator)
    return row


def row_to_schedule(row: ScheduleRow) -> Schedule:
    """
    Raises:
        ConfigurationError: unknown type or missing variant field
    """
    try:
        return Schedule.from_fields(
            schedule_id=row.schedule_id,
            name=row.name,
            schedule_type=row.schedule_type,
            interval_minutes=row.interval_minutes,
            cron_expression=row.cron_expression,
            execution_datetime=row.execution_datetime,
            timezone=row.timezone or "UTC",
            enabled=row.is_enabled,
            start_date=row.start_date,
            end_date=row.end_date,
            description=row.description,
            created_at=_utc(row.created_at),
            updated_at=_utc(row.updated_at),
        )
    except ValueError as e:
        raise ConfigurationError(
            f"Schedule {row.schedule_id} is malformed: {e}",
            config_key="schedule_type",
            actual_value=row.schedule_type,
        ) from e


def schedule_to_row(schedule: Schedule) -> ScheduleRow:
    spec = schedule.spec
    return ScheduleRow(
        schedule_id=schedule.schedule_id,
        name=schedule.name,
        description=schedule.description,
        schedule_type=schedule.schedule_type.value,
        interval_minutes=spec.interval_minutes if isinstance(spec, IntervalSpec) else None,
        cron_expression=spec.cron_expression if isinstance(spec, CronSpec) else None,
        execution_datetime=spec.execution_datetime if isinstance(spec, OneTimeSpec) else None,
        start_date=schedule.start_date,
        end_date=schedule.end_date,
        timezone=schedule.timezone,
        is_enabled=schedule.enabled,
    )


def row_to_attempt(row: ExecutionAttemptRow) -> ExecutionAttempt:
    return ExecutionAttempt(
        indicator_id=row.indicator_id,
        executed_at=_utc(row.executed_at),
        duration=timedelta(milliseconds=row.duration_ms or 0),
        success=row.success,
        execution_context=ExecutionContext(row.execution_context),
        value=row.value,
        error_message=row.error_message,
        record_count=row.record_count or 0,
        attempt_id=row.attempt_id,
    )


def row_to_alert(row: AlertRecordRow) -> AlertRecord:
    return AlertRecord(
        indicator_id=row.indicator_id,
        trigger_time=_utc(row.trigger_time),
        current_value=row.current_value,
        threshold_value=row.threshold_value,
        deviation_percent=row.deviation_percent,
        comparison=Comparison.parse(row.comparison),
        historical_value=row.historical_value,
        message=row.message or "",
        alert_id=row.alert_id,
    )


# ============================================================
# BASE
# ============================================================

class _SqlAdapter:
    """Runs repository work in a thread inside one transaction."""

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    async def _run(self, operation: str, work: Callable[..., R]) -> R:
        def _in_session() -> R:
            with session_scope(self._session_factory) as session:
                return work(session)

        try:
            return await asyncio.to_thread(_in_session)
        except (RepositoryException, SQLAlchemyError) as e:
            raise PersistenceError(
                f"{operation} failed: {e}",
                operation=operation,
                cause=e,
            ) from e


# ============================================================
# INDICATOR STORE
# ============================================================

class SqlIndicatorStore(_SqlAdapter, IndicatorStore):
    """Indicator store over IndicatorRepository and ScheduleRepository."""

    # =========================================================
    # READS
    # =========================================================

    async def get_indicator(self, indicator_id: int) -> Optional[Indicator]:
        def work(session):
            row = IndicatorRepository(session).get(indicator_id)
            return row_to_indicator(row) if row else None

        return await self._run("get_indicator", work)

    async def get_active_indicators(self) -> List[Indicator]:
        return await self._run(
            "get_active_indicators",
            lambda session: self._map_all(IndicatorRepository(session).list_active()),
        )

    async def list_indicators(self) -> List[Indicator]:
        return await self._run(
            "list_indicators",
            lambda session: self._map_all(IndicatorRepository(session).list_all()),
        )

    @staticmethod
    def _map_all(rows: List[IndicatorRow]) -> List[Indicator]:
        indicators = []
        for row in rows:
            try:
                indicators.append(row_to_indicator(row))
            except ConfigurationError as e:
                logger.error(f"Skipping indicator {row.indicator_id}: {e}")
        return indicators

    async def get_schedule(self, schedule_id: int) -> Optional[Schedule]:
        def work(session):
            row = ScheduleRepository(session).get(schedule_id)
            return row_to_schedule(row) if row else None

        return await self._run("get_schedule", work)

    # =========================================================
    # WRITES
    # =========================================================

    async def update_indicator(self, indicator: Indicator) -> None:
        def work(session):
            row = IndicatorRepository(session).get(indicator.indicator_id)
            if row is None:
                raise PersistenceError(
                    f"Indicator {indicator.indicator_id} does not exist",
                    operation="update_indicator",
                )
            apply_indicator_config(row, indicator)
            session.flush()

        await self._run("update_indicator", work)

    async def add_indicator(self, indicator: Indicator) -> None:
        await self._run(
            "add_indicator",
            lambda session: IndicatorRepository(session).add(indicator_to_row(indicator)),
        )

    async def add_schedule(self, schedule: Schedule) -> None:
        await self._run(
            "add_schedule",
            lambda session: ScheduleRepository(session).add(schedule_to_row(schedule)),
        )

    # =========================================================
    # RUNNING STATE
    # =========================================================

    async def acquire_running(
        self,
        indicator_id: int,
        context: ExecutionContext,
        started_at: datetime,
    ) -> Optional[Lease]:
        version = await self._run(
            "acquire_running",
            lambda session: IndicatorRepository(session).acquire_running(
                indicator_id, context.value, started_at
            ),
        )
        if version is None:
            return None
        return Lease(indicator_id=indicator_id, started_at=started_at, context=context, version=version)

    async def reclaim_stale(
        self,
        indicator_id: int,
        expected_version: int,
        context: ExecutionContext,
        started_at: datetime,
    ) -> Optional[Lease]:
        version = await self._run(
            "reclaim_stale",
            lambda session: IndicatorRepository(session).reclaim_stale(
                indicator_id, expected_version, context.value, started_at
            ),
        )
        if version is None:
            return None
        return Lease(indicator_id=indicator_id, started_at=started_at, context=context, version=version)

    async def clear_running(self, lease: Lease) -> bool:
        return await self._run(
            "clear_running",
            lambda session: IndicatorRepository(session).clear_running(
                lease.indicator_id, lease.version, lease.started_at
            ),
        )

    async def force_clear_running(self, indicator_id: int) -> Optional[Indicator]:
        def work(session):
            repository = IndicatorRepository(session)
            row = repository.get(indicator_id)
            if row is None or not row.is_running:
                return None
            before = row_to_indicator(row)
            if not repository.force_clear(indicator_id, row.version):
                return None
            return before

        return await self._run("force_clear_running", work)


# ============================================================
# HISTORY
# ============================================================

class SqlHistoryWriter(_SqlAdapter, ExecutionHistoryWriter):
    """Execution history over ExecutionHistoryRepository."""

    async def append(self, attempt: ExecutionAttempt) -> ExecutionAttempt:
        def work(session):
            row = ExecutionHistoryRepository(session).append(
                ExecutionAttemptRow(
                    indicator_id=attempt.indicator_id,
                    executed_at=attempt.executed_at,
                    duration_ms=attempt.duration_ms,
                    success=attempt.success,
                    value=attempt.value,
                    error_message=attempt.error_message,
                    execution_context=attempt.execution_context.value,
                    record_count=attempt.record_count,
                )
            )
            return row.attempt_id

        attempt_id = await self._run("append_attempt", work)
        return replace(attempt, attempt_id=attempt_id)

    async def list_for_indicator(self, indicator_id: int, limit: int = 50) -> List[ExecutionAttempt]:
        return await self._run(
            "list_attempts",
            lambda session: [
                row_to_attempt(row)
                for row in ExecutionHistoryRepository(session).list_for_indicator(indicator_id, limit)
            ],
        )


# ============================================================
# ALERTS
# ============================================================

class SqlAlertStore(_SqlAdapter, AlertStore):
    """Alert records over AlertRecordRepository."""

    async def append(self, alert: AlertRecord) -> AlertRecord:
        def work(session):
            row = AlertRecordRepository(session).append(
                AlertRecordRow(
                    indicator_id=alert.indicator_id,
                    trigger_time=alert.trigger_time,
                    current_value=alert.current_value,
                    threshold_value=alert.threshold_value,
                    historical_value=alert.historical_value,
                    deviation_percent=alert.deviation_percent,
                    comparison=alert.comparison.value,
                    message=alert.message,
                )
            )
            return row_to_alert(row)

        return await self._run("append_alert", work)

    async def latest_for_indicator(self, indicator_id: int) -> Optional[AlertRecord]:
        def work(session):
            row = AlertRecordRepository(session).latest_for_indicator(indicator_id)
            return row_to_alert(row) if row else None

        return await self._run("latest_alert", work)

    async def list_for_indicator(self, indicator_id: int, limit: int = 50) -> List[AlertRecord]:
        return await self._run(
            "list_alerts",
            lambda session: [
                row_to_alert(row)
                for row in AlertRecordRepository(session).list_for_indicator(indicator_id, limit)
            ],
        )
