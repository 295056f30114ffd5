"""
Database and repository tests.

Schema setup, session handling and the conditional running-state
updates issued by IndicatorRepository.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storage.database import (
    REQUIRED_TABLES,
    create_database_engine,
    get_session_factory,
    initialize_database,
    session_scope,
    verify_required_tables,
)
from storage.models import AlertRecordRow, ExecutionAttemptRow, IndicatorRow
from storage.repositories import (
    AlertRecordRepository,
    ExecutionHistoryRepository,
    IndicatorRepository,
    IntegrityError,
    RepositoryException,
)


START = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    engine = create_database_engine(f"sqlite:///{tmp_path / 'repo.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def factory(engine):
    initialize_database(engine)
    return get_session_factory(engine)


def indicator_row(indicator_id=1, **overrides):
    values = dict(
        indicator_id=indicator_id,
        name=f"Indicator {indicator_id}",
        threshold_type="threshold_value",
        threshold_value=Decimal("100"),
        frequency_minutes=30,
        collector_ref="order_volume",
    )
    values.update(overrides)
    return IndicatorRow(**values)


class TestSchema:

    def test_tables_missing_before_init(self, engine):
        assert verify_required_tables(engine) == REQUIRED_TABLES

    def test_initialize_creates_tables(self, engine):
        initialize_database(engine)
        assert verify_required_tables(engine) == []

    def test_initialize_is_idempotent(self, engine):
        initialize_database(engine)
        initialize_database(engine)
        assert verify_required_tables(engine) == []


class TestSessionScope:

    def test_commit(self, factory):
        with session_scope(factory) as session:
            IndicatorRepository(session).add(indicator_row())

        with session_scope(factory) as session:
            assert IndicatorRepository(session).get(1) is not None

    def test_rollback_on_error(self, factory):
        with pytest.raises(RuntimeError):
            with session_scope(factory) as session:
                IndicatorRepository(session).add(indicator_row())
                raise RuntimeError("abort")

        with session_scope(factory) as session:
            assert IndicatorRepository(session).get(1) is None

    def test_duplicate_key_is_integrity_error(self, factory):
        with session_scope(factory) as session:
            IndicatorRepository(session).add(indicator_row())

        with pytest.raises(IntegrityError):
            with session_scope(factory) as session:
                IndicatorRepository(session).add(indicator_row())

    def test_query_without_tables(self, engine):
        with pytest.raises(RepositoryException):
            with session_scope(get_session_factory(engine)) as session:
                IndicatorRepository(session).list_all()


class TestIndicatorRepository:

    def test_list_active_ordered(self, factory):
        with session_scope(factory) as session:
            repository = IndicatorRepository(session)
            repository.add(indicator_row(3))
            repository.add(indicator_row(1))
            repository.add(indicator_row(2, is_active=False))

        with session_scope(factory) as session:
            repository = IndicatorRepository(session)
            assert [r.indicator_id for r in repository.list_active()] == [1, 3]
            assert [r.indicator_id for r in repository.list_all()] == [1, 2, 3]

    def test_running_state_cycle(self, factory):
        with session_scope(factory) as session:
            IndicatorRepository(session).add(indicator_row())

        with session_scope(factory) as session:
            repository = IndicatorRepository(session)
            version = repository.acquire_running(1, "Scheduled", START)
            assert version == 1
            assert repository.acquire_running(1, "Manual", START) is None

        with session_scope(factory) as session:
            repository = IndicatorRepository(session)
            assert repository.clear_running(1, version + 1, START) is False
            assert repository.clear_running(1, version, START) is True
            assert repository.current_version(1) == 2

        with session_scope(factory) as session:
            row = IndicatorRepository(session).get(1)
            assert row.is_running is False
            assert row.execution_context is None
            assert row.last_run.replace(tzinfo=timezone.utc) == START

    def test_reclaim_and_force_clear(self, factory):
        with session_scope(factory) as session:
            IndicatorRepository(session).add(indicator_row())

        with session_scope(factory) as session:
            repository = IndicatorRepository(session)
            first = repository.acquire_running(1, "Scheduled", START)
            second = repository.reclaim_stale(1, first, "Manual", START + timedelta(hours=2))
            assert second == first + 1
            assert repository.reclaim_stale(1, first, "Manual", START) is None
            assert repository.force_clear(1, first) is False
            assert repository.force_clear(1, second) is True

        with session_scope(factory) as session:
            row = IndicatorRepository(session).get(1)
            assert row.is_running is False
            assert row.last_run is None


class TestHistoryRepositories:

    def test_attempts_newest_first_with_limit(self, factory):
        with session_scope(factory) as session:
            IndicatorRepository(session).add(indicator_row())
            history = ExecutionHistoryRepository(session)
            for minutes in range(5):
                history.append(ExecutionAttemptRow(
                    indicator_id=1,
                    executed_at=START + timedelta(minutes=minutes),
                    duration_ms=10,
                    success=True,
                    execution_context="Scheduled",
                ))

        with session_scope(factory) as session:
            rows = ExecutionHistoryRepository(session).list_for_indicator(1, limit=3)
            assert len(rows) == 3
            assert rows[0].executed_at.replace(tzinfo=timezone.utc) == START + timedelta(minutes=4)

    def test_latest_alert(self, factory):
        with session_scope(factory) as session:
            IndicatorRepository(session).add(indicator_row())
            alerts = AlertRecordRepository(session)
            for minutes in (0, 10):
                alerts.append(AlertRecordRow(
                    indicator_id=1,
                    trigger_time=START + timedelta(minutes=minutes),
                    current_value=Decimal("150"),
                    threshold_value=Decimal("100"),
                    deviation_percent=Decimal("50"),
                    comparison="gt",
                ))

        with session_scope(factory) as session:
            latest = AlertRecordRepository(session).latest_for_indicator(1)
            assert latest.trigger_time.replace(tzinfo=timezone.utc) == START + timedelta(minutes=10)
            assert AlertRecordRepository(session).latest_for_indicator(2) is None
