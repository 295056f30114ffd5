"""
Schedule Resolver Tests.

============================================================
PURPOSE
============================================================
Due-time decisions for interval, cron and one-time schedules
and the frequency fallback of unscheduled indicators.

============================================================
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from core.exceptions import ConfigurationError
from scheduling.models import CronSpec, IntervalSpec, OneTimeSpec, Schedule
from scheduling.resolver import ScheduleResolver


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def interval_schedule(minutes: int = 30, **kwargs) -> Schedule:
    return Schedule(schedule_id=1, name="every", spec=IntervalSpec(minutes), **kwargs)


def cron_schedule(expression: str, tz: str = "UTC", **kwargs) -> Schedule:
    return Schedule(schedule_id=2, name="cron", spec=CronSpec(expression), timezone=tz, **kwargs)


@pytest.fixture
def resolver():
    return ScheduleResolver()


# ============================================================
# INTERVAL
# ============================================================

class TestIntervalSchedules:
    """Interval schedules are due once the interval has elapsed."""

    def test_never_run_is_due(self, resolver):
        assert resolver.is_due(interval_schedule(), None, NOW) is True

    def test_not_due_before_interval(self, resolver):
        last_run = NOW - timedelta(minutes=29)
        assert resolver.is_due(interval_schedule(30), last_run, NOW) is False

    def test_due_exactly_at_interval(self, resolver):
        last_run = NOW - timedelta(minutes=30)
        assert resolver.is_due(interval_schedule(30), last_run, NOW) is True

    def test_due_after_interval(self, resolver):
        last_run = NOW - timedelta(minutes=31)
        assert resolver.is_due(interval_schedule(30), last_run, NOW) is True

    def test_naive_last_run_is_utc(self, resolver):
        last_run = datetime(2026, 1, 15, 11, 29)
        assert resolver.is_due(interval_schedule(30), last_run, NOW) is True

    def test_zero_interval_is_configuration_error(self, resolver):
        with pytest.raises(ConfigurationError):
            resolver.is_due(interval_schedule(0), NOW - timedelta(hours=1), NOW)

    def test_next_due(self, resolver):
        last_run = NOW - timedelta(minutes=10)
        assert resolver.next_due(interval_schedule(30), last_run, NOW) == NOW + timedelta(minutes=20)

    def test_next_due_never_run_is_now(self, resolver):
        assert resolver.next_due(interval_schedule(30), None, NOW) == NOW


# ============================================================
# WINDOW & ENABLED
# ============================================================

class TestScheduleWindow:
    """Disabled schedules and schedules outside their window never fire."""

    def test_disabled_never_due(self, resolver):
        schedule = interval_schedule(enabled=False)
        assert resolver.is_due(schedule, None, NOW) is False
        assert resolver.next_due(schedule, None, NOW) is None

    def test_before_start_date(self, resolver):
        schedule = interval_schedule(start_date=NOW + timedelta(days=1))
        assert resolver.is_due(schedule, None, NOW) is False

    def test_next_due_waits_for_start_date(self, resolver):
        start = NOW + timedelta(days=1)
        schedule = interval_schedule(start_date=start)
        assert resolver.next_due(schedule, None, NOW) == start

    def test_after_end_date(self, resolver):
        schedule = interval_schedule(end_date=NOW - timedelta(minutes=1))
        assert resolver.is_due(schedule, None, NOW) is False
        assert resolver.next_due(schedule, None, NOW) is None

    def test_inside_window(self, resolver):
        schedule = interval_schedule(
            start_date=NOW - timedelta(days=1),
            end_date=NOW + timedelta(days=1),
        )
        assert resolver.is_due(schedule, None, NOW) is True

    def test_naive_window_uses_schedule_timezone(self, resolver):
        # 12:30 in Paris is 11:30 UTC, already started at 12:00 UTC
        schedule = interval_schedule(
            start_date=datetime(2026, 1, 15, 12, 30),
            timezone="Europe/Paris",
        )
        assert resolver.is_due(schedule, None, NOW) is True


# ============================================================
# CRON
# ============================================================

class TestCronSchedules:
    """Cron occurrences are evaluated in the schedule timezone."""

    def test_due_when_occurrence_reached(self, resolver):
        schedule = cron_schedule("0 2 * * *")
        last_run = datetime(2026, 1, 14, 2, 0, tzinfo=timezone.utc)
        now = datetime(2026, 1, 15, 2, 0, tzinfo=timezone.utc)
        assert resolver.is_due(schedule, last_run, now) is True

    def test_not_due_before_occurrence(self, resolver):
        schedule = cron_schedule("0 2 * * *")
        last_run = datetime(2026, 1, 14, 2, 0, tzinfo=timezone.utc)
        now = datetime(2026, 1, 15, 1, 59, tzinfo=timezone.utc)
        assert resolver.is_due(schedule, last_run, now) is False

    def test_never_run_anchors_on_created_at(self, resolver):
        schedule = cron_schedule(
            "0 * * * *",
            created_at=datetime(2026, 1, 15, 11, 30, tzinfo=timezone.utc),
        )
        assert resolver.is_due(schedule, None, NOW) is True
        assert resolver.is_due(schedule, None, NOW - timedelta(minutes=1)) is False

    def test_never_run_without_anchor_is_due(self, resolver):
        assert resolver.is_due(cron_schedule("0 2 * * *"), None, NOW) is True

    def test_winter_offset(self, resolver):
        next_run = resolver.next_cron_occurrence(
            "0 2 * * *",
            "Europe/Paris",
            datetime(2026, 1, 15, 0, 0, tzinfo=timezone.utc),
        )
        assert next_run == datetime(2026, 1, 15, 1, 0, tzinfo=timezone.utc)

    def test_summer_offset(self, resolver):
        next_run = resolver.next_cron_occurrence(
            "0 2 * * *",
            "Europe/Paris",
            datetime(2026, 7, 14, 12, 0, tzinfo=timezone.utc),
        )
        assert next_run == datetime(2026, 7, 15, 0, 0, tzinfo=timezone.utc)

    def test_occurrence_is_strictly_after(self, resolver):
        after = datetime(2026, 1, 15, 2, 0, tzinfo=timezone.utc)
        next_run = resolver.next_cron_occurrence("0 2 * * *", "UTC", after)
        assert next_run == after + timedelta(days=1)

    def test_invalid_expression(self, resolver):
        with pytest.raises(ConfigurationError, match="Invalid cron expression"):
            resolver.is_due(cron_schedule("not a cron"), NOW - timedelta(days=1), NOW)

    def test_unknown_timezone(self, resolver):
        schedule = cron_schedule("0 2 * * *", tz="Mars/Olympus_Mons")
        with pytest.raises(ConfigurationError, match="Unknown timezone"):
            resolver.is_due(schedule, NOW - timedelta(days=1), NOW)

    def test_next_due(self, resolver):
        schedule = cron_schedule("*/15 * * * *")
        assert resolver.next_due(schedule, None, NOW) == NOW + timedelta(minutes=15)


# ============================================================
# ONE-TIME
# ============================================================

class TestOneTimeSchedules:
    """One-time schedules fire once."""

    def test_due_after_execution_time(self, resolver):
        schedule = Schedule(
            schedule_id=3,
            name="once",
            spec=OneTimeSpec(NOW - timedelta(minutes=5)),
        )
        assert resolver.is_due(schedule, None, NOW) is True

    def test_not_due_before_execution_time(self, resolver):
        schedule = Schedule(
            schedule_id=3,
            name="once",
            spec=OneTimeSpec(NOW + timedelta(minutes=5)),
        )
        assert resolver.is_due(schedule, None, NOW) is False
        assert resolver.next_due(schedule, None, NOW) == NOW + timedelta(minutes=5)

    def test_never_due_again_after_run(self, resolver):
        schedule = Schedule(
            schedule_id=3,
            name="once",
            spec=OneTimeSpec(NOW - timedelta(minutes=5)),
        )
        last_run = NOW - timedelta(minutes=4)
        assert resolver.is_due(schedule, last_run, NOW) is False
        assert resolver.next_due(schedule, last_run, NOW) is None


# ============================================================
# INDICATOR FALLBACK
# ============================================================

class TestIndicatorDue:
    """Indicators without a schedule use their own frequency."""

    def _indicator(self, **kwargs):
        values = dict(indicator_id=7, schedule_id=None, last_run=None, frequency_minutes=30)
        values.update(kwargs)
        return SimpleNamespace(**values)

    def test_frequency_fallback(self, resolver):
        indicator = self._indicator(last_run=NOW - timedelta(minutes=31))
        assert resolver.is_indicator_due(indicator, None, NOW) is True

    def test_frequency_not_elapsed(self, resolver):
        indicator = self._indicator(last_run=NOW - timedelta(minutes=10))
        assert resolver.is_indicator_due(indicator, None, NOW) is False
        assert resolver.indicator_next_due(indicator, None, NOW) == NOW + timedelta(minutes=20)

    def test_missing_frequency(self, resolver):
        with pytest.raises(ConfigurationError):
            resolver.is_indicator_due(self._indicator(frequency_minutes=None), None, NOW)

    def test_missing_schedule(self, resolver):
        indicator = self._indicator(schedule_id=99)
        with pytest.raises(ConfigurationError, match="missing schedule 99"):
            resolver.is_indicator_due(indicator, None, NOW)

    def test_schedule_takes_precedence(self, resolver):
        indicator = self._indicator(schedule_id=1, last_run=NOW - timedelta(minutes=31))
        assert resolver.is_indicator_due(indicator, interval_schedule(60), NOW) is False
