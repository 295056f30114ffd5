"""
Scheduling - Schedule Resolver.

============================================================
PURPOSE
============================================================
Decides whether a schedule is due at a reference time and
computes its next due time.

    Interval  due when never run or now >= last_run + interval
    Cron      due when the first occurrence strictly after the
              anchor (last run, else start date, else creation
              time) has been reached
    One-time  due once, when now >= execution time and the
              indicator has never run

Disabled schedules and schedules outside their validity
window are never due. Indicators without a schedule fall back
to their own frequency.

Cron occurrences are computed in the schedule timezone with
croniter and pendulum; every comparison happens in UTC.

============================================================
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import pendulum
from croniter import croniter

from core.clock import ensure_utc
from core.exceptions import ConfigurationError
from .models import CronSpec, IntervalSpec, OneTimeSpec, Schedule


logger = logging.getLogger(__name__)


class ScheduleResolver:
    """
    Stateless due-time calculator.

    All public methods accept aware or naive datetimes for ``now`` and
    ``last_run`` (naive means UTC) and return aware UTC datetimes.
    """

    # =========================================================
    # SCHEDULE API
    # =========================================================

    def is_due(
        self,
        schedule: Schedule,
        last_run: Optional[datetime],
        now: datetime,
    ) -> bool:
        """
        Check whether ``schedule`` is due at ``now``.

        Raises:
            ConfigurationError: invalid cron expression, timezone or interval
        """
        now = ensure_utc(now)
        last_run = ensure_utc(last_run) if last_run else None

        if not schedule.enabled:
            return False

        start, end = self._window(schedule)
        if start is not None and now < start:
            return False
        if end is not None and now > end:
            return False

        spec = schedule.spec

        if isinstance(spec, IntervalSpec):
            return self._interval_due(spec.interval_minutes, last_run, now, schedule)

        if isinstance(spec, CronSpec):
            anchor = last_run or start
            if anchor is None and schedule.created_at is not None:
                anchor = ensure_utc(schedule.created_at)
            if anchor is None:
                return True
            next_run = self.next_cron_occurrence(
                spec.cron_expression, schedule.timezone, anchor
            )
            logger.debug(
                f"Cron due check for schedule {schedule.schedule_id}: "
                f"next={next_run.isoformat()} now={now.isoformat()}",
                extra={"schedule_id": schedule.schedule_id},
            )
            return next_run <= now

        if isinstance(spec, OneTimeSpec):
            if last_run is not None:
                return False
            return now >= self._localize(spec.execution_datetime, schedule.timezone)

        raise ConfigurationError(
            f"Unsupported schedule variant: {type(spec).__name__}",
            config_key="schedule_type",
        )

    def next_due(
        self,
        schedule: Schedule,
        last_run: Optional[datetime],
        now: datetime,
    ) -> Optional[datetime]:
        """
        Compute the next time ``schedule`` becomes due.

        Returns None when the schedule is disabled, already past its end
        date, or is a one-time schedule that has already run.
        """
        now = ensure_utc(now)
        last_run = ensure_utc(last_run) if last_run else None

        if not schedule.enabled:
            return None

        start, end = self._window(schedule)
        if end is not None and now > end:
            return None

        spec = schedule.spec
        candidate: Optional[datetime]

        if isinstance(spec, IntervalSpec):
            self._check_minutes(spec.interval_minutes, "interval_minutes", schedule)
            if last_run is None:
                candidate = now
            else:
                candidate = last_run + timedelta(minutes=spec.interval_minutes)
            if start is not None and candidate < start:
                candidate = start

        elif isinstance(spec, CronSpec):
            after = now
            if start is not None and start > now:
                after = start
            candidate = self.next_cron_occurrence(
                spec.cron_expression, schedule.timezone, after
            )

        elif isinstance(spec, OneTimeSpec):
            if last_run is not None:
                return None
            candidate = self._localize(spec.execution_datetime, schedule.timezone)

        else:
            raise ConfigurationError(
                f"Unsupported schedule variant: {type(spec).__name__}",
                config_key="schedule_type",
            )

        if end is not None and candidate > end:
            return None
        return candidate

    # =========================================================
    # INDICATOR API
    # =========================================================

    def is_due_by_frequency(
        self,
        frequency_minutes: Optional[int],
        last_run: Optional[datetime],
        now: datetime,
    ) -> bool:
        """Fallback rule for indicators without a schedule."""
        self._check_minutes(frequency_minutes, "frequency_minutes")
        if last_run is None:
            return True
        return ensure_utc(now) >= ensure_utc(last_run) + timedelta(minutes=frequency_minutes)

    def is_indicator_due(self, indicator, schedule: Optional[Schedule], now: datetime) -> bool:
        """
        Check an indicator against its schedule or its own frequency.

        ``indicator`` needs ``indicator_id``, ``schedule_id``, ``last_run``
        and ``frequency_minutes``.
        """
        if schedule is None:
            if indicator.schedule_id is not None:
                raise ConfigurationError(
                    f"Indicator {indicator.indicator_id} references missing "
                    f"schedule {indicator.schedule_id}",
                    config_key="schedule_id",
                    indicator_id=indicator.indicator_id,
                )
            return self.is_due_by_frequency(indicator.frequency_minutes, indicator.last_run, now)
        return self.is_due(schedule, indicator.last_run, now)

    def indicator_next_due(
        self,
        indicator,
        schedule: Optional[Schedule],
        now: datetime,
    ) -> Optional[datetime]:
        """Next due time of an indicator, following the same fallback rule."""
        if schedule is None:
            self._check_minutes(indicator.frequency_minutes, "frequency_minutes")
            if indicator.last_run is None:
                return ensure_utc(now)
            return ensure_utc(indicator.last_run) + timedelta(minutes=indicator.frequency_minutes)
        return self.next_due(schedule, indicator.last_run, now)

    # =========================================================
    # CRON
    # =========================================================

    def next_cron_occurrence(
        self,
        cron_expression: str,
        timezone: str,
        after: datetime,
    ) -> datetime:
        """
        First cron occurrence strictly after ``after``, in UTC.

        The expression is evaluated in ``timezone`` so that "0 2 * * *"
        means 02:00 local time across DST changes.
        """
        if not croniter.is_valid(cron_expression):
            raise ConfigurationError(
                f"Invalid cron expression: {cron_expression}",
                config_key="cron_expression",
                actual_value=cron_expression,
            )

        zone = self._zone(timezone)
        local_after = ensure_utc(after).astimezone(zone)

        cron = croniter(cron_expression, local_after)
        next_run = cron.get_next(datetime)

        return pendulum.instance(next_run).in_timezone("UTC")

    # =========================================================
    # HELPERS
    # =========================================================

    def _interval_due(
        self,
        interval_minutes: int,
        last_run: Optional[datetime],
        now: datetime,
        schedule: Schedule,
    ) -> bool:
        self._check_minutes(interval_minutes, "interval_minutes", schedule)
        if last_run is None:
            return True
        return now >= last_run + timedelta(minutes=interval_minutes)

    def _window(self, schedule: Schedule):
        start = self._localize(schedule.start_date, schedule.timezone) if schedule.start_date else None
        end = self._localize(schedule.end_date, schedule.timezone) if schedule.end_date else None
        return start, end

    def _localize(self, value: datetime, timezone: str) -> datetime:
        """Interpret naive values in the schedule timezone, return UTC."""
        if value.tzinfo is None:
            value = pendulum.instance(value, tz=self._zone(timezone))
        return ensure_utc(value)

    @staticmethod
    def _zone(name: str):
        try:
            return pendulum.timezone(name or "UTC")
        except (ValueError, KeyError) as e:
            raise ConfigurationError(
                f"Unknown timezone: {name}",
                config_key="timezone",
                actual_value=name,
                cause=e,
            ) from e

    @staticmethod
    def _check_minutes(
        minutes: Optional[int],
        key: str,
        schedule: Optional[Schedule] = None,
    ) -> None:
        if minutes is None or minutes <= 0:
            context = {"schedule_id": schedule.schedule_id} if schedule else {}
            raise ConfigurationError(
                f"{key} must be a positive number of minutes",
                config_key=key,
                actual_value=minutes,
                context=context,
            )
