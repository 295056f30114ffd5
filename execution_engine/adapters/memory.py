"""
Execution Engine - In-Memory Stores.

============================================================
PURPOSE
============================================================
Process-local implementations of the store interfaces.

Used by tests and by single-process deployments that do not
need durable history. The running-state operations are
atomic under one asyncio.Lock, which only protects a single
event loop; use the SQL store when several processes share
indicators.

FEATURES:
- Copies in, copies out (callers never alias stored state)
- Failure injection for persistence error paths
- Full state inspection for assertions

============================================================
"""

import asyncio
import copy
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from core.exceptions import PersistenceError
from scheduling.models import Schedule

from ..interfaces import AlertStore, ExecutionHistoryWriter, IndicatorStore
from ..types import AlertRecord, ExecutionAttempt, ExecutionContext, Indicator, Lease


logger = logging.getLogger(__name__)


# ============================================================
# INDICATOR STORE
# ============================================================

class InMemoryIndicatorStore(IndicatorStore):
    """Indicator and schedule store held in dictionaries."""

    def __init__(
        self,
        indicators: Optional[List[Indicator]] = None,
        schedules: Optional[List[Schedule]] = None,
    ) -> None:
        self._indicators: Dict[int, Indicator] = {}
        self._schedules: Dict[int, Schedule] = {}
        self._lock = asyncio.Lock()

        # Set to an exception instance to make the next calls fail
        self.fail_reads: Optional[Exception] = None
        self.fail_clear: int = 0

        for indicator in indicators or []:
            self.add_indicator(indicator)
        for schedule in schedules or []:
            self.add_schedule(schedule)

    # =========================================================
    # SEEDING & INSPECTION
    # =========================================================

    def add_indicator(self, indicator: Indicator) -> None:
        self._indicators[indicator.indicator_id] = copy.deepcopy(indicator)

    def add_schedule(self, schedule: Schedule) -> None:
        self._schedules[schedule.schedule_id] = copy.deepcopy(schedule)

    def snapshot(self, indicator_id: int) -> Optional[Indicator]:
        """Synchronous read for assertions."""
        indicator = self._indicators.get(indicator_id)
        return copy.deepcopy(indicator) if indicator else None

    def _check_reads(self) -> None:
        if self.fail_reads is not None:
            raise self.fail_reads

    # =========================================================
    # READS
    # =========================================================

    async def get_indicator(self, indicator_id: int) -> Optional[Indicator]:
        self._check_reads()
        return self.snapshot(indicator_id)

    async def get_active_indicators(self) -> List[Indicator]:
        self._check_reads()
        return [
            copy.deepcopy(indicator)
            for indicator in sorted(self._indicators.values(), key=lambda i: i.indicator_id)
            if indicator.is_active
        ]

    async def list_indicators(self) -> List[Indicator]:
        self._check_reads()
        return [
            copy.deepcopy(indicator)
            for indicator in sorted(self._indicators.values(), key=lambda i: i.indicator_id)
        ]

    async def get_schedule(self, schedule_id: int) -> Optional[Schedule]:
        self._check_reads()
        schedule = self._schedules.get(schedule_id)
        return copy.deepcopy(schedule) if schedule else None

    async def update_indicator(self, indicator: Indicator) -> None:
        async with self._lock:
            current = self._indicators.get(indicator.indicator_id)
            if current is None:
                raise PersistenceError(
                    f"Indicator {indicator.indicator_id} does not exist",
                    operation="update_indicator",
                )
            updated = copy.deepcopy(indicator)
            # Running state and last_run belong to the gate
            updated.is_running = current.is_running
            updated.execution_start = current.execution_start
            updated.execution_context = current.execution_context
            updated.version = current.version
            updated.last_run = current.last_run
            self._indicators[indicator.indicator_id] = updated

    # =========================================================
    # RUNNING STATE
    # =========================================================

    async def acquire_running(
        self,
        indicator_id: int,
        context: ExecutionContext,
        started_at: datetime,
    ) -> Optional[Lease]:
        async with self._lock:
            indicator = self._indicators.get(indicator_id)
            if indicator is None or indicator.is_running:
                return None
            return self._take(indicator, context, started_at)

    async def reclaim_stale(
        self,
        indicator_id: int,
        expected_version: int,
        context: ExecutionContext,
        started_at: datetime,
    ) -> Optional[Lease]:
        async with self._lock:
            indicator = self._indicators.get(indicator_id)
            if indicator is None or not indicator.is_running:
                return None
            if indicator.version != expected_version:
                return None
            return self._take(indicator, context, started_at)

    async def clear_running(self, lease: Lease) -> bool:
        async with self._lock:
            if self.fail_clear > 0:
                self.fail_clear -= 1
                raise PersistenceError("Injected clear failure", operation="clear_running")

            indicator = self._indicators.get(lease.indicator_id)
            if indicator is None or not indicator.is_running:
                return False
            if indicator.version != lease.version:
                return False

            indicator.is_running = False
            indicator.execution_start = None
            indicator.execution_context = None
            indicator.version += 1
            if indicator.last_run is None or indicator.last_run < lease.started_at:
                indicator.last_run = lease.started_at
            return True

    async def force_clear_running(self, indicator_id: int) -> Optional[Indicator]:
        async with self._lock:
            indicator = self._indicators.get(indicator_id)
            if indicator is None or not indicator.is_running:
                return None
            before = copy.deepcopy(indicator)
            indicator.is_running = False
            indicator.execution_start = None
            indicator.execution_context = None
            indicator.version += 1
            return before

    @staticmethod
    def _take(indicator: Indicator, context: ExecutionContext, started_at: datetime) -> Lease:
        indicator.is_running = True
        indicator.execution_start = started_at
        indicator.execution_context = context
        indicator.version += 1
        return Lease(
            indicator_id=indicator.indicator_id,
            started_at=started_at,
            context=context,
            version=indicator.version,
        )


# ============================================================
# HISTORY
# ============================================================

class InMemoryHistoryWriter(ExecutionHistoryWriter):
    """Append-only list of execution attempts."""

    def __init__(self) -> None:
        self._attempts: List[ExecutionAttempt] = []
        self._next_id = 1
        self._lock = asyncio.Lock()
        self.fail_appends: int = 0

    @property
    def attempts(self) -> List[ExecutionAttempt]:
        return list(self._attempts)

    async def append(self, attempt: ExecutionAttempt) -> ExecutionAttempt:
        async with self._lock:
            if self.fail_appends > 0:
                self.fail_appends -= 1
                raise PersistenceError("Injected history failure", operation="append_attempt")
            stored = replace(attempt, attempt_id=self._next_id)
            self._next_id += 1
            self._attempts.append(stored)
            return stored

    async def list_for_indicator(self, indicator_id: int, limit: int = 50) -> List[ExecutionAttempt]:
        matching = [a for a in self._attempts if a.indicator_id == indicator_id]
        matching.sort(key=lambda a: (a.executed_at, a.attempt_id or 0), reverse=True)
        return matching[:limit]


# ============================================================
# ALERTS
# ============================================================

class InMemoryAlertStore(AlertStore):
    """Append-only list of alert records."""

    def __init__(self) -> None:
        self._alerts: List[AlertRecord] = []
        self._next_id = 1
        self._lock = asyncio.Lock()
        self.fail_appends: int = 0

    @property
    def alerts(self) -> List[AlertRecord]:
        return list(self._alerts)

    async def append(self, alert: AlertRecord) -> AlertRecord:
        async with self._lock:
            if self.fail_appends > 0:
                self.fail_appends -= 1
                raise PersistenceError("Injected alert failure", operation="append_alert")
            stored = replace(alert, alert_id=self._next_id)
            self._next_id += 1
            self._alerts.append(stored)
            return stored

    async def latest_for_indicator(self, indicator_id: int) -> Optional[AlertRecord]:
        alerts = await self.list_for_indicator(indicator_id, limit=1)
        return alerts[0] if alerts else None

    async def list_for_indicator(self, indicator_id: int, limit: int = 50) -> List[AlertRecord]:
        matching = [a for a in self._alerts if a.indicator_id == indicator_id]
        matching.sort(key=lambda a: (a.trigger_time, a.alert_id or 0), reverse=True)
        return matching[:limit]
