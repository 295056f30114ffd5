"""
Orchestrator - Scheduler Loop.

============================================================
RESPONSIBILITY
============================================================
The periodic driver of the indicator engine.

- Ticks every tick_interval_seconds
- Each tick scans indicators, asks the resolver which are due
  and runs their pipelines concurrently (bounded)
- Contains every per-indicator error; one indicator never
  aborts a scan
- Gives up with StoreUnavailableError after too many failed
  scans in a row
- Counts every pipeline it starts in ExecutionMetrics

============================================================
STATES
============================================================
IDLE -> SCANNING -> IDLE ... -> STOPPED (terminal)

Shutdown stops new ticks, waits shutdown_timeout_seconds for
in-flight pipelines, then cancels them. A cancelled pipeline
still records and releases its gate.

============================================================
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Set

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import ConfigurationError, StoreUnavailableError
from execution_engine.execution_service import IndicatorExecutionService
from execution_engine.interfaces import IndicatorStore
from execution_engine.metrics import ExecutionMetrics, ExecutionStatus
from execution_engine.state_machine import LoopState, LoopStateMachine
from execution_engine.types import (
    ExecutionContext,
    ExecutionOutcome,
    Indicator,
    IndicatorStatus,
)
from scheduling.models import Schedule
from scheduling.resolver import ScheduleResolver
from scheduling.validation import describe_schedule

from .models import IndicatorStatusReport, SchedulerConfig, TickResult, UpcomingExecution


logger = logging.getLogger(__name__)


class SchedulerLoop:
    """
    Scans indicators and runs the due ones.

    The loop holds no indicator state between ticks; everything
    is re-read from the store on each scan.
    """

    def __init__(
        self,
        store: IndicatorStore,
        service: IndicatorExecutionService,
        config: Optional[SchedulerConfig] = None,
        resolver: Optional[ScheduleResolver] = None,
        clock: Optional[ClockProtocol] = None,
        metrics: Optional[ExecutionMetrics] = None,
    ):
        self._config = config or SchedulerConfig()

        errors = self._config.validate()
        if errors:
            raise ConfigurationError(
                "Invalid scheduler configuration: " + "; ".join(errors),
                context={"errors": errors},
            )

        self._store = store
        self._service = service
        self._resolver = resolver or ScheduleResolver()
        self._clock = clock or ClockFactory.get_clock()
        self._metrics = metrics or ExecutionMetrics()

        self._machine = LoopStateMachine()
        self._semaphore = asyncio.Semaphore(self._config.max_parallel_indicators)
        self._stop_event = asyncio.Event()
        self._inflight: Set[asyncio.Task] = set()
        self._consecutive_store_failures = 0
        self._last_tick: Optional[TickResult] = None

    # =========================================================
    # PROPERTIES
    # =========================================================

    @property
    def state(self) -> LoopState:
        return self._machine.state

    @property
    def is_stopped(self) -> bool:
        return self._machine.is_stopped

    @property
    def consecutive_store_failures(self) -> int:
        return self._consecutive_store_failures

    @property
    def last_tick(self) -> Optional[TickResult]:
        return self._last_tick

    @property
    def metrics(self) -> ExecutionMetrics:
        return self._metrics

    @property
    def inflight_count(self) -> int:
        return sum(1 for t in self._inflight if not t.done())

    # =========================================================
    # TICK
    # =========================================================

    async def run_once(self) -> TickResult:
        """
        Perform one scan.

        Raises:
            StoreUnavailableError: the indicator scan failed
                max_consecutive_store_failures times in a row
        """
        result = TickResult(started_at=self._clock.now())

        if self._machine.is_stopped:
            logger.warning("Scheduler loop is stopped; tick ignored")
            result.finished_at = self._clock.now()
            return result

        self._machine.transition_to(LoopState.SCANNING)
        try:
            indicators = await self._scan(result)
            if indicators is not None:
                due = await self._select_due(indicators, result)
                result.due = len(due)
                if due and self._stop_event.is_set():
                    logger.info(f"Shutdown requested during scan; {len(due)} due indicator(s) not started")
                elif due:
                    await self._run_due(due, result)
        finally:
            if not self._machine.is_stopped:
                self._machine.transition_to(LoopState.IDLE)
            result.finished_at = self._clock.now()
            self._last_tick = result

        logger.info(
            f"Tick complete: scanned={result.scanned} due={result.due} "
            f"executed={result.executed} skipped={result.skipped} "
            f"failed={result.failed} alerts={result.alerts}",
            extra={"tick": result.to_dict()},
        )

        if result.scan_failed and (
            self._consecutive_store_failures >= self._config.max_consecutive_store_failures
        ):
            raise StoreUnavailableError(
                f"Indicator store unavailable after {self._consecutive_store_failures} "
                f"consecutive failed scans: {result.scan_error}",
                operation="scan",
            )
        return result

    async def _scan(self, result: TickResult) -> Optional[List[Indicator]]:
        try:
            if self._config.process_only_active_indicators:
                indicators = await self._store.get_active_indicators()
            else:
                indicators = await self._store.list_indicators()
        except Exception as e:
            self._consecutive_store_failures += 1
            result.scan_failed = True
            result.scan_error = str(e)
            logger.error(
                f"Indicator scan failed ({self._consecutive_store_failures}/"
                f"{self._config.max_consecutive_store_failures}): {e}",
                exc_info=True,
            )
            return None

        self._consecutive_store_failures = 0
        result.scanned = len(indicators)
        return indicators

    async def _select_due(self, indicators: List[Indicator], result: TickResult) -> List[Indicator]:
        now = self._clock.now()
        schedules: Dict[int, Optional[Schedule]] = {}
        due = []

        for indicator in indicators:
            try:
                schedule = await self._schedule_for(indicator, schedules)
                if self._resolver.is_indicator_due(indicator, schedule, now):
                    due.append(indicator)
            except ConfigurationError as e:
                result.configuration_errors[indicator.indicator_id] = e.message
                logger.error(
                    f"Indicator {indicator.indicator_id} skipped: {e.message}",
                    extra={"indicator_id": indicator.indicator_id},
                )
            except Exception as e:
                result.failures[indicator.indicator_id] = str(e)
                logger.error(
                    f"Due check failed for indicator {indicator.indicator_id}: {e}",
                    exc_info=True,
                )
        return due

    async def _schedule_for(
        self,
        indicator: Indicator,
        cache: Dict[int, Optional[Schedule]],
    ) -> Optional[Schedule]:
        if indicator.schedule_id is None:
            return None
        if indicator.schedule_id not in cache:
            cache[indicator.schedule_id] = await self._store.get_schedule(indicator.schedule_id)
        return cache[indicator.schedule_id]

    async def _run_due(self, due: List[Indicator], result: TickResult) -> None:
        tasks = []
        for indicator in due:
            task = asyncio.create_task(
                self._run_one(indicator),
                name=f"indicator-{indicator.indicator_id}",
            )
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            tasks.append(task)

        results = await asyncio.gather(*tasks, return_exceptions=True)

        for indicator, item in zip(due, results):
            if item is None:
                continue
            if isinstance(item, ExecutionOutcome):
                result.outcomes.append(item)
            elif isinstance(item, ConfigurationError):
                result.configuration_errors[indicator.indicator_id] = item.message
            elif isinstance(item, asyncio.CancelledError):
                result.failures[indicator.indicator_id] = "execution cancelled"
            elif isinstance(item, BaseException):
                result.failures[indicator.indicator_id] = str(item)

    async def _run_one(self, indicator: Indicator) -> Optional[ExecutionOutcome]:
        async with self._semaphore:
            # Queued behind the semaphore when shutdown began
            if self._stop_event.is_set():
                logger.info(f"Indicator {indicator.indicator_id} not started, scheduler stopping")
                return None
            started = time.perf_counter()
            try:
                outcome = await self._service.execute(indicator, ExecutionContext.SCHEDULED)
            except asyncio.CancelledError:
                self._metrics.record(indicator.indicator_id, ExecutionStatus.CANCELLED)
                raise
            except ConfigurationError as e:
                self._metrics.record(
                    indicator.indicator_id, ExecutionStatus.ERROR, time.perf_counter() - started
                )
                logger.error(
                    f"Indicator {indicator.indicator_id} skipped: {e.message}",
                    extra={"indicator_id": indicator.indicator_id},
                )
                raise
            except Exception as e:
                self._metrics.record(
                    indicator.indicator_id, ExecutionStatus.ERROR, time.perf_counter() - started
                )
                logger.error(
                    f"Indicator {indicator.indicator_id} failed before execution: {e}",
                    exc_info=True,
                )
                raise

            self._metrics.record_outcome(outcome, time.perf_counter() - started)
            return outcome

    # =========================================================
    # LIFECYCLE
    # =========================================================

    async def run_forever(self) -> None:
        """
        Tick until stop() is called.

        Raises:
            StoreUnavailableError: see run_once()
        """
        logger.info(
            f"Starting scheduler loop | interval={self._config.tick_interval_seconds}s "
            f"parallel={self._config.max_parallel_indicators}"
        )

        while not self._stop_event.is_set() and not self._machine.is_stopped:
            try:
                await self.run_once()
            except StoreUnavailableError:
                logger.critical("Indicator store unavailable, scheduler loop exiting")
                await self.stop()
                raise

            if self._stop_event.is_set():
                break
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self._config.tick_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass

        logger.info("Scheduler loop exited")

    async def stop(self) -> None:
        """Stop ticking, drain in-flight pipelines, then cancel the rest."""
        if self._machine.is_stopped:
            return

        logger.info("=== SCHEDULER SHUTDOWN SEQUENCE ===")
        self._stop_event.set()

        pending = [t for t in self._inflight if not t.done()]
        if pending:
            logger.info(f"Waiting up to {self._config.shutdown_timeout_seconds}s for {len(pending)} pipeline(s)")
            _, still_running = await asyncio.wait(
                pending,
                timeout=self._config.shutdown_timeout_seconds,
            )
            if still_running:
                logger.warning(f"Cancelling {len(still_running)} pipeline(s) after shutdown timeout")
                for task in still_running:
                    task.cancel()
                await asyncio.gather(*still_running, return_exceptions=True)

        self._machine.transition_to(LoopState.STOPPED)
        summary = self._metrics.get_summary()
        logger.info(
            f"Executions: processed={summary['processed_total']} failed={summary['failed_total']} "
            f"cancelled={summary['cancelled_total']}",
            extra={"metrics": summary},
        )
        logger.info("=== SCHEDULER SHUTDOWN COMPLETE ===")

    # =========================================================
    # OPERATOR VIEWS
    # =========================================================

    async def get_indicator_status(self, indicator_id: int) -> Optional[IndicatorStatusReport]:
        """Status, last run and next run of one indicator; None if unknown."""
        indicator = await self._store.get_indicator(indicator_id)
        if indicator is None:
            return None

        now = self._clock.now()
        next_run = None
        is_due = False
        description = None
        config_error = None

        try:
            schedule = await self._schedule_for(indicator, {})
            description = self._describe(indicator, schedule)
            is_due = self._resolver.is_indicator_due(indicator, schedule, now)
            next_run = now if is_due else self._resolver.indicator_next_due(indicator, schedule, now)
        except ConfigurationError as e:
            config_error = e.message

        if indicator.is_running:
            status = IndicatorStatus.RUNNING
        elif not indicator.is_active:
            status = IndicatorStatus.INACTIVE
        elif indicator.last_run is None:
            status = IndicatorStatus.NEVER_RUN
        elif is_due:
            status = IndicatorStatus.DUE
        else:
            status = IndicatorStatus.IDLE

        return IndicatorStatusReport(
            indicator_id=indicator.indicator_id,
            name=indicator.name,
            status=status,
            last_run=indicator.last_run,
            next_run=next_run,
            execution_start=indicator.execution_start,
            execution_context=indicator.execution_context,
            schedule_description=description,
            configuration_error=config_error,
        )

    async def get_upcoming(self, limit: int = 20) -> List[UpcomingExecution]:
        """Active, idle indicators ordered by next run."""
        now = self._clock.now()
        schedules: Dict[int, Optional[Schedule]] = {}
        upcoming = []

        for indicator in await self._store.get_active_indicators():
            if indicator.is_running:
                continue
            try:
                schedule = await self._schedule_for(indicator, schedules)
                is_due = self._resolver.is_indicator_due(indicator, schedule, now)
                next_run = now if is_due else self._resolver.indicator_next_due(indicator, schedule, now)
            except ConfigurationError as e:
                logger.debug(f"Indicator {indicator.indicator_id} not schedulable: {e.message}")
                continue
            if next_run is None:
                continue
            upcoming.append(
                UpcomingExecution(
                    indicator_id=indicator.indicator_id,
                    name=indicator.name,
                    next_run=next_run,
                    is_due=is_due,
                    schedule_description=self._describe(indicator, schedule),
                    priority=indicator.priority,
                )
            )

        upcoming.sort(key=lambda u: (u.next_run, u.indicator_id))
        return upcoming[:limit]

    @staticmethod
    def _describe(indicator: Indicator, schedule: Optional[Schedule]) -> str:
        if schedule is not None:
            return describe_schedule(schedule)
        return f"Every {indicator.frequency_minutes} minutes (indicator frequency)"
