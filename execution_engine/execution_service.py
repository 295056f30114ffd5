"""
Execution Engine - Indicator Execution Service.

============================================================
PURPOSE
============================================================
Drives one indicator through the execution pipeline.

This is the primary entry point of the execution engine. The
scheduler loop calls ``execute`` for every due indicator;
operators call ``execute_by_id``, ``test_indicator`` and
``cancel_execution``.

============================================================
EXECUTION WORKFLOW
============================================================
1. Validate configuration (misconfigured → skipped)
2. Acquire the execution gate (already running → skipped)
3. Collect current value and baseline
4. Evaluate the threshold rule
5. Create a deduplicated alert
6. Record the attempt in the execution history
7. Release the gate

Any failure in steps 3-5 jumps to step 6 with the failure.
Steps 3-5 together are bounded by pipeline_timeout_seconds;
running past it is recorded as a timed-out failure.
Steps 6 and 7 run on every exit path, cancellation included.
Notifier failures are logged and never fail the pipeline.

============================================================
"""

import asyncio
import logging
from typing import List, Optional

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import (
    CollectionError,
    ConfigurationError,
    MonitoringException,
    PersistenceError,
)
from .alerting import AlertCoordinator
from .collection import CollectionExecutor
from .config import EngineConfig
from .evaluator import ThresholdEvaluator
from .gate import ExecutionGate
from .history import ExecutionHistoryRecorder
from .interfaces import (
    AlertStore,
    CollectionAction,
    ExecutionHistoryWriter,
    IndicatorStore,
    Notifier,
)
from .state_machine import PipelineState, PipelineStateMachine
from .types import (
    AlertRecord,
    ExecutionAttempt,
    ExecutionContext,
    ExecutionOutcome,
    Indicator,
    Lease,
)
from .validation import validate_indicator


logger = logging.getLogger(__name__)


class IndicatorExecutionService:
    """
    Per-indicator execution pipeline.

    Holds no per-indicator state between calls; concurrent calls for
    different indicators are independent, concurrent calls for the same
    indicator are serialized by the gate.
    """

    def __init__(
        self,
        store: IndicatorStore,
        history_writer: ExecutionHistoryWriter,
        alert_store: AlertStore,
        collection_action: CollectionAction,
        notifier: Optional[Notifier] = None,
        config: Optional[EngineConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = config or EngineConfig()
        self._clock = clock or ClockFactory.get_clock()

        errors = self._config.validate()
        if errors:
            raise ConfigurationError(
                "Invalid engine configuration: " + "; ".join(errors),
                context={"errors": errors},
            )

        self._store = store
        self._alert_store = alert_store
        self._notifier = notifier

        self._gate = ExecutionGate(store, history_writer, self._config, self._clock)
        self._collector = CollectionExecutor(collection_action, self._config, self._clock)
        self._evaluator = ThresholdEvaluator()
        self._alerts = AlertCoordinator(alert_store)
        self._history = ExecutionHistoryRecorder(history_writer)

    @property
    def gate(self) -> ExecutionGate:
        return self._gate

    # =========================================================
    # PIPELINE
    # =========================================================

    async def execute(
        self,
        indicator: Indicator,
        context: ExecutionContext = ExecutionContext.SCHEDULED,
        window_minutes: Optional[int] = None,
    ) -> ExecutionOutcome:
        """
        Run the full pipeline for one indicator.

        Raises:
            ConfigurationError: indicator misconfigured (nothing acquired)
            PersistenceError: gate acquisition failed (nothing acquired)
        """
        validate_indicator(indicator).raise_if_invalid(indicator.indicator_id)

        outcome = ExecutionOutcome(
            indicator_id=indicator.indicator_id,
            indicator_name=indicator.name,
            context=context,
            started_at=self._clock.now(),
        )
        machine = PipelineStateMachine(indicator.indicator_id)

        acquired = await self._gate.try_acquire(indicator.indicator_id, context)
        if not acquired.acquired:
            machine.transition_to(PipelineState.IDLE, "already running")
            outcome.skipped = True
            return outcome

        lease = acquired.lease
        outcome.executed = True
        outcome.stale_reclaimed = acquired.stale_reclaimed
        outcome.started_at = lease.started_at

        cancelled = False
        try:
            await asyncio.wait_for(
                self._run_stages(indicator, machine, outcome, window_minutes),
                timeout=self._config.pipeline_timeout_seconds,
            )
        except asyncio.TimeoutError:
            outcome.success = False
            outcome.timed_out = True
            outcome.error = (
                f"execution timed out after {self._config.pipeline_timeout_seconds:g}s"
            )
            logger.warning(
                f"Indicator {indicator.indicator_id} timed out in {machine.state.value}",
                extra={"indicator_id": indicator.indicator_id, "state": machine.state.value},
            )
        except asyncio.CancelledError:
            cancelled = True
            outcome.success = False
            outcome.error = "execution cancelled"
            raise
        finally:
            await self._finish(indicator, lease, machine, outcome, notify=not cancelled)

        return outcome

    async def _run_stages(
        self,
        indicator: Indicator,
        machine: PipelineStateMachine,
        outcome: ExecutionOutcome,
        window_minutes: Optional[int],
    ) -> None:
        """Collect → evaluate → alert; failures are written to ``outcome``."""
        if self._config.notify_on_start:
            await self._notify("notify_execution_started", indicator, outcome.context)

        try:
            machine.transition_to(PipelineState.COLLECTING)
            collected = await self._collector.collect(indicator, window_minutes)
            outcome.current_value = collected.current_value
            outcome.historical_value = collected.historical_value
            outcome.record_count = collected.record_count

            machine.transition_to(PipelineState.EVALUATING)
            evaluation = self._evaluator.evaluate(
                indicator,
                collected.current_value,
                collected.historical_value,
            )
            outcome.evaluation = evaluation

            machine.transition_to(PipelineState.ALERTING)
            alert = await self._alerts.maybe_alert(indicator, evaluation, self._clock.now())
            outcome.alert = alert
            if alert is not None:
                await self._notify("notify_alert", indicator, alert)

            outcome.success = True

        except CollectionError as e:
            outcome.error = e.message
            logger.warning(
                f"Collection failed for indicator {indicator.indicator_id}: {e.message}",
                extra={"indicator_id": indicator.indicator_id, "reason": e.reason.value},
            )
        except MonitoringException as e:
            outcome.error = e.message
            logger.error(
                f"Execution of indicator {indicator.indicator_id} failed "
                f"in {machine.state.value}: {e.message}",
                extra={"indicator_id": indicator.indicator_id, "error": e.to_dict()},
            )
        except Exception as e:
            outcome.error = f"{type(e).__name__}: {e}"
            logger.exception(
                f"Unexpected error executing indicator {indicator.indicator_id} "
                f"in {machine.state.value}"
            )

    async def _finish(
        self,
        indicator: Indicator,
        lease: Lease,
        machine: PipelineStateMachine,
        outcome: ExecutionOutcome,
        notify: bool,
    ) -> None:
        """Record, then release. Runs on every exit path."""
        outcome.duration = self._clock.now() - outcome.started_at

        machine.transition_to(PipelineState.RECORDING)
        record = asyncio.ensure_future(
            self._history.record(
                indicator_id=indicator.indicator_id,
                executed_at=outcome.started_at,
                duration=outcome.duration,
                success=outcome.success,
                value=outcome.current_value,
                error=outcome.error,
                context=outcome.context,
                record_count=outcome.record_count,
            )
        )
        try:
            await asyncio.shield(record)
        except asyncio.CancelledError:
            # The attempt must be on file before the lease goes away
            await asyncio.wait({record})
            raise
        finally:
            machine.transition_to(PipelineState.RELEASING)
            await asyncio.shield(self._gate.release(lease))
            machine.transition_to(PipelineState.IDLE)

        logger.info(
            f"Indicator {indicator.indicator_id} ({indicator.name}) "
            f"{'succeeded' if outcome.success else 'failed'}: "
            f"value={outcome.current_value} breached={outcome.breached} "
            f"alert={outcome.alert is not None}"
            + (f" error={outcome.error}" if outcome.error else "")
        )

        if notify:
            await self._notify(
                "notify_execution_completed",
                indicator,
                outcome.success,
                outcome.current_value,
                outcome.error,
            )

    # =========================================================
    # OPERATOR ENTRY POINTS
    # =========================================================

    async def execute_by_id(
        self,
        indicator_id: int,
        context: ExecutionContext = ExecutionContext.MANUAL,
    ) -> ExecutionOutcome:
        """
        Run an indicator on demand, through the same gate.

        Never raises for unknown, inactive or misconfigured indicators;
        the outcome carries the error instead.
        """
        now = self._clock.now()
        indicator = await self._store.get_indicator(indicator_id)

        if indicator is None:
            return ExecutionOutcome(
                indicator_id=indicator_id,
                context=context,
                started_at=now,
                error="Indicator not found",
            )

        if not indicator.is_active:
            return ExecutionOutcome(
                indicator_id=indicator_id,
                indicator_name=indicator.name,
                context=context,
                started_at=now,
                error="Indicator is not active",
            )

        try:
            return await self.execute(indicator, context)
        except (ConfigurationError, PersistenceError) as e:
            logger.error(f"Manual execution of indicator {indicator_id} failed: {e.message}")
            return ExecutionOutcome(
                indicator_id=indicator_id,
                indicator_name=indicator.name,
                context=context,
                started_at=now,
                error=e.message,
            )

    async def test_indicator(
        self,
        indicator_id: int,
        window_minutes: Optional[int] = None,
    ) -> ExecutionOutcome:
        """
        Dry run: collect and evaluate only.

        No gate, no alert, no history; the indicator's running state and
        last run are left untouched.
        """
        started = self._clock.now()
        indicator = await self._store.get_indicator(indicator_id)
        outcome = ExecutionOutcome(
            indicator_id=indicator_id,
            context=ExecutionContext.TEST,
            started_at=started,
        )

        if indicator is None:
            outcome.error = "Indicator not found"
            return outcome

        outcome.indicator_name = indicator.name
        outcome.executed = True

        try:
            collected = await self._collector.collect(indicator, window_minutes)
            outcome.current_value = collected.current_value
            outcome.historical_value = collected.historical_value
            outcome.record_count = collected.record_count
            outcome.evaluation = self._evaluator.evaluate(
                indicator,
                collected.current_value,
                collected.historical_value,
            )
            outcome.success = True
        except MonitoringException as e:
            outcome.error = e.message

        outcome.duration = self._clock.now() - started
        return outcome

    async def cancel_execution(self, indicator_id: int) -> bool:
        """Force-clear a running indicator. Returns False if it was not running."""
        return await self._gate.force_release(indicator_id, "execution cancelled by operator")

    # =========================================================
    # QUERIES
    # =========================================================

    async def get_history(self, indicator_id: int, limit: int = 50) -> List[ExecutionAttempt]:
        return await self._history.recent(indicator_id, limit)

    async def get_alerts(self, indicator_id: int, limit: int = 50) -> List[AlertRecord]:
        return await self._alert_store.list_for_indicator(indicator_id, limit)

    # =========================================================
    # NOTIFICATIONS
    # =========================================================

    async def _notify(self, method: str, *args) -> None:
        if self._notifier is None:
            return
        try:
            await asyncio.wait_for(
                getattr(self._notifier, method)(*args),
                timeout=self._config.notification_timeout_seconds,
            )
        except Exception as e:
            logger.warning(f"Notifier {method} failed: {type(e).__name__}: {e}")
