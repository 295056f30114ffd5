"""
Execution Engine - Execution Gate.

============================================================
PURPOSE
============================================================
Single-flight execution per indicator.

The running flag, start time and context of an indicator are
persisted and only ever changed through conditional updates
in the IndicatorStore:

    acquire   UPDATE ... WHERE is_running = false
    reclaim   UPDATE ... WHERE is_running AND version = observed
    release   UPDATE ... WHERE is_running AND version = lease

Every successful update bumps the version, so a run that was
reclaimed as stale cannot later clear its successor's lock.

A crashed or hung run leaves its flag set; once the start time
is older than the stale ceiling the next acquire takes over and
records the abandoned run as a failed attempt.

============================================================
"""

import logging
from datetime import timedelta
from typing import Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.clock import ClockProtocol, ClockFactory, ensure_utc
from core.exceptions import AcquisitionError, PersistenceError
from .config import EngineConfig
from .interfaces import ExecutionHistoryWriter, IndicatorStore
from .types import (
    AcquireResult,
    ExecutionAttempt,
    ExecutionContext,
    Indicator,
    Lease,
)


logger = logging.getLogger(__name__)

STALE_RECLAIMED_MESSAGE = "stale execution reclaimed"


class ExecutionGate:
    """
    Acquire/release of an indicator's running state.

    The gate holds no in-process state; two gates over the same
    store exclude each other.
    """

    def __init__(
        self,
        store: IndicatorStore,
        history: ExecutionHistoryWriter,
        config: Optional[EngineConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._store = store
        self._history = history
        self._config = config or EngineConfig()
        self._clock = clock or ClockFactory.get_clock()

    @property
    def stale_after(self) -> timedelta:
        return timedelta(seconds=self._config.stale_after_seconds)

    # =========================================================
    # ACQUIRE
    # =========================================================

    async def try_acquire(
        self,
        indicator_id: int,
        context: ExecutionContext = ExecutionContext.SCHEDULED,
    ) -> AcquireResult:
        """
        Try to take the indicator's running state.

        Returns a result with ``acquired=False`` when the indicator is
        already running and not stale, or does not exist.

        Raises:
            PersistenceError: store unreachable
        """
        now = self._clock.now()

        lease = await self._store.acquire_running(indicator_id, context, now)
        if lease is not None:
            logger.debug(f"Acquired indicator {indicator_id} ({context.value})")
            return AcquireResult(acquired=True, lease=lease)

        current = await self._store.get_indicator(indicator_id)
        if current is None:
            logger.warning(f"Cannot acquire unknown indicator {indicator_id}")
            return AcquireResult(acquired=False)

        if not current.is_running:
            # Released between the conditional update and the read
            lease = await self._store.acquire_running(indicator_id, context, now)
            return AcquireResult(acquired=lease is not None, lease=lease)

        if not self.is_stale(current, now):
            logger.debug(
                f"Indicator {indicator_id} already running since "
                f"{current.execution_start.isoformat()}, skipping"
            )
            return AcquireResult(acquired=False)

        lease = await self._store.reclaim_stale(indicator_id, current.version, context, now)
        if lease is None:
            logger.info(f"Indicator {indicator_id} stale lock was taken over by another caller")
            return AcquireResult(acquired=False)

        logger.warning(
            f"Reclaimed stale execution of indicator {indicator_id} "
            f"(started {current.execution_start.isoformat() if current.execution_start else 'unknown'})",
            extra={"indicator_id": indicator_id},
        )
        await self._record_abandoned(current, now, STALE_RECLAIMED_MESSAGE)

        return AcquireResult(acquired=True, stale_reclaimed=True, lease=lease)

    async def acquire_or_raise(
        self,
        indicator_id: int,
        context: ExecutionContext = ExecutionContext.MANUAL,
    ) -> AcquireResult:
        """
        Acquire for callers that need an error instead of a skip.

        Raises:
            AcquisitionError: indicator already running
        """
        result = await self.try_acquire(indicator_id, context)
        if not result.acquired:
            raise AcquisitionError(indicator_id)
        return result

    def is_stale(self, indicator: Indicator, now) -> bool:
        """A running flag without a start time is always stale."""
        if indicator.execution_start is None:
            return True
        return now - ensure_utc(indicator.execution_start) > self.stale_after

    # =========================================================
    # RELEASE
    # =========================================================

    async def release(self, lease: Lease) -> bool:
        """
        Clear the running state held by ``lease``.

        Retries transient persistence failures. Never raises for
        persistence failures; returns False when release did not happen.
        """
        retry_config = self._config.release_retry
        released = False

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(retry_config.max_attempts),
                wait=wait_exponential(
                    multiplier=retry_config.initial_delay_seconds,
                    max=retry_config.max_delay_seconds,
                ),
                retry=retry_if_exception_type(PersistenceError),
                reraise=True,
            ):
                with attempt:
                    released = await self._store.clear_running(lease)
        except PersistenceError as e:
            logger.error(
                f"Failed to release indicator {lease.indicator_id} after "
                f"{retry_config.max_attempts} attempts: {e}",
                extra={"indicator_id": lease.indicator_id},
            )
            return False

        if not released:
            logger.warning(
                f"Lease on indicator {lease.indicator_id} (version {lease.version}) "
                f"was superseded before release"
            )
        return released

    async def force_release(self, indicator_id: int, reason: str = "execution cancelled") -> bool:
        """
        Clear the running state whoever holds it.

        Records the interrupted run as a failed attempt.
        Returns False when the indicator was not running.
        """
        previous = await self._store.force_clear_running(indicator_id)
        if previous is None:
            return False

        logger.info(f"Force released indicator {indicator_id}: {reason}")
        await self._record_abandoned(previous, self._clock.now(), reason)
        return True

    # =========================================================
    # HELPERS
    # =========================================================

    async def _record_abandoned(self, indicator: Indicator, now, reason: str) -> None:
        started = ensure_utc(indicator.execution_start) if indicator.execution_start else now
        attempt = ExecutionAttempt(
            indicator_id=indicator.indicator_id,
            executed_at=started,
            duration=now - started,
            success=False,
            execution_context=indicator.execution_context or ExecutionContext.SCHEDULED,
            error_message=reason,
        )
        try:
            await self._history.append(attempt)
        except PersistenceError as e:
            logger.error(
                f"Failed to record abandoned run of indicator {indicator.indicator_id}: {e}",
                extra={"indicator_id": indicator.indicator_id},
            )
