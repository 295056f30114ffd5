"""
Execution Engine - Collaborator Interfaces.

============================================================
PURPOSE
============================================================
Contracts between the engine and the world around it.

    IndicatorStore         indicator/schedule reads and the
                           atomic running-state updates
    ExecutionHistoryWriter append-only execution attempts
    AlertStore             append-only alert records
    CollectionAction       the external data collection call
    Notifier               fire-and-forget event delivery

Running-state mutation is only ever performed through the
conditional operations of IndicatorStore. Implementations
must make them atomic against the backing store, not against
an in-process lock, whenever more than one engine process
shares the store.

============================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .types import (
    AlertRecord,
    CollectionPayload,
    CollectionRequest,
    ExecutionAttempt,
    ExecutionContext,
    Indicator,
    Lease,
)
from scheduling.models import Schedule


# ============================================================
# INDICATOR STORE
# ============================================================

class IndicatorStore(ABC):
    """Indicator and schedule repository."""

    @abstractmethod
    async def get_indicator(self, indicator_id: int) -> Optional[Indicator]:
        pass

    @abstractmethod
    async def get_active_indicators(self) -> List[Indicator]:
        pass

    @abstractmethod
    async def list_indicators(self) -> List[Indicator]:
        """All indicators, active or not."""
        pass

    @abstractmethod
    async def get_schedule(self, schedule_id: int) -> Optional[Schedule]:
        pass

    @abstractmethod
    async def update_indicator(self, indicator: Indicator) -> None:
        """
        Persist configuration fields.

        Running state and ``last_run`` are not written here.
        """
        pass

    @abstractmethod
    async def acquire_running(
        self,
        indicator_id: int,
        context: ExecutionContext,
        started_at: datetime,
    ) -> Optional[Lease]:
        """
        Set the running state iff it is currently clear.

        Returns the lease on success, None when the indicator is
        already running or does not exist.
        """
        pass

    @abstractmethod
    async def reclaim_stale(
        self,
        indicator_id: int,
        expected_version: int,
        context: ExecutionContext,
        started_at: datetime,
    ) -> Optional[Lease]:
        """
        Take over a running state iff its version still matches.

        Returns None when another caller released or reclaimed it first.
        """
        pass

    @abstractmethod
    async def clear_running(self, lease: Lease) -> bool:
        """
        Clear the running state held by ``lease``.

        Sets ``last_run`` to ``max(last_run, lease.started_at)``.
        Returns False when the lease is no longer current.
        """
        pass

    @abstractmethod
    async def force_clear_running(self, indicator_id: int) -> Optional[Indicator]:
        """
        Clear the running state regardless of the holder.

        Returns the indicator as it was before clearing, or None if
        it was not running.
        """
        pass


# ============================================================
# HISTORY & ALERT PERSISTENCE
# ============================================================

class ExecutionHistoryWriter(ABC):
    """Append-only execution history."""

    @abstractmethod
    async def append(self, attempt: ExecutionAttempt) -> ExecutionAttempt:
        """Persist and return the attempt with its identifier set."""
        pass

    @abstractmethod
    async def list_for_indicator(
        self,
        indicator_id: int,
        limit: int = 50,
    ) -> List[ExecutionAttempt]:
        """Most recent first."""
        pass


class AlertStore(ABC):
    """Append-only alert records."""

    @abstractmethod
    async def append(self, alert: AlertRecord) -> AlertRecord:
        pass

    @abstractmethod
    async def latest_for_indicator(self, indicator_id: int) -> Optional[AlertRecord]:
        pass

    @abstractmethod
    async def list_for_indicator(
        self,
        indicator_id: int,
        limit: int = 50,
    ) -> List[AlertRecord]:
        pass


# ============================================================
# COLLECTION
# ============================================================

class CollectionAction(ABC):
    """External data collection call."""

    @abstractmethod
    async def invoke(self, request: CollectionRequest) -> CollectionPayload:
        """
        Run the collection.

        May raise any exception; the collection executor maps it to a
        CollectionError.
        """
        pass


# ============================================================
# NOTIFIER
# ============================================================

class Notifier(ABC):
    """Event sink for executions and alerts."""

    @abstractmethod
    async def notify_execution_started(
        self,
        indicator: Indicator,
        context: ExecutionContext,
    ) -> None:
        pass

    @abstractmethod
    async def notify_execution_completed(
        self,
        indicator: Indicator,
        success: bool,
        value=None,
        error: Optional[str] = None,
    ) -> None:
        pass

    @abstractmethod
    async def notify_alert(self, indicator: Indicator, alert: AlertRecord) -> None:
        pass
