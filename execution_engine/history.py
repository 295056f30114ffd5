"""
Execution Engine - Execution History Recorder.

Records the outcome of every pipeline run exactly once, as the
last step before the gate is released. A failed write is logged
and swallowed so that release still happens.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from core.exceptions import PersistenceError
from .interfaces import ExecutionHistoryWriter
from .types import ExecutionAttempt, ExecutionContext


logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


class ExecutionHistoryRecorder:
    """Thin, failure-tolerant front of an ExecutionHistoryWriter."""

    def __init__(self, writer: ExecutionHistoryWriter):
        self._writer = writer

    async def record(
        self,
        indicator_id: int,
        executed_at: datetime,
        duration: timedelta,
        success: bool,
        value: Optional[Decimal] = None,
        error: Optional[str] = None,
        context: ExecutionContext = ExecutionContext.SCHEDULED,
        record_count: int = 0,
    ) -> Optional[ExecutionAttempt]:
        """Append one attempt; returns None when the write failed."""
        attempt = ExecutionAttempt(
            indicator_id=indicator_id,
            executed_at=executed_at,
            duration=duration,
            success=success,
            execution_context=context,
            value=value,
            error_message=error[:MAX_ERROR_LENGTH] if error else None,
            record_count=record_count,
        )

        try:
            saved = await self._writer.append(attempt)
        except PersistenceError as e:
            logger.error(
                f"Failed to record execution of indicator {indicator_id}: {e}",
                extra={"indicator_id": indicator_id, "error": e.to_dict()},
            )
            return None

        logger.debug(
            f"Recorded {'successful' if success else 'failed'} execution of "
            f"indicator {indicator_id} ({attempt.duration_ms}ms)"
        )
        return saved

    async def recent(self, indicator_id: int, limit: int = 50) -> List[ExecutionAttempt]:
        return await self._writer.list_for_indicator(indicator_id, limit)
