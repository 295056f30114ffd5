"""
Execution Engine - Execution Metrics.

============================================================
PURPOSE
============================================================
In-process counters and duration histograms for pipeline runs.

METRICS TRACKED:
- Processed executions (status=success)
- Failed executions by status (failed, timeout, error)
- Skipped and cancelled executions
- Execution duration per indicator, bucketed in seconds

A cancellation during shutdown is counted on its own and is
never a failure. Skipped and cancelled runs carry no duration.

============================================================
"""

import logging
from bisect import bisect_left
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .types import ExecutionOutcome


logger = logging.getLogger(__name__)


DEFAULT_DURATION_BUCKETS: Tuple[float, ...] = (
    0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0,
)


# ============================================================
# METRIC TYPES
# ============================================================

class ExecutionStatus(Enum):
    """Final status of one scheduled execution."""

    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    ERROR = "error"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_failure(self) -> bool:
        return self in FAILURE_STATUSES

    @classmethod
    def from_outcome(cls, outcome: ExecutionOutcome) -> "ExecutionStatus":
        if outcome.skipped or not outcome.executed:
            return cls.SKIPPED
        if outcome.success:
            return cls.SUCCESS
        if outcome.timed_out:
            return cls.TIMEOUT
        return cls.FAILED


FAILURE_STATUSES = frozenset({
    ExecutionStatus.FAILED,
    ExecutionStatus.TIMEOUT,
    ExecutionStatus.ERROR,
})


@dataclass
class DurationStats:
    """Duration histogram; a value lands in the first bucket it does not exceed."""

    buckets: Tuple[float, ...] = DEFAULT_DURATION_BUCKETS
    count: int = 0
    total_seconds: float = 0.0
    min_seconds: float = float("inf")
    max_seconds: float = 0.0
    bucket_counts: List[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.bucket_counts:
            # One slot per bound plus the overflow slot
            self.bucket_counts = [0] * (len(self.buckets) + 1)

    @property
    def avg_seconds(self) -> float:
        return self.total_seconds / self.count if self.count > 0 else 0.0

    def record(self, seconds: float) -> None:
        seconds = max(0.0, seconds)
        self.count += 1
        self.total_seconds += seconds
        self.min_seconds = min(self.min_seconds, seconds)
        self.max_seconds = max(self.max_seconds, seconds)
        self.bucket_counts[bisect_left(self.buckets, seconds)] += 1

    def cumulative(self) -> Dict[str, int]:
        """Counts at or below each bound, keyed like ``le`` labels."""
        result = {}
        running = 0
        for bound, hits in zip(self.buckets, self.bucket_counts):
            running += hits
            result[f"{bound:g}"] = running
        result["+Inf"] = self.count
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "sum_seconds": self.total_seconds,
            "avg_seconds": self.avg_seconds,
            "min_seconds": self.min_seconds if self.count else 0.0,
            "max_seconds": self.max_seconds,
            "buckets": self.cumulative(),
        }


# ============================================================
# EXECUTION METRICS
# ============================================================

class ExecutionMetrics:
    """
    Metrics collector for scheduled indicator executions.

    Fed by the scheduler loop once per pipeline it starts. Lives
    in one event loop, so no locking.
    """

    def __init__(self, buckets: Tuple[float, ...] = DEFAULT_DURATION_BUCKETS):
        if list(buckets) != sorted(buckets) or not buckets:
            raise ValueError("duration buckets must be a non-empty ascending sequence")
        self._buckets = tuple(buckets)
        self._start_time = datetime.now(timezone.utc)
        self._counts: Dict[ExecutionStatus, int] = {status: 0 for status in ExecutionStatus}
        self._failures_by_indicator: Dict[int, int] = defaultdict(int)
        self._durations: Dict[int, DurationStats] = {}
        self._all = DurationStats(buckets=self._buckets)

    # --------------------------------------------------------
    # RECORDING
    # --------------------------------------------------------

    def record(
        self,
        indicator_id: int,
        status: ExecutionStatus,
        duration_seconds: Optional[float] = None,
    ) -> None:
        self._counts[status] += 1
        if status.is_failure:
            self._failures_by_indicator[indicator_id] += 1

        if duration_seconds is None or status in (ExecutionStatus.SKIPPED, ExecutionStatus.CANCELLED):
            return
        stats = self._durations.get(indicator_id)
        if stats is None:
            stats = self._durations[indicator_id] = DurationStats(buckets=self._buckets)
        stats.record(duration_seconds)
        self._all.record(duration_seconds)

    def record_outcome(self, outcome: ExecutionOutcome, duration_seconds: float) -> ExecutionStatus:
        status = ExecutionStatus.from_outcome(outcome)
        self.record(outcome.indicator_id, status, duration_seconds)
        return status

    # --------------------------------------------------------
    # REPORTING
    # --------------------------------------------------------

    @property
    def processed_total(self) -> int:
        return self._counts[ExecutionStatus.SUCCESS]

    @property
    def failed_total(self) -> int:
        return sum(self._counts[status] for status in FAILURE_STATUSES)

    def count(self, status: ExecutionStatus) -> int:
        return self._counts[status]

    def failures_for(self, indicator_id: int) -> int:
        return self._failures_by_indicator.get(indicator_id, 0)

    def duration_for(self, indicator_id: int) -> Optional[DurationStats]:
        return self._durations.get(indicator_id)

    def get_summary(self) -> Dict[str, Any]:
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        return {
            "uptime_seconds": uptime,
            "processed_total": self.processed_total,
            "failed_total": self.failed_total,
            "failed_by_status": {
                status.value: self._counts[status]
                for status in ExecutionStatus
                if status.is_failure
            },
            "skipped_total": self._counts[ExecutionStatus.SKIPPED],
            "cancelled_total": self._counts[ExecutionStatus.CANCELLED],
            "duration": self._all.to_dict(),
        }

    def get_duration_by_indicator(self) -> Dict[int, Dict[str, Any]]:
        return {
            indicator_id: stats.to_dict()
            for indicator_id, stats in sorted(self._durations.items())
        }

    def reset(self) -> None:
        self._start_time = datetime.now(timezone.utc)
        self._counts = {status: 0 for status in ExecutionStatus}
        self._failures_by_indicator.clear()
        self._durations.clear()
        self._all = DurationStats(buckets=self._buckets)


__all__ = [
    "DEFAULT_DURATION_BUCKETS",
    "ExecutionStatus",
    "DurationStats",
    "ExecutionMetrics",
]
