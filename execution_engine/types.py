"""
Execution Engine - Types.

============================================================
PURPOSE
============================================================
All type definitions for the indicator execution engine.

CRITICAL PRINCIPLE:
    "An indicator never runs concurrently with itself."
    "A failed collection is a failed attempt, never a zero."

Threshold types, comparisons and value fields are closed
enums; unknown strings are rejected when configuration is
loaded, not when an indicator is evaluated.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from core.exceptions import EvaluationError


# ============================================================
# THRESHOLD CONFIGURATION
# ============================================================

class ThresholdType(Enum):
    """How the collected value is judged."""

    THRESHOLD_VALUE = "threshold_value"
    """Compare the current value against a fixed threshold."""

    VOLUME_AVERAGE = "volume_average"
    """Compare the deviation from a historical baseline against a percent."""

    @classmethod
    def parse(cls, value: str) -> "ThresholdType":
        return _parse_enum(cls, value, "threshold_type")


class Comparison(Enum):
    """Comparison operator applied by the evaluator."""

    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"

    def apply(self, left: Decimal, right: Decimal) -> bool:
        if self is Comparison.GT:
            return left > right
        if self is Comparison.GTE:
            return left >= right
        if self is Comparison.LT:
            return left < right
        if self is Comparison.LTE:
            return left <= right
        return left == right

    @property
    def symbol(self) -> str:
        return {"gt": ">", "gte": ">=", "lt": "<", "lte": "<=", "eq": "=="}[self.value]

    @classmethod
    def parse(cls, value: str) -> "Comparison":
        return _parse_enum(cls, value, "comparison")


class ThresholdField(Enum):
    """Which collector statistic the indicator watches."""

    TOTAL = "total"
    MARKED = "marked"
    MARKED_PERCENT = "markedpercent"

    @classmethod
    def parse(cls, value: str) -> "ThresholdField":
        return _parse_enum(cls, value, "threshold_field")


def _parse_enum(enum_cls, value, key: str):
    if isinstance(value, enum_cls):
        return value
    normalized = str(value or "").strip().lower()
    if enum_cls is ThresholdField:
        # "Marked_Percent" and "MarkedPercent" both appear in stored configs
        normalized = normalized.replace("_", "")
    try:
        return enum_cls(normalized)
    except ValueError as e:
        allowed = ", ".join(member.value for member in enum_cls)
        raise EvaluationError(
            f"Invalid {key} '{value}'. Must be one of: {allowed}",
            config_key=key,
            actual_value=value,
        ) from e


@dataclass(frozen=True)
class ThresholdRule:
    """Threshold rule of one indicator."""

    threshold_type: ThresholdType
    comparison: Comparison
    value: Decimal
    field: ThresholdField = ThresholdField.TOTAL

    @property
    def needs_baseline(self) -> bool:
        return self.threshold_type == ThresholdType.VOLUME_AVERAGE


# ============================================================
# EXECUTION CONTEXT & STATUS
# ============================================================

class ExecutionContext(Enum):
    """Who started an execution."""

    SCHEDULED = "Scheduled"
    MANUAL = "Manual"
    TEST = "Test"


class IndicatorStatus(Enum):
    """Operator-facing status of an indicator."""

    RUNNING = "running"
    INACTIVE = "inactive"
    NEVER_RUN = "never_run"
    DUE = "due"
    IDLE = "idle"


# ============================================================
# INDICATOR
# ============================================================

@dataclass
class Indicator:
    """
    Monitored unit.

    ``is_running``, ``execution_start`` and ``execution_context``
    are written only through the execution gate.
    """

    indicator_id: int
    name: str
    threshold: ThresholdRule
    owner: Optional[str] = None
    is_active: bool = True

    # Scheduling
    schedule_id: Optional[int] = None
    frequency_minutes: Optional[int] = None
    last_run: Optional[datetime] = None

    # Running state
    is_running: bool = False
    execution_start: Optional[datetime] = None
    execution_context: Optional[ExecutionContext] = None
    version: int = 0

    # Alerting
    minimum_threshold: Optional[Decimal] = None
    cooldown_minutes: int = 0

    # Collection
    collector_ref: Optional[str] = None
    collector_item_name: Optional[str] = None
    window_minutes: int = 60
    average_last_days: Optional[int] = None

    priority: str = "medium"
    description: Optional[str] = None

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.cooldown_minutes or 0)


# ============================================================
# COLLECTION
# ============================================================

@dataclass(frozen=True)
class CollectionRequest:
    """Parameters handed to the external collection action."""

    indicator_id: int
    procedure_ref: str
    window_minutes: int
    item_name: Optional[str] = None
    field: ThresholdField = ThresholdField.TOTAL
    baseline_days: Optional[int] = None
    baseline_hour: Optional[int] = None


@dataclass
class CollectorStatistic:
    """One item row returned by a collector."""

    item_name: str
    total: Optional[Decimal] = None
    marked: Optional[Decimal] = None
    marked_percent: Optional[Decimal] = None
    timestamp: Optional[datetime] = None

    def value_for(self, threshold_field: ThresholdField) -> Optional[Decimal]:
        if threshold_field == ThresholdField.MARKED:
            return self.marked
        if threshold_field == ThresholdField.MARKED_PERCENT:
            return self.marked_percent
        return self.total


@dataclass
class CollectionPayload:
    """
    Raw answer of a collection action.

    Either ``items`` (per-item statistics) or a single
    ``current_value`` is provided.
    """

    items: List[CollectorStatistic] = field(default_factory=list)
    current_value: Optional[Decimal] = None
    historical_value: Optional[Decimal] = None
    record_count: Optional[int] = None


@dataclass(frozen=True)
class CollectionResult:
    """Validated collection outcome consumed by the evaluator."""

    current_value: Decimal
    historical_value: Optional[Decimal]
    record_count: int


# ============================================================
# EVALUATION & ALERTS
# ============================================================

@dataclass(frozen=True)
class Evaluation:
    """Result of applying a threshold rule."""

    breached: bool
    deviation_percent: Decimal
    current_value: Decimal
    threshold_value: Decimal
    comparison: Comparison
    historical_value: Optional[Decimal] = None


@dataclass(frozen=True)
class AlertRecord:
    """Persisted alert. Immutable once created."""

    indicator_id: int
    trigger_time: datetime
    current_value: Decimal
    threshold_value: Decimal
    deviation_percent: Decimal
    comparison: Comparison
    historical_value: Optional[Decimal] = None
    message: str = ""
    alert_id: Optional[int] = None


# ============================================================
# HISTORY
# ============================================================

@dataclass(frozen=True)
class ExecutionAttempt:
    """Record of one completed execution attempt."""

    indicator_id: int
    executed_at: datetime
    duration: timedelta
    success: bool
    execution_context: ExecutionContext
    value: Optional[Decimal] = None
    error_message: Optional[str] = None
    record_count: int = 0
    attempt_id: Optional[int] = None

    @property
    def duration_ms(self) -> int:
        return int(self.duration.total_seconds() * 1000)


# ============================================================
# GATE
# ============================================================

@dataclass(frozen=True)
class Lease:
    """Proof that the holder owns an indicator's running state."""

    indicator_id: int
    started_at: datetime
    context: ExecutionContext
    version: int


@dataclass(frozen=True)
class AcquireResult:
    """Outcome of ExecutionGate.try_acquire."""

    acquired: bool
    stale_reclaimed: bool = False
    lease: Optional[Lease] = None


# ============================================================
# PIPELINE OUTCOME
# ============================================================

@dataclass
class ExecutionOutcome:
    """What happened to one indicator in one pipeline run."""

    indicator_id: int
    context: ExecutionContext
    started_at: datetime
    executed: bool = False
    skipped: bool = False
    success: bool = False
    stale_reclaimed: bool = False
    timed_out: bool = False
    current_value: Optional[Decimal] = None
    historical_value: Optional[Decimal] = None
    record_count: int = 0
    evaluation: Optional[Evaluation] = None
    alert: Optional[AlertRecord] = None
    error: Optional[str] = None
    duration: timedelta = timedelta(0)
    indicator_name: Optional[str] = None

    @property
    def breached(self) -> bool:
        return bool(self.evaluation and self.evaluation.breached)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "indicator_id": self.indicator_id,
            "indicator_name": self.indicator_name,
            "context": self.context.value,
            "started_at": self.started_at.isoformat(),
            "executed": self.executed,
            "skipped": self.skipped,
            "success": self.success,
            "stale_reclaimed": self.stale_reclaimed,
            "timed_out": self.timed_out,
            "current_value": str(self.current_value) if self.current_value is not None else None,
            "historical_value": str(self.historical_value) if self.historical_value is not None else None,
            "record_count": self.record_count,
            "breached": self.breached,
            "deviation_percent": str(self.evaluation.deviation_percent) if self.evaluation else None,
            "alert_created": self.alert is not None,
            "error": self.error,
            "duration_ms": int(self.duration.total_seconds() * 1000),
        }


# ============================================================
# VALUE HELPERS
# ============================================================

def to_decimal(value) -> Optional[Decimal]:
    """
    Convert a numeric value to a finite Decimal; None stays None.

    Raises:
        decimal.InvalidOperation: non-numeric input, NaN or infinity
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidOperation(f"boolean is not a numeric value: {value}")
    result = value if isinstance(value, Decimal) else Decimal(str(value))
    if not result.is_finite():
        raise InvalidOperation(f"not a finite number: {value}")
    return result
