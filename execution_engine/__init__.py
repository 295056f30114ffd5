"""
Execution Engine Package.

============================================================
PURPOSE
============================================================
Runs indicator checks: acquire, collect, evaluate, alert,
record, release.

CRITICAL PRINCIPLE:
    "An indicator never runs concurrently with itself."
    "A failed collection is a failed attempt, never a zero."

AUTHORITY BOUNDARIES:
    CAN:
        - Set and clear an indicator's running state
        - Call the indicator's collector
        - Append execution history and alert records

    MUST NOT:
        - Decide when an indicator is due (scheduling does that)
        - Change indicator configuration
        - Leave an indicator marked running after an execution ends

============================================================
MODULES
============================================================
- types: Indicator, threshold, collection and outcome types
- config: Engine configuration
- interfaces: Store, collector and notifier contracts
- state_machine: Pipeline and scheduler loop states
- gate: Running-state acquisition and release
- collection: Bounded collection and result validation
- evaluator: Threshold evaluation
- alerting: Cooldown and minimum-floor gated alerts
- history: Execution attempt recording
- validation: Indicator configuration checks
- execution_service: The pipeline
- metrics: Execution counters and duration histograms
- adapters: In-memory and SQL stores, collector actions

============================================================
"""

# ============================================================
# TYPES
# ============================================================
from .types import (
    AcquireResult,
    AlertRecord,
    CollectionPayload,
    CollectionRequest,
    CollectionResult,
    CollectorStatistic,
    Comparison,
    Evaluation,
    ExecutionAttempt,
    ExecutionContext,
    ExecutionOutcome,
    Indicator,
    IndicatorStatus,
    Lease,
    ThresholdField,
    ThresholdRule,
    ThresholdType,
    to_decimal,
)

# ============================================================
# CONFIGURATION & CONTRACTS
# ============================================================
from .config import EngineConfig, ReleaseRetryConfig
from .interfaces import (
    AlertStore,
    CollectionAction,
    ExecutionHistoryWriter,
    IndicatorStore,
    Notifier,
)

# ============================================================
# STATE MACHINES
# ============================================================
from .state_machine import (
    LoopState,
    LoopStateMachine,
    PipelineState,
    PipelineStateMachine,
)

# ============================================================
# PIPELINE COMPONENTS
# ============================================================
from .gate import STALE_RECLAIMED_MESSAGE, ExecutionGate
from .collection import CollectionExecutor
from .evaluator import ThresholdEvaluator, deviation_percent
from .alerting import AlertCoordinator, build_alert_message
from .history import ExecutionHistoryRecorder
from .validation import ValidationResult, validate_indicator
from .execution_service import IndicatorExecutionService
from .metrics import DurationStats, ExecutionMetrics, ExecutionStatus


__all__ = [
    # Types
    "AcquireResult",
    "AlertRecord",
    "CollectionPayload",
    "CollectionRequest",
    "CollectionResult",
    "CollectorStatistic",
    "Comparison",
    "Evaluation",
    "ExecutionAttempt",
    "ExecutionContext",
    "ExecutionOutcome",
    "Indicator",
    "IndicatorStatus",
    "Lease",
    "ThresholdField",
    "ThresholdRule",
    "ThresholdType",
    "to_decimal",
    # Configuration & contracts
    "EngineConfig",
    "ReleaseRetryConfig",
    "AlertStore",
    "CollectionAction",
    "ExecutionHistoryWriter",
    "IndicatorStore",
    "Notifier",
    # State machines
    "LoopState",
    "LoopStateMachine",
    "PipelineState",
    "PipelineStateMachine",
    # Pipeline components
    "STALE_RECLAIMED_MESSAGE",
    "ExecutionGate",
    "CollectionExecutor",
    "ThresholdEvaluator",
    "deviation_percent",
    "AlertCoordinator",
    "build_alert_message",
    "ExecutionHistoryRecorder",
    "ValidationResult",
    "validate_indicator",
    "IndicatorExecutionService",
    # Metrics
    "DurationStats",
    "ExecutionMetrics",
    "ExecutionStatus",
]
