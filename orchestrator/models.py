"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Defines data models for the scheduler loop.

- Scheduler configuration (environment driven)
- Per-tick results
- Operator views: indicator status and upcoming executions

============================================================
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from execution_engine.types import ExecutionContext, ExecutionOutcome, IndicatorStatus


VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_LOG_FORMATS = ("json", "text")
VALID_COLLECTOR_MODES = ("http", "sql")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


# ============================================================
# SCHEDULER CONFIGURATION
# ============================================================

@dataclass
class SchedulerConfig:
    """Configuration for the scheduler loop and its wiring."""

    # Loop settings
    tick_interval_seconds: int = 60
    """Seconds between scans."""

    max_parallel_indicators: int = 5
    """Maximum pipelines running at once within one tick."""

    process_only_active_indicators: bool = True
    """Scan only active indicators."""

    # Shutdown settings
    shutdown_timeout_seconds: int = 30
    """Time given to in-flight pipelines before they are cancelled."""

    # Store health
    max_consecutive_store_failures: int = 5
    """Failed scans in a row before the loop gives up."""

    # Persistence
    database_url: Optional[str] = None
    """Engine database (default: DATABASE_URL)."""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Collection
    collector_mode: str = "http"
    """http: collector service; sql: registered queries."""

    collector_base_url: Optional[str] = None
    collector_database_url: Optional[str] = None
    collector_queries_file: Optional[str] = None
    """JSON file: {"<collector_ref>": {"query": "...", "baseline_query": "..."}}."""

    # Notifications
    telegram_enabled: bool = False
    telegram_send_execution_events: bool = False

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        """Load configuration from environment variables."""
        load_dotenv()
        return cls(
            tick_interval_seconds=int(os.getenv("TICK_INTERVAL_SECONDS", "60")),
            max_parallel_indicators=int(os.getenv("MAX_PARALLEL_INDICATORS", "5")),
            process_only_active_indicators=_env_bool("PROCESS_ONLY_ACTIVE_INDICATORS", "true"),
            shutdown_timeout_seconds=int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30")),
            max_consecutive_store_failures=int(os.getenv("MAX_CONSECUTIVE_STORE_FAILURES", "5")),
            database_url=os.getenv("DATABASE_URL"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
            collector_mode=os.getenv("COLLECTOR_MODE", "http").lower(),
            collector_base_url=os.getenv("COLLECTOR_BASE_URL"),
            collector_database_url=os.getenv("COLLECTOR_DATABASE_URL"),
            collector_queries_file=os.getenv("COLLECTOR_QUERIES_FILE"),
            telegram_enabled=_env_bool("TELEGRAM_ENABLED", "false"),
            telegram_send_execution_events=_env_bool("TELEGRAM_SEND_EXECUTION_EVENTS", "false"),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.tick_interval_seconds < 1:
            errors.append("tick_interval_seconds must be at least 1")

        if self.max_parallel_indicators < 1:
            errors.append("max_parallel_indicators must be at least 1")

        if self.shutdown_timeout_seconds < 1:
            errors.append("shutdown_timeout_seconds must be at least 1")

        if self.max_consecutive_store_failures < 1:
            errors.append("max_consecutive_store_failures must be at least 1")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(VALID_LOG_LEVELS)}")

        if self.log_format not in VALID_LOG_FORMATS:
            errors.append(f"log_format must be one of {', '.join(VALID_LOG_FORMATS)}")

        return errors

    def validate_wiring(self) -> List[str]:
        """Validate the collector settings needed to build a scheduler."""
        errors = []

        if self.collector_mode not in VALID_COLLECTOR_MODES:
            errors.append(f"collector_mode must be one of {', '.join(VALID_COLLECTOR_MODES)}")
        elif self.collector_mode == "http" and not self.collector_base_url:
            errors.append("collector_base_url required for http collector mode")
        elif self.collector_mode == "sql" and not self.collector_queries_file:
            errors.append("collector_queries_file required for sql collector mode")

        return errors


# ============================================================
# TICK RESULT
# ============================================================

@dataclass
class TickResult:
    """What one scan did."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    scanned: int = 0
    due: int = 0
    scan_failed: bool = False
    scan_error: Optional[str] = None
    outcomes: List[ExecutionOutcome] = field(default_factory=list)
    configuration_errors: Dict[int, str] = field(default_factory=dict)
    failures: Dict[int, str] = field(default_factory=dict)

    @property
    def executed(self) -> int:
        return sum(1 for o in self.outcomes if o.executed)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        executed_failures = sum(1 for o in self.outcomes if o.executed and not o.success)
        return executed_failures + len(self.failures)

    @property
    def alerts(self) -> int:
        return sum(1 for o in self.outcomes if o.alert is not None)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "scanned": self.scanned,
            "due": self.due,
            "executed": self.executed,
            "skipped": self.skipped,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "alerts": self.alerts,
            "scan_failed": self.scan_failed,
            "scan_error": self.scan_error,
            "configuration_errors": {str(k): v for k, v in self.configuration_errors.items()},
            "failures": {str(k): v for k, v in self.failures.items()},
        }


# ============================================================
# OPERATOR VIEWS
# ============================================================

@dataclass(frozen=True)
class IndicatorStatusReport:
    """Execution status of one indicator."""

    indicator_id: int
    name: str
    status: IndicatorStatus
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    execution_start: Optional[datetime] = None
    execution_context: Optional[ExecutionContext] = None
    schedule_description: Optional[str] = None
    configuration_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "indicator_id": self.indicator_id,
            "name": self.name,
            "status": self.status.value,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "execution_start": self.execution_start.isoformat() if self.execution_start else None,
            "execution_context": self.execution_context.value if self.execution_context else None,
            "schedule": self.schedule_description,
            "configuration_error": self.configuration_error,
        }


@dataclass(frozen=True)
class UpcomingExecution:
    """One entry of the upcoming queue."""

    indicator_id: int
    name: str
    next_run: datetime
    is_due: bool
    schedule_description: str
    priority: str = "medium"


__all__ = [
    "SchedulerConfig",
    "TickResult",
    "IndicatorStatusReport",
    "UpcomingExecution",
]
