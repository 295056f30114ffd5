"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Error types raised inside the indicator engine.

A failure in one indicator's pipeline surfaces as exactly one
of these; the execution service records it against that
indicator and the scheduler moves on to the next one.

============================================================
HIERARCHY
============================================================
MonitoringException
├── ConfigurationError
│   └── EvaluationError
├── AcquisitionError
├── CollectionError
├── PersistenceError
│   └── StoreUnavailableError
└── StateTransitionError

============================================================
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Severity(Enum):
    """How loudly an error should be logged."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================
# BASE
# ============================================================

class MonitoringException(Exception):
    """
    Root of the engine's errors.

    ``context`` holds structured detail (indicator_id, config_key,
    operation, ...) and is what ends up in log records via to_dict().
    """

    default_severity: Severity = Severity.MEDIUM

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity or self.default_severity
        self.context = dict(context or {})
        self.cause = cause
        self.raised_at = datetime.now(timezone.utc)

        if cause is not None:
            self.context.setdefault("cause_type", type(cause).__name__)
            self.context.setdefault("cause_message", str(cause))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
            "raised_at": self.raised_at.isoformat(),
        }


# ============================================================
# CONFIGURATION
# ============================================================

class ConfigurationError(MonitoringException):
    """An indicator, schedule or engine setting cannot be used as given."""

    default_severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        indicator_id: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", None) or {}
        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]
        if indicator_id is not None:
            context["indicator_id"] = indicator_id
        super().__init__(message, context=context, **kwargs)


class EvaluationError(ConfigurationError):
    """Unknown comparison symbol or threshold type."""


# ============================================================
# PIPELINE
# ============================================================

class AcquisitionError(MonitoringException):
    """Another execution holds the indicator and its lease is still fresh."""

    default_severity = Severity.LOW

    def __init__(self, indicator_id: int, **kwargs):
        context = kwargs.pop("context", None) or {}
        context["indicator_id"] = indicator_id
        super().__init__(
            f"Indicator {indicator_id} is already running",
            context=context,
            **kwargs,
        )
        self.indicator_id = indicator_id


class CollectionFailureReason(Enum):
    TIMEOUT = "timeout"
    CONNECTIVITY = "connectivity"
    MALFORMED = "malformed"
    EXTERNAL = "external"


class CollectionError(MonitoringException):
    """The collector failed, timed out or answered with something unreadable."""

    def __init__(
        self,
        message: str,
        reason: CollectionFailureReason = CollectionFailureReason.EXTERNAL,
        indicator_id: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", None) or {}
        context["reason"] = reason.value
        if indicator_id is not None:
            context["indicator_id"] = indicator_id
        super().__init__(message, context=context, **kwargs)
        self.reason = reason


class PersistenceError(MonitoringException):
    """A read or write against the indicator store failed."""

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", None) or {}
        if operation:
            context["operation"] = operation
        super().__init__(message, context=context, **kwargs)


class StoreUnavailableError(PersistenceError):
    """Raised by the scheduler once consecutive scans keep failing."""

    default_severity = Severity.CRITICAL


class StateTransitionError(MonitoringException):
    """A pipeline or loop moved to a state it may not enter from its current one."""

    default_severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", None) or {}
        if from_state:
            context["from_state"] = from_state
        if to_state:
            context["to_state"] = to_state
        super().__init__(message, context=context, **kwargs)


__all__ = [
    "Severity",
    "MonitoringException",
    "ConfigurationError",
    "EvaluationError",
    "AcquisitionError",
    "CollectionFailureReason",
    "CollectionError",
    "PersistenceError",
    "StoreUnavailableError",
    "StateTransitionError",
]
