"""
Core Module Package.

This package contains the infrastructure components that every
other engine package depends on.

Components:
- clock: Unified time abstraction
- exceptions: Engine exception hierarchy
"""

from .clock import ClockFactory, ClockProtocol, MockClock, SystemClock, ensure_utc, now_utc
from .exceptions import (
    AcquisitionError,
    CollectionError,
    CollectionFailureReason,
    ConfigurationError,
    EvaluationError,
    MonitoringException,
    PersistenceError,
    Severity,
    StateTransitionError,
    StoreUnavailableError,
)

__all__ = [
    "ClockFactory",
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "ensure_utc",
    "now_utc",
    "AcquisitionError",
    "CollectionError",
    "CollectionFailureReason",
    "ConfigurationError",
    "EvaluationError",
    "MonitoringException",
    "PersistenceError",
    "Severity",
    "StateTransitionError",
    "StoreUnavailableError",
]
