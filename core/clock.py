"""
Core Module - Engine Clock.

============================================================
RESPONSIBILITY
============================================================
The single time source of the indicator engine.

Due checks, lease staleness and alert cooldowns compare
against ``clock.now()``, never ``datetime.now()``, so a test
can pin the engine to an exact instant and step it forward.

Every datetime leaving this module is timezone-aware UTC.
Stores that drop tzinfo (SQLite) are read back through
ensure_utc().

============================================================
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


def ensure_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ============================================================
# CLOCKS
# ============================================================

class ClockProtocol(ABC):
    """Anything that can answer "what time is it" in UTC."""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(ClockProtocol):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class MockClock(ClockProtocol):
    """
    Manually driven clock.

    Stays on ``initial`` until set_time() or advance() is called.
    SQL adapters read the clock from worker threads, hence the lock.
    """

    def __init__(self, initial: Optional[datetime] = None):
        self._current = ensure_utc(initial or datetime.now(timezone.utc))
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._current

    def set_time(self, moment: datetime) -> None:
        with self._lock:
            self._current = ensure_utc(moment)

    def advance(self, seconds: float = 0, **delta) -> datetime:
        """Step forward; ``delta`` takes timedelta keywords (minutes=31)."""
        with self._lock:
            self._current += timedelta(seconds=seconds, **delta)
            return self._current


# ============================================================
# PROCESS CLOCK
# ============================================================

class ClockFactory:
    """Holds the clock used when a component is built without one."""

    _clock: Optional[ClockProtocol] = None
    _lock = threading.Lock()

    @classmethod
    def get_clock(cls) -> ClockProtocol:
        with cls._lock:
            if cls._clock is None:
                cls._clock = SystemClock()
            return cls._clock

    @classmethod
    def set_clock(cls, clock: Optional[ClockProtocol]) -> None:
        """Install ``clock``; None goes back to the system clock."""
        with cls._lock:
            cls._clock = clock


def now_utc() -> datetime:
    return ClockFactory.get_clock().now()


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ClockFactory",
    "ensure_utc",
    "now_utc",
]
