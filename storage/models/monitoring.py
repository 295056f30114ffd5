"""
Monitoring Domain ORM Models.

============================================================
PURPOSE
============================================================
Tables backing the indicator engine: schedules, indicators
(with their persisted running state), execution history and
alert records.

============================================================
DATA LIFECYCLE ROLE
============================================================
- schedules, indicators: MUTABLE configuration; the running
  columns of indicators are written only by conditional
  updates of the indicator repository
- execution_history, alert_records: IMMUTABLE (append-only)

============================================================
MODELS
============================================================
- ScheduleRow: Reusable schedule descriptors
- IndicatorRow: Indicators and their running state
- ExecutionAttemptRow: One row per completed attempt
- AlertRecordRow: One row per fired alert

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, TimestampMixin


class ScheduleRow(Base, TimestampMixin):
    """
    Schedule descriptor.

    ``schedule_type`` selects which of interval_minutes,
    cron_expression and execution_datetime is meaningful.
    """

    __tablename__ = "schedules"

    schedule_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    schedule_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="interval, cron or onetime"
    )

    interval_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    cron_expression: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    execution_datetime: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    start_date: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    end_date: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")

    is_enabled: Mapped[bool] = mapped_column(nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "schedule_type IN ('interval', 'cron', 'onetime')",
            name="ck_schedules_type",
        ),
    )


class IndicatorRow(Base, TimestampMixin):
    """
    Monitored indicator.

    Invariant: is_running is true iff execution_start is set.
    ``version`` is bumped by every running-state update.
    """

    __tablename__ = "indicators"

    indicator_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    owner: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")

    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)

    # Scheduling
    schedule_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("schedules.schedule_id"),
        nullable=True,
    )

    frequency_minutes: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Fallback interval when no schedule is assigned"
    )

    last_run: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    # Running state
    is_running: Mapped[bool] = mapped_column(nullable=False, default=False)

    execution_start: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    execution_context: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Threshold
    threshold_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="threshold_value or volume_average"
    )

    threshold_field: Mapped[str] = mapped_column(String(30), nullable=False, default="total")

    threshold_comparison: Mapped[str] = mapped_column(String(10), nullable=False, default="gt")

    threshold_value: Mapped[Decimal] = mapped_column(nullable=False)

    minimum_threshold: Mapped[Optional[Decimal]] = mapped_column(nullable=True)

    cooldown_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Collection
    collector_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    collector_item_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    window_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)

    average_last_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_indicators_active_running", "is_active", "is_running"),
    )


class ExecutionAttemptRow(Base):
    """One completed execution attempt. Never updated."""

    __tablename__ = "execution_history"

    attempt_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    indicator_id: Mapped[int] = mapped_column(
        ForeignKey("indicators.indicator_id"),
        nullable=False,
    )

    executed_at: Mapped[datetime] = mapped_column(nullable=False)

    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    success: Mapped[bool] = mapped_column(nullable=False)

    value: Mapped[Optional[Decimal]] = mapped_column(nullable=True)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    execution_context: Mapped[str] = mapped_column(String(20), nullable=False)

    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_execution_history_indicator_time", "indicator_id", "executed_at"),
    )


class AlertRecordRow(Base):
    """One fired alert. Never updated."""

    __tablename__ = "alert_records"

    alert_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    indicator_id: Mapped[int] = mapped_column(
        ForeignKey("indicators.indicator_id"),
        nullable=False,
    )

    trigger_time: Mapped[datetime] = mapped_column(nullable=False)

    current_value: Mapped[Decimal] = mapped_column(nullable=False)

    threshold_value: Mapped[Decimal] = mapped_column(nullable=False)

    historical_value: Mapped[Optional[Decimal]] = mapped_column(nullable=True)

    deviation_percent: Mapped[Decimal] = mapped_column(nullable=False)

    comparison: Mapped[str] = mapped_column(String(10), nullable=False)

    message: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        Index("ix_alert_records_indicator_time", "indicator_id", "trigger_time"),
    )
