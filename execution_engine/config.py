"""
Execution Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the indicator execution pipeline.

CRITICAL CONSTRAINTS:
- Every external call is bounded by a timeout
- Release retries are limited
- A stale lock is reclaimed only after a fixed ceiling

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv


# ============================================================
# RELEASE RETRY CONFIGURATION
# ============================================================

@dataclass
class ReleaseRetryConfig:
    """
    Retry configuration for gate release.

    Release must eventually succeed, otherwise the indicator stays
    locked until the stale ceiling passes.
    """

    max_attempts: int = 3
    """Maximum number of release attempts."""

    initial_delay_seconds: float = 0.5
    """Initial delay before the first retry."""

    max_delay_seconds: float = 5.0
    """Maximum delay between retries."""


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class EngineConfig:
    """
    Master configuration for the execution pipeline.
    """

    collection_timeout_seconds: float = 300.0
    """Ceiling on one collection call."""

    pipeline_timeout_seconds: float = 600.0
    """Ceiling on collect, evaluate and alert together; record and release are outside it."""

    stale_after_seconds: float = 3600.0
    """A running flag older than this is treated as abandoned."""

    default_window_minutes: int = 60
    """Lookback window when an indicator does not configure one."""

    release_retry: ReleaseRetryConfig = field(default_factory=ReleaseRetryConfig)
    """Gate release retry policy."""

    notify_on_start: bool = True
    """Send execution-started notifications."""

    notification_timeout_seconds: float = 10.0
    """Ceiling on one notifier call."""

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Load configuration from environment variables."""
        load_dotenv()
        return cls(
            collection_timeout_seconds=float(os.getenv("COLLECTION_TIMEOUT_SECONDS", "300")),
            pipeline_timeout_seconds=float(os.getenv("PIPELINE_TIMEOUT_SECONDS", "600")),
            stale_after_seconds=float(os.getenv("STALE_EXECUTION_SECONDS", "3600")),
            default_window_minutes=int(os.getenv("DEFAULT_WINDOW_MINUTES", "60")),
            release_retry=ReleaseRetryConfig(
                max_attempts=int(os.getenv("RELEASE_RETRY_ATTEMPTS", "3")),
                initial_delay_seconds=float(os.getenv("RELEASE_RETRY_DELAY_SECONDS", "0.5")),
            ),
            notify_on_start=os.getenv("NOTIFY_ON_START", "true").lower() == "true",
            notification_timeout_seconds=float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "10")),
        )

    @classmethod
    def for_testing(cls) -> "EngineConfig":
        """Short timeouts and immediate retries."""
        return cls(
            collection_timeout_seconds=1.0,
            pipeline_timeout_seconds=5.0,
            stale_after_seconds=600.0,
            release_retry=ReleaseRetryConfig(
                max_attempts=3,
                initial_delay_seconds=0.0,
                max_delay_seconds=0.0,
            ),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.collection_timeout_seconds <= 0:
            errors.append("collection_timeout_seconds must be positive")

        if self.pipeline_timeout_seconds <= 0:
            errors.append("pipeline_timeout_seconds must be positive")

        if self.stale_after_seconds <= self.collection_timeout_seconds:
            errors.append("stale_after_seconds must exceed collection_timeout_seconds")

        if self.stale_after_seconds <= self.pipeline_timeout_seconds:
            errors.append("stale_after_seconds must exceed pipeline_timeout_seconds")

        if self.default_window_minutes < 1:
            errors.append("default_window_minutes must be at least 1")

        if self.release_retry.max_attempts < 1:
            errors.append("release_retry.max_attempts must be at least 1")

        return errors
