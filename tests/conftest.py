"""
Shared fixtures for the indicator engine tests.

Time is always driven by a MockClock; stores are in-memory
unless a test needs the SQL layer.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from core.clock import MockClock
from execution_engine.adapters import (
    CallableCollectionAction,
    InMemoryAlertStore,
    InMemoryHistoryWriter,
    InMemoryIndicatorStore,
)
from execution_engine.config import EngineConfig
from execution_engine.types import (
    Comparison,
    Indicator,
    ThresholdField,
    ThresholdRule,
    ThresholdType,
)


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def build_indicator(indicator_id: int = 1, **overrides) -> Indicator:
    """Active threshold_value indicator: total > 100, every 30 minutes."""
    threshold = overrides.pop(
        "threshold",
        ThresholdRule(
            threshold_type=ThresholdType.THRESHOLD_VALUE,
            comparison=Comparison.GT,
            value=Decimal("100"),
            field=ThresholdField.TOTAL,
        ),
    )
    values = dict(
        indicator_id=indicator_id,
        name=f"Indicator {indicator_id}",
        threshold=threshold,
        frequency_minutes=30,
        collector_ref="order_volume",
        window_minutes=60,
    )
    values.update(overrides)
    return Indicator(**values)


def volume_average_rule(percent: str = "20") -> ThresholdRule:
    return ThresholdRule(
        threshold_type=ThresholdType.VOLUME_AVERAGE,
        comparison=Comparison.GT,
        value=Decimal(percent),
    )


class StaticCollector:
    """Async collector function returning a fixed answer."""

    def __init__(self, answer=None, error: Exception = None):
        self.answer = answer
        self.error = error
        self.requests = []

    async def __call__(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def clock():
    return MockClock(NOW)


@pytest.fixture
def engine_config():
    return EngineConfig.for_testing()


@pytest.fixture
def store():
    return InMemoryIndicatorStore()


@pytest.fixture
def history():
    return InMemoryHistoryWriter()


@pytest.fixture
def alert_store():
    return InMemoryAlertStore()


@pytest.fixture
def make_indicator():
    return build_indicator


@pytest.fixture
def collector():
    return StaticCollector({"current_value": "150", "record_count": 3})


@pytest.fixture
def collection_action(collector):
    return CallableCollectionAction(collector)


@pytest.fixture
def collector_factory():
    return StaticCollector


@pytest.fixture
def average_rule():
    return volume_average_rule
