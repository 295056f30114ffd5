"""
Alert Coordinator Tests.

============================================================
PURPOSE
============================================================
Minimum floor and cooldown deduplication of breaches.

============================================================
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from core.exceptions import PersistenceError
from execution_engine.alerting import AlertCoordinator, build_alert_message
from execution_engine.evaluator import ThresholdEvaluator


def evaluate(indicator, current, historical=None):
    return ThresholdEvaluator().evaluate(indicator, Decimal(current), historical)


class TestAlertCoordinator:

    @pytest.mark.asyncio
    async def test_breach_creates_alert(self, alert_store, make_indicator, clock):
        indicator = make_indicator()
        alert = await AlertCoordinator(alert_store).maybe_alert(
            indicator, evaluate(indicator, "150"), clock.now()
        )

        assert alert is not None
        assert alert.alert_id == 1
        assert alert.current_value == Decimal("150")
        assert alert.threshold_value == Decimal("100")
        assert alert.trigger_time == clock.now()
        assert len(alert_store.alerts) == 1

    @pytest.mark.asyncio
    async def test_no_breach_no_alert(self, alert_store, make_indicator, clock):
        indicator = make_indicator()
        alert = await AlertCoordinator(alert_store).maybe_alert(
            indicator, evaluate(indicator, "100"), clock.now()
        )
        assert alert is None
        assert alert_store.alerts == []

    @pytest.mark.asyncio
    async def test_below_minimum_floor_suppressed(self, alert_store, make_indicator, clock):
        indicator = make_indicator(minimum_threshold=Decimal("200"))
        alert = await AlertCoordinator(alert_store).maybe_alert(
            indicator, evaluate(indicator, "150"), clock.now()
        )
        assert alert is None

    @pytest.mark.asyncio
    async def test_floor_applies_to_volume_average(
        self, alert_store, make_indicator, average_rule, clock
    ):
        indicator = make_indicator(
            threshold=average_rule("20"),
            average_last_days=7,
            minimum_threshold=Decimal("500"),
        )
        evaluation = evaluate(indicator, "150", Decimal("200"))
        assert evaluation.breached

        alert = await AlertCoordinator(alert_store).maybe_alert(indicator, evaluation, clock.now())
        assert alert is None

    @pytest.mark.asyncio
    async def test_cooldown_suppresses_repeat(self, alert_store, make_indicator, clock):
        indicator = make_indicator(cooldown_minutes=30)
        coordinator = AlertCoordinator(alert_store)

        first = await coordinator.maybe_alert(indicator, evaluate(indicator, "150"), clock.now())
        clock.advance(minutes=29)
        second = await coordinator.maybe_alert(indicator, evaluate(indicator, "150"), clock.now())

        assert first is not None
        assert second is None
        assert len(alert_store.alerts) == 1

    @pytest.mark.asyncio
    async def test_alert_after_cooldown(self, alert_store, make_indicator, clock):
        indicator = make_indicator(cooldown_minutes=30)
        coordinator = AlertCoordinator(alert_store)

        await coordinator.maybe_alert(indicator, evaluate(indicator, "150"), clock.now())
        clock.advance(minutes=31)
        second = await coordinator.maybe_alert(indicator, evaluate(indicator, "150"), clock.now())

        assert second is not None
        assert second.alert_id == 2

    @pytest.mark.asyncio
    async def test_alert_exactly_at_cooldown_boundary(self, alert_store, make_indicator, clock):
        indicator = make_indicator(cooldown_minutes=30)
        coordinator = AlertCoordinator(alert_store)

        await coordinator.maybe_alert(indicator, evaluate(indicator, "150"), clock.now())
        clock.advance(minutes=30)
        second = await coordinator.maybe_alert(indicator, evaluate(indicator, "150"), clock.now())

        assert second is not None

    @pytest.mark.asyncio
    async def test_cooldown_is_per_indicator(self, alert_store, make_indicator, clock):
        coordinator = AlertCoordinator(alert_store)
        first = make_indicator(1, cooldown_minutes=30)
        other = make_indicator(2, cooldown_minutes=30)

        await coordinator.maybe_alert(first, evaluate(first, "150"), clock.now())
        alert = await coordinator.maybe_alert(other, evaluate(other, "150"), clock.now())

        assert alert is not None

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, alert_store, make_indicator, clock):
        indicator = make_indicator()
        alert_store.fail_appends = 1
        with pytest.raises(PersistenceError):
            await AlertCoordinator(alert_store).maybe_alert(
                indicator, evaluate(indicator, "150"), clock.now()
            )


class TestAlertMessage:

    def test_threshold_message(self, make_indicator):
        indicator = make_indicator(name="Orders")
        message = build_alert_message(indicator, evaluate(indicator, "150"))
        assert message == "Orders: current 150 > threshold 100"

    def test_average_message_mentions_baseline(self, make_indicator, average_rule):
        indicator = make_indicator(name="Orders", threshold=average_rule("20"), average_last_days=7)
        message = build_alert_message(indicator, evaluate(indicator, "150", Decimal("200")))
        assert "25.0000%" in message
        assert "average 200" in message
