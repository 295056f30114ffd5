"""Indicator configuration validation tests."""

from decimal import Decimal

import pytest

from core.exceptions import ConfigurationError
from execution_engine.validation import validate_indicator


class TestValidateIndicator:

    def test_valid_indicator(self, make_indicator):
        result = validate_indicator(make_indicator())
        assert result.is_valid
        result.raise_if_invalid(1)

    def test_missing_collector(self, make_indicator):
        result = validate_indicator(make_indicator(collector_ref=None))
        assert "No collector configured" in result.errors

    def test_non_positive_window(self, make_indicator):
        result = validate_indicator(make_indicator(window_minutes=0))
        assert not result.is_valid

    def test_large_window_only_warns(self, make_indicator):
        result = validate_indicator(make_indicator(window_minutes=20000))
        assert result.is_valid
        assert result.warnings

    def test_volume_average_needs_days(self, make_indicator, average_rule):
        result = validate_indicator(make_indicator(threshold=average_rule()))
        assert any("Average last days" in e for e in result.errors)

    def test_negative_percent(self, make_indicator, average_rule):
        result = validate_indicator(make_indicator(threshold=average_rule("-5"), average_last_days=7))
        assert not result.is_valid

    def test_negative_cooldown(self, make_indicator):
        assert not validate_indicator(make_indicator(cooldown_minutes=-1)).is_valid

    def test_negative_minimum(self, make_indicator):
        assert not validate_indicator(make_indicator(minimum_threshold=Decimal("-1"))).is_valid

    def test_needs_schedule_or_frequency(self, make_indicator):
        result = validate_indicator(make_indicator(frequency_minutes=None))
        assert not result.is_valid
        assert validate_indicator(make_indicator(frequency_minutes=None, schedule_id=3)).is_valid

    def test_invalid_priority(self, make_indicator):
        assert not validate_indicator(make_indicator(priority="urgent")).is_valid

    def test_raise_if_invalid(self, make_indicator):
        result = validate_indicator(make_indicator(collector_ref=None, window_minutes=0))
        with pytest.raises(ConfigurationError) as exc_info:
            result.raise_if_invalid(1)
        assert len(exc_info.value.context["errors"]) == 2
        assert exc_info.value.context["indicator_id"] == 1
