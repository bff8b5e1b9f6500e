"""
Settings parsing tests.
"""

from decimal import Decimal

import pytest

from dualarb.errors import ErrorKind, SettingsError
from dualarb.settings import InMemorySettingsStore, ThresholdMode, load_settings, parse_settings


class TestParseSettings:

    def test_defaults(self):
        settings = parse_settings({})
        assert settings.threshold_mode is ThresholdMode.FIXED
        assert settings.min_profit_fixed == Decimal("50")
        assert settings.min_profit_percent == Decimal("0.5")
        assert settings.max_position_size == Decimal("1000")
        assert settings.slippage_tolerance == Decimal("0.5")
        assert settings.slippage_bps == 50
        assert settings.auto_execute is False
        assert settings.session_duration_sec == 600
        assert settings.auto_exec_max_per_session == 5

    def test_values(self):
        settings = parse_settings({
            "thresholdMode": "Percent",
            "minProfitPercent": "1.25",
            "maxPositionSize": "2000",
            "slippageTolerance": "1",
            "autoExecute": "true",
            "sessionDurationSec": "60",
            "autoExecMaxPerSession": "2",
        })
        assert settings.threshold_mode is ThresholdMode.PERCENT
        assert settings.min_profit_percent == Decimal("1.25")
        assert settings.max_position_size == Decimal("2000")
        assert settings.slippage_bps == 100
        assert settings.auto_execute is True
        assert settings.session_duration_sec == 60
        assert settings.auto_exec_max_per_session == 2

    def test_legacy_threshold_alias(self):
        assert parse_settings({"minProfitThreshold": "25"}).min_profit_fixed == Decimal("25")
        both = parse_settings({"minProfitThreshold": "25", "minProfitFixed": "30"})
        assert both.min_profit_fixed == Decimal("30")

    def test_gas_estimates_override_chain_defaults(self):
        defaults = {1: Decimal("0.30"), 2: Decimal("0.60")}
        settings = parse_settings({"gasEstimate_2": "1.5"}, defaults)
        assert settings.gas_estimate(1) == Decimal("0.30")
        assert settings.gas_estimate(2) == Decimal("1.5")
        assert settings.gas_estimate(3) == Decimal("0")

    @pytest.mark.parametrize("values", [
        {"thresholdMode": "ratio"},
        {"minProfitFixed": "abc"},
        {"maxPositionSize": "-1"},
        {"slippageTolerance": "101"},
        {"gasEstimate_x": "1"},
        {"sessionDurationSec": "ten"},
        {"sessionDurationSec": "-5"},
        {"autoExecMaxPerSession": "-1"},
    ])
    def test_invalid_values(self, values):
        with pytest.raises(SettingsError) as exc:
            parse_settings(values)
        assert exc.value.kind is ErrorKind.INVALID_CONFIG


class TestSettingsStore:

    def test_fresh_snapshot_sees_edits(self):
        store = InMemorySettingsStore({"minProfitFixed": 10})
        first = load_settings(store)
        store.set("minProfitFixed", 20)
        assert first.min_profit_fixed == Decimal("10")
        assert load_settings(store).min_profit_fixed == Decimal("20")

    def test_update(self):
        store = InMemorySettingsStore()
        store.update({"thresholdMode": "percent", "autoExecute": True})
        settings = load_settings(store)
        assert settings.threshold_mode is ThresholdMode.PERCENT
        assert settings.auto_execute is True
