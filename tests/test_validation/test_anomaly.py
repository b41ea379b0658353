"""
Tests for validation/anomaly.py: absolute and relative variance checks.
"""

import math

import pytest

from regwatch.validation.anomaly import (
    check_anomalous_variance,
    check_relative_variance,
    quarantined_items,
)


class TestCheckAnomalousVariance:
    def test_drop_beyond_threshold_quarantined(self):
        (result,) = check_anomalous_variance({"unit-1": 8}, {"unit-1": 3})
        assert result.quarantined
        assert result.delta == -5
        assert result.old_value == 8
        assert result.new_value == 3
        assert "exceeds threshold" in result.reason

    def test_increase_beyond_threshold_quarantined(self):
        (result,) = check_anomalous_variance({"unit-2": 4}, {"unit-2": 16})
        assert result.quarantined
        assert result.delta == 12

    @pytest.mark.parametrize("new", [7, 9])
    def test_one_point_move_never_quarantined(self, new):
        (result,) = check_anomalous_variance({"unit-1": 8}, {"unit-1": new})
        assert not result.quarantined
        assert abs(result.delta) == 1

    def test_change_equal_to_threshold_passes(self):
        (result,) = check_anomalous_variance({"unit-1": 8}, {"unit-1": 5})
        assert not result.quarantined

    def test_items_on_one_side_skipped(self):
        results = check_anomalous_variance({"unit-1": 8, "gone": 2}, {"unit-1": 8, "new": 20})
        assert [r.item_id for r in results] == ["unit-1"]

    @pytest.mark.parametrize("bad", [math.nan, "TBD", None, True])
    def test_non_numeric_skipped(self, bad):
        assert check_anomalous_variance({"unit-1": 8}, {"unit-1": bad}) == []

    def test_custom_threshold(self):
        results = check_anomalous_variance({"a": 100}, {"a": 90}, threshold=20)
        assert quarantined_items(results) == []

    def test_zero_threshold_flags_any_change(self):
        results = check_anomalous_variance({"a": 1, "b": 2}, {"a": 1, "b": 2.5}, threshold=0)
        assert [r.item_id for r in quarantined_items(results)] == ["b"]

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValueError):
            check_anomalous_variance({}, {}, threshold=-1)

    def test_empty_series(self):
        assert check_anomalous_variance({}, {}) == []


class TestCheckRelativeVariance:
    def test_fee_collapse_quarantined(self):
        (result,) = check_relative_variance({"deer": 508.0}, {"deer": 5.0}, max_ratio=0.5)
        assert result.quarantined
        assert result.delta == -503.0
        assert "-99%" in result.reason

    def test_fee_spike_quarantined(self):
        (result,) = check_relative_variance({"elk": 828.0}, {"elk": 2000.0}, max_ratio=0.5)
        assert result.quarantined

    def test_ordinary_price_change_passes(self):
        (result,) = check_relative_variance({"elk": 828.0}, {"elk": 850.0}, max_ratio=0.5)
        assert not result.quarantined

    def test_draw_odds_jump_quarantined(self):
        results = check_relative_variance(
            {"E-E-001": 0.25, "E-E-002": 0.40}, {"E-E-001": 0.90, "E-E-002": 0.38}, 0.5
        )
        assert [r.item_id for r in quarantined_items(results)] == ["E-E-001"]

    def test_move_away_from_zero_flagged(self):
        (result,) = check_relative_variance({"x": 0}, {"x": 0.1}, max_ratio=0.5)
        assert result.quarantined

    def test_negative_ratio_rejected(self):
        with pytest.raises(ValueError):
            check_relative_variance({}, {}, max_ratio=-0.1)
