"""
Unit tests for copy trade sizing.
"""

import math

import pytest

from ammsniper.copy_policy import CopyAmountMode, CopySizing, compute_copy_amount, is_tradeable_amount


class TestComputeCopyAmount:
    """Sizing modes."""

    def test_fixed_amount(self):
        sizing = CopySizing(mode=CopyAmountMode.FIXED, fixed_amount=25.0)

        assert compute_copy_amount(200.0, sizing) == 25.0

    def test_fixed_without_amount_uses_one_xrp(self):
        assert compute_copy_amount(200.0, CopySizing(mode=CopyAmountMode.FIXED)) == 1.0

    def test_percentage_capped_by_max_spend(self):
        sizing = CopySizing(mode=CopyAmountMode.PERCENTAGE, percentage=50.0, max_spend_per_trade=80.0)

        assert compute_copy_amount(200.0, sizing) == 80.0

    def test_percentage_below_cap(self):
        sizing = CopySizing(mode=CopyAmountMode.PERCENTAGE, percentage=25.0, max_spend_per_trade=80.0)

        assert compute_copy_amount(200.0, sizing) == pytest.approx(50.0)

    def test_percentage_defaults_to_ten(self):
        sizing = CopySizing(mode=CopyAmountMode.PERCENTAGE)

        assert compute_copy_amount(200.0, sizing) == pytest.approx(20.0)

    def test_default_mode_prefers_fixed_amount(self):
        sizing = CopySizing(fixed_amount=3.0)

        assert compute_copy_amount(200.0, sizing) == 3.0

    def test_default_mode_falls_back_to_tenth(self):
        assert compute_copy_amount(200.0, CopySizing()) == pytest.approx(20.0)

    def test_unknown_mode_parses_as_default(self):
        assert CopyAmountMode.parse("bogus") == CopyAmountMode.DEFAULT
        assert CopyAmountMode.parse(None) == CopyAmountMode.DEFAULT
        assert CopyAmountMode.parse("percentage") == CopyAmountMode.PERCENTAGE


class TestTradeableAmount:
    """Veto on non-positive and non-finite sizes."""

    def test_positive_amount(self):
        assert is_tradeable_amount(0.5)

    def test_vetoed_amounts(self):
        for amount in (0, -1.0, math.nan, math.inf, None):
            assert not is_tradeable_amount(amount)

    def test_zero_observed_amount_is_vetoed(self):
        sizing = CopySizing(mode=CopyAmountMode.PERCENTAGE, percentage=50.0)

        assert not is_tradeable_amount(compute_copy_amount(0.0, sizing))
