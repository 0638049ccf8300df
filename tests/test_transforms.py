"""
tests/test_transforms.py — Unit conversion, deflation and rounding policy.
"""

from __future__ import annotations

import math

import pytest

from alignment_index.errors import DeflatorError
from alignment_index.transforms import (
    Deflator,
    clamp,
    per_100k,
    per_capita,
    per_hundred,
    percentage_share,
    round_half_away,
)


class TestRounding:
    @pytest.mark.parametrize("value, decimals, expected", [
        (2.675, 2, 2.68),
        (0.125, 2, 0.13),
        (-0.5, 0, -1.0),
        (1.0005, 3, 1.001),
        (12.3449, 2, 12.34),
        (7.0, 1, 7.0),
    ])
    def test_half_away_from_zero(self, value: float, decimals: int, expected: float) -> None:
        assert round_half_away(value, decimals) == expected

    def test_negative_zero_normalized(self) -> None:
        result = round_half_away(-0.0001, 2)
        assert result == 0.0
        assert math.copysign(1.0, result) == 1.0

    def test_non_finite_rejected(self) -> None:
        with pytest.raises(ValueError):
            round_half_away(float("nan"), 2)

    def test_clamp(self) -> None:
        assert clamp(104.2, 0.0, 100.0) == 100.0
        assert clamp(-3.0, 0.0, 100.0) == 0.0
        assert clamp(42.0, 0.0, 100.0) == 42.0


class TestRates:
    def test_per_100k(self) -> None:
        assert per_100k(50, 1_000_000) == pytest.approx(5.0)

    def test_per_hundred(self) -> None:
        assert per_hundred(3, 4) == 75.0

    def test_per_capita(self) -> None:
        assert per_capita(1_000.0, 4.0) == 250.0

    def test_percentage_share(self) -> None:
        assert percentage_share(1, 4) == 25.0

    @pytest.mark.parametrize("fn", [per_100k, per_hundred, per_capita, percentage_share])
    def test_non_positive_denominator(self, fn) -> None:
        with pytest.raises(ValueError):
            fn(1.0, 0.0)


class TestDeflator:
    INDICES = {2018: 90.0, 2019: 95.0, 2020: 100.0, 2021: 104.0}

    def test_base_year_round_trip(self) -> None:
        """Deflating with the base year's own index returns the nominal value."""
        deflator = Deflator(self.INDICES, 2020)
        assert deflator.real(1234.5, 2020) == 1234.5
        assert deflator.multiplier(2020) == 1.0

    def test_real_value(self) -> None:
        deflator = Deflator(self.INDICES, 2020)
        assert deflator.real(95.0, 2019) == pytest.approx(100.0)
        assert deflator.real(104.0, 2021) == pytest.approx(100.0)

    def test_missing_year(self) -> None:
        deflator = Deflator(self.INDICES, 2020)
        assert not deflator.covers(2010)
        assert deflator.real(1.0, 2010) is None
        assert deflator.years() == [2018, 2019, 2020, 2021]

    def test_base_within_tolerance(self) -> None:
        Deflator({2020: 100.005}, 2020)

    def test_not_rebased(self) -> None:
        """A base index of 100.5 is a misconfigured deflator."""
        with pytest.raises(DeflatorError):
            Deflator({2020: 100.5}, 2020)

    def test_missing_base_year(self) -> None:
        with pytest.raises(DeflatorError):
            Deflator({2019: 100.0}, 2020)

    def test_non_positive_index(self) -> None:
        with pytest.raises(DeflatorError):
            Deflator({2019: 0.0, 2020: 100.0}, 2020)
