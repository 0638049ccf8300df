"""
tests/test_validation.py — Continuity and sanity validation of payloads.
"""

from __future__ import annotations

import pytest

from alignment_index.constants import CONFLICT_TYPE_ORDER
from alignment_index.errors import ContinuityError, EmptyOutputError, SanityError
from alignment_index.validation import (
    SeriesRules,
    validate_by_country,
    validate_by_type,
    validate_coverage_rows,
    validate_series,
    validate_subtype_sums,
)


def _series(*pairs: tuple[int, float]) -> list[dict]:
    return [{"year": year, "value": value} for year, value in pairs]


class TestValidateSeries:
    def test_valid(self) -> None:
        assert validate_series(_series((2019, 1.0), (2020, 2.0)), SeriesRules(), "t") == []

    def test_empty_is_fatal(self) -> None:
        with pytest.raises(EmptyOutputError):
            validate_series([], SeriesRules(), "t")

    @pytest.mark.parametrize("years", [(2020, 2019), (2020, 2020)])
    def test_years_strictly_ascending(self, years: tuple[int, int]) -> None:
        with pytest.raises(ContinuityError):
            validate_series(_series((years[0], 1.0), (years[1], 1.0)), SeriesRules(), "t")

    def test_gap_tolerance(self) -> None:
        rules = SeriesRules(max_gap=5)
        validate_series(_series((2000, 1.0), (2005, 1.0)), rules, "t")
        with pytest.raises(ContinuityError):
            validate_series(_series((2000, 1.0), (2006, 1.0)), rules, "t")

    def test_negative_rejected_by_default(self) -> None:
        with pytest.raises(SanityError):
            validate_series(_series((2020, -0.1)), SeriesRules(), "t")

    def test_hard_max(self) -> None:
        with pytest.raises(SanityError):
            validate_series(_series((2020, 100.5)), SeriesRules(hard_max=100.0), "t")

    def test_non_finite(self) -> None:
        with pytest.raises(SanityError):
            validate_series(_series((2020, float("nan"))), SeriesRules(), "t")

    def test_plausible_band_warns(self) -> None:
        """Outside the warn band is returned, not raised."""
        warnings = validate_series(_series((2020, 45.0), (2021, 3.0)), SeriesRules(warn_min=5.0, warn_max=40.0), "t")
        assert warnings == ["2020=45.0", "2021=3.0"]


class TestSubtypeSums:
    TOTALS = _series((2020, 1.5), (2021, 2.0))

    def _by_type(self, interstate_2021: float) -> list[dict]:
        return [
            {"year": 2020, "type": "interstate", "value": 0.5},
            {"year": 2020, "type": "intrastate", "value": 1.0},
            {"year": 2021, "type": "interstate", "value": interstate_2021},
            {"year": 2021, "type": "intrastate", "value": 1.0},
        ]

    def test_within_tolerance(self) -> None:
        validate_subtype_sums(self._by_type(1.02), self.TOTALS, 0.02, "t")

    def test_miscomputed_subtype_fails(self) -> None:
        with pytest.raises(SanityError) as exc_info:
            validate_subtype_sums(self._by_type(1.5), self.TOTALS, 0.02, "t")
        assert "2021" in str(exc_info.value)

    def test_missing_year(self) -> None:
        with pytest.raises(SanityError):
            validate_subtype_sums(self._by_type(1.0)[:2], self.TOTALS, 0.02, "t")

    def test_subtypes_without_total(self) -> None:
        with pytest.raises(SanityError):
            validate_subtype_sums(self._by_type(1.0), self.TOTALS[:1], 0.02, "t")


class TestVariantFiles:
    def test_by_country_sorted(self) -> None:
        rows = [
            {"iso3": "FRA", "country": "France", "year": 2019, "value": 1.0},
            {"iso3": "FRA", "country": "France", "year": 2020, "value": 1.0},
            {"iso3": "USA", "country": "United States", "year": 2019, "value": 1.0},
        ]
        validate_by_country(rows, SeriesRules(), "t")
        with pytest.raises(ContinuityError):
            validate_by_country(list(reversed(rows)), SeriesRules(), "t")

    def test_by_country_bad_iso(self) -> None:
        with pytest.raises(SanityError):
            validate_by_country([{"iso3": "usa", "country": "x", "year": 2020, "value": 1.0}], SeriesRules(), "t")

    def test_by_type_order(self) -> None:
        rows = [
            {"year": 2020, "type": "interstate", "value": 1.0},
            {"year": 2020, "type": "extrasystemic", "value": 0.0},
        ]
        validate_by_type(rows, CONFLICT_TYPE_ORDER, "t")
        with pytest.raises(ContinuityError):
            validate_by_type(list(reversed(rows)), CONFLICT_TYPE_ORDER, "t")
        with pytest.raises(SanityError):
            validate_by_type([{"year": 2020, "type": "civil", "value": 1.0}], CONFLICT_TYPE_ORDER, "t")

    def test_coverage_rows(self) -> None:
        validate_coverage_rows([{"year": 2020, "coverage": 0.667, "n_iso": 1, "n_pop": 2}], "t")
        with pytest.raises(SanityError):
            validate_coverage_rows([{"year": 2020, "coverage": 1.2, "n_iso": 1, "n_pop": 2}], "t")
        with pytest.raises(SanityError):
            validate_coverage_rows([{"year": 2020, "coverage": 0.5, "n_iso": 3, "n_pop": 2}], "t")
