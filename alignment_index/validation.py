"""
alignment_index.validation — Continuity and sanity checks on output series.

Every check raises on violation (ContinuityError / SanityError /
EmptyOutputError). The one exception is the plausible band: values outside
[warn_min, warn_max] are returned as warnings and logged, because sources
legitimately publish extreme but real values.

Design contract:
    - Validators never modify their input.
    - Validators run on the final, rounded payloads, i.e. exactly what will
      be published.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from alignment_index.constants import ISO3_PATTERN
from alignment_index.errors import ContinuityError, EmptyOutputError, SanityError
from alignment_index.transforms import round_half_away

logger = logging.getLogger("gai.validation")

SUBTYPE_EPSILON: float = 1e-9
"""Float slack added to subtype-sum tolerances."""


@dataclass(frozen=True, slots=True)
class SeriesRules:
    """Per-metric validation rules.

    Fields:
        max_gap: Largest allowed difference between consecutive years
            (1 = strictly continuous).
        hard_min / hard_max: Fatal bounds (None = unbounded).
        warn_min / warn_max: Plausible band; outside it is a warning.
    """
    max_gap: int | None = None
    hard_min: float | None = 0.0
    hard_max: float | None = None
    warn_min: float | None = None
    warn_max: float | None = None


def _check_years(years: Sequence[int], label: str, max_gap: int | None) -> None:
    for prev, curr in zip(years, years[1:]):
        if curr <= prev:
            raise ContinuityError(
                f"[{label}] years not strictly ascending: {prev} followed by {curr}"
            )
        if max_gap is not None and curr - prev > max_gap:
            raise ContinuityError(
                f"[{label}] gap of {curr - prev} years between {prev} and {curr} "
                f"(max {max_gap})"
            )


def _check_value(value: Any, rules: SeriesRules, label: str, where: str) -> str | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise SanityError(f"[{label}] non-finite value at {where}: {value!r}")
    if rules.hard_min is not None and value < rules.hard_min:
        raise SanityError(f"[{label}] value {value} below {rules.hard_min} at {where}")
    if rules.hard_max is not None and value > rules.hard_max:
        raise SanityError(f"[{label}] value {value} above {rules.hard_max} at {where}")
    if (rules.warn_min is not None and value < rules.warn_min) or (
        rules.warn_max is not None and value > rules.warn_max
    ):
        return f"{where}={value}"
    return None


def _log_warnings(label: str, warnings: list[str]) -> None:
    if warnings:
        logger.warning(json.dumps({
            "event": "out_of_band",
            "metric": label,
            "count": len(warnings),
            "sample": warnings[:5],
        }))


# ---------------------------------------------------------------------------
# Series
# ---------------------------------------------------------------------------

def validate_series(series: Sequence[Mapping[str, Any]], rules: SeriesRules, label: str) -> list[str]:
    """Validate a [{year, value}] series. Returns out-of-band warnings."""
    if not series:
        raise EmptyOutputError(label)
    years = [point["year"] for point in series]
    _check_years(years, label, rules.max_gap)
    warnings: list[str] = []
    for point in series:
        warning = _check_value(point["value"], rules, label, str(point["year"]))
        if warning:
            warnings.append(warning)
    _log_warnings(label, warnings)
    return warnings


def validate_subtype_sums(
    by_type: Sequence[Mapping[str, Any]],
    totals: Sequence[Mapping[str, Any]],
    tolerance: float,
    label: str,
    decimals: int | None = None,
) -> None:
    """|Σ subtype values − total| ≤ tolerance for every year.

    When `decimals` is given the subtype sum is compared at that precision,
    matching a published by-type file summed by a reader.
    """
    sums: dict[int, float] = {}
    for row in by_type:
        sums[row["year"]] = sums.get(row["year"], 0.0) + row["value"]
    for point in totals:
        year = point["year"]
        if year not in sums:
            raise SanityError(f"[{label}] no subtype rows for year {year}")
        subtotal = round_half_away(sums[year], decimals) if decimals is not None else sums[year]
        diff = abs(subtotal - point["value"])
        if diff > tolerance + SUBTYPE_EPSILON:
            raise SanityError(
                f"[{label}] subtype sum mismatch in {year}: "
                f"|{subtotal} - {point['value']}| = {diff:.6f} > {tolerance}"
            )
    extra = sorted(set(sums) - {point["year"] for point in totals})
    if extra:
        raise SanityError(f"[{label}] subtype rows without a total for years {extra}")


# ---------------------------------------------------------------------------
# Variant files
# ---------------------------------------------------------------------------

def validate_by_country(rows: Sequence[Mapping[str, Any]], rules: SeriesRules, label: str) -> list[str]:
    """[{iso3, country, year, value}] sorted by iso3 then year, one row per key."""
    if not rows:
        raise EmptyOutputError(label)
    previous: tuple[str, int] | None = None
    warnings: list[str] = []
    for row in rows:
        iso3 = row["iso3"]
        if not isinstance(iso3, str) or not ISO3_PATTERN.match(iso3):
            raise SanityError(f"[{label}] malformed iso3 {iso3!r}")
        key = (iso3, row["year"])
        if previous is not None and key <= previous:
            raise ContinuityError(f"[{label}] by-country rows not sorted/unique at {key}")
        previous = key
        warning = _check_value(row["value"], rules, label, f"{iso3}:{row['year']}")
        if warning:
            warnings.append(warning)
    _log_warnings(label, warnings)
    return warnings


def validate_by_type(
    rows: Sequence[Mapping[str, Any]],
    type_order: Sequence[str],
    label: str,
) -> None:
    """[{year, type, value}] sorted by year then the fixed type order."""
    if not rows:
        raise EmptyOutputError(label)
    rank = {name: i for i, name in enumerate(type_order)}
    previous: tuple[int, int] | None = None
    for row in rows:
        if row["type"] not in rank:
            raise SanityError(f"[{label}] unknown type {row['type']!r}")
        key = (row["year"], rank[row["type"]])
        if previous is not None and key <= previous:
            raise ContinuityError(f"[{label}] by-type rows not sorted/unique at {row['year']}/{row['type']}")
        previous = key
        _check_value(row["value"], SeriesRules(), label, f"{row['year']}:{row['type']}")


def validate_coverage_rows(rows: Sequence[Mapping[str, Any]], label: str) -> None:
    """[{year, coverage, n_iso, n_pop}] with 0 ≤ coverage ≤ 1 and n_pop ≥ n_iso."""
    if not rows:
        raise EmptyOutputError(label)
    _check_years([row["year"] for row in rows], label, None)
    for row in rows:
        if not 0.0 <= row["coverage"] <= 1.0:
            raise SanityError(f"[{label}] coverage {row['coverage']} outside [0, 1] in {row['year']}")
        if row["n_iso"] < 0 or row["n_pop"] < row["n_iso"]:
            raise SanityError(
                f"[{label}] n_pop {row['n_pop']} < n_iso {row['n_iso']} in {row['year']}"
            )
