"""
alignment_index.aggregation — Weighted aggregation with coverage gating.

Pure-computation module. Zero I/O; diagnostics are emitted as structured
log events and returned to the caller for provenance.

Core definitions (per year):
    value    = Σ(value_i · weight_i) / Σ(weight_i)
               over countries with BOTH a value and a weight
    coverage = covered weight / total weight available that year

A year is published only if coverage ≥ min_coverage. Years below the gate
are dropped and reported, never interpolated or zero-filled.

Duplicate observations for the same (iso3, year) are reconciled by an
explicit policy (PreferSource or AverageOnDisagreement). Every disagreement
is counted in a ReconciliationReport.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from alignment_index.errors import CoverageError
from alignment_index.population import PopulationIndex
from alignment_index.transforms import round_half_away

logger = logging.getLogger("gai.aggregation")

ValueTable = Mapping[tuple[str, int], float]
"""(iso3, year) → value after reconciliation."""

DEFAULT_DUPLICATE_TOLERANCE: float = 1e-6
DEFAULT_FALLBACK_DIFF_WARN: float = 1.5


# ---------------------------------------------------------------------------
# Observations and per-year aggregates
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Observation:
    iso3: str
    year: int
    value: float
    source: str = ""


@dataclass(frozen=True, slots=True)
class CoverageAggregate:
    """Weighted sum and coverage bookkeeping for one year."""
    year: int
    weighted_sum: float
    covered_weight: float
    total_weight: float
    n_iso: int
    n_pop: int

    @property
    def coverage(self) -> float:
        if self.total_weight <= 0:
            return 0.0
        return self.covered_weight / self.total_weight

    @property
    def value(self) -> float | None:
        if self.covered_weight <= 0:
            return None
        return self.weighted_sum / self.covered_weight

    def to_coverage_row(self) -> dict[str, Any]:
        """Unrounded coverage diagnostic row; the caller rounds coverage."""
        return {
            "year": self.year,
            "coverage": self.coverage,
            "n_iso": self.n_iso,
            "n_pop": self.n_pop,
        }


def aggregate_year(
    year: int,
    values: Mapping[str, float],
    weights: Mapping[str, float],
    total_weight: float | None = None,
) -> CoverageAggregate:
    """Aggregate one year's country values.

    Args:
        values: ISO3 → metric value (countries without data are absent).
        weights: ISO3 → weight (typically population) for every country
            that counts toward the denominator.
        total_weight: Override for the coverage denominator when it comes
            from a broader set than `weights` (e.g. world population).
            Defaults to Σ(weights).
    """
    weighted_sum = 0.0
    covered = 0.0
    n_iso = 0
    n_pop = 0
    for iso3 in sorted(weights):
        weight = weights[iso3]
        if not (weight > 0):
            continue
        n_pop += 1
        value = values.get(iso3)
        if value is None:
            continue
        n_iso += 1
        weighted_sum += value * weight
        covered += weight
    total = sum(w for w in weights.values() if w > 0) if total_weight is None else total_weight
    return CoverageAggregate(
        year=year,
        weighted_sum=weighted_sum,
        covered_weight=covered,
        total_weight=total,
        n_iso=n_iso,
        n_pop=n_pop,
    )


@dataclass(frozen=True, slots=True)
class GatedSeries:
    """Result of applying the coverage gate across years."""
    kept: tuple[CoverageAggregate, ...]
    dropped: tuple[CoverageAggregate, ...]
    min_coverage: float

    @property
    def all_years(self) -> tuple[CoverageAggregate, ...]:
        return tuple(sorted(self.kept + self.dropped, key=lambda agg: agg.year))

    def coverage_values(self) -> list[float]:
        return [agg.coverage for agg in self.kept]


def split_by_country_year(values: ValueTable) -> dict[int, dict[str, float]]:
    by_year: dict[int, dict[str, float]] = defaultdict(dict)
    for (iso3, year), value in values.items():
        by_year[year][iso3] = value
    return by_year


def weighted_series(
    values: ValueTable,
    population: PopulationIndex,
    min_coverage: float,
    *,
    label: str,
    start_year: int | None = None,
    end_year: int | None = None,
) -> GatedSeries:
    """Population-weighted mean per year, gated on coverage.

    Candidate years are the years of the population index (within the
    optional bounds). Years with no covered weight are dropped like any other
    below-threshold year.
    """
    by_year = split_by_country_year(values)
    kept: list[CoverageAggregate] = []
    dropped: list[CoverageAggregate] = []

    for year in population.years():
        if start_year is not None and year < start_year:
            continue
        if end_year is not None and year > end_year:
            continue
        agg = aggregate_year(year, by_year.get(year, {}), population.for_year(year))
        if agg.value is not None and agg.coverage >= min_coverage:
            kept.append(agg)
            continue
        dropped.append(agg)
        logger.warning(json.dumps({
            "event": "coverage_drop",
            "metric": label,
            "year": year,
            "coverage": round_half_away(agg.coverage, 4),
            "min_coverage": min_coverage,
            "n_iso": agg.n_iso,
            "n_pop": agg.n_pop,
        }))

    return GatedSeries(kept=tuple(kept), dropped=tuple(dropped), min_coverage=min_coverage)


def population_share_total(
    values: Mapping[str, float],
    year_population: Mapping[str, float],
) -> tuple[float, float]:
    """Σ(value · pop / total_pop) over all countries; absent countries count 0.

    Used by event metrics where "no event" is a real zero. Returns the
    weighted total and the population share with a positive value.
    """
    total = sum(p for p in year_population.values() if p > 0)
    if total <= 0:
        return 0.0, 0.0
    weighted = 0.0
    share_affected = 0.0
    for iso3 in sorted(values):
        pop = year_population.get(iso3)
        if pop is None or pop <= 0:
            continue
        weight = pop / total
        weighted += values[iso3] * weight
        if values[iso3] > 0:
            share_affected += weight
    return weighted, share_affected


def ratio_of_sums(pairs: Iterable[tuple[float, float]]) -> float | None:
    """Σ numerator / Σ denominator, or None when the denominator is zero."""
    numerator = 0.0
    denominator = 0.0
    for num, den in pairs:
        numerator += num
        denominator += den
    if denominator <= 0:
        return None
    return numerator / denominator


# ---------------------------------------------------------------------------
# Duplicate reconciliation
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class PreferSource:
    """Prefer observations whose source label contains `preferred`
    (case-insensitive); fall back to averaging disagreeing values."""
    preferred: str
    tolerance: float = DEFAULT_DUPLICATE_TOLERANCE


@dataclass(frozen=True, slots=True)
class AverageOnDisagreement:
    tolerance: float = DEFAULT_DUPLICATE_TOLERANCE


ReconcilePolicy = PreferSource | AverageOnDisagreement


@dataclass
class ReconciliationReport:
    duplicates: int = 0
    identical: int = 0
    preferred: int = 0
    averaged: int = 0
    discrepancies: list[dict[str, Any]] = field(default_factory=list)

    def to_notes(self) -> dict[str, Any]:
        return {
            "duplicate_keys": self.duplicates,
            "duplicates_identical": self.identical,
            "duplicates_preferred_source": self.preferred,
            "duplicates_averaged": self.averaged,
        }


def _mean(values: list[float]) -> float:
    return sum(values) / len(values)


def reconcile(
    observations: Iterable[Observation],
    policy: ReconcilePolicy,
    *,
    label: str,
) -> tuple[dict[tuple[str, int], float], ReconciliationReport]:
    """Collapse observations to one value per (iso3, year).

    The outcome does not depend on input order: all observations for a key
    are gathered first, then the policy decides.
    """
    grouped: dict[tuple[str, int], list[Observation]] = defaultdict(list)
    for obs in observations:
        grouped[(obs.iso3, obs.year)].append(obs)

    report = ReconciliationReport()
    result: dict[tuple[str, int], float] = {}

    for key in sorted(grouped):
        group = grouped[key]
        if len(group) == 1:
            result[key] = group[0].value
            continue

        report.duplicates += 1
        candidates = group
        if isinstance(policy, PreferSource):
            wanted = policy.preferred.lower()
            preferred = [obs for obs in group if wanted in obs.source.lower()]
            if preferred and len(preferred) < len(group):
                report.preferred += 1
                candidates = preferred

        values = [obs.value for obs in candidates]
        if max(values) - min(values) <= policy.tolerance:
            if candidates is group:
                report.identical += 1
            result[key] = values[0]
            continue

        mean = _mean(values)
        report.averaged += 1
        detail = {
            "iso3": key[0],
            "year": key[1],
            "values": values,
            "sources": [obs.source for obs in candidates],
            "resolved": mean,
        }
        report.discrepancies.append(detail)
        logger.warning(json.dumps({"event": "duplicate_averaged", "metric": label, **detail}))
        result[key] = mean

    return result, report


# ---------------------------------------------------------------------------
# Hybrid fallback
# ---------------------------------------------------------------------------

METHOD_COMPUTED = "computed"
METHOD_PUBLISHED = "published_fallback"
METHOD_LOW_COVERAGE = "low_coverage_override"


@dataclass(frozen=True, slots=True)
class HybridPoint:
    year: int
    value: float
    method: str
    coverage: float | None


def hybrid_series(
    computed: Mapping[int, CoverageAggregate],
    published: Mapping[int, float],
    min_coverage: float,
    *,
    label: str,
    allow_low_coverage: bool = False,
    diff_warn: float = DEFAULT_FALLBACK_DIFF_WARN,
) -> list[HybridPoint]:
    """Bottom-up value where coverage suffices, else the published aggregate.

    For each year in computed ∪ published:
        coverage ≥ min_coverage → computed value (warn DIFF_GT_1p5 when it
            deviates from the published value by more than diff_warn)
        published available     → published value
        computed available and allow_low_coverage → computed, warned
        computed available      → CoverageError
    Years with neither a covered computed value nor a published value are
    skipped.
    """
    points: list[HybridPoint] = []
    for year in sorted(set(computed) | set(published)):
        agg = computed.get(year)
        value = agg.value if agg is not None else None
        coverage = agg.coverage if agg is not None else None
        reference = published.get(year)

        if value is not None and coverage is not None and coverage >= min_coverage:
            if reference is not None and abs(value - reference) > diff_warn:
                logger.warning(json.dumps({
                    "event": "DIFF_GT_1p5",
                    "metric": label,
                    "year": year,
                    "computed": value,
                    "published": reference,
                    "diff": abs(value - reference),
                }))
            points.append(HybridPoint(year, value, METHOD_COMPUTED, coverage))
            continue

        if reference is not None:
            logger.info(json.dumps({
                "event": "FALLBACK_WLD",
                "metric": label,
                "year": year,
                "computed": value,
                "coverage": coverage,
                "published": reference,
            }))
            points.append(HybridPoint(year, reference, METHOD_PUBLISHED, coverage))
            continue

        if value is None:
            continue

        if allow_low_coverage:
            logger.warning(json.dumps({
                "event": "low_coverage_published",
                "metric": label,
                "year": year,
                "coverage": coverage,
            }))
            points.append(HybridPoint(year, value, METHOD_LOW_COVERAGE, coverage))
            continue

        raise CoverageError(label, year, coverage, min_coverage)

    return points
