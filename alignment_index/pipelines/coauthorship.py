"""
alignment_index.pipelines.coauthorship — Internationally co-authored share of papers.

Two OpenAlex group-by-year counts over the same population of published
journal and proceedings articles:
    total          works with at least one attributed country
    international  works with more than one distinct country

share(year) = international / total · 100, for years present in both.

The most recent years are still being indexed. Up to two tail years are
dropped while the last year's total is below 95 % of the year before it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from alignment_index.errors import EmptyOutputError
from alignment_index.fetch import fetch_openalex_groups
from alignment_index.pipeline import MetricPipeline, PipelineContext, PipelineResult, published, series_payload
from alignment_index.pipelines.common import source_entry
from alignment_index.provenance import build_gaisum
from alignment_index.transforms import percentage_share, round_half_away
from alignment_index.validation import SeriesRules, validate_series

OPENALEX_URL = "https://api.openalex.org/works"
DEFAULT_MAILTO = "contact@global-alignment-index.com"
START_YEAR = 1990
END_YEAR = 2050
DECIMALS = 1
COMPLETENESS_RATIO = 0.95
MAX_TAIL_DROPS = 2

_BASE_FILTER = (
    "type_crossref:journal-article|proceedings-article,"
    "primary_location.is_published:true,"
    "primary_location.source.has_issn:true,"
    "is_paratext:false"
)
TOTAL_FILTER = f"{_BASE_FILTER},countries_distinct_count:>0,publication_year:{START_YEAR}-{END_YEAR}"
INTERNATIONAL_FILTER = f"{_BASE_FILTER},countries_distinct_count:>1,publication_year:{START_YEAR}-{END_YEAR}"

EXPECTED_BANDS: dict[int, tuple[float, float]] = {
    1990: (6.0, 14.0),
    2010: (16.0, 24.0),
    2021: (22.0, 29.0),
    2023: (24.0, 32.0),
}
"""Published reference values; a share outside its band is logged."""


@dataclass(frozen=True, slots=True)
class YearCounts:
    year: int
    total: int
    international: int

    @property
    def share(self) -> float:
        return percentage_share(self.international, self.total)


def join_counts(total: dict[int, int], international: dict[int, int]) -> list[YearCounts]:
    """Years present in both, with a positive total and a non-negative numerator."""
    joined: list[YearCounts] = []
    for year in sorted(set(total) & set(international)):
        if not START_YEAR <= year <= END_YEAR:
            continue
        if total[year] <= 0 or international[year] < 0:
            continue
        joined.append(YearCounts(year, total[year], international[year]))
    return joined


def cap_to_complete(points: list[YearCounts], max_drops: int = MAX_TAIL_DROPS) -> tuple[list[YearCounts], list[int]]:
    """Drop incomplete tail years. Returns the kept points and the dropped years."""
    kept = sorted(points, key=lambda p: p.year)
    dropped: list[int] = []
    for _ in range(max_drops):
        if len(kept) < 2:
            break
        last, prev = kept[-1], kept[-2]
        if last.total >= COMPLETENESS_RATIO * prev.total:
            break
        dropped.append(kept.pop().year)
    return kept, dropped


class ScientificCoauthorship(MetricPipeline):
    id = "scientific_coauthorship_share"
    title = "Internationally co-authored scientific papers"
    inputs = ("openalex:works",)
    rules = SeriesRules(hard_min=0.0, hard_max=100.0, warn_min=5.0, warn_max=60.0)

    def run(self, ctx: PipelineContext) -> PipelineResult:
        base_url = ctx.settings.source_override("OPENALEX_URL") or OPENALEX_URL
        mailto = ctx.settings.source_override("OPENALEX_MAILTO") or DEFAULT_MAILTO
        total = fetch_openalex_groups(ctx.fetcher, base_url, TOTAL_FILTER, mailto=mailto)
        international = fetch_openalex_groups(ctx.fetcher, base_url, INTERNATIONAL_FILTER, mailto=mailto)

        joined = join_counts(total, international)
        if not joined:
            raise EmptyOutputError(self.id, "no overlapping years between total and international counts")
        points, dropped = cap_to_complete(joined)
        for year in dropped:
            self.log("incomplete_tail_year_dropped", logging.WARNING, year=year)

        series = series_payload({p.year: p.share for p in points}, DECIMALS)
        validate_series(series, self.rules, self.id)

        by_year = {point["year"]: point["value"] for point in series}
        band_warnings = []
        for year, (lo, hi) in EXPECTED_BANDS.items():
            value = by_year.get(year)
            if value is not None and not lo <= value <= hi:
                band_warnings.append({"year": year, "value": value, "band": [lo, hi]})
        if band_warnings:
            self.log("reference_band", logging.WARNING, outside=band_warnings)

        deltas = [
            {"year": cur["year"], "delta": round_half_away(cur["value"] - prev["value"], DECIMALS)}
            for prev, cur in zip(series, series[1:])
        ]
        deltas.sort(key=lambda d: -abs(d["delta"]))
        gaisum = build_gaisum(
            self.id,
            series,
            rows_in=len(joined),
            notes={
                "completeness_cap_to_year": points[-1].year,
                "tail_years_dropped": dropped,
                "denominator_filter": "countries_distinct_count:>0",
                "filters_applied": [TOTAL_FILTER, INTERNATIONAL_FILTER],
                "top_deltas": deltas[:3],
                "reference_band_warnings": band_warnings,
                "latest_counts": {
                    "year": points[-1].year,
                    "total": points[-1].total,
                    "international": points[-1].international,
                },
            },
        )
        entry = source_entry(
            ctx,
            name="Internationally co-authored scientific papers (share)",
            domain="Truth & Clarity",
            unit="% of papers",
            source_org="OpenAlex",
            source_url=OPENALEX_URL,
            license="CC0",
            method=(
                "OpenAlex works grouped by publication_year: papers with more than one distinct "
                "country divided by papers with at least one; incomplete tail years dropped; "
                "round to 1 decimal."
            ),
            data_start_year=series[0]["year"],
        )
        return PipelineResult(
            metric_id=self.id,
            artifacts={published(f"{self.id}.json"): series},
            gaisum=gaisum,
            sources={self.id: entry},
        )
