"""
alignment_index.pipelines.wdi_mean — Population-weighted means of WDI indicators.

Under-5 mortality and extreme poverty share one shape: a national WDI
indicator, weighted by SP.POP.TOTL, published for every year whose
population coverage clears the metric's gate, plus a coverage diagnostic
listing every candidate year.
"""

from __future__ import annotations

from alignment_index.aggregation import AverageOnDisagreement, reconcile, weighted_series
from alignment_index.countries import CountryResolver
from alignment_index.errors import EmptyOutputError
from alignment_index.pipeline import (
    MetricPipeline,
    PipelineContext,
    PipelineResult,
    coverage_payload,
    published,
    series_payload,
)
from alignment_index.pipelines.common import load_observations, load_wdi_table, source_entry, wdi_population
from alignment_index.provenance import build_gaisum
from alignment_index.validation import SeriesRules, validate_coverage_rows, validate_series


class WdiWeightedMean(MetricPipeline):
    indicator: str = ""
    min_coverage: float = 0.0
    decimals: int = 2
    start_year: int | None = None
    rules: SeriesRules = SeriesRules()
    manifest: dict[str, str] = {}

    @property
    def inputs(self) -> tuple[str, ...]:
        return (f"wdi:{self.indicator}", "wdi:SP.POP.TOTL")

    def run(self, ctx: PipelineContext) -> PipelineResult:
        population = wdi_population(ctx, self.start_year)
        resolver = CountryResolver(population.name_index)
        load = load_observations(
            load_wdi_table(ctx, self.indicator),
            value_columns=("value",),
            resolver=resolver,
            start_year=self.start_year,
        )
        values, report = reconcile(load.observations, AverageOnDisagreement(), label=self.id)

        gated = weighted_series(
            values, population, self.min_coverage, label=self.id, start_year=self.start_year,
        )
        if not gated.kept:
            raise EmptyOutputError(self.id, f"no year reached coverage {self.min_coverage}")

        series = series_payload({agg.year: agg.value for agg in gated.kept}, self.decimals)
        coverage = coverage_payload(gated.all_years)
        validate_series(series, self.rules, self.id)
        validate_coverage_rows(coverage, f"{self.id}_coverage")

        self.log(
            "coverage_gate",
            kept=len(gated.kept),
            dropped=len(gated.dropped),
            min_coverage=self.min_coverage,
        )
        gaisum = build_gaisum(
            self.id,
            series,
            rows_in=load.rows_in,
            coverage=gated.coverage_values(),
            notes={
                "indicator": self.indicator,
                "min_coverage": self.min_coverage,
                "years_dropped": [agg.year for agg in gated.dropped],
                **load.to_notes(),
                **report.to_notes(),
            },
        )
        entry = source_entry(
            ctx,
            **self.manifest,
            source_url=f"https://data.worldbank.org/indicator/{self.indicator}",
            license="CC BY 4.0",
            data_start_year=series[0]["year"],
        )
        return PipelineResult(
            metric_id=self.id,
            artifacts={
                published(f"{self.id}.json"): series,
                published(f"{self.id}_coverage.json"): coverage,
            },
            gaisum=gaisum,
            sources={self.id: entry},
        )


class U5Mortality(WdiWeightedMean):
    id = "u5_mortality"
    title = "Under-5 mortality"
    indicator = "SH.DYN.MORT"
    min_coverage = 0.7
    decimals = 2
    rules = SeriesRules(hard_min=0.0, hard_max=1000.0)
    manifest = {
        "name": "Under-5 mortality",
        "domain": "Health & Wellbeing",
        "unit": "per 1,000 live births",
        "source_org": "UN IGME via World Bank WDI",
        "method": (
            "Population-weighted global mean of national SH.DYN.MORT using SP.POP.TOTL; "
            "exclude aggregates; publish years with population coverage >= 0.7; round to 2 decimals."
        ),
    }


class ExtremePoverty(WdiWeightedMean):
    id = "extreme_poverty"
    title = "Extreme poverty ($2.15/day)"
    indicator = "SI.POV.DDAY"
    min_coverage = 0.8
    decimals = 2
    start_year = 1981
    rules = SeriesRules(hard_min=0.0, hard_max=100.0)
    manifest = {
        "name": "Extreme poverty ($2.15)",
        "domain": "Economics & Poverty",
        "unit": "% of population",
        "source_org": "World Bank (PovcalNet via WDI)",
        "method": (
            "Population-weighted global mean of national SI.POV.DDAY headcount ratios using "
            "SP.POP.TOTL; years from 1981 with population coverage >= 0.8; round to 2 decimals."
        ),
    }
