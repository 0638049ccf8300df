"""
alignment_index.pipelines.death_registration — Completeness of death registration.

WDI SP.REG.DTHS.ZS (% of deaths registered) per country, clamped to
[0, 100], averaged with population weights over the countries that report
in a year. Coverage against world population is reported, not gated: the
indicator is sparse and every year with reporting countries is published.
"""

from __future__ import annotations

from collections import defaultdict

from alignment_index.aggregation import AverageOnDisagreement, aggregate_year, reconcile
from alignment_index.countries import CountryResolver
from alignment_index.errors import EmptyOutputError
from alignment_index.pipeline import (
    MetricPipeline,
    PipelineContext,
    PipelineResult,
    by_country_payload,
    published,
    series_payload,
)
from alignment_index.pipelines.common import load_observations, source_entry
from alignment_index.provenance import build_gaisum
from alignment_index.transforms import clamp, round_half_away
from alignment_index.validation import SeriesRules, validate_by_country, validate_series

RAW_FILE = "wdi_death_registration.csv"
SOURCE_ID = "wdi_sp_reg_dths_zs"
INDICATOR = "SP.REG.DTHS.ZS"
START_YEAR = 1990
END_YEAR = 2023
DECIMALS = 1
COUNTRY_DECIMALS = 2


class DeathRegistration(MetricPipeline):
    id = "death_registration_completeness"
    title = "Completeness of death registration"
    inputs = (f"data/raw/{RAW_FILE}", "data/raw/pop_by_country.csv")
    rules = SeriesRules(hard_min=0.0, hard_max=100.0)

    def run(self, ctx: PipelineContext) -> PipelineResult:
        population = ctx.load_population(start_year=START_YEAR)
        load = load_observations(
            ctx.read_raw_table(RAW_FILE, label=self.id),
            value_columns=("value", INDICATOR, "completeness"),
            resolver=CountryResolver(population.name_index),
            start_year=START_YEAR,
            end_year=END_YEAR,
        )
        values, report = reconcile(load.observations, AverageOnDisagreement(), label=self.id)
        values = {key: clamp(value, 0.0, 100.0) for key, value in values.items()}

        reporting: dict[int, dict[str, float]] = defaultdict(dict)
        by_country: dict[tuple[str, int], float] = {}
        for (iso3, year), value in values.items():
            if (iso3, year) not in population:
                continue
            reporting[year][iso3] = value
            by_country[(iso3, year)] = value

        means: dict[int, float] = {}
        coverage: dict[int, float] = {}
        countries: dict[int, int] = {}
        for year in sorted(reporting):
            weights = {iso3: population.get(iso3, year) for iso3 in reporting[year]}
            agg = aggregate_year(year, reporting[year], weights, total_weight=population.world(year))
            if agg.value is None:
                continue
            means[year] = agg.value
            countries[year] = agg.n_iso
            if population.world(year):
                coverage[year] = clamp(agg.coverage, 0.0, 1.0)
        if not means:
            raise EmptyOutputError(self.id)

        series = series_payload(means, DECIMALS)
        country_rows = by_country_payload(by_country, population, COUNTRY_DECIMALS)
        validate_series(series, self.rules, self.id)
        validate_by_country(country_rows, self.rules, f"{self.id}.by_country")

        gaisum = build_gaisum(
            self.id,
            series,
            rows_in=load.rows_in,
            coverage=[coverage[year] for year in sorted(coverage)],
            notes={
                "countries_used": {str(year): countries[year] for year in sorted(countries)},
                "coverage_world_population": {str(year): round_half_away(coverage[year], 4) for year in sorted(coverage)},
                **load.to_notes(),
                **report.to_notes(),
            },
        )
        entry = source_entry(
            ctx,
            name="World Bank WDI — Completeness of death registration (%)",
            domain="Truth & Clarity",
            unit="% of deaths registered",
            source_org="World Bank (WHO/UN DESA CRVS underlying)",
            source_url=f"https://data.worldbank.org/indicator/{INDICATOR}",
            license="CC BY 4.0",
            method=(
                "Clamp national SP.REG.DTHS.ZS values to [0,100], join WDI SP.POP.TOTL populations, "
                "compute population-weighted annual global mean, round to 1 decimal."
            ),
            data_start_year=series[0]["year"],
            code=INDICATOR,
        )
        return PipelineResult(
            metric_id=self.id,
            artifacts={
                published(f"{self.id}.json"): series,
                published(f"{self.id}.by_country.json"): country_rows,
            },
            gaisum=gaisum,
            sources={SOURCE_ID: entry},
        )
