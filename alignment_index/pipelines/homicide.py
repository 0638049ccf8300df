"""
alignment_index.pipelines.homicide — Global intentional homicide rate.

Bottom-up population-weighted mean of national rates per 100k, with the
published WLD aggregate as a fallback for years where country coverage is
below 95 % of population.

Duplicate country-years (UNODC and WHO both reporting) prefer the UNODC
row; otherwise disagreeing values are averaged and logged.
"""

from __future__ import annotations

import logging

from alignment_index.aggregation import (
    METHOD_COMPUTED,
    METHOD_PUBLISHED,
    PreferSource,
    aggregate_year,
    hybrid_series,
    reconcile,
    split_by_country_year,
)
from alignment_index.countries import CountryResolver
from alignment_index.errors import EmptyOutputError
from alignment_index.pipeline import MetricPipeline, PipelineContext, PipelineResult, published, series_payload
from alignment_index.pipelines.common import load_observations, source_entry
from alignment_index.provenance import build_gaisum
from alignment_index.validation import SeriesRules, validate_series

HOMICIDE_FILE = "homicide_unodc_who.csv"
START_YEAR = 1990
MIN_COVERAGE = 0.95
DECIMALS = 3
PREFERRED_SOURCE = "UNODC"
RATE_COLUMNS: tuple[str, ...] = ("rate_per_100k", "homicide_rate", "rate", "value")


class HomicideRate(MetricPipeline):
    id = "homicide_rate"
    title = "Intentional homicide rate"
    inputs = (f"data/raw/{HOMICIDE_FILE}", "data/raw/pop_by_country.csv")
    rules = SeriesRules(hard_min=0.0, warn_max=40.0)

    def run(self, ctx: PipelineContext) -> PipelineResult:
        population = ctx.load_population(start_year=START_YEAR)
        resolver = CountryResolver(population.name_index)
        load = load_observations(
            ctx.read_raw_table(HOMICIDE_FILE, label=self.id),
            value_columns=RATE_COLUMNS,
            value_fuzzy=("rate",),
            source_columns=("source",),
            resolver=resolver,
            start_year=START_YEAR,
        )

        observations = []
        negative = 0
        for obs in load.observations:
            if obs.value < 0:
                negative += 1
                self.log("negative_rate_skipped", logging.WARNING, iso3=obs.iso3, year=obs.year, value=obs.value)
                continue
            observations.append(obs)
        values, report = reconcile(observations, PreferSource(PREFERRED_SOURCE), label=self.id)

        by_year = split_by_country_year(values)
        computed = {
            year: aggregate_year(year, by_year.get(year, {}), population.for_year(year))
            for year in population.years()
        }
        points = hybrid_series(
            computed,
            load.world,
            MIN_COVERAGE,
            label=self.id,
            allow_low_coverage=ctx.settings.allow_placeholders,
        )
        if not points:
            raise EmptyOutputError(self.id)

        series = series_payload({point.year: point.value for point in points}, DECIMALS)
        validate_series(series, self.rules, self.id)

        gaisum = build_gaisum(
            self.id,
            series,
            rows_in=load.rows_in,
            coverage=[p.coverage for p in points if p.method == METHOD_COMPUTED and p.coverage is not None],
            notes={
                "min_coverage": MIN_COVERAGE,
                "years_computed": sum(1 for p in points if p.method == METHOD_COMPUTED),
                "years_fallback_wld": [p.year for p in points if p.method == METHOD_PUBLISHED],
                "negative_rates_skipped": negative,
                **load.to_notes(),
                **report.to_notes(),
            },
        )
        entry = source_entry(
            ctx,
            name="Intentional homicide rate",
            domain="Safety & Conflict",
            unit="per 100k people",
            source_org="UNODC / WHO",
            source_url="https://dataunodc.un.org/dp-intentional-homicide-victims",
            license="CC BY 3.0 IGO",
            method=(
                "Population-weighted global mean of national homicide rates (UNODC preferred over WHO "
                "on duplicates); years with population coverage below 0.95 use the published WLD "
                "aggregate; round to 3 decimals."
            ),
            data_start_year=series[0]["year"],
        )
        return PipelineResult(
            metric_id=self.id,
            artifacts={published(f"{self.id}.json"): series},
            gaisum=gaisum,
            sources={self.id: entry},
        )
