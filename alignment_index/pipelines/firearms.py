"""
alignment_index.pipelines.firearms — Civilian firearm stock per 100 residents.

Small Arms Survey civilian holdings joined to WDI population. Survey years
are sparse, so candidate years are the years present in the survey data and
a gap of up to five years between published points is allowed.

Both inputs follow the fetch-or-cache precedence: OFFLINE=1 reads the
snapshots under data/raw; otherwise SAS_URL / WDI_URL are fetched and a
failed fetch falls back to the snapshot.
"""

from __future__ import annotations

import logging

from alignment_index.aggregation import AverageOnDisagreement, aggregate_year, reconcile, split_by_country_year
from alignment_index.countries import CountryResolver
from alignment_index.errors import EmptyOutputError
from alignment_index.fetch import load_source
from alignment_index.pipeline import MetricPipeline, PipelineContext, PipelineResult, published, series_payload
from alignment_index.pipelines.common import load_observations, source_entry
from alignment_index.provenance import build_gaisum
from alignment_index.tabular import parse_table
from alignment_index.transforms import per_hundred, round_half_away
from alignment_index.validation import SeriesRules, validate_series

SAS_URL = "https://raw.githubusercontent.com/smallarms-survey/firearms-holdings/main/civilian_holdings.csv"
WDI_URL = "https://api.worldbank.org/v2/en/indicator/SP.POP.TOTL?downloadformat=csv"
SAS_FILE = "sas_civilian_firearms.csv"
POPULATION_FILE = "wdi_population.csv"
MIN_COVERAGE = 0.3
DECIMALS = 3
FIREARM_COLUMNS: tuple[str, ...] = ("civilian_firearms", "firearms", "total", "value")


class FirearmStock(MetricPipeline):
    id = "firearm_stock_per_100"
    title = "Civilian firearms per 100 residents"
    inputs = (f"data/raw/{SAS_FILE}", f"data/raw/{POPULATION_FILE}")
    rules = SeriesRules(max_gap=5, hard_min=0.0, hard_max=120.0)

    def _load_text(self, ctx: PipelineContext, label: str, name: str, env_name: str, default_url: str) -> str:
        return load_source(
            ctx.fetcher,
            label=label,
            cache_path=ctx.raw_path(name),
            url=ctx.settings.source_override(env_name) or default_url,
            offline=ctx.settings.offline,
        )

    def run(self, ctx: PipelineContext) -> PipelineResult:
        population = ctx.cached_population(
            POPULATION_FILE,
            None,
            lambda: parse_table(
                self._load_text(ctx, "wdi_population", POPULATION_FILE, "WDI_URL", WDI_URL),
                label="wdi_population",
            ).require_headers(),
        )
        sas_table = parse_table(
            self._load_text(ctx, "sas", SAS_FILE, "SAS_URL", SAS_URL), label="sas",
        ).require_headers()
        load = load_observations(
            sas_table,
            value_columns=FIREARM_COLUMNS,
            resolver=CountryResolver(population.name_index),
        )

        firearms, report = reconcile(load.observations, AverageOnDisagreement(), label=self.id)
        per100: dict[tuple[str, int], float] = {}
        no_population = 0
        non_positive = 0
        for (iso3, year), count in sorted(firearms.items()):
            pop = population.get(iso3, year)
            if pop is None:
                no_population += 1
                continue
            if count <= 0:
                non_positive += 1
                self.log("non_positive_firearms_dropped", logging.WARNING, iso3=iso3, year=year, value=count)
                continue
            per100[(iso3, year)] = per_hundred(count, pop)

        values: dict[int, float] = {}
        coverage: list[float] = []
        skipped: dict[str, float] = {}
        for year, year_values in sorted(split_by_country_year(per100).items()):
            agg = aggregate_year(year, year_values, population.for_year(year))
            if agg.value is None or agg.coverage <= 0 or agg.coverage < MIN_COVERAGE:
                skipped[str(year)] = round_half_away(agg.coverage, 4)
                self.log("coverage_drop", logging.WARNING, year=year, coverage=round_half_away(agg.coverage, 4))
                continue
            values[year] = agg.value
            coverage.append(agg.coverage)
        if not values:
            raise EmptyOutputError(self.id, "no data produced")

        series = series_payload(values, DECIMALS)
        validate_series(series, self.rules, self.id)

        gaisum = build_gaisum(
            self.id,
            series,
            rows_in=load.rows_in,
            coverage=coverage,
            notes={
                "min_coverage": MIN_COVERAGE,
                "years_skipped_coverage": skipped,
                "rows_no_population": no_population,
                "rows_non_positive": non_positive,
                **load.to_notes(),
                **report.to_notes(),
            },
        )
        entry = source_entry(
            ctx,
            name="Civilian firearms per 100 residents",
            domain="Safety & Conflict",
            unit="firearms per 100 people",
            source_org="Small Arms Survey",
            source_url=ctx.settings.source_override("SAS_URL") or SAS_URL,
            license="© Small Arms Survey, research use",
            cadence="irregular",
            method=(
                "Join Small Arms Survey civilian holdings to WDI SP.POP.TOTL; per-100 rate per country; "
                "population-weighted mean for survey years with population coverage >= 0.3; "
                "round to 3 decimals."
            ),
            data_start_year=series[0]["year"],
        )
        return PipelineResult(
            metric_id=self.id,
            artifacts={published(f"{self.id}.json"): series},
            gaisum=gaisum,
            sources={self.id: entry},
        )
