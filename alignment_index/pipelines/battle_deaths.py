"""
alignment_index.pipelines.battle_deaths — UCDP battle-related deaths per 100k.

Input: the UCDP Battle-Related Deaths conflict-year CSV (pinned snapshot
under data/raw, or fetched) and world population (WDI SP.POP.TOTL, WLD).

Method:
    deaths are summed per (year, type_of_conflict), divided by world
    population and expressed per 100,000 people, for every year from 1990
    to the last year both sources cover. The range must be continuous.

Outputs:
    battle_deaths_total.json         total per 100k
    battle_deaths_by_type.json       one row per (year, conflict type)
    battle_deaths_interstate.json    interstate only
    battle_deaths.json               legacy alias of the interstate series

Design contract:
    - Rounded subtype values sum to the rounded total within 0.02.
    - An all-zero total or interstate series is a placeholder and fails the
      run unless ALLOW_PLACEHOLDERS=1.
"""

from __future__ import annotations

import logging

from alignment_index.constants import CONFLICT_TYPE_MAP, CONFLICT_TYPE_ORDER, ISO_WORLD, YEAR_MAX, YEAR_MIN
from alignment_index.errors import ContinuityError, EmptyOutputError, InputError, SanityError
from alignment_index.fetch import load_source
from alignment_index.pipeline import (
    MetricPipeline,
    PipelineContext,
    PipelineResult,
    by_type_payload,
    published,
    series_payload,
)
from alignment_index.pipelines.common import load_wdi_table, source_entry
from alignment_index.population import ISO_COLUMNS, YEAR_COLUMNS
from alignment_index.provenance import build_gaisum
from alignment_index.tabular import parse_float, parse_table, parse_year, require_column
from alignment_index.transforms import per_100k
from alignment_index.validation import SeriesRules, validate_by_type, validate_series, validate_subtype_sums

UCDP_URL = "https://ucdp.uu.se/downloads/battle-related-deaths/ucdp-brd-conflict-251.csv"
UCDP_FILE = "ucdp-brd-conflict-241.csv"
START_YEAR = 1990
DECIMALS = 3
SUBTYPE_TOLERANCE = 0.02

DEATH_COLUMNS: tuple[str, ...] = (
    "bd_best",
    "best",
    "best_estimate",
    "deaths_b",
    "deaths_best",
    "fatality_best",
)
"""Best-estimate death column, in order of preference across UCDP releases."""


class BattleDeaths(MetricPipeline):
    id = "battle_deaths"
    title = "Battle-related deaths (global)"
    inputs = (f"data/raw/{UCDP_FILE}", "wdi:SP.POP.TOTL_WLD")
    rules = SeriesRules(max_gap=1, hard_min=0.0)

    def _load_ucdp(self, ctx: PipelineContext) -> str:
        pinned = ctx.raw_path(UCDP_FILE)
        override = ctx.override_path("UCDP_PATH")
        if override is None and pinned.is_file():
            override = pinned
        return load_source(
            ctx.fetcher,
            label="ucdp",
            cache_path=pinned,
            url=ctx.settings.source_override("UCDP_URL") or UCDP_URL,
            override_path=override,
            offline=ctx.settings.offline,
        )

    def _deaths_by_year_type(self, ctx: PipelineContext) -> tuple[dict[int, dict[str, float]], str, int]:
        table = parse_table(self._load_ucdp(ctx), label="ucdp").require_headers()
        if not len(table):
            raise EmptyOutputError("ucdp", "no rows parsed from UCDP")
        death_col = require_column(table, DEATH_COLUMNS, concept="battle deaths")
        year_col = require_column(table, ("year",), concept="year")
        type_col = require_column(table, ("type_of_conflict",), concept="type_of_conflict")

        deaths: dict[int, dict[str, float]] = {}
        for i, record in enumerate(table, start=2):
            year = parse_year(record.get(year_col), label="ucdp", field_name=year_col, row=i)
            if year is None:
                continue
            if not YEAR_MIN <= year <= YEAR_MAX:
                raise InputError("ucdp", year_col, str(year), "invalid year", i)
            code = record.get(type_col, "").strip()
            kind = CONFLICT_TYPE_MAP.get(code)
            if kind is None:
                raise InputError("ucdp", type_col, code, "unknown conflict type code", i)
            value = parse_float(record.get(death_col), label="ucdp", field_name=death_col, row=i) or 0.0
            if value < 0:
                raise InputError("ucdp", death_col, record.get(death_col, ""), "negative deaths", i)
            by_type = deaths.setdefault(year, {})
            by_type[kind] = by_type.get(kind, 0.0) + value
        return deaths, death_col, len(table)

    def _world_population(self, ctx: PipelineContext) -> dict[int, float]:
        table = load_wdi_table(ctx, "SP.POP.TOTL", country=ISO_WORLD)
        iso_col = require_column(table, ISO_COLUMNS, concept="iso3")
        year_col = require_column(table, YEAR_COLUMNS, concept="year")
        value_col = require_column(table, ("value", "population"), concept="population")
        population: dict[int, float] = {}
        for i, record in enumerate(table, start=2):
            if record.get(iso_col, "").strip().upper() != ISO_WORLD:
                continue
            year = parse_year(record.get(year_col), label=table.label, field_name=year_col, row=i)
            value = parse_float(record.get(value_col), label=table.label, field_name=value_col, row=i)
            if year is None or value is None or value <= 0:
                continue
            population[year] = value
        if not population:
            raise EmptyOutputError(table.label, "world population series empty")
        return population

    def _common_years(self, deaths: dict[int, dict[str, float]], population: dict[int, float]) -> list[int]:
        battle_years = sorted(year for year in deaths if year >= START_YEAR)
        pop_years = sorted(year for year in population if year >= START_YEAR)
        if not battle_years:
            raise EmptyOutputError(self.id, f"no UCDP years >= {START_YEAR}")
        if not pop_years:
            raise EmptyOutputError(self.id, f"no population years >= {START_YEAR}")

        last = min(battle_years[-1], pop_years[-1])
        beyond = [year for year in battle_years if year > last]
        if beyond:
            self.log("years_beyond_population", logging.WARNING, years=beyond)
        years = list(range(START_YEAR, last + 1))
        missing_battle = [year for year in years if year not in deaths]
        if missing_battle:
            raise ContinuityError(f"[{self.id}] missing UCDP years in {START_YEAR}-{last}: {missing_battle}")
        missing_pop = [year for year in years if year not in population]
        if missing_pop:
            raise ContinuityError(f"[{self.id}] missing population years in {START_YEAR}-{last}: {missing_pop}")
        return years

    def run(self, ctx: PipelineContext) -> PipelineResult:
        deaths, death_col, rows_in = self._deaths_by_year_type(ctx)
        population = self._world_population(ctx)
        years = self._common_years(deaths, population)
        self.log("death_column", column=death_col)

        totals: dict[int, float] = {}
        by_type: dict[tuple[int, str], float] = {}
        for year in years:
            pop = population[year]
            counts = deaths[year]
            for kind in CONFLICT_TYPE_ORDER:
                by_type[(year, kind)] = per_100k(counts.get(kind, 0.0), pop)
            totals[year] = per_100k(sum(counts.values()), pop)

        total_series = series_payload(totals, DECIMALS)
        type_rows = by_type_payload(by_type, CONFLICT_TYPE_ORDER, DECIMALS)
        interstate = [
            {"year": row["year"], "value": row["value"]} for row in type_rows if row["type"] == "interstate"
        ]

        validate_series(total_series, self.rules, f"{self.id}_total")
        validate_series(interstate, self.rules, f"{self.id}_interstate")
        validate_by_type(type_rows, CONFLICT_TYPE_ORDER, f"{self.id}_by_type")
        validate_subtype_sums(type_rows, total_series, SUBTYPE_TOLERANCE, self.id, decimals=DECIMALS)

        if not ctx.settings.allow_placeholders:
            for name, series in (("total", total_series), ("interstate", interstate)):
                if max(point["value"] for point in series) == 0:
                    raise SanityError(f"[{self.id}] placeholder dataset: {name} series is all zeros")

        gaisum = build_gaisum(
            self.id,
            total_series,
            rows_in=rows_in,
            notes={
                "death_column": death_col,
                "types": list(CONFLICT_TYPE_ORDER),
                "by_type_rows": len(type_rows),
                "interstate_max": max(point["value"] for point in interstate),
                "continuous_years": f"{years[0]}-{years[-1]}",
            },
        )
        entry = source_entry(
            ctx,
            name="Battle-related deaths (global)",
            domain="Safety & Conflict",
            unit="deaths per 100k people",
            source_org="Uppsala Conflict Data Program (UCDP)",
            source_url=ctx.settings.source_override("UCDP_URL") or UCDP_URL,
            license="© UCDP, academic & non-commercial use permitted",
            method=(
                "Aggregate UCDP battle-related deaths by type_of_conflict using the best-estimate "
                "column; join World Bank SP.POP.TOTL world population; compute per 100k; enforce "
                "1990-latest continuous coverage."
            ),
            data_start_year=years[0],
            notes=(
                "Conflict-type mapping: 1→interstate, 2→intrastate, 3→internationalized_intrastate, "
                "4→extrasystemic. Population denominator: World Bank WDI SP.POP.TOTL."
            ),
        )
        return PipelineResult(
            metric_id=self.id,
            artifacts={
                published("battle_deaths_total.json"): total_series,
                published("battle_deaths_by_type.json"): type_rows,
                published("battle_deaths_interstate.json"): interstate,
                published("battle_deaths.json"): interstate,
            },
            gaisum=gaisum,
            sources={"ucdp_battle_deaths": entry},
        )
