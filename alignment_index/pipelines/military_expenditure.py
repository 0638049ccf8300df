"""
alignment_index.pipelines.military_expenditure — SIPRI military expenditure.

Three global series, each with a by-country companion:
    per capita (current USD)   Σ expenditure / Σ population
    per capita (constant USD)  same, each country-year deflated to 2020 prices
    % of GDP                   Σ(share · GDP) / Σ GDP · 100

Only country-years with both a positive expenditure and a population enter
the per-capita sums. The deflator must be rebased to 2020 = 100; years
without a deflator index are left out of the constant-USD series and logged.
"""

from __future__ import annotations

import logging

from alignment_index.aggregation import AverageOnDisagreement, ratio_of_sums, reconcile
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
from alignment_index.tabular import Table, parse_float, parse_year, require_column
from alignment_index.transforms import Deflator, per_capita, percentage_share
from alignment_index.validation import SeriesRules, validate_by_country, validate_series

MILEX_FILE = "sipri_milex.csv"
PERCENT_GDP_FILE = "sipri_milex_percent_gdp.csv"
DEFLATOR_FILE = "wld_gdp_deflator.csv"
START_YEAR = 1990
BASE_YEAR = 2020
DECIMALS = 1
PERCENT_DECIMALS = 2

PER_CAPITA = "military_expenditure_per_capita"
CONSTANT_USD = "military_expenditure_per_capita_constant_usd"
PERCENT_GDP = "military_expenditure_percent_gdp"

PER_CAPITA_RULES = SeriesRules(hard_min=0.0)
COUNTRY_PER_CAPITA_RULES = SeriesRules(hard_min=0.0, warn_min=50.0, warn_max=3000.0)
PERCENT_RULES = SeriesRules(hard_min=0.0, hard_max=100.0)


def load_deflator(table: Table, base_year: int = BASE_YEAR, start_year: int = START_YEAR) -> Deflator:
    """Deflator from a year/index table; non-positive indices are ignored."""
    year_col = require_column(table, ("year",), concept="year")
    index_col = require_column(
        table, ("deflator_index_2020_base", "deflator_index", "index", "value"), fuzzy=("deflator",),
        concept="deflator_index",
    )
    indices: dict[int, float] = {}
    for i, record in enumerate(table, start=2):
        year = parse_year(record.get(year_col), label=table.label, field_name=year_col, row=i)
        index = parse_float(record.get(index_col), label=table.label, field_name=index_col, row=i)
        if year is None or index is None or year < start_year or index <= 0:
            continue
        indices[year] = index
    return Deflator(indices, base_year)


class MilitaryExpenditure(MetricPipeline):
    id = PER_CAPITA
    title = "Military expenditure per capita"
    inputs = (
        f"data/raw/{MILEX_FILE}",
        f"data/raw/{PERCENT_GDP_FILE}",
        f"data/raw/{DEFLATOR_FILE}",
        "data/raw/pop_by_country.csv",
    )

    def run(self, ctx: PipelineContext) -> PipelineResult:
        population = ctx.load_population(start_year=START_YEAR)
        resolver = CountryResolver(population.name_index)
        deflator = load_deflator(ctx.read_raw_table(DEFLATOR_FILE, label="deflator"))
        self.log("deflator_loaded", years=f"{deflator.years()[0]}-{deflator.years()[-1]}", base_year=BASE_YEAR)

        # -- per capita -----------------------------------------------------
        milex_load = load_observations(
            ctx.read_raw_table(MILEX_FILE, label="sipri_milex"),
            value_columns=("military_expenditure_usd", "expenditure_usd", "value"),
            resolver=resolver,
            start_year=START_YEAR,
        )
        expenditure, milex_report = reconcile(
            (obs for obs in milex_load.observations if obs.value > 0),
            AverageOnDisagreement(),
            label=self.id,
        )

        nominal_country: dict[tuple[str, int], float] = {}
        real_country: dict[tuple[str, int], float] = {}
        nominal_pairs: dict[int, list[tuple[float, float]]] = {}
        real_pairs: dict[int, list[tuple[float, float]]] = {}
        missing_deflator: set[int] = set()
        no_population = 0
        for (iso3, year), usd in sorted(expenditure.items()):
            pop = population.get(iso3, year)
            if pop is None:
                no_population += 1
                continue
            nominal_country[(iso3, year)] = per_capita(usd, pop)
            nominal_pairs.setdefault(year, []).append((usd, pop))
            real = deflator.real(usd, year)
            if real is None:
                missing_deflator.add(year)
                continue
            real_country[(iso3, year)] = per_capita(real, pop)
            real_pairs.setdefault(year, []).append((real, pop))
        if missing_deflator:
            self.log("deflator_missing_years", logging.WARNING, years=sorted(missing_deflator))

        nominal_global = {year: ratio_of_sums(pairs) for year, pairs in nominal_pairs.items()}
        real_global = {year: ratio_of_sums(pairs) for year, pairs in real_pairs.items()}

        # -- % of GDP -------------------------------------------------------
        percent_table = ctx.read_raw_table(PERCENT_GDP_FILE, label="sipri_milex_percent_gdp")
        share_load = load_observations(
            percent_table,
            value_columns=("military_expenditure_percent_gdp", "percent_gdp", "share_of_gdp"),
            resolver=resolver,
            start_year=START_YEAR,
        )
        gdp_load = load_observations(
            percent_table,
            value_columns=("gdp_current_usd", "gdp_usd", "gdp"),
            resolver=CountryResolver(population.name_index),
            start_year=START_YEAR,
        )
        shares, _ = reconcile(share_load.observations, AverageOnDisagreement(), label=PERCENT_GDP)
        gdp, _ = reconcile(gdp_load.observations, AverageOnDisagreement(), label=PERCENT_GDP)

        percent_country: dict[tuple[str, int], float] = {}
        percent_pairs: dict[int, list[tuple[float, float]]] = {}
        for key, share in sorted(shares.items()):
            weight = gdp.get(key)
            if weight is None or weight <= 0:
                continue
            percent_country[key] = share
            percent_pairs.setdefault(key[1], []).append((share / 100.0 * weight, weight))
        percent_global = {}
        for year, pairs in percent_pairs.items():
            weighted = sum(part for part, _ in pairs)
            total = sum(weight for _, weight in pairs)
            percent_global[year] = percentage_share(weighted, total)

        # -- payloads -------------------------------------------------------
        outputs = {
            PER_CAPITA: (nominal_global, nominal_country, DECIMALS, PER_CAPITA_RULES, COUNTRY_PER_CAPITA_RULES),
            CONSTANT_USD: (real_global, real_country, DECIMALS, PER_CAPITA_RULES, PER_CAPITA_RULES),
            PERCENT_GDP: (percent_global, percent_country, PERCENT_DECIMALS, PERCENT_RULES, PERCENT_RULES),
        }
        artifacts = {}
        summaries = {}
        for name, (global_values, country_values, decimals, rules, country_rules) in outputs.items():
            global_values = {year: value for year, value in global_values.items() if value is not None and value > 0}
            if not global_values:
                raise EmptyOutputError(name, "global series empty")
            series = series_payload(global_values, decimals)
            by_country = by_country_payload(country_values, population, decimals)
            validate_series(series, rules, name)
            warnings = validate_by_country(by_country, country_rules, f"{name}.by_country")
            artifacts[published(f"{name}.json")] = series
            artifacts[published(f"{name}.by_country.json")] = by_country
            summaries[name] = {
                "rows": len(series),
                "by_country_rows": len(by_country),
                "min_year": series[0]["year"],
                "max_year": series[-1]["year"],
                "out_of_band": len(warnings),
            }

        gaisum = build_gaisum(
            self.id,
            artifacts[published(f"{PER_CAPITA}.json")],
            rows_in=milex_load.rows_in,
            notes={
                "series": summaries,
                "rows_no_population": no_population,
                "deflator_base_year": BASE_YEAR,
                "deflator_missing_years": sorted(missing_deflator),
                **milex_load.to_notes(),
                **milex_report.to_notes(),
            },
        )
        sources = {
            self.id: source_entry(
                ctx,
                name="Military expenditure per capita",
                domain="Safety & Conflict",
                unit="USD per person",
                source_org="SIPRI",
                source_url="https://www.sipri.org/databases/milex",
                license="CC BY 4.0",
                method=(
                    "Global per-capita = Σ expenditure / Σ population over countries with both; "
                    "constant 2020 USD via the World GDP deflator (2020 = 100); % of GDP weighted by "
                    "current-USD GDP. Round to 1 decimal (2 for % of GDP)."
                ),
                data_start_year=START_YEAR,
                type="derived",
                inputs=["sipri_milex", "wb_gdp_deflator_wld", "wdi_sp_pop_totl"],
                produces=sorted(artifacts),
            ),
            "sipri_milex": source_entry(
                ctx,
                name="SIPRI Military Expenditure Database",
                domain="Safety & Conflict",
                unit="current USD",
                source_org="SIPRI",
                source_url="https://www.sipri.org/databases/milex",
                license="CC BY 4.0",
                method="Country-year military expenditure in current USD and as a share of GDP.",
            ),
            "wb_gdp_deflator_wld": source_entry(
                ctx,
                name="World Bank GDP deflator (World, NY.GDP.MKTP.CD / NY.GDP.MKTP.KD)",
                domain="Economics & Poverty",
                unit="index (2020 = 100)",
                source_org="World Bank",
                source_url="https://data.worldbank.org/indicator/NY.GDP.DEFL.ZS?locations=WLD",
                license="CC BY 4.0",
                method="World GDP deflator rebased so that 2020 = 100.",
            ),
        }
        return PipelineResult(metric_id=self.id, artifacts=artifacts, gaisum=gaisum, sources=sources)
