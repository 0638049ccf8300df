"""
alignment_index.pipelines.common — Loading helpers shared by metric pipelines.

Design contract:
    - load_observations() is the one place a country-year table becomes
      Observation records. Every skipped row is counted by reason.
    - World Bank pseudo-codes never become observations; WLD values are
      returned separately as published world aggregates.
    - load_wdi_table() returns the same Table shape whether the indicator
      came from the API or from the cached snapshot under data/raw/wdi.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from alignment_index.aggregation import Observation
from alignment_index.constants import AGGREGATE_ISO3, ISO_WORLD, YEAR_MAX, YEAR_MIN
from alignment_index.countries import CountryResolver
from alignment_index.errors import FetchError, InputError, MissingInputError
from alignment_index.fetch import fetch_wdi_indicator, wdi_records, write_cache
from alignment_index.pipeline import PipelineContext
from alignment_index.population import ISO_COLUMNS, NAME_COLUMNS, YEAR_COLUMNS, PopulationIndex
from alignment_index.provenance import SourceManifestEntry, unresolved_sample
from alignment_index.tabular import Table, optional_column, parse_float, parse_table, parse_year, require_column

logger = logging.getLogger("gai.pipelines")

WDI_API_BASE: str = "https://api.worldbank.org/v2"
WDI_POPULATION: str = "SP.POP.TOTL"
WDI_CACHE_DIR: str = "wdi"
WDI_COLUMNS: tuple[str, ...] = ("iso3", "country", "year", "value")


# ---------------------------------------------------------------------------
# Country-year observations
# ---------------------------------------------------------------------------

@dataclass
class ObservationLoad:
    """Observations read from one table plus the bookkeeping of skipped rows."""
    observations: list[Observation] = field(default_factory=list)
    rows_in: int = 0
    skipped_missing: int = 0
    out_of_range: int = 0
    aggregates: int = 0
    unresolved: list[str] = field(default_factory=list)
    world: dict[int, float] = field(default_factory=dict)

    def to_notes(self) -> dict[str, Any]:
        return {
            "rows_skipped_missing": self.skipped_missing,
            "rows_out_of_range": self.out_of_range,
            "rows_aggregate": self.aggregates,
            "rows_unresolved": len(self.unresolved),
            "unresolved_sample": unresolved_sample(self.unresolved),
        }


def load_observations(
    table: Table,
    *,
    value_columns: Sequence[str],
    resolver: CountryResolver,
    value_fuzzy: Sequence[str] = (),
    source_columns: Sequence[str] = (),
    default_source: str = "",
    start_year: int | None = None,
    end_year: int | None = None,
) -> ObservationLoad:
    """Read iso3/name/year/value rows into Observations.

    A row needs a year and a value; rows missing either are counted, not
    raised. A malformed number or a year outside [YEAR_MIN, YEAR_MAX] is an
    InputError.
    """
    label = table.label
    value_col = require_column(table, value_columns, value_fuzzy, concept="value")
    year_col = require_column(table, YEAR_COLUMNS, fuzzy=("year",), concept="year")
    iso_col = optional_column(table, ISO_COLUMNS, fuzzy=("iso",))
    name_col = optional_column(table, NAME_COLUMNS, fuzzy=("country",))
    if iso_col is None and name_col is None:
        require_column(table, ISO_COLUMNS + NAME_COLUMNS, concept="country")
    source_col = optional_column(table, source_columns) if source_columns else None

    load = ObservationLoad()
    for i, record in enumerate(table, start=2):
        load.rows_in += 1
        year = parse_year(record.get(year_col), label=label, field_name=year_col, row=i)
        value = parse_float(record.get(value_col), label=label, field_name=value_col, row=i)
        if year is None or value is None:
            load.skipped_missing += 1
            continue
        if not YEAR_MIN <= year <= YEAR_MAX:
            raise InputError(label, year_col, str(year), f"year outside {YEAR_MIN}-{YEAR_MAX}", i)
        if (start_year is not None and year < start_year) or (end_year is not None and year > end_year):
            load.out_of_range += 1
            continue

        code = (record.get(iso_col, "") if iso_col else "").strip().upper()
        name = record.get(name_col, "").strip() if name_col else ""
        if code == ISO_WORLD:
            load.world[year] = value
            continue
        if code in AGGREGATE_ISO3:
            load.aggregates += 1
            continue

        resolution = resolver.resolve(name or code, iso_hint=code)
        if resolution.iso3 is None:
            if resolution.reason == "aggregate":
                load.aggregates += 1
            else:
                load.unresolved.append(name or code)
            continue

        source = record.get(source_col, "").strip() if source_col else ""
        load.observations.append(Observation(resolution.iso3, year, value, source or default_source))

    logger.info(json.dumps({
        "event": "observations_loaded",
        "table": label,
        "rows_in": load.rows_in,
        "observations": len(load.observations),
        "world_rows": len(load.world),
        **load.to_notes(),
    }))
    return load


# ---------------------------------------------------------------------------
# World Bank WDI
# ---------------------------------------------------------------------------

def _records_to_csv(records: Sequence[dict[str, str]]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=WDI_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for record in sorted(records, key=lambda r: (r["iso3"], r["year"])):
        writer.writerow(record)
    return buffer.getvalue()


def load_wdi_table(ctx: PipelineContext, indicator: str, country: str = "all") -> Table:
    """One WDI indicator as an iso3/country/year/value Table.

    OFFLINE=1 reads data/raw/wdi/<indicator>.csv. Otherwise every API page is
    fetched and the snapshot refreshed; on fetch failure the snapshot is used
    when present.
    """
    suffix = "" if country == "all" else f"_{country}"
    cache_path = ctx.raw_path(WDI_CACHE_DIR, f"{indicator}{suffix}.csv")
    label = f"wdi:{indicator}{suffix}"

    if ctx.settings.offline:
        if not cache_path.is_file():
            raise MissingInputError(label, str(cache_path), "OFFLINE=1 and no cached snapshot")
        return parse_table(cache_path.read_text(encoding="utf-8-sig"), label=label).require_headers()

    base_url = ctx.settings.source_override("WDI_API_BASE") or WDI_API_BASE
    try:
        rows = fetch_wdi_indicator(ctx.fetcher, base_url, indicator, country)
    except FetchError as exc:
        if not cache_path.is_file():
            raise
        logger.warning(json.dumps({
            "event": "source_fallback_cached",
            "source": label,
            "detail": str(exc),
            "path": str(cache_path),
        }))
        return parse_table(cache_path.read_text(encoding="utf-8-sig"), label=label).require_headers()

    text = _records_to_csv(wdi_records(rows))
    write_cache(cache_path, text.encode("utf-8"))
    return parse_table(text, label=label).require_headers()


def wdi_population(ctx: PipelineContext, start_year: int | None = None) -> PopulationIndex:
    """SP.POP.TOTL for every country plus WLD, cached for the run."""
    return ctx.cached_population(
        f"wdi:{WDI_POPULATION}", start_year, lambda: load_wdi_table(ctx, WDI_POPULATION),
    )


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------

def source_entry(ctx: PipelineContext, **fields: Any) -> SourceManifestEntry:
    """Manifest entry stamped with the run date."""
    return SourceManifestEntry(updated_at=ctx.run_date, **fields)


POPULATION_SOURCE_ID: str = "wdi_sp_pop_totl"


def population_source(ctx: PipelineContext) -> SourceManifestEntry:
    return source_entry(
        ctx,
        name="World Bank Population (SP.POP.TOTL)",
        domain="Demographics",
        unit="people",
        source_org="World Bank",
        source_url=f"{WDI_API_BASE}/country/all/indicator/{WDI_POPULATION}",
        license="CC BY 4.0",
        method="Use ISO3 country populations to construct annual population weights.",
        data_start_year=1960,
    )
