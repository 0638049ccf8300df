"""
alignment_index.population — Read-only population index.

The default weight source for population-weighted means and the coverage
denominator. Built once per pipeline run, never mutated afterwards.

Design contract:
    - Only well-formed, non-aggregate ISO3 rows with a positive population
      enter the country index. WLD rows are kept separately as world totals.
    - Duplicate (iso3, year) rows keep the larger value and are counted.
    - Every accessor returns values in deterministic (sorted) order.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping

from alignment_index.constants import ISO_WORLD
from alignment_index.countries import canonicalize_country, is_country_iso
from alignment_index.tabular import Table, optional_column, parse_float, parse_year, require_column

logger = logging.getLogger("gai.population")

ISO_COLUMNS: tuple[str, ...] = ("iso3", "iso", "country_iso", "iso_code", "country_code", "countrycode", "countryiso3code")
YEAR_COLUMNS: tuple[str, ...] = ("year", "date", "time")
POPULATION_COLUMNS: tuple[str, ...] = ("population", "pop", "sp_pop_totl", "value")
NAME_COLUMNS: tuple[str, ...] = ("country", "country_name", "name")


@dataclass(frozen=True, slots=True)
class PopulationRow:
    iso3: str
    year: int
    population: float
    name: str = ""


class PopulationIndex:
    """Immutable iso3:year → population mapping with name lookups."""

    __slots__ = ("_by_year", "_names", "_name_index", "_world", "duplicates")

    def __init__(
        self,
        by_year: Mapping[int, Mapping[str, float]],
        names: Mapping[str, str],
        name_index: Mapping[str, str],
        world: Mapping[int, float],
        duplicates: int = 0,
    ) -> None:
        self._by_year = MappingProxyType({
            year: MappingProxyType(dict(sorted(values.items())))
            for year, values in sorted(by_year.items())
        })
        self._names = MappingProxyType(dict(names))
        self._name_index = MappingProxyType(dict(name_index))
        self._world = MappingProxyType(dict(sorted(world.items())))
        self.duplicates = duplicates

    # -- construction -------------------------------------------------------

    @classmethod
    def from_rows(cls, rows: Iterable[PopulationRow], start_year: int | None = None) -> PopulationIndex:
        by_year: dict[int, dict[str, float]] = {}
        names: dict[str, str] = {}
        name_index: dict[str, str] = {}
        world: dict[int, float] = {}
        duplicates = 0

        for row in rows:
            if start_year is not None and row.year < start_year:
                continue
            if not (row.population > 0):
                continue
            iso = row.iso3.strip().upper()
            if iso == ISO_WORLD:
                world[row.year] = row.population
                continue
            if not is_country_iso(iso):
                continue
            year_values = by_year.setdefault(row.year, {})
            existing = year_values.get(iso)
            if existing is not None and existing != row.population:
                duplicates += 1
                kept = max(existing, row.population)
                logger.warning(json.dumps({
                    "event": "population_duplicate",
                    "iso3": iso,
                    "year": row.year,
                    "kept": kept,
                }))
                year_values[iso] = kept
            else:
                year_values[iso] = row.population
            if row.name:
                names.setdefault(iso, row.name)
                name_index.setdefault(canonicalize_country(row.name), iso)

        return cls(by_year, names, name_index, world, duplicates)

    @classmethod
    def from_table(cls, table: Table, start_year: int | None = None) -> PopulationIndex:
        """Build from a CSV with iso3/year/population (+ optional country) columns."""
        iso_col = require_column(table, ISO_COLUMNS, fuzzy=("iso",), concept="iso3")
        year_col = require_column(table, YEAR_COLUMNS, fuzzy=("year",), concept="year")
        pop_col = require_column(table, POPULATION_COLUMNS, fuzzy=("pop",), concept="population")
        name_col = optional_column(table, NAME_COLUMNS, fuzzy=("name",))

        def rows() -> Iterable[PopulationRow]:
            for i, record in enumerate(table, start=2):
                year = parse_year(record.get(year_col), label=table.label, row=i)
                population = parse_float(
                    record.get(pop_col), label=table.label, field_name=pop_col, row=i,
                )
                if year is None or population is None:
                    continue
                yield PopulationRow(
                    iso3=record.get(iso_col, ""),
                    year=year,
                    population=population,
                    name=record.get(name_col, "") if name_col else "",
                )

        return cls.from_rows(rows(), start_year=start_year)

    # -- lookups ------------------------------------------------------------

    def get(self, iso3: str, year: int) -> float | None:
        values = self._by_year.get(year)
        return values.get(iso3) if values is not None else None

    def __contains__(self, key: tuple[str, int]) -> bool:
        iso3, year = key
        return self.get(iso3, year) is not None

    def years(self) -> list[int]:
        return list(self._by_year)

    def for_year(self, year: int) -> Mapping[str, float]:
        """ISO3 → population for one year, sorted by ISO3."""
        return self._by_year.get(year, MappingProxyType({}))

    def total(self, year: int) -> float:
        return sum(self.for_year(year).values())

    def world(self, year: int) -> float | None:
        return self._world.get(year)

    def world_years(self) -> list[int]:
        return list(self._world)

    def country_name(self, iso3: str, fallback: str = "") -> str:
        return self._names.get(iso3) or fallback or iso3

    @property
    def name_index(self) -> Mapping[str, str]:
        return self._name_index

    def __len__(self) -> int:
        return sum(len(values) for values in self._by_year.values())
