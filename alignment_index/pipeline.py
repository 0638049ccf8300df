"""
alignment_index.pipeline — The contract every metric pipeline implements.

A pipeline is a thin configuration over the engine:

    raw table(s) → tabular → countries → [intervals] → aggregation
        → transforms → validation → PipelineResult

run(ctx) computes and validates everything in memory and returns a
PipelineResult. Nothing is written by a pipeline itself; publish_result()
writes the artifacts and the GAISUM file together, all or nothing.

Design contract:
    - Pipelines share no runtime state. The context caches the population
      index per (file, start year); the index is immutable.
    - Published payloads are explicitly sorted before serialization.
    - Rounding happens once, in the payload helpers below.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from alignment_index.aggregation import CoverageAggregate
from alignment_index.artifacts import artifact_digests, publish_artifacts, read_text, serialize_artifacts
from alignment_index.constants import GAISUM_DIR, PUBLISHED_DIR
from alignment_index.errors import MissingInputError
from alignment_index.fetch import Fetcher
from alignment_index.intervals import analysis_cutoff
from alignment_index.population import PopulationIndex
from alignment_index.provenance import Gaisum, SourceManifestEntry, log_gaisum
from alignment_index.settings import Settings
from alignment_index.tabular import Table, parse_table
from alignment_index.transforms import round_half_away

logger = logging.getLogger("gai.pipeline")

POPULATION_FILE: str = "pop_by_country.csv"
"""Default population snapshot under data/raw."""

COVERAGE_DECIMALS: int = 3


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

@dataclass
class PipelineContext:
    """Everything a pipeline may touch: settings, network, clock, raw files."""
    settings: Settings
    fetcher: Fetcher
    today: date = field(default_factory=lambda: datetime.now(UTC).date())
    _population_cache: dict[tuple[str, int | None], PopulationIndex] = field(default_factory=dict, repr=False)

    @property
    def run_date(self) -> str:
        return self.today.isoformat()

    @property
    def cutoff(self) -> datetime:
        return analysis_cutoff(self.today)

    def raw_path(self, *parts: str) -> Path:
        return self.settings.raw_dir.joinpath(*parts)

    def override_path(self, env_name: str) -> Path | None:
        """Path named by an environment override, resolved against the root."""
        value = self.settings.source_override(env_name)
        if not value:
            return None
        path = Path(value)
        return path if path.is_absolute() else self.settings.root / path

    def read_raw_table(self, name: str, label: str | None = None) -> Table:
        path = self.raw_path(name)
        if not path.is_file():
            raise MissingInputError(label or name, str(path), "refresh the raw snapshot under data/raw")
        return parse_table(read_text(path), label=label or name).require_headers()

    def load_population(self, name: str = POPULATION_FILE, start_year: int | None = None) -> PopulationIndex:
        return self.cached_population(name, start_year, lambda: self.read_raw_table(name, label="population"))

    def cached_population(
        self,
        name: str,
        start_year: int | None,
        load_table: Callable[[], Table],
    ) -> PopulationIndex:
        """Build a population index once per (name, start year) for this run."""
        key = (name, start_year)
        if key not in self._population_cache:
            index = PopulationIndex.from_table(load_table(), start_year)
            logger.info(json.dumps({
                "event": "population_loaded",
                "file": name,
                "rows": len(index),
                "years": len(index.years()),
                "world_years": len(index.world_years()),
                "duplicates": index.duplicates,
            }))
            self._population_cache[key] = index
        return self._population_cache[key]


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class PipelineResult:
    """In-memory outcome of a successful run.

    Fields:
        metric_id: Pipeline id.
        artifacts: Path relative to the project root → JSON payload.
        gaisum: Run summary; its `artifacts` digests are filled on publish.
        sources: Manifest id → entry to upsert.
    """
    metric_id: str
    artifacts: dict[str, Any]
    gaisum: Gaisum
    sources: dict[str, SourceManifestEntry] = field(default_factory=dict)

    @property
    def gaisum_path(self) -> str:
        return f"{GAISUM_DIR}/{self.metric_id}.gaisum.json"


def published(name: str) -> str:
    """Relative path of a published data file."""
    return f"{PUBLISHED_DIR}/{name}"


def publish_result(root: Path, result: PipelineResult) -> Gaisum:
    """Write every artifact and the GAISUM file in one atomic publication."""
    serialized = serialize_artifacts(result.artifacts)
    gaisum = result.gaisum.model_copy(update={"artifacts": artifact_digests(serialized)})
    serialized.update(serialize_artifacts({result.gaisum_path: gaisum.to_dict()}))
    publish_artifacts(root, serialized)
    log_gaisum(gaisum)
    return gaisum


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------

def series_payload(values: Mapping[int, float], decimals: int) -> list[dict[str, Any]]:
    return [
        {"year": year, "value": round_half_away(values[year], decimals)}
        for year in sorted(values)
    ]


def by_country_payload(
    values: Mapping[tuple[str, int], float],
    names: Mapping[str, str] | PopulationIndex,
    decimals: int,
) -> list[dict[str, Any]]:
    rows = []
    for iso3, year in sorted(values):
        if isinstance(names, PopulationIndex):
            country = names.country_name(iso3)
        else:
            country = names.get(iso3) or iso3
        rows.append({
            "iso3": iso3,
            "country": country,
            "year": year,
            "value": round_half_away(values[(iso3, year)], decimals),
        })
    return rows


def by_type_payload(
    values: Mapping[tuple[int, str], float],
    type_order: Iterable[str],
    decimals: int,
) -> list[dict[str, Any]]:
    rank = {name: i for i, name in enumerate(type_order)}
    return [
        {"year": year, "type": kind, "value": round_half_away(values[(year, kind)], decimals)}
        for year, kind in sorted(values, key=lambda key: (key[0], rank[key[1]]))
    ]


def coverage_payload(aggregates: Iterable[CoverageAggregate]) -> list[dict[str, Any]]:
    rows = []
    for agg in sorted(aggregates, key=lambda a: a.year):
        row = agg.to_coverage_row()
        row["coverage"] = round_half_away(row["coverage"], COVERAGE_DECIMALS)
        rows.append(row)
    return rows


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------

class MetricPipeline:
    """Base class. Subclasses set the class attributes and implement run()."""

    id: str = ""
    title: str = ""
    inputs: tuple[str, ...] = ()

    def run(self, ctx: PipelineContext) -> PipelineResult:
        raise NotImplementedError

    def log(self, event: str, level: int = logging.INFO, **fields: Any) -> None:
        logger.log(level, json.dumps({"event": event, "metric": self.id, **fields}, default=str))
