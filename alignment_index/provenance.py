"""
alignment_index.provenance — GAISUM run summaries and the source manifest.

GAISUM ("global alignment index summary") is the per-run diagnostic record:
row counts, year and value ranges, coverage statistics and metric-specific
notes. It is logged as a structured event and published as
logs/<id>.gaisum.json alongside the run's artifacts.

The source manifest (public/data/sources.json) maps a metric id to its
provenance entry. upsert_source() is pure: it takes the prior manifest and
returns a new one. Persistence belongs to the batch driver.

Design contract:
    - build_gaisum() never mutates the series it summarizes.
    - upsert_source() never mutates its input; replacing an id never
      duplicates it; the result is sorted by id.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field, field_validator

from alignment_index.transforms import round_half_away

logger = logging.getLogger("gai.provenance")


# ---------------------------------------------------------------------------
# Source manifest
# ---------------------------------------------------------------------------

class SourceManifestEntry(BaseModel):
    """Provenance record for one published metric.

    Unknown keys are kept so hand-edited manifest fields survive an upsert.
    """

    model_config = {"extra": "allow"}

    name: str
    domain: str
    unit: str
    source_org: str
    source_url: str
    license: str
    cadence: str = "annual"
    method: str
    updated_at: str = Field(..., description="ISO date (YYYY-MM-DD) of the run")
    data_start_year: Optional[int] = None
    type: str = "series"
    inputs: List[str] = Field(default_factory=list)
    produces: List[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("name", "source_org", "method")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


def upsert_source(
    manifest: Mapping[str, Any],
    source_id: str,
    entry: SourceManifestEntry | Mapping[str, Any],
) -> dict[str, Any]:
    """Return a new manifest with `source_id` inserted or replaced.

    The prior mapping is not modified. Keys of the result are sorted.
    """
    if not source_id or not source_id.strip():
        raise ValueError("source_id must not be blank")
    if not isinstance(entry, SourceManifestEntry):
        entry = SourceManifestEntry.model_validate(dict(entry))
    merged = {key: value for key, value in manifest.items() if key != source_id}
    merged[source_id] = entry.model_dump(mode="json", exclude_none=True)
    return {key: merged[key] for key in sorted(merged)}


# ---------------------------------------------------------------------------
# GAISUM
# ---------------------------------------------------------------------------

class Gaisum(BaseModel):
    """Per-run summary. Extra keys carry metric-specific aggregates."""

    model_config = {"extra": "allow"}

    id: str
    rows: int = Field(..., ge=0)
    rows_in: int = Field(0, ge=0)
    min_year: Optional[int] = None
    max_year: Optional[int] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    coverage_min: Optional[float] = None
    coverage_mean: Optional[float] = None
    coverage_max: Optional[float] = None
    notes: Dict[str, Any] = Field(default_factory=dict)
    artifacts: Dict[str, str] = Field(
        default_factory=dict,
        description="Published relative path → SHA-256 of its canonical bytes",
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def _coverage_stats(coverage: Sequence[float]) -> tuple[float | None, float | None, float | None]:
    if not coverage:
        return None, None, None
    return min(coverage), sum(coverage) / len(coverage), max(coverage)


def build_gaisum(
    metric_id: str,
    series: Sequence[Mapping[str, Any]],
    *,
    rows_in: int = 0,
    coverage: Sequence[float] | None = None,
    notes: Mapping[str, Any] | None = None,
    extra: Mapping[str, Any] | None = None,
) -> Gaisum:
    """Summarize a published series.

    Coverage statistics are rounded to 4 places; they are diagnostics, not
    published values.
    """
    years = [point["year"] for point in series]
    values = [point["value"] for point in series]
    cov_min, cov_mean, cov_max = _coverage_stats(list(coverage or ()))
    return Gaisum(
        id=metric_id,
        rows=len(series),
        rows_in=rows_in,
        min_year=min(years) if years else None,
        max_year=max(years) if years else None,
        min_value=min(values) if values else None,
        max_value=max(values) if values else None,
        coverage_min=None if cov_min is None else round_half_away(cov_min, 4),
        coverage_mean=None if cov_mean is None else round_half_away(cov_mean, 4),
        coverage_max=None if cov_max is None else round_half_away(cov_max, 4),
        notes=dict(notes or {}),
        **dict(extra or {}),
    )


def log_gaisum(gaisum: Gaisum) -> None:
    logger.info(json.dumps({"event": "GAISUM", **gaisum.to_dict()}, sort_keys=True))


def unresolved_sample(labels: Sequence[str], limit: int = 10) -> list[str]:
    """First `limit` distinct unresolved labels, sorted, for GAISUM notes."""
    return sorted({label for label in labels if label})[:limit]
