"""
tests/test_provenance.py — Source manifest upserts and GAISUM summaries.
"""

from __future__ import annotations

import logging
from typing import Any

import pytest
from pydantic import ValidationError

from alignment_index.provenance import (
    Gaisum,
    SourceManifestEntry,
    build_gaisum,
    log_gaisum,
    unresolved_sample,
    upsert_source,
)


def _entry(**overrides: Any) -> SourceManifestEntry:
    fields: dict[str, Any] = {
        "name": "Under-5 mortality",
        "domain": "Health & Wellbeing",
        "unit": "per 1,000 live births",
        "source_org": "UN IGME via World Bank WDI",
        "source_url": "https://data.worldbank.org/indicator/SH.DYN.MORT",
        "license": "CC BY 4.0",
        "method": "Population-weighted mean.",
        "updated_at": "2024-06-01",
    }
    fields.update(overrides)
    return SourceManifestEntry(**fields)


class TestUpsertSource:
    def test_does_not_mutate_prior(self) -> None:
        prior = {"z_metric": {"name": "old"}}
        merged = upsert_source(prior, "a_metric", _entry())
        assert prior == {"z_metric": {"name": "old"}}
        assert list(merged) == ["a_metric", "z_metric"]

    def test_replace_never_duplicates(self) -> None:
        manifest = upsert_source({}, "u5_mortality", _entry())
        manifest = upsert_source(manifest, "u5_mortality", _entry(updated_at="2025-01-01"))
        assert list(manifest) == ["u5_mortality"]
        assert manifest["u5_mortality"]["updated_at"] == "2025-01-01"

    def test_none_fields_omitted_extra_kept(self) -> None:
        manifest = upsert_source({}, "m", _entry(code="SP.REG.DTHS.ZS"))
        stored = manifest["m"]
        assert stored["code"] == "SP.REG.DTHS.ZS"
        assert "notes" not in stored
        assert stored["cadence"] == "annual"

    def test_mapping_entry_validated(self) -> None:
        manifest = upsert_source({}, "m", _entry().model_dump())
        assert manifest["m"]["name"] == "Under-5 mortality"
        with pytest.raises(ValidationError):
            upsert_source({}, "m", {**_entry().model_dump(), "name": "   "})

    def test_blank_id_rejected(self) -> None:
        with pytest.raises(ValueError):
            upsert_source({}, " ", _entry())


class TestGaisum:
    SERIES = [{"year": 2019, "value": 2.0}, {"year": 2020, "value": 1.0}]

    def test_statistics(self) -> None:
        series = [dict(point) for point in self.SERIES]
        gaisum = build_gaisum("m", series, rows_in=10, coverage=[0.5, 1.0], notes={"k": 1})
        assert (gaisum.rows, gaisum.rows_in) == (2, 10)
        assert (gaisum.min_year, gaisum.max_year) == (2019, 2020)
        assert (gaisum.min_value, gaisum.max_value) == (1.0, 2.0)
        assert (gaisum.coverage_min, gaisum.coverage_mean, gaisum.coverage_max) == (0.5, 0.75, 1.0)
        assert gaisum.notes == {"k": 1}
        assert series == self.SERIES

    def test_empty_series(self) -> None:
        gaisum = build_gaisum("m", [])
        assert gaisum.rows == 0
        assert gaisum.min_year is None
        assert gaisum.coverage_mean is None

    def test_coverage_ties_round_away_from_zero(self) -> None:
        """0.03125 is exact in binary; half-even would give 0.0312."""
        gaisum = build_gaisum("m", self.SERIES, coverage=[0.03125])
        assert (gaisum.coverage_min, gaisum.coverage_mean, gaisum.coverage_max) == (0.0313, 0.0313, 0.0313)

    def test_extra_fields_serialized(self) -> None:
        gaisum = build_gaisum("m", self.SERIES, extra={"coverage_countries": 3})
        data = gaisum.to_dict()
        assert data["coverage_countries"] == 3
        assert data["artifacts"] == {}
        assert Gaisum.model_validate(data).rows == 2

    def test_logged_as_event(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="gai.provenance"):
            log_gaisum(build_gaisum("m", self.SERIES))
        assert '"event": "GAISUM"' in caplog.text

    def test_unresolved_sample(self) -> None:
        assert unresolved_sample(["b", "a", "a", ""]) == ["a", "b"]
        assert unresolved_sample([f"c{i:02d}" for i in range(20)], limit=3) == ["c00", "c01", "c02"]
