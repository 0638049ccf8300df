"""
tests/test_verify_datasets.py — Row contracts, published-data integrity, CLI.

Covers:
    - Row models and ordering per file kind
    - validate_published() exit codes, first failure wins
    - verify_datasets CLI: human, --json, --quiet
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from alignment_index.artifacts import artifact_digests, publish_artifacts, serialize_artifacts
from alignment_index.contracts import (
    ByCountryRow,
    ByTypeRow,
    CoverageRow,
    SeriesPoint,
    contract_for,
    summarize,
    validate_rows,
)
from alignment_index.dataset_integrity import (
    EXIT_CONTRACT_VIOLATION,
    EXIT_HASH_MISMATCH,
    EXIT_MANIFEST_MISMATCH,
    EXIT_MISSING_FILES,
    EXIT_OK,
    validate_published,
)
from alignment_index.provenance import SourceManifestEntry, upsert_source
from alignment_index.verify_datasets import main as cli_main

SERIES = [{"year": 2019, "value": 5.5}, {"year": 2020, "value": 6.5}]
COVERAGE = [
    {"year": 2019, "coverage": 1.0, "n_iso": 2, "n_pop": 2},
    {"year": 2020, "coverage": 0.75, "n_iso": 1, "n_pop": 2},
]
BY_COUNTRY = [
    {"iso3": "FRA", "country": "France", "year": 2019, "value": 4.0},
    {"iso3": "USA", "country": "United States", "year": 2019, "value": 6.0},
]
BY_TYPE = [
    {"year": 1990, "type": "interstate", "value": 0.1},
    {"year": 1990, "type": "intrastate", "value": 0.0},
]


def _manifest() -> dict[str, Any]:
    entry = SourceManifestEntry(
        name="Under-5 mortality",
        domain="Health & Wellbeing",
        unit="per 1,000 live births",
        source_org="UN IGME via World Bank WDI",
        source_url="https://data.worldbank.org/indicator/SH.DYN.MORT",
        license="CC BY 4.0",
        method="Population-weighted mean.",
        updated_at="2024-06-01",
    )
    return upsert_source({}, "u5_mortality", entry)


def _publish(root: Path, **overrides: Any) -> dict[str, str]:
    """Publish a small valid tree. Returns the GAISUM digests."""
    artifacts: dict[str, Any] = {
        "public/data/u5_mortality.json": SERIES,
        "public/data/u5_mortality_coverage.json": COVERAGE,
        "public/data/m.by_country.json": BY_COUNTRY,
        "public/data/battle_deaths_by_type.json": BY_TYPE,
    }
    artifacts.update(overrides)
    serialized = serialize_artifacts(artifacts)
    digests = artifact_digests(serialized)
    serialized.update(serialize_artifacts({
        "public/data/sources.json": _manifest(),
        "logs/u5_mortality.gaisum.json": {"id": "u5_mortality", "rows": 2, "artifacts": digests},
    }))
    publish_artifacts(root, serialized)
    return digests


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------

class TestContracts:
    def test_contract_by_suffix(self) -> None:
        assert contract_for("u5_mortality.json") is SeriesPoint
        assert contract_for("u5_mortality_coverage.json") is CoverageRow
        assert contract_for("battle_deaths_by_type.json") is ByTypeRow
        assert contract_for("military_expenditure_per_capita.by_country.json") is ByCountryRow

    def test_valid_payloads(self) -> None:
        assert validate_rows(SeriesPoint, SERIES) == []
        assert validate_rows(CoverageRow, COVERAGE) == []
        assert validate_rows(ByCountryRow, BY_COUNTRY) == []
        assert validate_rows(ByTypeRow, BY_TYPE) == []
        assert summarize(SERIES) == {"rows": 2, "min_year": 2019, "max_year": 2020}

    def test_shape_errors(self) -> None:
        assert validate_rows(SeriesPoint, {"year": 2020}) == ["expected a JSON array, got dict"]
        assert validate_rows(SeriesPoint, []) == ["array is empty"]

    def test_row_errors(self) -> None:
        errors = validate_rows(SeriesPoint, [{"year": 2020, "value": "1.0"}, {"year": 2021, "value": 1.0, "x": 1}])
        assert len(errors) == 2
        assert errors[0].startswith("row 0: value")
        assert errors[1].startswith("row 1: x")

    def test_ordering(self) -> None:
        errors = validate_rows(SeriesPoint, list(reversed(SERIES)))
        assert errors == ["row 1: key [2019] not strictly after [2020]"]
        assert validate_rows(ByTypeRow, list(reversed(BY_TYPE)))

    def test_row_rules(self) -> None:
        assert validate_rows(ByCountryRow, [{"iso3": "usa", "country": "x", "year": 2020, "value": 1.0}])
        assert validate_rows(ByTypeRow, [{"year": 2020, "type": "civil", "value": 1.0}])
        assert validate_rows(CoverageRow, [{"year": 2020, "coverage": 1.2, "n_iso": 1, "n_pop": 1}])
        assert validate_rows(CoverageRow, [{"year": 2020, "coverage": 0.5, "n_iso": 3, "n_pop": 2}])


# ---------------------------------------------------------------------------
# validate_published
# ---------------------------------------------------------------------------

class TestValidatePublished:
    def test_valid_tree(self, tmp_path: Path) -> None:
        _publish(tmp_path)
        report = validate_published(tmp_path)
        assert report.valid, report.errors
        assert report.exit_code == EXIT_OK
        assert {check["check"] for check in report.checks} >= {
            "directory_exists", "data_files", "source_manifest", "gaisum_digests",
            "contract:u5_mortality.json",
        }

    def test_missing_directory(self, tmp_path: Path) -> None:
        report = validate_published(tmp_path)
        assert report.exit_code == EXIT_MISSING_FILES
        assert not report.valid

    def test_no_data_files(self, tmp_path: Path) -> None:
        publish_artifacts(tmp_path, serialize_artifacts({"public/data/sources.json": _manifest()}))
        assert validate_published(tmp_path).exit_code == EXIT_MISSING_FILES

    def test_contract_violation(self, tmp_path: Path) -> None:
        _publish(tmp_path, **{"public/data/u5_mortality.json": list(reversed(SERIES))})
        report = validate_published(tmp_path)
        assert report.exit_code == EXIT_CONTRACT_VIOLATION
        assert any("u5_mortality.json" in error for error in report.errors)

    def test_manifest_missing(self, tmp_path: Path) -> None:
        _publish(tmp_path)
        (tmp_path / "public/data/sources.json").unlink()
        assert validate_published(tmp_path).exit_code == EXIT_MANIFEST_MISMATCH

    def test_manifest_unsorted(self, tmp_path: Path) -> None:
        _publish(tmp_path)
        entry = _manifest()["u5_mortality"]
        (tmp_path / "public/data/sources.json").write_text(
            json.dumps({"z": entry, "a": entry}), encoding="utf-8",
        )
        assert validate_published(tmp_path).exit_code == EXIT_MANIFEST_MISMATCH

    def test_manifest_invalid_entry(self, tmp_path: Path) -> None:
        _publish(tmp_path)
        (tmp_path / "public/data/sources.json").write_text(
            json.dumps({"u5_mortality": {"name": "x"}}), encoding="utf-8",
        )
        assert validate_published(tmp_path).exit_code == EXIT_MANIFEST_MISMATCH

    def test_hash_mismatch(self, tmp_path: Path) -> None:
        """A hand-edited file that still satisfies its contract is caught by its digest."""
        _publish(tmp_path)
        (tmp_path / "public/data/u5_mortality.json").write_text(
            json.dumps([{"year": 2019, "value": 5.6}, {"year": 2020, "value": 6.5}]), encoding="utf-8",
        )
        assert validate_published(tmp_path).exit_code == EXIT_HASH_MISMATCH

    def test_gaisum_references_missing_file(self, tmp_path: Path) -> None:
        _publish(tmp_path)
        (tmp_path / "public/data/m.by_country.json").unlink()
        assert validate_published(tmp_path).exit_code == EXIT_MISSING_FILES

    def test_first_failure_code_kept(self, tmp_path: Path) -> None:
        _publish(tmp_path, **{"public/data/u5_mortality.json": list(reversed(SERIES))})
        (tmp_path / "public/data/sources.json").unlink()
        report = validate_published(tmp_path)
        assert report.exit_code == EXIT_CONTRACT_VIOLATION
        assert len(report.errors) == 2


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

class TestCli:
    def test_json_output(self, tmp_path: Path, capsys) -> None:
        _publish(tmp_path)
        code = cli_main(["--root", str(tmp_path), "--json"])
        report = json.loads(capsys.readouterr().out)
        assert code == EXIT_OK
        assert report["valid"] is True
        assert report["exit_code"] == EXIT_OK

    def test_quiet(self, tmp_path: Path, capsys) -> None:
        code = cli_main(["--root", str(tmp_path), "--quiet"])
        assert code == EXIT_MISSING_FILES
        assert capsys.readouterr().out == ""

    def test_human_output_lists_failures(self, tmp_path: Path, capsys) -> None:
        _publish(tmp_path)
        (tmp_path / "public/data/sources.json").unlink()
        code = cli_main(["--root", str(tmp_path)])
        out = capsys.readouterr().out
        assert code == EXIT_MANIFEST_MISMATCH
        assert "result: MANIFEST_MISMATCH (exit 2)" in out
        assert "✗ source_manifest" in out
        assert "✓ directory_exists" not in out

    def test_verbose_lists_passed_checks(self, tmp_path: Path, capsys) -> None:
        _publish(tmp_path)
        assert cli_main(["--root", str(tmp_path), "--verbose"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "result: VALID (exit 0)" in out
        assert "✓ directory_exists" in out
        assert "0 failed" in out

    def test_output_modes_exclusive(self, tmp_path: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli_main(["--root", str(tmp_path), "--json", "--quiet"])
        assert exc_info.value.code == 2
