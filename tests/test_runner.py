"""
tests/test_runner.py — Batch driver: failure isolation and manifest persistence.
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import httpx
import pytest

from alignment_index.artifacts import load_json
from alignment_index.dataset_integrity import EXIT_OK, validate_published
from alignment_index.fetch import Fetcher, RetryPolicy
from alignment_index.run_pipelines import (
    EXIT_PIPELINE_FAILED,
    EXIT_UNKNOWN_PIPELINE,
    main,
    run_batch,
)
from alignment_index.settings import load_settings

TODAY = date(2024, 6, 1)


def _no_network(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request: {request.url}")


def _fetcher() -> Fetcher:
    return Fetcher(httpx.Client(transport=httpx.MockTransport(_no_network)), RetryPolicy(max_attempts=1))


def _write_u5_inputs(root: Path) -> None:
    wdi = root / "data/raw/wdi"
    wdi.mkdir(parents=True)
    (wdi / "SP.POP.TOTL.csv").write_text(
        "iso3,country,year,value\nFRA,France,2020,100\nUSA,United States,2020,300\n", encoding="utf-8",
    )
    (wdi / "SH.DYN.MORT.csv").write_text(
        "iso3,country,year,value\nFRA,France,2020,2\nUSA,United States,2020,6\n", encoding="utf-8",
    )


class TestRunBatch:
    def test_failure_isolated(self, tmp_path: Path) -> None:
        """homicide_rate has no snapshot; u5_mortality still publishes."""
        _write_u5_inputs(tmp_path)
        settings = load_settings({"OFFLINE": "1"}, root=tmp_path)
        report = run_batch(settings, ["homicide_rate", "u5_mortality"], _fetcher(), today=TODAY)

        assert report.succeeded == ["u5_mortality"]
        assert [failure["id"] for failure in report.failed] == ["homicide_rate"]
        assert report.failed[0]["error"] == "MissingInputError"
        assert report.exit_code == EXIT_PIPELINE_FAILED
        assert report.gaisums["u5_mortality"]["rows"] == 1

        assert load_json(tmp_path / "public/data/u5_mortality.json") == [{"year": 2020, "value": 5.0}]
        assert not (tmp_path / "public/data/homicide_rate.json").exists()
        manifest = load_json(tmp_path / "public/data/sources.json")
        assert list(manifest) == ["u5_mortality"]
        assert manifest["u5_mortality"]["updated_at"] == "2024-06-01"

    def test_published_tree_verifies(self, tmp_path: Path) -> None:
        _write_u5_inputs(tmp_path)
        settings = load_settings({"OFFLINE": "1"}, root=tmp_path)
        report = run_batch(settings, ["u5_mortality"], _fetcher(), today=TODAY)
        assert report.exit_code == EXIT_OK

        integrity = validate_published(tmp_path)
        assert integrity.valid, integrity.errors

    def test_malformed_remote_payload_isolated(self, tmp_path: Path) -> None:
        """A wrongly shaped OpenAlex page fails coauthorship only; u5_mortality falls back to its snapshot."""
        _write_u5_inputs(tmp_path)

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "api.openalex.org":
                return httpx.Response(200, json={"group_by": ["oops"], "meta": {}})
            return httpx.Response(404)

        fetcher = Fetcher(httpx.Client(transport=httpx.MockTransport(handler)), RetryPolicy(max_attempts=1))
        settings = load_settings({}, root=tmp_path)
        report = run_batch(settings, ["scientific_coauthorship_share", "u5_mortality"], fetcher, today=TODAY)

        assert report.succeeded == ["u5_mortality"]
        assert report.failed[0]["id"] == "scientific_coauthorship_share"
        assert report.failed[0]["error"] == "FetchError"
        assert list(load_json(tmp_path / "public/data/sources.json")) == ["u5_mortality"]

    def test_prior_manifest_entries_kept(self, tmp_path: Path) -> None:
        _write_u5_inputs(tmp_path)
        manifest_path = tmp_path / "public/data/sources.json"
        manifest_path.parent.mkdir(parents=True)
        manifest_path.write_text(json.dumps({"zz_legacy": {
            "name": "Legacy", "domain": "d", "unit": "u", "source_org": "o", "source_url": "https://o",
            "license": "l", "method": "m", "updated_at": "2020-01-01",
        }}), encoding="utf-8")

        settings = load_settings({"OFFLINE": "1"}, root=tmp_path)
        report = run_batch(settings, ["u5_mortality"], _fetcher(), today=TODAY)
        assert report.manifest_ids == ["u5_mortality", "zz_legacy"]
        assert list(load_json(manifest_path)) == ["u5_mortality", "zz_legacy"]

    def test_nothing_succeeded_writes_no_manifest(self, tmp_path: Path) -> None:
        settings = load_settings({"OFFLINE": "1"}, root=tmp_path)
        report = run_batch(settings, ["u5_mortality"], _fetcher(), today=TODAY)
        assert report.succeeded == []
        assert not (tmp_path / "public/data/sources.json").exists()

    def test_unknown_id_checked_first(self, tmp_path: Path) -> None:
        _write_u5_inputs(tmp_path)
        settings = load_settings({"OFFLINE": "1"}, root=tmp_path)
        with pytest.raises(KeyError):
            run_batch(settings, ["u5_mortality", "nope"], _fetcher(), today=TODAY)
        assert not (tmp_path / "public/data").exists()


class TestCli:
    def test_unknown_pipeline(self, tmp_path: Path, capsys) -> None:
        assert main(["nope", "--root", str(tmp_path), "--quiet"]) == EXIT_UNKNOWN_PIPELINE
        assert "nope" in capsys.readouterr().err
