"""
tests/test_artifacts.py — Canonical serialization, digests and atomic publication.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from alignment_index.artifacts import (
    artifact_digests,
    load_json,
    publish_artifacts,
    read_text,
    serialize_artifacts,
)
from alignment_index.hashing import (
    canonical_bytes,
    canonical_json,
    compute_run_hash,
    sha256_bytes,
    sha256_file,
)


class TestCanonicalJson:
    def test_form(self) -> None:
        assert canonical_json({"b": 1, "a": "é"}) == '{\n  "a": "é",\n  "b": 1\n}\n'

    def test_non_finite_rejected(self) -> None:
        with pytest.raises(ValueError):
            canonical_json([{"year": 2020, "value": float("nan")}])

    def test_bytes_are_utf8(self) -> None:
        assert canonical_bytes("é") == '"é"\n'.encode("utf-8")


class TestDigests:
    def test_file_digest_matches_bytes(self, tmp_path: Path) -> None:
        content = canonical_bytes([{"year": 2020, "value": 1.5}])
        path = tmp_path / "x.json"
        path.write_bytes(content)
        assert sha256_file(path) == sha256_bytes(content)

    def test_run_hash_order_independent(self) -> None:
        forward = {"public/data/a.json": "1" * 64, "public/data/b.json": "2" * 64}
        backward = dict(reversed(list(forward.items())))
        assert compute_run_hash(forward) == compute_run_hash(backward)
        assert compute_run_hash(forward) != compute_run_hash({"public/data/a.json": "1" * 64})

    def test_run_hash_empty(self) -> None:
        with pytest.raises(ValueError):
            compute_run_hash({})


class TestPublish:
    def test_serialize_sorted(self) -> None:
        serialized = serialize_artifacts({"b.json": [1], "a.json": [2]})
        assert list(serialized) == ["a.json", "b.json"]
        assert artifact_digests(serialized)["a.json"] == sha256_bytes(b"[\n  2\n]\n")

    def test_writes_every_file(self, tmp_path: Path) -> None:
        serialized = serialize_artifacts({
            "public/data/m.json": [{"year": 2020, "value": 1.0}],
            "logs/m.gaisum.json": {"id": "m"},
        })
        paths = publish_artifacts(tmp_path, serialized)
        assert sorted(p.relative_to(tmp_path.resolve()).as_posix() for p in paths) == [
            "logs/m.gaisum.json",
            "public/data/m.json",
        ]
        assert load_json(tmp_path / "logs/m.gaisum.json") == {"id": "m"}
        assert list(tmp_path.rglob(".tmp_*")) == []

    def test_failure_publishes_nothing(self, tmp_path: Path) -> None:
        """A path escaping the root aborts the batch; the prior file is untouched."""
        target = tmp_path / "public/data/a.json"
        target.parent.mkdir(parents=True)
        target.write_bytes(b"old\n")

        with pytest.raises(ValueError):
            publish_artifacts(tmp_path, {"public/data/a.json": b"new\n", "../escape.json": b"x\n"})

        assert target.read_bytes() == b"old\n"
        assert not (tmp_path.parent / "escape.json").exists()
        assert list(tmp_path.rglob(".tmp_*")) == []

    def test_load_json_default(self, tmp_path: Path) -> None:
        assert load_json(tmp_path / "missing.json", default={}) == {}

    def test_read_text_strips_bom(self, tmp_path: Path) -> None:
        path = tmp_path / "bom.csv"
        path.write_bytes("\ufeffiso3,value\n".encode("utf-8"))
        assert read_text(path) == "iso3,value\n"
