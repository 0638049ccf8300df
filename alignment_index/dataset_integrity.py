"""
alignment_index.dataset_integrity — Integrity validation of published data.

Validates a project root's published outputs for:
    1. Published directory present and non-empty
    2. Every data file against its row contract (alignment_index.contracts)
    3. sources.json parses and every entry is a valid SourceManifestEntry
    4. Every GAISUM artifact digest matches the file on disk

Design contract:
    - validate_published() is the ONLY validation entry point.
    - No recomputation of metrics. Only validates stored artifacts.
    - Returns a structured IntegrityReport — never raises on validation failure.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from alignment_index.constants import GAISUM_DIR, MANIFEST_FILE, PUBLISHED_DIR
from alignment_index.contracts import contract_for, validate_rows
from alignment_index.hashing import sha256_file
from alignment_index.provenance import SourceManifestEntry


# ---------------------------------------------------------------------------
# Exit codes: used by the CLI and by callers
# ---------------------------------------------------------------------------

EXIT_OK: int = 0
EXIT_MISSING_FILES: int = 1
EXIT_MANIFEST_MISMATCH: int = 2
EXIT_HASH_MISMATCH: int = 3
EXIT_CONTRACT_VIOLATION: int = 4

NON_SERIES_FILES: frozenset[str] = frozenset(["sources.json", "metrics_registry.json"])
"""Files under public/data that are not array-of-row payloads."""


# ---------------------------------------------------------------------------
# IntegrityReport: structured result
# ---------------------------------------------------------------------------


@dataclass
class IntegrityReport:
    """Structured report from dataset validation.

    Fields:
        valid: True only if ALL checks pass.
        root: The project root being validated.
        checks: List of check results — each a dict with
            {check, passed, detail?}.
        errors: Flat list of human-readable error strings.
        exit_code: Numeric exit code (0 = ok, non-zero = specific failure).
    """
    valid: bool = True
    root: str = ""
    checks: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    exit_code: int = EXIT_OK

    def fail(self, check: str, detail: str, code: int) -> None:
        """Record a failed check."""
        self.valid = False
        self.checks.append({"check": check, "passed": False, "detail": detail})
        self.errors.append(f"[{check}] {detail}")
        # Keep the first (most severe) exit code
        if self.exit_code == EXIT_OK:
            self.exit_code = code

    def ok(self, check: str, detail: str = "") -> None:
        """Record a passing check."""
        self.checks.append({"check": check, "passed": True, "detail": detail})

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for JSON output."""
        return {
            "valid": self.valid,
            "root": self.root,
            "exit_code": self.exit_code,
            "checks": self.checks,
            "errors": self.errors,
        }


def _load(path: Path) -> tuple[Any, str | None]:
    try:
        with open(path, encoding="utf-8") as fh:
            return json.load(fh), None
    except (json.JSONDecodeError, UnicodeDecodeError, OSError) as exc:
        return None, f"{type(exc).__name__}: {exc}"


# ---------------------------------------------------------------------------
# Individual validation steps
# ---------------------------------------------------------------------------

def data_files(data_dir: Path) -> list[Path]:
    """Published row files, sorted by name."""
    return sorted(
        p for p in data_dir.glob("*.json")
        if p.is_file() and p.name not in NON_SERIES_FILES
    )


def _check_contracts(data_dir: Path, report: IntegrityReport) -> bool:
    """Check 2: every data file parses and satisfies its row contract."""
    files = data_files(data_dir)
    if not files:
        report.fail("data_files", f"No data files in {data_dir}", EXIT_MISSING_FILES)
        return False
    report.ok("data_files", f"{len(files)} data files found.")

    all_passed = True
    for path in files:
        payload, error = _load(path)
        if error:
            report.fail(f"contract:{path.name}", f"Invalid JSON: {error}", EXIT_CONTRACT_VIOLATION)
            all_passed = False
            continue
        model = contract_for(path.name)
        errors = validate_rows(model, payload)
        if errors:
            shown = errors[:5]
            more = f" (+{len(errors) - 5} more)" if len(errors) > 5 else ""
            report.fail(
                f"contract:{path.name}",
                f"{model.__name__}: {shown}{more}",
                EXIT_CONTRACT_VIOLATION,
            )
            all_passed = False
            continue
        report.ok(f"contract:{path.name}", f"{model.__name__} × {len(payload)}")
    return all_passed


def _check_source_manifest(manifest_path: Path, report: IntegrityReport) -> bool:
    """Check 3: sources.json is an object of valid entries keyed by id."""
    if not manifest_path.is_file():
        report.fail("source_manifest", f"{manifest_path.name} not found.", EXIT_MANIFEST_MISMATCH)
        return False

    manifest, error = _load(manifest_path)
    if error:
        report.fail("source_manifest", f"Failed to parse: {error}", EXIT_MANIFEST_MISMATCH)
        return False
    if not isinstance(manifest, dict) or not manifest:
        report.fail("source_manifest", "Manifest must be a non-empty object keyed by id.", EXIT_MANIFEST_MISMATCH)
        return False

    invalid: list[str] = []
    for source_id, entry in manifest.items():
        try:
            SourceManifestEntry.model_validate(entry)
        except ValidationError as exc:
            invalid.append(f"{source_id}: {exc.error_count()} error(s)")
    if invalid:
        report.fail("source_manifest", f"Invalid entries: {invalid}", EXIT_MANIFEST_MISMATCH)
        return False
    if list(manifest) != sorted(manifest):
        report.fail("source_manifest", "Entries are not sorted by id.", EXIT_MANIFEST_MISMATCH)
        return False

    report.ok("source_manifest", f"{len(manifest)} entries valid.")
    return True


def _check_gaisum_digests(root: Path, logs_dir: Path, report: IntegrityReport) -> bool:
    """Check 4: SHA-256 of every artifact recorded in a GAISUM file."""
    summaries = sorted(logs_dir.glob("*.gaisum.json")) if logs_dir.is_dir() else []
    if not summaries:
        report.ok("gaisum_digests", "No GAISUM files; digest check skipped.")
        return True

    missing: list[str] = []
    mismatches: list[str] = []
    checked = 0
    for summary_path in summaries:
        gaisum, error = _load(summary_path)
        if error or not isinstance(gaisum, dict):
            mismatches.append(f"{summary_path.name}: unreadable ({error or 'not an object'})")
            continue
        for rel_path, expected in sorted((gaisum.get("artifacts") or {}).items()):
            file_path = root / rel_path
            if not file_path.is_file():
                missing.append(rel_path)
                continue
            checked += 1
            actual = sha256_file(file_path)
            if actual != expected:
                mismatches.append(f"{rel_path}: expected {expected[:16]}…, got {actual[:16]}…")

    if missing:
        report.fail(
            "gaisum_digests",
            f"Missing files referenced in GAISUM: {missing}",
            EXIT_MISSING_FILES,
        )
        return False
    if mismatches:
        report.fail(
            "gaisum_digests",
            f"SHA-256 mismatches ({len(mismatches)}): {mismatches}",
            EXIT_HASH_MISMATCH,
        )
        return False

    report.ok("gaisum_digests", f"All {checked} artifacts verified against {len(summaries)} GAISUM files.")
    return True


# ---------------------------------------------------------------------------
# Main validation entry point
# ---------------------------------------------------------------------------

def validate_published(root: Path) -> IntegrityReport:
    """Validate the published outputs under a project root.

    Runs all check categories in order:
        1. Published directory exists
        2. Row contracts of every data file
        3. Source manifest
        4. GAISUM artifact digests

    Returns:
        IntegrityReport with all checks recorded.
        report.valid is True only if ALL checks pass.
    """
    report = IntegrityReport(root=str(root))
    data_dir = root / PUBLISHED_DIR

    if not data_dir.is_dir():
        report.fail(
            "directory_exists",
            f"Published directory does not exist: {data_dir}",
            EXIT_MISSING_FILES,
        )
        return report

    report.ok("directory_exists", str(data_dir))

    _check_contracts(data_dir, report)
    _check_source_manifest(root / MANIFEST_FILE, report)
    _check_gaisum_digests(root, root / GAISUM_DIR, report)

    return report
