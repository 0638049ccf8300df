"""
alignment_index.verify_datasets — Check a published tree before it ships.

Runs validate_published() over <root>/public/data and <root>/logs and maps
the first failure to the process exit code (see dataset_integrity for the
code table). Intended for CI after run_pipelines and before a deploy step.

    python -m alignment_index.verify_datasets --root /srv/gai
    python -m alignment_index.verify_datasets --json > integrity.json

Only failed checks are listed unless --verbose is given. --quiet prints
nothing and leaves the verdict to the exit code.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from alignment_index.dataset_integrity import (
    EXIT_CONTRACT_VIOLATION,
    EXIT_HASH_MISMATCH,
    EXIT_MANIFEST_MISMATCH,
    EXIT_MISSING_FILES,
    EXIT_OK,
    IntegrityReport,
    validate_published,
)
from alignment_index.settings import load_settings

STATUS_NAMES: dict[int, str] = {
    EXIT_OK: "VALID",
    EXIT_MISSING_FILES: "MISSING_FILES",
    EXIT_MANIFEST_MISMATCH: "MANIFEST_MISMATCH",
    EXIT_HASH_MISMATCH: "HASH_MISMATCH",
    EXIT_CONTRACT_VIOLATION: "CONTRACT_VIOLATION",
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gai-verify", description=__doc__.strip().splitlines()[0])
    parser.add_argument("--root", help="tree holding public/data and logs (default: $GAI_ROOT, else cwd)")
    output = parser.add_mutually_exclusive_group()
    output.add_argument("--json", action="store_true", dest="json_output", help="print the report as JSON")
    output.add_argument("--quiet", action="store_true", help="print nothing")
    output.add_argument("--verbose", action="store_true", help="also list checks that passed")
    return parser


def _render(report: IntegrityReport, root: Path, verbose: bool = False) -> list[str]:
    checks: list[dict[str, Any]] = report.checks
    failed = [check for check in checks if not check["passed"]]
    lines = [
        f"{root}",
        f"  result: {STATUS_NAMES.get(report.exit_code, 'FAILED')} (exit {report.exit_code})",
        f"  checks: {len(checks) - len(failed)} passed, {len(failed)} failed",
    ]
    for check in checks if verbose else failed:
        mark = "✓" if check["passed"] else "✗"
        detail = check.get("detail")
        lines.append(f"  {mark} {check['check']}" + (f": {detail}" if detail else ""))
    if report.errors:
        lines.append("errors:")
        lines.extend(f"  - {error}" for error in report.errors)
    return lines


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = load_settings(root=Path(args.root) if args.root else None)
    report = validate_published(settings.root)

    if args.json_output:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    elif not args.quiet:
        print("\n".join(_render(report, settings.root, verbose=args.verbose)))
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
