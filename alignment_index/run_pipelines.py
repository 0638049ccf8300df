"""
alignment_index.run_pipelines — Batch driver for the metric pipelines.

Usage:
    python -m alignment_index.run_pipelines
    python -m alignment_index.run_pipelines u5_mortality homicide_rate --json
    OFFLINE=1 python -m alignment_index.run_pipelines --root /srv/gai

Runs the selected pipelines (default: all, in registry order) one after
another. A failing pipeline publishes nothing and does not stop its
siblings. After the batch, the source manifest is merged from every
successful run and published atomically.

Exit codes:
    0: Every selected pipeline succeeded.
    1: At least one pipeline failed.
    2: Unknown pipeline id on the command line.

Design contract:
    - The driver owns manifest persistence. Pipelines return entries;
      upsert_source() merges them; nothing else writes sources.json.
    - Failures are isolated per pipeline and reported by id.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Sequence

import httpx

from alignment_index.artifacts import load_json, publish_artifacts, serialize_artifacts
from alignment_index.constants import MANIFEST_FILE
from alignment_index.errors import PipelineError
from alignment_index.fetch import Fetcher, RetryPolicy
from alignment_index.pipeline import PipelineContext, publish_result
from alignment_index.pipelines.registry import get_pipeline, list_pipeline_ids
from alignment_index.provenance import upsert_source
from alignment_index.settings import Settings, load_settings

logger = logging.getLogger("gai.runner")

EXIT_OK: int = 0
EXIT_PIPELINE_FAILED: int = 1
EXIT_UNKNOWN_PIPELINE: int = 2


@dataclass
class BatchReport:
    """Outcome of one batch invocation."""
    succeeded: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)
    gaisums: dict[str, dict[str, Any]] = field(default_factory=dict)
    manifest_ids: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return EXIT_PIPELINE_FAILED if self.failed else EXIT_OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "exit_code": self.exit_code,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "gaisums": self.gaisums,
            "manifest_ids": self.manifest_ids,
        }


def run_batch(
    settings: Settings,
    pipeline_ids: Sequence[str],
    fetcher: Fetcher,
    today: date | None = None,
) -> BatchReport:
    """Run pipelines sequentially, publish each success, then the manifest.

    Raises:
        KeyError: If any id is unknown. Checked before anything runs.
    """
    pipelines = [get_pipeline(pipeline_id) for pipeline_id in pipeline_ids]
    ctx = PipelineContext(settings=settings, fetcher=fetcher)
    if today is not None:
        ctx.today = today

    report = BatchReport()
    manifest: dict[str, Any] = load_json(settings.manifest_path, default={}) or {}
    for pipeline in pipelines:
        logger.info(json.dumps({"event": "pipeline_start", "metric": pipeline.id}))
        try:
            result = pipeline.run(ctx)
            gaisum = publish_result(settings.root, result)
        except (PipelineError, httpx.HTTPError, ValueError, OSError) as exc:
            report.failed.append({
                "id": pipeline.id,
                "error": type(exc).__name__,
                "detail": str(exc),
            })
            logger.error(json.dumps({
                "event": "pipeline_failed",
                "metric": pipeline.id,
                "error": type(exc).__name__,
                "detail": str(exc),
            }))
            continue

        for source_id, entry in sorted(result.sources.items()):
            manifest = upsert_source(manifest, source_id, entry)
        report.succeeded.append(pipeline.id)
        report.gaisums[pipeline.id] = gaisum.to_dict()
        logger.info(json.dumps({"event": "pipeline_done", "metric": pipeline.id, "rows": gaisum.rows}))

    if report.succeeded:
        publish_artifacts(settings.root, serialize_artifacts({MANIFEST_FILE: manifest}))
    report.manifest_ids = sorted(manifest)

    logger.info(json.dumps({
        "event": "batch_done",
        "succeeded": report.succeeded,
        "failed": [failure["id"] for failure in report.failed],
    }))
    return report


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="run_pipelines",
        description="Run alignment-index metric pipelines and publish their outputs.",
    )
    parser.add_argument(
        "ids",
        nargs="*",
        help=f"Pipeline ids to run (default: all). Known: {', '.join(list_pipeline_ids())}",
    )
    parser.add_argument(
        "--root",
        type=str,
        default=None,
        help="Project root holding data/raw, public/data and logs (default: GAI_ROOT or cwd).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output structured JSON report.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress the summary and INFO logs. Exit code only.",
    )
    return parser


def _configure_logging(settings: Settings, quiet: bool) -> None:
    if quiet:
        level = logging.WARNING
    else:
        level = logging.DEBUG if settings.env == "dev" else logging.INFO
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stdout)


def main(argv: list[str] | None = None) -> int:
    """Run the batch. Returns exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = load_settings(root=Path(args.root) if args.root else None)
    _configure_logging(settings, args.quiet)

    ids = args.ids or list_pipeline_ids()
    unknown = [pipeline_id for pipeline_id in ids if pipeline_id not in list_pipeline_ids()]
    if unknown:
        print(f"Unknown pipeline id(s): {unknown}. Known: {list_pipeline_ids()}", file=sys.stderr)
        return EXIT_UNKNOWN_PIPELINE

    policy = RetryPolicy(max_attempts=settings.http_max_attempts, backoff_base=settings.http_backoff_base)
    with httpx.Client(timeout=settings.http_timeout) as client:
        fetcher = Fetcher(client, policy, timeout=settings.http_timeout)
        report = run_batch(settings, ids, fetcher)

    if args.quiet:
        return report.exit_code

    if args.json_output:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False, sort_keys=True))
        return report.exit_code

    print(f"Root:       {settings.root}")
    print(f"Succeeded:  {len(report.succeeded)}")
    for pipeline_id in report.succeeded:
        gaisum = report.gaisums[pipeline_id]
        print(f"  ✓ {pipeline_id} — {gaisum['rows']} rows, {gaisum['min_year']}–{gaisum['max_year']}")
    if report.failed:
        print(f"Failed:     {len(report.failed)}")
        for failure in report.failed:
            print(f"  ✗ {failure['id']} — {failure['error']}: {failure['detail']}")

    print(f"\nExit code: {report.exit_code}")
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
