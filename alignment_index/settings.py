"""
alignment_index.settings — Environment-driven run configuration.

Environment variables:
    GAI_ROOT              — project root holding data/raw, public/data, logs
                            (default: current working directory)
    ENV                   — "dev" enables DEBUG logging (default: "prod")
    OFFLINE               — "1" forces cached/local snapshots, no network
    ALLOW_PLACEHOLDERS    — "1" permits placeholder and low-coverage output
                            for controlled test runs
    HTTP_TIMEOUT          — per-request timeout in seconds (default: 30)
    HTTP_MAX_ATTEMPTS     — bounded retry count (default: 5)
    HTTP_BACKOFF_BASE     — first backoff delay in seconds (default: 0.5)

Per-source overrides are read through Settings.source_override(), e.g.
STOP_FIXTURE_PATH, STOP_BUNDLE_URL, UCDP_URL, SAS_URL, WDI_URL.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from alignment_index.constants import GAISUM_DIR, MANIFEST_FILE, PUBLISHED_DIR, RAW_DIR


def _flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "").strip() == "1"


@dataclass(frozen=True, slots=True)
class Settings:
    """Immutable configuration for one invocation."""
    root: Path
    env: str = "prod"
    offline: bool = False
    allow_placeholders: bool = False
    http_timeout: float = 30.0
    http_max_attempts: int = 5
    http_backoff_base: float = 0.5
    overrides: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def raw_dir(self) -> Path:
        return self.root / RAW_DIR

    @property
    def published_dir(self) -> Path:
        return self.root / PUBLISHED_DIR

    @property
    def gaisum_dir(self) -> Path:
        return self.root / GAISUM_DIR

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILE

    def source_override(self, name: str) -> str:
        """Return a non-empty override value or ""."""
        return self.overrides.get(name, "").strip()


def load_settings(environ: Mapping[str, str] | None = None, root: Path | None = None) -> Settings:
    """Build Settings from environment variables.

    An explicit root wins over GAI_ROOT. Malformed numeric values raise
    ValueError at startup rather than mid-run.
    """
    if environ is None:
        environ = os.environ
    env_root = environ.get("GAI_ROOT", "").strip()
    resolved_root = root if root is not None else Path(env_root or os.getcwd())

    return Settings(
        root=resolved_root.resolve(),
        env=environ.get("ENV", "prod").strip() or "prod",
        offline=_flag(environ, "OFFLINE"),
        allow_placeholders=_flag(environ, "ALLOW_PLACEHOLDERS"),
        http_timeout=float(environ.get("HTTP_TIMEOUT", "30") or 30),
        http_max_attempts=int(environ.get("HTTP_MAX_ATTEMPTS", "5") or 5),
        http_backoff_base=float(environ.get("HTTP_BACKOFF_BASE", "0.5") or 0.5),
        overrides=MappingProxyType(dict(environ)),
    )
