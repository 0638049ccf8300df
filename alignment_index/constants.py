"""
alignment_index.constants — Shared constants for the aggregation engine.

Every pipeline that needs these values imports them from here. Metric-specific
thresholds live with the metric configuration in alignment_index.pipelines.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Country codes
# ---------------------------------------------------------------------------

ISO3_PATTERN: re.Pattern[str] = re.compile(r"^[A-Z]{3}$")
"""Well-formed ISO 3166-1 alpha-3 code (shape only, not membership)."""

ISO_WORLD: str = "WLD"
"""World Bank code for the world aggregate. Used as a fallback source
for pre-aggregated values and world population, never as a country."""

AGGREGATE_ISO3: frozenset[str] = frozenset([
    "AFE", "AFW", "ARB", "CEB", "CSS", "EAP", "EAR", "EAS", "ECA", "ECS",
    "EMU", "EUU", "FCS", "HIC", "HPC", "IBD", "IBT", "IDA", "IDB", "IDX",
    "INX", "LAC", "LCN", "LDC", "LIC", "LMC", "LMY", "LTE", "MEA", "MIC",
    "MNA", "NAC", "OED", "OSS", "PRE", "PSS", "PST", "SAS", "SSA", "SSF",
    "SST", "TEA", "TEC", "TLA", "TMN", "TSA", "TSS", "UMC", "WLD",
])
"""World Bank regional, income-group and lending-group pseudo-codes.
Excluded from every country-level aggregation."""

# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

SECONDS_PER_DAY: int = 86_400

YEAR_MIN: int = 1900
YEAR_MAX: int = 2100
"""Sanity bounds for any parsed year. Outside this range the row is an
input error, not data."""

# ---------------------------------------------------------------------------
# Conflict types (UCDP type_of_conflict)
# ---------------------------------------------------------------------------

CONFLICT_TYPE_MAP: dict[str, str] = {
    "1": "interstate",
    "2": "intrastate",
    "3": "internationalized_intrastate",
    "4": "extrasystemic",
}

CONFLICT_TYPE_ORDER: tuple[str, ...] = (
    "interstate",
    "intrastate",
    "internationalized_intrastate",
    "extrasystemic",
)
"""Fixed ordering of by-type rows within a year."""

# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

RAW_DIR: str = "data/raw"
PUBLISHED_DIR: str = "public/data"
GAISUM_DIR: str = "logs"
MANIFEST_FILE: str = "public/data/sources.json"
"""All paths are relative to Settings.root."""

USER_AGENT: str = "GAI-pipeline/1.0"
