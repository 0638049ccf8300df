"""
alignment_index.countries — Raw identifier → canonical ISO3 resolution.

Resolution order (first hit wins):
    1. iso_hint, if a well-formed non-aggregate ISO3 code
    2. the raw identifier itself, if a well-formed non-aggregate ISO3 code
       that is not a three-letter alias ("UAE", "DRC")
    3. the static alias table, keyed by canonical name
    4. the population index name map, keyed by canonical name
    5. unresolved

Canonical name: NFKD, combining marks removed, only [A-Za-z0-9] kept,
uppercased. "Côte d'Ivoire" → "COTEDIVOIRE", "Myanmar (Burma)" → "MYANMARBURMA".

Aggregate pseudo-codes (income groups, regions, WLD) and aggregate names
("World", "High income") are never returned; they resolve with reason
"aggregate". Every call is counted by reason so callers can
report unresolved rows instead of silently dropping them.
"""

from __future__ import annotations

import re
import unicodedata
from collections import Counter
from dataclasses import dataclass
from typing import Mapping

from alignment_index.constants import AGGREGATE_ISO3, ISO3_PATTERN

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")


def canonicalize_country(name: str) -> str:
    """Strip diacritics and non-alphanumerics, uppercase."""
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("", stripped).upper()


def is_country_iso(code: str) -> bool:
    """True for a well-formed ISO3 code that is not an aggregate pseudo-code."""
    return bool(ISO3_PATTERN.match(code)) and code not in AGGREGATE_ISO3


# ---------------------------------------------------------------------------
# Alias table: historically common naming variants across sources
# ---------------------------------------------------------------------------

COUNTRY_ALIASES: dict[str, str] = {
    "Afghanistan": "AFG",
    "Antigua & Barbuda": "ATG",
    "Bahamas": "BHS",
    "The Bahamas": "BHS",
    "Bolivia": "BOL",
    "Bosnia": "BIH",
    "Bosnia & Herzegovina": "BIH",
    "Brunei": "BRN",
    "Burma": "MMR",
    "Myanmar (Burma)": "MMR",
    "Cabo Verde": "CPV",
    "Cape Verde": "CPV",
    "Central African Rep.": "CAF",
    "Congo (Brazzaville)": "COG",
    "Republic of Congo": "COG",
    "Republic of the Congo": "COG",
    "Congo, Rep.": "COG",
    "Congo (Kinshasa)": "COD",
    "DRC": "COD",
    "DR Congo": "COD",
    "Democratic Republic of the Congo": "COD",
    "Congo, Dem. Rep.": "COD",
    "Cote d'Ivoire": "CIV",
    "Ivory Coast": "CIV",
    "Czech Republic": "CZE",
    "Czechia": "CZE",
    "Dominican Rep.": "DOM",
    "East Timor": "TLS",
    "Timor-Leste": "TLS",
    "Egypt": "EGY",
    "Egypt, Arab Rep.": "EGY",
    "Eswatini": "SWZ",
    "Swaziland": "SWZ",
    "Gambia": "GMB",
    "The Gambia": "GMB",
    "Gambia, The": "GMB",
    "Great Britain": "GBR",
    "UK": "GBR",
    "United Kingdom": "GBR",
    "Hong Kong": "HKG",
    "Hong Kong (SAR)": "HKG",
    "Hong Kong SAR, China": "HKG",
    "Iran": "IRN",
    "Iran, Islamic Rep.": "IRN",
    "Kosovo": "XKX",
    "Kyrgyzstan": "KGZ",
    "Laos": "LAO",
    "Lao PDR": "LAO",
    "Macao": "MAC",
    "Macau": "MAC",
    "Macao SAR, China": "MAC",
    "Moldova": "MDA",
    "North Korea": "PRK",
    "Korea, Dem. People's Rep.": "PRK",
    "Palestine": "PSE",
    "State of Palestine": "PSE",
    "West Bank and Gaza": "PSE",
    "Philippines": "PHL",
    "Russia": "RUS",
    "Russian Federation": "RUS",
    "Saint Kitts & Nevis": "KNA",
    "St. Kitts and Nevis": "KNA",
    "Saint Lucia": "LCA",
    "St. Lucia": "LCA",
    "Saint Vincent & the Grenadines": "VCT",
    "St. Vincent and the Grenadines": "VCT",
    "Sao Tome & Principe": "STP",
    "Slovak Republic": "SVK",
    "Slovakia": "SVK",
    "South Korea": "KOR",
    "Republic of Korea": "KOR",
    "Korea, Rep.": "KOR",
    "South Sudan": "SSD",
    "Sudan": "SDN",
    "Syria": "SYR",
    "Syrian Arab Republic": "SYR",
    "Tanzania": "TZA",
    "Trinidad & Tobago": "TTO",
    "Turkey": "TUR",
    "Turkiye": "TUR",
    "UAE": "ARE",
    "United Arab Emirates": "ARE",
    "US": "USA",
    "United States": "USA",
    "United States of America": "USA",
    "Venezuela": "VEN",
    "Venezuela, RB": "VEN",
    "Vietnam": "VNM",
    "Viet Nam": "VNM",
    "Yemen": "YEM",
    "Yemen, Rep.": "YEM",
}
"""Human-readable variants. Looked up by canonical name, so punctuation,
case and diacritics in the source do not matter."""

_ALIAS_INDEX: dict[str, str] = {canonicalize_country(name): iso for name, iso in COUNTRY_ALIASES.items()}


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

REASON_ISO_HINT = "iso_hint"
REASON_ISO3 = "iso3"
REASON_ALIAS = "alias"
REASON_POPULATION_NAME = "population_name"
REASON_AGGREGATE = "aggregate"
REASON_UNRESOLVED = "unresolved"

AGGREGATE_NAMES: frozenset[str] = frozenset(canonicalize_country(name) for name in (
    "World", "High income", "Low income", "Middle income", "Lower middle income",
    "Upper middle income", "Low & middle income", "European Union", "Euro area",
    "OECD members", "Sub-Saharan Africa", "South Asia", "East Asia & Pacific",
    "Europe & Central Asia", "Latin America & Caribbean", "Middle East & North Africa",
    "North America", "Arab World", "Least developed countries",
))
"""Canonical names of World Bank aggregates that appear in name columns."""


@dataclass(frozen=True, slots=True)
class Resolution:
    raw: str
    iso3: str | None
    reason: str

    @property
    def resolved(self) -> bool:
        return self.iso3 is not None


class CountryResolver:
    """Deterministic country resolver for one pipeline run.

    Args:
        name_index: canonical name → ISO3, typically
            PopulationIndex.name_index. Entries pointing at aggregate codes
            are ignored.
    """

    def __init__(self, name_index: Mapping[str, str] | None = None) -> None:
        self._names = {
            key: iso for key, iso in (name_index or {}).items() if is_country_iso(iso)
        }
        self.stats: Counter[str] = Counter()

    def resolve(self, raw: str, iso_hint: str | None = None) -> Resolution:
        result = self._resolve(raw or "", iso_hint)
        self.stats[result.reason] += 1
        return result

    def _resolve(self, raw: str, iso_hint: str | None) -> Resolution:
        hint = (iso_hint or "").strip().upper()
        if is_country_iso(hint):
            return Resolution(raw, hint, REASON_ISO_HINT)

        # Three-letter abbreviations in the alias table ("UAE", "DRC") are
        # names, not codes.
        code = raw.strip().upper()
        if is_country_iso(code) and code not in _ALIAS_INDEX:
            return Resolution(raw, code, REASON_ISO3)
        if code in AGGREGATE_ISO3:
            return Resolution(raw, None, REASON_AGGREGATE)

        canonical = canonicalize_country(raw)
        if not canonical:
            return Resolution(raw, None, REASON_UNRESOLVED)
        if canonical in AGGREGATE_NAMES:
            return Resolution(raw, None, REASON_AGGREGATE)

        alias = _ALIAS_INDEX.get(canonical)
        if alias is not None and is_country_iso(alias):
            return Resolution(raw, alias, REASON_ALIAS)

        named = self._names.get(canonical)
        if named is not None:
            return Resolution(raw, named, REASON_POPULATION_NAME)

        return Resolution(raw, None, REASON_UNRESOLVED)

    @property
    def unresolved_count(self) -> int:
        return self.stats[REASON_UNRESOLVED]
