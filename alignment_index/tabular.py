"""
alignment_index.tabular — Delimited text parsing and header resolution.

Turns raw CSV/TSV text into ordered records keyed by header name, and
resolves the header that carries a concept ("iso3", "year", ...) from an
explicit ordered candidate list.

Design contract:
    - Parsing never guesses at values. Cells are stripped strings; numeric
      conversion happens through parse_float()/parse_year() at the call site
      so the caller can name the field in the error.
    - Header resolution returns a tagged result (ColumnFound | ColumnMissing).
      Only require_column() raises, and it names every candidate tried.
    - Resolution order: exact canonical candidate → next candidate in the
      list → substring fuzzy pattern → missing.
"""

from __future__ import annotations

import csv
import io
import math
import re
from dataclasses import dataclass, field
from typing import Iterator, Sequence

from alignment_index.errors import InputError, MissingColumnError, ParseError

RawRecord = dict[str, str]

MISSING_MARKERS: frozenset[str] = frozenset(["", "na", "n/a", "nan", "null", "none", ".."])
"""Cell values treated as absent data rather than malformed numbers.
".." is the World Bank bulk-download placeholder."""

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Table:
    """Parsed delimited text: header names plus one record per data row."""
    headers: tuple[str, ...]
    records: tuple[RawRecord, ...]
    label: str = "table"

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[RawRecord]:
        return iter(self.records)

    def require_headers(self) -> Table:
        """Return self, or raise ParseError when the input had no header row."""
        if not self.headers:
            raise ParseError(self.label, "input has no header row")
        return self


def _sniff_delimiter(first_line: str) -> str:
    if "\t" in first_line and "," not in first_line:
        return "\t"
    return ","


def parse_table(text: str, delimiter: str | None = None, label: str = "table") -> Table:
    """Parse delimited text into a Table.

    Handles quoted fields containing the delimiter or line breaks, doubled
    quote escaping, CRLF/LF/CR line endings, a leading byte-order mark and
    blank lines. Rows shorter than the header are padded with "".
    Zero non-blank lines yields a Table with no headers; callers that need
    headers call require_headers().
    """
    if text.startswith("\ufeff"):
        text = text[1:]

    rows: list[list[str]] = []
    stream = io.StringIO(text, newline="")
    if delimiter is None:
        first = next((line for line in stream if line.strip()), "")
        delimiter = _sniff_delimiter(first)
        stream.seek(0)

    for raw_row in csv.reader(stream, delimiter=delimiter):
        cells = [cell.strip() for cell in raw_row]
        if not any(cells):
            continue
        rows.append(cells)

    if not rows:
        return Table(headers=(), records=(), label=label)

    headers = tuple(rows[0])
    width = len(headers)
    records: list[RawRecord] = []
    for cells in rows[1:]:
        if len(cells) < width:
            cells = cells + [""] * (width - len(cells))
        records.append({name: cells[i] for i, name in enumerate(headers)})

    return Table(headers=headers, records=tuple(records), label=label)


# ---------------------------------------------------------------------------
# Header resolution
# ---------------------------------------------------------------------------

def canonicalize_header(name: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to "_", trim "_".

    "Country Code" → "country_code", " ISO-3 " → "iso_3".
    """
    return _NON_ALNUM.sub("_", name.strip().lower()).strip("_")


@dataclass(frozen=True, slots=True)
class ColumnFound:
    column: str
    matched: str
    fuzzy: bool = False


@dataclass(frozen=True, slots=True)
class ColumnMissing:
    concept: str
    tried: tuple[str, ...] = field(default_factory=tuple)


ColumnResolution = ColumnFound | ColumnMissing


def resolve_column(
    headers: Sequence[str],
    candidates: Sequence[str],
    fuzzy: Sequence[str] = (),
    concept: str | None = None,
) -> ColumnResolution:
    """Find the header carrying a concept.

    Args:
        headers: Raw header names as they appear in the file.
        candidates: Canonical names in preference order; the first that
            matches any header wins.
        fuzzy: Substring patterns tried, in order, after all candidates miss.
        concept: Name used in the Missing result (defaults to candidates[0]).

    Returns:
        ColumnFound with the raw header name, or ColumnMissing listing
        every candidate and pattern tried.
    """
    canonical = [(raw, canonicalize_header(raw)) for raw in headers]
    for candidate in candidates:
        wanted = canonicalize_header(candidate)
        for raw, key in canonical:
            if key == wanted:
                return ColumnFound(column=raw, matched=candidate)
    for pattern in fuzzy:
        wanted = canonicalize_header(pattern)
        for raw, key in canonical:
            if wanted and wanted in key:
                return ColumnFound(column=raw, matched=pattern, fuzzy=True)
    tried = tuple(candidates) + tuple(f"*{p}*" for p in fuzzy)
    return ColumnMissing(concept=concept or (candidates[0] if candidates else "?"), tried=tried)


def require_column(
    table: Table,
    candidates: Sequence[str],
    fuzzy: Sequence[str] = (),
    concept: str | None = None,
) -> str:
    """resolve_column() that raises MissingColumnError instead of returning Missing."""
    result = resolve_column(table.require_headers().headers, candidates, fuzzy, concept)
    if isinstance(result, ColumnMissing):
        raise MissingColumnError(table.label, result.concept, result.tried)
    return result.column


def optional_column(
    table: Table,
    candidates: Sequence[str],
    fuzzy: Sequence[str] = (),
) -> str | None:
    result = resolve_column(table.headers, candidates, fuzzy)
    return result.column if isinstance(result, ColumnFound) else None


# ---------------------------------------------------------------------------
# Cell conversion
# ---------------------------------------------------------------------------

def is_missing(value: str | None) -> bool:
    return value is None or value.strip().lower() in MISSING_MARKERS


def parse_float(
    value: str | None,
    *,
    label: str,
    field_name: str,
    row: int | None = None,
) -> float | None:
    """Convert a numeric cell. Missing markers → None; garbage → InputError.

    Thousands separators and embedded spaces are removed first
    ("1,234,567" → 1234567.0).
    """
    if is_missing(value):
        return None
    cleaned = re.sub(r"[,\s]+", "", value)
    try:
        number = float(cleaned)
    except ValueError:
        raise InputError(label, field_name, value, "not a number", row) from None
    if not math.isfinite(number):
        raise InputError(label, field_name, value, "not a finite number", row)
    return number


def parse_year(
    value: str | None,
    *,
    label: str,
    field_name: str = "year",
    row: int | None = None,
) -> int | None:
    """Convert a year cell. Missing → None; non-integral → InputError."""
    number = parse_float(value, label=label, field_name=field_name, row=row)
    if number is None:
        return None
    if not number.is_integer():
        raise InputError(label, field_name, value or "", "year is not an integer", row)
    return int(number)
