"""
alignment_index.contracts — Row models of the published JSON files.

The dashboard reads four array-of-object shapes from public/data:

    <id>.json               [{year, value}]
    <id>.by_country.json    [{iso3, country, year, value}]
    <id>_by_type.json       [{year, type, value}]
    <id>_coverage.json      [{year, coverage, n_iso, n_pop}]

Row models validate one object. Ordering across rows (ascending years,
iso3 then year, fixed type order) is checked by validate_rows().

Design contract:
    - Models are strict: no extra keys, no numeric strings, no NaN/Inf.
    - validate_rows() never raises on bad data; it returns error strings.
"""

from __future__ import annotations

from typing import Any, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from alignment_index.constants import CONFLICT_TYPE_ORDER, YEAR_MAX, YEAR_MIN

_STRICT = {"extra": "forbid", "strict": True, "allow_inf_nan": False, "frozen": True}


class SeriesPoint(BaseModel):
    model_config = _STRICT

    year: int = Field(..., ge=YEAR_MIN, le=YEAR_MAX)
    value: float


class ByCountryRow(BaseModel):
    model_config = _STRICT

    iso3: str = Field(..., pattern=r"^[A-Z]{3}$")
    country: str = Field(..., min_length=1)
    year: int = Field(..., ge=YEAR_MIN, le=YEAR_MAX)
    value: float


class ByTypeRow(BaseModel):
    model_config = _STRICT

    year: int = Field(..., ge=YEAR_MIN, le=YEAR_MAX)
    type: str
    value: float

    @field_validator("type")
    @classmethod
    def _known_type(cls, v: str) -> str:
        if v not in CONFLICT_TYPE_ORDER:
            raise ValueError(f"unknown type '{v}', expected one of {list(CONFLICT_TYPE_ORDER)}")
        return v


class CoverageRow(BaseModel):
    model_config = _STRICT

    year: int = Field(..., ge=YEAR_MIN, le=YEAR_MAX)
    coverage: float = Field(..., ge=0.0, le=1.0)
    n_iso: int = Field(..., ge=0)
    n_pop: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _pop_covers_iso(self) -> CoverageRow:
        if self.n_pop < self.n_iso:
            raise ValueError(f"n_pop={self.n_pop} < n_iso={self.n_iso}")
        return self


# ---------------------------------------------------------------------------
# Array validation
# ---------------------------------------------------------------------------

def _sort_key(row: BaseModel) -> tuple:
    if isinstance(row, ByCountryRow):
        return (row.iso3, row.year)
    if isinstance(row, ByTypeRow):
        return (row.year, CONFLICT_TYPE_ORDER.index(row.type))
    return (row.year,)


def validate_rows(model: type[BaseModel], payload: Any) -> list[str]:
    """Validate a decoded JSON payload against a row model.

    Checks that the payload is a non-empty array, that every row parses,
    and that sort keys are strictly ascending (no duplicates).

    Returns:
        List of error strings. Empty means the payload is valid.
    """
    if not isinstance(payload, list):
        return [f"expected a JSON array, got {type(payload).__name__}"]
    if not payload:
        return ["array is empty"]

    errors: list[str] = []
    rows: list[BaseModel] = []
    for i, raw in enumerate(payload):
        try:
            rows.append(model.model_validate(raw))
        except ValidationError as exc:
            detail = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'row'}: {err['msg']}"
                for err in exc.errors()
            )
            errors.append(f"row {i}: {detail}")
    if errors:
        return errors

    keys = [_sort_key(row) for row in rows]
    for i, (prev, cur) in enumerate(zip(keys, keys[1:]), start=1):
        if cur <= prev:
            errors.append(f"row {i}: key {list(cur)} not strictly after {list(prev)}")
    return errors


def contract_for(filename: str) -> type[BaseModel]:
    """Row model for a published file, chosen by its name suffix."""
    if filename.endswith("_coverage.json"):
        return CoverageRow
    if filename.endswith("_by_type.json"):
        return ByTypeRow
    if filename.endswith(".by_country.json"):
        return ByCountryRow
    return SeriesPoint


def summarize(rows: Sequence[dict[str, Any]]) -> dict[str, Any]:
    """Year range and row count of a valid payload."""
    years = [row["year"] for row in rows]
    return {"rows": len(rows), "min_year": min(years), "max_year": max(years)}
