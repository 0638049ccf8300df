"""
alignment_index.transforms — Unit conversion and rounding policy.

Pure-computation module. Zero I/O.

Rounding rule: round-half-away-from-zero at a fixed per-metric precision,
applied ONCE as the final step before publication. Intermediate values are
never rounded. Python's round() is banker's rounding and operates on the
binary value (round(2.675, 2) == 2.67), so round_half_away() works on the
shortest decimal repr instead.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping

from alignment_index.errors import DeflatorError

PER_100K: float = 100_000.0
DEFLATOR_BASE: float = 100.0
DEFLATOR_TOLERANCE: float = 0.01
"""The base year's own index must be DEFLATOR_BASE ± DEFLATOR_TOLERANCE."""


# ---------------------------------------------------------------------------
# Rounding
# ---------------------------------------------------------------------------

def round_half_away(value: float, decimals: int) -> float:
    """Round to `decimals` places, ties away from zero.

    round_half_away(2.675, 2) → 2.68, round_half_away(-0.5, 0) → -1.0.
    """
    if not math.isfinite(value):
        raise ValueError(f"cannot round non-finite value {value!r}")
    quantum = Decimal(1).scaleb(-decimals)
    rounded = float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))
    # -0.0 → 0.0
    return rounded if rounded != 0 else 0.0


def clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


# ---------------------------------------------------------------------------
# Rates and shares
# ---------------------------------------------------------------------------

def _require_positive(denominator: float, what: str) -> None:
    if not (denominator > 0) or not math.isfinite(denominator):
        raise ValueError(f"{what} must be a positive finite number, got {denominator!r}")


def per_100k(count: float, population: float) -> float:
    """Rate per 100,000 people."""
    _require_positive(population, "population")
    return count / population * PER_100K


def per_hundred(count: float, population: float) -> float:
    """Count per 100 residents."""
    _require_positive(population, "population")
    return count * 100.0 / population


def per_capita(total: float, population: float) -> float:
    _require_positive(population, "population")
    return total / population


def percentage_share(part: float, total: float) -> float:
    """(part / total) * 100."""
    _require_positive(total, "total")
    return part / total * 100.0


# ---------------------------------------------------------------------------
# Deflation
# ---------------------------------------------------------------------------

class Deflator:
    """Price-level index converting nominal currency to a constant base year.

    real = nominal * (base_index / index[year])

    Construction fails with DeflatorError unless the base year is present and
    its index equals 100 within DEFLATOR_TOLERANCE.
    """

    __slots__ = ("_indices", "base_year")

    def __init__(self, indices: Mapping[int, float], base_year: int) -> None:
        base_index = indices.get(base_year)
        if base_index is None:
            raise DeflatorError(f"deflator missing base year {base_year}")
        if abs(base_index - DEFLATOR_BASE) > DEFLATOR_TOLERANCE:
            raise DeflatorError(
                f"deflator not rebased: expected {base_year} index ≈{DEFLATOR_BASE:g}, "
                f"found {base_index}"
            )
        bad = sorted(year for year, index in indices.items() if not (index > 0))
        if bad:
            raise DeflatorError(f"non-positive deflator index for years {bad}")
        self._indices = dict(sorted(indices.items()))
        self.base_year = base_year

    def covers(self, year: int) -> bool:
        return year in self._indices

    def multiplier(self, year: int) -> float | None:
        index = self._indices.get(year)
        if index is None:
            return None
        return self._indices[self.base_year] / index

    def real(self, nominal: float, year: int) -> float | None:
        """Constant-price value, or None when the year has no index."""
        factor = self.multiplier(year)
        return None if factor is None else nominal * factor

    def years(self) -> list[int]:
        return list(self._indices)
