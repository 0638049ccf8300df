"""
alignment_index.errors — Exception taxonomy for pipeline runs.

Every fatal condition raised by the engine derives from PipelineError so the
batch driver can isolate a failing pipeline without catching unrelated bugs.
Each exception carries the offending context as attributes; str() gives the
operator-facing diagnostic.

Non-fatal conditions (duplicate disagreements, unresolved countries,
out-of-band values) are never raised. They are counted and surfaced in GAISUM.
"""

from __future__ import annotations

from typing import Sequence


class PipelineError(Exception):
    """Base class for every fatal pipeline condition."""


# ---------------------------------------------------------------------------
# Input errors
# ---------------------------------------------------------------------------

class ParseError(PipelineError):
    """Raw text could not be turned into a table with headers."""

    def __init__(self, label: str, detail: str) -> None:
        self.label = label
        self.detail = detail
        super().__init__(f"[{label}] {detail}")


class MissingColumnError(PipelineError):
    """No header matched any candidate for a required concept."""

    def __init__(self, label: str, concept: str, tried: Sequence[str]) -> None:
        self.label = label
        self.concept = concept
        self.tried = tuple(tried)
        super().__init__(
            f"[{label}] missing required column '{concept}' "
            f"(tried: {', '.join(self.tried)})"
        )


class InputError(PipelineError):
    """A required field is malformed: non-numeric, unknown code, bad year."""

    def __init__(self, label: str, field: str, value: str, detail: str, row: int | None = None) -> None:
        self.label = label
        self.field = field
        self.value = value
        self.row = row
        self.detail = detail
        where = f" row {row}" if row is not None else ""
        super().__init__(f"[{label}]{where} field '{field}'={value!r}: {detail}")


# ---------------------------------------------------------------------------
# Coverage / continuity errors
# ---------------------------------------------------------------------------

class CoverageError(PipelineError):
    """A year has neither sufficient bottom-up coverage nor a fallback."""

    def __init__(self, label: str, year: int, coverage: float | None, threshold: float) -> None:
        self.label = label
        self.year = year
        self.coverage = coverage
        self.threshold = threshold
        shown = "n/a" if coverage is None else f"{coverage:.3f}"
        super().__init__(
            f"[{label}] year {year}: coverage {shown} below {threshold} "
            f"and no published fallback value"
        )


class ContinuityError(PipelineError):
    """Years out of order, duplicated, or separated by too large a gap."""


class SanityError(PipelineError):
    """A value is non-finite, outside its hard band, or subtypes do not sum."""


class EmptyOutputError(PipelineError):
    """The run computed zero publishable points."""

    def __init__(self, label: str, detail: str = "no data points computed") -> None:
        self.label = label
        super().__init__(f"[{label}] {detail}")


class DeflatorError(PipelineError):
    """Deflator series misconfigured: base year missing or not rebased to 100."""


# ---------------------------------------------------------------------------
# External fetch errors
# ---------------------------------------------------------------------------

class FetchError(PipelineError):
    """A remote source could not be fetched and no cached copy exists."""

    def __init__(self, url: str, detail: str, status: int | None = None) -> None:
        self.url = url
        self.status = status
        self.detail = detail
        code = f" HTTP {status}" if status is not None else ""
        super().__init__(f"fetch failed{code} {url}: {detail}")


class MissingInputError(PipelineError):
    """A required local snapshot or override file does not exist."""

    def __init__(self, label: str, path: str, hint: str = "") -> None:
        self.label = label
        self.path = path
        self.hint = hint
        suffix = f"; {hint}" if hint else ""
        super().__init__(f"[{label}] required input missing at {path}{suffix}")
