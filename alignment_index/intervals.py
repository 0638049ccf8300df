"""
alignment_index.intervals — Event normalization and temporal interval union.

Event-style inputs (shutdowns, conflict spans) carry start/end dates with
optional, loosely formatted times. This module turns them into UTC instants,
clips them to the analysis cutoff, splits them at calendar-year boundaries
and unions overlapping intervals per country-year so concurrent events are
never double-counted.

Conventions:
    - Intervals are half-open [start, end) in UTC. Duration is
      (end - start) in days, fractional.
    - A missing start time is start-of-day (00:00). A missing end time is
      end-of-day, i.e. the next midnight, so date-only events count whole
      calendar days inclusively: 2019-01-01 → 2019-01-10 is 10 days and a
      single-day event is 1 day. Both cases are flagged approximate.
    - end <= start becomes start + 1 day (approximate).
    - An unparseable end date falls back to the start day (approximate).
    - A missing end date is open-ended and clipped to the cutoff
      (approximate). Events starting at or after the cutoff are dropped;
      events ending after it are clipped (approximate).
    - The analysis cutoff is the end of the last fully completed calendar
      year: 00:00 UTC on 1 January of the current year.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, time, timedelta
from typing import Iterable, Sequence

from alignment_index.constants import SECONDS_PER_DAY

ONE_DAY = timedelta(days=1)

_ISO_DATE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})(?:[T\s](.*))?$")
_US_DATE = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})(?:\s+(.*))?$")
_TEXT_DATE_FORMATS: tuple[str, ...] = ("%d %B %Y", "%B %d, %Y", "%d %b %Y", "%b %d, %Y", "%B %d %Y")
_ORDINAL = re.compile(r"(?<=\d)(st|nd|rd|th)", re.IGNORECASE)
_ZONE = re.compile(r"\b(UTC|GMT|Z)\b", re.IGNORECASE)
_AMPM = re.compile(r"(\d{1,2})(?::(\d{2}))?(?::(\d{2}))?\s*([ap])\.?m\.?", re.IGNORECASE)
_CLOCK = re.compile(r"(\d{1,2})(?:[:hH](\d{2}))?(?::(\d{2}))?")


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class RawEvent:
    """One event row as read from the source, before any interpretation."""
    country: str
    start_date: str
    end_date: str = ""
    start_time: str = ""
    end_time: str = ""
    iso_hint: str = ""
    scope: str = ""


@dataclass(frozen=True, slots=True)
class Event:
    country: str
    iso3: str | None
    start: datetime
    end: datetime
    approximate: bool
    scope: str = ""
    iso_hint: str = ""

    @property
    def key(self) -> tuple[str | None, datetime, datetime]:
        return (self.iso3, self.start, self.end)


@dataclass(frozen=True, slots=True)
class YearInterval:
    iso3: str
    year: int
    start: datetime
    end: datetime

    @property
    def duration_days(self) -> float:
        return (self.end - self.start).total_seconds() / SECONDS_PER_DAY


@dataclass
class NormalizationResult:
    events: list[Event] = field(default_factory=list)
    approximate: int = 0
    invalid_start: int = 0
    after_cutoff: int = 0


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def analysis_cutoff(today: date) -> datetime:
    """End of the last fully completed calendar year (UTC)."""
    return datetime(today.year, 1, 1, tzinfo=UTC)


def parse_date(text: str) -> tuple[date, str] | None:
    """Parse the date part of a cell, returning (date, trailing text).

    Accepts YYYY-M-D, YYYY/M/D (optionally followed by a time), M/D/YYYY,
    and spelled-out months ("5 March 2019", "March 5, 2019").
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return None
    match = _ISO_DATE.match(trimmed)
    if match:
        year, month, day = int(match[1]), int(match[2]), int(match[3])
        rest = match[4] or ""
    else:
        match = _US_DATE.match(trimmed)
        if match:
            month, day, year = int(match[1]), int(match[2]), int(match[3])
            rest = match[4] or ""
        else:
            cleaned = _ORDINAL.sub("", trimmed)
            for fmt in _TEXT_DATE_FORMATS:
                try:
                    return datetime.strptime(cleaned, fmt).date(), ""
                except ValueError:
                    continue
            return None
    try:
        return date(year, month, day), rest.strip()
    except ValueError:
        return None


def parse_clock(text: str) -> tuple[timedelta, bool] | None:
    """Parse a loosely formatted time of day as an offset from midnight.

    Returns (offset, approximate) or None when no hour can be found.
    Ordinal suffixes and UTC/GMT markers are ignored; "3pm", "12 am" and
    "14h30" are understood. "24:00" is the following midnight. A bare hour is
    approximate, and so is any out-of-range field clamped into the day.
    """
    clean = _ZONE.sub("", _ORDINAL.sub("", text or "")).strip()
    if not clean:
        return None
    match = _AMPM.search(clean)
    if match:
        hour = int(match[1]) % 12
        if match[4].lower() == "p":
            hour += 12
        minute = int(match[2] or 0)
        second = int(match[3] or 0)
        if minute > 59 or second > 59:
            return None
        return timedelta(hours=hour, minutes=minute, seconds=second), match[2] is None
    match = _CLOCK.search(clean)
    if not match:
        return None
    hour, minute, second = int(match[1]), int(match[2] or 0), int(match[3] or 0)
    if hour == 24 and minute == 0 and second == 0:
        return ONE_DAY, False
    clamped = (min(23, hour), min(59, minute), min(59, second))
    approximate = match[2] is None or clamped != (hour, minute, second)
    return timedelta(hours=clamped[0], minutes=clamped[1], seconds=clamped[2]), approximate


def _at(day: date, offset: timedelta = timedelta(0)) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC) + offset


def _start_instant(day: date, time_text: str) -> tuple[datetime, bool]:
    parsed = parse_clock(time_text)
    if parsed is None:
        return _at(day), True
    offset, approx = parsed
    return _at(day, offset), approx


def _end_instant(day: date, time_text: str) -> tuple[datetime, bool]:
    parsed = parse_clock(time_text)
    if parsed is None:
        return _at(day + ONE_DAY), True
    offset, approx = parsed
    return _at(day, offset), approx


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize_event(raw: RawEvent, cutoff: datetime) -> Event | None:
    """Interpret one raw event. Returns None when the start date is unusable
    or the event starts at/after the cutoff."""
    start_parsed = parse_date(raw.start_date)
    if start_parsed is None:
        return None
    start_day, start_rest = start_parsed
    start, approx = _start_instant(start_day, raw.start_time or start_rest)

    if not raw.end_date.strip():
        end = cutoff
        approx = True
    else:
        end_parsed = parse_date(raw.end_date)
        if end_parsed is None:
            end_parsed = (start_day, "")
            approx = True
        end_day, end_rest = end_parsed
        end, end_approx = _end_instant(end_day, raw.end_time or end_rest)
        approx = approx or end_approx

    if end <= start:
        end = start + ONE_DAY
        approx = True
    if start >= cutoff:
        return None
    if end > cutoff:
        end = cutoff
        approx = True

    return Event(
        country=raw.country.strip(),
        iso3=None,
        start=start,
        end=end,
        approximate=approx,
        scope=raw.scope.strip(),
        iso_hint=raw.iso_hint.strip().upper(),
    )


def normalize_events(raw_events: Iterable[RawEvent], cutoff: datetime) -> NormalizationResult:
    result = NormalizationResult()
    for raw in raw_events:
        if parse_date(raw.start_date) is None:
            result.invalid_start += 1
            continue
        event = normalize_event(raw, cutoff)
        if event is None:
            result.after_cutoff += 1
            continue
        if event.approximate:
            result.approximate += 1
        result.events.append(event)
    return result


def with_iso3(event: Event, iso3: str) -> Event:
    return replace(event, iso3=iso3)


def dedupe_events(events: Iterable[Event]) -> tuple[list[Event], int]:
    """Drop events with an identical (iso3, start, end); keeps first seen."""
    seen: set[tuple[str | None, datetime, datetime]] = set()
    kept: list[Event] = []
    dropped = 0
    for event in events:
        if event.key in seen:
            dropped += 1
            continue
        seen.add(event.key)
        kept.append(event)
    return kept, dropped


# ---------------------------------------------------------------------------
# Splitting and merging
# ---------------------------------------------------------------------------

def split_by_year(event: Event) -> list[YearInterval]:
    """One sub-interval per calendar year touched, clipped to [Jan 1, Jan 1 next)."""
    if event.iso3 is None:
        raise ValueError(f"cannot split unresolved event for {event.country!r}")
    intervals: list[YearInterval] = []
    for year in range(event.start.year, event.end.year + 1):
        year_start = datetime(year, 1, 1, tzinfo=UTC)
        year_end = datetime(year + 1, 1, 1, tzinfo=UTC)
        start = max(event.start, year_start)
        end = min(event.end, year_end)
        if end > start:
            intervals.append(YearInterval(event.iso3, year, start, end))
    return intervals


def merge_duration_days(intervals: Sequence[YearInterval]) -> float:
    """Total wall-clock days covered by the union of the intervals.

    Sweep line: sort by start; an interval starting at or before the current
    union's end extends it, otherwise the union closes and a new one opens.
    """
    if not intervals:
        return 0.0
    ordered = sorted(intervals, key=lambda iv: (iv.start, iv.end))
    total = timedelta(0)
    current_start = ordered[0].start
    current_end = ordered[0].end
    for interval in ordered[1:]:
        if interval.start <= current_end:
            if interval.end > current_end:
                current_end = interval.end
            continue
        total += current_end - current_start
        current_start, current_end = interval.start, interval.end
    total += current_end - current_start
    return total.total_seconds() / SECONDS_PER_DAY
