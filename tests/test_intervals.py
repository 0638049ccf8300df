"""
tests/test_intervals.py — Event normalization, year splitting, interval union.

Covers:
    - Date and time parsing (ISO, US, spelled months, am/pm, UTC markers)
    - Inclusive end-day convention for date-only events
    - Open-ended, inverted and post-cutoff events
    - Year-boundary splitting and sweep-line union
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from alignment_index.intervals import (
    Event,
    RawEvent,
    YearInterval,
    analysis_cutoff,
    dedupe_events,
    merge_duration_days,
    normalize_event,
    normalize_events,
    parse_clock,
    parse_date,
    split_by_year,
    with_iso3,
)

CUTOFF = analysis_cutoff(date(2024, 6, 1))


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=UTC)


def _interval(start_day: int, end_day: int, iso3: str = "IND", year: int = 2019) -> YearInterval:
    return YearInterval(iso3, year, _utc(year, 1, start_day), _utc(year, 1, end_day))


def _event(raw: RawEvent, iso3: str = "IND") -> Event:
    event = normalize_event(raw, CUTOFF)
    assert event is not None
    return with_iso3(event, iso3)


class TestParsing:
    def test_cutoff_is_start_of_current_year(self) -> None:
        assert CUTOFF == _utc(2024, 1, 1)

    @pytest.mark.parametrize("text, expected", [
        ("2019-01-05", date(2019, 1, 5)),
        ("2019/1/5", date(2019, 1, 5)),
        ("1/5/2019", date(2019, 1, 5)),
        ("5th March 2019", date(2019, 3, 5)),
        ("March 5, 2019", date(2019, 3, 5)),
    ])
    def test_date_formats(self, text: str, expected: date) -> None:
        parsed = parse_date(text)
        assert parsed is not None
        assert parsed[0] == expected

    def test_date_with_trailing_time(self) -> None:
        assert parse_date("2019-01-05 14:30") == (date(2019, 1, 5), "14:30")

    @pytest.mark.parametrize("text", ["", "soon", "2019-02-30"])
    def test_bad_dates(self, text: str) -> None:
        assert parse_date(text) is None

    def test_clock_times(self) -> None:
        assert parse_clock("14:30 UTC") == (timedelta(hours=14, minutes=30), False)
        assert parse_clock("3pm") == (timedelta(hours=15), True)
        assert parse_clock("12:15 am GMT") == (timedelta(minutes=15), False)
        assert parse_clock("14h30") == (timedelta(hours=14, minutes=30), False)
        assert parse_clock("unknown") is None
        assert parse_clock("") is None

    def test_clock_end_of_day(self) -> None:
        """24:00 is the following midnight; other out-of-range fields are clamped and flagged."""
        assert parse_clock("24:00") == (timedelta(days=1), False)
        assert parse_clock("25:10") == (timedelta(hours=23, minutes=10), True)
        assert parse_clock("10:75") == (timedelta(hours=10, minutes=59), True)


class TestNormalization:
    def test_date_only_is_end_day_inclusive(self) -> None:
        """India 2019-01-01 → 2019-01-10 covers 10 whole days."""
        event = _event(RawEvent("India", "2019-01-01", "2019-01-10"))
        assert event.start == _utc(2019, 1, 1)
        assert event.end == _utc(2019, 1, 11)
        assert event.approximate

        intervals = split_by_year(event)
        assert len(intervals) == 1
        assert intervals[0].year == 2019
        assert merge_duration_days(intervals) == 10.0

    def test_single_day_event_is_one_day(self) -> None:
        event = _event(RawEvent("India", "2020-03-03", "2020-03-03"))
        assert merge_duration_days(split_by_year(event)) == 1.0

    def test_explicit_times_are_exact(self) -> None:
        event = _event(RawEvent("India", "2020-03-03", "2020-03-03", "06:00", "18:00"))
        assert not event.approximate
        assert merge_duration_days(split_by_year(event)) == 0.5

    def test_end_at_24_00_reaches_midnight(self) -> None:
        event = _event(RawEvent("India", "2020-03-03", "2020-03-03", "12:00", "24:00"))
        assert event.end == _utc(2020, 3, 4)
        assert not event.approximate
        assert merge_duration_days(split_by_year(event)) == 0.5

    def test_inverted_span_becomes_one_day(self) -> None:
        event = _event(RawEvent("India", "2020-03-03", "2020-03-01", "10:00", "09:00"))
        assert event.end == event.start.replace(day=4)
        assert event.approximate

    def test_missing_end_runs_to_cutoff(self) -> None:
        event = _event(RawEvent("India", "2023-12-01", ""))
        assert event.end == CUTOFF
        assert event.approximate

    def test_unparseable_end_uses_start_day(self) -> None:
        event = _event(RawEvent("India", "2020-03-03", "ongoing?"))
        assert event.end == _utc(2020, 3, 4)
        assert event.approximate

    def test_end_after_cutoff_clipped(self) -> None:
        event = _event(RawEvent("India", "2023-12-30", "2024-02-01"))
        assert event.end == CUTOFF

    def test_counts(self) -> None:
        """Invalid starts and post-cutoff events are counted, not kept."""
        result = normalize_events([
            RawEvent("India", "2019-01-01", "2019-01-10"),
            RawEvent("India", "not a date", "2019-01-10"),
            RawEvent("India", "2024-01-01", "2024-01-05"),
            RawEvent("India", "2019-02-01 10:00", "2019-02-01 12:00"),
        ], CUTOFF)
        assert len(result.events) == 2
        assert result.invalid_start == 1
        assert result.after_cutoff == 1
        assert result.approximate == 1

    def test_dedupe(self) -> None:
        raw = RawEvent("India", "2019-01-01", "2019-01-10")
        events, dropped = dedupe_events([_event(raw), _event(raw), _event(raw, "PAK")])
        assert len(events) == 2
        assert dropped == 1


class TestSplitAndMerge:
    def test_split_across_year_boundary(self) -> None:
        event = _event(RawEvent("India", "2019-12-30", "2020-01-02"))
        intervals = split_by_year(event)
        assert [iv.year for iv in intervals] == [2019, 2020]
        assert [iv.duration_days for iv in intervals] == [2.0, 2.0]

    def test_split_requires_iso3(self) -> None:
        event = normalize_event(RawEvent("Atlantis", "2019-01-01", "2019-01-02"), CUTOFF)
        assert event is not None
        with pytest.raises(ValueError):
            split_by_year(event)

    def test_overlapping_union(self) -> None:
        """[day 1, day 10) ∪ [day 5, day 15) is 14 days, not 9 + 10."""
        assert merge_duration_days([_interval(1, 10), _interval(5, 15)]) == 14.0

    def test_disjoint_date_only_events(self) -> None:
        """Date-only events 1–5 and 10–12 count 5 + 3 = 8 days."""
        intervals = [
            iv
            for raw in (RawEvent("India", "2019-01-01", "2019-01-05"), RawEvent("India", "2019-01-10", "2019-01-12"))
            for iv in split_by_year(_event(raw))
        ]
        assert merge_duration_days(intervals) == 8.0

    def test_contained_and_touching(self) -> None:
        """A contained interval adds nothing; touching intervals chain."""
        assert merge_duration_days([_interval(1, 10), _interval(2, 3)]) == 9.0
        assert merge_duration_days([_interval(1, 3), _interval(3, 5)]) == 4.0

    def test_order_independent(self) -> None:
        intervals = [_interval(10, 12), _interval(1, 5), _interval(4, 6)]
        assert merge_duration_days(intervals) == merge_duration_days(list(reversed(intervals))) == 7.0

    def test_empty(self) -> None:
        assert merge_duration_days([]) == 0.0
