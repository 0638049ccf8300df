"""
alignment_index.pipelines.internet_shutdowns — Population-weighted shutdown days.

Input: Access Now #KeepItOn STOP shutdown events (CSV/TSV, possibly inside
a ZIP) and country population.

Method:
    1. Events are normalized to UTC instants (see alignment_index.intervals).
    2. Each event is resolved to ISO3; unresolved events are counted.
    3. Identical (iso3, start, end) events are deduplicated.
    4. Events are split at calendar-year boundaries; per country-year the
       intervals are unioned so concurrent shutdowns count once.
    5. value(year) = Σ days(iso, year) · pop(iso, year) / Σ pop(year)

Source precedence: STOP_FIXTURE_PATH → files cached under data/raw/keepiton
→ the STOP bundle URL plus any per-year URLs from STOP_YEAR_URL_TEMPLATE.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path
from urllib.parse import urlparse

from alignment_index.aggregation import population_share_total
from alignment_index.countries import CountryResolver
from alignment_index.errors import EmptyOutputError, FetchError, MissingInputError, PipelineError
from alignment_index.fetch import extract_text_members, is_text_member, looks_like_zip, read_cached_texts, write_cache
from alignment_index.intervals import (
    RawEvent,
    YearInterval,
    dedupe_events,
    merge_duration_days,
    normalize_events,
    split_by_year,
    with_iso3,
)
from alignment_index.pipeline import MetricPipeline, PipelineContext, PipelineResult, published, series_payload
from alignment_index.pipelines.common import POPULATION_SOURCE_ID, population_source, source_entry
from alignment_index.provenance import build_gaisum, unresolved_sample
from alignment_index.tabular import Table, optional_column, parse_table, require_column
from alignment_index.transforms import round_half_away
from alignment_index.validation import SeriesRules, validate_series

STOP_SOURCE_ID = "accessnow_keepiton_stop"
STOP_BUNDLE_URL = "https://stop.accessnow.org/wp-content/uploads/keepiton/STOP_2016-2024.csv"
STOP_CACHE_DIR = "keepiton"
START_YEAR = 2016
DECIMALS = 1

COUNTRY_COLUMNS: tuple[str, ...] = ("country", "country_name", "affected_country", "territory")
ISO_HINT_COLUMNS: tuple[str, ...] = ("iso", "iso3", "country_iso", "iso_code")
START_DATE_COLUMNS: tuple[str, ...] = ("start_date", "start", "startdate", "date_start", "event_start_date")
END_DATE_COLUMNS: tuple[str, ...] = ("end_date", "end", "enddate", "date_end", "event_end_date")
START_TIME_COLUMNS: tuple[str, ...] = ("start_time", "starttime", "time_start", "event_start_time")
END_TIME_COLUMNS: tuple[str, ...] = ("end_time", "endtime", "time_end", "event_end_time")
SCOPE_COLUMNS: tuple[str, ...] = ("scope", "network_scope", "shutdown_scope", "type")


def parse_stop_events(table: Table) -> list[RawEvent]:
    """RawEvents from one STOP table. Rows without a country or start date are skipped."""
    if not table.headers:
        return []
    country_col = optional_column(table, COUNTRY_COLUMNS, fuzzy=("country",)) or table.headers[0]
    start_col = require_column(table, START_DATE_COLUMNS, fuzzy=("start", "date"), concept="start_date")
    end_col = optional_column(table, END_DATE_COLUMNS, fuzzy=("end_date",))
    iso_col = optional_column(table, ISO_HINT_COLUMNS)
    start_time_col = optional_column(table, START_TIME_COLUMNS, fuzzy=("start_time",))
    end_time_col = optional_column(table, END_TIME_COLUMNS, fuzzy=("end_time",))
    scope_col = optional_column(table, SCOPE_COLUMNS, fuzzy=("scope",))

    def cell(record: dict[str, str], column: str | None) -> str:
        return record.get(column, "").strip() if column else ""

    events: list[RawEvent] = []
    for record in table:
        country = cell(record, country_col)
        start_date = cell(record, start_col)
        if not country or not start_date:
            continue
        events.append(RawEvent(
            country=country,
            start_date=start_date,
            end_date=cell(record, end_col),
            start_time=cell(record, start_time_col),
            end_time=cell(record, end_time_col),
            iso_hint=cell(record, iso_col),
            scope=cell(record, scope_col),
        ))
    return events


def _filename_from_url(url: str) -> str:
    name = Path(urlparse(url).path).name
    return name if is_text_member(name) else f"{name or 'stop'}.csv"


class InternetShutdownDays(MetricPipeline):
    id = "internet_shutdown_days"
    title = "Internet shutdown days (population-weighted, annual)"
    inputs = (STOP_SOURCE_ID, "data/raw/pop_by_country.csv")
    rules = SeriesRules(hard_min=0.0, hard_max=366.0)

    # -- loading ------------------------------------------------------------

    def _remote_urls(self, ctx: PipelineContext) -> list[str]:
        urls = [ctx.settings.source_override("STOP_BUNDLE_URL") or STOP_BUNDLE_URL]
        template = ctx.settings.source_override("STOP_YEAR_URL_TEMPLATE")
        if template:
            urls.extend(template.replace("{year}", str(year)) for year in range(START_YEAR, ctx.today.year + 1))
        return list(dict.fromkeys(urls))

    def _fetch_remote(self, ctx: PipelineContext) -> list[tuple[str, str]]:
        cache_dir = ctx.raw_path(STOP_CACHE_DIR)
        files: list[tuple[str, str]] = []
        for url in self._remote_urls(ctx):
            try:
                content, content_type = ctx.fetcher.fetch_bytes(url)
            except FetchError as exc:
                self.log("stop_fetch_failed", logging.WARNING, url=url, detail=str(exc))
                continue
            if looks_like_zip(content, content_type):
                members = extract_text_members(content)
            else:
                members = [(_filename_from_url(url), content.decode("utf-8-sig"))]
            for name, text in members:
                write_cache(cache_dir / name, text.encode("utf-8"))
                files.append((name, text))
        return files

    def _load_sources(self, ctx: PipelineContext) -> list[tuple[str, str]]:
        fixture = ctx.override_path("STOP_FIXTURE_PATH")
        if fixture is not None:
            if not fixture.is_file():
                raise MissingInputError("stop", str(fixture), "check STOP_FIXTURE_PATH")
            self.log("stop_fixture", path=str(fixture))
            return [(fixture.name, fixture.read_text(encoding="utf-8-sig"))]

        files = read_cached_texts(ctx.raw_path(STOP_CACHE_DIR))
        if not files and not ctx.settings.offline:
            files = self._fetch_remote(ctx)
        if not files:
            raise MissingInputError(
                "stop",
                str(ctx.raw_path(STOP_CACHE_DIR)),
                "set STOP_FIXTURE_PATH or provide data/raw/keepiton/*.csv",
            )
        return files

    def _raw_events(self, ctx: PipelineContext) -> list[RawEvent]:
        fixture = ctx.override_path("STOP_FIXTURE_PATH") is not None
        raw_events: list[RawEvent] = []
        for name, text in self._load_sources(ctx):
            try:
                raw_events.extend(parse_stop_events(parse_table(text, label=f"stop:{name}")))
            except PipelineError as exc:
                if fixture:
                    raise
                self.log("stop_file_skipped", logging.WARNING, file=name, detail=str(exc))
        if not raw_events:
            raise EmptyOutputError("stop", "STOP dataset produced zero events")
        return raw_events

    # -- run ----------------------------------------------------------------

    def run(self, ctx: PipelineContext) -> PipelineResult:
        population = ctx.load_population()
        raw_events = self._raw_events(ctx)
        normalized = normalize_events(raw_events, ctx.cutoff)

        resolver = CountryResolver(population.name_index)
        unresolved: list[str] = []
        resolved = []
        for event in normalized.events:
            resolution = resolver.resolve(event.country, iso_hint=event.iso_hint)
            if resolution.iso3 is None:
                unresolved.append(event.country)
                continue
            resolved.append(with_iso3(event, resolution.iso3))
        events, duplicates = dedupe_events(resolved)

        buckets: dict[tuple[str, int], list[YearInterval]] = defaultdict(list)
        dropped_no_population = 0
        for event in events:
            for interval in split_by_year(event):
                if (interval.iso3, interval.year) not in population:
                    dropped_no_population += 1
                    continue
                buckets[(interval.iso3, interval.year)].append(interval)
        if not buckets:
            raise EmptyOutputError(self.id, "merged intervals empty after population filtering")

        days_by_year: dict[int, dict[str, float]] = defaultdict(dict)
        for (iso3, year), intervals in sorted(buckets.items()):
            days_by_year[year][iso3] = merge_duration_days(intervals)

        values: dict[int, float] = {}
        share_affected: dict[str, float] = {}
        for year in sorted(days_by_year):
            if year < START_YEAR:
                continue
            weighted, share = population_share_total(days_by_year[year], population.for_year(year))
            values[year] = weighted
            share_affected[str(year)] = round_half_away(share, 4)
        if not values:
            raise EmptyOutputError(self.id, f"no shutdown years >= {START_YEAR}")

        series = series_payload(values, DECIMALS)
        validate_series(series, self.rules, self.id)

        countries = sorted({iso3 for iso3, _ in buckets})
        gaisum = build_gaisum(
            self.id,
            series,
            rows_in=len(raw_events),
            notes={
                "events_resolved": len(events),
                "approx_duration_events": normalized.approximate,
                "invalid_start_date": normalized.invalid_start,
                "after_cutoff": normalized.after_cutoff,
                "duplicate_events": duplicates,
                "dropped_no_iso": len(unresolved),
                "dropped_no_population": dropped_no_population,
                "unresolved_sample": unresolved_sample(unresolved),
                "per_year_pop_share_affected": share_affected,
            },
            extra={
                "coverage_countries": len(countries),
                "mean_days_world": round_half_away(sum(values.values()) / len(values), 3),
            },
        )
        self.log(
            "shutdown_events",
            resolved=len(events),
            dropped_no_iso=len(unresolved),
            dropped_no_population=dropped_no_population,
            approx=normalized.approximate,
        )

        output = published(f"{self.id}.json")
        sources = {
            STOP_SOURCE_ID: source_entry(
                ctx,
                name="#KeepItOn Shutdown Tracker (STOP)",
                domain="Truth & Clarity",
                unit="shutdown days",
                source_org="Access Now",
                source_url=ctx.settings.source_override("STOP_BUNDLE_URL") or STOP_BUNDLE_URL,
                license="© Access Now, used under fair-use for research",
                cadence="event",
                method=(
                    "Ingest Access Now STOP shutdown events (2016→latest), normalize times to UTC, "
                    "split by calendar year, merge overlapping country-year intervals, and compute "
                    "population-weighted shutdown days."
                ),
                data_start_year=START_YEAR,
                notes="Scope includes all STOP-verified shutdown types (mobile, regional, national).",
            ),
            POPULATION_SOURCE_ID: population_source(ctx),
            self.id: source_entry(
                ctx,
                name=self.title,
                domain="Truth & Clarity",
                unit="days",
                source_org="Global Alignment Index",
                source_url=f"/{output}",
                license="CC BY 4.0",
                method=(
                    "Derived metric: Access Now STOP events normalized to UTC, split by year, merged "
                    "per country-year, and weighted by World Bank population (SP.POP.TOTL). Values "
                    "rounded to 1 decimal."
                ),
                data_start_year=START_YEAR,
                type="derived",
                inputs=[STOP_SOURCE_ID, POPULATION_SOURCE_ID],
                produces=[output],
            ),
        }
        return PipelineResult(metric_id=self.id, artifacts={output: series}, gaisum=gaisum, sources=sources)
