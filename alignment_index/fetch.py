"""
alignment_index.fetch — Fetch-with-bounded-retry and source loading.

One retry capability is shared by every pipeline that talks to a remote
source. A request is retried only when the retryable predicate says so
(HTTP 429, 5xx, transport errors); every other failure is raised at once.

Backoff before attempt n+1 is backoff_base * 2 ** (n - 1) seconds.

Source loading precedence (load_source):
    1. an explicit override path (pinned snapshot / CI fixture)
    2. OFFLINE=1 → the cached copy under data/raw, or fail
    3. the remote URL; a successful body refreshes the cache
    4. on fetch failure, the cached copy (logged as a fallback), or fail

Design contract:
    - The sleep function is injectable; tests never wait.
    - Content-type mismatches are not retried.
    - Paginated readers (World Bank, OpenAlex) either return every page or
      raise. Partial pagination is never returned.
"""

from __future__ import annotations

import io
import json
import logging
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import httpx

from alignment_index.constants import USER_AGENT
from alignment_index.errors import FetchError, MissingInputError

logger = logging.getLogger("gai.fetch")

TEXT_EXTENSIONS: tuple[str, ...] = (".csv", ".tsv", ".txt")
"""Archive members and cache files that are read as delimited text."""

WDI_PER_PAGE: int = 20000
OPENALEX_PER_PAGE: int = 200
MAX_PAGES: int = 500
"""Upper bound on pagination loops."""


def is_retryable_status(status: int) -> bool:
    return status == 429 or 500 <= status < 600


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 5
    backoff_base: float = 0.5
    retryable: Callable[[int], bool] = is_retryable_status

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt `attempt` (1-based)."""
        return self.backoff_base * (2 ** (attempt - 1))


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------

class Fetcher:
    """GET with timeout and bounded exponential backoff over an httpx.Client."""

    def __init__(
        self,
        client: httpx.Client,
        policy: RetryPolicy | None = None,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if policy is not None and policy.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._client = client
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self._sleep = sleep

    def get(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        accept: str = "*/*",
    ) -> httpx.Response:
        """Return a 2xx response or raise FetchError after the last attempt."""
        headers = {"User-Agent": USER_AGENT, "Accept": accept}
        max_attempts = self.policy.max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                response = self._client.get(
                    url, params=params, headers=headers,
                    timeout=self.timeout, follow_redirects=True,
                )
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                error = FetchError(url, exc.response.reason_phrase or "HTTP error", status)
                if not self.policy.retryable(status):
                    raise error from exc
            except httpx.TransportError as exc:
                error = FetchError(url, f"{type(exc).__name__}: {exc}")

            if attempt >= max_attempts:
                logger.error(json.dumps({
                    "event": "fetch_failed",
                    "url": url,
                    "attempts": attempt,
                    "status": error.status,
                    "detail": error.detail,
                }))
                raise error
            wait = self.policy.delay(attempt)
            logger.warning(json.dumps({
                "event": "fetch_retry",
                "url": url,
                "attempt": attempt,
                "max_attempts": max_attempts,
                "status": error.status,
                "wait_s": wait,
            }))
            self._sleep(wait)
        raise AssertionError("unreachable")

    def fetch_text(self, url: str, *, params: Mapping[str, Any] | None = None) -> str:
        response = self.get(url, params=params, accept="text/csv,text/plain,*/*")
        content_type = response.headers.get("content-type", "").lower()
        if "html" in content_type:
            raise FetchError(url, f"unexpected content-type {content_type!r}", response.status_code)
        return response.text

    def fetch_json(self, url: str, *, params: Mapping[str, Any] | None = None) -> Any:
        response = self.get(url, params=params, accept="application/json")
        content_type = response.headers.get("content-type", "").lower()
        if "json" not in content_type:
            raise FetchError(url, f"unexpected content-type {content_type!r}", response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(url, f"invalid JSON body: {exc}", response.status_code) from exc

    def fetch_bytes(self, url: str) -> tuple[bytes, str]:
        """Body and lower-cased content-type."""
        response = self.get(url, accept="text/csv,application/zip,application/octet-stream")
        return response.content, response.headers.get("content-type", "").lower()


# ---------------------------------------------------------------------------
# Archives and cache
# ---------------------------------------------------------------------------

def is_text_member(name: str) -> bool:
    return name.lower().endswith(TEXT_EXTENSIONS)


def looks_like_zip(content: bytes, content_type: str = "") -> bool:
    return "zip" in content_type or content[:4] == b"PK\x03\x04"


def extract_text_members(content: bytes) -> list[tuple[str, str]]:
    """(basename, text) for every delimited-text member of a zip archive."""
    members: list[tuple[str, str]] = []
    with zipfile.ZipFile(io.BytesIO(content)) as archive:
        for info in sorted(archive.infolist(), key=lambda i: i.filename):
            if info.is_dir() or not is_text_member(info.filename):
                continue
            text = archive.read(info).decode("utf-8-sig")
            members.append((Path(info.filename).name, text))
    return members


def read_cached_texts(directory: Path) -> list[tuple[str, str]]:
    """(relative name, text) for every delimited-text file below `directory`."""
    if not directory.is_dir():
        return []
    files: list[tuple[str, str]] = []
    for path in sorted(directory.rglob("*")):
        if path.is_file() and is_text_member(path.name):
            files.append((str(path.relative_to(directory)), path.read_text(encoding="utf-8-sig")))
    return files


def write_cache(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".tmp_{path.name}")
    tmp.write_bytes(content)
    tmp.replace(path)


def load_source(
    fetcher: Fetcher,
    *,
    label: str,
    cache_path: Path,
    url: str | None,
    override_path: Path | None = None,
    offline: bool = False,
) -> str:
    """Load one delimited-text source following the precedence above."""
    if override_path is not None:
        if not override_path.is_file():
            raise MissingInputError(label, str(override_path), "override path does not exist")
        logger.info(json.dumps({"event": "source_override", "source": label, "path": str(override_path)}))
        return override_path.read_text(encoding="utf-8-sig")

    if offline or not url:
        if not cache_path.is_file():
            reason = "OFFLINE=1" if offline else "no remote URL configured"
            raise MissingInputError(label, str(cache_path), f"{reason} and no cached snapshot")
        logger.info(json.dumps({"event": "source_cached", "source": label, "path": str(cache_path)}))
        return cache_path.read_text(encoding="utf-8-sig")

    try:
        content, content_type = fetcher.fetch_bytes(url)
        if looks_like_zip(content, content_type):
            members = extract_text_members(content)
            if not members:
                raise FetchError(url, "archive contains no delimited text file")
            text = members[0][1]
        else:
            text = content.decode("utf-8-sig")
        if not text.strip():
            raise FetchError(url, "remote response empty")
    except FetchError as exc:
        if not cache_path.is_file():
            raise
        logger.warning(json.dumps({
            "event": "source_fallback_cached",
            "source": label,
            "url": url,
            "detail": str(exc),
            "path": str(cache_path),
        }))
        return cache_path.read_text(encoding="utf-8-sig")

    write_cache(cache_path, text.encode("utf-8"))
    logger.info(json.dumps({"event": "source_fetched", "source": label, "url": url, "bytes": len(text)}))
    return text


# ---------------------------------------------------------------------------
# Paginated APIs
# ---------------------------------------------------------------------------

def fetch_wdi_indicator(
    fetcher: Fetcher,
    base_url: str,
    indicator: str,
    country: str = "all",
) -> list[dict[str, Any]]:
    """Every row of a World Bank v2 indicator, across all pages.

    Pages are `[meta, rows]` arrays; meta["pages"] gives the page count.
    """
    url = f"{base_url.rstrip('/')}/country/{country}/indicator/{indicator}"
    rows: list[dict[str, Any]] = []
    page = 1
    pages = 1
    while page <= pages:
        payload = fetcher.fetch_json(url, params={"format": "json", "per_page": WDI_PER_PAGE, "page": page})
        if (
            not isinstance(payload, list)
            or len(payload) < 2
            or not isinstance(payload[0], dict)
            or not isinstance(payload[1], list)
        ):
            raise FetchError(url, f"unexpected World Bank payload on page {page}")
        try:
            pages = min(int(payload[0].get("pages") or 1), MAX_PAGES)
        except (TypeError, ValueError):
            raise FetchError(url, f"unexpected World Bank page count on page {page}") from None
        rows.extend(row for row in payload[1] if isinstance(row, dict))
        page += 1
    logger.info(json.dumps({"event": "wdi_fetched", "indicator": indicator, "rows": len(rows), "pages": pages}))
    return rows


def wdi_records(rows: Sequence[Mapping[str, Any]]) -> list[dict[str, str]]:
    """Flatten World Bank API rows into iso3/country/year/value string records."""
    records: list[dict[str, str]] = []
    for row in rows:
        country = row.get("country") or {}
        iso3 = row.get("countryiso3code") or (country.get("id") if isinstance(country, dict) else "") or ""
        name = country.get("value", "") if isinstance(country, dict) else ""
        value = row.get("value")
        if value is not None and not isinstance(value, (int, float, str)):
            raise FetchError("World Bank API", f"unexpected value {value!r} for {iso3} {row.get('date')}")
        records.append({
            "iso3": str(iso3).strip().upper(),
            "country": str(name or ""),
            "year": str(row.get("date") or ""),
            "value": "" if value is None else repr(float(value)),
        })
    return records


def fetch_openalex_groups(
    fetcher: Fetcher,
    base_url: str,
    filter_expr: str,
    *,
    mailto: str = "",
    group_by: str = "publication_year",
) -> dict[int, int]:
    """Sum of OpenAlex group counts keyed by integer group key.

    Follows meta.next_cursor until it is empty. Keys that are not integers
    are ignored. A repeated cursor is an error.
    """
    params: dict[str, Any] = {"filter": filter_expr, "group_by": group_by, "per-page": OPENALEX_PER_PAGE}
    if mailto:
        params["mailto"] = mailto
    counts: dict[int, int] = {}
    seen: set[str] = set()
    cursor: str | None = None
    for _ in range(MAX_PAGES):
        page_params = dict(params, cursor=cursor) if cursor else params
        payload = fetcher.fetch_json(base_url, params=page_params)
        if not isinstance(payload, dict):
            raise FetchError(base_url, "unexpected OpenAlex payload")
        groups = payload.get("group_by") or []
        meta = payload.get("meta") or {}
        if not isinstance(groups, list) or not isinstance(meta, dict):
            raise FetchError(base_url, "unexpected OpenAlex payload")
        for entry in groups:
            if not isinstance(entry, dict):
                raise FetchError(base_url, "unexpected OpenAlex group entry")
            try:
                key = int(str(entry.get("key")))
            except (TypeError, ValueError):
                continue
            try:
                count = int(entry.get("count") or 0)
            except (TypeError, ValueError):
                raise FetchError(base_url, f"unexpected OpenAlex count for group {key}") from None
            counts[key] = counts.get(key, 0) + count
        cursor = meta.get("next_cursor")
        if not cursor:
            return dict(sorted(counts.items()))
        if cursor in seen:
            raise FetchError(base_url, f"OpenAlex cursor repeated: {cursor}")
        seen.add(cursor)
    raise FetchError(base_url, f"OpenAlex pagination exceeded {MAX_PAGES} pages")
