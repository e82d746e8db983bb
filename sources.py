"""
Remote location sources: the community spreadsheet and the Refuge
Restrooms API.

Both adapters fetch through CacheStore and return a SourceResult whose
records are already filtered against the blocklist. They never raise:
transport and parse failures are absorbed by the cache layer and
reported through SourceResult.origin / .notification.

All outbound HTTP goes through http_get(), which owns timeouts, one
retry on transient failures, tracing and passive health tracking.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

import requests

from cache_store import ORIGIN_DEFAULT, ORIGIN_FRESH, CacheStore
from csv_parser import extract_last_modified, parse
from ea_trace import get_trace
from location_record import LocationRecord

logger = logging.getLogger(__name__)

SHEET_CACHE_KEY = "sheet_csv"
API_CACHE_KEY = "api_locations"

SHEET_ERROR_MESSAGE = "Could not load community map data. Please check your connection."
API_ERROR_MESSAGE = "Could not load additional locations."

API_NOTES_SUFFIX = "(Source: Refuge Restrooms API)"
API_TAGS = "Restroom"

MAX_RETRIES = 1
RETRY_BACKOFF = [1]  # seconds


class TransportFailure(Exception):
    """Network unreachable, timeout, or non-2xx response."""

    def __init__(self, message: str, status_code: int = 0, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


# =============================================================================
# HTTP
# =============================================================================

def _record_health(service: str, success: bool, elapsed_ms: int, error: Optional[str] = None) -> None:
    try:
        from health_monitor import record_call
        record_call(service, success, elapsed_ms, error)
    except Exception:
        pass


def _do_request(
    url: str,
    params: Optional[Mapping[str, Any]],
    timeout: float,
    headers: Optional[Mapping[str, str]],
    service: str,
) -> requests.Response:
    """Make a single GET. Raises TransportFailure on any failure."""
    start = time.monotonic()
    trace = get_trace()
    try:
        resp = requests.get(url, params=params, headers=headers, timeout=timeout)
    except requests.exceptions.Timeout:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        if trace:
            trace.record_api_call(service, elapsed_ms, 0, provider_status="TIMEOUT")
        _record_health(service, False, elapsed_ms, "timeout")
        raise TransportFailure(f"{service} request timed out after {timeout}s", retryable=True)
    except requests.exceptions.RequestException as e:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        if trace:
            trace.record_api_call(service, elapsed_ms, 0, provider_status="EXCEPTION")
        _record_health(service, False, elapsed_ms, str(e))
        raise TransportFailure(f"{service} request failed: {e}", retryable=True) from e

    elapsed_ms = int((time.monotonic() - start) * 1000)
    ok = 200 <= resp.status_code < 300
    if trace:
        trace.record_api_call(
            service,
            elapsed_ms,
            resp.status_code,
            provider_status="OK" if ok else "HTTP_ERROR",
        )
    if not ok:
        _record_health(service, False, elapsed_ms, f"HTTP {resp.status_code}")
        raise TransportFailure(
            f"{service} returned HTTP {resp.status_code}",
            status_code=resp.status_code,
            retryable=resp.status_code >= 500,
        )
    _record_health(service, True, elapsed_ms)
    return resp


def http_get(
    url: str,
    params: Optional[Mapping[str, Any]] = None,
    timeout: float = 15.0,
    headers: Optional[Mapping[str, str]] = None,
    service: str = "unknown",
) -> requests.Response:
    """GET with one retry on timeouts and 5xx.

    Raises:
        TransportFailure: after retries are exhausted, or immediately on 4xx.
    """
    for attempt in range(1 + MAX_RETRIES):
        try:
            return _do_request(url, params, timeout, headers, service)
        except TransportFailure as e:
            if not e.retryable or attempt >= MAX_RETRIES:
                raise
            sleep_time = RETRY_BACKOFF[attempt]
            logger.info(
                "%s fetch failed (attempt %d/%d), sleeping %ds before retry: %s",
                service, attempt + 1, 1 + MAX_RETRIES, sleep_time, e,
            )
            time.sleep(sleep_time)
    # unreachable: the loop either returns or raises
    raise TransportFailure(f"{service} request failed after all retries")


def _cache_buster_url(url: str) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}cb={int(time.time() * 1000)}"


# =============================================================================
# Shared result type
# =============================================================================

@dataclass
class SourceResult:
    records: List[LocationRecord]
    origin: str
    last_modified: Optional[datetime] = None
    notification: Optional[str] = None
    cached_at: Optional[int] = None  # epoch ms of the data served

    @property
    def unavailable(self) -> bool:
        return self.origin == ORIGIN_DEFAULT


def filter_blocked(records: Iterable[LocationRecord], blocklist: Set[str], source: str) -> List[LocationRecord]:
    kept = []
    for record in records:
        if record.identity in blocklist:
            logger.info("Blocking %s location due to blocklist: %r", source, record.location)
            continue
        kept.append(record)
    return kept


# =============================================================================
# Spreadsheet adapter
# =============================================================================

def _sheet_transform(text: Optional[str]) -> str:
    return text or ""


class SheetSource:
    """Primary source: the community-maintained Google Sheet CSV export.

    The raw CSV text is what gets cached, so the offline fallback can
    still report the sheet's own "Last Modified" stamp.
    """

    service = "sheet"

    def __init__(self, store: CacheStore, url: str, ttl: float = 0, timeout: float = 15.0):
        self.store = store
        self.url = url
        self.ttl = ttl
        self.timeout = timeout

    def fetch_text(self) -> str:
        resp = http_get(
            _cache_buster_url(self.url),
            timeout=self.timeout,
            headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
            service=self.service,
        )
        return resp.text

    def load(self, blocklist: Set[str]) -> SourceResult:
        result = self.store.fetch_with_cache_result(
            SHEET_CACHE_KEY, self.ttl, self.fetch_text, _sheet_transform,
        )
        text = result.data
        records = filter_blocked(parse(text), blocklist, "sheet")

        if result.origin == ORIGIN_FRESH and not records:
            logger.warning("Sheet fetch succeeded but yielded no usable records")
        notification = None
        if result.origin == ORIGIN_DEFAULT:
            logger.error("No sheet data available, live or offline")
            notification = SHEET_ERROR_MESSAGE

        return SourceResult(
            records=records,
            origin=result.origin,
            last_modified=extract_last_modified(text),
            notification=notification,
            cached_at=result.timestamp,
        )


# =============================================================================
# Refuge Restrooms API adapter
# =============================================================================

def map_api_item(item: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Map one Refuge Restrooms item to a LocationRecord dict (None if nameless)."""
    name = (item.get("name") or "").strip()
    if not name:
        return None
    unisex = bool(item.get("unisex"))
    accessible = bool(item.get("accessible"))
    comment = item.get("comment") or ""
    return {
        "Location": name,
        "Address": f"{item.get('street') or ''}, {item.get('city') or ''}",
        "LatLong": f"{item.get('latitude')}, {item.get('longitude')}",
        "Privacy": "Private" if unisex else "Public",
        "Gendered": "All-Gender" if unisex else "Gendered",
        "Accessibility": "Accessible" if accessible else "Not Accessible",
        "Notes": f"{comment} {API_NOTES_SUFFIX}",
        "Tags": API_TAGS,
        "Access": item.get("directions") or "Open",
        "Hours": "",
        "WifiCode": "",
        "isApiSource": True,
    }


def _api_transform(payload: Any) -> List[Dict[str, Any]]:
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise ValueError(f"expected a JSON array, got {type(payload).__name__}")
    mapped = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        row = map_api_item(item)
        if row is not None:
            mapped.append(row)
    return mapped


class RefugeApiSource:
    """Supplementary source: restrooms near a fixed point from refugerestrooms.org."""

    service = "refuge_api"

    def __init__(
        self,
        store: CacheStore,
        url: str,
        lat: float,
        lng: float,
        ttl: float = 24 * 60 * 60,
        per_page: int = 50,
        timeout: float = 15.0,
    ):
        self.store = store
        self.url = url
        self.lat = lat
        self.lng = lng
        self.ttl = ttl
        self.per_page = per_page
        self.timeout = timeout

    def fetch_json(self) -> Any:
        resp = http_get(
            self.url,
            params={"lat": self.lat, "lng": self.lng, "per_page": self.per_page},
            timeout=self.timeout,
            service=self.service,
        )
        return resp.json()

    def load(self, blocklist: Set[str]) -> SourceResult:
        result = self.store.fetch_with_cache_result(
            API_CACHE_KEY, self.ttl, self.fetch_json, _api_transform,
        )
        records = []
        for row in result.data or []:
            record = LocationRecord.from_dict(row, is_api_source=True)
            if record is not None:
                records.append(record)
        records = filter_blocked(records, blocklist, "API")

        notification = None
        if result.origin == ORIGIN_DEFAULT:
            notification = API_ERROR_MESSAGE
        return SourceResult(
            records=records,
            origin=result.origin,
            notification=notification,
            cached_at=result.timestamp,
        )
