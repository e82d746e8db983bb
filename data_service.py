"""
Orchestrates one full data refresh.

load_all() resolves the blocklist first (both sources filter against it),
then loads the sheet and the API concurrently. Each source succeeds or
fails on its own: a crash in one never discards the other's result.
Finally the display set is recomputed and a LoadStatus describes what the
user is looking at (fresh data, an offline copy, or nothing).
"""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from aggregator import FilterSet, recompute
from blocklist import BlocklistSource
from cache_store import ORIGIN_DEFAULT, ORIGIN_STALE, CacheStore
from config import Settings, load_settings
from ea_trace import TraceContext, clear_trace, get_trace, set_trace
from location_record import LocationRecord
from sources import (
    API_ERROR_MESSAGE,
    SHEET_ERROR_MESSAGE,
    RefugeApiSource,
    SheetSource,
    SourceResult,
)

logger = logging.getLogger(__name__)

STATE_LOADING = "loading"
STATE_FRESH = "fresh"
STATE_OFFLINE = "offline"
STATE_UNAVAILABLE = "unavailable"


@dataclass
class LoadStatus:
    """What the status line shows after a refresh."""
    state: str = STATE_LOADING
    message: str = ""
    last_modified: Optional[datetime] = None
    notifications: List[Dict[str, str]] = field(default_factory=list)
    loaded_at: Optional[datetime] = None
    # When the served sheet copy was fetched (differs from loaded_at offline)
    data_as_of: Optional[datetime] = None

    def notify(self, message: str, level: str = "error") -> None:
        self.notifications.append({"level": level, "message": message})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "message": self.message,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "notifications": list(self.notifications),
            "loaded_at": self.loaded_at.isoformat() if self.loaded_at else None,
            "data_as_of": self.data_as_of.isoformat() if self.data_as_of else None,
        }


@dataclass
class AppState:
    sheet_locations: List[LocationRecord] = field(default_factory=list)
    api_locations: List[LocationRecord] = field(default_factory=list)
    show_api_locations: bool = True
    active_filters: FilterSet = field(default_factory=FilterSet.default)
    locations: List[LocationRecord] = field(default_factory=list)
    status: LoadStatus = field(default_factory=LoadStatus)


def format_timestamp(value: datetime) -> str:
    """``Jan 1, 12:00 AM``, the short form used on the status line.

    Zone-aware values are shown in local time.
    """
    if value.tzinfo is not None:
        value = value.astimezone()
    hour = value.hour % 12 or 12
    return f"{value.strftime('%b')} {value.day}, {hour}:{value.minute:02d} {'AM' if value.hour < 12 else 'PM'}"


def _as_of(cached_at: Optional[int]) -> Optional[datetime]:
    if cached_at is None:
        return None
    return datetime.fromtimestamp(cached_at / 1000)


def build_sheet_status(result: SourceResult, now: datetime) -> LoadStatus:
    if result.unavailable:
        status = LoadStatus(state=STATE_UNAVAILABLE, message="Could not load map data.")
        status.notify(SHEET_ERROR_MESSAGE)
        return status
    as_of = _as_of(result.cached_at)
    if result.origin == ORIGIN_STALE:
        if result.last_modified:
            message = f"Offline (Updated: {format_timestamp(result.last_modified)})"
        else:
            message = "Using Offline Data"
        return LoadStatus(
            state=STATE_OFFLINE, message=message,
            last_modified=result.last_modified, data_as_of=as_of,
        )
    shown = result.last_modified or now
    return LoadStatus(
        state=STATE_FRESH,
        message=f"Updated: {format_timestamp(shown)}",
        last_modified=result.last_modified,
        data_as_of=as_of,
    )


def _run_stage(parent_trace: Optional[TraceContext], name: str, fn, *args) -> SourceResult:
    """Run a source load in a pool thread with trace propagation and timing."""
    set_trace(parent_trace)
    t0 = time.time()
    try:
        result = fn(*args)
    except Exception as e:
        if parent_trace:
            parent_trace.record_stage(
                name, int((time.time() - t0) * 1000),
                error_class=type(e).__name__, error_message=str(e),
            )
        raise
    finally:
        clear_trace()
    if parent_trace:
        parent_trace.record_stage(
            name, int((time.time() - t0) * 1000),
            origin=result.origin, record_count=len(result.records),
        )
    return result


class DataService:
    """Owns the sources and the cache store for one process."""

    def __init__(self, settings: Settings, store: Optional[CacheStore] = None):
        self.settings = settings
        self.store = store or CacheStore()
        self.blocklist = BlocklistSource(
            self.store, settings.blocklist_csv_url,
            ttl=settings.blocklist_ttl, timeout=settings.http_timeout,
        )
        self.sheet = SheetSource(
            self.store, settings.sheet_csv_url,
            ttl=settings.sheet_ttl, timeout=settings.http_timeout,
        )
        self.api = RefugeApiSource(
            self.store, settings.api_url, settings.api_lat, settings.api_lng,
            ttl=settings.api_ttl, per_page=settings.api_per_page,
            timeout=settings.http_timeout,
        )
        self._lock = threading.Lock()

    def load_all(self, state: AppState) -> LoadStatus:
        """Refresh both sources into ``state`` and republish the display set."""
        with self._lock:
            trace = get_trace()
            owns_trace = trace is None
            if owns_trace:
                trace = TraceContext(trace_id=uuid.uuid4().hex[:10])
                set_trace(trace)
            try:
                return self._load_all(state, trace)
            finally:
                if owns_trace:
                    trace.log_summary()
                    clear_trace()

    def _load_all(self, state: AppState, trace: TraceContext) -> LoadStatus:
        t0 = time.time()
        try:
            blocklist = self.blocklist.load()
        except Exception:
            logger.exception("Blocklist load failed; continuing without it")
            blocklist = set()
        trace.record_stage("blocklist", int((time.time() - t0) * 1000), record_count=len(blocklist))

        with ThreadPoolExecutor(max_workers=2) as pool:
            sheet_future = pool.submit(_run_stage, trace, "sheet", self.sheet.load, blocklist)
            api_future = pool.submit(_run_stage, trace, "api", self.api.load, blocklist)

            try:
                sheet_result = sheet_future.result()
            except Exception:
                logger.exception("Error loading sheet data")
                sheet_result = SourceResult(records=[], origin=ORIGIN_DEFAULT, notification=SHEET_ERROR_MESSAGE)

            try:
                api_result = api_future.result()
            except Exception:
                logger.exception("Error loading API data")
                api_result = SourceResult(records=[], origin=ORIGIN_DEFAULT, notification=API_ERROR_MESSAGE)

        now = datetime.now()
        status = build_sheet_status(sheet_result, now)
        if not sheet_result.unavailable:
            state.sheet_locations = sheet_result.records
        else:
            logger.error("No offline sheet data available.")

        state.api_locations = api_result.records
        if api_result.notification:
            status.notify(api_result.notification)
        logger.info(
            "Loaded %d sheet locations (%s) and %d API locations (%s)",
            len(sheet_result.records), sheet_result.origin,
            len(api_result.records), api_result.origin,
        )

        status.loaded_at = now
        state.status = status
        recompute(state)
        return status


# ---------------------------------------------------------------------------
# Module-level singletons: all callers in this process share one service
# and one AppState (app routes and the refresh thread).
# ---------------------------------------------------------------------------

_service: Optional[DataService] = None
_state = AppState()
_singleton_lock = threading.Lock()


def get_service() -> DataService:
    global _service
    with _singleton_lock:
        if _service is None:
            _service = DataService(load_settings())
        return _service


def set_service(service: Optional[DataService]) -> None:
    """Swap the process-wide service (tests, alternate settings)."""
    global _service
    with _singleton_lock:
        _service = service


def get_state() -> AppState:
    return _state


def reset_state() -> AppState:
    global _state
    _state = AppState()
    return _state


def refresh() -> LoadStatus:
    """Run load_all() against the shared state."""
    return get_service().load_all(get_state())
