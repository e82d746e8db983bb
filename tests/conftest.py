"""Shared fixtures for the Eugene Access test suite.

Provides a Flask test client wired to a temporary SQLite database,
a fake clock for cache TTL tests, and a clean process-wide AppState.
"""

import atexit
import os
import tempfile
from unittest.mock import MagicMock, patch

import pytest

# Point the DB at a temp file BEFORE importing app/models (they read DB_PATH at import time)
_test_db_fd, _test_db_path = tempfile.mkstemp(suffix=".db")
os.close(_test_db_fd)  # close the fd immediately; sqlite3 opens its own handle
os.environ["EA_DB_PATH"] = _test_db_path
atexit.register(lambda: os.unlink(_test_db_path) if os.path.exists(_test_db_path) else None)

# Keep Sentry off regardless of the developer's shell
os.environ.pop("SENTRY_DSN", None)

from app import app, limiter  # noqa: E402
from models import init_db, _get_db  # noqa: E402
import data_service  # noqa: E402
import health_monitor  # noqa: E402
from cache_store import CacheStore  # noqa: E402
from config import Settings  # noqa: E402
from data_service import DataService  # noqa: E402
from sources import TransportFailure  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_db():
    """Reset the cache table and process-wide state before every test."""
    init_db()
    conn = _get_db()
    conn.execute("DELETE FROM cache_entries")
    conn.commit()
    conn.close()
    health_monitor.reset()
    data_service.reset_state()
    data_service.set_service(None)
    yield
    data_service.set_service(None)


class FakeClock:
    """Settable stand-in for time.time()."""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(clock):
    return CacheStore(clock=clock)


@pytest.fixture()
def client():
    app.config["TESTING"] = True
    limiter.reset()
    with app.test_client() as c:
        yield c


# ---------------------------------------------------------------------------
# Fake upstreams: one callable standing in for http_get in every adapter
# ---------------------------------------------------------------------------

TEST_SETTINGS = Settings(
    sheet_csv_url="https://sheet.test/pub.csv",
    api_url="https://api.test/restrooms.json",
    blocklist_csv_url="https://block.test/pub.csv",
)

SHEET_CSV = (
    "Info,,\n"
    "Last Modified:,2024-01-01\n"
    "Location,Address,LatLong,Privacy,Tags,Notes,WifiCode\n"
    "Cafe X,1 Main St,\"44.05, -123.09\",Public,Food,,\n"
    "Library,2 Oak St,\"44.06, -123.08\",Public,Wifi,Restroom on 2nd floor,books123\n"
    "Quiet Stall,3 Elm St,,Private,Restroom,,\n"
)

API_ITEMS = [
    {
        "name": "Park Restroom",
        "street": "1 Park Ave",
        "city": "Eugene",
        "latitude": 44.04,
        "longitude": -123.1,
        "unisex": False,
        "accessible": True,
        "comment": "",
        "directions": "",
    },
    {
        # Same place as the sheet row; the sheet copy wins
        "name": "library",
        "street": "2 Oak St",
        "city": "Eugene",
        "latitude": 44.06,
        "longitude": -123.08,
        "unisex": True,
        "accessible": True,
        "comment": "",
        "directions": "",
    },
]


class FakeUpstreams:
    """Callable replacement for sources.http_get, keyed on the service name."""

    def __init__(self):
        self.sheet_text = SHEET_CSV
        self.api_payload = list(API_ITEMS)
        self.blocklist_text = "Name\n"
        self.failing = set()
        self.calls = []

    def __call__(self, url, params=None, timeout=15.0, headers=None, service="unknown"):
        self.calls.append(service)
        if service in self.failing:
            raise TransportFailure(f"{service} unreachable", retryable=True)
        resp = MagicMock()
        resp.status_code = 200
        if service == "sheet":
            resp.text = self.sheet_text
        elif service == "refuge_api":
            resp.json.return_value = self.api_payload
        else:
            resp.text = self.blocklist_text
        return resp


@pytest.fixture()
def upstreams():
    fake = FakeUpstreams()
    with patch("sources.http_get", side_effect=fake), \
            patch("blocklist.http_get", side_effect=fake):
        yield fake


@pytest.fixture()
def service(store):
    svc = DataService(TEST_SETTINGS, store=store)
    data_service.set_service(svc)
    return svc
