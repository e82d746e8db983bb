"""
Runtime configuration for Eugene Access.

Owns every upstream URL, cache TTL and timeout. Values come from the
environment (``.env`` is loaded by app.py via python-dotenv) with the
production defaults below.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

# =============================================================================
# Defaults
# =============================================================================

DEFAULT_SHEET_CSV_URL = (
    "https://docs.google.com/spreadsheets/d/e/2PACX-1vRMzAQbd3MdmdliQnNSPgFvX2309"
    "klOt524-HuUoojAc2c2kLKwG9Ftr75YUhsXzMfJtpFerLGlmQOK/pub?gid=0&single=true&output=csv"
)
DEFAULT_API_URL = "https://www.refugerestrooms.org/api/v1/restrooms/by_location.json"
DEFAULT_BLOCKLIST_CSV_URL = (
    "https://docs.google.com/spreadsheets/d/e/2PACX-1vS4KJi-cNJVKbT7cP8VFcDXPYld_R2"
    "-D5r3aNFdIARobTv-CzWqcdVl-LeDNJyhCPu6PWpYTho1O5Bg/pub?gid=1834778940&single=true&output=csv"
)

# Downtown Eugene, OR
DEFAULT_API_LAT = 44.048
DEFAULT_API_LNG = -123.090

ONE_DAY_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class Settings:
    """Upstream endpoints and cache policy for one process."""
    sheet_csv_url: str = DEFAULT_SHEET_CSV_URL
    api_url: str = DEFAULT_API_URL
    blocklist_csv_url: str = DEFAULT_BLOCKLIST_CSV_URL
    api_lat: float = DEFAULT_API_LAT
    api_lng: float = DEFAULT_API_LNG
    api_per_page: int = 50

    # TTLs in seconds. The sheet is refetched on every load (0) and only
    # served from cache as an offline fallback.
    sheet_ttl: float = 0
    api_ttl: float = ONE_DAY_SECONDS
    blocklist_ttl: float = ONE_DAY_SECONDS

    http_timeout: float = 15.0
    refresh_interval: float = 15 * 60  # background refresh, seconds


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from environment variables (``EA_*``)."""
    if env is None:
        env = os.environ
    return Settings(
        sheet_csv_url=env.get("EA_SHEET_CSV_URL", DEFAULT_SHEET_CSV_URL),
        api_url=env.get("EA_API_URL", DEFAULT_API_URL),
        # An explicitly empty value disables blocking
        blocklist_csv_url=env.get("EA_BLOCKLIST_CSV_URL", DEFAULT_BLOCKLIST_CSV_URL),
        api_lat=_env_float(env, "EA_API_LAT", DEFAULT_API_LAT),
        api_lng=_env_float(env, "EA_API_LNG", DEFAULT_API_LNG),
        sheet_ttl=_env_float(env, "EA_SHEET_TTL", 0),
        api_ttl=_env_float(env, "EA_API_TTL", ONE_DAY_SECONDS),
        blocklist_ttl=_env_float(env, "EA_BLOCKLIST_TTL", ONE_DAY_SECONDS),
        http_timeout=_env_float(env, "EA_HTTP_TIMEOUT", 15.0),
        refresh_interval=_env_float(env, "EA_REFRESH_INTERVAL", 15 * 60),
    )
