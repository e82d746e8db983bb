"""
SQLite persistence for Eugene Access cache entries.

One row per cache key holding a JSON ``{"timestamp", "data"}`` envelope.
No ORM — just raw sqlite3. Works locally and on a PaaS without
additional services.
"""

import sqlite3
import os
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

DB_PATH = os.environ.get("EA_DB_PATH", "eugene_access.db")


def _get_db():
    """Get a sqlite3 connection with WAL mode for concurrent reads."""
    conn = sqlite3.connect(DB_PATH, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_db():
    """Create tables if they don't exist. Safe to call on every startup."""
    conn = _get_db()
    conn.executescript("""
        -- Upstream response cache (blocklist, API records, raw sheet CSV)
        CREATE TABLE IF NOT EXISTS cache_entries (
            cache_key   TEXT PRIMARY KEY,
            entry_json  TEXT NOT NULL,
            updated_at  TEXT NOT NULL
        );
    """)
    conn.commit()
    conn.close()


# ---------------------------------------------------------------------------
# Cache entries
# ---------------------------------------------------------------------------

def get_cache_entry(cache_key: str) -> Optional[str]:
    """Return the raw JSON envelope stored under ``cache_key``, or None."""
    conn = _get_db()
    try:
        row = conn.execute(
            "SELECT entry_json FROM cache_entries WHERE cache_key = ?",
            (cache_key,),
        ).fetchone()
    finally:
        conn.close()
    if not row:
        return None
    return row["entry_json"]


def set_cache_entry(cache_key: str, entry_json: str) -> None:
    """Insert or overwrite the single entry for ``cache_key``."""
    conn = _get_db()
    try:
        conn.execute(
            """INSERT OR REPLACE INTO cache_entries (cache_key, entry_json, updated_at)
               VALUES (?, ?, ?)""",
            (cache_key, entry_json, datetime.now(timezone.utc).isoformat()),
        )
        conn.commit()
    finally:
        conn.close()


def delete_cache_entry(cache_key: str) -> None:
    conn = _get_db()
    try:
        conn.execute("DELETE FROM cache_entries WHERE cache_key = ?", (cache_key,))
        conn.commit()
    finally:
        conn.close()


def list_cache_keys() -> list:
    """All stored keys with their last write time (for /healthz)."""
    conn = _get_db()
    try:
        rows = conn.execute(
            "SELECT cache_key, updated_at FROM cache_entries ORDER BY cache_key"
        ).fetchall()
    finally:
        conn.close()
    return [dict(r) for r in rows]
