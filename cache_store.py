"""
TTL-bound cache in front of every upstream fetch.

All upstream data (blocklist, API records, the raw sheet CSV) goes through
CacheStore.fetch_with_cache(). It provides:
- SQLite-backed storage, one envelope per key ({"timestamp", "data"})
- Cache hits served without touching the network while younger than TTL
- Corrupt envelopes deleted and treated as a miss
- Stale fallback: when the fetch fails, the last stored data is served
  regardless of age
- A safe empty default via transform(None) when nothing is stored

Network and parse errors never escape fetch_with_cache(); callers only
see a (possibly stale or empty) value. fetch_with_cache_result() also
reports where the value came from so callers can build status messages.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from models import delete_cache_entry, get_cache_entry, set_cache_entry

logger = logging.getLogger(__name__)

# Origins reported by fetch_with_cache_result()
ORIGIN_CACHE = "cache"      # fresh-enough stored entry, no fetch
ORIGIN_FRESH = "fresh"      # fetched and stored just now
ORIGIN_STALE = "stale"      # fetch failed, served the last stored entry
ORIGIN_DEFAULT = "default"  # fetch failed, nothing stored; transform(None)


class MalformedCache(Exception):
    """Raised when a stored envelope is not valid JSON or lacks its fields."""

    pass


@dataclass
class CacheEntry:
    timestamp: int  # epoch milliseconds
    data: Any


@dataclass
class CacheResult:
    data: Any
    origin: str
    timestamp: Optional[int] = None  # epoch ms of the entry that was served


def decode_entry(raw: str) -> CacheEntry:
    """Parse a stored envelope. Raises MalformedCache on anything unexpected."""
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedCache(f"invalid JSON: {e}") from e
    if not isinstance(payload, dict) or "data" not in payload:
        raise MalformedCache("envelope missing 'data'")
    ts = payload.get("timestamp")
    if isinstance(ts, bool) or not isinstance(ts, (int, float)):
        raise MalformedCache(f"bad timestamp {ts!r}")
    return CacheEntry(timestamp=int(ts), data=payload["data"])


def encode_entry(entry: CacheEntry) -> str:
    return json.dumps({"timestamp": entry.timestamp, "data": entry.data})


class CacheStore:
    """Key/value cache with per-call TTL, stale fallback and corruption recovery.

    ``clock`` returns seconds since the epoch; tests inject a fake one.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    def now_ms(self) -> int:
        return int(round(self._clock() * 1000))

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def read(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry, deleting it first if it is corrupt."""
        try:
            raw = get_cache_entry(key)
        except Exception:
            logger.warning("Cache read failed for %s, treating as miss", key, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return decode_entry(raw)
        except MalformedCache as e:
            logger.warning("Corrupted cache entry for %s (%s); deleting", key, e)
            self.invalidate(key)
            return None

    def write(self, key: str, data: Any) -> CacheEntry:
        entry = CacheEntry(timestamp=self.now_ms(), data=data)
        try:
            set_cache_entry(key, encode_entry(entry))
        except Exception:
            logger.warning("Cache write failed for %s", key, exc_info=True)
        return entry

    def invalidate(self, key: str) -> None:
        try:
            delete_cache_entry(key)
        except Exception:
            logger.warning("Cache delete failed for %s", key, exc_info=True)

    def is_fresh(self, entry: CacheEntry, ttl: float) -> bool:
        return self.now_ms() - entry.timestamp < ttl * 1000

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch_with_cache_result(
        self,
        key: str,
        ttl: float,
        fetcher: Callable[[], Any],
        transform: Callable[[Any], Any],
    ) -> CacheResult:
        """
        Serve ``key`` from cache or refresh it through ``fetcher``.

        Args:
            key: Cache key; exactly one entry is kept per key.
            ttl: Max age in seconds at which a stored entry is served
                 without calling ``fetcher``.
            fetcher: Zero-arg callable returning the raw payload. Any
                     exception counts as a failed fetch.
            transform: Maps the raw payload to the JSON-serializable value
                       that is stored and returned. ``transform(None)``
                       must return a safe empty value.

        Returns:
            CacheResult with the data and its origin.
        """
        entry = self.read(key)
        if entry is not None and self.is_fresh(entry, ttl):
            return CacheResult(entry.data, ORIGIN_CACHE, entry.timestamp)

        try:
            data = transform(fetcher())
        except Exception as e:
            if entry is not None:
                logger.warning(
                    "Fetch for %s failed (%s); serving stale cache from %d",
                    key, e, entry.timestamp,
                )
                return CacheResult(entry.data, ORIGIN_STALE, entry.timestamp)
            logger.warning("Fetch for %s failed (%s) and nothing is cached", key, e)
            return CacheResult(transform(None), ORIGIN_DEFAULT)

        stored = self.write(key, data)
        return CacheResult(data, ORIGIN_FRESH, stored.timestamp)

    def fetch_with_cache(
        self,
        key: str,
        ttl: float,
        fetcher: Callable[[], Any],
        transform: Callable[[Any], Any],
    ) -> Any:
        """Like fetch_with_cache_result() but returns only the data."""
        return self.fetch_with_cache_result(key, ttl, fetcher, transform).data
