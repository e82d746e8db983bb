"""
Name blocklist for locations that must never be shown.

Blocking is opt-in: with no URL (or the template placeholder still in
place) load() returns an empty set without touching the network.
"""

import logging
from typing import List, Optional, Set

from cache_store import CacheStore
from location_record import normalize_name
from sources import http_get

logger = logging.getLogger(__name__)

BLOCKLIST_CACHE_KEY = "blocklist"
PLACEHOLDER_MARKER = "PASTE_YOUR_BLOCKLIST_GOOGLE_SHEET_CSV_URL_HERE"


def parse_blocklist(text: Optional[str]) -> List[str]:
    """Header row dropped, one name per remaining line, all quotes removed."""
    if not text:
        return []
    names = set()
    for line in text.strip().split("\n")[1:]:
        # Quotes are dropped everywhere, matching how sheet names are tokenized
        name = normalize_name(line.replace('"', ""))
        if name:
            names.add(name)
    return sorted(names)


def is_configured(url: Optional[str]) -> bool:
    return bool(url) and PLACEHOLDER_MARKER not in url.upper()


class BlocklistSource:
    service = "blocklist"

    def __init__(self, store: CacheStore, url: Optional[str], ttl: float = 24 * 60 * 60, timeout: float = 15.0):
        self.store = store
        self.url = url
        self.ttl = ttl
        self.timeout = timeout

    def fetch_text(self) -> str:
        return http_get(self.url, timeout=self.timeout, service=self.service).text

    def load(self) -> Set[str]:
        if not is_configured(self.url):
            logger.info("Blocklist URL is not set. No locations will be blocked.")
            return set()
        names = self.store.fetch_with_cache(
            BLOCKLIST_CACHE_KEY, self.ttl, self.fetch_text, parse_blocklist,
        )
        logger.info("Loaded %d locations from blocklist.", len(names))
        return set(names)
