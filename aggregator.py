"""
Merge, dedup and filter engine for the displayed location set.

Sheet records always come before API records and win identity
conflicts. Filters never remove records from the published set; they only
decide visibility for the rendering layer.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, List, Optional

from location_record import LocationRecord

if TYPE_CHECKING:
    from data_service import AppState

ALL = "all"
FOOD = "food"
WIFI = "wifi"
PUBLIC = "public"
PRIVATE = "private"

KNOWN_FILTERS = (ALL, FOOD, WIFI, PUBLIC, PRIVATE)

_OPEN_PRIVACY = ("public", "exposed")


# =============================================================================
# Merge / dedup
# =============================================================================

def dedupe(records: Iterable[LocationRecord]) -> List[LocationRecord]:
    """Drop later records whose normalized Location was already seen."""
    seen = set()
    unique = []
    for record in records:
        if record.identity in seen:
            continue
        seen.add(record.identity)
        unique.append(record)
    return unique


def merge_locations(
    sheet: Iterable[LocationRecord],
    api: Iterable[LocationRecord],
    show_api: bool = True,
) -> List[LocationRecord]:
    combined = list(sheet)
    if show_api:
        combined.extend(api)
    return dedupe(combined)


def recompute(state: "AppState") -> List[LocationRecord]:
    """Rebuild and publish the display set from the state's source lists."""
    locations = merge_locations(
        state.sheet_locations, state.api_locations, state.show_api_locations,
    )
    state.locations = locations
    return locations


# =============================================================================
# Filters
# =============================================================================

def _lower(value: Optional[str]) -> str:
    return value.lower() if value else ""


def has_restroom_signal(record: LocationRecord) -> bool:
    tags = _lower(record.tags)
    notes = _lower(record.notes)
    return bool(
        _lower(record.privacy)
        or "restroom" in tags
        or "restroom" in notes
        or "bathroom" in notes
    )


def matches_filter(record: LocationRecord, name: str) -> bool:
    tags = _lower(record.tags)
    notes = _lower(record.notes)
    privacy = _lower(record.privacy)

    if name == FOOD:
        return "food" in tags
    if name == WIFI:
        return bool((record.wifi_code or "").strip()) or "wifi" in tags or "wifi" in notes
    if name == PUBLIC:
        return has_restroom_signal(record) and privacy in _OPEN_PRIVACY
    if name == PRIVATE:
        return has_restroom_signal(record) and privacy not in _OPEN_PRIVACY
    # Unknown filters never exclude
    return True


@dataclass(frozen=True)
class FilterSet:
    """Immutable set of active filter names. Never empty: defaults to {"all"}."""
    names: frozenset = frozenset({ALL})

    @classmethod
    def default(cls) -> "FilterSet":
        return cls()

    @classmethod
    def from_names(cls, names: Optional[Iterable[str]]) -> "FilterSet":
        cleaned = frozenset(n.strip().lower() for n in (names or []) if n and n.strip())
        if not cleaned:
            return cls.default()
        return cls(cleaned)

    @property
    def is_all(self) -> bool:
        return not self.names or ALL in self.names

    def toggle(self, name: str) -> "FilterSet":
        """Selecting "all" resets; any other name flips and clears "all"."""
        name = name.strip().lower()
        if name == ALL:
            return self.default()
        names = set(self.names)
        names.discard(ALL)
        if name in names:
            names.remove(name)
        else:
            names.add(name)
        if not names:
            return self.default()
        return FilterSet(frozenset(names))

    def matches(self, record: LocationRecord) -> bool:
        if self.is_all:
            return True
        return all(matches_filter(record, name) for name in self.names)

    def to_list(self) -> List[str]:
        return sorted(self.names)


def visible_locations(records: Iterable[LocationRecord], filters: FilterSet) -> List[LocationRecord]:
    return [r for r in records if filters.matches(r)]


def mappable_locations(records: Iterable[LocationRecord]) -> List[LocationRecord]:
    """Records with usable coordinates; the rest stay list-only."""
    return [r for r in records if r.coordinates() is not None]


def marker_category(record: LocationRecord) -> str:
    """Marker style bucket: food, wifi, restroom, or private stall."""
    tags = _lower(record.tags)
    privacy = _lower(record.privacy)
    if "food" in tags:
        return "food"
    if "wifi" in tags:
        return "wifi"
    if privacy in _OPEN_PRIVACY or "restroom" in tags:
        return "restroom"
    return "private"
