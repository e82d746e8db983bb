"""
LocationRecord — the common schema every source normalizes into.

Sheet rows and API items are validated here at the boundary: a record
without a non-blank ``Location`` is never constructed.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple


# Sheet column / JSON key -> dataclass attribute. Several spellings map to the
# same attribute because the published sheet header has drifted over time.
_KEY_TO_ATTR = {
    "Location": "location",
    "Address": "address",
    "LatLong": "lat_long",
    "Lat_Long": "lat_long",
    "Lat Long": "lat_long",
    "Privacy": "privacy",
    "Gendered": "gendered",
    "Accessibility": "accessibility",
    "Notes": "notes",
    "Tags": "tags",
    "Access": "access",
    "Hours": "hours",
    "WifiCode": "wifi_code",
    "WiFi Code": "wifi_code",
    "Wifi Code": "wifi_code",
    "Updated": "updated",
}

# Canonical JSON key for each attribute (to_dict output)
_ATTR_TO_KEY = {
    "location": "Location",
    "address": "Address",
    "lat_long": "LatLong",
    "privacy": "Privacy",
    "gendered": "Gendered",
    "accessibility": "Accessibility",
    "notes": "Notes",
    "tags": "Tags",
    "access": "Access",
    "hours": "Hours",
    "wifi_code": "WifiCode",
    "updated": "Updated",
}


def normalize_name(name: Optional[str]) -> str:
    """Lowercased, trimmed form used for dedup and blocklist identity."""
    return (name or "").strip().lower()


def parse_lat_long(value: Optional[str]) -> Optional[Tuple[float, float]]:
    """Parse ``"<lat>, <lng>"``. Returns None for missing, malformed or 0 coords."""
    if not value:
        return None
    parts = value.split(",")
    if len(parts) < 2:
        return None
    try:
        lat = float(parts[0].strip())
        lng = float(parts[1].strip())
    except ValueError:
        return None
    # NaN never equals itself
    if lat != lat or lng != lng:
        return None
    if lat == 0 or lng == 0:
        return None
    return lat, lng


@dataclass
class LocationRecord:
    location: str
    address: Optional[str] = None
    lat_long: Optional[str] = None
    privacy: Optional[str] = None
    gendered: Optional[str] = None
    accessibility: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[str] = None
    access: Optional[str] = None
    hours: Optional[str] = None
    wifi_code: Optional[str] = None
    is_api_source: bool = False
    updated: Optional[str] = None
    extra: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self.location = (self.location or "").strip()
        if not self.location:
            raise ValueError("LocationRecord requires a non-empty Location")

    @property
    def identity(self) -> str:
        return normalize_name(self.location)

    def coordinates(self) -> Optional[Tuple[float, float]]:
        return parse_lat_long(self.lat_long)

    def hours_entries(self) -> List[str]:
        if not self.hours:
            return []
        return [h.strip() for h in self.hours.split(";") if h.strip()]

    @classmethod
    def from_dict(cls, row: Mapping[str, Any], is_api_source: Optional[bool] = None) -> Optional["LocationRecord"]:
        """Build a record from a sheet row or cached dict.

        Returns None when ``Location`` is missing or blank. Unknown columns
        land in ``extra``.
        """
        name = row.get("Location")
        if name is None or not str(name).strip():
            return None

        kwargs: Dict[str, Any] = {}
        extra: Dict[str, str] = {}
        for key, value in row.items():
            if key in ("isApiSource", "extra"):
                continue
            attr = _KEY_TO_ATTR.get(key)
            if attr is None:
                if key:
                    extra[key] = "" if value is None else str(value)
                continue
            # First spelling wins if a sheet carries two aliases
            if attr not in kwargs:
                kwargs[attr] = None if value is None else str(value)

        stored_extra = row.get("extra")
        if isinstance(stored_extra, dict):
            extra.update({str(k): str(v) for k, v in stored_extra.items()})

        if is_api_source is None:
            is_api_source = bool(row.get("isApiSource", False))
        return cls(is_api_source=is_api_source, extra=extra, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for attr, key in _ATTR_TO_KEY.items():
            out[key] = getattr(self, attr)
        out["isApiSource"] = self.is_api_source
        if self.extra:
            out["extra"] = dict(self.extra)
        return out
