"""
Parser for the published community spreadsheet CSV.

The sheet export is not a clean CSV: it starts with free-form info rows
(one of which carries a "Last Modified:" stamp) before the real header
row. parse() finds the header by looking for the Location and Privacy
columns, then tokenizes the rest with a two-state machine:

    state          "          ,              \\n             other
    FIELD          QUOTED     end field      end record     append
    QUOTED_FIELD   FIELD      append         append         append

Quotes only toggle state and are never emitted, so a doubled ""
inside a quoted field collapses to nothing.
"""

import logging
import re
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from location_record import LocationRecord

logger = logging.getLogger(__name__)

HEADER_MARKERS = ("Location", "Privacy")
LAST_MODIFIED_MARKER = "last modified:"


class ParseFailure(Exception):
    """Raised internally when the CSV has no recognisable header row."""

    pass


# =============================================================================
# Tokenizer state machine
# =============================================================================

class State(Enum):
    FIELD = "field"
    QUOTED_FIELD = "quoted_field"


class CharClass(Enum):
    QUOTE = "quote"
    COMMA = "comma"
    NEWLINE = "newline"
    OTHER = "other"


class Action(Enum):
    APPEND = "append"
    END_FIELD = "end_field"
    END_RECORD = "end_record"
    SKIP = "skip"


TRANSITIONS: Dict[Tuple[State, CharClass], Tuple[State, Action]] = {
    (State.FIELD, CharClass.QUOTE): (State.QUOTED_FIELD, Action.SKIP),
    (State.FIELD, CharClass.COMMA): (State.FIELD, Action.END_FIELD),
    (State.FIELD, CharClass.NEWLINE): (State.FIELD, Action.END_RECORD),
    (State.FIELD, CharClass.OTHER): (State.FIELD, Action.APPEND),
    (State.QUOTED_FIELD, CharClass.QUOTE): (State.FIELD, Action.SKIP),
    (State.QUOTED_FIELD, CharClass.COMMA): (State.QUOTED_FIELD, Action.APPEND),
    (State.QUOTED_FIELD, CharClass.NEWLINE): (State.QUOTED_FIELD, Action.APPEND),
    (State.QUOTED_FIELD, CharClass.OTHER): (State.QUOTED_FIELD, Action.APPEND),
}


def classify(char: str) -> CharClass:
    if char == '"':
        return CharClass.QUOTE
    if char == ",":
        return CharClass.COMMA
    if char == "\n":
        return CharClass.NEWLINE
    return CharClass.OTHER


def tokenize(text: str) -> List[List[str]]:
    """Split CSV body text into records of trimmed fields.

    A trailing record without a final newline is flushed as well.
    """
    records: List[List[str]] = []
    fields: List[str] = []
    buf: List[str] = []
    state = State.FIELD

    for char in text:
        state, action = TRANSITIONS[(state, classify(char))]
        if action is Action.APPEND:
            buf.append(char)
        elif action is Action.END_FIELD:
            fields.append("".join(buf).strip())
            buf = []
        elif action is Action.END_RECORD:
            fields.append("".join(buf).strip())
            records.append(fields)
            fields = []
            buf = []

    if buf or fields:
        fields.append("".join(buf).strip())
        records.append(fields)
    return records


# =============================================================================
# Header detection and record assembly
# =============================================================================

def _split_header(line: str) -> List[str]:
    return [h.replace('"', "").strip() for h in line.split(",")]


def find_header(lines: Sequence[str]) -> Tuple[int, List[str]]:
    """Return (line index, column names) of the first header-looking line."""
    for i, line in enumerate(lines):
        if all(marker in line for marker in HEADER_MARKERS):
            return i, _split_header(line)
    raise ParseFailure("Header row not found (expected Location and Privacy columns)")


def parse_rows(text: Optional[str]) -> List[Dict[str, str]]:
    """Parse CSV text into ordered row dicts keyed by header name."""
    if not text:
        return []
    lines = text.strip().split("\n")
    try:
        header_index, headers = find_header(lines)
    except ParseFailure as e:
        logger.error("CSV parse failed: %s", e)
        return []

    body = "\n".join(lines[header_index + 1:])
    rows: List[Dict[str, str]] = []
    for fields in tokenize(body):
        if len(fields) != len(headers):
            continue
        row = dict(zip(headers, fields))
        if not row.get("Location", "").strip():
            continue
        rows.append(row)
    return rows


def parse(text: Optional[str]) -> List[LocationRecord]:
    """Parse the sheet CSV into LocationRecords (empty list on any failure)."""
    records = []
    for row in parse_rows(text):
        record = LocationRecord.from_dict(row, is_api_source=False)
        if record is not None:
            records.append(record)
    return records


# =============================================================================
# "Last Modified" stamp
# =============================================================================

_DATE_FORMATS = (
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %I:%M %p",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
    "%B %d %Y %I:%M:%S %p",
    "%B %d %Y %I:%M %p",
    "%B %d %Y %H:%M:%S",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
)


def parse_date(value: str) -> Optional[datetime]:
    """Parse the handful of date shapes Google Sheets emits. None if unparsable."""
    value = value.strip()
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        pass
    cleaned = re.sub(r"\s+", " ", value)
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
    return None


def extract_last_modified(text: Optional[str]) -> Optional[datetime]:
    """Find the ``Last Modified:`` info row anywhere in the CSV and parse its date.

    The date is the field after the first comma on that line.
    """
    if not text:
        return None
    for line in text.split("\n"):
        if LAST_MODIFIED_MARKER not in line.lower().replace('"', ""):
            continue
        parts = line.split(",")
        if len(parts) < 2:
            return None
        date_string = parts[1].replace('"', "").strip()
        if not date_string:
            return None
        parsed = parse_date(date_string)
        if parsed is None:
            logger.warning("Could not parse date string from sheet: %r", date_string)
        return parsed
    return None


# =============================================================================
# Serialization (used for exports and round-trip checks)
# =============================================================================

def _quote(value: Optional[str]) -> str:
    value = "" if value is None else str(value)
    if any(c in value for c in ',\n"'):
        # Quotes cannot be escaped in this dialect; drop them
        return '"' + value.replace('"', "") + '"'
    return value


def to_csv(rows: Iterable[Dict[str, Optional[str]]], headers: Sequence[str]) -> str:
    """Serialize row dicts back to CSV text with a header row."""
    lines = [",".join(_quote(h) for h in headers)]
    for row in rows:
        lines.append(",".join(_quote(row.get(h)) for h in headers))
    return "\n".join(lines) + "\n"
