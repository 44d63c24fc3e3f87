from __future__ import annotations

from datetime import date, datetime, time
from typing import Optional

# Terminal exports are day-first; ISO forms are tried first.
TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d-%m-%Y %H:%M:%S",
    "%d-%m-%Y %H:%M",
)

DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%d/%m/%Y", "%d-%m-%Y")


def parse_hhmm(value: str) -> time:
    return datetime.strptime(value.strip(), "%H:%M").time()


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse a punch timestamp in any of the supported export formats.

    Returns None when the value matches no format.
    """
    v = (value or "").strip()
    if not v:
        return None
    # Excel cells read as text may carry a fractional second suffix.
    if "." in v and v.rsplit(".", 1)[-1].isdigit():
        v = v.rsplit(".", 1)[0]
    for fmt in TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(v, fmt)
        except ValueError:
            continue
    return None


def parse_date(value: str) -> Optional[date]:
    v = (value or "").strip()
    if not v:
        return None
    # "2024-01-15 00:00:00" from spreadsheet date cells.
    v = v.split(" ")[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(v, fmt).date()
        except ValueError:
            continue
    return None


def now_local() -> datetime:
    """Current local time.

    Note: Wrapped so tests can patch/mocked easier.
    """
    return datetime.now()
