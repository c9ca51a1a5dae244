from __future__ import annotations

from datetime import date, datetime, tzinfo
from typing import Optional

from ..core.constants import DAY_KEY_FORMAT
from ..core.exceptions import InvalidDateError


def parse_iso_date(value: str) -> date:
    """Parse YYYY-MM-DD string into date."""
    try:
        return datetime.strptime(str(value).strip(), DAY_KEY_FORMAT).date()
    except ValueError:
        raise InvalidDateError(f"Invalid date {value!r}, expected YYYY-MM-DD")


def now_local(tz: Optional[tzinfo] = None) -> datetime:
    """Current local time.

    Note: Wrapped so tests can patch/mocked easier.
    """
    return datetime.now(tz)


def to_timestamp(value: datetime) -> str:
    return value.isoformat()


def from_timestamp(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise InvalidDateError(f"Invalid timestamp {value!r}")
