from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from ..core.enums import OverrideKind


@dataclass(frozen=True)
class HolidayOverride:
    """Explicit calendar entry stored at ``holidays/{YYYY-MM-DD}``."""

    date: date
    name: str
    kind: OverrideKind
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class HolidayEntry:
    """Read-model: one non-instructional day and where it comes from."""

    date: date
    name: str
    source: str  # "weekday", "annual", "moving" or "override"

    def to_dict(self) -> dict:
        return {"date": self.date.strftime("%Y-%m-%d"), "name": self.name, "source": self.source}


def nth_weekday_of_month(year: int, month: int, weekday: int, nth: int) -> Optional[date]:
    """The ``nth`` ISO ``weekday`` of the month, or None when the month has fewer."""
    first = date(year, month, 1)
    day = first + timedelta(days=(weekday - first.isoweekday()) % 7 + 7 * (nth - 1))
    return day if day.month == month else None


def last_weekday_of_month(year: int, month: int, weekday: int) -> date:
    last = date(year, month, calendar.monthrange(year, month)[1])
    return last - timedelta(days=(last.isoweekday() - weekday) % 7)


@dataclass(frozen=True)
class RecurringRule:
    """Recurring pattern: weekly days off, fixed annual dates and moving holidays.

    ``moving`` entries are ``(month, iso_weekday, nth, name)``; ``nth = -1``
    picks the last such weekday (Memorial Day), otherwise the nth one
    (Thanksgiving is the 4th Thursday of November).
    """

    weekdays: frozenset[int] = frozenset()
    annual: tuple[tuple[int, int, str], ...] = ()
    moving: tuple[tuple[int, int, int, str], ...] = ()

    def _moving_name(self, day: date) -> Optional[str]:
        for month, weekday, nth, name in self.moving:
            if day.month != month:
                continue
            if nth < 0:
                target = last_weekday_of_month(day.year, month, weekday)
            else:
                target = nth_weekday_of_month(day.year, month, weekday, nth)
            if target == day:
                return name
        return None

    def name_for(self, day: date) -> Optional[str]:
        for month, dom, name in self.annual:
            if (day.month, day.day) == (month, dom):
                return name
        moving = self._moving_name(day)
        if moving is not None:
            return moving
        if day.isoweekday() in self.weekdays:
            return f"Weekly closure ({day.strftime('%A')})"
        return None

    def source_for(self, day: date) -> str:
        for month, dom, _ in self.annual:
            if (day.month, day.day) == (month, dom):
                return "annual"
        if self._moving_name(day) is not None:
            return "moving"
        return "weekday"
