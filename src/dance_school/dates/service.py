from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterator, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..common.datetime_utils import now_local, parse_iso_date
from ..core.constants import DAY_KEY_FORMAT
from ..core.exceptions import InvalidDateError, ValidationError

DateLike = Union[date, datetime, str]

MONTHS = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def __contains__(self, value: date) -> bool:
        return self.start <= value <= self.end

    def to_dict(self) -> dict:
        return {"start": self.start.strftime(DAY_KEY_FORMAT), "end": self.end.strftime(DAY_KEY_FORMAT)}


class DateService:
    """Canonical day-keys and fee-year windows in the school's local calendar.

    Aware datetimes are converted into the configured zone before their date
    is taken; naive datetimes are already local wall-clock. UTC is never used
    to derive a day.
    """

    def __init__(self, *, timezone: str | tzinfo = "UTC", fee_year_anchor: tuple[int, int] = (8, 13)):
        if isinstance(timezone, str):
            try:
                timezone = ZoneInfo(timezone)
            except ZoneInfoNotFoundError:
                raise ValidationError(f"Unknown time zone {timezone!r}")
        self._tz = timezone

        month, day = (int(fee_year_anchor[0]), int(fee_year_anchor[1]))
        if (month, day) == (2, 29):
            raise ValidationError("Fee year cannot start on February 29")
        try:
            date(2001, month, day)
        except ValueError:
            raise ValidationError(f"Invalid fee year anchor {month}/{day}")
        self._anchor = (month, day)

    @property
    def tz(self) -> tzinfo:
        return self._tz

    @property
    def fee_year_anchor(self) -> tuple[int, int]:
        return self._anchor

    def now(self) -> datetime:
        return now_local(self._tz)

    def today(self) -> date:
        return self.now().date()

    def to_date(self, value: DateLike) -> date:
        if isinstance(value, datetime):
            if value.tzinfo is not None:
                value = value.astimezone(self._tz)
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            return parse_iso_date(value)
        raise InvalidDateError(f"Invalid date {value!r}")

    def day_key(self, value: DateLike) -> str:
        return self.to_date(value).strftime(DAY_KEY_FORMAT)

    def fee_year_range(self, now: Optional[DateLike] = None) -> DateRange:
        today = self.to_date(now) if now is not None else self.today()
        month, day = self._anchor
        start_year = today.year if (today.month, today.day) >= (month, day) else today.year - 1
        start = date(start_year, month, day)
        end = date(start_year + 1, month, day) - timedelta(days=1)
        return DateRange(start=start, end=end)

    def is_within_fee_year(self, value: DateLike, now: Optional[DateLike] = None) -> bool:
        return self.to_date(value) in self.fee_year_range(now)

    def fee_year_label(self, now: Optional[DateLike] = None) -> str:
        rng = self.fee_year_range(now)
        return f"{MONTHS[rng.start.month - 1]} {rng.start.year} - {MONTHS[rng.end.month - 1]} {rng.end.year}"

    @staticmethod
    def month_range(year: int, month: int) -> DateRange:
        if not 1 <= int(month) <= 12:
            raise InvalidDateError(f"Invalid month {month!r}")
        last = calendar.monthrange(int(year), int(month))[1]
        return DateRange(start=date(int(year), int(month), 1), end=date(int(year), int(month), last))

    @staticmethod
    def iter_months(start: date, end: date) -> Iterator[tuple[int, int]]:
        year, month = start.year, start.month
        while (year, month) <= (end.year, end.month):
            yield year, month
            month += 1
            if month > 12:
                year, month = year + 1, 1

    @staticmethod
    def month_label(year: int, month: int) -> str:
        return f"{MONTHS[int(month) - 1]} {int(year)}"

    @staticmethod
    def parse_key(value: str) -> date:
        if not isinstance(value, str) or len(value.strip()) != 10:
            raise InvalidDateError(f"Invalid day key {value!r}, expected YYYY-MM-DD")
        return parse_iso_date(value)

    @staticmethod
    def to_key(value: date) -> str:
        return value.strftime(DAY_KEY_FORMAT)

    def range_of(self, start: DateLike, end: DateLike) -> DateRange:
        s, e = self.to_date(start), self.to_date(end)
        if e < s:
            raise ValidationError("End date must not be before start date")
        return DateRange(start=s, end=e)
