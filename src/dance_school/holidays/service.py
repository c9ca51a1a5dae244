from __future__ import annotations

import logging
import threading
import time
from datetime import date, timedelta
from typing import Callable, Optional

from ..audit.service import AuditLog
from ..common.datetime_utils import now_local
from ..common.validators import require_non_empty
from ..core.enums import AuditEventType, OverrideKind
from ..dates.service import DateLike, DateRange, DateService
from .model import HolidayEntry, HolidayOverride, RecurringRule
from .repository import HolidayRepository

logger = logging.getLogger(__name__)


class HolidayService:
    """Process-wide holiday calendar.

    Evaluation (``is_holiday``, ``list_holidays``) is synchronous and reads an
    in-memory copy of the overrides; writes hold a calendar-wide lock and go
    through to the repository before the copy is updated. Explicit overrides
    dominate the recurring rule.

    The copy is reloaded from storage once it is older than ``cache_ttl``
    seconds, so overrides written by another process show up; ``None`` keeps
    it until ``reload()``.

    Each calendar change records a HOLIDAY_CHANGE event unless the caller
    passes ``record_audit=False`` because it records its own summary.
    """

    def __init__(
        self,
        repository: HolidayRepository,
        dates: DateService,
        *,
        rule: Optional[RecurringRule] = None,
        clock: Optional[Callable] = None,
        audit: Optional[AuditLog] = None,
        cache_ttl: Optional[float] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._repo = repository
        self._audit = audit
        self._dates = dates
        self._rule = rule or RecurringRule()
        self._clock = clock or (lambda: now_local(dates.tz))
        self._lock = threading.RLock()
        self._overrides: Optional[dict[date, HolidayOverride]] = None
        self._cache_ttl = cache_ttl
        self._monotonic = monotonic
        self._loaded_at = 0.0

    def _calendar(self) -> dict[date, HolidayOverride]:
        with self._lock:
            expired = self._cache_ttl is not None and self._monotonic() - self._loaded_at >= self._cache_ttl
            if self._overrides is None or expired:
                self._overrides = {o.date: o for o in self._repo.list_all()}
                self._loaded_at = self._monotonic()
            return self._overrides

    def reload(self) -> None:
        with self._lock:
            self._overrides = None
            self._calendar()

    def get_override(self, value: DateLike) -> Optional[HolidayOverride]:
        return self._calendar().get(self._dates.to_date(value))

    def is_holiday(self, value: DateLike) -> bool:
        day = self._dates.to_date(value)
        override = self._calendar().get(day)
        if override is not None:
            return override.kind == OverrideKind.ADDED
        return self._rule.name_for(day) is not None

    def holiday_name(self, value: DateLike) -> Optional[str]:
        day = self._dates.to_date(value)
        override = self._calendar().get(day)
        if override is not None:
            return override.name if override.kind == OverrideKind.ADDED else None
        return self._rule.name_for(day)

    def should_charge_fees(self, value: DateLike) -> bool:
        return not self.is_holiday(value)

    def is_recurring(self, value: DateLike) -> bool:
        return self._rule.name_for(self._dates.to_date(value)) is not None

    def add_override(
        self, value: DateLike, name: str, *, created_by: Optional[str] = None, record_audit: bool = True
    ) -> bool:
        """Declare ``value`` a holiday. Returns False when already declared with that name."""
        day = self._dates.to_date(value)
        name = require_non_empty(name, "Holiday name")
        self._reserve(record_audit)
        with self._lock:
            current = self._calendar().get(day)
            if current is not None and current.kind == OverrideKind.ADDED and current.name == name:
                return False
            override = HolidayOverride(
                date=day, name=name, kind=OverrideKind.ADDED, created_by=created_by, created_at=self._clock()
            )
            self._repo.save(override)
            self._calendar()[day] = override
        logger.info("Holiday override added: %s (%s)", self._dates.to_key(day), name)
        self._record(record_audit, "override_added", day, name, created_by)
        return True

    def remove_override(
        self, value: DateLike, *, created_by: Optional[str] = None, record_audit: bool = True
    ) -> bool:
        """Make ``value`` instructional again.

        Drops an ``added`` override; when the recurring rule would still make the
        day a holiday, a ``removed`` override is stored to mask it.
        """
        day = self._dates.to_date(value)
        self._reserve(record_audit)
        with self._lock:
            current = self._calendar().get(day)
            recurring_name = self._rule.name_for(day)
            if recurring_name is not None:
                if current is not None and current.kind == OverrideKind.REMOVED:
                    return False
                override = HolidayOverride(
                    date=day,
                    name=recurring_name,
                    kind=OverrideKind.REMOVED,
                    created_by=created_by,
                    created_at=self._clock(),
                )
                self._repo.save(override)
                self._calendar()[day] = override
            else:
                if current is None:
                    return False
                self._repo.delete(day)
                self._calendar().pop(day, None)
        logger.info("Holiday override removed: %s", self._dates.to_key(day))
        self._record(record_audit, "override_removed", day, recurring_name or current.name, created_by)
        return True

    def clear_override(
        self, value: DateLike, *, created_by: Optional[str] = None, record_audit: bool = True
    ) -> Optional[HolidayOverride]:
        """Drop any explicit entry so the recurring rule applies again."""
        day = self._dates.to_date(value)
        self._reserve(record_audit)
        with self._lock:
            current = self._calendar().get(day)
            if current is None:
                return None
            self._repo.delete(day)
            self._calendar().pop(day, None)
        logger.info("Holiday override cleared: %s (%s)", self._dates.to_key(day), current.name)
        self._record(record_audit, "override_cleared", day, current.name, created_by)
        return current

    def list_holidays(self, start: DateLike, end: DateLike) -> list[HolidayEntry]:
        rng: DateRange = self._dates.range_of(start, end)
        calendar = self._calendar()
        out: list[HolidayEntry] = []
        day = rng.start
        while day <= rng.end:
            override = calendar.get(day)
            if override is not None:
                if override.kind == OverrideKind.ADDED:
                    out.append(HolidayEntry(date=day, name=override.name, source="override"))
            else:
                name = self._rule.name_for(day)
                if name is not None:
                    out.append(HolidayEntry(date=day, name=name, source=self._rule.source_for(day)))
            day += timedelta(days=1)
        return out

    def list_overrides(self) -> list[HolidayOverride]:
        return sorted(self._calendar().values(), key=lambda o: o.date)

    def _reserve(self, record_audit: bool) -> None:
        if record_audit and self._audit is not None:
            self._audit.ensure_writable()

    def _record(self, record_audit: bool, action: str, day: date, name: str, created_by: Optional[str]) -> None:
        if not record_audit or self._audit is None:
            return
        self._audit.record(
            AuditEventType.HOLIDAY_CHANGE,
            user_id=created_by,
            entity_id=self._dates.to_key(day),
            details={"action": action, "holiday_name": name},
        )
