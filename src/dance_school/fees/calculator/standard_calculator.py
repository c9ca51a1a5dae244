from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from ...core.enums import AttendanceAttribute, AttendanceStatus
from .base import FeeCalculator, FeeSchedule


class StandardFeeCalculator(FeeCalculator):
    """Standard rule: flat fee per status; present is charged per attribute count.

    present with no attribute costs nothing, one attribute costs the single
    rate and two or more cost the multiple rate (not additive).
    """

    def __init__(self, schedule: Optional[FeeSchedule] = None):
        self._schedule = schedule or FeeSchedule()

    @property
    def schedule(self) -> FeeSchedule:
        return self._schedule

    def fee(self, status: AttendanceStatus, attributes: Iterable[AttendanceAttribute] = ()) -> Decimal:
        status = AttendanceStatus(status)
        if status == AttendanceStatus.ABSENT:
            return self._schedule.absent
        if status == AttendanceStatus.MEDICAL_ABSENCE:
            return self._schedule.medical_absence
        if status == AttendanceStatus.HOLIDAY:
            return self._schedule.holiday

        count = len({AttendanceAttribute(a) for a in attributes})
        if count == 0:
            return Decimal("0.00")
        if count == 1:
            return self._schedule.present_single_attribute
        return self._schedule.present_multiple_attributes
