from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

from ...common.validators import to_money
from ...core.enums import AttendanceAttribute, AttendanceStatus
from ...core.exceptions import InconsistentError, ValidationError

SCHEDULE_KEYS = ("absent", "medicalAbsence", "holiday", "presentSingleAttribute", "presentMultipleAttributes")


@dataclass(frozen=True)
class FeeSchedule:
    """Amounts charged per attendance outcome, loaded from settings at boot."""

    absent: Decimal = Decimal("5.00")
    medical_absence: Decimal = Decimal("0.00")
    holiday: Decimal = Decimal("0.00")
    present_single_attribute: Decimal = Decimal("1.00")
    present_multiple_attributes: Decimal = Decimal("2.00")

    def __post_init__(self):
        for name in ("absent", "medical_absence", "holiday", "present_single_attribute", "present_multiple_attributes"):
            if getattr(self, name) < 0:
                raise InconsistentError(f"Fee schedule amount {name} must not be negative")

    @classmethod
    def from_settings(cls, schedule: Mapping[str, object] | None) -> "FeeSchedule":
        schedule = dict(schedule or {})
        unknown = sorted(set(schedule) - set(SCHEDULE_KEYS))
        if unknown:
            raise ValidationError(f"Unknown fee schedule keys: {', '.join(unknown)}")
        default = cls()
        return cls(
            absent=to_money(schedule.get("absent", default.absent), "absent"),
            medical_absence=to_money(schedule.get("medicalAbsence", default.medical_absence), "medicalAbsence"),
            holiday=to_money(schedule.get("holiday", default.holiday), "holiday"),
            present_single_attribute=to_money(
                schedule.get("presentSingleAttribute", default.present_single_attribute), "presentSingleAttribute"
            ),
            present_multiple_attributes=to_money(
                schedule.get("presentMultipleAttributes", default.present_multiple_attributes),
                "presentMultipleAttributes",
            ),
        )


class FeeCalculator(ABC):
    """Calculator interface (Strategy Pattern for attendance fees).

    Implementations are pure: no state, no I/O.
    """

    @abstractmethod
    def fee(self, status: AttendanceStatus, attributes: Iterable[AttendanceAttribute] = ()) -> Decimal:
        raise NotImplementedError

    def fee_difference(
        self,
        old: tuple[AttendanceStatus, Iterable[AttendanceAttribute]] | None,
        new: tuple[AttendanceStatus, Iterable[AttendanceAttribute]],
    ) -> Decimal:
        """Balance delta when a mark moves from ``old`` to ``new`` (``old`` None: unmarked)."""
        old_fee = self.fee(*old) if old is not None else Decimal("0.00")
        return self.fee(*new) - old_fee
