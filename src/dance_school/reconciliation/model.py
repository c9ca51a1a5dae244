from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from ..core.enums import CreditSource


def _key(day: date) -> str:
    return day.strftime("%Y-%m-%d")


@dataclass(frozen=True)
class AffectedEntry:
    """One fee or payment on the day that a holiday declaration would credit."""

    student_id: str
    student_name: str
    kind: CreditSource
    credit_amount: Decimal
    source_id: str
    detail: str = ""
    already_credited: bool = False

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "student_name": self.student_name,
            "kind": self.kind.value,
            "credit_amount": str(self.credit_amount),
            "source_id": self.source_id,
            "detail": self.detail,
            "already_credited": self.already_credited,
        }


@dataclass(frozen=True)
class ImpactReport:
    day: date
    holiday_name: Optional[str]
    affected: list[AffectedEntry]
    total_attendance_adjustment: Decimal
    total_payment_adjustment: Decimal
    attendance_count: int
    payment_count: int
    eligible_count: int
    message: str

    @property
    def total_adjustment(self) -> Decimal:
        return self.total_attendance_adjustment + self.total_payment_adjustment

    @property
    def has_impact(self) -> bool:
        return self.total_adjustment > 0 or self.attendance_count > 0 or self.payment_count > 0

    @property
    def affected_students(self) -> list[str]:
        return list(dict.fromkeys(e.student_id for e in self.affected if not e.already_credited))

    def to_dict(self) -> dict:
        return {
            "date": _key(self.day),
            "holiday_name": self.holiday_name,
            "affected": [e.to_dict() for e in self.affected],
            "affected_students": self.affected_students,
            "total_attendance_adjustment": str(self.total_attendance_adjustment),
            "total_payment_adjustment": str(self.total_payment_adjustment),
            "total_adjustment": str(self.total_adjustment),
            "attendance_count": self.attendance_count,
            "payment_count": self.payment_count,
            "eligible_count": self.eligible_count,
            "has_impact": self.has_impact,
            "message": self.message,
        }


@dataclass(frozen=True)
class HolidayWarning:
    """Advisory text shown before confirmation; never used as apply input."""

    day: date
    title: str
    message: str
    lines: list[str]
    has_impact: bool
    total_adjustment: Decimal

    def to_dict(self) -> dict:
        return {
            "date": _key(self.day),
            "title": self.title,
            "message": self.message,
            "lines": list(self.lines),
            "has_impact": self.has_impact,
            "total_adjustment": str(self.total_adjustment),
        }


@dataclass
class StudentAdjustment:
    student_id: str
    student_name: str
    old_balance: Decimal
    new_balance: Decimal
    attendance_credit: Decimal = Decimal("0.00")
    payment_credit: Decimal = Decimal("0.00")
    credits_issued: int = 0
    attendance_changed: bool = False

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "student_name": self.student_name,
            "old_balance": str(self.old_balance),
            "new_balance": str(self.new_balance),
            "attendance_credit": str(self.attendance_credit),
            "payment_credit": str(self.payment_credit),
            "credits_issued": self.credits_issued,
            "attendance_changed": self.attendance_changed,
        }


@dataclass
class ReconciliationResult:
    day: date
    holiday_name: str
    holiday_added: bool = False
    attendance_updated: int = 0
    total_attendance_credits: Decimal = Decimal("0.00")
    total_payment_credits: Decimal = Decimal("0.00")
    per_student_adjustments: list[StudentAdjustment] = field(default_factory=list)
    completed_students: list[str] = field(default_factory=list)
    pending_students: list[str] = field(default_factory=list)
    failed_students: list[dict] = field(default_factory=list)
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return not self.timed_out and not self.failed_students

    @property
    def total_credits_issued(self) -> Decimal:
        return self.total_attendance_credits + self.total_payment_credits

    @property
    def affected_students(self) -> int:
        return sum(
            1 for a in self.per_student_adjustments if a.credits_issued or a.attendance_changed
        )

    @property
    def changed(self) -> bool:
        return self.holiday_added or self.attendance_updated > 0 or self.total_credits_issued > 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "date": _key(self.day),
            "holiday_name": self.holiday_name,
            "holiday_added": self.holiday_added,
            "attendance_updated": self.attendance_updated,
            "affected_students": self.affected_students,
            "total_attendance_credits": str(self.total_attendance_credits),
            "total_payment_credits": str(self.total_payment_credits),
            "total_credits_issued": str(self.total_credits_issued),
            "per_student_adjustments": [a.to_dict() for a in self.per_student_adjustments],
            "completed_students": list(self.completed_students),
            "pending_students": list(self.pending_students),
            "failed_students": list(self.failed_students),
            "timed_out": self.timed_out,
        }


@dataclass
class RevertResult:
    day: date
    override_removed: bool = False
    attendance_reverted: int = 0
    credits_removed: int = 0
    total_restored: Decimal = Decimal("0.00")
    per_student_adjustments: list[StudentAdjustment] = field(default_factory=list)
    failed_students: list[dict] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed_students

    @property
    def changed(self) -> bool:
        return self.override_removed or self.attendance_reverted > 0 or self.credits_removed > 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "date": _key(self.day),
            "override_removed": self.override_removed,
            "attendance_reverted": self.attendance_reverted,
            "credits_removed": self.credits_removed,
            "total_restored": str(self.total_restored),
            "per_student_adjustments": [a.to_dict() for a in self.per_student_adjustments],
            "failed_students": list(self.failed_students),
        }
