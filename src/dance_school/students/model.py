from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from ..core.enums import CreditSource, EnrollmentStatus

PROFILE_FIELDS = ("first_name", "last_name", "email", "phone", "date_of_birth", "notes")


@dataclass(frozen=True)
class HolidayCredit:
    """Compensation for a fee or payment on a day later declared a holiday."""

    amount: Decimal
    date: date
    holiday_name: str
    source_kind: CreditSource
    source_id: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "amount": str(self.amount),
            "date": self.date.strftime("%Y-%m-%d"),
            "holiday_name": self.holiday_name,
            "source_kind": self.source_kind.value,
            "source_id": self.source_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Student:
    """Domain entity: a student and their running balance.

    ``balance`` is positive when the student owes money, negative when the
    school owes the student.
    """

    student_id: str
    first_name: str
    last_name: str
    enrollment_status: EnrollmentStatus
    balance: Decimal = Decimal("0.00")
    email: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None
    notes: Optional[str] = None
    holiday_credits: tuple[HolidayCredit, ...] = field(default_factory=tuple)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_eligible(self) -> bool:
        return self.enrollment_status == EnrollmentStatus.ENROLLED

    def to_dict(self) -> dict:
        return {
            "id": self.student_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "date_of_birth": self.date_of_birth,
            "notes": self.notes,
            "enrollment_status": self.enrollment_status.value,
            "balance": str(self.balance),
            "holiday_credits": [c.to_dict() for c in self.holiday_credits],
        }


@dataclass(frozen=True)
class BalanceChange:
    student: Student
    old_balance: Decimal
    new_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.new_balance - self.old_balance
