from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from ..core.enums import PaymentMethod

PAYMENT_FIELDS = ("student_id", "amount", "date", "payment_method", "notes")


@dataclass(frozen=True)
class Payment:
    """Append-only payment entity; corrections are compensating entries."""

    payment_id: str
    student_id: str
    amount: Decimal
    date: date
    payment_method: PaymentMethod
    notes: Optional[str] = None
    admin_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.payment_id,
            "student_id": self.student_id,
            "amount": str(self.amount),
            "date": self.date.strftime("%Y-%m-%d"),
            "payment_method": self.payment_method.value,
            "notes": self.notes,
            "admin_id": self.admin_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
