from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from ..core.enums import AttendanceAttribute, AttendanceStatus

ZERO = Decimal("0.00")
RATE = Decimal("0.0001")


def collection_rate(paid: Decimal, charged: Decimal) -> Decimal:
    if charged <= 0:
        return Decimal("0.0000")
    return (paid / charged).quantize(RATE)


@dataclass
class StudentFinancials:
    """Read-model accumulated per student over a report range."""

    student_id: str
    full_name: str
    fees_charged: Decimal = ZERO
    payments_received: Decimal = ZERO
    by_status: dict[str, Decimal] = field(default_factory=lambda: {s.value: ZERO for s in AttendanceStatus})
    by_attribute: dict[str, int] = field(default_factory=lambda: {a.value: 0 for a in AttendanceAttribute})

    @property
    def fees_collected(self) -> Decimal:
        return min(self.fees_charged, self.payments_received)

    @property
    def pending_fees(self) -> Decimal:
        return max(ZERO, self.fees_charged - self.payments_received)

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "full_name": self.full_name,
            "fees_charged": str(self.fees_charged),
            "payments_received": str(self.payments_received),
            "fees_collected": str(self.fees_collected),
            "pending_fees": str(self.pending_fees),
            "collection_rate": str(collection_rate(self.payments_received, self.fees_charged)),
            "fee_breakdown": {
                "by_status": {k: str(v) for k, v in self.by_status.items()},
                "by_attribute": dict(self.by_attribute),
            },
        }


@dataclass(frozen=True)
class LedgerEntry:
    """One line of a student ledger.

    ``delta`` is the effect on the balance; attendance credits only document
    a fee already zeroed on its record and carry no delta of their own.
    """

    date: date
    kind: str  # "fee", "payment", "holiday_credit"
    description: str
    amount: Decimal
    delta: Decimal
    source_id: Optional[str] = None

    def to_dict(self, running_balance: Decimal) -> dict:
        return {
            "date": self.date.strftime("%Y-%m-%d"),
            "kind": self.kind,
            "description": self.description,
            "amount": str(self.amount),
            "delta": str(self.delta),
            "source_id": self.source_id,
            "running_balance": str(running_balance),
        }
