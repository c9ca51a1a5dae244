from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from ..core.enums import AttendanceAttribute, AttendanceStatus


@dataclass(frozen=True)
class AttendanceRecord:
    """Domain entity: one student's mark on one day.

    Stored inside ``attendance/{YYYY-MM-DD}`` keyed by student id, so a day
    holds at most one record per student.
    """

    day: date
    student_id: str
    status: AttendanceStatus
    attributes: frozenset[AttendanceAttribute] = frozenset()
    fee_charged: Decimal = Decimal("0.00")
    timestamp: Optional[datetime] = None
    marked_by: Optional[str] = None

    @property
    def record_id(self) -> str:
        return f"{self.day.strftime('%Y-%m-%d')}:{self.student_id}"

    def to_dict(self) -> dict:
        return {
            "id": self.record_id,
            "date": self.day.strftime("%Y-%m-%d"),
            "student_id": self.student_id,
            "status": self.status.value,
            "attributes": sorted(a.value for a in self.attributes),
            "fee_charged": str(self.fee_charged),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "marked_by": self.marked_by,
        }


@dataclass(frozen=True)
class MarkResult:
    record: AttendanceRecord
    previous: Optional[AttendanceRecord]
    fee_delta: Decimal
    old_balance: Decimal
    new_balance: Decimal

    def to_dict(self) -> dict:
        return {
            "record": self.record.to_dict(),
            "previous": self.previous.to_dict() if self.previous else None,
            "fee_delta": str(self.fee_delta),
            "old_balance": str(self.old_balance),
            "new_balance": str(self.new_balance),
        }


@dataclass(frozen=True)
class BulkMarkResult:
    """Outcome of a bulk mark; partial progress is kept, never rolled back."""

    day: date
    status: AttendanceStatus
    succeeded: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "date": self.day.strftime("%Y-%m-%d"),
            "status": self.status.value,
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
        }


@dataclass(frozen=True)
class SummaryRow:
    """Read-model: an eligible student merged with the day's mark (if any)."""

    student_id: str
    full_name: str
    record: Optional[AttendanceRecord]

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "full_name": self.full_name,
            "status": self.record.status.value if self.record else None,
            "attributes": sorted(a.value for a in self.record.attributes) if self.record else [],
            "fee_charged": str(self.record.fee_charged) if self.record else "0.00",
        }
