from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from ..attendance.repository import AttendanceStore
from ..core.enums import CreditSource
from ..dates.service import DateLike, DateRange, DateService
from ..expenses.repository import ExpenseRepository
from ..payments.repository import PaymentRepository
from ..students.service import StudentDirectory
from .model import ZERO, LedgerEntry, StudentFinancials, collection_rate

logger = logging.getLogger(__name__)

EARLIEST = date(1970, 1, 1)
LATEST = date(9999, 12, 31)

_KIND_ORDER = {"fee": 0, "payment": 1, "holiday_credit": 2}


class ReportService:
    """Pure aggregation over attendance fees, payments and expenses."""

    def __init__(
        self,
        attendance: AttendanceStore,
        payments: PaymentRepository,
        expenses: ExpenseRepository,
        students: StudentDirectory,
        dates: DateService,
    ):
        self._attendance = attendance
        self._payments = payments
        self._expenses = expenses
        self._students = students
        self._dates = dates

    def _build(self, rng: DateRange) -> dict:
        names = {s.student_id: s.full_name for s in self._students.list_all()}
        per_student: dict[str, StudentFinancials] = {}

        def row(sid: str) -> StudentFinancials:
            r = per_student.get(sid)
            if r is None:
                r = StudentFinancials(student_id=sid, full_name=names.get(sid, sid))
                per_student[sid] = r
            return r

        for record in self._attendance.get_by_range(rng.start, rng.end):
            r = row(record.student_id)
            r.fees_charged += record.fee_charged
            r.by_status[record.status.value] += record.fee_charged
            for a in record.attributes:
                r.by_attribute[a.value] += 1

        by_method: dict[str, Decimal] = {}
        for p in self._payments.get_by_date_range(rng.start, rng.end):
            row(p.student_id).payments_received += p.amount
            by_method[p.payment_method.value] = by_method.get(p.payment_method.value, ZERO) + p.amount

        expenses = list(self._expenses.get_by_date_range(rng.start, rng.end))
        by_category: dict[str, Decimal] = {}
        for e in expenses:
            by_category[e.category] = by_category.get(e.category, ZERO) + e.amount

        rows = sorted(per_student.values(), key=lambda r: (r.full_name.lower(), r.student_id))
        charged = sum((r.fees_charged for r in rows), ZERO)
        paid = sum((r.payments_received for r in rows), ZERO)
        total_expenses = sum((e.amount for e in expenses), ZERO)

        by_status: dict[str, Decimal] = {}
        by_attribute: dict[str, int] = {}
        for r in rows:
            for k, v in r.by_status.items():
                by_status[k] = by_status.get(k, ZERO) + v
            for k, n in r.by_attribute.items():
                by_attribute[k] = by_attribute.get(k, 0) + n

        return {
            "range": rng.to_dict(),
            "summary": {
                "total_fees_charged": charged,
                "payments_received": paid,
                "fees_collected": sum((r.fees_collected for r in rows), ZERO),
                "pending_fees": sum((r.pending_fees for r in rows), ZERO),
                "total_expenses": total_expenses,
                "net_income": paid - total_expenses,
                "collection_rate": collection_rate(paid, charged),
            },
            "fee_breakdown": {"by_status": by_status, "by_attribute": by_attribute},
            "payment_breakdown": {
                "by_method": by_method,
                "by_student": {r.student_id: r.payments_received for r in rows if r.payments_received},
            },
            "expense_breakdown": by_category,
            "students": [r.to_dict() for r in rows],
        }

    def monthly_report(self, month: int, year: int) -> dict:
        rng = DateService.month_range(year, month)
        report = _stringify(self._build(rng))
        report["month"] = DateService.month_label(year, month)
        return report

    def cumulative_report(self, start: DateLike, end: DateLike) -> dict:
        rng = self._dates.range_of(start, end)
        months = []
        totals = {
            "total_fees_charged": ZERO,
            "payments_received": ZERO,
            "fees_collected": ZERO,
            "pending_fees": ZERO,
            "total_expenses": ZERO,
            "net_income": ZERO,
        }
        by_status: dict[str, Decimal] = {}
        by_attribute: dict[str, int] = {}

        for year, month in DateService.iter_months(rng.start, rng.end):
            m = DateService.month_range(year, month)
            clipped = DateRange(start=max(m.start, rng.start), end=min(m.end, rng.end))
            built = self._build(clipped)
            for key in totals:
                totals[key] += built["summary"][key]
            for k, v in built["fee_breakdown"]["by_status"].items():
                by_status[k] = by_status.get(k, ZERO) + v
            for k, n in built["fee_breakdown"]["by_attribute"].items():
                by_attribute[k] = by_attribute.get(k, 0) + n
            months.append({"month": DateService.month_label(year, month), **_stringify(built)})

        totals["collection_rate"] = collection_rate(totals["payments_received"], totals["total_fees_charged"])
        logger.info("Cumulative report %s..%s over %d month(s)", rng.start, rng.end, len(months))
        return _stringify(
            {
                "range": rng.to_dict(),
                "totals": totals,
                "fee_breakdown": {"by_status": by_status, "by_attribute": by_attribute},
                "months": months,
            }
        )

    def fee_year_report(self, now: Optional[DateLike] = None) -> dict:
        rng = self._dates.fee_year_range(now)
        report = self.cumulative_report(rng.start, rng.end)
        report["fee_year"] = self._dates.fee_year_label(now)
        return report

    def student_ledger(self, student_id: str, start: Optional[DateLike] = None, end: Optional[DateLike] = None) -> dict:
        """Chronological fees, payments and holiday credits with a running balance.

        The closing balance over all history is checked against the stored
        balance: fees minus payments minus payment-sourced credits.
        """
        student = self._students.get(student_id)
        entries = self._ledger_entries(student)

        expected = sum((e.delta for e in entries), ZERO)
        rng = self._dates.range_of(start, end) if start is not None and end is not None else None

        opening = ZERO
        running = ZERO
        lines = []
        for e in entries:
            if rng is not None and e.date < rng.start:
                opening += e.delta
                running = opening
                continue
            if rng is not None and e.date > rng.end:
                continue
            running += e.delta
            lines.append(e.to_dict(running))

        consistent = expected == student.balance
        if not consistent:
            logger.error(
                "Ledger of %s does not match stored balance (%s != %s)", student.student_id, expected, student.balance
            )
        return {
            "student": student.to_dict(),
            "range": rng.to_dict() if rng else None,
            "opening_balance": str(opening),
            "closing_balance": str(running),
            "entries": lines,
            "balance_check": {"expected": str(expected), "actual": str(student.balance), "consistent": consistent},
        }

    def _ledger_entries(self, student) -> list[LedgerEntry]:
        sid = student.student_id
        entries: list[LedgerEntry] = []
        for record in self._attendance.get_by_student(sid, EARLIEST, LATEST):
            attrs = ", ".join(sorted(a.value for a in record.attributes))
            entries.append(
                LedgerEntry(
                    date=record.day,
                    kind="fee",
                    description=f"{record.status.value}" + (f" ({attrs})" if attrs else ""),
                    amount=record.fee_charged,
                    delta=record.fee_charged,
                    source_id=record.record_id,
                )
            )
        for p in self._payments.get_by_student(sid):
            entries.append(
                LedgerEntry(
                    date=p.date,
                    kind="payment",
                    description=f"Payment ({p.payment_method.value})",
                    amount=p.amount,
                    delta=-p.amount,
                    source_id=p.payment_id,
                )
            )
        for c in student.holiday_credits:
            payment_credit = c.source_kind == CreditSource.PAYMENT
            entries.append(
                LedgerEntry(
                    date=c.date,
                    kind="holiday_credit",
                    description=f"{c.holiday_name}: {'payment credit' if payment_credit else 'fee refunded'}",
                    amount=c.amount,
                    delta=-c.amount if payment_credit else ZERO,
                    source_id=c.source_id,
                )
            )
        entries.sort(key=lambda e: (e.date, _KIND_ORDER[e.kind]))
        return entries

    def holiday_credits_report(self) -> dict:
        students = self._students.all_holiday_credits()
        total = sum((Decimal(s["total"]) for s in students), ZERO)
        return {"students": students, "total": str(total), "student_count": len(students)}


def _stringify(value):
    if isinstance(value, dict):
        return {k: _stringify(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_stringify(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    return value
