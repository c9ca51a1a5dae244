from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional

from ..attendance.model import AttendanceRecord
from ..attendance.repository import AttendanceStore
from ..audit.service import AuditLog
from ..common.datetime_utils import now_local
from ..common.validators import require_non_empty
from ..core.enums import AttendanceStatus, AuditEventType, CreditSource, OverrideKind
from ..core.exceptions import DomainError, InconsistentError, UnconfirmedHolidayChangeError
from ..dates.service import DateLike, DateService
from ..fees.calculator.base import FeeCalculator
from ..holidays.service import HolidayService
from ..payments.repository import PaymentRepository
from ..students.model import HolidayCredit
from ..students.service import StudentDirectory
from .model import (
    AffectedEntry,
    HolidayWarning,
    ImpactReport,
    ReconciliationResult,
    RevertResult,
    StudentAdjustment,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
# ATTENDANCE_CHANGE plus FEE_CHANGE for one student's record on the day.
EVENTS_PER_RECORD = 2


class HolidayReconciliationEngine:
    """Retroactive holiday declarations: analyse, warn, then apply.

    ``analyze_impact`` and ``get_warning`` only read. ``process_change``
    re-analyses at apply time and never trusts a previously shown warning.
    Students are reconciled one at a time, each under its own mutex; the
    optional deadline is checked between students only, so a student's
    critical section always runs to completion.
    """

    def __init__(
        self,
        attendance: AttendanceStore,
        students: StudentDirectory,
        payments: PaymentRepository,
        holidays: HolidayService,
        calculator: FeeCalculator,
        audit: AuditLog,
        dates: DateService,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._attendance = attendance
        self._students = students
        self._payments = payments
        self._holidays = holidays
        self._calculator = calculator
        self._audit = audit
        self._dates = dates
        self._clock = clock or (lambda: now_local(dates.tz))
        self._monotonic = monotonic

    # -- phase A --------------------------------------------------------------

    def analyze_impact(self, value: DateLike, holiday_name: Optional[str] = None) -> ImpactReport:
        day = self._dates.to_date(value)
        eligible = self._students.eligible_students()
        names = {s.student_id: s.full_name for s in eligible}

        records = self._attendance.get_by_date(day)
        payments = self._payments.get_by_date_range(day, day)

        affected: list[AffectedEntry] = []
        total_attendance = ZERO
        for sid in sorted(records, key=lambda k: (names.get(k, "~"), k)):
            record = records[sid]
            # Refund what was actually charged; the record is the ledger entry.
            fee = record.fee_charged
            expected = self._calculator.fee(record.status, record.attributes)
            if fee != expected:
                logger.warning(
                    "Recorded fee %s differs from current schedule %s for %s", fee, expected, record.record_id
                )
            if fee > 0:
                affected.append(
                    AffectedEntry(
                        student_id=sid,
                        student_name=self._name(sid, names),
                        kind=CreditSource.ATTENDANCE,
                        credit_amount=fee,
                        source_id=record.record_id,
                        detail=_describe(record),
                    )
                )
                total_attendance += fee

        total_payments = ZERO
        for p in payments:
            credited = self._students.has_credit_for(p.student_id, CreditSource.PAYMENT, p.payment_id)
            affected.append(
                AffectedEntry(
                    student_id=p.student_id,
                    student_name=self._name(p.student_id, names),
                    kind=CreditSource.PAYMENT,
                    credit_amount=p.amount,
                    source_id=p.payment_id,
                    detail=f"{p.payment_method.value} payment",
                    already_credited=credited,
                )
            )
            if not credited:
                total_payments += p.amount

        if not records and not payments:
            message = f"No attendance or payments recorded on {self._dates.to_key(day)}. Safe to mark as holiday."
        else:
            message = (
                f"{len(records)} attendance record(s) and {len(payments)} payment(s) on "
                f"{self._dates.to_key(day)}; credits of {total_attendance + total_payments} would be issued."
            )

        report = ImpactReport(
            day=day,
            holiday_name=holiday_name,
            affected=affected,
            total_attendance_adjustment=total_attendance,
            total_payment_adjustment=total_payments,
            attendance_count=len(records),
            payment_count=len(payments),
            eligible_count=len(eligible),
            message=message,
        )
        logger.info("Holiday impact for %s: total adjustment %s", self._dates.to_key(day), report.total_adjustment)
        return report

    # -- phase B --------------------------------------------------------------

    def get_warning(self, value: DateLike, holiday_name: Optional[str] = None) -> HolidayWarning:
        report = self.analyze_impact(value, holiday_name)
        key = self._dates.to_key(report.day)
        label = f'"{holiday_name}" ' if holiday_name else ""
        if not report.has_impact:
            return HolidayWarning(
                day=report.day,
                title=f"Mark {key} as holiday {label}".strip(),
                message=report.message,
                lines=[],
                has_impact=False,
                total_adjustment=ZERO,
            )

        lines = []
        for e in report.affected:
            kind = "attendance fee" if e.kind == CreditSource.ATTENDANCE else "payment"
            suffix = " (already credited)" if e.already_credited else ""
            lines.append(f"{e.student_name}: credit {e.credit_amount} for {kind} ({e.detail}){suffix}")

        message = (
            f"Declaring {key} a holiday {label}will change {report.attendance_count} attendance record(s) "
            f"to holiday and issue credits totalling {report.total_adjustment} "
            f"(attendance {report.total_attendance_adjustment}, payments {report.total_payment_adjustment}). "
            "This cannot be undone automatically except by reverting the holiday."
        )
        return HolidayWarning(
            day=report.day,
            title=f"Warning: {key} has recorded activity",
            message=message,
            lines=lines,
            has_impact=True,
            total_adjustment=report.total_adjustment,
        )

    # -- phase C --------------------------------------------------------------

    def process_change(
        self,
        value: DateLike,
        holiday_name: str,
        confirmed: bool,
        *,
        admin_id: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> ReconciliationResult:
        """Declare the day a holiday and reconcile every student touched by it.

        ``deadline`` is an absolute value of the engine's monotonic clock;
        when it passes, the result lists completed and pending students.
        """
        if confirmed is not True:
            raise UnconfirmedHolidayChangeError(
                "Holiday change must be explicitly confirmed",
                details={"date": self._dates.day_key(value)},
            )
        day = self._dates.to_date(value)
        name = require_non_empty(holiday_name, "Holiday name")
        self._audit.ensure_writable()

        report = self.analyze_impact(day, name)
        result = ReconciliationResult(day=day, holiday_name=name)
        result.holiday_added = self._holidays.add_override(day, name, created_by=admin_id, record_audit=False)

        records = self._attendance.get_by_date(day)
        payments = self._payments.get_by_date_range(day, day)
        payments_by_student: dict[str, list] = {}
        for p in payments:
            payments_by_student.setdefault(p.student_id, []).append(p)

        queue = list(dict.fromkeys(list(records) + [p.student_id for p in payments]))
        for index, sid in enumerate(queue):
            if deadline is not None and self._monotonic() >= deadline:
                result.timed_out = True
                result.pending_students = queue[index:]
                logger.warning(
                    "Holiday apply for %s hit its deadline; %d student(s) pending",
                    self._dates.to_key(day), len(result.pending_students),
                )
                break
            student_payments = payments_by_student.get(sid, [])
            try:
                # Room for this student's events and the closing summary.
                self._audit.ensure_writable(EVENTS_PER_RECORD + len(student_payments) + 1)
                adjustment = self._apply_student(day, name, sid, student_payments, admin_id)
            except InconsistentError:
                raise
            except DomainError as e:
                logger.warning("Holiday apply failed for %s on %s: %s", sid, self._dates.to_key(day), e)
                result.failed_students.append({"student_id": sid, "error": e.to_dict()})
                continue
            result.completed_students.append(sid)
            if adjustment.attendance_changed or adjustment.credits_issued:
                result.per_student_adjustments.append(adjustment)
                result.attendance_updated += int(adjustment.attendance_changed)
                result.total_attendance_credits += adjustment.attendance_credit
                result.total_payment_credits += adjustment.payment_credit

        if result.changed:
            self._audit.record(
                AuditEventType.HOLIDAY_CHANGE,
                user_id=admin_id,
                entity_id=self._dates.to_key(day),
                details={
                    "action": "apply",
                    "holiday_name": name,
                    "holiday_added": result.holiday_added,
                    "attendance_updated": result.attendance_updated,
                    "affected_students": result.affected_students,
                    "total_attendance_credits": result.total_attendance_credits,
                    "total_payment_credits": result.total_payment_credits,
                    "total_credits_issued": result.total_credits_issued,
                    "analysed_adjustment": report.total_adjustment,
                    "timed_out": result.timed_out,
                    "failed_students": [f["student_id"] for f in result.failed_students],
                },
            )
        logger.info(
            "Holiday %s applied on %s: %d record(s), credits %s",
            name, self._dates.to_key(day), result.attendance_updated, result.total_credits_issued,
        )
        return result

    def _apply_student(self, day: date, name: str, sid: str, payments: list, admin_id: Optional[str]) -> StudentAdjustment:
        with self._students.lock(sid):
            student = self._students.get(sid)
            adjustment = StudentAdjustment(
                student_id=sid,
                student_name=student.full_name,
                old_balance=student.balance,
                new_balance=student.balance,
            )

            record = self._attendance.get_record(day, sid)
            if record is not None and (record.status != AttendanceStatus.HOLIDAY or record.fee_charged != 0):
                self._transition_to_holiday(day, name, record, adjustment, admin_id)

            for p in payments:
                if self._students.has_credit_for(sid, CreditSource.PAYMENT, p.payment_id):
                    continue
                credit = HolidayCredit(
                    amount=p.amount,
                    date=day,
                    holiday_name=name,
                    source_kind=CreditSource.PAYMENT,
                    source_id=p.payment_id,
                    created_at=self._clock(),
                )
                change = self._students.adjust_balance(sid, -p.amount, credit=credit)
                adjustment.payment_credit += p.amount
                adjustment.credits_issued += 1
                adjustment.new_balance = change.new_balance
                self._audit.record(
                    AuditEventType.FEE_CHANGE,
                    user_id=admin_id,
                    entity_id=sid,
                    details={
                        "reason": "holiday_payment_credit",
                        "date": day,
                        "holiday_name": name,
                        "payment_id": p.payment_id,
                        "delta": -p.amount,
                        "old_balance": change.old_balance,
                        "new_balance": change.new_balance,
                    },
                )
        return adjustment

    def _transition_to_holiday(
        self, day: date, name: str, record: AttendanceRecord, adjustment: StudentAdjustment, admin_id: Optional[str]
    ) -> None:
        sid = record.student_id
        refund = record.fee_charged
        if refund < 0:
            raise InconsistentError(f"Attendance {record.record_id} has a negative fee", details={"fee": str(refund)})

        self._attendance.bulk_upsert(day, [sid], AttendanceStatus.HOLIDAY, timestamp=self._clock(), marked_by=admin_id)
        adjustment.attendance_changed = True

        if refund > 0:
            credit = HolidayCredit(
                amount=refund,
                date=day,
                holiday_name=name,
                source_kind=CreditSource.ATTENDANCE,
                source_id=record.record_id,
                created_at=self._clock(),
            )
            try:
                change = self._students.adjust_balance(sid, -refund, credit=credit)
            except DomainError:
                self._restore(f"attendance {record.record_id}", lambda: self._attendance.upsert(record))
                raise
            adjustment.attendance_credit += refund
            adjustment.credits_issued += 1
            adjustment.new_balance = change.new_balance

        self._audit.record(
            AuditEventType.ATTENDANCE_CHANGE,
            user_id=admin_id,
            entity_id=record.record_id,
            details={
                "date": day,
                "student_id": sid,
                "old_status": record.status,
                "new_status": AttendanceStatus.HOLIDAY,
                "holiday_name": name,
            },
        )
        if refund > 0:
            self._audit.record(
                AuditEventType.FEE_CHANGE,
                user_id=admin_id,
                entity_id=sid,
                details={
                    "reason": "holiday_attendance_refund",
                    "date": day,
                    "holiday_name": name,
                    "old_fee": refund,
                    "new_fee": ZERO,
                    "delta": -refund,
                    "old_balance": change.old_balance,
                    "new_balance": change.new_balance,
                },
            )

    # -- reverse ----------------------------------------------------------------

    def revert_holiday(self, value: DateLike, confirmed: bool, *, admin_id: Optional[str] = None) -> RevertResult:
        """Undo a retroactive holiday: drop the override and every credit dated that day.

        Holiday marks go back to ``absent`` carrying the refunded fee as their
        recorded charge, so balances return to their pre-holiday values.
        Prior statuses and attributes are not restored.
        """
        if confirmed is not True:
            raise UnconfirmedHolidayChangeError(
                "Holiday revert must be explicitly confirmed",
                details={"date": self._dates.day_key(value)},
            )
        day = self._dates.to_date(value)
        self._audit.ensure_writable()

        result = RevertResult(day=day)
        override = self._holidays.get_override(day)
        if override is not None and override.kind == OverrideKind.ADDED:
            cleared = self._holidays.clear_override(day, created_by=admin_id, record_audit=False)
            result.override_removed = cleared is not None

        records = self._attendance.get_by_date(day)
        holiday_ids = [sid for sid, r in records.items() if r.status == AttendanceStatus.HOLIDAY]
        credited_ids = [s.student_id for s in self._students.list_all() if any(c.date == day for c in s.holiday_credits)]

        for sid in dict.fromkeys(credited_ids + holiday_ids):
            try:
                self._audit.ensure_writable(EVENTS_PER_RECORD + 1)
                adjustment = self._revert_student(day, sid, admin_id)
            except InconsistentError:
                raise
            except DomainError as e:
                logger.warning("Holiday revert failed for %s on %s: %s", sid, self._dates.to_key(day), e)
                result.failed_students.append({"student_id": sid, "error": e.to_dict()})
                continue
            if adjustment.attendance_changed or adjustment.credits_issued:
                result.per_student_adjustments.append(adjustment)
                result.attendance_reverted += int(adjustment.attendance_changed)
                result.credits_removed += adjustment.credits_issued
                result.total_restored += adjustment.attendance_credit + adjustment.payment_credit

        if result.changed:
            self._audit.record(
                AuditEventType.HOLIDAY_CHANGE,
                user_id=admin_id,
                entity_id=self._dates.to_key(day),
                details={
                    "action": "revert",
                    "holiday_name": override.name if override else None,
                    "override_removed": result.override_removed,
                    "attendance_reverted": result.attendance_reverted,
                    "credits_removed": result.credits_removed,
                    "total_restored": result.total_restored,
                    "failed_students": [f["student_id"] for f in result.failed_students],
                },
            )
        logger.info(
            "Holiday on %s reverted: %d record(s), %s restored",
            self._dates.to_key(day), result.attendance_reverted, result.total_restored,
        )
        return result

    def _revert_student(self, day: date, sid: str, admin_id: Optional[str]) -> StudentAdjustment:
        with self._students.lock(sid):
            student = self._students.get(sid)
            adjustment = StudentAdjustment(
                student_id=sid,
                student_name=student.full_name,
                old_balance=student.balance,
                new_balance=student.balance,
            )

            record = self._attendance.get_record(day, sid)
            still_holiday = record is not None and record.status == AttendanceStatus.HOLIDAY

            removed: tuple[HolidayCredit, ...] = ()
            if any(c.date == day for c in student.holiday_credits):
                # A mark re-entered since the holiday already carries its own charge.
                removed, change = self._students.revert_holiday_credits(sid, day, restore_attendance=still_holiday)
                adjustment.new_balance = change.new_balance
                adjustment.credits_issued = len(removed)
                for c in removed:
                    if c.source_kind == CreditSource.PAYMENT:
                        adjustment.payment_credit += c.amount
                    elif still_holiday:
                        adjustment.attendance_credit += c.amount

            if still_holiday:
                reverted = replace(
                    record,
                    status=AttendanceStatus.ABSENT,
                    attributes=frozenset(),
                    fee_charged=adjustment.attendance_credit,
                    timestamp=self._clock(),
                    marked_by=admin_id,
                )
                try:
                    self._attendance.upsert(reverted)
                except DomainError:
                    if removed:
                        self._restore(
                            f"holiday credits of student {sid}",
                            lambda: self._students.restore_holiday_credits(sid, removed),
                        )
                    raise
                adjustment.attendance_changed = True
                self._audit.record(
                    AuditEventType.ATTENDANCE_CHANGE,
                    user_id=admin_id,
                    entity_id=record.record_id,
                    details={
                        "date": day,
                        "student_id": sid,
                        "old_status": AttendanceStatus.HOLIDAY,
                        "new_status": AttendanceStatus.ABSENT,
                        "fee_charged": reverted.fee_charged,
                    },
                )

            if removed:
                self._audit.record(
                    AuditEventType.FEE_CHANGE,
                    user_id=admin_id,
                    entity_id=sid,
                    details={
                        "reason": "holiday_revert",
                        "date": day,
                        "credits_removed": [c.source_id for c in removed],
                        "delta": adjustment.new_balance - adjustment.old_balance,
                        "old_balance": adjustment.old_balance,
                        "new_balance": adjustment.new_balance,
                    },
                )
        return adjustment

    def _name(self, sid: str, names: dict[str, str]) -> str:
        if sid in names:
            return names[sid]
        student = self._students.find(sid)
        return student.full_name if student else sid

    @staticmethod
    def _restore(what: str, undo: Callable[[], object]) -> None:
        try:
            undo()
        except DomainError as e:
            logger.exception("Compensation failed for %s", what)
            raise InconsistentError(f"Could not restore {what}", details={"cause": e.to_dict()}) from e
        logger.warning("Compensated %s", what)


def _describe(record: AttendanceRecord) -> str:
    if record.attributes:
        return f"{record.status.value}: {', '.join(sorted(a.value for a in record.attributes))}"
    return record.status.value
