from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional

from ..audit.service import AuditLog
from ..common.datetime_utils import now_local
from ..core.enums import AttendanceAttribute, AttendanceStatus, AuditEventType
from ..core.exceptions import DomainError, InconsistentError, NotFoundError, ValidationError
from ..dates.service import DateLike, DateService
from ..fees.calculator.base import FeeCalculator
from ..students.model import Student
from ..students.service import StudentDirectory
from .model import AttendanceRecord, BulkMarkResult, MarkResult, SummaryRow
from .repository import AttendanceStore

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
# ATTENDANCE_CHANGE plus FEE_CHANGE.
EVENTS_PER_MARK = 2


def parse_status(value) -> AttendanceStatus:
    try:
        return AttendanceStatus(value)
    except ValueError:
        valid = ", ".join(s.value for s in AttendanceStatus)
        raise ValidationError(f"Invalid attendance status {value!r}. Must be one of: {valid}")


def parse_attributes(values: Optional[Iterable]) -> frozenset[AttendanceAttribute]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        raise ValidationError("attributes must be a list")
    out = set()
    for v in values:
        try:
            out.add(AttendanceAttribute(v))
        except ValueError:
            valid = ", ".join(a.value for a in AttendanceAttribute)
            raise ValidationError(f"Invalid attendance attribute {v!r}. Must be one of: {valid}")
    return frozenset(out)


class AttendanceService:
    """Applies attendance marks together with their fee effect on the balance.

    A mark runs under the student's mutex: read prior record, charge the fee
    delta to the balance, persist the record, then write audit events. A
    failed record write after the balance moved is compensated; a failed
    compensation surfaces as ``InconsistentError``.
    """

    def __init__(
        self,
        attendance: AttendanceStore,
        students: StudentDirectory,
        calculator: FeeCalculator,
        audit: AuditLog,
        dates: DateService,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._attendance = attendance
        self._students = students
        self._calculator = calculator
        self._audit = audit
        self._dates = dates
        self._clock = clock or (lambda: now_local(dates.tz))

    def eligible_students(self) -> list[Student]:
        return self._students.eligible_students()

    def get_by_date(self, value: DateLike) -> dict[str, AttendanceRecord]:
        return self._attendance.get_by_date(self._dates.to_date(value))

    def get_by_student(self, student_id: str, start: DateLike, end: DateLike) -> list[AttendanceRecord]:
        rng = self._dates.range_of(start, end)
        return list(self._attendance.get_by_student(str(student_id), rng.start, rng.end))

    def mark(
        self,
        value: DateLike,
        student_id: str,
        status,
        attributes: Optional[Iterable] = None,
        *,
        admin_id: Optional[str] = None,
    ) -> MarkResult:
        day = self._dates.to_date(value)
        status = parse_status(status)
        attrs = parse_attributes(attributes)
        if attrs and status != AttendanceStatus.PRESENT:
            raise ValidationError("Attributes can only be set for present students")

        sid = str(student_id)
        self._students.get(sid)
        self._audit.ensure_writable(EVENTS_PER_MARK)

        with self._students.lock(sid):
            prior = self._attendance.get_record(day, sid)
            new_fee = self._calculator.fee(status, attrs)
            if new_fee < 0:
                raise InconsistentError(f"Fee for {status.value} would be negative", details={"fee": str(new_fee)})
            old_fee = prior.fee_charged if prior else ZERO
            delta = new_fee - old_fee

            record = AttendanceRecord(
                day=day,
                student_id=sid,
                status=status,
                attributes=attrs,
                fee_charged=new_fee,
                timestamp=self._clock(),
                marked_by=admin_id,
            )
            if prior is not None and prior.status == status and prior.attributes == attrs and delta == 0:
                balance = self._students.get(sid).balance
                return MarkResult(record=prior, previous=prior, fee_delta=ZERO, old_balance=balance, new_balance=balance)

            change = self._students.adjust_balance(sid, delta) if delta != 0 else None
            try:
                self._attendance.upsert(record)
            except DomainError:
                if change is not None:
                    self._compensate(
                        f"balance of student {sid} after failed mark on {self._dates.to_key(day)}",
                        lambda: self._students.adjust_balance(sid, -delta),
                    )
                raise

            old_balance = change.old_balance if change else self._students.get(sid).balance
            new_balance = change.new_balance if change else old_balance

            self._audit.record(
                AuditEventType.ATTENDANCE_CHANGE,
                user_id=admin_id,
                entity_id=record.record_id,
                details={
                    "date": day,
                    "student_id": sid,
                    "old_status": prior.status if prior else None,
                    "new_status": status,
                    "old_attributes": prior.attributes if prior else [],
                    "new_attributes": attrs,
                },
            )
            if delta != 0:
                self._audit.record(
                    AuditEventType.FEE_CHANGE,
                    user_id=admin_id,
                    entity_id=sid,
                    details={
                        "reason": "attendance",
                        "date": day,
                        "old_fee": old_fee,
                        "new_fee": new_fee,
                        "delta": delta,
                        "old_balance": old_balance,
                        "new_balance": new_balance,
                    },
                )

        logger.info(
            "Marked %s %s on %s (fee %s -> %s)", sid, status.value, self._dates.to_key(day), old_fee, new_fee
        )
        return MarkResult(record=record, previous=prior, fee_delta=delta, old_balance=old_balance, new_balance=new_balance)

    def bulk_mark(
        self,
        value: DateLike,
        student_ids: Iterable[str],
        status,
        *,
        admin_id: Optional[str] = None,
    ) -> BulkMarkResult:
        """Mark every student with ``status`` and no attributes.

        Students are processed one by one; failures are collected and the
        batch continues. Already-applied students are not rolled back, so the
        caller can retry the failed subset.
        """
        day = self._dates.to_date(value)
        status = parse_status(status)
        ids = list(dict.fromkeys(str(s) for s in (student_ids or [])))
        if not ids:
            raise ValidationError("No students selected")

        result = BulkMarkResult(day=day, status=status)
        for sid in ids:
            try:
                self.mark(day, sid, status, (), admin_id=admin_id)
            except InconsistentError:
                raise
            except DomainError as e:
                logger.warning("Bulk mark failed for %s on %s: %s", sid, self._dates.to_key(day), e)
                result.failed.append({"student_id": sid, "error": e.to_dict()})
            else:
                result.succeeded.append(sid)
        return result

    def remove_mark(self, value: DateLike, student_id: str, *, admin_id: Optional[str] = None) -> AttendanceRecord:
        """Delete a mistaken mark and refund the fee it charged."""
        day = self._dates.to_date(value)
        sid = str(student_id)
        self._audit.ensure_writable(EVENTS_PER_MARK)

        with self._students.lock(sid):
            prior = self._attendance.get_record(day, sid)
            if prior is None:
                raise NotFoundError(f"No attendance for student {sid} on {self._dates.to_key(day)}")

            change = self._students.reduce_balance(sid, prior.fee_charged) if prior.fee_charged > 0 else None
            try:
                self._attendance.remove(day, sid)
            except DomainError:
                if change is not None:
                    self._compensate(
                        f"balance of student {sid} after failed removal on {self._dates.to_key(day)}",
                        lambda: self._students.increase_balance(sid, prior.fee_charged),
                    )
                raise

            self._audit.record(
                AuditEventType.ATTENDANCE_CHANGE,
                user_id=admin_id,
                entity_id=prior.record_id,
                details={"date": day, "student_id": sid, "old_status": prior.status, "new_status": None},
            )
            if change is not None:
                self._audit.record(
                    AuditEventType.FEE_CHANGE,
                    user_id=admin_id,
                    entity_id=sid,
                    details={
                        "reason": "attendance_removed",
                        "date": day,
                        "old_fee": prior.fee_charged,
                        "new_fee": ZERO,
                        "delta": -prior.fee_charged,
                        "old_balance": change.old_balance,
                        "new_balance": change.new_balance,
                    },
                )
        logger.info("Removed attendance of %s on %s", sid, self._dates.to_key(day))
        return prior

    def attendance_summary(self, value: DateLike) -> list[SummaryRow]:
        """Eligible students with their mark for the day, unmarked ones included."""
        day = self._dates.to_date(value)
        records = self._attendance.get_by_date(day)
        rows = [SummaryRow(s.student_id, s.full_name, records.pop(s.student_id, None)) for s in self.eligible_students()]
        for sid, record in sorted(records.items()):
            student = self._students.find(sid)
            rows.append(SummaryRow(sid, student.full_name if student else sid, record))
        return rows

    @staticmethod
    def _compensate(what: str, undo: Callable[[], object]) -> None:
        try:
            undo()
        except DomainError as e:
            logger.exception("Compensation failed for %s", what)
            raise InconsistentError(f"Could not restore {what}", details={"cause": e.to_dict()}) from e
        logger.warning("Compensated %s", what)
