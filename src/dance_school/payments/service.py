from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from ..audit.service import AuditLog
from ..common.datetime_utils import now_local
from ..common.validators import require_known_fields, require_positive_money
from ..core.enums import AuditEventType, PaymentMethod
from ..core.exceptions import DomainError, InconsistentError, NotFoundError, ValidationError
from ..dates.service import DateLike, DateService
from ..students.service import StudentDirectory
from .model import PAYMENT_FIELDS, Payment
from .repository import PaymentRepository

logger = logging.getLogger(__name__)

# PAYMENT_CHANGE plus FEE_CHANGE.
EVENTS_PER_PAYMENT = 2


class PaymentLedger:
    """Append-only payments; each one reduces the payer's balance."""

    def __init__(
        self,
        payments: PaymentRepository,
        students: StudentDirectory,
        audit: AuditLog,
        dates: DateService,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._payments = payments
        self._students = students
        self._audit = audit
        self._dates = dates
        self._clock = clock or (lambda: now_local(dates.tz))

    def create(self, data: dict, *, admin_id: Optional[str] = None) -> Payment:
        require_known_fields(data, PAYMENT_FIELDS, "payment")
        student_id = str(data.get("student_id") or "").strip()
        if not student_id:
            raise ValidationError("student_id is required")
        amount = require_positive_money(data.get("amount"), "Payment amount")
        if not data.get("date"):
            raise ValidationError("Payment date is required")
        day = self._dates.to_date(data["date"])
        try:
            method = PaymentMethod(data.get("payment_method") or PaymentMethod.CASH.value)
        except ValueError:
            valid = ", ".join(m.value for m in PaymentMethod)
            raise ValidationError(f"Invalid payment method {data.get('payment_method')!r}. Must be one of: {valid}")
        notes = (data.get("notes") or "").strip() or None

        self._students.get(student_id)
        self._audit.ensure_writable(EVENTS_PER_PAYMENT)

        payment = Payment(
            payment_id=uuid.uuid4().hex,
            student_id=student_id,
            amount=amount,
            date=day,
            payment_method=method,
            notes=notes,
            admin_id=admin_id,
            created_at=self._clock(),
        )

        with self._students.lock(student_id):
            change = self._students.reduce_balance(student_id, amount)
            try:
                self._payments.create(payment)
            except DomainError:
                try:
                    self._students.increase_balance(student_id, amount)
                except DomainError as e:
                    logger.exception("Could not restore balance of %s after failed payment", student_id)
                    raise InconsistentError(
                        f"Payment write failed and balance of student {student_id} could not be restored",
                        details={"cause": e.to_dict()},
                    ) from e
                raise

            self._audit.record(
                AuditEventType.PAYMENT_CHANGE,
                user_id=admin_id,
                entity_id=payment.payment_id,
                details={"student_id": student_id, "amount": amount, "date": day, "payment_method": method},
            )
            self._audit.record(
                AuditEventType.FEE_CHANGE,
                user_id=admin_id,
                entity_id=student_id,
                details={
                    "reason": "payment",
                    "payment_id": payment.payment_id,
                    "delta": -amount,
                    "old_balance": change.old_balance,
                    "new_balance": change.new_balance,
                },
            )

        logger.info("Payment %s of %s recorded for %s", payment.payment_id, amount, student_id)
        return payment

    def get_by_id(self, payment_id: str) -> Payment:
        payment = self._payments.get_by_id(str(payment_id))
        if not payment:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    def get_by_student(self, student_id: str) -> list[Payment]:
        return list(self._payments.get_by_student(str(student_id)))

    def get_by_date_range(self, start: DateLike, end: DateLike) -> list[Payment]:
        rng = self._dates.range_of(start, end)
        return list(self._payments.get_by_date_range(rng.start, rng.end))

    def get_all(self) -> list[Payment]:
        return list(self._payments.get_all())

    def list_with_student_names(self, start: Optional[DateLike] = None, end: Optional[DateLike] = None) -> list[dict]:
        if start is not None and end is not None:
            payments = list(reversed(self.get_by_date_range(start, end)))
        else:
            payments = self.get_all()
        names: dict[str, str] = {}
        out = []
        for p in payments:
            if p.student_id not in names:
                student = self._students.find(p.student_id)
                names[p.student_id] = student.full_name if student else "Unknown student"
            out.append({**p.to_dict(), "student_name": names[p.student_id]})
        return out
