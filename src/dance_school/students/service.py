from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Iterator, Optional, Sequence

from ..common.datetime_utils import now_local
from ..common.locks import KeyedLocks
from ..common.validators import require_known_fields, require_non_empty, require_positive_money, to_money
from ..core.constants import MAX_CONFLICT_RETRIES
from ..core.enums import CreditSource, EnrollmentStatus
from ..core.exceptions import ConcurrencyConflictError, NotFoundError, ValidationError
from .model import PROFILE_FIELDS, BalanceChange, HolidayCredit, Student
from .repository import StudentRepository

logger = logging.getLogger(__name__)


class StudentDirectory:
    """Student identity, enrollment status, balance and holiday credits.

    Every balance or credit mutation is a read-modify-write of the student
    document serialised by the student's mutex and guarded by a version
    check. Callers that need a larger critical section (attendance plus
    balance) hold ``directory.lock(student_id)`` around the whole operation;
    the lock is re-entrant.
    """

    def __init__(
        self,
        students: StudentRepository,
        *,
        locks: Optional[KeyedLocks] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._students = students
        self._locks = locks if locks is not None else KeyedLocks()
        self._clock = clock or now_local

    @contextmanager
    def lock(self, student_id: str) -> Iterator[None]:
        with self._locks.hold(("student", str(student_id))):
            yield

    # -- identity & profile -------------------------------------------------

    def create(
        self,
        profile: dict,
        *,
        student_id: Optional[str] = None,
        enrollment_status: EnrollmentStatus = EnrollmentStatus.PENDING,
    ) -> Student:
        require_known_fields(profile, PROFILE_FIELDS, "profile")
        first_name = require_non_empty(profile.get("first_name", ""), "First name")
        last_name = require_non_empty(profile.get("last_name", ""), "Last name")

        sid = str(student_id or uuid.uuid4().hex)
        if self._students.get_by_id(sid):
            raise ValidationError(f"Student {sid} already exists")

        now = self._clock()
        student = Student(
            student_id=sid,
            first_name=first_name,
            last_name=last_name,
            email=(profile.get("email") or None),
            phone=(profile.get("phone") or None),
            date_of_birth=(profile.get("date_of_birth") or None),
            notes=(profile.get("notes") or None),
            enrollment_status=_parse_status(enrollment_status),
            created_at=now,
            updated_at=now,
        )
        self._students.create(student)
        logger.info("Student %s created (%s)", sid, student.full_name)
        return student

    def find(self, student_id: str) -> Optional[Student]:
        return self._students.get_by_id(str(student_id))

    def get(self, student_id: str) -> Student:
        student = self.find(student_id)
        if not student:
            raise NotFoundError(f"Student {student_id} not found")
        return student

    def list_all(self) -> list[Student]:
        return _sorted(self._students.list_all())

    def list_by_status(self, status: EnrollmentStatus | str) -> list[Student]:
        return _sorted(self._students.list_by_status(_parse_status(status)))

    def eligible_students(self) -> list[Student]:
        return self.list_by_status(EnrollmentStatus.ENROLLED)

    def update_profile(self, student_id: str, changes: dict) -> Student:
        require_known_fields(changes, PROFILE_FIELDS, "profile")
        cleaned = {}
        for key, value in changes.items():
            if key in {"first_name", "last_name"}:
                cleaned[key] = require_non_empty(value, key.replace("_", " ").capitalize())
            else:
                cleaned[key] = value or None
        return self._mutate(student_id, lambda s: replace(s, **cleaned)).student

    def change_enrollment_status(self, student_id: str, status: EnrollmentStatus | str) -> Student:
        status = _parse_status(status)
        return self._mutate(student_id, lambda s: replace(s, enrollment_status=status)).student

    # -- balance ------------------------------------------------------------

    def increase_balance(self, student_id: str, amount) -> BalanceChange:
        amount = require_positive_money(amount, "Amount to add")
        return self._mutate(student_id, lambda s: replace(s, balance=s.balance + amount))

    def reduce_balance(self, student_id: str, amount) -> BalanceChange:
        """Subtract ``amount``; the balance may go below zero (credit owed)."""
        amount = require_positive_money(amount, "Amount to reduce")
        return self._mutate(student_id, lambda s: replace(s, balance=s.balance - amount))

    def adjust_balance(self, student_id: str, delta, *, credit: Optional[HolidayCredit] = None) -> BalanceChange:
        """Apply a signed ``delta`` and optionally append ``credit`` in one write."""
        delta = to_money(delta, "delta")

        def apply(s: Student) -> Student:
            credits = s.holiday_credits + ((credit,) if credit else ())
            return replace(s, balance=s.balance + delta, holiday_credits=credits)

        return self._mutate(student_id, apply)

    # -- holiday credits ----------------------------------------------------

    def add_holiday_credit(self, student_id: str, credit: HolidayCredit) -> Student:
        """Record a credit entry without touching the balance."""
        if credit.amount <= 0:
            raise ValidationError("Holiday credit amount must be greater than zero")
        return self._mutate(
            student_id, lambda s: replace(s, holiday_credits=s.holiday_credits + (credit,))
        ).student

    def get_holiday_credits(self, student_id: str) -> tuple[HolidayCredit, ...]:
        return self.get(student_id).holiday_credits

    def has_credit_for(self, student_id: str, source_kind: CreditSource, source_id: str) -> bool:
        return any(
            c.source_kind == source_kind and c.source_id == source_id
            for c in self.get_holiday_credits(student_id)
        )

    def revert_holiday_credits(
        self, student_id: str, day: date, *, restore_attendance: bool = True
    ) -> tuple[tuple[HolidayCredit, ...], BalanceChange]:
        """Drop every credit dated ``day`` and add their amounts back to the balance.

        With ``restore_attendance`` False, attendance credits are dropped
        without touching the balance (the mark was re-charged since).
        """
        removed: list[HolidayCredit] = []

        def apply(s: Student) -> Student:
            removed.clear()
            kept = []
            for c in s.holiday_credits:
                (removed if c.date == day else kept).append(c)
            restored = sum(
                (c.amount for c in removed if restore_attendance or c.source_kind != CreditSource.ATTENDANCE),
                Decimal("0.00"),
            )
            return replace(s, balance=s.balance + restored, holiday_credits=tuple(kept))

        change = self._mutate(student_id, apply)
        return tuple(removed), change

    def restore_holiday_credits(self, student_id: str, credits: Sequence[HolidayCredit]) -> BalanceChange:
        """Undo ``revert_holiday_credits``: re-append ``credits`` and subtract their amounts."""
        total = sum((c.amount for c in credits), Decimal("0.00"))
        return self._mutate(
            student_id,
            lambda s: replace(s, balance=s.balance - total, holiday_credits=s.holiday_credits + tuple(credits)),
        )

    def all_holiday_credits(self) -> list[dict]:
        out = []
        for s in self.list_all():
            if not s.holiday_credits:
                continue
            out.append(
                {
                    "student_id": s.student_id,
                    "student_name": s.full_name,
                    "total": str(sum((c.amount for c in s.holiday_credits), Decimal("0.00"))),
                    "credits": [c.to_dict() for c in s.holiday_credits],
                }
            )
        return out

    # -- internals ----------------------------------------------------------

    def _mutate(self, student_id: str, fn: Callable[[Student], Student]) -> BalanceChange:
        sid = str(student_id)
        with self.lock(sid):
            for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
                current = self.get(sid)
                updated = replace(fn(current), version=current.version + 1, updated_at=self._clock())
                try:
                    self._students.save(updated, expected_version=current.version)
                except ConcurrencyConflictError:
                    if attempt >= MAX_CONFLICT_RETRIES:
                        raise
                    logger.warning("Version conflict on student %s, re-reading (attempt %d)", sid, attempt)
                    continue
                if updated.balance != current.balance:
                    logger.info("Balance of student %s: %s -> %s", sid, current.balance, updated.balance)
                return BalanceChange(student=updated, old_balance=current.balance, new_balance=updated.balance)
        raise AssertionError("unreachable")


def _parse_status(status) -> EnrollmentStatus:
    try:
        return EnrollmentStatus(status)
    except ValueError:
        valid = ", ".join(s.value for s in EnrollmentStatus)
        raise ValidationError(f"Invalid status: {status}. Must be one of: {valid}")


def _sorted(students: Sequence[Student]) -> list[Student]:
    return sorted(students, key=lambda s: (s.first_name.lower(), s.last_name.lower(), s.student_id))
