from __future__ import annotations

from decimal import Decimal
from typing import Optional, Protocol, Sequence

from ..common.datetime_utils import from_timestamp, parse_iso_date, to_timestamp
from ..common.validators import require_known_fields
from ..core.constants import STUDENTS
from ..core.enums import CreditSource, EnrollmentStatus
from ..core.exceptions import ConcurrencyConflictError, NotFoundError
from ..database.document_store import DocumentStore, QueryFilter
from .model import PROFILE_FIELDS, HolidayCredit, Student

DOCUMENT_FIELDS = PROFILE_FIELDS + (
    "enrollment_status",
    "balance",
    "holiday_credits",
    "version",
    "created_at",
    "updated_at",
)


class StudentRepository(Protocol):
    def get_by_id(self, student_id: str) -> Optional[Student]:
        raise NotImplementedError

    def list_all(self) -> Sequence[Student]:
        raise NotImplementedError

    def list_by_status(self, status: EnrollmentStatus) -> Sequence[Student]:
        raise NotImplementedError

    def create(self, student: Student) -> Student:
        raise NotImplementedError

    def save(self, student: Student, *, expected_version: int) -> Student:
        """Write ``student`` if the stored version still equals ``expected_version``."""

        raise NotImplementedError


def credit_to_document(c: HolidayCredit) -> dict:
    return c.to_dict()


def credit_from_document(doc: dict) -> HolidayCredit:
    return HolidayCredit(
        amount=Decimal(str(doc["amount"])),
        date=parse_iso_date(doc["date"]),
        holiday_name=doc.get("holiday_name") or "",
        source_kind=CreditSource(doc["source_kind"]),
        source_id=str(doc["source_id"]),
        created_at=from_timestamp(doc["created_at"]),
    )


def student_to_document(s: Student) -> dict:
    return {
        "first_name": s.first_name,
        "last_name": s.last_name,
        "email": s.email,
        "phone": s.phone,
        "date_of_birth": s.date_of_birth,
        "notes": s.notes,
        "enrollment_status": s.enrollment_status.value,
        "balance": str(s.balance),
        "holiday_credits": [credit_to_document(c) for c in s.holiday_credits],
        "version": int(s.version),
        "created_at": to_timestamp(s.created_at) if s.created_at else None,
        "updated_at": to_timestamp(s.updated_at) if s.updated_at else None,
    }


def student_from_document(student_id: str, doc: dict) -> Student:
    require_known_fields(doc, DOCUMENT_FIELDS, "student")
    return Student(
        student_id=str(student_id),
        first_name=doc.get("first_name") or "",
        last_name=doc.get("last_name") or "",
        email=doc.get("email"),
        phone=doc.get("phone"),
        date_of_birth=doc.get("date_of_birth"),
        notes=doc.get("notes"),
        enrollment_status=EnrollmentStatus(doc.get("enrollment_status", EnrollmentStatus.PENDING.value)),
        balance=Decimal(str(doc.get("balance", "0"))),
        holiday_credits=tuple(credit_from_document(c) for c in doc.get("holiday_credits") or []),
        version=int(doc.get("version", 0)),
        created_at=from_timestamp(doc["created_at"]) if doc.get("created_at") else None,
        updated_at=from_timestamp(doc["updated_at"]) if doc.get("updated_at") else None,
    )


class DocumentStudentRepository(StudentRepository):
    def __init__(self, store: DocumentStore):
        self._store = store

    def get_by_id(self, student_id: str) -> Optional[Student]:
        doc = self._store.get(STUDENTS, str(student_id))
        return student_from_document(student_id, doc) if doc else None

    def list_all(self) -> Sequence[Student]:
        return [student_from_document(d.id, d.data) for d in self._store.query(STUDENTS)]

    def list_by_status(self, status: EnrollmentStatus) -> Sequence[Student]:
        docs = self._store.query(STUDENTS, [QueryFilter("enrollment_status", "==", status.value)])
        return [student_from_document(d.id, d.data) for d in docs]

    def create(self, student: Student) -> Student:
        self._store.set(STUDENTS, student.student_id, student_to_document(student))
        return student

    def save(self, student: Student, *, expected_version: int) -> Student:
        written = self._store.set_if(
            STUDENTS,
            student.student_id,
            student_to_document(student),
            expected={"version": int(expected_version)},
        )
        if written:
            return student
        current = self._store.get(STUDENTS, student.student_id)
        if current is None:
            raise NotFoundError(f"Student {student.student_id} not found")
        raise ConcurrencyConflictError(
            f"Student {student.student_id} was modified concurrently",
            details={"expected_version": expected_version, "stored_version": int(current.get("version", 0))},
        )
