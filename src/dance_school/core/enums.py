from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """User role used for authorization."""

    ADMIN = "admin"
    STUDENT = "student"
    ANONYMOUS = "anonymous"


class EnrollmentStatus(str, Enum):
    PENDING = "Pending"
    ENROLLED = "Enrolled"
    INACTIVE = "Inactive"
    FROZEN = "Frozen"


class AttendanceStatus(str, Enum):
    """Daily attendance mark stored per student."""

    PRESENT = "present"
    ABSENT = "absent"
    MEDICAL_ABSENCE = "medicalAbsence"
    HOLIDAY = "holiday"


class AttendanceAttribute(str, Enum):
    """Conduct attributes that only apply to a present student."""

    LATE = "late"
    NO_SHOES = "noShoes"
    NOT_IN_UNIFORM = "notInUniform"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    OTHER = "other"


class AuditEventType(str, Enum):
    ATTENDANCE_CHANGE = "ATTENDANCE_CHANGE"
    PAYMENT_CHANGE = "PAYMENT_CHANGE"
    FEE_CHANGE = "FEE_CHANGE"
    HOLIDAY_CHANGE = "HOLIDAY_CHANGE"


class CreditSource(str, Enum):
    """What a holiday credit compensates: a charged fee or a payment."""

    ATTENDANCE = "attendance"
    PAYMENT = "payment"


class OverrideKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
