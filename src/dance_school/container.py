from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from .attendance.repository import DocumentAttendanceStore
from .attendance.service import AttendanceService
from .audit.repository import DocumentAuditRepository
from .audit.service import AuditLog
from .common.locks import KeyedLocks
from .core.constants import DEFAULT_AUDIT_QUEUE_SIZE, DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_BASE_DELAY
from .core.exceptions import ValidationError
from .database.connection import DBConfig, DatabaseConnection
from .database.document_store import DocumentStore, InMemoryDocumentStore, RetryingDocumentStore
from .database.mysql_document_store import MySQLDocumentStore
from .dates.service import DateService
from .expenses.repository import DocumentExpenseRepository
from .fees.calculator.base import FeeCalculator, FeeSchedule
from .fees.calculator.standard_calculator import StandardFeeCalculator
from .holidays.model import RecurringRule
from .holidays.repository import DocumentHolidayRepository
from .holidays.service import HolidayService
from .payments.repository import DocumentPaymentRepository
from .payments.service import PaymentLedger
from .reconciliation.service import HolidayReconciliationEngine
from .reports.service import ReportService
from .students.repository import DocumentStudentRepository
from .students.service import StudentDirectory
from .users.repository import DocumentUserRepository
from .users.service import AuthService, RoleStore, UserService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Container:
    store: DocumentStore
    dates: DateService
    calculator: FeeCalculator

    holiday_service: HolidayService
    student_directory: StudentDirectory
    attendance_store: DocumentAttendanceStore
    payments_repo: DocumentPaymentRepository
    expenses_repo: DocumentExpenseRepository
    users_repo: DocumentUserRepository

    audit_log: AuditLog
    attendance_service: AttendanceService
    payment_ledger: PaymentLedger
    reconciliation_engine: HolidayReconciliationEngine
    report_service: ReportService
    role_store: RoleStore
    auth_service: AuthService
    user_service: UserService


def build_store(settings: Any) -> DocumentStore:
    kind = str(getattr(settings, "DOCUMENT_STORE", "mysql")).lower()
    if kind == "memory":
        return InMemoryDocumentStore()
    if kind == "mysql":
        config = DBConfig.from_dict(getattr(settings, "DB_CONFIG", {}))
        return MySQLDocumentStore(DatabaseConnection.get_instance(config))
    raise ValidationError(f"Unknown DOCUMENT_STORE {kind!r}, expected 'mysql' or 'memory'")


def build_container(
    *,
    settings: Any,
    store: Optional[DocumentStore] = None,
    clock: Optional[Callable[[], datetime]] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> Container:
    """Composition root: every service is wired here once.

    ``store``, ``clock`` and ``sleep`` are injection points for tests.
    """
    store = RetryingDocumentStore(
        store if store is not None else build_store(settings),
        attempts=int(getattr(settings, "PERSISTENCE_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS)),
        base_delay=float(getattr(settings, "PERSISTENCE_RETRY_BASE_DELAY", DEFAULT_RETRY_BASE_DELAY)),
        sleep=sleep,
    )

    dates = DateService(
        timezone=getattr(settings, "TIMEZONE", "UTC"),
        fee_year_anchor=tuple(getattr(settings, "FEE_YEAR_ANCHOR", (8, 13))),
    )
    clock = clock or dates.now
    calculator = StandardFeeCalculator(FeeSchedule.from_settings(getattr(settings, "FEE_SCHEDULE", None)))
    locks = KeyedLocks()

    audit_log = AuditLog(
        DocumentAuditRepository(store),
        clock=clock,
        queue_size=int(getattr(settings, "AUDIT_RETRY_QUEUE_SIZE", DEFAULT_AUDIT_QUEUE_SIZE)),
    )

    rule = RecurringRule(
        weekdays=frozenset(int(d) for d in getattr(settings, "RECURRING_HOLIDAY_WEEKDAYS", [])),
        annual=tuple((int(m), int(d), str(n)) for m, d, n in getattr(settings, "ANNUAL_HOLIDAYS", [])),
        moving=tuple(
            (int(m), int(w), int(nth), str(n)) for m, w, nth, n in getattr(settings, "MOVING_HOLIDAYS", [])
        ),
    )
    cache_ttl = getattr(settings, "HOLIDAY_CACHE_TTL", None)
    holiday_service = HolidayService(
        DocumentHolidayRepository(store),
        dates,
        rule=rule,
        clock=clock,
        audit=audit_log,
        cache_ttl=float(cache_ttl) if cache_ttl is not None else None,
    )
    student_directory = StudentDirectory(DocumentStudentRepository(store), locks=locks, clock=clock)
    attendance_store = DocumentAttendanceStore(store, locks=locks)
    payments_repo = DocumentPaymentRepository(store)
    expenses_repo = DocumentExpenseRepository(store)
    users_repo = DocumentUserRepository(store)

    attendance_service = AttendanceService(
        attendance_store, student_directory, calculator, audit_log, dates, clock=clock
    )
    payment_ledger = PaymentLedger(payments_repo, student_directory, audit_log, dates, clock=clock)
    reconciliation_engine = HolidayReconciliationEngine(
        attendance_store,
        student_directory,
        payments_repo,
        holiday_service,
        calculator,
        audit_log,
        dates,
        clock=clock,
    )
    report_service = ReportService(attendance_store, payments_repo, expenses_repo, student_directory, dates)
    role_store = RoleStore(users_repo)
    auth_service = AuthService(users_repo, student_directory, clock=clock)
    user_service = UserService(users_repo, role_store, student_directory, clock=clock)

    logger.info("Container built (store=%s, timezone=%s)", getattr(settings, "DOCUMENT_STORE", "mysql"), dates.tz)
    return Container(
        store=store,
        dates=dates,
        calculator=calculator,
        holiday_service=holiday_service,
        student_directory=student_directory,
        attendance_store=attendance_store,
        payments_repo=payments_repo,
        expenses_repo=expenses_repo,
        users_repo=users_repo,
        audit_log=audit_log,
        attendance_service=attendance_service,
        payment_ledger=payment_ledger,
        reconciliation_engine=reconciliation_engine,
        report_service=report_service,
        role_store=role_store,
        auth_service=auth_service,
        user_service=user_service,
    )
