from datetime import date
from decimal import Decimal

import pytest

from dance_school.core.enums import AuditEventType, PaymentMethod
from dance_school.core.exceptions import InconsistentError, NotFoundError, TransientError, ValidationError
from dance_school.payments.repository import DocumentPaymentRepository
from dance_school.payments.service import PaymentLedger
from dance_school.students.repository import DocumentStudentRepository
from dance_school.students.service import StudentDirectory


class BrokenPaymentRepo(DocumentPaymentRepository):
    def create(self, payment):
        raise TransientError("payment write failed")


class NoRefundDirectory(StudentDirectory):
    def increase_balance(self, student_id, amount):
        raise TransientError("balance write failed")


def test_payment_reduces_balance(container, enroll):
    enroll("a")
    container.attendance_service.mark("2025-05-01", "a", "absent")
    payment = container.payment_ledger.create(
        {"student_id": "a", "amount": 3, "date": "2025-05-02", "payment_method": "cash"}, admin_id="admin-1"
    )

    assert container.student_directory.get("a").balance == Decimal("2.00")
    stored = container.payment_ledger.get_by_id(payment.payment_id)
    assert stored.amount == Decimal("3.00")
    assert stored.date == date(2025, 5, 2)
    assert stored.payment_method == PaymentMethod.CASH


def test_payment_emits_payment_and_fee_events(container, enroll):
    enroll("a")
    payment = container.payment_ledger.create({"student_id": "a", "amount": "10.5", "date": "2025-05-02"})

    payment_events = container.audit_log.list_by_entity(payment.payment_id).items
    assert [e.type for e in payment_events] == [AuditEventType.PAYMENT_CHANGE]
    fee_events = container.audit_log.list_by_entity("a").items
    assert [e.type for e in fee_events] == [AuditEventType.FEE_CHANGE]
    assert fee_events[0].details["new_balance"] == "-10.50"


@pytest.mark.parametrize(
    "data",
    [
        {"student_id": "a", "amount": 0, "date": "2025-05-02"},
        {"student_id": "a", "amount": -4, "date": "2025-05-02"},
        {"student_id": "a", "amount": "ten", "date": "2025-05-02"},
        {"student_id": "a", "amount": 3},
        {"student_id": "a", "amount": 3, "date": "2025-05-32"},
        {"student_id": "a", "amount": 3, "date": "2025-05-02", "payment_method": "cheque"},
        {"student_id": "a", "amount": 3, "date": "2025-05-02", "discount": 1},
        {"amount": 3, "date": "2025-05-02"},
    ],
)
def test_invalid_payment_rejected_before_any_write(container, enroll, data):
    enroll("a")
    with pytest.raises(ValidationError):
        container.payment_ledger.create(data)
    assert container.student_directory.get("a").balance == Decimal("0.00")
    assert container.payment_ledger.get_all() == []


def test_payment_for_unknown_student(container):
    with pytest.raises(NotFoundError):
        container.payment_ledger.create({"student_id": "ghost", "amount": 3, "date": "2025-05-02"})


def test_get_unknown_payment(container):
    with pytest.raises(NotFoundError):
        container.payment_ledger.get_by_id("missing")


def test_payment_queries_and_ordering(container, enroll):
    enroll("a", "Ana")
    enroll("b", "Bo")
    ledger = container.payment_ledger
    ledger.create({"student_id": "a", "amount": 1, "date": "2025-05-03"})
    ledger.create({"student_id": "a", "amount": 2, "date": "2025-05-01"})
    ledger.create({"student_id": "b", "amount": 4, "date": "2025-06-01", "payment_method": "card"})

    assert [p.amount for p in ledger.get_by_student("a")] == [Decimal("1"), Decimal("2")]
    assert [p.amount for p in ledger.get_by_date_range("2025-05-01", "2025-05-31")] == [Decimal("2"), Decimal("1")]
    assert len(ledger.get_all()) == 3

    rows = ledger.list_with_student_names()
    assert rows[0]["student_name"] == "Bo Dancer"
    assert {r["student_name"] for r in rows} == {"Ana Dancer", "Bo Dancer"}


def test_failed_payment_write_restores_balance(container, enroll):
    enroll("a")
    ledger = PaymentLedger(
        BrokenPaymentRepo(container.store), container.student_directory, container.audit_log, container.dates
    )
    with pytest.raises(TransientError):
        ledger.create({"student_id": "a", "amount": 3, "date": "2025-05-02"})
    assert container.student_directory.get("a").balance == Decimal("0.00")
    assert container.audit_log.list_all().total == 0


def test_failed_refund_after_failed_write_is_inconsistent(container, enroll):
    enroll("a")
    ledger = PaymentLedger(
        BrokenPaymentRepo(container.store),
        NoRefundDirectory(DocumentStudentRepository(container.store)),
        container.audit_log,
        container.dates,
    )
    with pytest.raises(InconsistentError):
        ledger.create({"student_id": "a", "amount": 3, "date": "2025-05-02"})
