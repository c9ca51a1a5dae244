from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from dance_school.attendance.service import AttendanceService
from dance_school.audit.repository import DocumentAuditRepository
from dance_school.audit.service import AuditLog
from dance_school.core.enums import AttendanceStatus, AuditEventType
from dance_school.core.exceptions import AuditLogUnavailableError, TransientError, ValidationError
from dance_school.database.document_store import InMemoryDocumentStore
from dance_school.payments.service import PaymentLedger
from dance_school.reconciliation.service import HolidayReconciliationEngine

T0 = datetime(2025, 5, 2, 12, 0, tzinfo=timezone.utc)


class FlakyAuditRepo(DocumentAuditRepository):
    def __init__(self):
        super().__init__(InMemoryDocumentStore())
        self.down = False

    def append(self, event):
        if self.down:
            raise TransientError("audit store unreachable")
        super().append(event)


class TickingClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


def test_events_are_returned_newest_first():
    log = AuditLog(FlakyAuditRepo(), clock=TickingClock())
    log.record(AuditEventType.ATTENDANCE_CHANGE, user_id="u1", entity_id="2025-05-02:a")
    log.record(AuditEventType.FEE_CHANGE, user_id="u1", entity_id="a", details={"delta": "5.00"})
    log.record(AuditEventType.FEE_CHANGE, user_id="u2", entity_id="a")

    page = log.list_by_entity("a")
    assert [e.user_id for e in page.items] == ["u2", "u1"]
    assert page.items[1].details == {"delta": "5.00"}
    assert log.list_by_user("u1").total == 2
    assert log.list_by_type("ATTENDANCE_CHANGE").items[0].entity_id == "2025-05-02:a"


def test_same_timestamp_ordered_by_sequence():
    log = AuditLog(FlakyAuditRepo(), clock=lambda: T0)
    for i in range(3):
        log.record(AuditEventType.FEE_CHANGE, user_id=None, entity_id="a", details={"n": i})
    assert [e.details["n"] for e in log.list_all().items] == [2, 1, 0]


def test_pagination():
    log = AuditLog(FlakyAuditRepo(), clock=TickingClock())
    for i in range(5):
        log.record(AuditEventType.FEE_CHANGE, user_id=None, entity_id="a", details={"n": i})

    first = log.list_all(page=1, limit=2)
    last = log.list_all(page=3, limit=2)
    assert [e.details["n"] for e in first.items] == [4, 3]
    assert first.has_more
    assert [e.details["n"] for e in last.items] == [0]
    assert not last.has_more
    assert last.to_dict()["total"] == 5


@pytest.mark.parametrize("page, limit", [(0, 10), (1, 0), (1, 101), ("x", 5)])
def test_invalid_paging_rejected(page, limit):
    with pytest.raises(ValidationError):
        AuditLog(FlakyAuditRepo()).list_all(page=page, limit=limit)


def test_unknown_event_type_rejected():
    with pytest.raises(ValidationError):
        AuditLog(FlakyAuditRepo()).list_by_type("LOGIN")


def test_details_are_made_json_friendly():
    log = AuditLog(FlakyAuditRepo(), clock=lambda: T0)
    event = log.record(
        AuditEventType.ATTENDANCE_CHANGE,
        user_id=7,
        entity_id="2025-05-02:a",
        details={"date": date(2025, 5, 2), "fee": Decimal("5.00"), "attrs": frozenset({"noShoes", "late"})},
    )
    assert event.user_id == "7"
    assert event.details == {"date": "2025-05-02", "fee": "5.00", "attrs": ["late", "noShoes"]}


def test_failed_writes_are_parked_and_replayed():
    repo = FlakyAuditRepo()
    log = AuditLog(repo, clock=TickingClock(), queue_size=3)
    repo.down = True
    log.record(AuditEventType.FEE_CHANGE, user_id=None, entity_id="a")
    log.record(AuditEventType.FEE_CHANGE, user_id=None, entity_id="b")
    assert log.pending_count == 2
    assert log.list_all().total == 0

    repo.down = False
    log.record(AuditEventType.FEE_CHANGE, user_id=None, entity_id="c")
    assert log.pending_count == 0
    assert [e.entity_id for e in log.list_all().items] == ["c", "b", "a"]


def test_full_queue_refuses_new_operations_but_keeps_committed_events():
    repo = FlakyAuditRepo()
    log = AuditLog(repo, clock=TickingClock(), queue_size=2)
    repo.down = True
    log.record(AuditEventType.FEE_CHANGE, user_id=None, entity_id="a")

    log.ensure_writable()
    with pytest.raises(AuditLogUnavailableError):
        log.ensure_writable(2)

    log.record(AuditEventType.FEE_CHANGE, user_id=None, entity_id="b")
    log.record(AuditEventType.FEE_CHANGE, user_id=None, entity_id="c")
    assert log.pending_count == 3
    with pytest.raises(AuditLogUnavailableError):
        log.ensure_writable()

    repo.down = False
    log.ensure_writable()
    assert log.pending_count == 0
    assert log.flush_pending() == 0
    assert [e.entity_id for e in log.list_all().items] == ["c", "b", "a"]


def test_full_queue_blocks_mutation_before_any_write(container, enroll):
    enroll("a")
    repo = FlakyAuditRepo()
    log = AuditLog(repo, clock=TickingClock(), queue_size=1)
    svc = AttendanceService(
        container.attendance_store, container.student_directory, container.calculator, log, container.dates
    )
    repo.down = True
    log.record(AuditEventType.FEE_CHANGE, user_id=None, entity_id="x")

    with pytest.raises(AuditLogUnavailableError):
        svc.mark("2025-05-01", "a", "absent")
    assert container.attendance_store.get_by_date(date(2025, 5, 1)) == {}
    assert container.student_directory.get("a").balance == Decimal("0.00")


def park(log, repo, count):
    repo.down = True
    for i in range(count):
        log.record(AuditEventType.FEE_CHANGE, user_id=None, entity_id=f"earlier-{i}")


def test_queue_one_slot_short_refuses_mark_before_any_write(container, enroll):
    enroll("a")
    repo = FlakyAuditRepo()
    log = AuditLog(repo, clock=TickingClock(), queue_size=8)
    svc = AttendanceService(
        container.attendance_store, container.student_directory, container.calculator, log, container.dates
    )
    park(log, repo, 7)

    with pytest.raises(AuditLogUnavailableError):
        svc.mark("2025-05-01", "a", "absent")
    assert container.attendance_store.get_by_date(date(2025, 5, 1)) == {}
    assert container.student_directory.get("a").balance == Decimal("0.00")
    assert log.pending_count == 7

    repo.down = False
    svc.mark("2025-05-01", "a", "absent")
    assert container.student_directory.get("a").balance == Decimal("5.00")
    assert log.pending_count == 0
    assert [e.type for e in log.list_by_entity("a").items] == [AuditEventType.FEE_CHANGE]


def test_queue_one_slot_short_refuses_payment_before_any_write(container, enroll):
    enroll("a")
    repo = FlakyAuditRepo()
    log = AuditLog(repo, clock=TickingClock(), queue_size=8)
    ledger = PaymentLedger(container.payments_repo, container.student_directory, log, container.dates)
    park(log, repo, 7)

    with pytest.raises(AuditLogUnavailableError):
        ledger.create({"student_id": "a", "amount": 3, "date": "2025-05-02", "payment_method": "cash"})
    assert ledger.get_all() == []
    assert container.student_directory.get("a").balance == Decimal("0.00")


def test_holiday_apply_fails_only_students_without_audit_room(container, enroll):
    enroll("a")
    container.attendance_service.mark("2025-05-01", "a", "absent")
    repo = FlakyAuditRepo()
    log = AuditLog(repo, clock=TickingClock(), queue_size=8)
    engine = HolidayReconciliationEngine(
        container.attendance_store,
        container.student_directory,
        container.payments_repo,
        container.holiday_service,
        container.calculator,
        log,
        container.dates,
    )
    park(log, repo, 6)

    result = engine.process_change("2025-05-01", "Founders Day", True)

    assert [f["student_id"] for f in result.failed_students] == ["a"]
    assert result.failed_students[0]["error"]["kind"] == "Transient"
    assert container.student_directory.get("a").balance == Decimal("5.00")
    assert container.attendance_store.get_record(date(2025, 5, 1), "a").status == AttendanceStatus.ABSENT
    assert log.pending_count == 7

    repo.down = False
    retry = engine.process_change("2025-05-01", "Founders Day", True)
    assert retry.success
    assert retry.completed_students == ["a"]
    assert container.student_directory.get("a").balance == Decimal("0.00")
    assert log.pending_count == 0
