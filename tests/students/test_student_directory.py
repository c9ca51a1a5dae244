from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal

import pytest

from dance_school.core.enums import CreditSource, EnrollmentStatus
from dance_school.core.exceptions import ConcurrencyConflictError, NotFoundError, ValidationError
from dance_school.database.document_store import InMemoryDocumentStore
from dance_school.students.model import HolidayCredit
from dance_school.students.repository import DocumentStudentRepository
from dance_school.students.service import StudentDirectory

NOW = datetime(2025, 5, 10, 9, 0)


class RacingStudentRepo(DocumentStudentRepository):
    """Bumps the stored version behind the directory's back a few times."""

    def __init__(self, store, races: int):
        super().__init__(store)
        self.races = races
        self.saves = 0

    def save(self, student, *, expected_version):
        self.saves += 1
        if self.races > 0:
            self.races -= 1
            raise ConcurrencyConflictError("lost update")
        return super().save(student, expected_version=expected_version)


class InterleavingStudentRepo(DocumentStudentRepository):
    """Lets another writer commit between this writer's read and its save."""

    def __init__(self, store, interleave):
        super().__init__(store)
        self.interleave = interleave

    def save(self, student, *, expected_version):
        if self.interleave is not None:
            step, self.interleave = self.interleave, None
            step()
        return super().save(student, expected_version=expected_version)


def make_directory(repo=None):
    return StudentDirectory(repo or DocumentStudentRepository(InMemoryDocumentStore()), clock=lambda: NOW)


def credit(amount, source_kind=CreditSource.ATTENDANCE, source_id="2025-05-02:a", day=date(2025, 5, 2)):
    return HolidayCredit(
        amount=Decimal(amount),
        date=day,
        holiday_name="Labour Day",
        source_kind=source_kind,
        source_id=source_id,
        created_at=NOW,
    )


def test_create_and_fetch_student():
    d = make_directory()
    s = d.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a")
    assert s.enrollment_status == EnrollmentStatus.PENDING
    assert d.get("a").full_name == "Ana Lopez"
    assert d.get("a").balance == Decimal("0.00")


def test_create_rejects_unknown_profile_field_and_duplicates():
    d = make_directory()
    with pytest.raises(ValidationError):
        d.create({"first_name": "Ana", "last_name": "Lopez", "shoe_size": 38})
    d.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a")
    with pytest.raises(ValidationError):
        d.create({"first_name": "Other", "last_name": "Lopez"}, student_id="a")


def test_get_unknown_student_raises_not_found():
    with pytest.raises(NotFoundError):
        make_directory().get("nope")


def test_balance_may_go_below_zero():
    d = make_directory()
    d.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a")
    d.increase_balance("a", "5")
    change = d.reduce_balance("a", 8)
    assert (change.old_balance, change.new_balance) == (Decimal("5.00"), Decimal("-3.00"))
    assert d.get("a").version == 2


@pytest.mark.parametrize("amount", [0, -1, "abc", "NaN"])
def test_reduce_balance_requires_positive_amount(amount):
    d = make_directory()
    d.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a")
    with pytest.raises(ValidationError):
        d.reduce_balance("a", amount)


def test_version_conflict_is_retried_with_fresh_read():
    repo = RacingStudentRepo(InMemoryDocumentStore(), races=2)
    d = make_directory(repo)
    d.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a")
    d.increase_balance("a", 5)
    assert d.get("a").balance == Decimal("5.00")
    assert repo.saves == 3


def test_version_conflict_gives_up_after_bounded_retries():
    repo = RacingStudentRepo(InMemoryDocumentStore(), races=10)
    d = make_directory(repo)
    d.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a")
    with pytest.raises(ConcurrencyConflictError):
        d.increase_balance("a", 5)
    assert d.get("a").balance == Decimal("0.00")


def test_writers_with_separate_locks_do_not_lose_updates():
    store = InMemoryDocumentStore()
    other = StudentDirectory(DocumentStudentRepository(store), clock=lambda: NOW)
    other.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a")
    first = StudentDirectory(
        InterleavingStudentRepo(store, lambda: other.increase_balance("a", 5)), clock=lambda: NOW
    )

    change = first.increase_balance("a", 3)

    assert change.old_balance == Decimal("5.00")
    assert change.new_balance == Decimal("8.00")
    assert other.get("a").balance == Decimal("8.00")
    assert other.get("a").version == 2


def test_save_with_stale_version_is_rejected_without_writing():
    store = InMemoryDocumentStore()
    repo = DocumentStudentRepository(store)
    d = make_directory(repo)
    d.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a")
    d.increase_balance("a", 5)

    stale = d.get("a")
    with pytest.raises(ConcurrencyConflictError):
        repo.save(stale, expected_version=0)
    with pytest.raises(NotFoundError):
        repo.save(replace(stale, student_id="ghost"), expected_version=1)
    assert d.get("a").balance == Decimal("5.00")

def test_enrollment_status_and_eligible_ordering():
    d = make_directory()
    d.create({"first_name": "Zoe", "last_name": "Adams"}, student_id="z", enrollment_status=EnrollmentStatus.ENROLLED)
    d.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a", enrollment_status=EnrollmentStatus.ENROLLED)
    d.create({"first_name": "Bo", "last_name": "Chen"}, student_id="b")
    assert [s.student_id for s in d.eligible_students()] == ["a", "z"]

    d.change_enrollment_status("b", "Enrolled")
    d.change_enrollment_status("z", EnrollmentStatus.FROZEN)
    assert [s.student_id for s in d.eligible_students()] == ["a", "b"]
    with pytest.raises(ValidationError):
        d.change_enrollment_status("a", "Graduated")


def test_update_profile():
    d = make_directory()
    d.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a")
    updated = d.update_profile("a", {"phone": "555-0101", "last_name": "Lopez-Diaz"})
    assert updated.phone == "555-0101"
    assert d.get("a").full_name == "Ana Lopez-Diaz"
    with pytest.raises(ValidationError):
        d.update_profile("a", {"first_name": ""})


def test_holiday_credits_ledger():
    d = make_directory()
    d.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a")
    d.add_holiday_credit("a", credit("5"))
    d.adjust_balance("a", "-1", credit=credit("1", CreditSource.PAYMENT, "p1"))

    assert [c.source_id for c in d.get_holiday_credits("a")] == ["2025-05-02:a", "p1"]
    assert d.has_credit_for("a", CreditSource.PAYMENT, "p1")
    assert not d.has_credit_for("a", CreditSource.PAYMENT, "p2")
    assert d.get("a").balance == Decimal("-1.00")

    with pytest.raises(ValidationError):
        d.add_holiday_credit("a", credit("0"))


def test_revert_holiday_credits_restores_balance():
    d = make_directory()
    d.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a")
    d.adjust_balance("a", "-5", credit=credit("5"))
    d.adjust_balance("a", "-1", credit=credit("1", CreditSource.PAYMENT, "p1"))
    d.adjust_balance("a", "-2", credit=credit("2", source_id="2025-05-09:a", day=date(2025, 5, 9)))

    removed, change = d.revert_holiday_credits("a", date(2025, 5, 2))
    assert {c.source_id for c in removed} == {"2025-05-02:a", "p1"}
    assert change.new_balance == Decimal("-2.00")
    assert [c.source_id for c in d.get_holiday_credits("a")] == ["2025-05-09:a"]

    d.restore_holiday_credits("a", removed)
    assert d.get("a").balance == Decimal("-8.00")
    assert len(d.get_holiday_credits("a")) == 3


def test_revert_without_restoring_attendance_credits():
    d = make_directory()
    d.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a")
    d.adjust_balance("a", "-5", credit=credit("5"))
    d.adjust_balance("a", "-1", credit=credit("1", CreditSource.PAYMENT, "p1"))

    removed, change = d.revert_holiday_credits("a", date(2025, 5, 2), restore_attendance=False)
    assert len(removed) == 2
    assert change.new_balance == Decimal("-5.00")
    assert d.get_holiday_credits("a") == ()


def test_all_holiday_credits_summary():
    d = make_directory()
    d.create({"first_name": "Ana", "last_name": "Lopez"}, student_id="a")
    d.create({"first_name": "Bo", "last_name": "Chen"}, student_id="b")
    d.add_holiday_credit("a", credit("5"))
    d.add_holiday_credit("a", credit("1", CreditSource.PAYMENT, "p1"))
    summary = d.all_holiday_credits()
    assert len(summary) == 1
    assert summary[0]["student_id"] == "a"
    assert summary[0]["total"] == "6.00"
