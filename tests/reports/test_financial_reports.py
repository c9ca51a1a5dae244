from decimal import Decimal

import pytest

from dance_school.core.exceptions import InvalidDateError, NotFoundError
from dance_school.reports.model import collection_rate


@pytest.fixture
def may_activity(container, enroll):
    enroll("a", "Ana")
    enroll("b", "Bo")
    marks = container.attendance_service
    marks.mark("2025-05-01", "a", "absent")
    marks.mark("2025-05-02", "b", "present", ["late", "noShoes"])
    marks.mark("2025-05-05", "a", "present", ["late"])
    marks.mark("2025-06-02", "a", "absent")
    ledger = container.payment_ledger
    ledger.create({"student_id": "a", "amount": 3, "date": "2025-05-02", "payment_method": "cash"})
    ledger.create({"student_id": "b", "amount": 1, "date": "2025-05-20", "payment_method": "card"})
    container.store.set("expenses", "e1", {"amount": "4.00", "date": "2025-05-15", "category": "rent"})
    container.store.set("expenses", "e2", {"amount": "9.00", "date": "2025-07-01", "category": "rent"})


def test_collection_rate():
    assert collection_rate(Decimal("4"), Decimal("8")) == Decimal("0.5000")
    assert collection_rate(Decimal("4"), Decimal("13")) == Decimal("0.3077")
    assert collection_rate(Decimal("4"), Decimal("0")) == Decimal("0.0000")


def test_monthly_report(container, may_activity):
    report = container.report_service.monthly_report(5, 2025)

    assert report["month"] == "May 2025"
    assert report["summary"] == {
        "total_fees_charged": "8.00",
        "payments_received": "4.00",
        "fees_collected": "4.00",
        "pending_fees": "4.00",
        "total_expenses": "4.00",
        "net_income": "0.00",
        "collection_rate": "0.5000",
    }
    assert report["fee_breakdown"]["by_status"]["absent"] == "5.00"
    assert report["fee_breakdown"]["by_status"]["present"] == "3.00"
    assert report["fee_breakdown"]["by_attribute"] == {"late": 2, "noShoes": 1, "notInUniform": 0}
    assert report["payment_breakdown"]["by_method"] == {"cash": "3.00", "card": "1.00"}
    assert report["expense_breakdown"] == {"rent": "4.00"}

    ana, bo = report["students"]
    assert (ana["student_id"], ana["fees_charged"], ana["pending_fees"]) == ("a", "6.00", "3.00")
    assert (bo["student_id"], bo["fees_collected"], bo["collection_rate"]) == ("b", "1.00", "0.5000")


def test_monthly_report_rejects_bad_month(container):
    with pytest.raises(InvalidDateError):
        container.report_service.monthly_report(13, 2025)


def test_cumulative_report_clips_months(container, may_activity):
    report = container.report_service.cumulative_report("2025-05-02", "2025-06-10")

    assert [m["month"] for m in report["months"]] == ["May 2025", "June 2025"]
    assert report["months"][0]["range"] == {"start": "2025-05-02", "end": "2025-05-31"}
    assert report["totals"]["total_fees_charged"] == "8.00"
    assert report["totals"]["payments_received"] == "4.00"
    assert report["totals"]["collection_rate"] == "0.5000"
    assert report["fee_breakdown"]["by_status"]["absent"] == "5.00"


def test_fee_year_report(container, may_activity):
    report = container.report_service.fee_year_report("2025-05-10")

    assert report["fee_year"] == "August 2024 - August 2025"
    assert report["range"] == {"start": "2024-08-13", "end": "2025-08-12"}
    assert len(report["months"]) == 13
    assert report["totals"]["total_fees_charged"] == "13.00"
    assert report["totals"]["total_expenses"] == "13.00"
    assert report["totals"]["net_income"] == "-9.00"
    assert report["totals"]["collection_rate"] == "0.3077"


def test_student_ledger_running_balance(container, may_activity):
    ledger = container.report_service.student_ledger("a")

    assert [(e["date"], e["kind"], e["running_balance"]) for e in ledger["entries"]] == [
        ("2025-05-01", "fee", "5.00"),
        ("2025-05-02", "payment", "2.00"),
        ("2025-05-05", "fee", "3.00"),
        ("2025-06-02", "fee", "8.00"),
    ]
    assert ledger["closing_balance"] == "8.00"
    assert ledger["balance_check"] == {"expected": "8.00", "actual": "8.00", "consistent": True}


def test_student_ledger_over_range(container, may_activity):
    ledger = container.report_service.student_ledger("a", "2025-05-02", "2025-05-31")
    assert ledger["opening_balance"] == "5.00"
    assert [e["kind"] for e in ledger["entries"]] == ["payment", "fee"]
    assert ledger["closing_balance"] == "3.00"


def test_ledger_flags_balance_drift(container, may_activity):
    container.student_directory.increase_balance("b", 1)
    check = container.report_service.student_ledger("b")["balance_check"]
    assert check == {"expected": "1.00", "actual": "2.00", "consistent": False}


def test_ledger_unknown_student(container):
    with pytest.raises(NotFoundError):
        container.report_service.student_ledger("ghost")


def test_holiday_credits_report(container, may_activity):
    container.reconciliation_engine.process_change("2025-05-02", "Labour Day", True)
    report = container.report_service.holiday_credits_report()

    assert report["student_count"] == 2
    assert report["total"] == "5.00"
    by_student = {s["student_id"]: s for s in report["students"]}
    assert by_student["a"]["total"] == "3.00"
    assert by_student["b"]["credits"][0]["source_kind"] == "attendance"

    ledger = container.report_service.student_ledger("a")
    assert ledger["balance_check"]["consistent"]
    assert ledger["entries"][-1]["kind"] == "fee"
