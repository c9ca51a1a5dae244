from decimal import Decimal

import pytest

from dance_school.core.enums import AttendanceAttribute as A
from dance_school.core.enums import AttendanceStatus as S
from dance_school.core.exceptions import InconsistentError, ValidationError
from dance_school.fees.calculator.base import FeeSchedule
from dance_school.fees.calculator.standard_calculator import StandardFeeCalculator


@pytest.mark.parametrize(
    "status, attributes, expected",
    [
        (S.ABSENT, [], "5"),
        (S.MEDICAL_ABSENCE, [], "0"),
        (S.HOLIDAY, [], "0"),
        (S.PRESENT, [], "0"),
        (S.PRESENT, [A.LATE], "1"),
        (S.PRESENT, [A.NO_SHOES], "1"),
        (S.PRESENT, [A.NOT_IN_UNIFORM], "1"),
        (S.PRESENT, [A.LATE, A.NO_SHOES], "2"),
        (S.PRESENT, [A.LATE, A.NO_SHOES, A.NOT_IN_UNIFORM], "2"),
    ],
)
def test_default_fee_table(status, attributes, expected):
    assert StandardFeeCalculator().fee(status, attributes) == Decimal(expected)


def test_fee_is_deterministic_and_ignores_attribute_order():
    calc = StandardFeeCalculator()
    first = calc.fee(S.PRESENT, [A.NOT_IN_UNIFORM, A.LATE])
    assert all(calc.fee(S.PRESENT, [A.LATE, A.NOT_IN_UNIFORM]) == first for _ in range(5))
    # Duplicates count once.
    assert calc.fee(S.PRESENT, [A.LATE, A.LATE]) == Decimal("1.00")


def test_fee_accepts_raw_values():
    assert StandardFeeCalculator().fee("present", ["late"]) == Decimal("1.00")


def test_fee_difference_from_unmarked_and_between_marks():
    calc = StandardFeeCalculator()
    assert calc.fee_difference(None, (S.ABSENT, ())) == Decimal("5.00")
    assert calc.fee_difference((S.ABSENT, ()), (S.PRESENT, (A.LATE,))) == Decimal("-4.00")


def test_schedule_loaded_from_settings():
    schedule = FeeSchedule.from_settings({"absent": "7.5", "presentMultipleAttributes": 3})
    calc = StandardFeeCalculator(schedule)
    assert calc.fee(S.ABSENT) == Decimal("7.50")
    assert calc.fee(S.PRESENT, [A.LATE, A.NO_SHOES]) == Decimal("3.00")
    assert calc.fee(S.PRESENT, [A.LATE]) == Decimal("1.00")


def test_negative_schedule_amount_is_inconsistent():
    with pytest.raises(InconsistentError):
        FeeSchedule.from_settings({"absent": "-1"})


def test_unknown_schedule_key_rejected():
    with pytest.raises(ValidationError):
        FeeSchedule.from_settings({"tardy": "1"})
