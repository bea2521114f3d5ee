from decimal import Decimal

import pytest

from schoolmgmt.services.grading import calculate_grade


@pytest.mark.parametrize("score, grade", [
    (100, "A"),
    (70, "A"),
    (69.99, "B"),
    (60, "B"),
    (59.5, "C"),
    (50, "C"),
    (49, "D"),
    (45, "D"),
    (44.99, "E"),
    (40, "E"),
    (39.99, "F"),
    (0, "F"),
])
def test_grade_boundaries(score, grade):
    assert calculate_grade(score) == grade


def test_grade_accepts_decimals_and_strings():
    assert calculate_grade(Decimal("70.00")) == "A"
    assert calculate_grade("45") == "D"


def test_float_just_below_boundary_is_not_rounded_up():
    assert calculate_grade(69.99) == "B"
