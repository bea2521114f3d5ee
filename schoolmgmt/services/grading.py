from decimal import Decimal
from typing import Union

# Lower bound of each grade, inclusive, highest first
GRADE_BOUNDARIES = (
    (Decimal("70"), "A"),
    (Decimal("60"), "B"),
    (Decimal("50"), "C"),
    (Decimal("45"), "D"),
    (Decimal("40"), "E"),
)
FAIL_GRADE = "F"


def calculate_grade(score: Union[int, float, Decimal, str]) -> str:
    """Map a score to its letter grade."""
    value = score if isinstance(score, Decimal) else Decimal(str(score))
    for lower_bound, grade in GRADE_BOUNDARIES:
        if value >= lower_bound:
            return grade
    return FAIL_GRADE
