"""
Per-school sequential identifiers.

Staff get ``{SHORT_CODE}-{ROLE_PREFIX}-{NNN}`` registration IDs and students get
``{SHORT_CODE}-STU-{NNN}`` admission numbers. Every prefix keeps its own
counter, continuing after the highest number already issued.
"""
import re
from typing import Iterable, Optional

from sqlalchemy import and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from schoolmgmt.models.schools import School
from schoolmgmt.models.users import User, Student

ROLE_PREFIXES = {
    "proprietor": "PROP",
    "principal": "PRIN",
    "bursar": "BURS",
    "teacher": "TCHR",
    "parent": "PRNT",
}
DEFAULT_ROLE_PREFIX = "USER"
STUDENT_PREFIX = "STU"

_NUMERIC_SUFFIX = re.compile(r"[0-9]+")


def role_prefix(role_name: Optional[str]) -> str:
    return ROLE_PREFIXES.get((role_name or "").lower(), DEFAULT_ROLE_PREFIX)


def identifier_prefix(short_code: str, prefix: str) -> str:
    return f"{short_code.upper()}-{prefix}-"


def format_identifier(short_code: str, prefix: str, number: int) -> str:
    return f"{identifier_prefix(short_code, prefix)}{number:03d}"


def next_sequence_number(existing_ids: Iterable[Optional[str]], search_prefix: str) -> int:
    """
    One past the highest numeric suffix among ``existing_ids`` that start with
    ``search_prefix``. Gaps are kept; legacy IDs with a non-numeric suffix are
    ignored, so a prefix holding only malformed IDs starts again at 1.
    """
    highest = 0
    search_prefix = search_prefix.upper()
    for value in existing_ids:
        if not value or not value.upper().startswith(search_prefix):
            continue
        suffix = value[len(search_prefix):]
        if _NUMERIC_SUFFIX.fullmatch(suffix):
            highest = max(highest, int(suffix))
    return highest + 1


async def lock_school(db: AsyncSession, school_id: int) -> Optional[School]:
    """
    Take a row lock on the school for the rest of the transaction.

    ID generation reads the highest number and then inserts; holding the lock
    serialises concurrent creations for the same school. Backends without
    SELECT ... FOR UPDATE (SQLite) serialise writers anyway.
    """
    result = await db.execute(select(School).where(School.id == school_id).with_for_update())
    return result.scalars().first()


async def generate_registration_id(db: AsyncSession, school: School, role_name: str) -> str:
    prefix = role_prefix(role_name)
    search_prefix = identifier_prefix(school.short_code, prefix)

    result = await db.execute(
        select(User.registration_id).where(
            and_(
                User.school_id == school.id,
                User.registration_id.like(f"{search_prefix}%"),
            )
        )
    )
    number = next_sequence_number(result.scalars().all(), search_prefix)

    return format_identifier(school.short_code, prefix, number)


async def generate_admission_number(db: AsyncSession, school: School) -> str:
    search_prefix = identifier_prefix(school.short_code, STUDENT_PREFIX)

    result = await db.execute(
        select(Student.admission_number).where(
            and_(
                Student.school_id == school.id,
                Student.admission_number.like(f"{search_prefix}%"),
            )
        )
    )
    number = next_sequence_number(result.scalars().all(), search_prefix)

    return format_identifier(school.short_code, STUDENT_PREFIX, number)


def rename_identifier(value: Optional[str], old_code: str, new_code: str) -> Optional[str]:
    """Swap the school short code at the front of an identifier, leaving anything else alone."""
    if not value:
        return value
    old_prefix = f"{old_code.upper()}-"
    if not value.upper().startswith(old_prefix):
        return value
    return f"{new_code.upper()}-{value[len(old_prefix):]}"
