"""
Fee obligations, payments received and the resulting balances.

A fee reaches a student through exactly one scope:

* ``school``  - every student of the school
* ``section`` - students who are members of the fee's section
* ``class``   - students of the fee's class
* ``student`` - one named student (add-ons, scholarships adjustments, ...)

Money received comes through two channels which are summed together: successful
gateway ``Payment`` rows and manual ``income`` transactions whose category names
a fee. A manual transaction that records a gateway payment carries a
``payment_id`` and is left out, so the same money is never counted twice.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar, Dict, FrozenSet, Iterable, List, Optional, Tuple

from sqlalchemy import and_, or_, func, desc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from schoolmgmt.config import settings
from schoolmgmt.models.finance import Fee, Payment, Transaction
from schoolmgmt.models.users import Student, SectionStudent

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def as_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class StudentContext:
    """The parts of a student that decide which fees apply."""
    id: int
    school_id: int
    class_id: Optional[int]
    section_ids: FrozenSet[int] = frozenset()

    @classmethod
    def from_student(cls, student: Student) -> "StudentContext":
        return cls(
            id=student.id,
            school_id=student.school_id,
            class_id=student.class_id,
            section_ids=frozenset(student.section_ids),
        )


class FeeScope(ABC):
    name: ClassVar[str] = ""

    @abstractmethod
    def applies_to(self, student: StudentContext) -> bool:
        ...


@dataclass(frozen=True)
class SchoolScope(FeeScope):
    name: ClassVar[str] = "school"

    def applies_to(self, student: StudentContext) -> bool:
        return True


@dataclass(frozen=True)
class SectionScope(FeeScope):
    section_id: int
    name: ClassVar[str] = "section"

    def applies_to(self, student: StudentContext) -> bool:
        return self.section_id in student.section_ids


@dataclass(frozen=True)
class ClassScope(FeeScope):
    class_id: int
    name: ClassVar[str] = "class"

    def applies_to(self, student: StudentContext) -> bool:
        return student.class_id is not None and self.class_id == student.class_id


@dataclass(frozen=True)
class StudentScope(FeeScope):
    student_id: int
    name: ClassVar[str] = "student"

    def applies_to(self, student: StudentContext) -> bool:
        return self.student_id == student.id


def resolve_scope(fee: Fee) -> Optional[FeeScope]:
    """
    Turn a fee row into its scope variant.

    Returns None for malformed rows (a class fee without a class, a student fee
    without a student, an unknown scope name); such fees apply to nobody.
    """
    if fee.fee_scope == SchoolScope.name:
        return SchoolScope()
    if fee.fee_scope == SectionScope.name and fee.section_id is not None:
        return SectionScope(fee.section_id)
    if fee.fee_scope == ClassScope.name and fee.class_id is not None:
        return ClassScope(fee.class_id)
    if fee.fee_scope == StudentScope.name and fee.student_id is not None:
        return StudentScope(fee.student_id)
    return None


def fee_applies(fee: Fee, student: StudentContext) -> bool:
    if not fee.is_active or fee.school_id != student.school_id:
        return False
    scope = resolve_scope(fee)
    return scope is not None and scope.applies_to(student)


def applicable_fee_clause(student: StudentContext):
    """SQL filter matching the fees that can apply to ``student``."""
    predicates = [Fee.fee_scope == SchoolScope.name]
    if student.section_ids:
        predicates.append(and_(Fee.fee_scope == SectionScope.name, Fee.section_id.in_(student.section_ids)))
    if student.class_id is not None:
        predicates.append(and_(Fee.fee_scope == ClassScope.name, Fee.class_id == student.class_id))
    predicates.append(and_(Fee.fee_scope == StudentScope.name, Fee.student_id == student.id))

    return and_(
        Fee.school_id == student.school_id,
        Fee.is_active == True,
        or_(*predicates),
    )


def _period_filters(query, model, session_id: Optional[int], term_id: Optional[int]):
    if session_id:
        query = query.where(model.session_id == session_id)
    if term_id:
        query = query.where(model.term_id == term_id)
    return query


def fee_income_clause():
    """Manual income entries that pay fees and are not mirrors of a gateway payment."""
    clauses = [
        Transaction.transaction_type == "income",
        Transaction.payment_id.is_(None),
    ]
    keyword = (settings.FEE_CATEGORY_KEYWORD or "").strip().lower()
    if keyword:
        clauses.append(func.lower(Transaction.category).like(f"%{keyword}%"))
    return and_(*clauses)


@dataclass
class LedgerTotals:
    gateway_paid: Decimal = ZERO
    manual_paid: Decimal = ZERO
    gateway_count: int = 0
    manual_count: int = 0

    @property
    def total_paid(self) -> Decimal:
        return self.gateway_paid + self.manual_paid

    @property
    def payment_count(self) -> int:
        return self.gateway_count + self.manual_count


@dataclass
class BalanceSummary:
    student_id: int
    total_fees: Decimal = ZERO
    ledger: LedgerTotals = field(default_factory=LedgerTotals)
    last_payment: Optional[dict] = None

    @property
    def total_paid(self) -> Decimal:
        return self.ledger.total_paid

    @property
    def payment_count(self) -> int:
        return self.ledger.payment_count

    @property
    def balance(self) -> Decimal:
        """Signed: negative means the student is in credit."""
        return self.total_fees - self.total_paid

    @property
    def outstanding(self) -> Decimal:
        return max(self.balance, ZERO)

    @property
    def is_debtor(self) -> bool:
        return self.balance > 0

    def as_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "total_fees": self.total_fees,
            "total_paid": self.total_paid,
            "balance": self.balance,
            "outstanding": self.outstanding,
            "payment_count": self.payment_count,
            "last_payment": self.last_payment,
        }


async def total_fees_for_student(
    db: AsyncSession,
    student: StudentContext,
    session_id: Optional[int] = None,
    term_id: Optional[int] = None,
) -> Decimal:
    query = select(Fee).where(applicable_fee_clause(student))
    query = _period_filters(query, Fee, session_id, term_id)

    result = await db.execute(query)
    # Each fee row is visited once, so overlapping scopes can never double count
    return sum(
        (as_decimal(fee.amount) for fee in result.scalars().all() if fee_applies(fee, student)),
        ZERO,
    )


async def ledger_totals(
    db: AsyncSession,
    school_id: int,
    student_ids: Optional[Iterable[int]] = None,
    session_id: Optional[int] = None,
    term_id: Optional[int] = None,
) -> Dict[int, LedgerTotals]:
    """Sum both payment channels per student with one grouped query each."""
    totals: Dict[int, LedgerTotals] = {}
    student_ids = list(student_ids) if student_ids is not None else None

    gateway_query = (
        select(Payment.student_id, func.coalesce(func.sum(Payment.amount), 0), func.count(Payment.id))
        .join(Student, Payment.student_id == Student.id)
        .where(and_(Student.school_id == school_id, Payment.status == "success"))
    )
    if session_id or term_id:
        gateway_query = _period_filters(gateway_query.join(Fee, Payment.fee_id == Fee.id), Fee, session_id, term_id)
    if student_ids is not None:
        gateway_query = gateway_query.where(Payment.student_id.in_(student_ids))
    gateway_query = gateway_query.group_by(Payment.student_id)

    for student_id, amount, count in (await db.execute(gateway_query)).all():
        entry = totals.setdefault(student_id, LedgerTotals())
        entry.gateway_paid = as_decimal(amount)
        entry.gateway_count = count

    manual_query = (
        select(Transaction.student_id, func.coalesce(func.sum(Transaction.amount), 0), func.count(Transaction.id))
        .where(and_(
            Transaction.school_id == school_id,
            Transaction.student_id.isnot(None),
            fee_income_clause(),
        ))
    )
    manual_query = _period_filters(manual_query, Transaction, session_id, term_id)
    if student_ids is not None:
        manual_query = manual_query.where(Transaction.student_id.in_(student_ids))
    manual_query = manual_query.group_by(Transaction.student_id)

    for student_id, amount, count in (await db.execute(manual_query)).all():
        entry = totals.setdefault(student_id, LedgerTotals())
        entry.manual_paid = as_decimal(amount)
        entry.manual_count = count

    return totals


async def last_payment_for_student(
    db: AsyncSession,
    student_id: int,
    session_id: Optional[int] = None,
    term_id: Optional[int] = None,
) -> Optional[dict]:
    """
    The most recent money received for a student, from either channel.

    A period limits gateway payments by the fee they paid and manual entries
    by their own session and term, as the totals do.
    """
    payment_query = select(Payment).where(and_(Payment.student_id == student_id, Payment.status == "success"))
    if session_id or term_id:
        payment_query = _period_filters(payment_query.join(Fee, Payment.fee_id == Fee.id), Fee, session_id, term_id)
    payment_result = await db.execute(
        payment_query.order_by(desc(Payment.paid_at), desc(Payment.id)).limit(1)
    )
    payment = payment_result.scalars().first()

    transaction_query = select(Transaction).where(and_(Transaction.student_id == student_id, fee_income_clause()))
    transaction_query = _period_filters(transaction_query, Transaction, session_id, term_id)
    transaction_result = await db.execute(
        transaction_query.order_by(desc(Transaction.transaction_date), desc(Transaction.id)).limit(1)
    )
    transaction = transaction_result.scalars().first()

    candidates: List[Tuple[date, dict]] = []
    if payment:
        paid_on = payment.paid_at or payment.created_at
        candidates.append((
            paid_on.date() if isinstance(paid_on, datetime) else paid_on,
            {
                "source": "gateway",
                "id": payment.id,
                "amount": payment.amount,
                "date": paid_on,
                "reference": payment.reference,
                "payment_method": payment.payment_method,
            },
        ))
    if transaction:
        candidates.append((
            transaction.transaction_date,
            {
                "source": "manual",
                "id": transaction.id,
                "amount": transaction.amount,
                "date": transaction.transaction_date,
                "reference": transaction.reference_number,
                "payment_method": transaction.payment_method,
            },
        ))

    if not candidates:
        return None
    # max() keeps the first of equal dates, so a gateway payment wins a tie
    return max(candidates, key=lambda candidate: candidate[0])[1]


async def student_balance(
    db: AsyncSession,
    student: Student,
    session_id: Optional[int] = None,
    term_id: Optional[int] = None,
) -> BalanceSummary:
    """Fees owed, money received and the balance for one student."""
    context = StudentContext.from_student(student)

    total_fees = await total_fees_for_student(db, context, session_id, term_id)
    totals = await ledger_totals(db, student.school_id, [student.id], session_id, term_id)

    return BalanceSummary(
        student_id=student.id,
        total_fees=total_fees,
        ledger=totals.get(student.id, LedgerTotals()),
        last_payment=await last_payment_for_student(db, student.id, session_id, term_id),
    )


async def school_balances(
    db: AsyncSession,
    school_id: int,
    section_id: Optional[int] = None,
    session_id: Optional[int] = None,
    term_id: Optional[int] = None,
) -> List[Tuple[Student, BalanceSummary]]:
    """
    Balances for every active student of a school (optionally one section).

    Runs a fixed number of queries whatever the number of students: the
    students, the active fees and one grouped sum per payment channel.
    """
    student_query = (
        select(Student)
        .where(and_(Student.school_id == school_id, Student.is_active == True))
        .options(selectinload(Student.sections), selectinload(Student.class_))
        .order_by(Student.student_name, Student.id)
    )
    if section_id:
        student_query = student_query.where(
            Student.id.in_(select(SectionStudent.student_id).where(SectionStudent.section_id == section_id))
        )
    students = (await db.execute(student_query)).scalars().all()
    if not students:
        return []

    fee_query = select(Fee).where(and_(Fee.school_id == school_id, Fee.is_active == True))
    fee_query = _period_filters(fee_query, Fee, session_id, term_id)
    fees = (await db.execute(fee_query)).scalars().all()

    scoped_fees = []
    for fee in fees:
        scope = resolve_scope(fee)
        if scope is None:
            logger.warning(f"Skipping malformed fee {fee.id} (scope={fee.fee_scope})")
            continue
        scoped_fees.append((scope, as_decimal(fee.amount)))

    totals = await ledger_totals(db, school_id, [student.id for student in students], session_id, term_id)

    balances = []
    for student in students:
        context = StudentContext.from_student(student)
        total_fees = sum((amount for scope, amount in scoped_fees if scope.applies_to(context)), ZERO)
        balances.append((
            student,
            BalanceSummary(
                student_id=student.id,
                total_fees=total_fees,
                ledger=totals.get(student.id, LedgerTotals()),
            ),
        ))

    return balances


async def find_debtors(
    db: AsyncSession,
    school_id: int,
    section_id: Optional[int] = None,
    session_id: Optional[int] = None,
    term_id: Optional[int] = None,
) -> List[Tuple[Student, BalanceSummary]]:
    balances = await school_balances(db, school_id, section_id, session_id, term_id)
    return [(student, summary) for student, summary in balances if summary.is_debtor]


async def fee_collection_summary(db: AsyncSession, school_id: int) -> Dict[str, Decimal]:
    """
    School-wide collection status.

    ``expected`` is what active students owe, ``collected`` is what they have
    paid and ``outstanding`` adds up the positive balances only, so one
    student's credit never hides another student's debt.
    """
    balances = await school_balances(db, school_id)

    expected = sum((summary.total_fees for _, summary in balances), ZERO)
    collected = sum((summary.total_paid for _, summary in balances), ZERO)
    outstanding = sum((summary.outstanding for _, summary in balances), ZERO)

    return {
        "collected": collected,
        "outstanding": outstanding,
        "expected": expected,
    }
