import calendar
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import and_, func, case

from schoolmgmt.database import get_db
from schoolmgmt.schemas.academics import ReportCard
from schoolmgmt.schemas.finance import DebtorEntry, FeeCollection, FinancialSummary, PaymentMethodTotal
from schoolmgmt.models.academics import Exam, ExamResult
from schoolmgmt.models.finance import Transaction, Payment
from schoolmgmt.models.schools import School, Section, Class
from schoolmgmt.models.users import User, Student
from schoolmgmt.middleware.authentication import (
    get_current_user, validate_admin_access, get_school_access, get_school_object, FINANCE_ROLES,
)
from schoolmgmt.api.students import load_student, ensure_can_view_student
from schoolmgmt.services.fees import as_decimal, find_debtors, fee_collection_summary, ZERO
from schoolmgmt.services.grading import calculate_grade

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/schools/{school_id}/reports/debtors", response_model=List[DebtorEntry])
async def get_debtors(
    section_id: Optional[int] = Query(None),
    session_id: Optional[int] = Query(None),
    term_id: Optional[int] = Query(None),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Active students who still owe money, largest balance first.

    Fees are matched by scope; both gateway payments and manual fee income
    count as paid. Filtering by section keeps only that section's students.
    """
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    section = None
    if section_id:
        section = await get_school_object(db, Section, section_id, school.id, "Section")

    debtors = await find_debtors(db, school.id, section_id, session_id, term_id)

    entries = []
    for student, summary in debtors:
        if section is not None:
            section_name = section.section_name
        else:
            section_name = ", ".join(s.section_name for s in student.sections) or None
        entries.append({
            "student_id": student.id,
            "student_name": student.student_name,
            "admission_number": student.admission_number,
            "section_name": section_name,
            "class_name": student.class_.class_name if student.class_ else None,
            "parent_name": student.parent_name,
            "parent_phone": student.parent_phone,
            "total_fees": summary.total_fees,
            "total_paid": summary.total_paid,
            "balance": summary.balance,
        })

    entries.sort(key=lambda entry: entry["balance"], reverse=True)
    logger.info(f"School {school.id}: {len(entries)} debtor(s)")
    return entries

@router.get("/schools/{school_id}/reports/fee-collection", response_model=FeeCollection)
async def get_fee_collection(
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Expected, collected and outstanding fees across all active students.
    """
    await validate_admin_access(current_user, db, FINANCE_ROLES)
    return await fee_collection_summary(db, school.id)

@router.get("/schools/{school_id}/reports/financial-summary", response_model=FinancialSummary)
async def get_financial_summary(
    year: Optional[int] = Query(None, ge=1900, le=9999),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Income and expenses for each month of a year.

    Income is successful gateway payments (by payment date) plus manual
    income entries not linked to a gateway payment, so nothing is counted
    twice. All twelve months are returned.
    """
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    year = year or date.today().year
    income = {month: ZERO for month in range(1, 13)}
    expenses = {month: ZERO for month in range(1, 13)}

    paid_on = func.coalesce(Payment.paid_at, Payment.created_at)
    payment_result = await db.execute(
        select(Payment.amount, paid_on)
        .join(Student, Payment.student_id == Student.id)
        .where(
            and_(
                Student.school_id == school.id,
                Payment.status == "success",
                paid_on >= datetime(year, 1, 1, tzinfo=timezone.utc),
                paid_on < datetime(year + 1, 1, 1, tzinfo=timezone.utc),
            )
        )
    )
    for amount, paid_at in payment_result.all():
        if paid_at is None or paid_at.year != year:
            continue
        income[paid_at.month] += as_decimal(amount)

    month = func.extract("month", Transaction.transaction_date)
    ledger_result = await db.execute(
        select(
            month,
            func.coalesce(func.sum(case(
                (and_(Transaction.transaction_type == "income", Transaction.payment_id.is_(None)), Transaction.amount),
                else_=0,
            )), 0),
            func.coalesce(func.sum(case((Transaction.transaction_type == "expense", Transaction.amount), else_=0)), 0),
        )
        .where(
            and_(
                Transaction.school_id == school.id,
                Transaction.transaction_date >= date(year, 1, 1),
                Transaction.transaction_date <= date(year, 12, 31),
            )
        )
        .group_by(month)
    )
    for month_number, month_income, month_expenses in ledger_result.all():
        income[int(month_number)] += as_decimal(month_income)
        expenses[int(month_number)] += as_decimal(month_expenses)

    months = [
        {
            "month": month_number,
            "month_name": calendar.month_name[month_number],
            "income": income[month_number],
            "expenses": expenses[month_number],
        }
        for month_number in range(1, 13)
    ]

    return {
        "year": year,
        "months": months,
        "total_income": sum(income.values(), ZERO),
        "total_expenses": sum(expenses.values(), ZERO),
    }

@router.get("/schools/{school_id}/reports/payment-methods", response_model=List[PaymentMethodTotal])
async def get_payment_methods(
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Successful gateway payments grouped by channel.
    """
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    result = await db.execute(
        select(Payment.payment_method, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
        .join(Student, Payment.student_id == Student.id)
        .where(and_(Student.school_id == school.id, Payment.status == "success"))
        .group_by(Payment.payment_method)
        .order_by(func.sum(Payment.amount).desc())
    )

    return [
        {"payment_method": method, "count": count, "total": as_decimal(total)}
        for method, count, total in result.all()
    ]

@router.get("/schools/{school_id}/reports/academic-report-card/{student_id}", response_model=ReportCard)
async def get_report_card(
    student_id: int = Path(..., gt=0),
    term_id: Optional[int] = Query(None),
    session_id: Optional[int] = Query(None),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    A student's exam results for a term or session with the average score
    and the grade of that average.
    """
    student = await load_student(db, student_id, school.id)
    ensure_can_view_student(current_user, student)

    class_result = await db.execute(select(Class).where(Class.id == student.class_id))
    class_obj = class_result.scalars().first()

    query = (
        select(ExamResult, Exam)
        .join(Exam, ExamResult.exam_id == Exam.id)
        .where(and_(ExamResult.student_id == student.id, Exam.school_id == school.id))
    )
    if term_id:
        query = query.where(Exam.term_id == term_id)
    if session_id:
        query = query.where(Exam.session_id == session_id)
    query = query.order_by(Exam.date, Exam.id)

    entries = []
    for exam_result, exam in (await db.execute(query)).all():
        entries.append({
            "exam_id": exam.id,
            "exam_title": exam.title,
            "subject": exam.subject.name if exam.subject else None,
            "score": exam_result.score,
            "max_score": exam.max_score,
            "grade": exam_result.grade,
            "remark": exam_result.remark,
        })

    average_score = None
    overall_grade = None
    if entries:
        total = sum((Decimal(str(entry["score"])) for entry in entries), Decimal("0"))
        average_score = (total / len(entries)).quantize(Decimal("0.01"))
        overall_grade = calculate_grade(average_score)

    return {
        "student_id": student.id,
        "student_name": student.student_name,
        "admission_number": student.admission_number,
        "class_name": class_obj.class_name if class_obj else None,
        "term_id": term_id,
        "session_id": session_id,
        "results": entries,
        "average_score": average_score,
        "overall_grade": overall_grade,
    }
