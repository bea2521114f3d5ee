import calendar
import logging
from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Path
from fastapi.exceptions import RequestValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import or_, and_, func, desc, delete, case

from schoolmgmt.database import get_db
from schoolmgmt.schemas.finance import (
    FeeCreate, FeeUpdate, FeeInDB, FeesSummary,
    TransactionCreate, TransactionUpdate, TransactionInDB,
    TransactionDashboardStats, MonthlyReport, TransactionReport,
    FeeScopeEnum, TransactionTypeEnum, PaymentMethodEnum,
)
from schoolmgmt.models.finance import Fee, Transaction, Payment
from schoolmgmt.models.academics import AcademicSession, Term
from schoolmgmt.models.schools import School, Section, Class
from schoolmgmt.models.users import User, Student
from schoolmgmt.middleware.authentication import (
    get_current_user, validate_admin_access, get_school_access, get_school_object, FINANCE_ROLES,
)
from schoolmgmt.services.fees import as_decimal, ZERO
from schoolmgmt.services.notifications import payment_received_notification, send_notifications

logger = logging.getLogger(__name__)

router = APIRouter()

def _scope_target_errors(fee_scope: str, class_id: Optional[int], student_id: Optional[int]) -> list:
    errors = []
    if fee_scope == FeeScopeEnum.class_.value and not class_id:
        errors.append({
            "loc": ("body", "class_id"),
            "msg": "class_id is required for class-scoped fees",
            "type": "value_error",
        })
    if fee_scope == FeeScopeEnum.student.value and not student_id:
        errors.append({
            "loc": ("body", "student_id"),
            "msg": "student_id is required for student-scoped fees",
            "type": "value_error",
        })
    return errors

async def _check_fee_references(db: AsyncSession, school_id: int, data: dict):
    if data.get("section_id"):
        await get_school_object(db, Section, data["section_id"], school_id, "Section")
    if data.get("session_id"):
        await get_school_object(db, AcademicSession, data["session_id"], school_id, "Academic session")
    if data.get("term_id"):
        await get_school_object(db, Term, data["term_id"], school_id, "Term")
    if data.get("class_id"):
        await get_school_object(db, Class, data["class_id"], school_id, "Class")
    if data.get("student_id"):
        await get_school_object(db, Student, data["student_id"], school_id, "Student")

# Fee endpoints
@router.post("/schools/{school_id}/fees", response_model=FeeInDB, status_code=status.HTTP_201_CREATED)
async def create_fee(
    fee_data: FeeCreate,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Create a fee for a session and term.

    The scope decides who owes it: every student of the school, the members of
    a section, the students of a class (``class_id`` required) or one student
    (``student_id`` required).
    """
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    fee_fields = fee_data.model_dump()
    await _check_fee_references(db, school.id, fee_fields)

    db_fee = Fee(school_id=school.id, **fee_fields)
    db.add(db_fee)
    await db.commit()
    await db.refresh(db_fee)

    return db_fee

@router.get("/schools/{school_id}/fees", response_model=List[FeeInDB])
async def get_fees(
    section_id: Optional[int] = Query(None),
    session_id: Optional[int] = Query(None),
    term_id: Optional[int] = Query(None),
    class_id: Optional[int] = Query(None),
    student_id: Optional[int] = Query(None),
    fee_scope: Optional[FeeScopeEnum] = Query(None),
    is_active: Optional[bool] = Query(None),
    skip: int = 0,
    limit: int = 100,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    query = select(Fee).where(Fee.school_id == school.id)

    if section_id:
        query = query.where(Fee.section_id == section_id)
    if session_id:
        query = query.where(Fee.session_id == session_id)
    if term_id:
        query = query.where(Fee.term_id == term_id)
    if class_id:
        query = query.where(Fee.class_id == class_id)
    if student_id:
        query = query.where(Fee.student_id == student_id)
    if fee_scope:
        query = query.where(Fee.fee_scope == fee_scope.value)
    if is_active is not None:
        query = query.where(Fee.is_active == is_active)

    result = await db.execute(query.order_by(desc(Fee.id)).offset(skip).limit(limit))
    return result.scalars().all()

@router.get("/schools/{school_id}/fees-summary", response_model=FeesSummary)
async def get_fees_summary(
    section_id: Optional[int] = Query(None),
    session_id: Optional[int] = Query(None),
    term_id: Optional[int] = Query(None),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Active fee totals, overall and per scope.
    """
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    conditions = [Fee.school_id == school.id, Fee.is_active == True]
    if section_id:
        conditions.append(Fee.section_id == section_id)
    if session_id:
        conditions.append(Fee.session_id == session_id)
    if term_id:
        conditions.append(Fee.term_id == term_id)

    result = await db.execute(
        select(Fee.fee_scope, func.count(Fee.id), func.coalesce(func.sum(Fee.amount), 0))
        .where(and_(*conditions))
        .group_by(Fee.fee_scope)
        .order_by(Fee.fee_scope)
    )
    by_scope = [
        {"fee_scope": fee_scope, "count": count, "total": as_decimal(total)}
        for fee_scope, count, total in result.all()
    ]

    return {
        "total_fees": sum((entry["total"] for entry in by_scope), ZERO),
        "fee_count": sum(entry["count"] for entry in by_scope),
        "by_scope": by_scope,
    }

@router.get("/schools/{school_id}/fees/{fee_id}", response_model=FeeInDB)
async def get_fee(
    fee_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    return await get_school_object(db, Fee, fee_id, school.id, "Fee")

@router.put("/schools/{school_id}/fees/{fee_id}", response_model=FeeInDB)
async def update_fee(
    fee_data: FeeUpdate,
    fee_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Update a fee. The resulting scope must still name its class or student.
    """
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    fee = await get_school_object(db, Fee, fee_id, school.id, "Fee")

    update_data = fee_data.model_dump(exclude_unset=True)
    errors = _scope_target_errors(
        update_data.get("fee_scope", fee.fee_scope),
        update_data.get("class_id", fee.class_id),
        update_data.get("student_id", fee.student_id),
    )
    if errors:
        raise RequestValidationError(errors)

    await _check_fee_references(db, school.id, update_data)

    for key, value in update_data.items():
        setattr(fee, key, value)

    await db.commit()
    await db.refresh(fee)

    return fee

@router.delete("/schools/{school_id}/fees/{fee_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_fee(
    fee_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Delete a fee nobody has paid yet.

    A fee with successful gateway payments is kept for the period reports;
    set ``is_active`` to false to stop billing it instead.
    """
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    fee = await get_school_object(db, Fee, fee_id, school.id, "Fee")

    paid = await db.execute(
        select(func.count(Payment.id)).where(and_(Payment.fee_id == fee.id, Payment.status == "success"))
    )
    if paid.scalar():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Fee has recorded payments; deactivate it instead"
        )

    await db.execute(delete(Fee).where(Fee.id == fee.id))
    await db.commit()

    return None

# Transaction endpoints
@router.post("/schools/{school_id}/transactions", response_model=TransactionInDB, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    transaction_data: TransactionCreate,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Record a manual income or expense entry.

    An entry that books a gateway payment in the ledger must carry its
    ``payment_id``; such entries are left out of fee balances because the
    payment itself is already counted. Income for a student notifies the
    student's parent.
    """
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    transaction_fields = transaction_data.model_dump()
    await get_school_object(db, Section, transaction_fields["section_id"], school.id, "Section")
    if transaction_fields.get("session_id"):
        await get_school_object(db, AcademicSession, transaction_fields["session_id"], school.id, "Academic session")
    if transaction_fields.get("term_id"):
        await get_school_object(db, Term, transaction_fields["term_id"], school.id, "Term")

    student = None
    if transaction_fields.get("student_id"):
        student = await get_school_object(db, Student, transaction_fields["student_id"], school.id, "Student")

    if transaction_fields.get("payment_id"):
        payment_result = await db.execute(
            select(Payment)
            .join(Student, Payment.student_id == Student.id)
            .where(and_(Payment.id == transaction_fields["payment_id"], Student.school_id == school.id))
        )
        payment = payment_result.scalars().first()
        if not payment:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Payment not found"
            )
        linked_result = await db.execute(select(Transaction.id).where(Transaction.payment_id == payment.id))
        if linked_result.scalars().first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="This payment is already recorded by another transaction"
            )

    db_transaction = Transaction(school_id=school.id, recorded_by=current_user.id, **transaction_fields)
    db.add(db_transaction)
    await db.commit()
    await db.refresh(db_transaction)

    response = TransactionInDB.model_validate(db_transaction)

    if (
        db_transaction.transaction_type == TransactionTypeEnum.income.value
        and student is not None
        and student.parent_id
    ):
        await send_notifications(db, [
            payment_received_notification(student, db_transaction.amount, transaction_id=db_transaction.id)
        ])

    logger.info(
        f"Transaction {response.id} ({response.transaction_type} {response.amount}) recorded "
        f"for school {school.id} by user {current_user.id}"
    )
    return response

@router.get("/schools/{school_id}/transactions", response_model=List[TransactionInDB])
async def get_transactions(
    section_id: Optional[int] = Query(None),
    session_id: Optional[int] = Query(None),
    term_id: Optional[int] = Query(None),
    student_id: Optional[int] = Query(None),
    transaction_type: Optional[TransactionTypeEnum] = Query(None),
    payment_method: Optional[PaymentMethodEnum] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    search: Optional[str] = Query(None),
    skip: int = 0,
    limit: int = 50,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    query = select(Transaction).where(Transaction.school_id == school.id)

    if section_id:
        query = query.where(Transaction.section_id == section_id)
    if session_id:
        query = query.where(Transaction.session_id == session_id)
    if term_id:
        query = query.where(Transaction.term_id == term_id)
    if student_id:
        query = query.where(Transaction.student_id == student_id)
    if transaction_type:
        query = query.where(Transaction.transaction_type == transaction_type.value)
    if payment_method:
        query = query.where(Transaction.payment_method == payment_method.value)
    if start_date:
        query = query.where(Transaction.transaction_date >= start_date)
    if end_date:
        query = query.where(Transaction.transaction_date <= end_date)
    if search:
        query = query.where(
            or_(
                Transaction.description.ilike(f"%{search}%"),
                Transaction.category.ilike(f"%{search}%"),
                Transaction.reference_number.ilike(f"%{search}%"),
            )
        )

    query = query.order_by(desc(Transaction.transaction_date), desc(Transaction.id)).offset(skip).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()

@router.get("/schools/{school_id}/transactions-dashboard-stats", response_model=TransactionDashboardStats)
async def get_transaction_dashboard_stats(
    section_id: Optional[int] = Query(None),
    session_id: Optional[int] = Query(None),
    term_id: Optional[int] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Income, expenses and balances of the manual ledger for a dashboard.
    """
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    conditions = [Transaction.school_id == school.id]
    if section_id:
        conditions.append(Transaction.section_id == section_id)
    if session_id:
        conditions.append(Transaction.session_id == session_id)
    if term_id:
        conditions.append(Transaction.term_id == term_id)
    if start_date:
        conditions.append(Transaction.transaction_date >= start_date)
    if end_date:
        conditions.append(Transaction.transaction_date <= end_date)
    scope = and_(*conditions)

    is_income = Transaction.transaction_type == "income"
    is_expense = Transaction.transaction_type == "expense"
    totals_result = await db.execute(
        select(
            func.coalesce(func.sum(case((is_income, Transaction.amount), else_=0)), 0),
            func.coalesce(func.sum(case((is_expense, Transaction.amount), else_=0)), 0),
            func.coalesce(func.sum(case((Transaction.payment_method == "cash", Transaction.amount), else_=0)), 0),
            func.coalesce(func.sum(case((Transaction.payment_method == "bank_transfer", Transaction.amount), else_=0)), 0),
            func.coalesce(func.sum(case((is_income, 1), else_=0)), 0),
            func.coalesce(func.sum(case((is_expense, 1), else_=0)), 0),
        ).where(scope)
    )
    total_income, total_expenses, cash_in_hand, bank_balance, income_count, expense_count = totals_result.one()

    method_result = await db.execute(
        select(Transaction.payment_method, func.sum(Transaction.amount))
        .where(and_(scope, is_income))
        .group_by(Transaction.payment_method)
        .order_by(Transaction.payment_method)
    )
    category_result = await db.execute(
        select(Transaction.category, func.sum(Transaction.amount))
        .where(and_(scope, is_expense))
        .group_by(Transaction.category)
        .order_by(Transaction.category)
    )
    recent_result = await db.execute(
        select(Transaction)
        .where(scope)
        .order_by(desc(Transaction.transaction_date), desc(Transaction.id))
        .limit(10)
    )

    total_income = as_decimal(total_income)
    total_expenses = as_decimal(total_expenses)

    return {
        "total_income": total_income,
        "total_expenses": total_expenses,
        "balance": total_income - total_expenses,
        "cash_in_hand": as_decimal(cash_in_hand),
        "bank_balance": as_decimal(bank_balance),
        "income_count": income_count,
        "expense_count": expense_count,
        "income_by_method": [
            {"payment_method": method, "total": as_decimal(total)} for method, total in method_result.all()
        ],
        "expense_by_category": [
            {"category": category, "total": as_decimal(total)} for category, total in category_result.all()
        ],
        "recent_transactions": recent_result.scalars().all(),
    }

@router.get("/schools/{school_id}/transactions-monthly-summary", response_model=MonthlyReport)
async def get_transactions_monthly_summary(
    year: Optional[int] = Query(None, ge=1900, le=9999),
    section_id: Optional[int] = Query(None),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Ledger income and expenses per month of a year (the current year by
    default). Months without entries are left out.
    """
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    year = year or date.today().year
    month = func.extract("month", Transaction.transaction_date)

    query = (
        select(
            month,
            func.coalesce(func.sum(case((Transaction.transaction_type == "income", Transaction.amount), else_=0)), 0),
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
        .order_by(month)
    )
    if section_id:
        query = query.where(Transaction.section_id == section_id)

    monthly_data = []
    for month_number, income, expenses in (await db.execute(query)).all():
        income = as_decimal(income)
        expenses = as_decimal(expenses)
        monthly_data.append({
            "month": int(month_number),
            "month_name": calendar.month_name[int(month_number)],
            "income": income,
            "expenses": expenses,
            "balance": income - expenses,
        })

    total_income = sum((entry["income"] for entry in monthly_data), ZERO)
    total_expenses = sum((entry["expenses"] for entry in monthly_data), ZERO)

    return {
        "year": year,
        "monthly_data": monthly_data,
        "total_income": total_income,
        "total_expenses": total_expenses,
        "total_balance": total_income - total_expenses,
    }

@router.get("/schools/{school_id}/transactions-report", response_model=TransactionReport)
async def get_transactions_report(
    start_date: date = Query(...),
    end_date: date = Query(...),
    section_id: Optional[int] = Query(None),
    transaction_type: Optional[TransactionTypeEnum] = Query(None),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Every ledger entry between two dates, oldest first, with its totals.
    """
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    if end_date < start_date:
        raise RequestValidationError([{
            "loc": ("query", "end_date"),
            "msg": "end_date must not be before start_date",
            "type": "value_error",
        }])

    query = select(Transaction).where(
        and_(
            Transaction.school_id == school.id,
            Transaction.transaction_date >= start_date,
            Transaction.transaction_date <= end_date,
        )
    )
    if section_id:
        query = query.where(Transaction.section_id == section_id)
    if transaction_type:
        query = query.where(Transaction.transaction_type == transaction_type.value)

    result = await db.execute(query.order_by(Transaction.transaction_date, Transaction.id))
    transactions = result.scalars().all()

    income = [t for t in transactions if t.transaction_type == "income"]
    expenses = [t for t in transactions if t.transaction_type == "expense"]
    total_income = sum((as_decimal(t.amount) for t in income), ZERO)
    total_expenses = sum((as_decimal(t.amount) for t in expenses), ZERO)

    return {
        "period": {"start_date": start_date, "end_date": end_date},
        "total_income": total_income,
        "total_expenses": total_expenses,
        "net_balance": total_income - total_expenses,
        "transaction_count": len(transactions),
        "income_count": len(income),
        "expense_count": len(expenses),
        "transactions": transactions,
    }

@router.get("/schools/{school_id}/transactions/{transaction_id}", response_model=TransactionInDB)
async def get_transaction(
    transaction_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    return await get_school_object(db, Transaction, transaction_id, school.id, "Transaction")

@router.put("/schools/{school_id}/transactions/{transaction_id}", response_model=TransactionInDB)
async def update_transaction(
    transaction_data: TransactionUpdate,
    transaction_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    transaction = await get_school_object(db, Transaction, transaction_id, school.id, "Transaction")

    update_data = transaction_data.model_dump(exclude_unset=True)
    if update_data.get("student_id"):
        await get_school_object(db, Student, update_data["student_id"], school.id, "Student")

    for key, value in update_data.items():
        setattr(transaction, key, value)

    await db.commit()
    await db.refresh(transaction)

    return transaction

@router.delete("/schools/{school_id}/transactions/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transaction(
    transaction_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db, FINANCE_ROLES)

    transaction = await get_school_object(db, Transaction, transaction_id, school.id, "Transaction")

    await db.execute(delete(Transaction).where(Transaction.id == transaction.id))
    await db.commit()

    logger.info(f"Transaction {transaction.id} deleted by user {current_user.id}")
    return None
