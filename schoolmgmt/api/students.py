import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Path, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from sqlalchemy import or_, and_, delete, desc
from email_validator import validate_email, EmailNotValidError

from schoolmgmt.database import get_db
from schoolmgmt.schemas.students import (
    StudentCreate, StudentUpdate, StudentResponse,
    StudentImportRequest, StudentImportResult,
)
from schoolmgmt.schemas.finance import PaymentSummary, TransactionInDB
from schoolmgmt.models.users import User, Student, SectionStudent
from schoolmgmt.models.schools import School, Section, Class
from schoolmgmt.models.finance import Transaction
from schoolmgmt.middleware.authentication import (
    get_current_user, validate_admin_access, get_school_access, get_school_object,
)
from schoolmgmt.services.identifiers import lock_school, generate_admission_number
from schoolmgmt.services.fees import student_balance

logger = logging.getLogger(__name__)

router = APIRouter()

GENDERS = ("male", "female", "other")

async def load_student(db: AsyncSession, student_id: int, school_id: int) -> Student:
    """Load a student of the school with fresh section memberships, or 404."""
    result = await db.execute(
        select(Student)
        .where(and_(Student.id == student_id, Student.school_id == school_id))
        .options(selectinload(Student.sections))
        .execution_options(populate_existing=True)
    )
    student = result.scalars().first()

    if not student:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Student not found"
        )

    return student

def ensure_can_view_student(user: User, student: Student) -> None:
    """Parents only see their own children; staff of the school see everyone."""
    if user.role_name == "parent" and student.parent_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to view this student"
        )

async def _check_enrolment(db: AsyncSession, school_id: int, class_id: Optional[int], section_ids: Optional[List[int]]):
    if class_id:
        await get_school_object(db, Class, class_id, school_id, "Class")

    if section_ids:
        result = await db.execute(
            select(Section.id).where(and_(Section.school_id == school_id, Section.id.in_(section_ids)))
        )
        found = set(result.scalars().all())
        missing = sorted(set(section_ids) - found)
        if missing:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Section(s) not found: {', '.join(str(section_id) for section_id in missing)}"
            )

async def _check_parent(db: AsyncSession, school_id: int, parent_id: Optional[int]):
    if parent_id:
        parent = await get_school_object(db, User, parent_id, school_id, "Parent")
        if parent.role_name != "parent":
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="parent_id must refer to a parent account"
            )

async def _check_admission_number(db: AsyncSession, admission_number: str, exclude_id: Optional[int] = None):
    query = select(Student.id).where(Student.admission_number == admission_number)
    if exclude_id:
        query = query.where(Student.id != exclude_id)
    result = await db.execute(query)
    if result.scalars().first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Admission number already exists"
        )

@router.post("/schools/{school_id}/students", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
async def create_student(
    student_data: StudentCreate,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Enrol a student in a class and one or more sections.

    When no admission number is supplied the next ``{SHORT_CODE}-STU-{NNN}`` is
    issued while the school row is locked.
    """
    await validate_admin_access(current_user, db)

    await _check_enrolment(db, school.id, student_data.class_id, student_data.section_ids)
    await _check_parent(db, school.id, student_data.parent_id)
    if student_data.admission_number:
        await _check_admission_number(db, student_data.admission_number)

    student_fields = student_data.model_dump(exclude={"section_ids"})

    try:
        if not student_fields.get("admission_number"):
            locked_school = await lock_school(db, school.id)
            student_fields["admission_number"] = await generate_admission_number(db, locked_school)

        student = Student(school_id=school.id, **student_fields)
        db.add(student)
        await db.flush()

        db.add_all([
            SectionStudent(section_id=section_id, student_id=student.id)
            for section_id in dict.fromkeys(student_data.section_ids)
        ])
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error(f"Failed to create student for school {school.id}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create student"
        )

    logger.info(f"Student {student.id} enrolled as {student.admission_number}")
    return await load_student(db, student.id, school.id)

@router.get("/schools/{school_id}/students", response_model=List[StudentResponse])
async def get_students(
    class_id: Optional[int] = Query(None),
    section_id: Optional[int] = Query(None),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    skip: int = 0,
    limit: int = 100,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Get a school's students, with optional filtering. Parents only get their
    own children.
    """
    query = select(Student).where(Student.school_id == school.id)

    if current_user.role_name == "parent":
        query = query.where(Student.parent_id == current_user.id)

    if class_id:
        query = query.where(Student.class_id == class_id)

    if section_id:
        query = query.where(
            Student.id.in_(select(SectionStudent.student_id).where(SectionStudent.section_id == section_id))
        )

    if is_active is not None:
        query = query.where(Student.is_active == is_active)

    if search:
        query = query.where(
            or_(
                Student.student_name.ilike(f"%{search}%"),
                Student.admission_number.ilike(f"%{search}%"),
                Student.parent_phone.ilike(f"%{search}%"),
            )
        )

    query = query.order_by(Student.student_name).offset(skip).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()

@router.post("/schools/{school_id}/students/import", response_model=StudentImportResult, status_code=status.HTTP_201_CREATED)
async def import_students(
    import_data: StudentImportRequest,
    response: Response,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Bulk import already-parsed student rows.

    Each row is checked on its own: bad rows are reported by their zero-based
    position and skipped, good rows are saved together in one transaction.
    Returns 201 when every row was imported, 207 when only some were and 422
    when none were.
    """
    await validate_admin_access(current_user, db)

    section_result = await db.execute(select(Section.id).where(Section.school_id == school.id))
    section_ids = set(section_result.scalars().all())
    class_result = await db.execute(select(Class.id, Class.section_id).where(Class.school_id == school.id))
    class_sections = {class_id: section_id for class_id, section_id in class_result.all()}

    supplied_numbers = [row.admission_number for row in import_data.students if row.admission_number]
    taken = set()
    if supplied_numbers:
        taken_result = await db.execute(
            select(Student.admission_number).where(Student.admission_number.in_(supplied_numbers))
        )
        taken = set(taken_result.scalars().all())

    errors = []
    valid_rows = []
    seen_numbers = set()
    for index, row in enumerate(import_data.students):
        row_errors = []

        if not row.student_name or not row.student_name.strip():
            row_errors.append("student_name is required")
        elif len(row.student_name) > 255:
            row_errors.append("student_name may not be longer than 255 characters")

        if row.section_id is None:
            row_errors.append("section_id is required")
        elif row.section_id not in section_ids:
            row_errors.append("section_id does not exist in this school")

        if row.class_id is None:
            row_errors.append("class_id is required")
        elif row.class_id not in class_sections:
            row_errors.append("class_id does not exist in this school")
        elif row.section_id in section_ids and class_sections[row.class_id] != row.section_id:
            row_errors.append("class_id does not belong to section_id")

        if row.admission_number:
            if len(row.admission_number) > 100:
                row_errors.append("admission_number may not be longer than 100 characters")
            elif row.admission_number in taken or row.admission_number in seen_numbers:
                row_errors.append("Admission number already exists")

        if row.gender and row.gender.lower() not in GENDERS:
            row_errors.append(f"gender must be one of: {', '.join(GENDERS)}")

        if row.parent_email:
            try:
                validate_email(row.parent_email, check_deliverability=False)
            except EmailNotValidError:
                row_errors.append("parent_email is not a valid email address")

        if row_errors:
            errors.append({"row": index, "errors": row_errors})
            continue

        if row.admission_number:
            seen_numbers.add(row.admission_number)
        valid_rows.append(row)

    imported = []
    if valid_rows:
        try:
            locked_school = await lock_school(db, school.id)
            for row in valid_rows:
                student = Student(
                    school_id=school.id,
                    class_id=row.class_id,
                    student_name=row.student_name.strip(),
                    admission_number=row.admission_number,
                    parent_name=row.parent_name,
                    parent_phone=row.parent_phone,
                    parent_email=row.parent_email,
                    gender=row.gender.lower() if row.gender else None,
                )
                if not student.admission_number:
                    # Earlier rows are flushed first, so numbering continues from them
                    student.admission_number = await generate_admission_number(db, locked_school)
                db.add(student)
                await db.flush()
                db.add(SectionStudent(section_id=row.section_id, student_id=student.id))
                imported.append(student.id)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.error(f"Student import for school {school.id} failed", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Student import failed; nothing was saved"
            )

    students = []
    if imported:
        result = await db.execute(
            select(Student)
            .where(Student.id.in_(imported))
            .options(selectinload(Student.sections))
            .order_by(Student.id)
            .execution_options(populate_existing=True)
        )
        students = result.scalars().all()

    if errors:
        response.status_code = status.HTTP_207_MULTI_STATUS if imported else status.HTTP_422_UNPROCESSABLE_ENTITY

    logger.info(f"Imported {len(imported)} student(s) into school {school.id}, {len(errors)} row(s) rejected")
    return {
        "success": not errors,
        "imported": len(imported),
        "failed": len(errors),
        "students": students,
        "errors": errors,
    }

@router.get("/schools/{school_id}/students/{student_id}", response_model=StudentResponse)
async def get_student(
    student_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    student = await load_student(db, student_id, school.id)
    ensure_can_view_student(current_user, student)
    return student

@router.put("/schools/{school_id}/students/{student_id}", response_model=StudentResponse)
async def update_student(
    student_data: StudentUpdate,
    student_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Update a student. Supplying ``section_ids`` replaces the student's section
    memberships.
    """
    await validate_admin_access(current_user, db)

    student = await load_student(db, student_id, school.id)

    update_data = student_data.model_dump(exclude_unset=True)
    section_ids = update_data.pop("section_ids", None)

    if section_ids is not None and not section_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A student must belong to at least one section"
        )
    if update_data.get("class_id") is None:
        update_data.pop("class_id", None)

    await _check_enrolment(db, school.id, update_data.get("class_id"), section_ids)
    await _check_parent(db, school.id, update_data.get("parent_id"))

    for key, value in update_data.items():
        setattr(student, key, value)

    if section_ids is not None:
        await db.execute(delete(SectionStudent).where(SectionStudent.student_id == student.id))
        db.add_all([
            SectionStudent(section_id=section_id, student_id=student.id)
            for section_id in dict.fromkeys(section_ids)
        ])

    await db.commit()

    return await load_student(db, student.id, school.id)

@router.delete("/schools/{school_id}/students/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_student(
    student_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db)

    student = await get_school_object(db, Student, student_id, school.id, "Student")

    await db.execute(delete(SectionStudent).where(SectionStudent.student_id == student.id))
    await db.execute(delete(Student).where(Student.id == student.id))
    await db.commit()

    return None

@router.get("/schools/{school_id}/students/{student_id}/payment-summary", response_model=PaymentSummary)
async def get_payment_summary(
    session_id: Optional[int] = Query(None),
    term_id: Optional[int] = Query(None),
    student_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Fees owed, money received through both payment channels and the balance
    for one student, optionally limited to a session and/or term.

    ``balance`` is signed (negative means the student is in credit);
    ``outstanding`` never goes below zero.
    """
    student = await load_student(db, student_id, school.id)
    ensure_can_view_student(current_user, student)

    summary = await student_balance(db, student, session_id, term_id)
    return summary.as_dict()

@router.get("/schools/{school_id}/students/{student_id}/transactions", response_model=List[TransactionInDB])
async def get_student_transactions(
    student_id: int = Path(..., gt=0),
    skip: int = 0,
    limit: int = 20,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    student = await load_student(db, student_id, school.id)
    ensure_can_view_student(current_user, student)

    result = await db.execute(
        select(Transaction)
        .where(and_(Transaction.school_id == school.id, Transaction.student_id == student.id))
        .order_by(desc(Transaction.transaction_date), desc(Transaction.id))
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()
