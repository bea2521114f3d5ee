import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Path
from fastapi.exceptions import RequestValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import and_, delete, desc, func

from schoolmgmt.database import get_db
from schoolmgmt.schemas.academics import (
    AcademicSessionCreate, AcademicSessionUpdate, AcademicSessionInDB,
    TermCreate, TermUpdate, TermInDB,
    ExamCreate, ExamInDB,
    ExamResultsSubmit, ExamResultInDB, ExamResultsSaved, AcademicAnalytics,
)
from schoolmgmt.models.academics import AcademicSession, Term, Exam, ExamResult
from schoolmgmt.models.schools import School, Section, Class, Subject
from schoolmgmt.models.users import User, Student, SectionStudent
from schoolmgmt.middleware.authentication import (
    get_current_user, validate_admin_access, get_school_access, get_school_object, ACADEMIC_ROLES,
)
from schoolmgmt.services.grading import calculate_grade
from schoolmgmt.services.notifications import exam_result_notifications, send_notifications

logger = logging.getLogger(__name__)

router = APIRouter()

def _check_date_range(start_date, end_date):
    if start_date and end_date and end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_date must not be before start_date"
        )

# Academic Session endpoints
@router.post("/schools/{school_id}/sessions", response_model=AcademicSessionInDB, status_code=status.HTTP_201_CREATED)
async def create_academic_session(
    session_data: AcademicSessionCreate,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Create a new academic session (e.g. 2024/2025) for a section.
    """
    await validate_admin_access(current_user, db)
    await get_school_object(db, Section, session_data.section_id, school.id, "Section")

    db_session = AcademicSession(school_id=school.id, **session_data.model_dump())
    db.add(db_session)
    await db.commit()
    await db.refresh(db_session)

    return db_session

@router.get("/schools/{school_id}/sessions", response_model=List[AcademicSessionInDB])
async def get_academic_sessions(
    section_id: Optional[int] = Query(None),
    is_active: Optional[bool] = Query(None),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    query = select(AcademicSession).where(AcademicSession.school_id == school.id)
    if section_id:
        query = query.where(AcademicSession.section_id == section_id)
    if is_active is not None:
        query = query.where(AcademicSession.is_active == is_active)

    result = await db.execute(query.order_by(desc(AcademicSession.start_date)))
    return result.scalars().all()

@router.get("/schools/{school_id}/sessions/{session_id}", response_model=AcademicSessionInDB)
async def get_academic_session(
    session_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    return await get_school_object(db, AcademicSession, session_id, school.id, "Academic session")

@router.put("/schools/{school_id}/sessions/{session_id}", response_model=AcademicSessionInDB)
async def update_academic_session(
    session_data: AcademicSessionUpdate,
    session_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db)

    academic_session = await get_school_object(db, AcademicSession, session_id, school.id, "Academic session")

    update_data = session_data.model_dump(exclude_unset=True)
    _check_date_range(
        update_data.get("start_date", academic_session.start_date),
        update_data.get("end_date", academic_session.end_date),
    )

    for key, value in update_data.items():
        setattr(academic_session, key, value)

    await db.commit()
    await db.refresh(academic_session)

    return academic_session

@router.delete("/schools/{school_id}/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_academic_session(
    session_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db)

    academic_session = await get_school_object(db, AcademicSession, session_id, school.id, "Academic session")

    await db.execute(delete(Term).where(Term.session_id == academic_session.id))
    await db.execute(delete(AcademicSession).where(AcademicSession.id == academic_session.id))
    await db.commit()

    return None

# Term endpoints
@router.post("/schools/{school_id}/terms", response_model=TermInDB, status_code=status.HTTP_201_CREATED)
async def create_term(
    term_data: TermCreate,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Create a term inside an academic session.
    """
    await validate_admin_access(current_user, db)
    await get_school_object(db, Section, term_data.section_id, school.id, "Section")
    await get_school_object(db, AcademicSession, term_data.session_id, school.id, "Academic session")

    db_term = Term(school_id=school.id, **term_data.model_dump())
    db.add(db_term)
    await db.commit()
    await db.refresh(db_term)

    return db_term

@router.get("/schools/{school_id}/terms", response_model=List[TermInDB])
async def get_terms(
    session_id: Optional[int] = Query(None),
    section_id: Optional[int] = Query(None),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    query = select(Term).where(Term.school_id == school.id)
    if session_id:
        query = query.where(Term.session_id == session_id)
    if section_id:
        query = query.where(Term.section_id == section_id)

    result = await db.execute(query.order_by(Term.start_date))
    return result.scalars().all()

@router.get("/schools/{school_id}/terms/{term_id}", response_model=TermInDB)
async def get_term(
    term_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    return await get_school_object(db, Term, term_id, school.id, "Term")

@router.put("/schools/{school_id}/terms/{term_id}", response_model=TermInDB)
async def update_term(
    term_data: TermUpdate,
    term_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db)

    term = await get_school_object(db, Term, term_id, school.id, "Term")

    update_data = term_data.model_dump(exclude_unset=True)
    _check_date_range(
        update_data.get("start_date", term.start_date),
        update_data.get("end_date", term.end_date),
    )

    for key, value in update_data.items():
        setattr(term, key, value)

    await db.commit()
    await db.refresh(term)

    return term

@router.delete("/schools/{school_id}/terms/{term_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_term(
    term_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db)

    term = await get_school_object(db, Term, term_id, school.id, "Term")

    await db.execute(delete(Term).where(Term.id == term.id))
    await db.commit()

    return None

# Exam endpoints
@router.post("/schools/{school_id}/exams", response_model=ExamInDB, status_code=status.HTTP_201_CREATED)
async def create_exam(
    exam_data: ExamCreate,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Create an exam for one subject and class.
    """
    await validate_admin_access(current_user, db, ACADEMIC_ROLES)

    await get_school_object(db, Subject, exam_data.subject_id, school.id, "Subject")
    await get_school_object(db, Class, exam_data.class_id, school.id, "Class")
    if exam_data.term_id:
        await get_school_object(db, Term, exam_data.term_id, school.id, "Term")
    if exam_data.session_id:
        await get_school_object(db, AcademicSession, exam_data.session_id, school.id, "Academic session")

    db_exam = Exam(school_id=school.id, **exam_data.model_dump())
    db.add(db_exam)
    await db.commit()
    await db.refresh(db_exam)

    return db_exam

@router.get("/schools/{school_id}/exams", response_model=List[ExamInDB])
async def get_exams(
    class_id: Optional[int] = Query(None),
    subject_id: Optional[int] = Query(None),
    term_id: Optional[int] = Query(None),
    session_id: Optional[int] = Query(None),
    skip: int = 0,
    limit: int = 100,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    query = select(Exam).where(Exam.school_id == school.id)
    if class_id:
        query = query.where(Exam.class_id == class_id)
    if subject_id:
        query = query.where(Exam.subject_id == subject_id)
    if term_id:
        query = query.where(Exam.term_id == term_id)
    if session_id:
        query = query.where(Exam.session_id == session_id)

    result = await db.execute(query.order_by(desc(Exam.date), desc(Exam.id)).offset(skip).limit(limit))
    return result.scalars().all()

# Students averaging below this across their results are flagged
AT_RISK_AVERAGE = 40

def _average(value) -> float:
    return round(float(value), 2)

@router.get("/schools/{school_id}/exams/academic-analytics", response_model=AcademicAnalytics)
async def get_academic_analytics(
    section_id: int = Query(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Average scores of a section per class and per subject, plus the
    students at risk.

    At-risk students are the section's students whose average score over
    all their results is below 40, lowest first, at most ten.
    """
    await validate_admin_access(current_user, db, ACADEMIC_ROLES)
    section = await get_school_object(db, Section, section_id, school.id, "Section")

    average = func.avg(ExamResult.score)

    class_rows = await db.execute(
        select(Class.id, Class.class_name, average)
        .join(Exam, Exam.class_id == Class.id)
        .join(ExamResult, ExamResult.exam_id == Exam.id)
        .where(Class.section_id == section.id)
        .group_by(Class.id, Class.class_name)
        .order_by(Class.class_name)
    )
    subject_rows = await db.execute(
        select(Subject.id, Subject.name, average)
        .join(Exam, Exam.subject_id == Subject.id)
        .join(Class, Exam.class_id == Class.id)
        .join(ExamResult, ExamResult.exam_id == Exam.id)
        .where(Class.section_id == section.id)
        .group_by(Subject.id, Subject.name)
        .order_by(desc(average))
    )
    at_risk_rows = await db.execute(
        select(Student.id, Student.student_name, average)
        .join(SectionStudent, and_(SectionStudent.student_id == Student.id, SectionStudent.section_id == section.id))
        .join(ExamResult, ExamResult.student_id == Student.id)
        .group_by(Student.id, Student.student_name)
        .having(average < AT_RISK_AVERAGE)
        .order_by(average)
        .limit(10)
    )

    return {
        "section_id": section.id,
        "class_averages": [
            {"class_id": class_id, "class_name": name, "average_score": _average(score)}
            for class_id, name, score in class_rows.all()
        ],
        "subject_performance": [
            {"subject_id": subject_id, "subject_name": name, "average_score": _average(score)}
            for subject_id, name, score in subject_rows.all()
        ],
        "at_risk_students": [
            {"student_id": student_id, "student_name": name, "average_score": _average(score)}
            for student_id, name, score in at_risk_rows.all()
        ],
    }

@router.get("/schools/{school_id}/exams/{exam_id}", response_model=ExamInDB)
async def get_exam(
    exam_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    return await get_school_object(db, Exam, exam_id, school.id, "Exam")

@router.post("/schools/{school_id}/exams/{exam_id}/results", response_model=ExamResultsSaved)
async def save_exam_results(
    results_data: ExamResultsSubmit,
    exam_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Record scores for an exam.

    Each student has at most one result per exam: submitting again overwrites
    the score, grade, remark and grader. The whole batch is saved in one
    transaction. Parents are notified once the grades are committed; a failed
    notification never undoes the grades.
    """
    await validate_admin_access(current_user, db, ACADEMIC_ROLES)

    exam = await get_school_object(db, Exam, exam_id, school.id, "Exam")

    over_max = [
        {
            "loc": ("body", "results", index, "score"),
            "msg": f"Score may not exceed the exam's maximum of {exam.max_score}",
            "type": "value_error",
        }
        for index, item in enumerate(results_data.results)
        if item.score > exam.max_score
    ]
    if over_max:
        raise RequestValidationError(over_max)

    student_ids = [item.student_id for item in results_data.results]
    student_result = await db.execute(
        select(Student).where(and_(Student.school_id == school.id, Student.id.in_(student_ids)))
    )
    students = {student.id: student for student in student_result.scalars().all()}
    missing = [student_id for student_id in student_ids if student_id not in students]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Student(s) not found in this school: {', '.join(str(student_id) for student_id in missing)}"
        )

    try:
        existing_result = await db.execute(
            select(ExamResult).where(and_(ExamResult.exam_id == exam.id, ExamResult.student_id.in_(student_ids)))
        )
        existing = {result.student_id: result for result in existing_result.scalars().all()}

        saved = []
        for item in results_data.results:
            exam_result = existing.get(item.student_id)
            if exam_result is None:
                exam_result = ExamResult(exam_id=exam.id, student_id=item.student_id)
                db.add(exam_result)
            exam_result.score = item.score
            exam_result.grade = calculate_grade(item.score)
            exam_result.remark = item.remark
            exam_result.graded_by = current_user.id
            saved.append(exam_result)

        await db.commit()
    except Exception:
        await db.rollback()
        logger.error(f"Saving results for exam {exam.id} failed; batch rolled back", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save exam results"
        )

    for exam_result in saved:
        await db.refresh(exam_result)

    # Serialise before notifying: a failed notification rolls back and expires the session
    results = [ExamResultInDB.model_validate(exam_result) for exam_result in saved]
    notifications = exam_result_notifications(exam, [students[student_id] for student_id in student_ids])
    exam_id = exam.id

    notifications_sent = await send_notifications(db, notifications)

    logger.info(f"Saved {len(results)} result(s) for exam {exam_id}, {notifications_sent} notification(s) queued")
    return {
        "exam_id": exam_id,
        "saved": len(results),
        "notifications_sent": notifications_sent,
        "results": results,
    }

@router.get("/schools/{school_id}/exams/{exam_id}/results", response_model=List[ExamResultInDB])
async def get_exam_results(
    exam_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Results for an exam. Parents only see their own children's results.
    """
    exam = await get_school_object(db, Exam, exam_id, school.id, "Exam")

    query = select(ExamResult).where(ExamResult.exam_id == exam.id)
    if current_user.role_name == "parent":
        query = query.join(Student, ExamResult.student_id == Student.id).where(Student.parent_id == current_user.id)

    result = await db.execute(query.order_by(ExamResult.student_id))
    return result.scalars().all()
