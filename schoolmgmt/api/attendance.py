import logging
from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import and_, func, desc

from schoolmgmt.database import get_db
from schoolmgmt.schemas.attendance import (
    AttendanceBulkCreate, AttendanceInDB, AttendanceSaved, SectionAttendanceSummary,
)
from schoolmgmt.models.attendance import Attendance, ATTENDANCE_STATUSES
from schoolmgmt.models.schools import School, Section, Class
from schoolmgmt.models.users import User, Student
from schoolmgmt.middleware.authentication import (
    get_current_user, validate_admin_access, get_school_access, get_school_object, ACADEMIC_ROLES,
)
from schoolmgmt.api.students import load_student, ensure_can_view_student

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/schools/{school_id}/attendance", response_model=AttendanceSaved)
async def mark_attendance(
    attendance_data: AttendanceBulkCreate,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Mark attendance for a class on one day.

    A student has one record per day: marking again replaces the status and
    remark. Every record in the request is saved in one transaction.
    """
    await validate_admin_access(current_user, db, ACADEMIC_ROLES)

    class_obj = await get_school_object(db, Class, attendance_data.class_id, school.id, "Class")

    student_ids = [mark.student_id for mark in attendance_data.attendance]
    result = await db.execute(
        select(Student.id).where(and_(Student.class_id == class_obj.id, Student.id.in_(student_ids)))
    )
    enrolled = set(result.scalars().all())
    not_enrolled = [student_id for student_id in student_ids if student_id not in enrolled]
    if not_enrolled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Student(s) not in this class: {', '.join(str(student_id) for student_id in not_enrolled)}"
        )

    try:
        existing_result = await db.execute(
            select(Attendance).where(
                and_(
                    Attendance.date == attendance_data.date,
                    Attendance.student_id.in_(student_ids),
                )
            )
        )
        existing = {record.student_id: record for record in existing_result.scalars().all()}

        records = []
        for mark in attendance_data.attendance:
            record = existing.get(mark.student_id)
            if record is None:
                record = Attendance(
                    school_id=school.id,
                    student_id=mark.student_id,
                    date=attendance_data.date,
                )
                db.add(record)
            record.class_id = class_obj.id
            record.status = mark.status
            record.remark = mark.remark
            record.recorded_by = current_user.id
            records.append(record)

        await db.commit()
    except Exception:
        await db.rollback()
        logger.error(f"Attendance for class {class_obj.id} on {attendance_data.date} rolled back", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save attendance"
        )

    for record in records:
        await db.refresh(record)

    return {
        "class_id": class_obj.id,
        "date": attendance_data.date,
        "saved": len(records),
        "records": records,
    }

@router.get("/schools/{school_id}/attendance", response_model=List[AttendanceInDB])
async def get_attendance(
    class_id: Optional[int] = Query(None),
    attendance_date: Optional[date] = Query(None, alias="date"),
    status_filter: Optional[str] = Query(None, alias="status"),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Attendance records for a school, filtered by class and/or day.
    """
    await validate_admin_access(current_user, db, ACADEMIC_ROLES)

    query = select(Attendance).where(Attendance.school_id == school.id)
    if class_id:
        query = query.where(Attendance.class_id == class_id)
    if attendance_date:
        query = query.where(Attendance.date == attendance_date)
    if status_filter:
        if status_filter not in ATTENDANCE_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"status must be one of: {', '.join(ATTENDANCE_STATUSES)}"
            )
        query = query.where(Attendance.status == status_filter)

    result = await db.execute(query.order_by(desc(Attendance.date), Attendance.student_id))
    return result.scalars().all()

@router.get("/schools/{school_id}/attendance/section-summary", response_model=SectionAttendanceSummary)
async def get_section_attendance_summary(
    section_id: int = Query(..., gt=0),
    attendance_date: Optional[date] = Query(None, alias="date"),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Status counts per class of a section for one day (today by default).
    """
    await validate_admin_access(current_user, db, ACADEMIC_ROLES)

    section = await get_school_object(db, Section, section_id, school.id, "Section")
    attendance_date = attendance_date or date.today()

    class_result = await db.execute(
        select(Class).where(Class.section_id == section.id).order_by(Class.class_name)
    )
    classes = class_result.scalars().all()

    count_result = await db.execute(
        select(Attendance.class_id, Attendance.status, func.count(Attendance.id))
        .where(
            and_(
                Attendance.date == attendance_date,
                Attendance.class_id.in_([class_obj.id for class_obj in classes]),
            )
        )
        .group_by(Attendance.class_id, Attendance.status)
    )
    counts = {}
    for class_id, record_status, count in count_result.all():
        counts.setdefault(class_id, {})[record_status] = count

    totals = {record_status: 0 for record_status in ATTENDANCE_STATUSES}
    class_summaries = []
    for class_obj in classes:
        class_counts = {record_status: counts.get(class_obj.id, {}).get(record_status, 0) for record_status in ATTENDANCE_STATUSES}
        for record_status, count in class_counts.items():
            totals[record_status] += count
        class_summaries.append({
            "class_id": class_obj.id,
            "class_name": class_obj.class_name,
            "total": sum(class_counts.values()),
            **class_counts,
        })

    return {
        "section_id": section.id,
        "date": attendance_date,
        "totals": {**totals, "total": sum(totals.values())},
        "classes": class_summaries,
    }

@router.get("/schools/{school_id}/students/{student_id}/attendance", response_model=List[AttendanceInDB])
async def get_student_attendance(
    student_id: int = Path(..., gt=0),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    A student's attendance history, newest first.
    """
    student = await load_student(db, student_id, school.id)
    ensure_can_view_student(current_user, student)

    query = select(Attendance).where(Attendance.student_id == student.id)
    if start_date:
        query = query.where(Attendance.date >= start_date)
    if end_date:
        query = query.where(Attendance.date <= end_date)

    result = await db.execute(query.order_by(desc(Attendance.date)))
    return result.scalars().all()
