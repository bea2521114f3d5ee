import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import and_, case, delete, func

from schoolmgmt.database import get_db
from schoolmgmt.schemas.schools import (
    SchoolCreate, SchoolUpdate, SchoolInDB, SchoolStatistics, SubaccountSetup,
    SectionCreate, SectionUpdate, SectionInDB, SectionStatistics, SectionUsersAssign, SectionUsers,
    ClassCreate, ClassUpdate, ClassInDB, ClassStatistics,
    SubjectCreate, SubjectUpdate, SubjectInDB,
)
from schoolmgmt.models.schools import School, Section, Class, Subject
from schoolmgmt.models.users import User, Role, Student, SectionStudent, SectionUser
from schoolmgmt.models.academics import AcademicSession
from schoolmgmt.models.finance import Fee
from schoolmgmt.middleware.authentication import (
    get_current_user, validate_admin_access, get_school_access, get_school_object, get_school_objects, SUPER_ADMIN,
)
from schoolmgmt.services.identifiers import rename_identifier
from schoolmgmt.services.payments import PaymentGatewayError, create_subaccount

logger = logging.getLogger(__name__)

router = APIRouter()

# School endpoints
@router.post("/schools", response_model=SchoolInDB, status_code=status.HTTP_201_CREATED)
async def create_school(
    school_data: SchoolCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Create a new school (super_admin only).
    """
    await validate_admin_access(current_user, db, [SUPER_ADMIN])

    # Short codes prefix every generated identifier, so they must be unique
    result = await db.execute(select(School).where(School.short_code == school_data.short_code))
    if result.scalars().first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="School with this short code already exists"
        )

    db_school = School(**school_data.model_dump())
    db.add(db_school)
    await db.commit()
    await db.refresh(db_school)

    logger.info(f"School {db_school.id} ({db_school.short_code}) created by user {current_user.id}")
    return db_school

@router.get("/schools", response_model=List[SchoolInDB])
async def get_schools(
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    List schools. Super admins see every school, everybody else only their own.
    """
    query = select(School).order_by(School.name)
    if current_user.role_name != SUPER_ADMIN:
        query = query.where(School.id == current_user.school_id)

    result = await db.execute(query.offset(skip).limit(limit))
    return result.scalars().all()

@router.get("/schools/{school_id}", response_model=SchoolInDB)
async def get_school(school: School = Depends(get_school_access)):
    """
    Get a specific school by ID.
    """
    return school

@router.put("/schools/{school_id}", response_model=SchoolInDB)
async def update_school(
    school_data: SchoolUpdate,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Update a school (admin only).

    Changing the short code rewrites the prefix of every registration ID and
    admission number issued by the school. The school row and the rewritten
    identifiers are committed together or not at all.
    """
    await validate_admin_access(current_user, db)

    update_data = school_data.model_dump(exclude_unset=True)
    new_code = update_data.get("short_code")
    old_code = school.short_code

    if new_code and new_code != old_code:
        result = await db.execute(
            select(School).where(and_(School.short_code == new_code, School.id != school.id))
        )
        if result.scalars().first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="School with this short code already exists"
            )

    for key, value in update_data.items():
        setattr(school, key, value)

    if new_code and new_code != old_code:
        users = (await db.execute(select(User).where(User.school_id == school.id))).scalars().all()
        for user in users:
            user.registration_id = rename_identifier(user.registration_id, old_code, new_code)

        students = (await db.execute(select(Student).where(Student.school_id == school.id))).scalars().all()
        for student in students:
            student.admission_number = rename_identifier(student.admission_number, old_code, new_code)

        logger.info(
            f"School {school.id} short code {old_code} -> {new_code}: "
            f"{len(users)} user(s), {len(students)} student(s) re-prefixed"
        )

    try:
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error(f"Failed to update school {school.id}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update school"
        )
    await db.refresh(school)

    return school

@router.delete("/schools/{school_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_school(
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Delete a school and everything it owns (super_admin only).
    """
    await validate_admin_access(current_user, db, [SUPER_ADMIN])

    await db.execute(delete(School).where(School.id == school.id))
    await db.commit()

    logger.info(f"School {school.id} deleted by user {current_user.id}")
    return None

@router.get("/schools/{school_id}/statistics", response_model=SchoolStatistics)
async def get_school_statistics(
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    """
    Headline counts for a school dashboard.
    """
    async def count(model, *conditions):
        result = await db.execute(
            select(func.count(model.id)).where(and_(model.school_id == school.id, *conditions))
        )
        return result.scalar() or 0

    staff_result = await db.execute(
        select(func.count(User.id))
        .join(Role, User.role_id == Role.id)
        .where(and_(User.school_id == school.id, Role.name != "parent"))
    )

    return {
        "school_id": school.id,
        "sections": await count(Section),
        "classes": await count(Class),
        "students": await count(Student),
        "active_students": await count(Student, Student.is_active == True),
        "staff": staff_result.scalar() or 0,
    }

@router.post("/schools/{school_id}/setup-subaccount", response_model=SchoolInDB)
async def setup_subaccount(
    subaccount_data: SubaccountSetup,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Register the school's bank account with the payment gateway so fee payments
    settle directly to the school.
    """
    await validate_admin_access(current_user, db)

    try:
        subaccount = await create_subaccount(
            business_name=school.name,
            settlement_bank=subaccount_data.settlement_bank,
            account_number=subaccount_data.account_number,
            percentage_charge=subaccount_data.percentage_charge,
        )
    except PaymentGatewayError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    school.paystack_subaccount_code = subaccount.get("subaccount_code")
    school.settlement_bank = subaccount_data.settlement_bank
    school.account_number = subaccount_data.account_number
    school.platform_fee_percentage = subaccount_data.percentage_charge

    await db.commit()
    await db.refresh(school)

    return school

# Section endpoints
@router.post("/schools/{school_id}/sections", response_model=SectionInDB, status_code=status.HTTP_201_CREATED)
async def create_section(
    section_data: SectionCreate,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Create a new section (e.g. Nursery, Primary, Secondary).
    """
    await validate_admin_access(current_user, db)

    db_section = Section(school_id=school.id, **section_data.model_dump())
    db.add(db_section)
    await db.commit()
    await db.refresh(db_section)

    return db_section

@router.get("/schools/{school_id}/sections", response_model=List[SectionInDB])
async def get_sections(
    is_active: Optional[bool] = Query(None),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    query = select(Section).where(Section.school_id == school.id)
    if is_active is not None:
        query = query.where(Section.is_active == is_active)

    result = await db.execute(query.order_by(Section.section_name))
    return result.scalars().all()

@router.get("/schools/{school_id}/sections/{section_id}", response_model=SectionInDB)
async def get_section(
    section_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    return await get_school_object(db, Section, section_id, school.id, "Section")

@router.put("/schools/{school_id}/sections/{section_id}", response_model=SectionInDB)
async def update_section(
    section_data: SectionUpdate,
    section_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db)

    section = await get_school_object(db, Section, section_id, school.id, "Section")

    for key, value in section_data.model_dump(exclude_unset=True).items():
        setattr(section, key, value)

    await db.commit()
    await db.refresh(section)

    return section

@router.delete("/schools/{school_id}/sections/{section_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_section(
    section_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Delete a section. Sections that still have classes cannot be deleted.
    """
    await validate_admin_access(current_user, db)

    section = await get_school_object(db, Section, section_id, school.id, "Section")

    result = await db.execute(select(func.count(Class.id)).where(Class.section_id == section.id))
    if result.scalar():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete a section that still has classes"
        )

    await db.execute(delete(Section).where(Section.id == section.id))
    await db.commit()

    return None

@router.get("/schools/{school_id}/sections/{section_id}/statistics", response_model=SectionStatistics)
async def get_section_statistics(
    section_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    """
    Headline counts for one section, including its assigned staff per role.
    """
    section = await get_school_object(db, Section, section_id, school.id, "Section")

    classes = await db.execute(select(func.count(Class.id)).where(Class.section_id == section.id))
    students = await db.execute(
        select(func.count(SectionStudent.id)).where(SectionStudent.section_id == section.id)
    )
    sessions = await db.execute(
        select(func.count(AcademicSession.id)).where(
            and_(AcademicSession.section_id == section.id, AcademicSession.is_active == True)
        )
    )
    roles = await db.execute(
        select(Role.name, func.count(SectionUser.id))
        .join(User, SectionUser.user_id == User.id)
        .join(Role, User.role_id == Role.id)
        .where(SectionUser.section_id == section.id)
        .group_by(Role.name)
    )
    users_by_role = {name: total for name, total in roles.all()}

    return {
        "section_id": section.id,
        "classes": classes.scalar() or 0,
        "students": students.scalar() or 0,
        "users": sum(users_by_role.values()),
        "users_by_role": users_by_role,
        "active_sessions": sessions.scalar() or 0,
    }

@router.post("/schools/{school_id}/sections/{section_id}/assign-users", response_model=SectionUsers)
async def assign_section_users(
    assignment: SectionUsersAssign,
    section_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Replace the staff assigned to a section with the given users.
    """
    await validate_admin_access(current_user, db)

    section = await get_school_object(db, Section, section_id, school.id, "Section")
    users = await get_school_objects(db, User, assignment.user_ids, school.id, "User")

    await db.execute(delete(SectionUser).where(SectionUser.section_id == section.id))
    db.add_all([SectionUser(section_id=section.id, user_id=user.id) for user in users])
    await db.commit()

    logger.info(f"Section {section.id} assigned {len(users)} user(s) by user {current_user.id}")
    return {"section_id": section.id, "user_ids": sorted(user.id for user in users)}

# Class endpoints
async def _check_section(db: AsyncSession, section_id: int, school_id: int) -> None:
    await get_school_object(db, Section, section_id, school_id, "Section")

@router.post("/schools/{school_id}/classes", response_model=ClassInDB, status_code=status.HTTP_201_CREATED)
async def create_class(
    class_data: ClassCreate,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Create a new class inside one of the school's sections.
    """
    await validate_admin_access(current_user, db)
    await _check_section(db, class_data.section_id, school.id)

    db_class = Class(school_id=school.id, **class_data.model_dump())
    db.add(db_class)
    await db.commit()
    await db.refresh(db_class)

    return db_class

@router.get("/schools/{school_id}/classes", response_model=List[ClassInDB])
async def get_classes(
    section_id: Optional[int] = Query(None),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    query = select(Class).where(Class.school_id == school.id)
    if section_id:
        query = query.where(Class.section_id == section_id)

    result = await db.execute(query.order_by(Class.class_name))
    return result.scalars().all()

@router.get("/schools/{school_id}/classes/{class_id}", response_model=ClassInDB)
async def get_class(
    class_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    return await get_school_object(db, Class, class_id, school.id, "Class")

@router.get("/schools/{school_id}/classes/{class_id}/statistics", response_model=ClassStatistics)
async def get_class_statistics(
    class_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    """
    Enrolment and class-level fee totals for one class.

    Only active fees scoped to the class itself are counted; students
    without a recorded gender are grouped as ``unspecified``.
    """
    db_class = await get_school_object(db, Class, class_id, school.id, "Class")

    enrolment = await db.execute(
        select(
            func.count(Student.id),
            func.count(case((Student.is_active == True, Student.id))),
        ).where(Student.class_id == db_class.id)
    )
    total_students, active_students = enrolment.one()

    fees = await db.execute(
        select(func.coalesce(func.sum(Fee.amount), 0), func.count(Fee.id)).where(
            and_(Fee.class_id == db_class.id, Fee.fee_scope == "class", Fee.is_active == True)
        )
    )
    total_fees, fees_count = fees.one()

    genders = await db.execute(
        select(Student.gender, func.count(Student.id))
        .where(Student.class_id == db_class.id)
        .group_by(Student.gender)
    )
    students_by_gender = {}
    for gender, total in genders.all():
        key = gender or "unspecified"
        students_by_gender[key] = students_by_gender.get(key, 0) + total

    return {
        "class_id": db_class.id,
        "total_students": total_students or 0,
        "active_students": active_students or 0,
        "total_fees": float(total_fees or 0),
        "fees_count": fees_count or 0,
        "students_by_gender": students_by_gender,
    }

@router.put("/schools/{school_id}/classes/{class_id}", response_model=ClassInDB)
async def update_class(
    class_data: ClassUpdate,
    class_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db)

    db_class = await get_school_object(db, Class, class_id, school.id, "Class")

    update_data = class_data.model_dump(exclude_unset=True)
    if update_data.get("section_id"):
        await _check_section(db, update_data["section_id"], school.id)

    for key, value in update_data.items():
        setattr(db_class, key, value)

    await db.commit()
    await db.refresh(db_class)

    return db_class

@router.delete("/schools/{school_id}/classes/{class_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_class(
    class_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Delete a class. Classes with enrolled students cannot be deleted.
    """
    await validate_admin_access(current_user, db)

    db_class = await get_school_object(db, Class, class_id, school.id, "Class")

    result = await db.execute(select(func.count(Student.id)).where(Student.class_id == db_class.id))
    if result.scalar():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete a class that still has students"
        )

    await db.execute(delete(Class).where(Class.id == db_class.id))
    await db.commit()

    return None

# Subject endpoints
@router.post("/schools/{school_id}/subjects", response_model=SubjectInDB, status_code=status.HTTP_201_CREATED)
async def create_subject(
    subject_data: SubjectCreate,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db)
    if subject_data.section_id:
        await _check_section(db, subject_data.section_id, school.id)

    db_subject = Subject(school_id=school.id, **subject_data.model_dump())
    db.add(db_subject)
    await db.commit()
    await db.refresh(db_subject)

    return db_subject

@router.get("/schools/{school_id}/subjects", response_model=List[SubjectInDB])
async def get_subjects(
    section_id: Optional[int] = Query(None),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    query = select(Subject).where(Subject.school_id == school.id)
    if section_id:
        query = query.where(Subject.section_id == section_id)

    result = await db.execute(query.order_by(Subject.name))
    return result.scalars().all()

@router.get("/schools/{school_id}/subjects/{subject_id}", response_model=SubjectInDB)
async def get_subject(
    subject_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db)
):
    return await get_school_object(db, Subject, subject_id, school.id, "Subject")

@router.put("/schools/{school_id}/subjects/{subject_id}", response_model=SubjectInDB)
async def update_subject(
    subject_data: SubjectUpdate,
    subject_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db)

    subject = await get_school_object(db, Subject, subject_id, school.id, "Subject")

    update_data = subject_data.model_dump(exclude_unset=True)
    if update_data.get("section_id"):
        await _check_section(db, update_data["section_id"], school.id)

    for key, value in update_data.items():
        setattr(subject, key, value)

    await db.commit()
    await db.refresh(subject)

    return subject

@router.delete("/schools/{school_id}/subjects/{subject_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subject(
    subject_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db)

    subject = await get_school_object(db, Subject, subject_id, school.id, "Subject")

    await db.execute(delete(Subject).where(Subject.id == subject.id))
    await db.commit()

    return None
