import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import and_, delete

from schoolmgmt.database import get_db
from schoolmgmt.schemas.users import UserCreate, UserUpdate, UserInDB, RoleEnum
from schoolmgmt.schemas.schools import UserSectionsAssign, UserSections
from schoolmgmt.models.users import User, Role, SectionUser
from schoolmgmt.models.schools import School, Section
from schoolmgmt.middleware.authentication import (
    get_current_user, validate_admin_access, get_school_access, get_school_object, get_school_objects, SUPER_ADMIN,
)
from schoolmgmt.services.auth import get_password_hash, get_role
from schoolmgmt.services.identifiers import lock_school, generate_registration_id

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/schools/{school_id}/users", response_model=UserInDB, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Create a staff or parent account for a school (admin only).

    A registration ID of the form ``{SHORT_CODE}-{ROLE}-{NNN}`` is issued while
    the school row is locked, so concurrent creations never share a number.
    """
    await validate_admin_access(current_user, db)

    if user_data.role == RoleEnum.super_admin and current_user.role_name != SUPER_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only a super admin can create super admins"
        )

    result = await db.execute(select(User).where(User.email == user_data.email))
    if result.scalars().first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    role = await get_role(db, user_data.role.value)
    if not role:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Role does not exist"
        )

    try:
        locked_school = await lock_school(db, school.id)
        registration_id = await generate_registration_id(db, locked_school, role.name)

        db_user = User(
            school_id=school.id,
            role=role,
            registration_id=registration_id,
            full_name=user_data.full_name,
            email=user_data.email,
            phone=user_data.phone,
            hashed_password=get_password_hash(user_data.password),
        )
        db.add(db_user)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error(f"Failed to create user for school {school.id}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create user"
        )
    await db.refresh(db_user)

    logger.info(f"User {db_user.id} created with registration ID {registration_id}")
    return db_user

@router.get("/schools/{school_id}/users", response_model=List[UserInDB])
async def get_users(
    role: Optional[RoleEnum] = Query(None),
    is_active: Optional[bool] = Query(None),
    skip: int = 0,
    limit: int = 100,
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    List a school's users, optionally filtered by role.
    """
    await validate_admin_access(current_user, db)

    query = select(User).where(User.school_id == school.id)
    if role:
        query = query.join(Role, User.role_id == Role.id).where(Role.name == role.value)
    if is_active is not None:
        query = query.where(User.is_active == is_active)

    result = await db.execute(query.order_by(User.full_name).offset(skip).limit(limit))
    return result.scalars().all()

@router.get("/schools/{school_id}/users/{user_id}", response_model=UserInDB)
async def get_user(
    user_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if current_user.id != user_id:
        await validate_admin_access(current_user, db)

    return await get_school_object(db, User, user_id, school.id, "User")

@router.put("/schools/{school_id}/users/{user_id}", response_model=UserInDB)
async def update_user(
    user_data: UserUpdate,
    user_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Update a user. Users may edit their own profile; only admins may change
    someone else's or toggle ``is_active``.
    """
    update_data = user_data.model_dump(exclude_unset=True)
    if current_user.id != user_id or "is_active" in update_data:
        await validate_admin_access(current_user, db)

    user = await get_school_object(db, User, user_id, school.id, "User")

    if update_data.get("email") and update_data["email"] != user.email:
        result = await db.execute(
            select(User).where(and_(User.email == update_data["email"], User.id != user.id))
        )
        if result.scalars().first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

    for key, value in update_data.items():
        setattr(user, key, value)

    await db.commit()
    await db.refresh(user)

    return user

@router.delete("/schools/{school_id}/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    await validate_admin_access(current_user, db)

    if current_user.id == user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot delete your own account"
        )

    user = await get_school_object(db, User, user_id, school.id, "User")

    await db.execute(delete(User).where(User.id == user.id))
    await db.commit()

    logger.info(f"User {user.id} deleted by user {current_user.id}")
    return None

@router.post("/schools/{school_id}/users/{user_id}/assign-sections", response_model=UserSections)
async def assign_user_sections(
    assignment: UserSectionsAssign,
    user_id: int = Path(..., gt=0),
    school: School = Depends(get_school_access),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Replace the sections a staff member is assigned to.
    """
    await validate_admin_access(current_user, db)

    user = await get_school_object(db, User, user_id, school.id, "User")
    sections = await get_school_objects(db, Section, assignment.section_ids, school.id, "Section")

    await db.execute(delete(SectionUser).where(SectionUser.user_id == user.id))
    db.add_all([SectionUser(section_id=section.id, user_id=user.id) for section in sections])
    await db.commit()

    logger.info(f"User {user.id} assigned to {len(sections)} section(s) by user {current_user.id}")
    return {"user_id": user.id, "section_ids": sorted(section.id for section in sections)}
