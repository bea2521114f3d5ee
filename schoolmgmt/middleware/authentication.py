from typing import List

from fastapi import Depends, HTTPException, status, Path
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from schoolmgmt.config import settings
from schoolmgmt.database import get_db
from schoolmgmt.models.users import User
from schoolmgmt.models.schools import School

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

SUPER_ADMIN = "super_admin"
ADMIN_ROLES = ["super_admin", "admin", "proprietor", "principal"]
FINANCE_ROLES = ADMIN_ROLES + ["bursar"]
ACADEMIC_ROLES = ADMIN_ROLES + ["teacher"]

async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Get the current authenticated user from the provided JWT token.

    Args:
        token: The JWT token
        db: Database session

    Returns:
        The authenticated user

    Raises:
        HTTPException: If token is invalid, expired or user not found
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        # Signature and expiry are both checked by jose
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )

        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception

    except JWTError:
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == int(user_id)))
    user = result.scalars().first()

    if user is None or not user.is_active:
        raise credentials_exception

    return user

async def validate_admin_access(user: User, db: AsyncSession, allowed_roles: List[str] = None) -> None:
    """
    Validate that a user holds one of the administrative roles.

    Raises:
        HTTPException: If user doesn't have required role
    """
    allowed_roles = allowed_roles or ADMIN_ROLES

    if not user.role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User role not found"
        )

    if user.role.name not in allowed_roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This action requires one of the roles: " + ", ".join(allowed_roles)
        )

def ensure_same_school(user: User, school_id: int, detail: str = "Unauthorized access to this school.") -> None:
    """Fail closed unless the user belongs to the school (super admins excepted)."""
    if user.role_name != SUPER_ADMIN and user.school_id != school_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )

async def get_school_access(
    school_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> School:
    """
    Resolve the tenant from the path and check the user belongs to it.
    There is no default school: an unknown school is a 404, another school's is a 403.
    """
    result = await db.execute(select(School).where(School.id == school_id))
    school = result.scalars().first()

    if not school:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="School not found"
        )

    ensure_same_school(current_user, school.id)

    return school

async def get_school_object(db: AsyncSession, model, object_id: int, school_id: int, label: str):
    """Load a school-owned row; rows belonging to another school are reported as missing."""
    result = await db.execute(
        select(model).where(model.id == object_id, model.school_id == school_id)
    )
    obj = result.scalars().first()

    if not obj:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{label} not found"
        )

    return obj

async def get_school_objects(db: AsyncSession, model, object_ids: List[int], school_id: int, label: str):
    """Load several school-owned rows at once, failing with the ids that are missing."""
    wanted = list(dict.fromkeys(object_ids))
    result = await db.execute(
        select(model).where(model.id.in_(wanted), model.school_id == school_id)
    )
    objects = result.scalars().all()

    missing = sorted(set(wanted) - {obj.id for obj in objects})
    if missing:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{label} not found: {', '.join(str(i) for i in missing)}"
        )

    return objects
