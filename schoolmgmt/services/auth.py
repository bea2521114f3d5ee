from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from jose import jwt
from passlib.context import CryptContext
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from schoolmgmt.config import settings
from schoolmgmt.models.users import User, Role

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Built-in roles and what they may do
ROLE_DESCRIPTIONS = {
    "super_admin": "Platform operator with access to every school",
    "admin": "School administrator",
    "proprietor": "School owner",
    "principal": "Head of school",
    "bursar": "Manages fees, transactions and payments",
    "teacher": "Records attendance and exam results",
    "parent": "Sees their own children's records",
}

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

async def authenticate_user(email: str, password: str, db: AsyncSession) -> Optional[User]:
    """
    Look a user up by email (case-insensitively) and check the password.

    Inactive accounts never authenticate.
    """
    result = await db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    user = result.scalars().first()

    if not user or not user.is_active:
        return None

    if not verify_password(password, user.hashed_password):
        return None

    return user

def token_claims(user: User) -> Dict[str, Any]:
    """Claims carried by a user's access token; ``sub`` is what authorizes."""
    return {"sub": str(user.id), "role": user.role_name, "school_id": user.school_id}

def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode["exp"] = expire

    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

async def get_role(db: AsyncSession, name: str) -> Optional[Role]:
    result = await db.execute(select(Role).where(Role.name == name))
    return result.scalars().first()

async def seed_roles(db: AsyncSession) -> int:
    """Create any missing built-in roles. Returns how many were added."""
    result = await db.execute(select(Role.name))
    existing = set(result.scalars().all())

    missing = [
        Role(name=name, description=description)
        for name, description in ROLE_DESCRIPTIONS.items()
        if name not in existing
    ]
    if missing:
        db.add_all(missing)
        await db.commit()

    return len(missing)
