import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolmgmt.database import get_db
from schoolmgmt.schemas.users import UserInDB, Token, LoginRequest, PasswordChange
from schoolmgmt.models.users import User
from schoolmgmt.services.auth import (
    authenticate_user, create_access_token, get_password_hash, token_claims, verify_password,
)
from schoolmgmt.middleware.authentication import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/auth/login", response_model=Token)
async def login(
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Exchange an email and password for a bearer token.

    The token carries the user's id, role and school. The school is only a
    hint for clients: every tenant route checks it against the database.
    """
    user = await authenticate_user(credentials.email, credentials.password, db)
    if not user:
        logger.info(f"Failed login attempt for {credentials.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return {
        "access_token": create_access_token(token_claims(user)),
        "token_type": "bearer",
        "user_id": user.id,
        "role": user.role_name,
        "school_id": user.school_id,
    }

@router.post("/auth/change-password")
async def change_password(
    password_data: PasswordChange,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    if not verify_password(password_data.old_password, current_user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Incorrect password"
        )
    if password_data.old_password == password_data.new_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="New password must differ from the current one"
        )

    current_user.hashed_password = get_password_hash(password_data.new_password)
    await db.commit()

    logger.info(f"User {current_user.id} changed their password")
    return {"detail": "Password updated successfully"}

@router.get("/auth/me", response_model=UserInDB)
async def read_current_user(current_user: User = Depends(get_current_user)):
    return current_user
