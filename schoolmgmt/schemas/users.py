from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field
from enum import Enum


class RoleEnum(str, Enum):
    super_admin = "super_admin"
    admin = "admin"
    proprietor = "proprietor"
    principal = "principal"
    bursar = "bursar"
    teacher = "teacher"
    parent = "parent"


# User schemas
class UserBase(BaseModel):
    full_name: str = Field(..., max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=50)


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)
    role: RoleEnum


class UserUpdate(BaseModel):
    full_name: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    is_active: Optional[bool] = None


class UserInDB(UserBase):
    id: int
    school_id: int
    role_id: int
    role_name: Optional[str] = None
    registration_id: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Authentication schemas
class Token(BaseModel):
    access_token: str
    token_type: str
    user_id: int
    role: str
    school_id: int


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class PasswordChange(BaseModel):
    old_password: str
    new_password: str = Field(..., min_length=8)
