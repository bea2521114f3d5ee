from datetime import datetime
from typing import Dict, Optional, List
from pydantic import BaseModel, EmailStr, Field, condecimal, field_validator


# School schemas
class SchoolBase(BaseModel):
    name: str = Field(..., max_length=255)
    short_code: str = Field(..., min_length=2, max_length=10, pattern=r"^[A-Za-z0-9]+$")
    address: Optional[str] = None
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    logo_url: Optional[str] = Field(None, max_length=500)
    paystack_subaccount_code: Optional[str] = Field(None, max_length=50)
    platform_fee_percentage: Optional[condecimal(max_digits=5, decimal_places=2, ge=0, le=100)] = None
    settlement_bank: Optional[str] = Field(None, max_length=255)
    account_number: Optional[str] = Field(None, max_length=20)

    @field_validator("short_code")
    @classmethod
    def upper_short_code(cls, v):
        return v.upper() if v else v


class SchoolCreate(SchoolBase):
    pass


class SchoolUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    short_code: Optional[str] = Field(None, min_length=2, max_length=10, pattern=r"^[A-Za-z0-9]+$")
    address: Optional[str] = None
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    logo_url: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None
    paystack_subaccount_code: Optional[str] = Field(None, max_length=50)
    platform_fee_percentage: Optional[condecimal(max_digits=5, decimal_places=2, ge=0, le=100)] = None
    settlement_bank: Optional[str] = Field(None, max_length=255)
    account_number: Optional[str] = Field(None, max_length=20)

    @field_validator("short_code")
    @classmethod
    def upper_short_code(cls, v):
        return v.upper() if v else v


class SchoolInDB(SchoolBase):
    id: int
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SchoolStatistics(BaseModel):
    school_id: int
    sections: int
    classes: int
    students: int
    active_students: int
    staff: int


class SubaccountSetup(BaseModel):
    settlement_bank: str
    account_number: str = Field(..., max_length=20)
    percentage_charge: float = Field(2, ge=0, le=100)


# Section schemas
class SectionBase(BaseModel):
    section_name: str = Field(..., max_length=255)
    description: Optional[str] = None
    is_active: bool = True


class SectionCreate(SectionBase):
    pass


class SectionUpdate(BaseModel):
    section_name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class SectionInDB(SectionBase):
    id: int
    school_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SectionStatistics(BaseModel):
    section_id: int
    classes: int
    students: int
    users: int
    users_by_role: Dict[str, int]
    active_sessions: int


class SectionUsersAssign(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)


class SectionUsers(BaseModel):
    section_id: int
    user_ids: List[int]


class UserSectionsAssign(BaseModel):
    section_ids: List[int] = Field(..., min_length=1)


class UserSections(BaseModel):
    user_id: int
    section_ids: List[int]


# Class schemas
class ClassBase(BaseModel):
    section_id: int
    class_name: str = Field(..., max_length=100)
    description: Optional[str] = None
    form_teacher_id: Optional[int] = None
    capacity: Optional[int] = Field(None, gt=0)
    is_active: bool = True


class ClassCreate(ClassBase):
    pass


class ClassUpdate(BaseModel):
    section_id: Optional[int] = None
    class_name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    form_teacher_id: Optional[int] = None
    capacity: Optional[int] = Field(None, gt=0)
    is_active: Optional[bool] = None


class ClassInDB(ClassBase):
    id: int
    school_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ClassStatistics(BaseModel):
    class_id: int
    total_students: int
    active_students: int
    total_fees: float
    fees_count: int
    students_by_gender: Dict[str, int]


# Subject schemas
class SubjectBase(BaseModel):
    name: str = Field(..., max_length=100)
    code: Optional[str] = Field(None, max_length=20)
    section_id: Optional[int] = None


class SubjectCreate(SubjectBase):
    pass


class SubjectUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    code: Optional[str] = Field(None, max_length=20)
    section_id: Optional[int] = None


class SubjectInDB(SubjectBase):
    id: int
    school_id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
