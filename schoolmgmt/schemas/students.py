from typing import List, Optional
from pydantic import BaseModel, EmailStr, Field
from datetime import date, datetime
from enum import Enum


class GenderEnum(str, Enum):
    male = "male"
    female = "female"
    other = "other"


class StudentBase(BaseModel):
    student_name: str = Field(..., max_length=255)
    class_id: int
    parent_id: Optional[int] = None
    date_of_birth: Optional[date] = None
    gender: Optional[GenderEnum] = None
    address: Optional[str] = None
    parent_name: Optional[str] = Field(None, max_length=255)
    parent_phone: Optional[str] = Field(None, max_length=50)
    parent_email: Optional[EmailStr] = None
    is_active: bool = True

    class Config:
        use_enum_values = True


class StudentCreate(StudentBase):
    section_ids: List[int] = Field(..., min_length=1)
    admission_number: Optional[str] = Field(None, max_length=100)


class StudentUpdate(BaseModel):
    student_name: Optional[str] = Field(None, max_length=255)
    class_id: Optional[int] = None
    parent_id: Optional[int] = None
    section_ids: Optional[List[int]] = None
    date_of_birth: Optional[date] = None
    gender: Optional[GenderEnum] = None
    address: Optional[str] = None
    parent_name: Optional[str] = Field(None, max_length=255)
    parent_phone: Optional[str] = Field(None, max_length=50)
    parent_email: Optional[EmailStr] = None
    is_active: Optional[bool] = None

    class Config:
        use_enum_values = True


class StudentResponse(StudentBase):
    id: int
    school_id: int
    admission_number: Optional[str] = None
    section_ids: List[int] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Bulk import: rows are validated one by one so a bad row does not sink the batch
class StudentImportRow(BaseModel):
    student_name: Optional[str] = None
    section_id: Optional[int] = None
    class_id: Optional[int] = None
    admission_number: Optional[str] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_email: Optional[str] = None
    gender: Optional[str] = None


class StudentImportRequest(BaseModel):
    students: List[StudentImportRow] = Field(..., min_length=1)


class StudentImportError(BaseModel):
    row: int
    errors: List[str]


class StudentImportResult(BaseModel):
    success: bool
    imported: int
    failed: int
    students: List[StudentResponse]
    errors: List[StudentImportError]
