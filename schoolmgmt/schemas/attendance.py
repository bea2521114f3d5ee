import datetime as dt
from typing import Optional, List
from pydantic import BaseModel, Field, model_validator
from enum import Enum


class AttendanceStatusEnum(str, Enum):
    present = "present"
    absent = "absent"
    late = "late"
    excused = "excused"


class AttendanceMark(BaseModel):
    student_id: int
    status: AttendanceStatusEnum
    remark: Optional[str] = Field(None, max_length=255)

    class Config:
        use_enum_values = True


class AttendanceBulkCreate(BaseModel):
    class_id: int
    date: dt.date
    attendance: List[AttendanceMark] = Field(..., min_length=1)

    @model_validator(mode="after")
    def unique_students(self):
        student_ids = [mark.student_id for mark in self.attendance]
        if len(student_ids) != len(set(student_ids)):
            raise ValueError("Each student may appear only once")
        return self


class AttendanceInDB(BaseModel):
    id: int
    school_id: int
    class_id: int
    student_id: int
    date: dt.date
    status: AttendanceStatusEnum
    remark: Optional[str] = None
    recorded_by: int
    updated_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class AttendanceSaved(BaseModel):
    class_id: int
    date: dt.date
    saved: int
    records: List[AttendanceInDB]


class StatusCounts(BaseModel):
    present: int = 0
    absent: int = 0
    late: int = 0
    excused: int = 0
    total: int = 0


class ClassAttendanceSummary(StatusCounts):
    class_id: int
    class_name: str


class SectionAttendanceSummary(BaseModel):
    section_id: int
    date: dt.date
    totals: StatusCounts
    classes: List[ClassAttendanceSummary]
