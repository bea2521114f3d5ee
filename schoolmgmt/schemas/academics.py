import datetime as dt
from typing import Optional, List
from pydantic import BaseModel, Field, condecimal, model_validator


# Academic Session schemas
class AcademicSessionBase(BaseModel):
    section_id: int
    session_name: str = Field(..., max_length=50)
    start_date: dt.date
    end_date: dt.date
    is_active: bool = True

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class AcademicSessionCreate(AcademicSessionBase):
    pass


class AcademicSessionUpdate(BaseModel):
    session_name: Optional[str] = Field(None, max_length=50)
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    is_active: Optional[bool] = None


class AcademicSessionInDB(AcademicSessionBase):
    id: int
    school_id: int
    created_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


# Term schemas
class TermBase(BaseModel):
    section_id: int
    session_id: int
    term_name: str = Field(..., max_length=50)
    start_date: dt.date
    end_date: dt.date
    is_active: bool = True

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TermCreate(TermBase):
    pass


class TermUpdate(BaseModel):
    term_name: Optional[str] = Field(None, max_length=50)
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    is_active: Optional[bool] = None


class TermInDB(TermBase):
    id: int
    school_id: int
    created_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


# Exam schemas
class ExamBase(BaseModel):
    subject_id: int
    class_id: int
    term_id: Optional[int] = None
    session_id: Optional[int] = None
    title: str = Field(..., max_length=255)
    max_score: int = Field(100, gt=0)
    date: Optional[dt.date] = None


class ExamCreate(ExamBase):
    pass


class ExamInDB(ExamBase):
    id: int
    school_id: int
    created_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


# Exam result schemas
class ExamResultItem(BaseModel):
    student_id: int
    score: condecimal(ge=0, max_digits=5, decimal_places=2)
    remark: Optional[str] = Field(None, max_length=255)


class ExamResultsSubmit(BaseModel):
    results: List[ExamResultItem] = Field(..., min_length=1)

    @model_validator(mode="after")
    def unique_students(self):
        student_ids = [item.student_id for item in self.results]
        if len(student_ids) != len(set(student_ids)):
            raise ValueError("Each student may appear only once")
        return self


class ExamResultInDB(BaseModel):
    id: int
    exam_id: int
    student_id: int
    score: float
    grade: Optional[str] = None
    remark: Optional[str] = None
    graded_by: Optional[int] = None
    updated_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class ExamResultsSaved(BaseModel):
    exam_id: int
    saved: int
    notifications_sent: int
    results: List[ExamResultInDB]


# Report card
class ReportCardEntry(BaseModel):
    exam_id: int
    exam_title: str
    subject: Optional[str] = None
    score: float
    max_score: int
    grade: Optional[str] = None
    remark: Optional[str] = None


class ReportCard(BaseModel):
    student_id: int
    student_name: str
    admission_number: Optional[str] = None
    class_name: Optional[str] = None
    term_id: Optional[int] = None
    session_id: Optional[int] = None
    results: List[ReportCardEntry]
    average_score: Optional[float] = None
    overall_grade: Optional[str] = None


# Section analytics
class ClassAverage(BaseModel):
    class_id: int
    class_name: str
    average_score: float


class SubjectPerformance(BaseModel):
    subject_id: int
    subject_name: str
    average_score: float


class AtRiskStudent(BaseModel):
    student_id: int
    student_name: str
    average_score: float


class AcademicAnalytics(BaseModel):
    section_id: int
    class_averages: List[ClassAverage]
    subject_performance: List[SubjectPerformance]
    at_risk_students: List[AtRiskStudent]
