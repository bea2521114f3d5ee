from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, CheckConstraint, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from schoolmgmt.database import Base

ATTENDANCE_STATUSES = ("present", "absent", "late", "excused")

# Attendance model
class Attendance(Base):
    __tablename__ = "attendances"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    status = Column(String(20), default="present", nullable=False)
    remark = Column(String(255))
    recorded_by = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # One attendance record per student per day
    __table_args__ = (
        UniqueConstraint("student_id", "date", name="uix_attendance_student_date"),
        CheckConstraint("status IN ('present', 'absent', 'late', 'excused')", name="check_attendance_status"),
        Index("ix_attendances_class_date", "class_id", "date"),
    )

    # Relationships
    student = relationship("Student")
