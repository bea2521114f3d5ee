from sqlalchemy import Column, Integer, String, ForeignKey, Text, Boolean, DateTime, Date, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from schoolmgmt.database import Base

# Roles
class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)
    description = Column(Text)

    # Relationships
    users = relationship("User", back_populates="role")

# Users (staff and parents)
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)
    registration_id = Column(String(50), unique=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    hashed_password = Column(Text, nullable=False)
    phone = Column(String(50))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    school = relationship("School", back_populates="users")
    role = relationship("Role", back_populates="users", lazy="selectin")
    children = relationship("Student", back_populates="parent", foreign_keys="Student.parent_id")

    @property
    def role_name(self):
        return self.role.name if self.role else None

# Staff assigned to a section
class SectionUser(Base):
    __tablename__ = "section_user"

    id = Column(Integer, primary_key=True, index=True)
    section_id = Column(Integer, ForeignKey("sections.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("section_id", "user_id", name="uix_section_user"),
    )

# Section-Student association (a student can belong to several sections)
class SectionStudent(Base):
    __tablename__ = "section_student"

    id = Column(Integer, primary_key=True, index=True)
    section_id = Column(Integer, ForeignKey("sections.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("section_id", "student_id", name="uix_section_student"),
    )

# Student model
class Student(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    parent_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    student_name = Column(String(255), nullable=False)
    admission_number = Column(String(100), unique=True, index=True)
    date_of_birth = Column(Date)
    gender = Column(String(10))
    address = Column(Text)
    parent_name = Column(String(255))
    parent_phone = Column(String(50), index=True)
    parent_email = Column(String(255))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("gender IN ('male', 'female', 'other')", name="check_student_gender"),
    )

    # Relationships
    school = relationship("School", back_populates="students")
    class_ = relationship("Class", back_populates="students")
    parent = relationship("User", back_populates="children", foreign_keys=[parent_id])
    sections = relationship("Section", secondary="section_student", lazy="selectin")
    transactions = relationship("Transaction", back_populates="student")
    payments = relationship("Payment", back_populates="student")

    @property
    def section_ids(self):
        return [section.id for section in self.sections]
