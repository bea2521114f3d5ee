from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, Text, Numeric, Boolean, JSON, CheckConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from schoolmgmt.database import Base

FEE_SCOPES = ("school", "section", "class", "student")
TRANSACTION_TYPES = ("income", "expense")
TRANSACTION_PAYMENT_METHODS = ("cash", "bank_transfer", "cheque", "mobile_money")
PAYMENT_STATUSES = ("pending", "success", "failed")

# Fee model
class Fee(Base):
    __tablename__ = "fees"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    section_id = Column(Integer, ForeignKey("sections.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(Integer, ForeignKey("academic_sessions.id", ondelete="CASCADE"), nullable=False)
    term_id = Column(Integer, ForeignKey("terms.id", ondelete="CASCADE"), nullable=False)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="SET NULL"))
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), index=True)
    fee_name = Column(String(255), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    fee_scope = Column(String(20), nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("fee_scope IN ('school', 'section', 'class', 'student')", name="check_fee_scope"),
        Index("ix_fees_session_term", "session_id", "term_id"),
    )

    # Relationships
    payments = relationship("Payment", back_populates="fee")

# Manual ledger entry recorded by staff
class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False)
    section_id = Column(Integer, ForeignKey("sections.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(Integer, ForeignKey("academic_sessions.id", ondelete="SET NULL"))
    term_id = Column(Integer, ForeignKey("terms.id", ondelete="SET NULL"))
    student_id = Column(Integer, ForeignKey("students.id", ondelete="SET NULL"), index=True)
    # Set when the entry records a gateway payment that is already counted
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="SET NULL"), unique=True)
    transaction_type = Column(String(10), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(20), nullable=False)
    category = Column(String(255))
    description = Column(Text)
    reference_number = Column(String(100))
    transaction_date = Column(Date, nullable=False, index=True)
    recorded_by = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("transaction_type IN ('income', 'expense')", name="check_transaction_type"),
        CheckConstraint("amount >= 0", name="check_transaction_amount"),
        Index("ix_transactions_school_section", "school_id", "section_id"),
    )

    # Relationships
    student = relationship("Student", back_populates="transactions")

# Gateway-originated payment
class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    # Collected money outlives the fee it was paid against
    fee_id = Column(Integer, ForeignKey("fees.id", ondelete="SET NULL"))
    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(50), default="card", nullable=False)
    reference = Column(String(255), unique=True, nullable=False, index=True)
    status = Column(String(20), default="pending", nullable=False)
    gateway_response = Column(JSON)
    paid_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'success', 'failed')", name="check_payment_status"),
        Index("ix_payments_student_status", "student_id", "status"),
    )

    # Relationships
    student = relationship("Student", back_populates="payments")
    fee = relationship("Fee", back_populates="payments")
