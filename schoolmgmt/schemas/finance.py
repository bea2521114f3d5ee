import datetime as dt
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, EmailStr, Field, condecimal, model_validator
from enum import Enum


class FeeScopeEnum(str, Enum):
    school = "school"
    section = "section"
    class_ = "class"
    student = "student"


class TransactionTypeEnum(str, Enum):
    income = "income"
    expense = "expense"


class PaymentMethodEnum(str, Enum):
    cash = "cash"
    bank_transfer = "bank_transfer"
    cheque = "cheque"
    mobile_money = "mobile_money"


Money = condecimal(ge=0, max_digits=12, decimal_places=2)


# Fee schemas
class FeeBase(BaseModel):
    section_id: int
    session_id: int
    term_id: int
    fee_name: str = Field(..., max_length=255)
    amount: Money
    fee_scope: FeeScopeEnum
    class_id: Optional[int] = None
    student_id: Optional[int] = None
    description: Optional[str] = None
    is_active: bool = True

    class Config:
        use_enum_values = True

    @model_validator(mode="after")
    def check_scope_target(self):
        if self.fee_scope == FeeScopeEnum.class_ and not self.class_id:
            raise ValueError("class_id is required for class-scoped fees")
        if self.fee_scope == FeeScopeEnum.student and not self.student_id:
            raise ValueError("student_id is required for student-scoped fees")
        return self


class FeeCreate(FeeBase):
    pass


class FeeUpdate(BaseModel):
    fee_name: Optional[str] = Field(None, max_length=255)
    amount: Optional[Money] = None
    fee_scope: Optional[FeeScopeEnum] = None
    class_id: Optional[int] = None
    student_id: Optional[int] = None
    session_id: Optional[int] = None
    term_id: Optional[int] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None

    class Config:
        use_enum_values = True


class FeeInDB(BaseModel):
    id: int
    school_id: int
    section_id: int
    session_id: int
    term_id: int
    fee_name: str
    amount: float
    fee_scope: FeeScopeEnum
    class_id: Optional[int] = None
    student_id: Optional[int] = None
    description: Optional[str] = None
    is_active: bool
    created_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class FeeScopeTotal(BaseModel):
    fee_scope: FeeScopeEnum
    count: int
    total: float


class FeesSummary(BaseModel):
    total_fees: float
    fee_count: int
    by_scope: List[FeeScopeTotal]


# Transaction schemas
class TransactionBase(BaseModel):
    section_id: int
    session_id: Optional[int] = None
    term_id: Optional[int] = None
    student_id: Optional[int] = None
    transaction_type: TransactionTypeEnum
    amount: Money
    payment_method: PaymentMethodEnum
    category: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    reference_number: Optional[str] = Field(None, max_length=100)
    transaction_date: dt.date

    class Config:
        use_enum_values = True


class TransactionCreate(TransactionBase):
    payment_id: Optional[int] = None


class TransactionUpdate(BaseModel):
    student_id: Optional[int] = None
    transaction_type: Optional[TransactionTypeEnum] = None
    amount: Optional[Money] = None
    payment_method: Optional[PaymentMethodEnum] = None
    category: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    reference_number: Optional[str] = Field(None, max_length=100)
    transaction_date: Optional[dt.date] = None

    class Config:
        use_enum_values = True


class TransactionInDB(BaseModel):
    id: int
    school_id: int
    section_id: int
    session_id: Optional[int] = None
    term_id: Optional[int] = None
    student_id: Optional[int] = None
    payment_id: Optional[int] = None
    transaction_type: TransactionTypeEnum
    amount: float
    payment_method: str
    category: Optional[str] = None
    description: Optional[str] = None
    reference_number: Optional[str] = None
    transaction_date: dt.date
    recorded_by: int
    created_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class MethodTotal(BaseModel):
    payment_method: str
    total: float


class CategoryTotal(BaseModel):
    category: Optional[str] = None
    total: float


class TransactionDashboardStats(BaseModel):
    total_income: float
    total_expenses: float
    balance: float
    cash_in_hand: float
    bank_balance: float
    income_count: int
    expense_count: int
    income_by_method: List[MethodTotal]
    expense_by_category: List[CategoryTotal]
    recent_transactions: List[TransactionInDB]


class MonthlySummary(BaseModel):
    month: int
    month_name: str
    income: float
    expenses: float
    balance: float


class MonthlyReport(BaseModel):
    year: int
    monthly_data: List[MonthlySummary]
    total_income: float
    total_expenses: float
    total_balance: float


class ReportPeriod(BaseModel):
    start_date: dt.date
    end_date: dt.date


class TransactionReport(BaseModel):
    period: ReportPeriod
    total_income: float
    total_expenses: float
    net_balance: float
    transaction_count: int
    income_count: int
    expense_count: int
    transactions: List[TransactionInDB]


# Gateway payment schemas
class PaymentInDB(BaseModel):
    id: int
    student_id: int
    fee_id: Optional[int] = None
    amount: float
    payment_method: str
    reference: str
    status: str
    paid_at: Optional[dt.datetime] = None
    created_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class PaystackPaymentInit(BaseModel):
    student_id: int
    fee_id: int
    amount: condecimal(gt=0, max_digits=12, decimal_places=2)
    email: EmailStr
    callback_url: Optional[str] = None


class PaystackPaymentResponse(BaseModel):
    payment_id: int
    authorization_url: str
    access_code: str
    reference: str


class PaymentVerification(BaseModel):
    reference: str


class PaymentVerificationResponse(BaseModel):
    status: str
    message: str
    payment: PaymentInDB


# Balances and reports
class LastPayment(BaseModel):
    source: str
    id: int
    amount: float
    date: Any
    reference: Optional[str] = None
    payment_method: Optional[str] = None


class PaymentSummary(BaseModel):
    student_id: int
    total_fees: float
    total_paid: float
    balance: float
    outstanding: float
    payment_count: int
    last_payment: Optional[LastPayment] = None


class DebtorEntry(BaseModel):
    student_id: int
    student_name: str
    admission_number: Optional[str] = None
    section_name: Optional[str] = None
    class_name: Optional[str] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    total_fees: float
    total_paid: float
    balance: float


class FeeCollection(BaseModel):
    collected: float
    outstanding: float
    expected: float


class FinancialMonth(BaseModel):
    month: int
    month_name: str
    income: float
    expenses: float


class FinancialSummary(BaseModel):
    year: int
    months: List[FinancialMonth]
    total_income: float
    total_expenses: float


class PaymentMethodTotal(BaseModel):
    payment_method: str
    count: int
    total: float
