import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import desc
from sqlalchemy.orm import selectinload

from schoolmgmt.config import settings
from schoolmgmt.database import get_db
from schoolmgmt.schemas.finance import (
    PaymentInDB, PaystackPaymentInit, PaystackPaymentResponse,
    PaymentVerification, PaymentVerificationResponse,
)
from schoolmgmt.models.finance import Fee, Payment
from schoolmgmt.models.schools import School
from schoolmgmt.models.users import User, Student
from schoolmgmt.middleware.authentication import get_current_user, ensure_same_school, SUPER_ADMIN
from schoolmgmt.api.students import ensure_can_view_student
from schoolmgmt.services.fees import StudentContext, fee_applies
from schoolmgmt.services.notifications import payment_received_notification, send_notifications
from schoolmgmt.services.payments import (
    PaymentGatewayError, initialize_payment, verify_payment, fetch_banks,
)

logger = logging.getLogger(__name__)

router = APIRouter()

def new_reference() -> str:
    return f"PAY_{uuid.uuid4().hex[:20].upper()}"

def parse_paid_at(value: Optional[str]) -> datetime:
    if value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable paid_at from gateway: {value}")
    return datetime.now(timezone.utc)

async def _load_student(db: AsyncSession, student_id: int, current_user: User) -> Student:
    result = await db.execute(
        select(Student).where(Student.id == student_id).options(selectinload(Student.sections))
    )
    student = result.scalars().first()

    if not student:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Student not found"
        )

    ensure_same_school(current_user, student.school_id, "Not authorized to make payments for this student")
    ensure_can_view_student(current_user, student)

    return student

@router.get("/payments", response_model=List[PaymentInDB])
async def get_payments(
    student_id: Optional[int] = Query(None),
    payment_status: Optional[str] = Query(None, alias="status"),
    skip: int = 0,
    limit: int = 20,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Gateway payment history, newest first.

    Staff see their own school's payments, parents their children's and super
    admins everything.
    """
    query = select(Payment).join(Student, Payment.student_id == Student.id)

    if current_user.role_name != SUPER_ADMIN:
        query = query.where(Student.school_id == current_user.school_id)
    if current_user.role_name == "parent":
        query = query.where(Student.parent_id == current_user.id)

    if student_id:
        query = query.where(Payment.student_id == student_id)
    if payment_status:
        query = query.where(Payment.status == payment_status)

    query = query.order_by(desc(Payment.created_at), desc(Payment.id)).offset(skip).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()

@router.post("/payments/initialize", response_model=PaystackPaymentResponse)
async def initialize_paystack_payment(
    payment_data: PaystackPaymentInit,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Start a gateway payment of a fee for a student.

    A ``pending`` payment is stored first under a reference we generate; the
    gateway then returns the checkout URL. When the school has a settlement
    subaccount the charge is split to it. If the gateway call fails the
    payment simply stays pending.
    """
    student = await _load_student(db, payment_data.student_id, current_user)

    fee_result = await db.execute(select(Fee).where(Fee.id == payment_data.fee_id))
    fee = fee_result.scalars().first()
    if not fee or fee.school_id != student.school_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Fee not found"
        )
    if not fee_applies(fee, StudentContext.from_student(student)):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This fee does not apply to the student"
        )

    school_result = await db.execute(select(School).where(School.id == student.school_id))
    school = school_result.scalars().first()

    payment = Payment(
        student_id=student.id,
        fee_id=fee.id,
        amount=payment_data.amount,
        payment_method="paystack",
        reference=new_reference(),
        status="pending",
    )
    db.add(payment)
    await db.commit()
    await db.refresh(payment)

    try:
        gateway_data = await initialize_payment(
            email=payment_data.email,
            amount=payment_data.amount,
            reference=payment.reference,
            callback_url=payment_data.callback_url or settings.PAYMENT_CALLBACK_URL,
            metadata={
                "student_id": student.id,
                "fee_id": fee.id,
                "payment_id": payment.id,
                "fee_name": fee.fee_name,
            },
            subaccount=school.paystack_subaccount_code if school else None,
        )
    except PaymentGatewayError as e:
        logger.warning(f"Payment {payment.reference} left pending: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)

    logger.info(f"Payment {payment.reference} initialized for student {student.id}, fee {fee.id}")
    return {
        "payment_id": payment.id,
        "authorization_url": gateway_data["authorization_url"],
        "access_code": gateway_data["access_code"],
        "reference": payment.reference,
    }

@router.post("/payments/verify", response_model=PaymentVerificationResponse)
async def verify_paystack_payment(
    verification_data: PaymentVerification,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Confirm a payment with the gateway and record the outcome.

    Verifying is idempotent: a payment already marked ``success`` is returned
    as is without asking the gateway again, and a reference never produces
    more than one payment. The amount recorded is the amount the gateway
    charged, even when it differs from the amount requested. A failed charge
    marks the payment ``failed``; any other unfinished state leaves it
    pending. Both answer 400 with the gateway's message.
    """
    reference = verification_data.reference

    result = await db.execute(
        select(Payment).where(Payment.reference == reference).with_for_update()
    )
    payment = result.scalars().first()

    if payment:
        await _load_student(db, payment.student_id, current_user)
        if payment.status == "success":
            return {
                "status": "success",
                "message": "Payment already verified",
                "payment": payment,
            }

    try:
        verification = await verify_payment(reference)
    except PaymentGatewayError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    if verification["status"] != "success":
        if payment and verification["status"] == "failed":
            payment.status = "failed"
            payment.gateway_response = verification["gateway_response"]
            await db.commit()
        else:
            await db.rollback()
        logger.info(f"Payment {reference} not successful: {verification['status']}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Payment verification failed: {verification['message'] or verification['status']}"
        )

    if payment is None:
        # Checkout was started by the client, so the payment is only known from the gateway metadata
        metadata = verification["metadata"] or {}
        student_id = metadata.get("student_id")
        fee_id = metadata.get("fee_id")
        if not student_id or not fee_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing payment metadata"
            )
        student = await _load_student(db, int(student_id), current_user)
        fee_result = await db.execute(select(Fee).where(Fee.id == int(fee_id)))
        fee = fee_result.scalars().first()
        if not fee or fee.school_id != student.school_id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Fee not found"
            )
        payment = Payment(
            student_id=student.id,
            fee_id=fee.id,
            amount=verification["amount"],
            reference=reference,
        )
        db.add(payment)
    elif verification["amount"] != payment.amount:
        # Only what the gateway actually charged is credited
        logger.warning(
            f"Payment {reference}: gateway charged {verification['amount']}, expected {payment.amount}"
        )
        payment.amount = verification["amount"]

    payment.status = "success"
    payment.payment_method = verification["channel"] or payment.payment_method or "paystack"
    payment.gateway_response = verification["gateway_response"]
    payment.paid_at = parse_paid_at(verification["paid_at"])

    try:
        await db.commit()
    except IntegrityError:
        # Another request recorded the same reference first
        await db.rollback()
        result = await db.execute(select(Payment).where(Payment.reference == reference))
        payment = result.scalars().first()
        return {
            "status": "success",
            "message": "Payment already verified",
            "payment": payment,
        }
    await db.refresh(payment)

    response = PaymentVerificationResponse(
        status="success",
        message="Payment verified successfully",
        payment=PaymentInDB.model_validate(payment),
    )

    student_result = await db.execute(select(Student).where(Student.id == payment.student_id))
    student = student_result.scalars().first()
    if student and student.parent_id:
        await send_notifications(db, [
            payment_received_notification(student, payment.amount, payment_id=payment.id, reference=reference)
        ])

    logger.info(f"Payment {reference} verified ({response.payment.amount})")
    return response

@router.get("/payments/banks")
async def get_banks(current_user: User = Depends(get_current_user)):
    """
    Banks a school can use for its settlement subaccount.
    """
    try:
        return await fetch_banks()
    except PaymentGatewayError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
