from decimal import Decimal

import pytest
from sqlalchemy.future import select

from schoolmgmt.api import payments as payments_api
from schoolmgmt.database import AsyncSessionLocal
from schoolmgmt.models.finance import Payment
from schoolmgmt.services.payments import PaymentGatewayError


def gateway_result(reference, status="success", amount="20000", **extra):
    return {
        "status": status,
        "amount": Decimal(amount),
        "reference": reference,
        "channel": "card",
        "paid_at": "2025-03-10T09:30:00.000Z",
        "metadata": extra.pop("metadata", {}),
        "gateway_response": {"status": status, "reference": reference},
        "message": extra.pop("message", "Approved"),
    }


@pytest.fixture
async def billed_student(factory, school, section, klass, term):
    parent = await factory.user(school, "parent")
    student = await factory.student(school, klass, [section], parent=parent)
    fee = await factory.fee(school, section, term, 50000)
    return parent, student, fee


async def load_payment(reference):
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(Payment).where(Payment.reference == reference))
        return result.scalars().first()


async def test_initialize_creates_pending_payment(client, monkeypatch, school, billed_student, headers_for):
    parent, student, fee = billed_student
    calls = []

    async def fake_initialize(**kwargs):
        calls.append(kwargs)
        return {
            "authorization_url": "https://checkout.paystack.com/abc",
            "access_code": "abc",
            "reference": kwargs["reference"],
        }

    monkeypatch.setattr(payments_api, "initialize_payment", fake_initialize)

    response = await client.post(
        "/api/payments/initialize",
        json={"student_id": student.id, "fee_id": fee.id, "amount": "20000", "email": "parent@example.com"},
        headers=headers_for(parent),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["reference"].startswith("PAY_")
    assert body["authorization_url"] == "https://checkout.paystack.com/abc"
    assert calls[0]["metadata"]["student_id"] == student.id

    payment = await load_payment(body["reference"])
    assert payment.status == "pending"
    assert payment.amount == Decimal("20000")


async def test_initialize_failure_leaves_payment_pending(client, monkeypatch, billed_student, headers_for):
    parent, student, fee = billed_student

    async def failing_initialize(**kwargs):
        raise PaymentGatewayError("Invalid email")

    monkeypatch.setattr(payments_api, "initialize_payment", failing_initialize)

    response = await client.post(
        "/api/payments/initialize",
        json={"student_id": student.id, "fee_id": fee.id, "amount": "20000", "email": "parent@example.com"},
        headers=headers_for(parent),
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid email"

    async with AsyncSessionLocal() as session:
        statuses = (await session.execute(select(Payment.status))).scalars().all()
    assert statuses == ["pending"]


async def test_initialize_rejects_fee_that_does_not_apply(client, factory, school, section, klass, term, billed_student, headers_for):
    parent, student, _ = billed_student
    other_class = await factory.klass(school, section, "Primary 2")
    other_fee = await factory.fee(school, section, term, 5000, scope="class", class_id=other_class.id)

    response = await client.post(
        "/api/payments/initialize",
        json={"student_id": student.id, "fee_id": other_fee.id, "amount": "5000", "email": "parent@example.com"},
        headers=headers_for(parent),
    )

    assert response.status_code == 400


async def test_verify_is_idempotent(client, monkeypatch, factory, school, admin_headers, billed_student, headers_for):
    parent, student, fee = billed_student
    await factory.payment(student, fee, 20000, status="pending", reference="PAY_VERIFY1")
    calls = []

    async def fake_verify(reference):
        calls.append(reference)
        return gateway_result(reference)

    monkeypatch.setattr(payments_api, "verify_payment", fake_verify)

    first = await client.post("/api/payments/verify", json={"reference": "PAY_VERIFY1"}, headers=headers_for(parent))
    assert first.status_code == 200
    assert first.json()["message"] == "Payment verified successfully"
    assert first.json()["payment"]["status"] == "success"

    second = await client.post("/api/payments/verify", json={"reference": "PAY_VERIFY1"}, headers=headers_for(parent))
    assert second.status_code == 200
    assert second.json()["message"] == "Payment already verified"
    assert calls == ["PAY_VERIFY1"]

    summary = await client.get(
        f"/api/schools/{school.id}/students/{student.id}/payment-summary", headers=admin_headers
    )
    assert summary.json()["total_paid"] == 20000
    assert summary.json()["payment_count"] == 1

    notifications = await client.get("/api/notifications", headers=headers_for(parent))
    assert [n["type"] for n in notifications.json()] == ["payment_received"]


async def test_verify_creates_payment_from_metadata(client, monkeypatch, billed_student, headers_for):
    parent, student, fee = billed_student

    async def fake_verify(reference):
        return gateway_result(reference, amount="15000", metadata={"student_id": student.id, "fee_id": fee.id})

    monkeypatch.setattr(payments_api, "verify_payment", fake_verify)

    response = await client.post("/api/payments/verify", json={"reference": "PAY_CLIENT1"}, headers=headers_for(parent))

    assert response.status_code == 200
    payment = await load_payment("PAY_CLIENT1")
    assert payment.status == "success"
    assert payment.amount == Decimal("15000")
    assert payment.payment_method == "card"


async def test_failed_charge_marks_payment_failed(client, monkeypatch, factory, billed_student, headers_for):
    parent, student, fee = billed_student
    await factory.payment(student, fee, 20000, status="pending", reference="PAY_DECLINED")

    async def fake_verify(reference):
        return gateway_result(reference, status="failed", message="Declined")

    monkeypatch.setattr(payments_api, "verify_payment", fake_verify)

    response = await client.post("/api/payments/verify", json={"reference": "PAY_DECLINED"}, headers=headers_for(parent))

    assert response.status_code == 400
    assert "Declined" in response.json()["detail"]
    assert (await load_payment("PAY_DECLINED")).status == "failed"


async def test_abandoned_charge_stays_pending(client, monkeypatch, factory, billed_student, headers_for):
    parent, student, fee = billed_student
    await factory.payment(student, fee, 20000, status="pending", reference="PAY_ABANDONED")

    async def fake_verify(reference):
        return gateway_result(reference, status="abandoned")

    monkeypatch.setattr(payments_api, "verify_payment", fake_verify)

    response = await client.post("/api/payments/verify", json={"reference": "PAY_ABANDONED"}, headers=headers_for(parent))

    assert response.status_code == 400
    assert (await load_payment("PAY_ABANDONED")).status == "pending"


async def test_payment_history_is_limited_to_own_children(client, factory, school, section, klass, billed_student, headers_for):
    parent, student, fee = billed_student
    other_child = await factory.student(school, klass, [section])
    mine = await factory.payment(student, fee, 1000)
    await factory.payment(other_child, fee, 2000)

    response = await client.get("/api/payments", headers=headers_for(parent))

    assert response.status_code == 200
    assert [p["id"] for p in response.json()] == [mine.id]


async def test_verify_credits_the_amount_actually_charged(client, monkeypatch, factory, school, admin_headers, billed_student, headers_for):
    parent, student, fee = billed_student
    await factory.payment(student, fee, 50000, status="pending", reference="PAY_SHORT")

    async def fake_verify(reference):
        return gateway_result(reference, amount="100")

    monkeypatch.setattr(payments_api, "verify_payment", fake_verify)

    response = await client.post("/api/payments/verify", json={"reference": "PAY_SHORT"}, headers=headers_for(parent))

    assert response.status_code == 200
    assert response.json()["payment"]["amount"] == 100
    assert (await load_payment("PAY_SHORT")).amount == Decimal("100")

    summary = await client.get(
        f"/api/schools/{school.id}/students/{student.id}/payment-summary", headers=admin_headers
    )
    assert summary.json()["total_paid"] == 100
    assert summary.json()["balance"] == 49900
