from datetime import date, datetime, timezone


async def test_payment_summary_combines_both_channels(client, factory, school, admin, admin_headers, section, klass, term):
    other_section = await factory.section(school, "Secondary")
    student = await factory.student(school, klass, [section])

    tuition = await factory.fee(school, section, term, 50000)
    await factory.fee(school, section, term, 10000, scope="class", name="Lab", class_id=klass.id)
    await factory.fee(school, other_section, term, 7000, scope="section", name="Boarding")
    await factory.fee(school, section, term, 999, name="Old levy", is_active=False)

    payment = await factory.payment(
        student, tuition, 20000, paid_at=datetime(2025, 3, 10, tzinfo=timezone.utc)
    )
    await factory.payment(student, tuition, 9999, status="pending")
    # Ledger copy of the gateway payment must not count again
    await factory.transaction(
        school, section, admin, 20000, student_id=student.id, category="School Fees", payment_id=payment.id
    )
    await factory.transaction(school, section, admin, 5000, student_id=student.id, category="School Fees")
    await factory.transaction(school, section, admin, 3000, student_id=student.id, category="Donation")
    await factory.transaction(school, section, admin, 4000, transaction_type="expense", student_id=student.id, category="Fees refund")

    response = await client.get(
        f"/api/schools/{school.id}/students/{student.id}/payment-summary", headers=admin_headers
    )

    assert response.status_code == 200
    summary = response.json()
    assert summary["total_fees"] == 60000
    assert summary["total_paid"] == 25000
    assert summary["balance"] == 35000
    assert summary["outstanding"] == 35000
    assert summary["payment_count"] == 2
    assert summary["last_payment"]["source"] == "manual"
    assert summary["last_payment"]["amount"] == 5000


async def test_payment_summary_without_fees_is_zero(client, factory, school, admin_headers, section, klass):
    student = await factory.student(school, klass, [section])

    response = await client.get(
        f"/api/schools/{school.id}/students/{student.id}/payment-summary", headers=admin_headers
    )

    assert response.status_code == 200
    summary = response.json()
    assert summary["total_fees"] == 0
    assert summary["total_paid"] == 0
    assert summary["balance"] == 0
    assert summary["payment_count"] == 0
    assert summary["last_payment"] is None


async def test_parent_cannot_see_another_childs_summary(client, factory, school, section, klass, headers_for):
    parent = await factory.user(school, "parent")
    stranger = await factory.user(school, "parent")
    child = await factory.student(school, klass, [section], parent=parent)

    url = f"/api/schools/{school.id}/students/{child.id}/payment-summary"
    assert (await client.get(url, headers=headers_for(parent))).status_code == 200
    assert (await client.get(url, headers=headers_for(stranger))).status_code == 403


async def test_debtors_and_fee_collection(client, factory, school, admin, admin_headers, section, klass, term):
    boarders = await factory.section(school, "Boarders")
    tuition = await factory.fee(school, section, term, 100000)

    unpaid = await factory.student(school, klass, [section], name="Ada Unpaid", parent_phone="0800")
    half = await factory.student(school, klass, [section, boarders], name="Bola Half")
    full = await factory.student(school, klass, [section], name="Chidi Full")
    over = await factory.student(school, klass, [section], name="Dayo Over")
    await factory.student(school, klass, [section], name="Efe Left", is_active=False)

    await factory.payment(half, tuition, 50000)
    await factory.transaction(school, section, admin, 100000, student_id=full.id, category="Tuition fee")
    await factory.payment(over, tuition, 120000)

    other_school = await factory.school("Other School", "OTH")
    other_section = await factory.section(other_school)
    other_class = await factory.klass(other_school, other_section)
    await factory.student(other_school, other_class, [other_section])

    response = await client.get(f"/api/schools/{school.id}/reports/debtors", headers=admin_headers)
    assert response.status_code == 200
    debtors = response.json()
    assert [(d["student_id"], d["balance"]) for d in debtors] == [(unpaid.id, 100000), (half.id, 50000)]
    assert debtors[0]["class_name"] == "Primary 1"
    assert debtors[0]["parent_phone"] == "0800"

    response = await client.get(
        f"/api/schools/{school.id}/reports/debtors",
        params={"section_id": boarders.id},
        headers=admin_headers,
    )
    assert [(d["student_id"], d["section_name"]) for d in response.json()] == [(half.id, "Boarders")]

    response = await client.get(f"/api/schools/{school.id}/reports/fee-collection", headers=admin_headers)
    assert response.status_code == 200
    # The over-payer's credit does not reduce what others still owe
    assert response.json() == {"collected": 270000, "outstanding": 150000, "expected": 400000}


async def test_class_fee_without_class_is_rejected(client, school, admin_headers, section, term):
    response = await client.post(
        f"/api/schools/{school.id}/fees",
        json={
            "section_id": section.id,
            "session_id": term.session_id,
            "term_id": term.id,
            "fee_name": "Lab",
            "amount": "5000",
            "fee_scope": "class",
        },
        headers=admin_headers,
    )

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    messages = [message for field_messages in body["errors"].values() for message in field_messages]
    assert "class_id is required for class-scoped fees" in messages


async def test_fees_summary_groups_by_scope(client, factory, school, admin_headers, section, klass, term):
    await factory.fee(school, section, term, 50000)
    await factory.fee(school, section, term, 2000, name="PTA")
    await factory.fee(school, section, term, 10000, scope="class", class_id=klass.id)

    response = await client.get(f"/api/schools/{school.id}/fees-summary", headers=admin_headers)

    assert response.status_code == 200
    summary = response.json()
    assert summary["total_fees"] == 62000
    assert summary["fee_count"] == 3
    by_scope = {entry["fee_scope"]: (entry["count"], entry["total"]) for entry in summary["by_scope"]}
    assert by_scope["school"] == (2, 52000)
    assert by_scope["class"] == (1, 10000)


async def test_financial_summary_counts_gateway_money_once(client, factory, school, admin, admin_headers, section, klass, term):
    student = await factory.student(school, klass, [section])
    tuition = await factory.fee(school, section, term, 100000)
    payment = await factory.payment(student, tuition, 20000, paid_at=datetime(2025, 3, 10, tzinfo=timezone.utc))
    await factory.transaction(school, section, admin, 20000, student_id=student.id, category="School Fees", payment_id=payment.id)
    await factory.transaction(school, section, admin, 5000, category="Uniform sales", transaction_date=date(2025, 3, 20))
    await factory.transaction(school, section, admin, 3000, transaction_type="expense", transaction_date=date(2025, 4, 1))

    response = await client.get(
        f"/api/schools/{school.id}/reports/financial-summary", params={"year": 2025}, headers=admin_headers
    )

    assert response.status_code == 200
    summary = response.json()
    assert len(summary["months"]) == 12
    march = summary["months"][2]
    april = summary["months"][3]
    assert (march["month_name"], march["income"], march["expenses"]) == ("March", 25000, 0)
    assert (april["income"], april["expenses"]) == (0, 3000)
    assert summary["total_income"] == 25000
    assert summary["total_expenses"] == 3000

    response = await client.get(f"/api/schools/{school.id}/reports/payment-methods", headers=admin_headers)
    assert response.json() == [{"payment_method": "card", "count": 1, "total": 20000}]


async def test_balances_follow_the_requested_term(client, factory, school, admin, admin_headers, section, klass):
    session, first_term = await factory.term(school, section)
    _, second_term = await factory.term(
        school, section, session=session, name="Second Term",
        start_date=date(2025, 1, 6), end_date=date(2025, 4, 4),
    )
    student = await factory.student(school, klass, [section])

    first_fee = await factory.fee(school, section, first_term, 50000)
    await factory.fee(school, section, second_term, 30000)
    await factory.payment(student, first_fee, 50000, paid_at=datetime(2025, 4, 1, tzinfo=timezone.utc))
    await factory.transaction(
        school, section, admin, 10000, student_id=student.id, category="School Fees",
        session_id=session.id, term_id=second_term.id,
    )

    url = f"/api/schools/{school.id}/students/{student.id}/payment-summary"

    first = (await client.get(url, params={"term_id": first_term.id}, headers=admin_headers)).json()
    assert (first["total_fees"], first["total_paid"], first["balance"]) == (50000, 50000, 0)
    assert first["last_payment"]["source"] == "gateway"

    second = (await client.get(url, params={"term_id": second_term.id}, headers=admin_headers)).json()
    assert (second["total_fees"], second["total_paid"], second["balance"]) == (30000, 10000, 20000)
    assert second["last_payment"]["source"] == "manual"

    whole_session = (await client.get(url, params={"session_id": session.id}, headers=admin_headers)).json()
    assert (whole_session["total_fees"], whole_session["total_paid"]) == (80000, 60000)

    debtors_url = f"/api/schools/{school.id}/reports/debtors"
    assert (await client.get(debtors_url, params={"term_id": first_term.id}, headers=admin_headers)).json() == []
    second_debtors = (await client.get(debtors_url, params={"term_id": second_term.id}, headers=admin_headers)).json()
    assert [(d["student_id"], d["balance"]) for d in second_debtors] == [(student.id, 20000)]


async def test_collected_money_survives_fee_removal(client, factory, school, admin_headers, section, klass, term):
    student = await factory.student(school, klass, [section])
    tuition = await factory.fee(school, section, term, 50000)
    levy = await factory.fee(school, section, term, 2000, name="PTA")
    await factory.payment(student, tuition, 50000)

    assert (await client.delete(f"/api/schools/{school.id}/fees/{levy.id}", headers=admin_headers)).status_code == 204

    response = await client.delete(f"/api/schools/{school.id}/fees/{tuition.id}", headers=admin_headers)
    assert response.status_code == 400

    url = f"/api/schools/{school.id}/students/{student.id}/payment-summary"
    assert (await client.get(url, headers=admin_headers)).json()["total_paid"] == 50000

    # Removing the term takes its fees with it, but not the money paid against them
    assert (await client.delete(f"/api/schools/{school.id}/terms/{term.id}", headers=admin_headers)).status_code == 204

    summary = (await client.get(url, headers=admin_headers)).json()
    assert (summary["total_fees"], summary["total_paid"], summary["outstanding"]) == (0, 50000, 0)

    collection = await client.get(f"/api/schools/{school.id}/reports/fee-collection", headers=admin_headers)
    assert collection.json()["collected"] == 50000


async def test_transactions_report_covers_the_period(client, factory, school, admin, admin_headers, section):
    other_section = await factory.section(school, "Secondary")
    opening = await factory.transaction(school, section, admin, 5000, transaction_date=date(2025, 3, 1))
    supplies = await factory.transaction(
        school, other_section, admin, 700, transaction_type="expense", transaction_date=date(2025, 3, 5)
    )
    repairs = await factory.transaction(
        school, section, admin, 2000, transaction_type="expense", transaction_date=date(2025, 3, 10)
    )
    await factory.transaction(school, section, admin, 1000, transaction_date=date(2025, 4, 2))

    url = f"/api/schools/{school.id}/transactions-report"
    period = {"start_date": "2025-03-01", "end_date": "2025-03-31"}

    response = await client.get(url, params=period, headers=admin_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["period"] == period
    assert [t["id"] for t in body["transactions"]] == [opening.id, supplies.id, repairs.id]
    assert (body["total_income"], body["total_expenses"], body["net_balance"]) == (5000, 2700, 2300)
    assert (body["transaction_count"], body["income_count"], body["expense_count"]) == (3, 1, 2)

    body = (await client.get(url, params={**period, "section_id": section.id}, headers=admin_headers)).json()
    assert [t["id"] for t in body["transactions"]] == [opening.id, repairs.id]

    body = (await client.get(url, params={**period, "transaction_type": "expense"}, headers=admin_headers)).json()
    assert body["total_income"] == 0
    assert body["expense_count"] == 2

    response = await client.get(url, params={"start_date": "2025-03-31", "end_date": "2025-03-01"}, headers=admin_headers)
    assert response.status_code == 422
    assert "end_date" in response.json()["errors"]
