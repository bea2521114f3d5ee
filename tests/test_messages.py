from schoolmgmt.database import AsyncSessionLocal
from schoolmgmt.models.notifications import Notification


async def test_conversation_between_parent_and_teacher(client, factory, school, headers_for):
    parent = await factory.user(school, "parent")
    teacher = await factory.user(school, "teacher")

    sent = await client.post("/api/messages", json={
        "recipient_id": teacher.id, "subject": "Homework", "body": "Is there homework this week?",
    }, headers=headers_for(parent))
    assert sent.status_code == 201

    reply = await client.post("/api/messages", json={
        "recipient_id": parent.id, "body": "Yes, page 12.", "parent_message_id": sent.json()["id"],
    }, headers=headers_for(teacher))
    assert reply.status_code == 201

    unread = await client.get("/api/messages/unread-count", headers=headers_for(teacher))
    assert unread.json() == {"unread": 1}

    read = await client.put(f"/api/messages/{sent.json()['id']}/read", headers=headers_for(teacher))
    assert read.json()["is_read"] is True
    unread = await client.get("/api/messages/unread-count", headers=headers_for(teacher))
    assert unread.json() == {"unread": 0}

    conversation = await client.get(f"/api/messages/conversation/{teacher.id}", headers=headers_for(parent))
    assert [m["body"] for m in conversation.json()] == ["Is there homework this week?", "Yes, page 12."]

    inbox = await client.get("/api/messages", headers=headers_for(parent))
    assert [m["id"] for m in inbox.json()] == [reply.json()["id"]]


async def test_cannot_message_another_school(client, factory, school, headers_for):
    parent = await factory.user(school, "parent")
    other_school = await factory.school("Bright Future", "BFS")
    stranger = await factory.user(other_school, "teacher")

    response = await client.post("/api/messages", json={
        "recipient_id": stranger.id, "body": "Hello",
    }, headers=headers_for(parent))

    assert response.status_code == 403


async def test_only_recipient_marks_read_and_outsiders_cannot_delete(client, factory, school, headers_for):
    parent = await factory.user(school, "parent")
    teacher = await factory.user(school, "teacher")
    bystander = await factory.user(school, "bursar")

    sent = await client.post("/api/messages", json={"recipient_id": teacher.id, "body": "Hi"}, headers=headers_for(parent))
    message_id = sent.json()["id"]

    assert (await client.put(f"/api/messages/{message_id}/read", headers=headers_for(parent))).status_code == 403
    assert (await client.delete(f"/api/messages/{message_id}", headers=headers_for(bystander))).status_code == 403
    assert (await client.delete(f"/api/messages/{message_id}", headers=headers_for(teacher))).status_code == 204
    assert (await client.get("/api/messages", headers=headers_for(teacher))).json() == []


async def test_notifications_read_and_delete(client, factory, school, headers_for):
    parent = await factory.user(school, "parent")
    other_parent = await factory.user(school, "parent")

    async with AsyncSessionLocal() as session:
        session.add_all([
            Notification(user_id=parent.id, type="payment_received", title="Payment Received", message="One"),
            Notification(user_id=parent.id, type="exam_result_published", title="New Exam Result Published", message="Two"),
            Notification(user_id=other_parent.id, type="payment_received", title="Payment Received", message="Other"),
        ])
        await session.commit()

    headers = headers_for(parent)
    notifications = (await client.get("/api/notifications", headers=headers)).json()
    assert len(notifications) == 2
    assert (await client.get("/api/notifications/unread-count", headers=headers)).json() == {"unread": 2}

    first_id = notifications[0]["id"]
    marked = await client.put(f"/api/notifications/{first_id}/read", headers=headers)
    assert marked.json()["is_read"] is True
    assert (await client.get("/api/notifications/unread-count", headers=headers)).json() == {"unread": 1}

    other_id = (await client.get("/api/notifications", headers=headers_for(other_parent))).json()[0]["id"]
    assert (await client.put(f"/api/notifications/{other_id}/read", headers=headers)).status_code == 404

    assert (await client.delete("/api/notifications/read", headers=headers)).status_code == 204
    assert len((await client.get("/api/notifications", headers=headers)).json()) == 1

    await client.put("/api/notifications/read-all", headers=headers)
    assert (await client.get("/api/notifications/unread-count", headers=headers)).json() == {"unread": 0}


async def test_contacts_are_active_colleagues_of_the_same_school(client, factory, school, headers_for):
    parent = await factory.user(school, "parent", full_name="Ada Obi")
    teacher = await factory.user(school, "teacher", full_name="Bola Ade")
    await factory.user(school, "bursar", full_name="Chidi Eze", is_active=False)
    other_school = await factory.school("Bright Future", "BFS")
    await factory.user(other_school, "teacher", full_name="Aaron Stranger")

    response = await client.get("/api/messages/contacts", headers=headers_for(parent))

    assert response.status_code == 200
    assert [(c["id"], c["role_name"]) for c in response.json()] == [(teacher.id, "teacher")]


async def test_staff_send_and_broadcast_notifications(client, factory, school, headers_for):
    teacher = await factory.user(school, "teacher")
    first_parent = await factory.user(school, "parent")
    second_parent = await factory.user(school, "parent")
    other_school = await factory.school("Bright Future", "BFS")
    stranger = await factory.user(other_school, "parent")

    content = {"type": "announcement", "title": "Sports Day", "message": "Friday at 10am", "data": {"venue": "Field"}}

    response = await client.post(
        "/api/notifications", json={**content, "user_id": first_parent.id}, headers=headers_for(teacher)
    )
    assert response.status_code == 201
    assert (response.json()["user_id"], response.json()["is_read"]) == (first_parent.id, False)

    response = await client.post(
        "/api/notifications/broadcast",
        json={**content, "user_ids": [first_parent.id, second_parent.id, second_parent.id]},
        headers=headers_for(teacher),
    )
    assert response.status_code == 201
    assert response.json() == {"sent": 2}

    inbox = (await client.get("/api/notifications", headers=headers_for(first_parent))).json()
    assert [(n["title"], n["data"]) for n in inbox] == [("Sports Day", {"venue": "Field"})] * 2
    assert (await client.get("/api/notifications/unread-count", headers=headers_for(second_parent))).json() == {"unread": 1}

    response = await client.post(
        "/api/notifications/broadcast",
        json={**content, "user_ids": [first_parent.id, stranger.id]},
        headers=headers_for(teacher),
    )
    assert response.status_code == 404
    assert (await client.get("/api/notifications/unread-count", headers=headers_for(first_parent))).json() == {"unread": 2}

    response = await client.post(
        "/api/notifications", json={**content, "user_id": second_parent.id}, headers=headers_for(first_parent)
    )
    assert response.status_code == 403
