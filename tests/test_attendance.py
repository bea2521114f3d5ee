async def test_marking_twice_updates_the_days_record(client, factory, school, admin_headers, section, klass):
    ada = await factory.student(school, klass, [section])
    bola = await factory.student(school, klass, [section])
    url = f"/api/schools/{school.id}/attendance"

    response = await client.post(url, json={
        "class_id": klass.id,
        "date": "2025-01-13",
        "attendance": [
            {"student_id": ada.id, "status": "present"},
            {"student_id": bola.id, "status": "absent"},
        ],
    }, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["saved"] == 2

    response = await client.post(url, json={
        "class_id": klass.id,
        "date": "2025-01-13",
        "attendance": [{"student_id": bola.id, "status": "late", "remark": "Bus delay"}],
    }, headers=admin_headers)
    assert response.status_code == 200

    records = (await client.get(url, params={"date": "2025-01-13"}, headers=admin_headers)).json()
    assert len(records) == 2
    by_student = {record["student_id"]: record for record in records}
    assert by_student[ada.id]["status"] == "present"
    assert (by_student[bola.id]["status"], by_student[bola.id]["remark"]) == ("late", "Bus delay")


async def test_students_must_belong_to_the_class(client, factory, school, admin_headers, section, klass):
    other_class = await factory.klass(school, section, "Primary 2")
    outsider = await factory.student(school, other_class, [section])

    response = await client.post(f"/api/schools/{school.id}/attendance", json={
        "class_id": klass.id,
        "date": "2025-01-13",
        "attendance": [{"student_id": outsider.id, "status": "present"}],
    }, headers=admin_headers)

    assert response.status_code == 400

    records = await client.get(f"/api/schools/{school.id}/attendance", headers=admin_headers)
    assert records.json() == []


async def test_section_summary_counts_by_class(client, factory, school, admin_headers, section, klass):
    second_class = await factory.klass(school, section, "Primary 2")
    students = [await factory.student(school, klass, [section]) for _ in range(3)]
    late = await factory.student(school, second_class, [section])

    await client.post(f"/api/schools/{school.id}/attendance", json={
        "class_id": klass.id,
        "date": "2025-01-13",
        "attendance": [
            {"student_id": students[0].id, "status": "present"},
            {"student_id": students[1].id, "status": "present"},
            {"student_id": students[2].id, "status": "absent"},
        ],
    }, headers=admin_headers)
    await client.post(f"/api/schools/{school.id}/attendance", json={
        "class_id": second_class.id,
        "date": "2025-01-13",
        "attendance": [{"student_id": late.id, "status": "late"}],
    }, headers=admin_headers)

    response = await client.get(
        f"/api/schools/{school.id}/attendance/section-summary",
        params={"section_id": section.id, "date": "2025-01-13"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    summary = response.json()
    assert summary["totals"] == {"present": 2, "absent": 1, "late": 1, "excused": 0, "total": 4}
    by_class = {entry["class_name"]: entry for entry in summary["classes"]}
    assert by_class["Primary 1"]["total"] == 3
    assert by_class["Primary 2"]["late"] == 1


async def test_parent_sees_own_childs_attendance_only(client, factory, school, admin_headers, section, klass, headers_for):
    parent = await factory.user(school, "parent")
    child = await factory.student(school, klass, [section], parent=parent)
    other = await factory.student(school, klass, [section])

    await client.post(f"/api/schools/{school.id}/attendance", json={
        "class_id": klass.id,
        "date": "2025-01-13",
        "attendance": [{"student_id": child.id, "status": "present"}],
    }, headers=admin_headers)

    mine = await client.get(f"/api/schools/{school.id}/students/{child.id}/attendance", headers=headers_for(parent))
    assert [record["status"] for record in mine.json()] == ["present"]

    theirs = await client.get(f"/api/schools/{school.id}/students/{other.id}/attendance", headers=headers_for(parent))
    assert theirs.status_code == 403
