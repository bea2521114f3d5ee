async def test_section_and_user_assignments_replace_previous_links(client, factory, school, admin_headers, section):
    other_section = await factory.section(school, "Secondary")
    teacher = await factory.user(school, "teacher")
    bursar = await factory.user(school, "bursar")
    stranger = await factory.user(await factory.school("Bright Future", "BFS"), "teacher")

    url = f"/api/schools/{school.id}/sections/{section.id}/assign-users"
    response = await client.post(url, json={"user_ids": [bursar.id, teacher.id]}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json() == {"section_id": section.id, "user_ids": sorted([teacher.id, bursar.id])}

    stats = (await client.get(f"/api/schools/{school.id}/sections/{section.id}/statistics", headers=admin_headers)).json()
    assert (stats["users"], stats["users_by_role"]) == (2, {"teacher": 1, "bursar": 1})

    response = await client.post(url, json={"user_ids": [teacher.id]}, headers=admin_headers)
    assert response.json()["user_ids"] == [teacher.id]

    response = await client.post(
        f"/api/schools/{school.id}/users/{teacher.id}/assign-sections",
        json={"section_ids": [other_section.id]},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json() == {"user_id": teacher.id, "section_ids": [other_section.id]}

    stats = (await client.get(f"/api/schools/{school.id}/sections/{section.id}/statistics", headers=admin_headers)).json()
    assert (stats["users"], stats["users_by_role"]) == (0, {})

    response = await client.post(url, json={"user_ids": [teacher.id, stranger.id]}, headers=admin_headers)
    assert response.status_code == 404
    assert str(stranger.id) in response.json()["detail"]

    assert (await client.post(url, json={"user_ids": []}, headers=admin_headers)).status_code == 422


async def test_assignments_are_admin_only(client, factory, school, section, headers_for):
    teacher = await factory.user(school, "teacher")

    response = await client.post(
        f"/api/schools/{school.id}/sections/{section.id}/assign-users",
        json={"user_ids": [teacher.id]},
        headers=headers_for(teacher),
    )

    assert response.status_code == 403


async def test_section_statistics_counts_active_sessions(client, factory, school, admin_headers, section, klass, term):
    await factory.student(school, klass, [section])

    stats = (await client.get(f"/api/schools/{school.id}/sections/{section.id}/statistics", headers=admin_headers)).json()

    assert stats == {
        "section_id": section.id,
        "classes": 1,
        "students": 1,
        "users": 0,
        "users_by_role": {},
        "active_sessions": 1,
    }


async def test_class_statistics(client, factory, school, admin_headers, section, klass, term):
    other_class = await factory.klass(school, section, "Primary 2")
    await factory.student(school, klass, [section], gender="female")
    await factory.student(school, klass, [section], gender="female", is_active=False)
    await factory.student(school, klass, [section], gender="male")
    await factory.student(school, klass, [section])
    await factory.student(school, other_class, [section], gender="male")

    await factory.fee(school, section, term, 10000, scope="class", name="Lab", class_id=klass.id)
    await factory.fee(school, section, term, 2500, scope="class", name="Trip", class_id=klass.id)
    await factory.fee(school, section, term, 999, scope="class", name="Old", class_id=klass.id, is_active=False)
    await factory.fee(school, section, term, 4000, scope="class", name="Lab", class_id=other_class.id)
    await factory.fee(school, section, term, 50000)

    response = await client.get(f"/api/schools/{school.id}/classes/{klass.id}/statistics", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {
        "class_id": klass.id,
        "total_students": 4,
        "active_students": 3,
        "total_fees": 12500,
        "fees_count": 2,
        "students_by_gender": {"female": 2, "male": 1, "unspecified": 1},
    }

    other_school = await factory.school("Bright Future", "BFS")
    foreign_class = await factory.klass(other_school, await factory.section(other_school))
    response = await client.get(f"/api/schools/{school.id}/classes/{foreign_class.id}/statistics", headers=admin_headers)
    assert response.status_code == 404
