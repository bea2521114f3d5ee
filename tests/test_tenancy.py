import pytest


@pytest.fixture
async def other_school(factory):
    school = await factory.school("Bright Future", "BFS")
    section = await factory.section(school)
    klass = await factory.klass(school, section)
    student = await factory.student(school, klass, [section])
    return school, klass, student


async def test_requests_need_a_token(client, school):
    response = await client.get(f"/api/schools/{school.id}/students")
    assert response.status_code == 401


async def test_login_returns_token_with_school(client, factory, school):
    await factory.user(school, "bursar", email="bursar@aiah.edu.ng", password="s3cret-pass")

    response = await client.post("/api/auth/login", json={"email": "bursar@aiah.edu.ng", "password": "s3cret-pass"})
    assert response.status_code == 200
    assert response.json()["school_id"] == school.id
    assert response.json()["role"] == "bursar"

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {response.json()['access_token']}"})
    assert me.json()["email"] == "bursar@aiah.edu.ng"

    response = await client.post("/api/auth/login", json={"email": "bursar@aiah.edu.ng", "password": "wrong"})
    assert response.status_code == 401


async def test_other_schools_are_forbidden(client, admin_headers, other_school):
    school, _, student = other_school

    assert (await client.get(f"/api/schools/{school.id}/students", headers=admin_headers)).status_code == 403
    response = await client.get(f"/api/schools/{school.id}/students/{student.id}", headers=admin_headers)
    assert response.status_code == 403


async def test_unknown_school_is_not_found(client, admin_headers):
    response = await client.get("/api/schools/9999/students", headers=admin_headers)
    assert response.status_code == 404


async def test_another_schools_rows_are_not_found_under_own_school(client, school, admin_headers, other_school):
    _, other_class, other_student = other_school

    assert (await client.get(f"/api/schools/{school.id}/classes/{other_class.id}", headers=admin_headers)).status_code == 404
    response = await client.get(f"/api/schools/{school.id}/students/{other_student.id}", headers=admin_headers)
    assert response.status_code == 404


async def test_super_admin_reaches_every_school(client, factory, school, other_school, headers_for):
    super_admin = await factory.user(school, "super_admin")
    other, _, student = other_school

    response = await client.get(f"/api/schools/{other.id}/students", headers=headers_for(super_admin))
    assert response.status_code == 200
    assert [s["id"] for s in response.json()] == [student.id]

    listed = await client.get("/api/schools", headers=headers_for(super_admin))
    assert {s["short_code"] for s in listed.json()} == {"AIA", "BFS"}


async def test_only_super_admin_creates_schools(client, admin_headers, factory, school, headers_for):
    payload = {"name": "New School", "short_code": "nsc"}

    assert (await client.post("/api/schools", json=payload, headers=admin_headers)).status_code == 403

    super_admin = await factory.user(school, "super_admin")
    response = await client.post("/api/schools", json=payload, headers=headers_for(super_admin))
    assert response.status_code == 201
    assert response.json()["short_code"] == "NSC"


async def test_teacher_cannot_manage_fees(client, factory, school, section, term, headers_for):
    teacher = await factory.user(school, "teacher")

    response = await client.post(f"/api/schools/{school.id}/fees", json={
        "section_id": section.id,
        "session_id": term.session_id,
        "term_id": term.id,
        "fee_name": "Tuition",
        "amount": "50000",
        "fee_scope": "school",
    }, headers=headers_for(teacher))

    assert response.status_code == 403
