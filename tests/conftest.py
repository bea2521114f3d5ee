import os

# Settings are read at import time, so the test environment goes first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_secret"

from datetime import date
from decimal import Decimal
from itertools import count

import pytest
from httpx import AsyncClient, ASGITransport

from schoolmgmt.database import engine, Base, AsyncSessionLocal, get_db
from schoolmgmt.main import app
from schoolmgmt.models.academics import AcademicSession, Term, Exam
from schoolmgmt.models.finance import Fee, Payment, Transaction
from schoolmgmt.models.schools import School, Section, Class, Subject
from schoolmgmt.models.users import User, Student, SectionStudent
from schoolmgmt.services.auth import seed_roles, get_role, get_password_hash, create_access_token


class Factory:
    """Inserts rows straight through the ORM, committing each one."""

    def __init__(self, db):
        self.db = db
        self._sequence = count(1)

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        return obj

    async def school(self, name="Aiah Academy", short_code="AIA", **fields):
        return await self._save(School(name=name, short_code=short_code, **fields))

    async def user(self, school, role="admin", email=None, password="password123", **fields):
        number = next(self._sequence)
        return await self._save(User(
            school_id=school.id,
            role=await get_role(self.db, role),
            full_name=fields.pop("full_name", f"{role.title()} {number}"),
            email=email or f"{role}{number}@example.com",
            hashed_password=get_password_hash(password),
            **fields,
        ))

    async def section(self, school, name="Primary"):
        return await self._save(Section(school_id=school.id, section_name=name))

    async def klass(self, school, section, name="Primary 1"):
        return await self._save(Class(school_id=school.id, section_id=section.id, class_name=name))

    async def subject(self, school, name="Mathematics"):
        return await self._save(Subject(school_id=school.id, name=name))

    async def term(self, school, section, session=None, name="First Term",
                   start_date=date(2024, 9, 1), end_date=date(2024, 12, 15)):
        if session is None:
            session = await self._save(AcademicSession(
                school_id=school.id,
                section_id=section.id,
                session_name="2024/2025",
                start_date=date(2024, 9, 1),
                end_date=date(2025, 7, 31),
            ))
        term = await self._save(Term(
            school_id=school.id,
            section_id=section.id,
            session_id=session.id,
            term_name=name,
            start_date=start_date,
            end_date=end_date,
        ))
        return session, term

    async def student(self, school, klass, sections, name=None, parent=None, **fields):
        number = next(self._sequence)
        student = await self._save(Student(
            school_id=school.id,
            class_id=klass.id,
            student_name=name or f"Student {number}",
            parent_id=parent.id if parent else None,
            **fields,
        ))
        for section in sections:
            await self._save(SectionStudent(section_id=section.id, student_id=student.id))
        return student

    async def fee(self, school, section, term, amount, scope="school", name="Tuition", **fields):
        return await self._save(Fee(
            school_id=school.id,
            section_id=section.id,
            session_id=term.session_id,
            term_id=term.id,
            fee_name=name,
            amount=Decimal(str(amount)),
            fee_scope=scope,
            is_active=fields.pop("is_active", True),
            **fields,
        ))

    async def payment(self, student, fee, amount, status="success", reference=None, **fields):
        return await self._save(Payment(
            student_id=student.id,
            fee_id=fee.id,
            amount=Decimal(str(amount)),
            reference=reference or f"PAY_TEST{next(self._sequence)}",
            status=status,
            payment_method=fields.pop("payment_method", "card"),
            **fields,
        ))

    async def transaction(self, school, section, recorded_by, amount, transaction_type="income", **fields):
        return await self._save(Transaction(
            school_id=school.id,
            section_id=section.id,
            recorded_by=recorded_by.id,
            amount=Decimal(str(amount)),
            transaction_type=transaction_type,
            payment_method=fields.pop("payment_method", "cash"),
            transaction_date=fields.pop("transaction_date", date(2025, 3, 15)),
            **fields,
        ))

    async def exam(self, school, subject, klass, title="Midterm", term=None, max_score=100, **fields):
        return await self._save(Exam(
            school_id=school.id,
            subject_id=subject.id,
            class_id=klass.id,
            term_id=term.id if term else None,
            session_id=term.session_id if term else None,
            title=title,
            max_score=max_score,
            **fields,
        ))


def auth_headers(user):
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as session:
        await seed_roles(session)
        yield session
    # Closing the only pooled connection discards the in-memory database
    await engine.dispose()


async def _test_db():
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
async def client(db):
    app.dependency_overrides[get_db] = _test_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
async def school(factory):
    return await factory.school()


@pytest.fixture
async def admin(factory, school):
    return await factory.user(school, "admin")


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
async def section(factory, school):
    return await factory.section(school)


@pytest.fixture
async def klass(factory, school, section):
    return await factory.klass(school, section)


@pytest.fixture
async def term(factory, school, section):
    _, term = await factory.term(school, section)
    return term


@pytest.fixture
def headers_for():
    return auth_headers
