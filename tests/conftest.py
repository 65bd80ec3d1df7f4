"""Shared pytest fixtures: a throwaway SQLite database per test, plus builders
for the users, courses and purchases the lifecycle and refund tests need."""

import os
import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest

# app.main builds the application at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")

from httpx import ASGITransport, AsyncClient

from app.config import Settings
from app.core.security import create_access_token
from app.database import close_db, create_engine, create_session_factory, init_db
from app.main import create_app
from app.models.course import Course
from app.models.enums import CourseStatus, UserRole
from app.models.user import User
from app.services.enrollment_service import EnrollmentService


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a fresh SQLite file (shared by every session of the test)."""
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'coursemart.db'}",
        SECRET_KEY="test-secret-key",
        ENVIRONMENT="test",
        LOG_FORMAT="text",
    )


@pytest.fixture
async def engine(settings: Settings):
    engine = create_engine(settings)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    async def _make(role: UserRole = UserRole.STUDENT, **overrides) -> User:
        suffix = uuid.uuid4().hex[:8]
        fields = {
            "email": f"{role.value}_{suffix}@test.example.com",
            "first_name": role.value.title(),
            "last_name": suffix,
            "role": role,
            "is_active": True,
        }
        fields.update(overrides)
        user = User(**fields)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_course(db):
    async def _make(instructor: User, **overrides) -> Course:
        fields = {
            "instructor_id": instructor.id,
            "title": f"Course {uuid.uuid4().hex[:6]}",
            "price": Decimal("49.99"),
            "status": CourseStatus.DRAFT,
        }
        fields.update(overrides)
        course = Course(**fields)
        db.add(course)
        await db.commit()
        await db.refresh(course)
        return course

    return _make


@pytest.fixture
async def purchase(db, make_user, make_course):
    """A published course with one paying student: teacher, student, course, enrollment, bill."""
    teacher = await make_user(UserRole.TEACHER)
    student = await make_user(UserRole.STUDENT)
    course = await make_course(teacher, status=CourseStatus.PUBLISHED, is_published=True, is_approved=True)
    enrollment, bill = await EnrollmentService.record_purchase(db, student.id, course.id)
    await db.refresh(course)
    return SimpleNamespace(
        teacher=teacher,
        student=student,
        course=course,
        enrollment=enrollment,
        bill=bill,
    )


@pytest.fixture
async def client(settings: Settings, engine):
    """HTTP client against an app built on the test database."""
    app = create_app(settings)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    await close_db(app.state.engine)


@pytest.fixture
def auth_headers(settings: Settings):
    def _headers(user: User) -> dict:
        token = create_access_token({"sub": str(user.id)}, settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def api_base(settings: Settings) -> str:
    return settings.API_V1_PREFIX
