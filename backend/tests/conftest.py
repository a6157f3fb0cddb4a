"""
LMS Assessment Engine - Test Configuration
Pytest fixtures and configuration for testing
"""
import os

# Keep the application engine off PostgreSQL during tests
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from lms_assessment import models
from lms_assessment.core.database import Base, get_db
from lms_assessment.core.security import create_access_token
from lms_assessment.main import app


# In-memory SQLite shared through a single connection
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=StaticPool,
)

test_session_maker = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    async with test_session_maker() as session:
        yield session
        await session.rollback()
    
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""
    
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session
    
    app.dependency_overrides[get_db] = override_get_db
    
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac
    
    app.dependency_overrides.clear()


# ============================================================================
# People and courses
# ============================================================================

async def _add_user(db: AsyncSession, email: str, first: str, last: str, role) -> models.User:
    user = models.User(email=email, first_name=first, last_name=last, role=role)
    db.add(user)
    await db.flush()
    return user


@pytest_asyncio.fixture
async def teacher(db_session: AsyncSession) -> models.User:
    return await _add_user(db_session, "teacher@example.com", "Tina", "Teacher", models.UserRole.TEACHER)


@pytest_asyncio.fixture
async def student(db_session: AsyncSession) -> models.User:
    return await _add_user(db_session, "student@example.com", "Sam", "Student", models.UserRole.STUDENT)


@pytest_asyncio.fixture
async def other_student(db_session: AsyncSession) -> models.User:
    """A student with no enrollment in the course."""
    return await _add_user(db_session, "other@example.com", "Olly", "Other", models.UserRole.STUDENT)


@pytest_asyncio.fixture
async def course(db_session: AsyncSession, teacher, student) -> models.Course:
    """A course taught by `teacher` with `student` approved."""
    course = models.Course(title="Geography 101", teacher_id=teacher.id)
    db_session.add(course)
    await db_session.flush()
    db_session.add(
        models.Enrollment(
            course_id=course.id,
            student_id=student.id,
            status=models.EnrollmentStatus.APPROVED,
        )
    )
    await db_session.flush()
    return course


@pytest_asyncio.fixture
async def make_test(db_session: AsyncSession, course, teacher):
    """Factory creating a test (published by default) from prepared questions."""
    
    async def _make(*questions: models.Question, **rules) -> models.Test:
        rules.setdefault("title", "Capitals quiz")
        rules.setdefault("status", models.TestStatus.PUBLISHED)
        test = models.Test(
            course_id=course.id,
            created_by_id=teacher.id,
            questions=list(questions),
            **rules,
        )
        db_session.add(test)
        await db_session.flush()
        return test
    
    return _make


def auth_headers(user: models.User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def teacher_headers(teacher) -> dict[str, str]:
    return auth_headers(teacher)


@pytest.fixture
def student_headers(student) -> dict[str, str]:
    return auth_headers(student)
