"""
Pytest fixtures for test database, client, and authentication.

Each test gets its own in-memory SQLite database (aiosqlite), so tests are
isolated without a running PostgreSQL. Redis caching is disabled.

Fixtures hand out ids rather than ORM objects: the unit of work rolls the
session back on every failed operation, which expires loaded objects.
"""

import os

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from enrollment.core.security import create_access_token
from enrollment.db.base import Base
from enrollment.db.session import get_db
from enrollment.main import app
from enrollment.models import Activity, ActivityStatus, Registration, RegistrationStatus, User, UserRole
from enrollment.services.enrollment_engine import EnrollmentEngine
from enrollment.services.sql_stores import SqlAlchemyUnitOfWork

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables in a fresh database, yield a session, then dispose."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB dependency with the test session."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def engine(db_session: AsyncSession) -> EnrollmentEngine:
    """Enrollment engine over the SQLAlchemy stores, without retry backoff."""
    return EnrollmentEngine(SqlAlchemyUnitOfWork(db_session, backoff_seconds=0))


@pytest_asyncio.fixture
async def make_user(db_session: AsyncSession):
    """Factory: create a user and return its id."""

    async def _make(username: str, role: UserRole = UserRole.USER, **fields) -> int:
        user = User(
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            role=role.value,
            **fields,
        )
        db_session.add(user)
        await db_session.commit()
        return user.id

    return _make


@pytest_asyncio.fixture
async def make_activity(db_session: AsyncSession):
    """Factory: create an activity starting in a week and return its id."""

    async def _make(
        max_participants: int = 10,
        status: ActivityStatus = ActivityStatus.OPEN,
        title: str = "Evening Basketball",
        **fields,
    ) -> int:
        start = fields.pop("start_time", datetime.now(timezone.utc) + timedelta(days=7))
        activity = Activity(
            title=title,
            description=fields.pop("description", "Pick-up game, all levels welcome"),
            type=fields.pop("type", "basketball"),
            start_time=start,
            end_time=fields.pop("end_time", start + timedelta(hours=2)),
            location=fields.pop("location", "Gym A"),
            max_participants=max_participants,
            current_participants=fields.pop("current_participants", 0),
            status=status.value,
            version=1,
            **fields,
        )
        db_session.add(activity)
        await db_session.commit()
        return activity.id

    return _make


@pytest_asyncio.fixture
async def participants(db_session: AsyncSession):
    """Read an activity's participant counter straight from the database."""

    async def _read(activity_id: int) -> int:
        result = await db_session.execute(
            select(Activity.current_participants).where(Activity.id == activity_id)
        )
        return result.scalar_one()

    return _read


@pytest_asyncio.fixture
async def active_registrations(db_session: AsyncSession):
    """Count non-cancelled registrations for an activity."""

    async def _count(activity_id: int) -> int:
        result = await db_session.execute(
            select(Registration.id).where(
                Registration.activity_id == activity_id,
                Registration.status != RegistrationStatus.CANCELLED.value,
            )
        )
        return len(result.all())

    return _count


@pytest_asyncio.fixture
async def alice(make_user) -> int:
    return await make_user("alice", real_name="Alice Example", phone="555-0101")


@pytest_asyncio.fixture
async def bob(make_user) -> int:
    return await make_user("bob")


@pytest_asyncio.fixture
async def admin(make_user) -> int:
    return await make_user("admin", role=UserRole.ADMIN)


def auth_headers(user_id: int, username: str = "user", role: UserRole = UserRole.USER) -> dict:
    """Authorization headers with a Bearer token for the given user."""
    token = create_access_token(user_id, username, role=role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def alice_headers(alice: int) -> dict:
    return auth_headers(alice, "alice")


@pytest_asyncio.fixture
async def bob_headers(bob: int) -> dict:
    return auth_headers(bob, "bob")


@pytest_asyncio.fixture
async def admin_headers(admin: int) -> dict:
    return auth_headers(admin, "admin", UserRole.ADMIN)
