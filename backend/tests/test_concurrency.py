"""
Concurrency properties of the enrollment engine.

Runs many engine calls at once over the in-memory stores. Every store call
yields to the event loop, so the calls interleave at each step the way
concurrent requests interleave at each database round trip. Each caller gets
its own unit of work, as each request gets its own session.

The last test repeats the capacity race on the SQLAlchemy stores over a
file-backed SQLite database, one session per caller.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from enrollment.core.exceptions import CapacityExceeded, InvalidTransition, NotFound
from enrollment.db.base import Base
from enrollment.models import Activity, ActivityStatus, Registration, RegistrationStatus, User, UserRole
from enrollment.services.enrollment_engine import EnrollmentEngine
from enrollment.services.memory_stores import InMemoryDatabase, InMemoryUnitOfWork
from enrollment.services.sql_stores import SqlAlchemyUnitOfWork


def new_engine(db: InMemoryDatabase) -> EnrollmentEngine:
    return EnrollmentEngine(InMemoryUnitOfWork(db))


def active_count(db: InMemoryDatabase, activity_id: int) -> int:
    return sum(
        1 for r in db.registrations.values()
        if r.activity_id == activity_id and r.status != RegistrationStatus.CANCELLED
    )


@pytest.fixture
def db() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.mark.asyncio
async def test_concurrent_enrollments_never_exceed_capacity(db):
    activity = db.add_activity(max_participants=5)
    users = [db.add_user(f"user{i}") for i in range(25)]

    results = await asyncio.gather(
        *(new_engine(db).enroll(activity.id, u.id) for u in users),
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, CapacityExceeded)]
    assert len(succeeded) == 5
    assert len(rejected) == 20
    assert activity.current_participants == 5
    assert active_count(db, activity.id) == 5


@pytest.mark.asyncio
async def test_two_users_race_for_last_slot(db):
    activity = db.add_activity(max_participants=1)
    a = db.add_user("a")
    b = db.add_user("b")

    results = await asyncio.gather(
        new_engine(db).enroll(activity.id, a.id),
        new_engine(db).enroll(activity.id, b.id),
        return_exceptions=True,
    )

    assert sum(isinstance(r, CapacityExceeded) for r in results) == 1
    assert sum(not isinstance(r, Exception) for r in results) == 1
    assert activity.current_participants == 1


@pytest.mark.asyncio
async def test_same_user_concurrent_enroll_is_idempotent(db):
    activity = db.add_activity(max_participants=10)
    user = db.add_user("eager")

    results = await asyncio.gather(*(new_engine(db).enroll(activity.id, user.id) for _ in range(6)))

    assert len({r.id for r in results}) == 1
    assert activity.current_participants == 1
    assert active_count(db, activity.id) == 1


@pytest.mark.asyncio
async def test_concurrent_withdraws_decrement_once(db):
    activity = db.add_activity(max_participants=3)
    user = db.add_user("leaver")
    registration = await new_engine(db).enroll(activity.id, user.id)

    results = await asyncio.gather(
        *(new_engine(db).withdraw(registration.id, user.id, UserRole.USER) for _ in range(4)),
        return_exceptions=True,
    )

    assert sum(not isinstance(r, Exception) for r in results) == 1
    assert all(isinstance(r, (InvalidTransition, NotFound)) for r in results if isinstance(r, Exception))
    assert activity.current_participants == 0


@pytest.mark.asyncio
async def test_enroll_and_withdraw_storm_keeps_counter_consistent(db):
    activity = db.add_activity(max_participants=4)
    users = [db.add_user(f"member{i}") for i in range(12)]
    holders = [await new_engine(db).enroll(activity.id, u.id) for u in users[:4]]

    calls = [new_engine(db).withdraw(r.id, r.user.id, UserRole.USER) for r in holders[:2]]
    calls += [new_engine(db).enroll(activity.id, u.id) for u in users[4:]]
    await asyncio.gather(*calls, return_exceptions=True)

    assert activity.current_participants <= activity.max_participants
    assert activity.current_participants == active_count(db, activity.id)


@pytest.mark.asyncio
async def test_concurrent_comments_leave_one_row(db):
    activity = db.add_activity()
    user = db.add_user("critic")
    await new_engine(db).enroll(activity.id, user.id)

    await asyncio.gather(
        new_engine(db).comment(activity.id, user.id, 2, "First impression"),
        new_engine(db).comment(activity.id, user.id, 5, "Second thoughts"),
    )

    rows = [c for c in db.comments.values() if c.activity_id == activity.id]
    assert len(rows) == 1
    assert (rows[0].rating, rows[0].content) in {(2, "First impression"), (5, "Second thoughts")}


@pytest.mark.asyncio
async def test_failed_step_rolls_back_counter(db):
    activity = db.add_activity(max_participants=2)
    user = db.add_user("unlucky")
    uow = InMemoryUnitOfWork(db)

    async def step():
        assert await uow.activities.increment_participants(activity.id)
        raise CapacityExceeded("simulated failure after the increment")

    with pytest.raises(CapacityExceeded):
        await uow.run(step)

    assert activity.current_participants == 0
    assert user.id not in {r.user_id for r in db.registrations.values()}


# --- SQL stores under real contention --------------------------------------

@pytest_asyncio.fixture
async def sql_database(tmp_path):
    """
    File-backed SQLite shared by many connections, so each racer can hold its
    own session. The busy timeout makes writers queue on the database lock.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'race.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.mark.asyncio
async def test_sql_enrollments_race_on_separate_sessions(sql_database):
    start = datetime.now(timezone.utc) + timedelta(days=1)
    async with sql_database() as session:
        users = [User(username=f"racer{i}", email=f"racer{i}@example.com") for i in range(6)]
        activity = Activity(
            title="Two Court Slots",
            description="Only two places on court",
            start_time=start,
            end_time=start + timedelta(hours=1),
            location="Court 1",
            max_participants=2,
            current_participants=0,
            status=ActivityStatus.OPEN.value,
        )
        session.add_all([*users, activity])
        await session.commit()
        user_ids = [u.id for u in users]
        activity_id = activity.id

    async def enroll(user_id: int):
        async with sql_database() as session:
            uow = SqlAlchemyUnitOfWork(session, max_attempts=10, backoff_seconds=0.01)
            return await EnrollmentEngine(uow).enroll(activity_id, user_id)

    results = await asyncio.gather(*(enroll(u) for u in user_ids), return_exceptions=True)

    succeeded = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, CapacityExceeded)]
    assert len(succeeded) == 2
    assert len(rejected) == 4

    async with sql_database() as session:
        counter = (
            await session.execute(select(Activity.current_participants).where(Activity.id == activity_id))
        ).scalar_one()
        active = (
            await session.execute(
                select(func.count()).select_from(Registration).where(
                    Registration.activity_id == activity_id,
                    Registration.status != RegistrationStatus.CANCELLED.value,
                )
            )
        ).scalar_one()
    assert counter == 2
    assert active == 2
