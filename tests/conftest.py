"""
Pytest configuration for points-service tests

Each test gets its own SQLite file (aiosqlite) so per-student sessions of
the engine see each other's commits.
"""
import json
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from points_service import models
from points_service.core.db import Base, get_db
from points_service.dependencies import get_points_engine
from points_service.logic.badge_service import BadgeService
from points_service.logic.points_engine import PointsEngine
from points_service.main import app


class RecordingNotifier:
    """Stands in for the SNS client and keeps every fact it receives"""

    def __init__(self):
        self.level_ups = []
        self.badges_awarded = []

    async def notify_level_up(self, student_id, student_name, new_level):
        self.level_ups.append({'studentId': student_id, 'studentName': student_name, 'newLevel': new_level})

    async def notify_badges_awarded(self, student_id, badges):
        self.badges_awarded.append({'studentId': student_id, 'badges': list(badges)})


@pytest.fixture(scope="function")
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def points_engine(session_factory, notifier):
    return PointsEngine(
        session_factory=session_factory,
        notifier=notifier,
        badge_service=BadgeService(max_iterations=10),
        concurrency=1,
        retry_attempts=3,
    )


@pytest.fixture
async def seed(session_factory):
    """
    Two classrooms:
    - main: max_hp=100, xp_per_level=100, negative HP not allowed
      students alice (xp 90), bob (xp 0), dora (xp 50), inactive ivan
      behaviors participation (+20 xp, +5 gp), big_project (+500 xp),
      disruption (-30 hp), penalty (-10 xp -10 gp), retired (inactive)
    - other: one student, carol
    """
    async with session_factory() as db:
        main = models.Classroom(name="Room 101", teacher_id="teacher-1", max_hp=100, xp_per_level=100)
        other = models.Classroom(name="Room 202", teacher_id="teacher-2")
        db.add_all([main, other])
        await db.flush()

        alice = models.StudentProfile(classroom_id=main.id, display_name="Alice", xp=90, hp=100, gp=0, level=1)
        bob = models.StudentProfile(classroom_id=main.id, display_name="Bob", xp=0, hp=10, gp=3, level=1)
        dora = models.StudentProfile(classroom_id=main.id, display_name="Dora", xp=50, hp=100, gp=0, level=1)
        ivan = models.StudentProfile(classroom_id=main.id, display_name="Ivan", is_active=False)
        carol = models.StudentProfile(classroom_id=other.id, display_name="Carol")

        participation = models.Behavior(
            classroom_id=main.id, name="Participation", is_positive=True,
            xp_value=20, hp_value=0, gp_value=5,
        )
        big_project = models.Behavior(
            classroom_id=main.id, name="Big project", is_positive=True,
            xp_value=500, hp_value=0, gp_value=0,
        )
        disruption = models.Behavior(
            classroom_id=main.id, name="Disruption", is_positive=False,
            xp_value=0, hp_value=30, gp_value=0,
        )
        penalty = models.Behavior(
            classroom_id=main.id, name="Penalty", is_positive=False,
            xp_value=10, hp_value=0, gp_value=10,
        )
        retired = models.Behavior(
            classroom_id=main.id, name="Retired", is_positive=True,
            xp_value=10, is_active=False,
        )
        db.add_all([alice, bob, dora, ivan, carol, participation, big_project, disruption, penalty, retired])
        await db.commit()

        return SimpleNamespace(
            classroom_id=main.id,
            other_classroom_id=other.id,
            alice=alice.id,
            bob=bob.id,
            dora=dora.id,
            ivan=ivan.id,
            carol=carol.id,
            participation=participation.id,
            big_project=big_project.id,
            disruption=disruption.id,
            penalty=penalty.id,
            retired=retired.id,
        )


@pytest.fixture
def make_badge(session_factory):
    """Insert a badge; `condition` may be a dict (stored as JSON) or raw text"""
    created = []

    async def _make(name, condition=None, classroom_id=None, **kwargs):
        if isinstance(condition, dict):
            condition = json.dumps(condition)
        kwargs.setdefault('created_at', datetime(2024, 1, 1) + timedelta(seconds=len(created)))
        kwargs.setdefault('scope', 'CLASSROOM' if classroom_id else 'SYSTEM')
        async with session_factory() as db:
            badge = models.Badge(
                name=name,
                classroom_id=classroom_id,
                unlock_condition=condition,
                **kwargs,
            )
            db.add(badge)
            await db.commit()
        created.append(badge.id)
        return badge.id

    return _make


@pytest.fixture
def load_student(session_factory):
    async def _load(student_id):
        async with session_factory() as db:
            result = await db.execute(
                select(models.StudentProfile).where(models.StudentProfile.id == student_id)
            )
            return result.scalar_one()
    return _load


@pytest.fixture
def count_rows(session_factory):
    async def _count(model, **filters):
        async with session_factory() as db:
            query = select(model)
            for key, value in filters.items():
                query = query.where(getattr(model, key) == value)
            result = await db.execute(query)
            return len(result.scalars().all())
    return _count


@pytest.fixture(scope="function")
async def client(session_factory, points_engine):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_points_engine] = lambda: points_engine

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
