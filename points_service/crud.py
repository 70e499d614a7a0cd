"""
CRUD operations for the points engine
All functions are async and take an AsyncSession; none of them commit.
Transaction boundaries belong to the callers (one per student).
"""
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from points_service import models
from points_service.logic.conditions import BadgeCounters


# ==================== CLASSROOMS ====================

async def get_classroom(db: AsyncSession, classroom_id: str) -> Optional[models.Classroom]:
    result = await db.execute(select(models.Classroom).where(models.Classroom.id == classroom_id))
    return result.scalar_one_or_none()


# ==================== BEHAVIORS ====================

async def get_behavior(db: AsyncSession, behavior_id: str) -> Optional[models.Behavior]:
    result = await db.execute(select(models.Behavior).where(models.Behavior.id == behavior_id))
    return result.scalar_one_or_none()


async def create_behavior(db: AsyncSession, **values) -> models.Behavior:
    behavior = models.Behavior(**values)
    db.add(behavior)
    await db.flush()
    return behavior


# ==================== STUDENTS ====================

async def get_student(db: AsyncSession, student_id: str) -> Optional[models.StudentProfile]:
    result = await db.execute(select(models.StudentProfile).where(models.StudentProfile.id == student_id))
    return result.scalar_one_or_none()


async def get_students_by_ids(db: AsyncSession, student_ids: Sequence[str]) -> Dict[str, models.StudentProfile]:
    """Students keyed by id, whatever their classroom"""
    if not student_ids:
        return {}
    result = await db.execute(
        select(models.StudentProfile).where(models.StudentProfile.id.in_(list(student_ids)))
    )
    return {student.id: student for student in result.scalars().all()}


async def lock_student(db: AsyncSession, student_id: str) -> Optional[models.StudentProfile]:
    """
    Load a student profile with a row lock (SELECT ... FOR UPDATE).

    populate_existing makes sure a row already in the identity map is
    refreshed from the locked read instead of served stale.
    """
    result = await db.execute(
        select(models.StudentProfile)
        .where(models.StudentProfile.id == student_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ==================== BADGES ====================

async def get_badge(db: AsyncSession, badge_id: str) -> Optional[models.Badge]:
    result = await db.execute(select(models.Badge).where(models.Badge.id == badge_id))
    return result.scalar_one_or_none()


async def get_classroom_badges(db: AsyncSession, classroom_id: str) -> List[models.Badge]:
    """Active SYSTEM badges plus the classroom's own active badges"""
    result = await db.execute(
        select(models.Badge)
        .where(
            and_(
                models.Badge.is_active.is_(True),
                or_(
                    models.Badge.scope == models.BadgeScope.SYSTEM.value,
                    models.Badge.classroom_id == classroom_id,
                ),
            )
        )
        .order_by(models.Badge.created_at, models.Badge.id)
    )
    return list(result.scalars().all())


async def create_badge(db: AsyncSession, **values) -> models.Badge:
    badge = models.Badge(**values)
    db.add(badge)
    await db.flush()
    return badge


async def get_owned_badge_ids(db: AsyncSession, student_id: str) -> Set[str]:
    result = await db.execute(
        select(models.StudentBadge.badge_id).where(models.StudentBadge.student_id == student_id)
    )
    return set(result.scalars().all())


async def get_student_badges(db: AsyncSession, student_id: str) -> List[models.StudentBadge]:
    result = await db.execute(
        select(models.StudentBadge)
        .where(models.StudentBadge.student_id == student_id)
        .options(selectinload(models.StudentBadge.badge))
        .order_by(models.StudentBadge.awarded_at, models.StudentBadge.id)
    )
    return list(result.scalars().all())


async def get_student_badge(
    db: AsyncSession, student_id: str, badge_id: str
) -> Optional[models.StudentBadge]:
    result = await db.execute(
        select(models.StudentBadge).where(
            and_(
                models.StudentBadge.student_id == student_id,
                models.StudentBadge.badge_id == badge_id,
            )
        )
    )
    return result.scalar_one_or_none()


async def create_student_badge(
    db: AsyncSession,
    student_id: str,
    badge_id: str,
    awarded_by: Optional[str] = None,
    reason: Optional[str] = None,
) -> models.StudentBadge:
    """Insert an award. The unique constraint rejects a concurrent duplicate."""
    student_badge = models.StudentBadge(
        student_id=student_id,
        badge_id=badge_id,
        awarded_at=models.utcnow(),
        awarded_by=awarded_by,
        reason=reason,
    )
    db.add(student_badge)
    await db.flush()
    return student_badge


async def delete_student_badge(db: AsyncSession, student_id: str, badge_id: str) -> int:
    result = await db.execute(
        delete(models.StudentBadge).where(
            and_(
                models.StudentBadge.student_id == student_id,
                models.StudentBadge.badge_id == badge_id,
            )
        )
    )
    return result.rowcount


# ==================== COUNTERS & LOGS ====================

async def load_counters(db: AsyncSession, student: models.StudentProfile) -> BadgeCounters:
    """Aggregate behavior applications into the badge read model"""
    result = await db.execute(
        select(
            models.BehaviorApplication.behavior_id,
            models.BehaviorApplication.is_positive,
            func.count(models.BehaviorApplication.id),
        )
        .where(models.BehaviorApplication.student_id == student.id)
        .group_by(models.BehaviorApplication.behavior_id, models.BehaviorApplication.is_positive)
    )

    counters = BadgeCounters(xp=student.xp, level=student.level)
    for behavior_id, is_positive, count in result.all():
        counters.behavior_counts[behavior_id] = counters.behavior_counts.get(behavior_id, 0) + count
        if is_positive:
            counters.positive_count += count
        else:
            counters.negative_count += count
    return counters


async def record_behavior_application(
    db: AsyncSession, student_id: str, behavior_id: str, is_positive: bool, applied_at: datetime
) -> models.BehaviorApplication:
    application = models.BehaviorApplication(
        student_id=student_id,
        behavior_id=behavior_id,
        is_positive=is_positive,
        applied_at=applied_at,
    )
    db.add(application)
    return application


def add_point_logs(db: AsyncSession, logs: List[models.PointLog]) -> None:
    if logs:
        db.add_all(logs)


async def get_point_logs(db: AsyncSession, student_id: str) -> List[models.PointLog]:
    result = await db.execute(
        select(models.PointLog)
        .where(models.PointLog.student_id == student_id)
        .order_by(models.PointLog.created_at, models.PointLog.id)
    )
    return list(result.scalars().all())
