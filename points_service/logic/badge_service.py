"""
Badge Service - award, revoke and progress

Rules:
- A badge is owned at most once per student (check first, unique constraint as backstop)
- Every award applies the badge reward through the same ledger as behaviors
- After each award pass the conditions are re-evaluated (fixed-point loop),
  since a reward can cross a level boundary or an XP threshold
- The loop is capped at max_iterations passes

All methods run inside the caller's transaction on a locked student profile.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from points_service import crud, models
from points_service.errors import NotFoundError, ValidationError
from points_service.logic.conditions import (
    BadgeCounters,
    BadgeEvaluator,
    NeverCondition,
    progress,
)
from points_service.logic.ledger import ClassroomPointConfig, PointDelta
from points_service.logic.student_points import apply_points, build_point_logs

logger = logging.getLogger(__name__)

MANUAL_MODES = {models.AssignmentMode.MANUAL.value, models.AssignmentMode.BOTH.value}


@dataclass
class ManualAwardResult:
    badge: models.Badge
    newly_awarded: bool
    student_badge: Optional[models.StudentBadge] = None


def badge_visible_in(badge: models.Badge, classroom_id: str) -> bool:
    """Active SYSTEM badges are visible everywhere, classroom badges only at home"""
    if not badge.is_active:
        return False
    if badge.scope == models.BadgeScope.SYSTEM.value:
        return True
    return badge.classroom_id == classroom_id


class BadgeService:
    """
    Badge awarding on top of the resource ledger.

    Args:
        max_iterations: Hard cap on fixed-point passes
    """

    def __init__(self, max_iterations: int = 10):
        self.max_iterations = max_iterations

    # ==================== AWARDING ====================

    async def _grant(
        self,
        db: AsyncSession,
        student: models.StudentProfile,
        config: ClassroomPointConfig,
        counters: BadgeCounters,
        badge: models.Badge,
        owned_ids: Set[str],
        awarded_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> models.StudentBadge:
        """Insert the ownership row and apply the badge reward"""
        student_badge = await crud.create_student_badge(
            db, student.id, badge.id, awarded_by=awarded_by, reason=reason
        )
        owned_ids.add(badge.id)

        reward = PointDelta(dxp=badge.reward_xp or 0, dgp=badge.reward_gp or 0)
        if not reward.is_zero():
            apply_points(student, config, reward)
            crud.add_point_logs(db, build_point_logs(
                student.id,
                reward,
                reason=f"Badge reward: {badge.name}",
                given_by=awarded_by,
                badge_id=badge.id,
            ))
            counters.xp = student.xp
            counters.level = student.level

        logger.info(
            f"Badge '{badge.name}' awarded to student {student.id}",
            extra={'student_id': student.id, 'badge_id': badge.id},
        )
        return student_badge

    async def award_pending(
        self,
        db: AsyncSession,
        student: models.StudentProfile,
        config: ClassroomPointConfig,
        counters: BadgeCounters,
    ) -> List[models.Badge]:
        """
        Award every automatic badge the student now satisfies, repeating until
        no new badge qualifies or the pass cap is hit.

        Returns:
            Newly awarded badges in award order
        """
        evaluator = BadgeEvaluator(await crud.get_classroom_badges(db, student.classroom_id))
        if not evaluator.badges:
            return []

        owned_ids = await crud.get_owned_badge_ids(db, student.id)
        awarded: List[models.Badge] = []
        passes = 0

        while True:
            pending = evaluator.evaluate_pending(owned_ids, counters)
            if not pending:
                break
            if passes >= self.max_iterations:
                logger.warning(
                    f"Badge evaluation for student {student.id} stopped after "
                    f"{self.max_iterations} passes with {len(pending)} badge(s) still pending",
                    extra={'student_id': student.id, 'pending': [b.id for b in pending]},
                )
                break
            passes += 1

            for badge in pending:
                await self._grant(
                    db, student, config, counters, badge, owned_ids,
                    reason="Automatic unlock",
                )
                awarded.append(badge)

        return awarded

    async def award_manually(
        self,
        db: AsyncSession,
        student: models.StudentProfile,
        config: ClassroomPointConfig,
        counters: BadgeCounters,
        badge_id: str,
        given_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> ManualAwardResult:
        """
        Teacher grant of a MANUAL or BOTH badge. Idempotent: an owned badge is
        returned with newly_awarded=False and no reward.
        """
        badge = await crud.get_badge(db, badge_id)
        if badge is None:
            raise NotFoundError(f"Badge {badge_id} not found")
        if badge.assignment_mode not in MANUAL_MODES:
            raise ValidationError(f"Badge '{badge.name}' can only be unlocked automatically")
        if not badge_visible_in(badge, student.classroom_id):
            raise ValidationError(f"Badge '{badge.name}' is not available in this classroom")

        existing = await crud.get_student_badge(db, student.id, badge.id)
        if existing is not None:
            logger.info(f"Student {student.id} already owns badge {badge.id}")
            return ManualAwardResult(badge=badge, newly_awarded=False, student_badge=existing)

        owned_ids = await crud.get_owned_badge_ids(db, student.id)
        student_badge = await self._grant(
            db, student, config, counters, badge, owned_ids,
            awarded_by=given_by, reason=reason,
        )
        return ManualAwardResult(badge=badge, newly_awarded=True, student_badge=student_badge)

    # ==================== REVOKE ====================

    async def revoke(self, db: AsyncSession, student_id: str, badge_id: str) -> None:
        """Remove an owned badge. Rewards already granted stay."""
        deleted = await crud.delete_student_badge(db, student_id, badge_id)
        if not deleted:
            raise NotFoundError(f"Student {student_id} does not own badge {badge_id}")
        logger.info(
            f"Badge {badge_id} revoked from student {student_id}",
            extra={'student_id': student_id, 'badge_id': badge_id},
        )

    # ==================== PROGRESS ====================

    async def progress(
        self,
        db: AsyncSession,
        student: models.StudentProfile,
    ) -> List[Dict[str, Any]]:
        """
        Progress towards each pending, non-secret automatic badge.

        Returns:
            Entries sorted by percentage, highest first
        """
        evaluator = BadgeEvaluator(await crud.get_classroom_badges(db, student.classroom_id))
        owned_ids = await crud.get_owned_badge_ids(db, student.id)
        counters = await crud.load_counters(db, student)

        entries = []
        for badge in evaluator.badges:
            if badge.id in owned_ids or badge.is_secret:
                continue
            condition = evaluator.condition_for(badge)
            if condition is None or isinstance(condition, NeverCondition):
                continue
            current, target = progress(condition, counters)
            if target <= 0:
                continue
            entries.append({
                'badge_id': badge.id,
                'name': badge.name,
                'description': badge.description,
                'icon': badge.icon,
                'rarity': badge.rarity,
                'condition_type': condition.type,
                'current': min(current, target),
                'target': target,
                'percentage': min(100, (current * 100) // target),
            })

        entries.sort(key=lambda e: e['percentage'], reverse=True)
        return entries
