"""
Student point mutation

The one place a StudentProfile's xp/hp/gp/level columns are written:
ledger -> level resolver -> audit log rows, on an already locked profile.
"""
from typing import List, Optional, Tuple
import logging

from points_service import models
from points_service.logic.ledger import (
    ClassroomPointConfig,
    LedgerResult,
    PointDelta,
    ResourceLedger,
    ResourceSnapshot,
)
from points_service.logic.leveling import LevelTransition, detect_level_up

logger = logging.getLogger(__name__)


def build_point_logs(
    student_id: str,
    delta: PointDelta,
    reason: Optional[str] = None,
    given_by: Optional[str] = None,
    behavior_id: Optional[str] = None,
    badge_id: Optional[str] = None,
) -> List[models.PointLog]:
    """One audit row per non-zero track, amount stored as a magnitude"""
    logs = []
    for point_type, amount in (
        (models.PointType.XP, delta.dxp),
        (models.PointType.HP, delta.dhp),
        (models.PointType.GP, delta.dgp),
    ):
        if amount == 0:
            continue
        logs.append(models.PointLog(
            student_id=student_id,
            behavior_id=behavior_id,
            badge_id=badge_id,
            point_type=point_type.value,
            action=(models.PointAction.ADD if amount > 0 else models.PointAction.REMOVE).value,
            amount=abs(amount),
            reason=reason,
            given_by=given_by,
        ))
    return logs


def apply_points(
    student: models.StudentProfile,
    config: ClassroomPointConfig,
    delta: PointDelta,
) -> Tuple[LedgerResult, LevelTransition]:
    """
    Apply a signed delta to a student and recompute the cached level.

    Level always follows xp; it is never set from anywhere else.
    """
    old_xp = student.xp or 0
    result = ResourceLedger(config).apply_delta(ResourceSnapshot.from_student(student), delta)

    student.xp = result.new_xp
    student.hp = result.new_hp
    student.gp = result.new_gp
    transition = detect_level_up(old_xp, result.new_xp, config.xp_per_level, config.level_curve)
    student.level = transition.to_level

    if transition.leveled_down:
        logger.info(
            f"Student {student.id} dropped from level {transition.from_level} to {transition.to_level}",
            extra={'student_id': student.id},
        )
    return result, transition
