"""
Points Engine - apply behaviors, adjust points, grant badges

Every mutation of a student runs as one unit of work:
1. In-process lock for the student
2. New session + transaction, profile loaded with SELECT ... FOR UPDATE
3. Ledger -> level -> counters -> badge fixed-point loop
4. Commit (version check on the profile); retried on conflict
5. Notification facts only after the commit succeeded

Students of one apply call are independent units, processed concurrently up
to `concurrency`. A failing student is reported in `errors` and never aborts
the others. Results always come back in input order.
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
import asyncio
import logging

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from points_service import crud, models
from points_service.errors import AppError, ConcurrencyError, NotFoundError, ValidationError
from points_service.logic.badge_service import BadgeService
from points_service.logic.ledger import (
    ClassroomPointConfig,
    PointDelta,
    behavior_values,
    signed_delta,
)
from points_service.logic.locks import StudentLocks
from points_service.logic.student_points import apply_points, build_point_logs

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (StaleDataError, IntegrityError, OperationalError)


# ============================================================================
# Results
# ============================================================================

@dataclass(frozen=True)
class BehaviorSummary:
    id: str
    name: str
    is_positive: bool
    xp_value: int
    hp_value: int
    gp_value: int

    @classmethod
    def from_behavior(cls, behavior: models.Behavior) -> "BehaviorSummary":
        values = behavior_values(behavior)
        return cls(
            id=behavior.id,
            name=behavior.name,
            is_positive=behavior.is_positive,
            xp_value=values['xp'],
            hp_value=values['hp'],
            gp_value=values['gp'],
        )


@dataclass
class StudentResult:
    student_id: str
    student_name: Optional[str]
    xp_change: int
    hp_change: int
    gp_change: int
    new_xp: int
    new_hp: int
    new_gp: int
    hp_capped: bool
    leveled_up: bool
    new_level: int


@dataclass
class LevelUp:
    student_id: str
    student_name: Optional[str]
    from_level: int
    to_level: int
    new_level: int = field(init=False)

    def __post_init__(self):
        self.new_level = self.to_level


@dataclass
class AwardedBadge:
    id: str
    name: str
    icon: str
    reward_xp: int
    reward_gp: int

    @classmethod
    def from_badge(cls, badge: models.Badge) -> "AwardedBadge":
        return cls(
            id=badge.id,
            name=badge.name,
            icon=badge.icon,
            reward_xp=badge.reward_xp or 0,
            reward_gp=badge.reward_gp or 0,
        )


@dataclass
class StudentAwards:
    student_id: str
    student_name: Optional[str]
    badges: List[AwardedBadge]


@dataclass
class StudentError:
    student_id: str
    error: str


@dataclass
class ApplyResult:
    behavior: BehaviorSummary
    students_affected: int = 0
    results: List[StudentResult] = field(default_factory=list)
    level_ups: List[LevelUp] = field(default_factory=list)
    awarded_badges: List[StudentAwards] = field(default_factory=list)
    errors: List[StudentError] = field(default_factory=list)


@dataclass
class StudentOutcome:
    """What one committed unit of work produced for a student"""
    result: StudentResult
    level_up: Optional[LevelUp] = None
    awards: Optional[StudentAwards] = None


@dataclass
class AdjustmentResult:
    student_id: str
    student_name: Optional[str]
    point_type: str
    amount: int
    new_xp: int
    new_hp: int
    new_gp: int
    new_level: int
    leveled_up: bool
    hp_capped: bool
    awarded_badges: List[AwardedBadge] = field(default_factory=list)


@dataclass
class ManualAwardOutcome:
    student_id: str
    badge_id: str
    badge_name: str
    newly_awarded: bool
    new_xp: int
    new_gp: int
    new_level: int
    awarded_badges: List[AwardedBadge] = field(default_factory=list)


def _outcome_for(
    student: models.StudentProfile,
    from_level: int,
    delta: PointDelta,
    hp_capped: bool,
    awarded: List[models.Badge],
) -> StudentOutcome:
    leveled_up = student.level > from_level
    outcome = StudentOutcome(
        result=StudentResult(
            student_id=student.id,
            student_name=student.display_name,
            xp_change=delta.dxp,
            hp_change=delta.dhp,
            gp_change=delta.dgp,
            new_xp=student.xp,
            new_hp=student.hp,
            new_gp=student.gp,
            hp_capped=hp_capped,
            leveled_up=leveled_up,
            new_level=student.level,
        )
    )
    if leveled_up:
        outcome.level_up = LevelUp(
            student_id=student.id,
            student_name=student.display_name,
            from_level=from_level,
            to_level=student.level,
        )
    if awarded:
        outcome.awards = StudentAwards(
            student_id=student.id,
            student_name=student.display_name,
            badges=[AwardedBadge.from_badge(b) for b in awarded],
        )
    return outcome


# ============================================================================
# Engine
# ============================================================================

class PointsEngine:
    """
    Entry point for every student point mutation.

    Args:
        session_factory: async_sessionmaker, one session per student unit
        notifier: Object with notify_level_up / notify_badges_awarded coroutines
        badge_service: BadgeService (fixed-point awarding)
        concurrency: Max students processed at once per apply call
        retry_attempts: Attempts per student before ConcurrencyError
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        notifier: Any = None,
        badge_service: Optional[BadgeService] = None,
        concurrency: int = 4,
        retry_attempts: int = 3,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.badges = badge_service or BadgeService()
        self.concurrency = max(1, concurrency)
        self.retry_attempts = max(1, retry_attempts)
        self.locks = StudentLocks()

    # ==================== UNIT OF WORK ====================

    async def _run_for_student(
        self,
        student_id: str,
        work: Callable[[AsyncSession, models.StudentProfile], Awaitable[Any]],
    ) -> Any:
        """
        Run `work` on a locked student profile in its own transaction.

        Raises:
            NotFoundError: Student does not exist
            ConcurrencyError: Conflicts on every attempt
        """
        async with self.locks.for_student(student_id):
            for attempt in range(1, self.retry_attempts + 1):
                try:
                    async with self.session_factory() as db:
                        async with db.begin():
                            student = await crud.lock_student(db, student_id)
                            if student is None:
                                raise NotFoundError(f"Student {student_id} not found")
                            return await work(db, student)
                except RETRYABLE_ERRORS as e:
                    logger.warning(
                        f"Conflict updating student {student_id} "
                        f"(attempt {attempt}/{self.retry_attempts}): {e}",
                        extra={'student_id': student_id},
                    )

        raise ConcurrencyError(
            f"Student {student_id} was modified concurrently, gave up after "
            f"{self.retry_attempts} attempts"
        )

    async def _notify(
        self,
        level_up: Optional[LevelUp],
        awards: Optional[StudentAwards],
    ) -> None:
        """Hand committed facts to the notifier. Delivery problems stay here."""
        if self.notifier is None:
            return
        try:
            if level_up is not None:
                await self.notifier.notify_level_up(
                    level_up.student_id, level_up.student_name, level_up.new_level
                )
            if awards is not None:
                await self.notifier.notify_badges_awarded(
                    awards.student_id, [b.name for b in awards.badges]
                )
        except Exception as e:
            logger.error(f"Error emitting notification facts: {e}", exc_info=True)

    # ==================== APPLY BEHAVIOR ====================

    async def apply_behavior(
        self,
        behavior_id: str,
        student_ids: Sequence[str],
        given_by: Optional[str] = None,
    ) -> ApplyResult:
        """
        Apply a behavior to a set of students

        Args:
            behavior_id: Behavior to apply
            student_ids: Target students, duplicates collapsed to the first occurrence
            given_by: Teacher applying the behavior (audit only)

        Returns:
            ApplyResult with per-student results in input order

        Raises:
            NotFoundError: Behavior missing or inactive
            ValidationError: No students, or a student that is unknown,
                inactive or outside the behavior's classroom
        """
        if not student_ids:
            raise ValidationError("At least one student is required")
        ordered_ids = list(dict.fromkeys(student_ids))

        async with self.session_factory() as db:
            behavior = await crud.get_behavior(db, behavior_id)
            if behavior is None or not behavior.is_active:
                raise NotFoundError(f"Behavior {behavior_id} not found")

            delta = signed_delta(behavior)
            if delta.is_zero():
                raise ValidationError(f"Behavior '{behavior.name}' has no point values")

            classroom = await crud.get_classroom(db, behavior.classroom_id)
            if classroom is None:
                raise NotFoundError(f"Classroom {behavior.classroom_id} not found")

            students = await crud.get_students_by_ids(db, ordered_ids)
            summary = BehaviorSummary.from_behavior(behavior)
            config = ClassroomPointConfig.from_classroom(classroom)

        invalid = [
            sid for sid in ordered_ids
            if sid not in students
            or not students[sid].is_active
            or students[sid].classroom_id != classroom.id
        ]
        if invalid:
            raise ValidationError(
                f"Students not found in classroom {classroom.id}: {', '.join(invalid)}"
            )

        logger.info(
            f"Applying behavior '{summary.name}' to {len(ordered_ids)} student(s)",
            extra={'behavior_id': summary.id, 'classroom_id': classroom.id},
        )

        semaphore = asyncio.Semaphore(self.concurrency)

        async def work(db: AsyncSession, student: models.StudentProfile) -> StudentOutcome:
            from_level = student.level
            counters = await crud.load_counters(db, student)

            ledger_result, _ = apply_points(student, config, delta)
            crud.add_point_logs(db, build_point_logs(
                student.id,
                delta,
                reason=f"Behavior: {summary.name}",
                given_by=given_by,
                behavior_id=summary.id,
            ))

            await crud.record_behavior_application(
                db, student.id, summary.id, summary.is_positive, models.utcnow()
            )
            counters.record_application(summary.id, summary.is_positive)
            counters.xp = student.xp
            counters.level = student.level

            awarded = await self.badges.award_pending(db, student, config, counters)
            return _outcome_for(student, from_level, delta, ledger_result.hp_capped, awarded)

        async def run(student_id: str):
            async with semaphore:
                try:
                    outcome = await self._run_for_student(student_id, work)
                except AppError as e:
                    logger.warning(
                        f"Behavior {summary.id} failed for student {student_id}: {e.message}",
                        extra={'student_id': student_id, 'behavior_id': summary.id},
                    )
                    return StudentError(student_id=student_id, error=e.message)
                except Exception as e:
                    logger.error(
                        f"Unexpected error applying behavior {summary.id} to student {student_id}: {e}",
                        extra={'student_id': student_id, 'behavior_id': summary.id},
                        exc_info=True,
                    )
                    return StudentError(student_id=student_id, error="Unexpected error")

                await self._notify(outcome.level_up, outcome.awards)
                return outcome

        outcomes = await asyncio.gather(*(run(sid) for sid in ordered_ids))

        result = ApplyResult(behavior=summary)
        for outcome in outcomes:
            if isinstance(outcome, StudentError):
                result.errors.append(outcome)
                continue
            result.results.append(outcome.result)
            if outcome.level_up is not None:
                result.level_ups.append(outcome.level_up)
            if outcome.awards is not None:
                result.awarded_badges.append(outcome.awards)
        result.students_affected = len(result.results)

        logger.info(
            f"Behavior '{summary.name}' applied: {result.students_affected} ok, "
            f"{len(result.errors)} failed, {len(result.level_ups)} level-up(s)",
            extra={'behavior_id': summary.id},
        )
        return result

    # ==================== MANUAL POINTS ====================

    async def adjust_points(
        self,
        student_id: str,
        point_type: str,
        amount: int,
        reason: Optional[str] = None,
        given_by: Optional[str] = None,
    ) -> AdjustmentResult:
        """
        Add (amount > 0) or remove (amount < 0) points on one track.

        Runs the same ledger, level and badge loop as a behavior, without
        counting as a behavior application.
        """
        if not amount:
            raise ValidationError("Amount must be non-zero")
        try:
            point_type = models.PointType(str(point_type).upper()).value
        except ValueError:
            raise ValidationError(f"Unknown point type: {point_type}")
        delta = PointDelta.for_track(point_type, amount)

        async def work(db: AsyncSession, student: models.StudentProfile) -> StudentOutcome:
            if not student.is_active:
                raise ValidationError(f"Student {student.id} is not active")
            classroom = await crud.get_classroom(db, student.classroom_id)
            config = ClassroomPointConfig.from_classroom(classroom)
            from_level = student.level
            counters = await crud.load_counters(db, student)

            ledger_result, _ = apply_points(student, config, delta)
            crud.add_point_logs(db, build_point_logs(
                student.id,
                delta,
                reason=reason or "Manual adjustment",
                given_by=given_by,
            ))
            counters.xp = student.xp
            counters.level = student.level

            awarded = await self.badges.award_pending(db, student, config, counters)
            return _outcome_for(student, from_level, delta, ledger_result.hp_capped, awarded)

        outcome = await self._run_for_student(student_id, work)
        await self._notify(outcome.level_up, outcome.awards)

        logger.info(
            f"Adjusted {point_type} by {amount} for student {student_id}",
            extra={'student_id': student_id, 'given_by': given_by},
        )
        return AdjustmentResult(
            student_id=outcome.result.student_id,
            student_name=outcome.result.student_name,
            point_type=point_type,
            amount=amount,
            new_xp=outcome.result.new_xp,
            new_hp=outcome.result.new_hp,
            new_gp=outcome.result.new_gp,
            new_level=outcome.result.new_level,
            leveled_up=outcome.result.leveled_up,
            hp_capped=outcome.result.hp_capped,
            awarded_badges=outcome.awards.badges if outcome.awards else [],
        )

    # ==================== MANUAL BADGES ====================

    async def award_badge_manually(
        self,
        student_id: str,
        badge_id: str,
        given_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> ManualAwardOutcome:
        """
        Teacher grant of a badge. Idempotent; a new grant applies the reward
        and re-runs automatic badge evaluation.
        """

        async def work(db: AsyncSession, student: models.StudentProfile):
            classroom = await crud.get_classroom(db, student.classroom_id)
            config = ClassroomPointConfig.from_classroom(classroom)
            from_level = student.level
            counters = await crud.load_counters(db, student)

            granted = await self.badges.award_manually(
                db, student, config, counters, badge_id, given_by=given_by, reason=reason
            )
            awarded: List[models.Badge] = []
            if granted.newly_awarded:
                awarded.append(granted.badge)
                awarded.extend(await self.badges.award_pending(db, student, config, counters))

            outcome = _outcome_for(student, from_level, PointDelta(), False, awarded)
            return granted, outcome

        granted, outcome = await self._run_for_student(student_id, work)
        await self._notify(outcome.level_up, outcome.awards)

        return ManualAwardOutcome(
            student_id=student_id,
            badge_id=granted.badge.id,
            badge_name=granted.badge.name,
            newly_awarded=granted.newly_awarded,
            new_xp=outcome.result.new_xp,
            new_gp=outcome.result.new_gp,
            new_level=outcome.result.new_level,
            awarded_badges=outcome.awards.badges if outcome.awards else [],
        )

    async def revoke_badge(self, student_id: str, badge_id: str) -> None:
        """Remove a badge from a student; rewards are kept"""

        async def work(db: AsyncSession, student: models.StudentProfile) -> None:
            await self.badges.revoke(db, student.id, badge_id)

        await self._run_for_student(student_id, work)

    # ==================== READ MODELS ====================

    async def get_student_badges(self, student_id: str) -> List[models.StudentBadge]:
        async with self.session_factory() as db:
            student = await crud.get_student(db, student_id)
            if student is None:
                raise NotFoundError(f"Student {student_id} not found")
            return await crud.get_student_badges(db, student_id)

    async def get_badge_progress(self, student_id: str) -> List[Dict[str, Any]]:
        async with self.session_factory() as db:
            student = await crud.get_student(db, student_id)
            if student is None:
                raise NotFoundError(f"Student {student_id} not found")
            return await self.badges.progress(db, student)
