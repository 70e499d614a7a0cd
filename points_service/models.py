"""
SQLAlchemy models for the points engine.

NOTE: enum-like columns are stored as plain VARCHAR with the str-Enum value,
so adding a member never needs a database enum migration.
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from points_service.config import get_settings
from points_service.core.db import Base

settings = get_settings()


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the naive DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PointType(str, enum.Enum):
    """Resource tracks a student accumulates"""
    XP = "XP"
    HP = "HP"
    GP = "GP"


class PointAction(str, enum.Enum):
    ADD = "ADD"
    REMOVE = "REMOVE"


class LevelCurve(str, enum.Enum):
    """XP-to-level curves a classroom can select"""
    LINEAR = "linear"
    PROGRESSIVE = "progressive"


class BadgeScope(str, enum.Enum):
    SYSTEM = "SYSTEM"
    CLASSROOM = "CLASSROOM"


class AssignmentMode(str, enum.Enum):
    """How a badge may be obtained"""
    MANUAL = "MANUAL"
    AUTOMATIC = "AUTOMATIC"
    BOTH = "BOTH"


class BadgeCategory(str, enum.Enum):
    PROGRESS = "PROGRESS"
    PARTICIPATION = "PARTICIPATION"
    SOCIAL = "SOCIAL"
    SHOP = "SHOP"
    SPECIAL = "SPECIAL"
    SECRET = "SECRET"
    CUSTOM = "CUSTOM"


class BadgeRarity(str, enum.Enum):
    COMMON = "COMMON"
    RARE = "RARE"
    EPIC = "EPIC"
    LEGENDARY = "LEGENDARY"


class Classroom(Base):
    """Classroom with its point configuration (max HP, XP per level, HP floor policy)"""
    __tablename__ = "classrooms"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    teacher_id = Column(String(36), nullable=True, index=True)

    # Point configuration
    max_hp = Column(Integer, nullable=False, default=settings.DEFAULT_MAX_HP)
    xp_per_level = Column(Integer, nullable=False, default=settings.DEFAULT_XP_PER_LEVEL)
    allow_negative_hp = Column(Boolean, nullable=False, default=False)
    level_curve = Column(String(20), nullable=False, default=LevelCurve.LINEAR.value)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    students = relationship("StudentProfile", back_populates="classroom")
    behaviors = relationship("Behavior", back_populates="classroom")


class StudentProfile(Base):
    """
    A student's resources inside one classroom.

    `level` is a cached projection of `xp`. Only the engine writes it, in the
    same transaction that writes `xp`. `version` backs optimistic locking.
    """
    __tablename__ = "student_profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    classroom_id = Column(String(36), ForeignKey("classrooms.id"), nullable=False, index=True)
    display_name = Column(String(100), nullable=True)

    xp = Column(Integer, nullable=False, default=0)
    hp = Column(Integer, nullable=False, default=settings.DEFAULT_MAX_HP)
    gp = Column(Integer, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)

    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    classroom = relationship("Classroom", back_populates="students")

    __mapper_args__ = {"version_id_col": version}


class Behavior(Base):
    """Reward template a teacher applies to students"""
    __tablename__ = "behaviors"

    id = Column(String(36), primary_key=True, default=new_id)
    classroom_id = Column(String(36), ForeignKey("classrooms.id"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_positive = Column(Boolean, nullable=False)

    xp_value = Column(Integer, nullable=True)
    hp_value = Column(Integer, nullable=True)
    gp_value = Column(Integer, nullable=True)

    # Legacy single-track reward, used when a per-track value is NULL
    point_type = Column(String(2), nullable=True)
    point_value = Column(Integer, nullable=True)

    icon = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    classroom = relationship("Classroom", back_populates="behaviors")

    __table_args__ = (
        Index("idx_behaviors_classroom_active", "classroom_id", "is_active"),
    )


class Badge(Base):
    """Achievement definition, optionally unlocked automatically by a condition"""
    __tablename__ = "badges"

    id = Column(String(36), primary_key=True, default=new_id)
    scope = Column(String(20), nullable=False, default=BadgeScope.CLASSROOM.value)
    classroom_id = Column(String(36), ForeignKey("classrooms.id"), nullable=True, index=True)
    created_by = Column(String(36), nullable=True)

    name = Column(String(100), nullable=False)
    description = Column(String(255), nullable=False, default="")
    icon = Column(String(50), nullable=False, default="🏅")
    category = Column(String(20), nullable=False, default=BadgeCategory.CUSTOM.value)
    rarity = Column(String(20), nullable=False, default=BadgeRarity.COMMON.value)

    assignment_mode = Column(String(20), nullable=False, default=AssignmentMode.AUTOMATIC.value)
    # JSON text, NULL for manual-only badges. Parsed defensively by logic.conditions
    unlock_condition = Column(Text, nullable=True)

    reward_xp = Column(Integer, nullable=False, default=0)
    reward_gp = Column(Integer, nullable=False, default=0)

    is_secret = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class StudentBadge(Base):
    """Badge owned by a student. At most one row per (student, badge)."""
    __tablename__ = "student_badges"

    id = Column(String(36), primary_key=True, default=new_id)
    student_id = Column(String(36), ForeignKey("student_profiles.id"), nullable=False)
    badge_id = Column(String(36), ForeignKey("badges.id"), nullable=False)
    awarded_at = Column(DateTime, default=utcnow, nullable=False)
    awarded_by = Column(String(36), nullable=True)
    reason = Column(String(255), nullable=True)

    badge = relationship("Badge")

    __table_args__ = (
        UniqueConstraint("student_id", "badge_id", name="uq_student_badges_student_badge"),
    )


class BehaviorApplication(Base):
    """One row per (apply call, student); the source of the badge counters"""
    __tablename__ = "behavior_applications"

    id = Column(String(36), primary_key=True, default=new_id)
    student_id = Column(String(36), ForeignKey("student_profiles.id"), nullable=False)
    behavior_id = Column(String(36), ForeignKey("behaviors.id"), nullable=False)
    is_positive = Column(Boolean, nullable=False)
    applied_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_behavior_applications_student_behavior", "student_id", "behavior_id"),
    )


class PointLog(Base):
    """Audit row for every non-zero change on one resource track"""
    __tablename__ = "point_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    student_id = Column(String(36), ForeignKey("student_profiles.id"), nullable=False)
    behavior_id = Column(String(36), nullable=True)
    badge_id = Column(String(36), nullable=True)
    point_type = Column(String(2), nullable=False)
    action = Column(String(10), nullable=False)
    amount = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    given_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_point_logs_student_date", "student_id", "created_at"),
    )
