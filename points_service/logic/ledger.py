"""
Resource Ledger - bounded XP / HP / GP arithmetic

Rules:
- XP never goes below 0
- HP is capped at the classroom's max_hp; floored at 0 unless the classroom
  allows negative HP
- GP never goes below 0, whatever the classroom config says

Pure logic over value snapshots. Persistence happens in the callers.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

from points_service.models import LevelCurve, PointType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassroomPointConfig:
    """Read-only subset of a classroom the engine depends on"""
    max_hp: int = 100
    xp_per_level: int = 100
    allow_negative_hp: bool = False
    level_curve: str = LevelCurve.LINEAR.value

    @classmethod
    def from_classroom(cls, classroom: Any) -> "ClassroomPointConfig":
        return cls(
            max_hp=classroom.max_hp,
            xp_per_level=classroom.xp_per_level or 100,
            allow_negative_hp=bool(classroom.allow_negative_hp),
            level_curve=classroom.level_curve or LevelCurve.LINEAR.value,
        )


@dataclass(frozen=True)
class ResourceSnapshot:
    xp: int
    hp: int
    gp: int

    @classmethod
    def from_student(cls, student: Any) -> "ResourceSnapshot":
        return cls(xp=student.xp, hp=student.hp, gp=student.gp)


@dataclass(frozen=True)
class PointDelta:
    dxp: int = 0
    dhp: int = 0
    dgp: int = 0

    def is_zero(self) -> bool:
        return self.dxp == 0 and self.dhp == 0 and self.dgp == 0

    @classmethod
    def for_track(cls, point_type: str, amount: int) -> "PointDelta":
        """Delta touching a single resource track"""
        point_type = PointType(point_type)
        if point_type == PointType.XP:
            return cls(dxp=amount)
        if point_type == PointType.HP:
            return cls(dhp=amount)
        return cls(dgp=amount)


@dataclass(frozen=True)
class LedgerResult:
    new_xp: int
    new_hp: int
    new_gp: int
    hp_clamped_low: bool = False
    hp_clamped_high: bool = False
    gp_clamped_low: bool = False
    xp_clamped_low: bool = False

    @property
    def hp_capped(self) -> bool:
        return self.hp_clamped_low or self.hp_clamped_high


def behavior_values(behavior: Any) -> Dict[str, int]:
    """
    Resolve a behavior's reward magnitudes.

    Per-track values win; a NULL per-track value falls back to the legacy
    (point_type, point_value) pair for that track only.
    """
    legacy_type = getattr(behavior, 'point_type', None)
    legacy_value = getattr(behavior, 'point_value', None) or 0

    def resolve(value: Optional[int], track: PointType) -> int:
        if value is not None:
            return abs(int(value))
        return abs(int(legacy_value)) if legacy_type == track.value else 0

    return {
        'xp': resolve(behavior.xp_value, PointType.XP),
        'hp': resolve(behavior.hp_value, PointType.HP),
        'gp': resolve(behavior.gp_value, PointType.GP),
    }


def signed_delta(behavior: Any) -> PointDelta:
    """
    Signed deltas for a behavior. The sign flips all three tracks at once:
    a behavior is wholly positive or wholly negative.
    """
    values = behavior_values(behavior)
    sign = 1 if behavior.is_positive else -1
    return PointDelta(
        dxp=sign * values['xp'],
        dhp=sign * values['hp'],
        dgp=sign * values['gp'],
    )


class ResourceLedger:
    """Applies signed deltas to a resource snapshot under one classroom's policy."""

    def __init__(self, config: ClassroomPointConfig):
        self.config = config

    def apply_delta(self, snapshot: ResourceSnapshot, delta: PointDelta) -> LedgerResult:
        raw_xp = snapshot.xp + delta.dxp
        new_xp = max(0, raw_xp)

        raw_hp = snapshot.hp + delta.dhp
        new_hp = raw_hp
        hp_clamped_high = False
        hp_clamped_low = False
        if new_hp > self.config.max_hp:
            new_hp = self.config.max_hp
            hp_clamped_high = True
        if not self.config.allow_negative_hp and new_hp < 0:
            new_hp = 0
            hp_clamped_low = True

        raw_gp = snapshot.gp + delta.dgp
        new_gp = max(0, raw_gp)

        result = LedgerResult(
            new_xp=new_xp,
            new_hp=new_hp,
            new_gp=new_gp,
            hp_clamped_low=hp_clamped_low,
            hp_clamped_high=hp_clamped_high,
            gp_clamped_low=raw_gp < 0,
            xp_clamped_low=raw_xp < 0,
        )

        if result.hp_capped or result.gp_clamped_low or result.xp_clamped_low:
            logger.debug(
                f"Ledger clamped: xp {raw_xp}->{new_xp}, hp {raw_hp}->{new_hp}, "
                f"gp {raw_gp}->{new_gp}"
            )

        return result


def apply_delta(
    snapshot: ResourceSnapshot,
    delta: PointDelta,
    config: ClassroomPointConfig,
) -> LedgerResult:
    """Functional shortcut for ResourceLedger(config).apply_delta(...)"""
    return ResourceLedger(config).apply_delta(snapshot, delta)
