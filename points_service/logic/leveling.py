"""
Level Resolver

Implements:
- XP -> level conversion for the classroom's curve
- Level transition detection (a multi-level jump is one transition)
"""
from dataclasses import dataclass
import logging
import math

from points_service.models import LevelCurve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LevelTransition:
    from_level: int
    to_level: int

    @property
    def leveled_up(self) -> bool:
        return self.to_level > self.from_level

    @property
    def leveled_down(self) -> bool:
        return self.to_level < self.from_level

    @property
    def levels_gained(self) -> int:
        return self.to_level - self.from_level


def _check_xp_per_level(xp_per_level: int) -> None:
    if xp_per_level is None or xp_per_level <= 0:
        raise ValueError(f"xp_per_level must be positive, got: {xp_per_level}")


def resolve_level(xp: int, xp_per_level: int, curve: str = LevelCurve.LINEAR.value) -> int:
    """
    Calculate level based on total XP

    Linear:      level = 1 + (xp // xp_per_level)
    Progressive: reaching level N+1 costs N * xp_per_level more XP, so the total
                 for level N is xp_per_level * N * (N - 1) / 2

    Args:
        xp: Total XP
        xp_per_level: Classroom constant
        curve: 'linear' or 'progressive'

    Returns:
        Current level (minimum 1)
    """
    _check_xp_per_level(xp_per_level)
    if xp <= 0:
        return 1

    if curve == LevelCurve.PROGRESSIVE.value:
        level = int((1 + math.sqrt(1 + (8 * xp) / xp_per_level)) // 2)
        # Guard against float rounding right at a boundary
        while xp_for_level(level + 1, xp_per_level, curve) <= xp:
            level += 1
        while level > 1 and xp_for_level(level, xp_per_level, curve) > xp:
            level -= 1
        return max(1, level)

    return 1 + (xp // xp_per_level)


def xp_for_level(level: int, xp_per_level: int, curve: str = LevelCurve.LINEAR.value) -> int:
    """
    Total XP required to reach a level

    Args:
        level: Target level
        xp_per_level: Classroom constant
        curve: 'linear' or 'progressive'

    Returns:
        Total XP required
    """
    _check_xp_per_level(xp_per_level)
    if level <= 1:
        return 0

    if curve == LevelCurve.PROGRESSIVE.value:
        return xp_per_level * level * (level - 1) // 2

    return (level - 1) * xp_per_level


def detect_level_up(
    old_xp: int,
    new_xp: int,
    xp_per_level: int,
    curve: str = LevelCurve.LINEAR.value,
) -> LevelTransition:
    """
    Compare levels before and after an XP change.

    Only the endpoints are reported: 50 -> 550 XP at 100 XP per level is a
    single 1 -> 6 transition, never five separate level-ups.
    """
    transition = LevelTransition(
        from_level=resolve_level(old_xp, xp_per_level, curve),
        to_level=resolve_level(new_xp, xp_per_level, curve),
    )
    if transition.leveled_up:
        logger.debug(
            f"Level up {transition.from_level} -> {transition.to_level} "
            f"(+{transition.levels_gained})"
        )
    return transition
