"""
Badge Condition Evaluator

Badge unlock conditions arrive as loosely typed JSON. They are parsed once
into a closed set of frozen dataclasses and then evaluated in memory against
a counters snapshot.

PRINCIPLES:
1. Parsing never raises: unknown or malformed payloads become NeverCondition
2. Evaluation is pure, no database access
3. Ownership is checked before the predicate (cheapest short-circuit)
4. Deterministic order: (created_at, id)
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union
from datetime import datetime
import json
import logging
import math

from points_service.models import AssignmentMode

logger = logging.getLogger(__name__)


# ============================================================================
# Condition types
# ============================================================================

BEHAVIOR_COUNT = 'BEHAVIOR_COUNT'
BEHAVIOR_CATEGORY = 'BEHAVIOR_CATEGORY'
ANY_BEHAVIOR = 'ANY_BEHAVIOR'
XP_TOTAL = 'XP_TOTAL'
LEVEL = 'LEVEL'
COMPOUND = 'COMPOUND'

CONDITION_TYPES = {BEHAVIOR_COUNT, BEHAVIOR_CATEGORY, ANY_BEHAVIOR, XP_TOTAL, LEVEL, COMPOUND}
MAX_COMPOUND_DEPTH = 4
CATEGORIES = {'positive', 'negative'}

AUTOMATIC_MODES = {AssignmentMode.AUTOMATIC.value, AssignmentMode.BOTH.value}


@dataclass(frozen=True)
class BehaviorCountCondition:
    behavior_id: str
    count: int
    type: str = BEHAVIOR_COUNT


@dataclass(frozen=True)
class BehaviorCategoryCondition:
    category: str
    count: int
    type: str = BEHAVIOR_CATEGORY


@dataclass(frozen=True)
class AnyBehaviorCondition:
    count: int
    type: str = ANY_BEHAVIOR


@dataclass(frozen=True)
class XpTotalCondition:
    value: int
    type: str = XP_TOTAL


@dataclass(frozen=True)
class LevelCondition:
    value: int
    type: str = LEVEL


@dataclass(frozen=True)
class CompoundCondition:
    """Holds when every sub-condition holds"""
    conditions: Tuple[Any, ...]
    type: str = COMPOUND


@dataclass(frozen=True)
class NeverCondition:
    """Stand-in for anything that could not be parsed. Never satisfied."""
    reason: str = ''
    type: str = 'NEVER'


Condition = Union[
    BehaviorCountCondition,
    BehaviorCategoryCondition,
    AnyBehaviorCondition,
    XpTotalCondition,
    LevelCondition,
    CompoundCondition,
    NeverCondition,
]


class UnknownConditionType(ValueError):
    pass


@dataclass
class BadgeCounters:
    """
    Read model for one student, taken after the ledger update.

    behavior_counts: cumulative applications per behavior id
    positive_count / negative_count: cumulative applications per polarity
    """
    xp: int = 0
    level: int = 1
    behavior_counts: Dict[str, int] = field(default_factory=dict)
    positive_count: int = 0
    negative_count: int = 0

    @property
    def total_count(self) -> int:
        return self.positive_count + self.negative_count

    def record_application(self, behavior_id: str, is_positive: bool) -> None:
        self.behavior_counts[behavior_id] = self.behavior_counts.get(behavior_id, 0) + 1
        if is_positive:
            self.positive_count += 1
        else:
            self.negative_count += 1


# ============================================================================
# Parsing
# ============================================================================

def _decode(raw: Any) -> Any:
    """
    Decode a stored condition. Strings are JSON-decoded, and decoded again if
    the first pass yields another string (double-encoded payloads).
    """
    value = raw
    for _ in range(2):
        if not isinstance(value, (str, bytes)):
            break
        value = json.loads(value)
    return value


def _positive_int(payload: Dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or value is None:
        raise ValueError(f"'{key}' is required")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"'{key}' must be finite, got: {value}")
    number = int(value)
    if number != value and not isinstance(value, str):
        raise ValueError(f"'{key}' must be an integer, got: {value}")
    if number < 0:
        raise ValueError(f"'{key}' must be >= 0, got: {number}")
    return number


def _build(payload: Any, depth: int = 0) -> Condition:
    """Build a Condition from a decoded payload. Raises ValueError when malformed."""
    if not isinstance(payload, dict):
        raise ValueError("not an object")

    condition_type = payload.get('type')

    if condition_type == BEHAVIOR_COUNT:
        behavior_id = payload.get('behaviorId')
        if not behavior_id or not isinstance(behavior_id, str):
            raise ValueError("'behaviorId' is required")
        return BehaviorCountCondition(behavior_id=behavior_id, count=_positive_int(payload, 'count'))

    if condition_type == BEHAVIOR_CATEGORY:
        category = payload.get('category', 'positive')
        if category not in CATEGORIES:
            raise ValueError(f"category must be one of {CATEGORIES}, got: {category}")
        return BehaviorCategoryCondition(category=category, count=_positive_int(payload, 'count'))

    if condition_type == ANY_BEHAVIOR:
        return AnyBehaviorCondition(count=_positive_int(payload, 'count'))

    if condition_type == XP_TOTAL:
        return XpTotalCondition(value=_positive_int(payload, 'value'))

    if condition_type == LEVEL:
        return LevelCondition(value=_positive_int(payload, 'value'))

    if condition_type == COMPOUND:
        if depth >= MAX_COMPOUND_DEPTH:
            raise ValueError(f"compound conditions nested deeper than {MAX_COMPOUND_DEPTH}")
        parts = payload.get('conditions')
        if not isinstance(parts, list) or not parts:
            raise ValueError("'conditions' must be a non-empty list")
        return CompoundCondition(conditions=tuple(_build(part, depth + 1) for part in parts))

    raise UnknownConditionType(f"unknown type {condition_type!r}")


def parse_condition(raw: Any) -> Optional[Condition]:
    """
    Turn a stored unlock condition into a Condition.

    Returns None for a NULL condition (manual-only badges) and NeverCondition
    for anything malformed. Never raises.
    """
    if raw is None:
        return None

    try:
        payload = _decode(raw)
    except Exception as e:
        logger.warning(f"Unparseable badge condition {raw!r}: {e}")
        return NeverCondition(reason=f"invalid JSON: {e}")

    if payload is None:
        return None

    try:
        return _build(payload)
    except UnknownConditionType as e:
        logger.warning(f"Unknown badge condition type in {payload!r}")
        return NeverCondition(reason=str(e))
    except Exception as e:
        logger.warning(f"Malformed badge condition {payload!r}: {e}")
        return NeverCondition(reason=str(e))


# ============================================================================
# Evaluation
# ============================================================================

def progress(condition: Condition, counters: BadgeCounters) -> Tuple[int, int]:
    """
    Current and target values of a condition.

    Returns:
        (current_value, target_value); (0, 0) for NeverCondition.
        A compound condition reports how many of its parts hold.
    """
    if isinstance(condition, CompoundCondition):
        met = sum(1 for part in condition.conditions if evaluate(part, counters))
        return met, len(condition.conditions)
    if isinstance(condition, BehaviorCountCondition):
        return counters.behavior_counts.get(condition.behavior_id, 0), condition.count
    if isinstance(condition, BehaviorCategoryCondition):
        current = counters.positive_count if condition.category == 'positive' else counters.negative_count
        return current, condition.count
    if isinstance(condition, AnyBehaviorCondition):
        return counters.total_count, condition.count
    if isinstance(condition, XpTotalCondition):
        return counters.xp, condition.value
    if isinstance(condition, LevelCondition):
        return counters.level, condition.value
    return 0, 0


def evaluate(condition: Optional[Condition], counters: BadgeCounters) -> bool:
    """Evaluate if the student's counters meet a condition"""
    if condition is None or isinstance(condition, NeverCondition):
        return False

    if isinstance(condition, CompoundCondition):
        return all(evaluate(part, counters) for part in condition.conditions)

    current, required = progress(condition, counters)
    result = current >= required

    logger.debug(f"Condition eval: {condition.type} >= {required} (current: {current}) -> {result}")
    return result


def badge_sort_key(badge: Any) -> Tuple[datetime, str]:
    return (badge.created_at or datetime.min, str(badge.id))


class BadgeEvaluator:
    """Selects the automatic badges a student newly satisfies."""

    def __init__(self, badges: Iterable[Any]):
        self.badges = sorted(
            (b for b in badges if b.assignment_mode in AUTOMATIC_MODES and b.unlock_condition is not None),
            key=badge_sort_key,
        )
        self._conditions: Dict[str, Optional[Condition]] = {}

    def condition_for(self, badge: Any) -> Optional[Condition]:
        """Parse each badge condition once per evaluator"""
        if badge.id not in self._conditions:
            condition = parse_condition(badge.unlock_condition)
            if isinstance(condition, NeverCondition):
                logger.error(
                    f"Badge {badge.id} has an invalid unlock condition, treating as never satisfied",
                    extra={'badge_id': badge.id, 'reason': condition.reason},
                )
            self._conditions[badge.id] = condition
        return self._conditions[badge.id]

    def evaluate_pending(self, owned_ids: Set[str], counters: BadgeCounters) -> List[Any]:
        """
        Badges not yet owned whose condition holds, in (created_at, id) order.
        """
        satisfied = []
        for badge in self.badges:
            if badge.id in owned_ids:
                continue
            if evaluate(self.condition_for(badge), counters):
                satisfied.append(badge)
        return satisfied
