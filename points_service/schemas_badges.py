"""
Badge Schemas (Pydantic)

- Unlock conditions are validated on the way in, so only well-formed
  conditions get stored. Stored rows are still parsed defensively.
- Mode and condition must agree: AUTOMATIC needs a condition,
  MANUAL never has one.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from points_service.logic.conditions import MAX_COMPOUND_DEPTH
from points_service.schemas import AwardedBadgeResponse, CamelModel


# ============================================================================
# Badge Condition Schema
# ============================================================================

class BadgeCondition(BaseModel):
    """
    Condition to unlock a badge automatically.

    Examples:
    - {"type": "BEHAVIOR_COUNT", "behaviorId": "b-1", "count": 3}
    - {"type": "BEHAVIOR_CATEGORY", "category": "positive", "count": 10}
    - {"type": "ANY_BEHAVIOR", "count": 25}
    - {"type": "XP_TOTAL", "value": 1000}
    - {"type": "LEVEL", "value": 5}
    - {"type": "COMPOUND", "conditions": [{"type": "LEVEL", "value": 3}, {"type": "ANY_BEHAVIOR", "count": 10}]}
    """
    type: str
    behaviorId: Optional[str] = None
    category: Optional[str] = None
    count: Optional[int] = Field(default=None, gt=0)
    value: Optional[int] = Field(default=None, gt=0)
    conditions: Optional[List["BadgeCondition"]] = None

    @field_validator('type')
    @classmethod
    def validate_type(cls, v: str) -> str:
        ALLOWED_TYPES = {'BEHAVIOR_COUNT', 'BEHAVIOR_CATEGORY', 'ANY_BEHAVIOR', 'XP_TOTAL', 'LEVEL', 'COMPOUND'}
        if v not in ALLOWED_TYPES:
            raise ValueError(f"type must be one of {ALLOWED_TYPES}, got: {v}")
        return v

    @field_validator('category')
    @classmethod
    def validate_category(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in {'positive', 'negative'}:
            raise ValueError(f"category must be 'positive' or 'negative', got: {v}")
        return v

    @model_validator(mode='after')
    def validate_fields_for_type(self):
        """Each condition type carries exactly the fields it needs"""
        if self.type == 'COMPOUND':
            if not self.conditions:
                raise ValueError("COMPOUND requires a non-empty conditions list")
            if self.compound_depth() > MAX_COMPOUND_DEPTH:
                raise ValueError(f"COMPOUND conditions can nest at most {MAX_COMPOUND_DEPTH} levels")
            return self
        if self.conditions is not None:
            raise ValueError(f"{self.type} does not take conditions")
        if self.type == 'BEHAVIOR_COUNT':
            if not self.behaviorId:
                raise ValueError("BEHAVIOR_COUNT requires behaviorId")
            if self.count is None:
                raise ValueError("BEHAVIOR_COUNT requires count")
        elif self.type == 'BEHAVIOR_CATEGORY':
            if self.category is None:
                raise ValueError("BEHAVIOR_CATEGORY requires category")
            if self.count is None:
                raise ValueError("BEHAVIOR_CATEGORY requires count")
        elif self.type == 'ANY_BEHAVIOR':
            if self.count is None:
                raise ValueError("ANY_BEHAVIOR requires count")
        elif self.value is None:
            raise ValueError(f"{self.type} requires value")
        return self

    def compound_depth(self) -> int:
        if self.type != 'COMPOUND':
            return 0
        return 1 + max((c.compound_depth() for c in self.conditions or []), default=0)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


BadgeCondition.model_rebuild()


# ============================================================================
# Badge Schemas
# ============================================================================

class BadgeCreate(CamelModel):
    """Badge definition created by a teacher (or a SYSTEM badge)"""
    scope: str = 'CLASSROOM'
    classroom_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default='', max_length=255)
    icon: str = Field(default='🏅', max_length=50)
    category: str = 'CUSTOM'
    rarity: str = 'COMMON'
    assignment_mode: str = 'AUTOMATIC'
    unlock_condition: Optional[BadgeCondition] = None
    reward_xp: int = Field(default=0, ge=0)
    reward_gp: int = Field(default=0, ge=0)
    is_secret: bool = False

    @field_validator('scope')
    @classmethod
    def validate_scope(cls, v: str) -> str:
        if v not in {'SYSTEM', 'CLASSROOM'}:
            raise ValueError(f"scope must be SYSTEM or CLASSROOM, got: {v}")
        return v

    @field_validator('assignment_mode')
    @classmethod
    def validate_assignment_mode(cls, v: str) -> str:
        if v not in {'MANUAL', 'AUTOMATIC', 'BOTH'}:
            raise ValueError(f"assignmentMode must be MANUAL, AUTOMATIC or BOTH, got: {v}")
        return v

    @field_validator('category')
    @classmethod
    def validate_category(cls, v: str) -> str:
        ALLOWED_CATEGORIES = {'PROGRESS', 'PARTICIPATION', 'SOCIAL', 'SHOP', 'SPECIAL', 'SECRET', 'CUSTOM'}
        if v not in ALLOWED_CATEGORIES:
            raise ValueError(f"category must be one of {ALLOWED_CATEGORIES}, got: {v}")
        return v

    @field_validator('rarity')
    @classmethod
    def validate_rarity(cls, v: str) -> str:
        if v not in {'COMMON', 'RARE', 'EPIC', 'LEGENDARY'}:
            raise ValueError(f"rarity must be COMMON, RARE, EPIC or LEGENDARY, got: {v}")
        return v

    @model_validator(mode='after')
    def validate_mode_and_scope(self):
        if self.assignment_mode == 'AUTOMATIC' and self.unlock_condition is None:
            raise ValueError("AUTOMATIC badges require an unlockCondition")
        if self.assignment_mode == 'MANUAL' and self.unlock_condition is not None:
            raise ValueError("MANUAL badges cannot have an unlockCondition")
        if self.scope == 'CLASSROOM' and not self.classroom_id:
            raise ValueError("CLASSROOM badges require a classroomId")
        if self.scope == 'SYSTEM' and self.classroom_id:
            raise ValueError("SYSTEM badges cannot belong to a classroom")
        return self


class BadgeResponse(CamelModel):
    id: str
    scope: str
    classroom_id: Optional[str] = None
    name: str
    description: str
    icon: str
    category: str
    rarity: str
    assignment_mode: str
    unlock_condition: Optional[str] = None
    reward_xp: int
    reward_gp: int
    is_secret: bool
    is_active: bool
    created_at: datetime


class StudentBadgeResponse(CamelModel):
    """Badge owned by a student"""
    id: str
    badge_id: str
    awarded_at: datetime
    awarded_by: Optional[str] = None
    reason: Optional[str] = None
    badge: BadgeResponse


class BadgeAwardRequest(CamelModel):
    student_id: str
    reason: Optional[str] = Field(default=None, max_length=255)


class BadgeAwardResponse(CamelModel):
    student_id: str
    badge_id: str
    badge_name: str
    newly_awarded: bool
    new_xp: int
    new_gp: int
    new_level: int
    awarded_badges: List[AwardedBadgeResponse] = []


class BadgeProgressResponse(CamelModel):
    badge_id: str
    name: str
    description: str
    icon: str
    rarity: str
    condition_type: str
    current: int
    target: int
    percentage: int
