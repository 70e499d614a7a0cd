"""
Pydantic schemas for the points API

Wire format is camelCase (behaviorId, studentIds, ...); Python attributes
stay snake_case through an alias generator.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================================================
# Behaviors
# ============================================================================

class BehaviorCreate(CamelModel):
    """Reward template. Values are magnitudes; is_positive sets the sign."""
    classroom_id: str
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    is_positive: bool = True
    xp_value: int = Field(default=0, ge=0)
    hp_value: int = Field(default=0, ge=0)
    gp_value: int = Field(default=0, ge=0)
    icon: Optional[str] = Field(default=None, max_length=50)

    @model_validator(mode='after')
    def validate_has_value(self):
        """A behavior with every value at zero can never change anything"""
        if not (self.xp_value or self.hp_value or self.gp_value):
            raise ValueError("At least one of xpValue, hpValue or gpValue must be non-zero")
        return self


class BehaviorResponse(CamelModel):
    id: str
    classroom_id: str
    name: str
    description: Optional[str] = None
    is_positive: bool
    xp_value: Optional[int] = None
    hp_value: Optional[int] = None
    gp_value: Optional[int] = None
    icon: Optional[str] = None
    is_active: bool
    created_at: datetime


class ApplyBehaviorRequest(CamelModel):
    behavior_id: str
    student_ids: List[str] = Field(..., min_length=1)


class BehaviorSummaryResponse(CamelModel):
    id: str
    name: str
    is_positive: bool
    xp_value: int
    hp_value: int
    gp_value: int


class StudentResultResponse(CamelModel):
    student_id: str
    student_name: Optional[str] = None
    xp_change: int
    hp_change: int
    gp_change: int
    new_xp: int
    new_hp: int
    new_gp: int
    hp_capped: bool
    leveled_up: bool
    new_level: int


class LevelUpResponse(CamelModel):
    student_id: str
    student_name: Optional[str] = None
    from_level: int
    to_level: int
    new_level: int


class AwardedBadgeResponse(CamelModel):
    id: str
    name: str
    icon: str
    reward_xp: int
    reward_gp: int


class StudentAwardsResponse(CamelModel):
    student_id: str
    student_name: Optional[str] = None
    badges: List[AwardedBadgeResponse]


class StudentErrorResponse(CamelModel):
    student_id: str
    error: str


class ApplyBehaviorResponse(CamelModel):
    behavior: BehaviorSummaryResponse
    students_affected: int
    results: List[StudentResultResponse]
    level_ups: List[LevelUpResponse]
    awarded_badges: List[StudentAwardsResponse]
    errors: List[StudentErrorResponse]


# ============================================================================
# Manual points
# ============================================================================

class PointsAdjustRequest(CamelModel):
    point_type: str = Field(..., description="XP, HP or GP")
    amount: int = Field(..., description="Signed amount, negative removes points")
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator('point_type')
    @classmethod
    def validate_point_type(cls, v: str) -> str:
        v = v.upper()
        if v not in {'XP', 'HP', 'GP'}:
            raise ValueError(f"pointType must be XP, HP or GP, got: {v}")
        return v

    @field_validator('amount')
    @classmethod
    def validate_amount(cls, v: int) -> int:
        if v == 0:
            raise ValueError("amount must be non-zero")
        return v


class PointsAdjustResponse(CamelModel):
    student_id: str
    student_name: Optional[str] = None
    point_type: str
    amount: int
    new_xp: int
    new_hp: int
    new_gp: int
    new_level: int
    leveled_up: bool
    hp_capped: bool
    awarded_badges: List[AwardedBadgeResponse] = []
