"""
Badges Router

- POST   /api/v1/badges                                create a badge
- POST   /api/v1/badges/{badge_id}/award               manual grant
- DELETE /api/v1/badges/{badge_id}/students/{student_id}  revoke
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from points_service import crud, schemas_badges
from points_service.core.db import get_db
from points_service.dependencies import get_points_engine, get_teacher_id
from points_service.errors import NotFoundError
from points_service.logic.points_engine import PointsEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/badges", tags=["badges"])


@router.post("", response_model=schemas_badges.BadgeResponse, status_code=status.HTTP_201_CREATED)
async def create_badge(
    payload: schemas_badges.BadgeCreate,
    db: AsyncSession = Depends(get_db),
    teacher_id: Optional[str] = Depends(get_teacher_id),
):
    if payload.classroom_id:
        classroom = await crud.get_classroom(db, payload.classroom_id)
        if classroom is None:
            raise NotFoundError(f"Classroom {payload.classroom_id} not found")

    values = payload.model_dump(exclude={'unlock_condition'})
    condition = payload.unlock_condition
    badge = await crud.create_badge(
        db,
        **values,
        unlock_condition=json.dumps(condition.to_payload()) if condition else None,
        created_by=teacher_id,
    )
    logger.info(f"Created badge '{badge.name}' ({badge.assignment_mode})")
    return badge


@router.post("/{badge_id}/award", response_model=schemas_badges.BadgeAwardResponse)
async def award_badge(
    badge_id: str,
    payload: schemas_badges.BadgeAwardRequest,
    engine: PointsEngine = Depends(get_points_engine),
    teacher_id: Optional[str] = Depends(get_teacher_id),
):
    """Grant a MANUAL or BOTH badge. Granting an owned badge is a no-op."""
    return await engine.award_badge_manually(
        payload.student_id, badge_id, given_by=teacher_id, reason=payload.reason
    )


@router.delete("/{badge_id}/students/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_badge(
    badge_id: str,
    student_id: str,
    engine: PointsEngine = Depends(get_points_engine),
):
    await engine.revoke_badge(student_id, badge_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
