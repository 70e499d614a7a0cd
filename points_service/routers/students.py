"""
Students Router

- POST /api/v1/students/{student_id}/points            manual adjustment
- GET  /api/v1/students/{student_id}/badges            owned badges
- GET  /api/v1/students/{student_id}/badges/progress   pending badge progress
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends

from points_service import schemas, schemas_badges
from points_service.dependencies import get_points_engine, get_teacher_id
from points_service.logic.points_engine import PointsEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/students", tags=["students"])


@router.post("/{student_id}/points", response_model=schemas.PointsAdjustResponse)
async def adjust_points(
    student_id: str,
    payload: schemas.PointsAdjustRequest,
    engine: PointsEngine = Depends(get_points_engine),
    teacher_id: Optional[str] = Depends(get_teacher_id),
):
    return await engine.adjust_points(
        student_id,
        payload.point_type,
        payload.amount,
        reason=payload.reason,
        given_by=teacher_id,
    )


@router.get("/{student_id}/badges", response_model=List[schemas_badges.StudentBadgeResponse])
async def get_student_badges(
    student_id: str,
    engine: PointsEngine = Depends(get_points_engine),
):
    return await engine.get_student_badges(student_id)


@router.get("/{student_id}/badges/progress", response_model=List[schemas_badges.BadgeProgressResponse])
async def get_badge_progress(
    student_id: str,
    engine: PointsEngine = Depends(get_points_engine),
):
    """Pending non-secret automatic badges, closest to unlocking first"""
    return await engine.get_badge_progress(student_id)
