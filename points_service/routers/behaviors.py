"""
Behaviors Router

- POST /api/v1/behaviors        create a behavior template
- POST /api/v1/behaviors/apply  apply a behavior to students
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from points_service import crud, schemas
from points_service.core.db import get_db
from points_service.dependencies import get_points_engine, get_teacher_id
from points_service.errors import NotFoundError
from points_service.logic.points_engine import PointsEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/behaviors", tags=["behaviors"])


@router.post("", response_model=schemas.BehaviorResponse, status_code=status.HTTP_201_CREATED)
async def create_behavior(
    payload: schemas.BehaviorCreate,
    db: AsyncSession = Depends(get_db),
):
    classroom = await crud.get_classroom(db, payload.classroom_id)
    if classroom is None:
        raise NotFoundError(f"Classroom {payload.classroom_id} not found")

    behavior = await crud.create_behavior(db, **payload.model_dump())
    logger.info(f"Created behavior '{behavior.name}' in classroom {classroom.id}")
    return behavior


@router.post("/apply", response_model=schemas.ApplyBehaviorResponse)
async def apply_behavior(
    payload: schemas.ApplyBehaviorRequest,
    engine: PointsEngine = Depends(get_points_engine),
    teacher_id: Optional[str] = Depends(get_teacher_id),
):
    """
    Apply a behavior to one or more students.

    Per-student failures are reported in `errors`, the rest still apply.
    """
    return await engine.apply_behavior(payload.behavior_id, payload.student_ids, given_by=teacher_id)
