"""
FastAPI dependencies shared by the routers
"""
from functools import lru_cache
from typing import Optional

from fastapi import Header

from points_service.aws_client import aws_client
from points_service.config import get_settings
from points_service.core.db import get_session_factory
from points_service.logic.badge_service import BadgeService
from points_service.logic.points_engine import PointsEngine


@lru_cache()
def get_points_engine() -> PointsEngine:
    """
    Process-wide engine (singleton).

    A single instance keeps one per-student lock registry for the whole app.
    """
    settings = get_settings()
    return PointsEngine(
        session_factory=get_session_factory(),
        notifier=aws_client,
        badge_service=BadgeService(max_iterations=settings.BADGE_MAX_ITERATIONS),
        concurrency=settings.APPLY_CONCURRENCY,
        retry_attempts=settings.LOCK_RETRY_ATTEMPTS,
    )


async def get_teacher_id(x_teacher_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Caller identity for audit rows, taken as-is from X-Teacher-Id"""
    return x_teacher_id
