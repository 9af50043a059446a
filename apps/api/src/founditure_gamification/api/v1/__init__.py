from fastapi import APIRouter

from .endpoints import (
    achievements,
    health,
    observability,
    points,
)

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["Health"])
router.include_router(points.router)
router.include_router(achievements.router)
router.include_router(observability.router)
