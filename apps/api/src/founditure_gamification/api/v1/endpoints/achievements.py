"""API endpoints for achievement definitions and user progress."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from founditure_gamification.api.dependencies.security import optional_actor_id, require_admin_api_key
from founditure_gamification.db.session import get_session
from founditure_gamification.models.achievement import (
    AchievementCategory,
    AchievementDefinition,
    AchievementTier,
    UserAchievementProgress,
)
from founditure_gamification.services.gamification import (
    AchievementProgressTracker,
    AchievementRegistry,
    ValidationError,
)

from .points import PointsTransactionResponse, serialize_transaction


router = APIRouter(tags=["Achievements"])

_FIELD_NAMES = {
    "name": "name",
    "description": "description",
    "category": "category",
    "tier": "tier",
    "pointsReward": "points_reward",
    "criteria": "criteria",
    "badgeUrl": "badge_url",
    "isActive": "is_active",
}


class AchievementCreateRequest(BaseModel):
    name: str = Field(..., description="Unique display name")
    description: str
    category: AchievementCategory
    tier: AchievementTier
    pointsReward: int = Field(..., description="Points awarded once on completion")
    criteria: Dict[str, Any] = Field(..., description="Completion predicate evaluated against progress metadata")
    badgeUrl: Optional[str] = None
    isActive: bool = True


class AchievementUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[AchievementCategory] = None
    tier: Optional[AchievementTier] = None
    pointsReward: Optional[int] = None
    criteria: Optional[Dict[str, Any]] = None
    badgeUrl: Optional[str] = None
    isActive: Optional[bool] = None


class ProgressUpdateRequest(BaseModel):
    progress: float = Field(..., ge=0, le=100, description="Percentage toward completion")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Merged into stored progress metadata")


class AchievementResponse(BaseModel):
    id: UUID
    name: str
    description: str
    category: AchievementCategory
    tier: AchievementTier
    pointsReward: int
    criteria: Dict[str, Any]
    badgeUrl: Optional[str]
    isActive: bool
    createdBy: Optional[str]
    createdAt: datetime
    updatedAt: datetime


class UserAchievementResponse(BaseModel):
    id: UUID
    userId: str
    achievementId: UUID
    progress: int
    isCompleted: bool
    completedAt: Optional[datetime]
    metadata: Dict[str, Any]
    updatedAt: Optional[datetime]
    achievement: Optional[AchievementResponse]


class ProgressUpdateResponse(UserAchievementResponse):
    completedNow: bool
    rewardTransaction: Optional[PointsTransactionResponse]


@router.post(
    "/achievements",
    response_model=AchievementResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_api_key)],
    summary="Create an achievement definition",
)
async def create_achievement(
    payload: AchievementCreateRequest,
    actor_id: str | None = Depends(optional_actor_id),
    session: AsyncSession = Depends(get_session),
) -> AchievementResponse:
    registry = AchievementRegistry(session)
    try:
        definition = await registry.create_definition(_to_service_fields(payload.model_dump()), created_by=actor_id)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.as_detail()) from exc
    return _serialize_definition(definition)


@router.get(
    "/achievements",
    response_model=List[AchievementResponse],
    summary="List achievement definitions",
)
async def list_achievements(
    category: Optional[AchievementCategory] = Query(None),
    tier: Optional[AchievementTier] = Query(None),
    include_inactive: bool = Query(False, alias="includeInactive"),
    session: AsyncSession = Depends(get_session),
) -> List[AchievementResponse]:
    registry = AchievementRegistry(session)
    definitions = await registry.list_definitions(category=category, tier=tier, include_inactive=include_inactive)
    return [_serialize_definition(definition) for definition in definitions]


@router.get(
    "/achievements/{achievement_id}",
    response_model=AchievementResponse,
    summary="Fetch one achievement definition",
)
async def get_achievement(
    achievement_id: str,
    include_inactive: bool = Query(False, alias="includeInactive"),
    session: AsyncSession = Depends(get_session),
) -> AchievementResponse:
    registry = AchievementRegistry(session)
    definition = await registry.get_definition(achievement_id, active_only=not include_inactive)
    if definition is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Achievement not found")
    return _serialize_definition(definition)


@router.patch(
    "/achievements/{achievement_id}",
    response_model=AchievementResponse,
    dependencies=[Depends(require_admin_api_key)],
    summary="Update an achievement definition",
)
async def update_achievement(
    achievement_id: str,
    payload: AchievementUpdateRequest,
    session: AsyncSession = Depends(get_session),
) -> AchievementResponse:
    registry = AchievementRegistry(session)
    try:
        definition = await registry.update_definition(
            achievement_id,
            _to_service_fields(payload.model_dump(exclude_unset=True)),
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.as_detail()) from exc
    if definition is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Achievement not found")
    return _serialize_definition(definition)


@router.delete(
    "/achievements/{achievement_id}",
    response_model=AchievementResponse,
    dependencies=[Depends(require_admin_api_key)],
    summary="Deactivate an achievement definition",
)
async def deactivate_achievement(
    achievement_id: str,
    session: AsyncSession = Depends(get_session),
) -> AchievementResponse:
    registry = AchievementRegistry(session)
    definition = await registry.deactivate_definition(achievement_id)
    if definition is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Achievement not found")
    return _serialize_definition(definition)


@router.get(
    "/users/{user_id}/achievements",
    response_model=List[UserAchievementResponse],
    summary="Achievement progress for a user",
)
async def get_user_achievements(
    user_id: str,
    completed: Optional[bool] = Query(None),
    session: AsyncSession = Depends(get_session),
) -> List[UserAchievementResponse]:
    tracker = AchievementProgressTracker(session)
    try:
        records = await tracker.get_user_achievements(user_id, completed=completed)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.as_detail()) from exc
    return [_serialize_progress(record, record.achievement) for record in records]


@router.post(
    "/users/{user_id}/achievements/{achievement_id}/progress",
    response_model=ProgressUpdateResponse,
    summary="Report progress toward an achievement",
)
async def track_achievement_progress(
    user_id: str,
    achievement_id: str,
    payload: ProgressUpdateRequest,
    session: AsyncSession = Depends(get_session),
) -> ProgressUpdateResponse:
    tracker = AchievementProgressTracker(session)
    try:
        update = await tracker.track_progress(
            user_id,
            achievement_id,
            payload.progress,
            metadata=payload.metadata,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.as_detail()) from exc

    base = _serialize_progress(update.record, update.achievement)
    return ProgressUpdateResponse(
        **base.model_dump(),
        completedNow=update.completed_now,
        rewardTransaction=(
            serialize_transaction(update.reward_transaction) if update.reward_transaction is not None else None
        ),
    )


def _to_service_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {_FIELD_NAMES[key]: value for key, value in data.items() if key in _FIELD_NAMES}


def _serialize_definition(definition: AchievementDefinition) -> AchievementResponse:
    return AchievementResponse(
        id=definition.id,
        name=definition.name,
        description=definition.description,
        category=definition.category,
        tier=definition.tier,
        pointsReward=definition.points_reward,
        criteria=definition.criteria or {},
        badgeUrl=definition.badge_url,
        isActive=bool(definition.is_active),
        createdBy=definition.created_by,
        createdAt=definition.created_at,
        updatedAt=definition.updated_at,
    )


def _serialize_progress(
    record: UserAchievementProgress,
    achievement: AchievementDefinition | None,
) -> UserAchievementResponse:
    return UserAchievementResponse(
        id=record.id,
        userId=record.user_id,
        achievementId=record.achievement_id,
        progress=record.progress,
        isCompleted=bool(record.is_completed),
        completedAt=record.completed_at,
        metadata=record.metadata_json or {},
        updatedAt=record.updated_at,
        achievement=_serialize_definition(achievement) if achievement is not None else None,
    )
