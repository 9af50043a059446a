"""Per-user achievement progress with at-most-once completion."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from founditure_gamification.models.achievement import AchievementDefinition, UserAchievementProgress
from founditure_gamification.models.points import PointsSource, PointsTransaction

from .achievements import AchievementRegistry
from .criteria import evaluate_criteria
from .errors import ValidationError
from .events import EventPublisher, GamificationEvent, GamificationEventType
from .points_service import PointsLedgerService, validate_user_id
from .store import LedgerStore

MAX_PROGRESS = 100


@dataclass
class ProgressUpdate:
    """Outcome of one ``track_progress`` call."""

    record: UserAchievementProgress
    achievement: AchievementDefinition
    completed_now: bool = False
    regressed: bool = False
    reward_transaction: PointsTransaction | None = None


class AchievementProgressTracker:
    """Moves users toward achievements and settles completion rewards."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        store: LedgerStore | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self._db = db_session
        self._store = store or LedgerStore(db_session, publisher=publisher)
        self._registry = AchievementRegistry(db_session, store=self._store)
        self._points = PointsLedgerService(db_session, store=self._store)

    async def track_progress(
        self,
        user_id: str,
        achievement_id: UUID | str,
        progress: Any,
        *,
        metadata: Mapping[str, Any] | None = None,
    ) -> ProgressUpdate:
        """Raise a user's progress and complete the achievement at 100.

        Stored progress never decreases. When several calls race past 100 only
        the one that flips ``is_completed`` awards the reward and emits
        COMPLETED.
        """

        user_id = validate_user_id(user_id)
        target = _clamp_progress(progress)
        if metadata is not None and not isinstance(metadata, Mapping):
            raise ValidationError.for_field("metadata", "Metadata must be an object")
        achievement = await self._registry.get_definition(achievement_id)
        if achievement is None:
            raise ValidationError.for_field(
                "achievementId",
                f"Unknown or inactive achievement: {achievement_id}",
                code="NOT_FOUND",
            )

        store = self._store
        reward: PointsTransaction | None = None
        completed_now = False
        try:
            await store.ensure_progress(user_id, achievement.id)
            record = await store.load_progress(user_id, achievement.id)
            regressed = target < record.progress
            if regressed:
                logger.info(
                    "Ignoring achievement progress regression",
                    user_id=user_id,
                    achievement_id=str(achievement.id),
                    stored=record.progress,
                    requested=target,
                )
            else:
                await store.raise_progress(user_id, achievement.id, target)

            if metadata:
                record.metadata_json = {**(record.metadata_json or {}), **dict(metadata)}
                await store.flush()

            record = await store.load_progress(user_id, achievement.id)
            if (
                record.progress >= MAX_PROGRESS
                and not record.is_completed
                and evaluate_criteria(achievement.criteria, record.metadata_json)
            ):
                completed_now = await store.complete_if_pending(
                    record.id,
                    completed_at=datetime.now(timezone.utc),
                )
                if completed_now:
                    if achievement.points_reward > 0:
                        reward = await self._points.award_points(
                            user_id,
                            achievement.points_reward,
                            PointsSource.ACHIEVEMENT_COMPLETED,
                            reference_id=str(achievement.id),
                            metadata={"achievementId": str(achievement.id), "achievementName": achievement.name},
                            commit=False,
                        )
                    record = await store.load_progress(user_id, achievement.id)

            if completed_now:
                store.defer_event(_progress_event(GamificationEventType.COMPLETED, user_id, achievement, record))
            store.defer_event(_progress_event(GamificationEventType.PROGRESS, user_id, achievement, record))
            await store.commit()
        except Exception:
            await store.rollback()
            raise

        if completed_now:
            logger.info(
                "Achievement completed",
                user_id=user_id,
                achievement_id=str(achievement.id),
                name=achievement.name,
                reward=achievement.points_reward,
            )
        logger.debug(
            "Tracked achievement progress",
            user_id=user_id,
            achievement_id=str(achievement.id),
            progress=record.progress,
        )
        return ProgressUpdate(
            record=record,
            achievement=achievement,
            completed_now=completed_now,
            regressed=regressed,
            reward_transaction=reward,
        )

    async def get_user_achievements(
        self,
        user_id: str,
        *,
        completed: bool | None = None,
    ) -> list[UserAchievementProgress]:
        """Return progress records for a user with their definitions loaded."""

        user_id = validate_user_id(user_id)
        stmt = (
            select(UserAchievementProgress)
            .options(selectinload(UserAchievementProgress.achievement))
            .join(AchievementDefinition, UserAchievementProgress.achievement_id == AchievementDefinition.id)
            .where(UserAchievementProgress.user_id == user_id)
            .order_by(UserAchievementProgress.is_completed.desc(), UserAchievementProgress.updated_at.desc())
            .execution_options(populate_existing=True)
        )
        if completed is not None:
            stmt = stmt.where(UserAchievementProgress.is_completed.is_(completed))
        result = await self._store.execute(stmt, operation="list_user_achievements")
        return list(result.scalars().all())


def _clamp_progress(progress: Any) -> int:
    if isinstance(progress, bool) or not isinstance(progress, (int, float)):
        raise ValidationError.for_field("progress", "Progress must be a number")
    if not math.isfinite(progress):
        raise ValidationError.for_field("progress", "Progress must be finite")
    # Fractions round down so only an explicit 100 completes.
    return int(min(max(math.floor(progress), 0), MAX_PROGRESS))


def _progress_event(
    event_type: GamificationEventType,
    user_id: str,
    achievement: AchievementDefinition,
    record: UserAchievementProgress,
) -> GamificationEvent:
    return GamificationEvent(
        type=event_type,
        user_id=user_id,
        data={
            "achievementId": str(achievement.id),
            "achievement": {
                "id": str(achievement.id),
                "name": achievement.name,
                "category": achievement.category.value,
                "tier": achievement.tier.value,
                "pointsReward": achievement.points_reward,
                "badgeUrl": achievement.badge_url,
            },
            "progress": record.progress,
            "isCompleted": bool(record.is_completed),
        },
    )


__all__ = ["AchievementProgressTracker", "MAX_PROGRESS", "ProgressUpdate"]
