"""Achievement definition registry."""

from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import urlparse
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from founditure_gamification.models.achievement import (
    AchievementCategory,
    AchievementDefinition,
    AchievementTier,
)

from .criteria import validate_criteria
from .errors import ValidationError
from .store import LedgerStore

REQUIRED_FIELDS = ("name", "description", "category", "points_reward", "criteria", "tier")
_UPDATABLE_FIELDS = frozenset(
    {"name", "description", "category", "tier", "points_reward", "criteria", "badge_url", "is_active"}
)
_MAX_NAME_LENGTH = 120


class AchievementRegistry:
    """Stores and validates achievement definitions."""

    def __init__(self, db_session: AsyncSession, *, store: LedgerStore | None = None) -> None:
        self._db = db_session
        self._store = store or LedgerStore(db_session)

    async def create_definition(
        self,
        payload: Mapping[str, Any],
        *,
        created_by: str | None = None,
    ) -> AchievementDefinition:
        missing = [field for field in REQUIRED_FIELDS if payload.get(field) is None]
        if missing:
            raise ValidationError(
                "Missing required achievement fields",
                errors=[
                    {"field": _camel(field), "message": f"{field} is required", "code": "REQUIRED"}
                    for field in missing
                ],
            )

        values = _clean_values(payload)
        if await self._find_by_name(values["name"]) is not None:
            raise ValidationError.for_field(
                "name",
                f"Achievement {values['name']!r} already exists",
                code="DUPLICATE",
            )

        definition = AchievementDefinition(
            name=values["name"],
            description=values["description"],
            category=values["category"],
            tier=values["tier"],
            points_reward=values["points_reward"],
            criteria=values["criteria"],
            badge_url=values.get("badge_url"),
            is_active=values.get("is_active", True),
            created_by=created_by,
        )
        self._store.add(definition)
        try:
            await self._store.flush()
            await self._store.commit()
            await self._store.refresh(definition)
        except IntegrityError as exc:
            await self._store.rollback()
            raise ValidationError.for_field(
                "name",
                f"Achievement {values['name']!r} already exists",
                code="DUPLICATE",
            ) from exc
        except Exception:
            await self._store.rollback()
            raise

        logger.info(
            "Created achievement definition",
            achievement_id=str(definition.id),
            name=definition.name,
            created_by=created_by,
        )
        return definition

    async def get_definition(
        self,
        achievement_id: UUID | str,
        *,
        active_only: bool = True,
    ) -> AchievementDefinition | None:
        identifier = _coerce_uuid(achievement_id)
        if identifier is None:
            return None
        stmt = select(AchievementDefinition).where(AchievementDefinition.id == identifier)
        if active_only:
            stmt = stmt.where(AchievementDefinition.is_active.is_(True))
        result = await self._store.execute(stmt, operation="get_definition")
        return result.scalar_one_or_none()

    async def list_definitions(
        self,
        *,
        category: AchievementCategory | str | None = None,
        tier: AchievementTier | str | None = None,
        include_inactive: bool = False,
    ) -> list[AchievementDefinition]:
        stmt = select(AchievementDefinition).order_by(
            AchievementDefinition.points_reward.asc(),
            AchievementDefinition.name.asc(),
        )
        if category is not None:
            stmt = stmt.where(AchievementDefinition.category == _coerce_enum(AchievementCategory, category, "category"))
        if tier is not None:
            stmt = stmt.where(AchievementDefinition.tier == _coerce_enum(AchievementTier, tier, "tier"))
        if not include_inactive:
            stmt = stmt.where(AchievementDefinition.is_active.is_(True))
        result = await self._store.execute(stmt, operation="list_definitions")
        definitions = list(result.scalars().all())
        logger.debug("Fetched achievement definitions", count=len(definitions))
        return definitions

    async def update_definition(
        self,
        achievement_id: UUID | str,
        changes: Mapping[str, Any],
    ) -> AchievementDefinition | None:
        definition = await self.get_definition(achievement_id, active_only=False)
        if definition is None:
            return None

        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError.for_field(_camel(sorted(unknown)[0]), "Field cannot be updated")
        values = _clean_values({key: value for key, value in changes.items() if value is not None})
        if "name" in values and values["name"] != definition.name:
            existing = await self._find_by_name(values["name"])
            if existing is not None and existing.id != definition.id:
                raise ValidationError.for_field("name", f"Achievement {values['name']!r} already exists", code="DUPLICATE")

        for key, value in values.items():
            setattr(definition, key, value)
        try:
            await self._store.flush()
            await self._store.commit()
            await self._store.refresh(definition)
        except Exception:
            await self._store.rollback()
            raise

        logger.info("Updated achievement definition", achievement_id=str(definition.id), fields=sorted(values))
        return definition

    async def deactivate_definition(self, achievement_id: UUID | str) -> AchievementDefinition | None:
        """Hide a definition from new progress; existing progress rows are kept."""

        definition = await self.get_definition(achievement_id, active_only=False)
        if definition is None:
            return None
        if definition.is_active:
            definition.is_active = False
            try:
                await self._store.flush()
                await self._store.commit()
                await self._store.refresh(definition)
            except Exception:
                await self._store.rollback()
                raise
            logger.info("Deactivated achievement definition", achievement_id=str(definition.id))
        return definition

    async def _find_by_name(self, name: str) -> AchievementDefinition | None:
        stmt = select(AchievementDefinition).where(AchievementDefinition.name == name)
        result = await self._store.execute(stmt, operation="find_definition")
        return result.scalar_one_or_none()


def _clean_values(payload: Mapping[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}

    if "name" in payload:
        name = payload["name"]
        if not isinstance(name, str) or not name.strip():
            raise ValidationError.for_field("name", "Name must be a non-empty string")
        if len(name.strip()) > _MAX_NAME_LENGTH:
            raise ValidationError.for_field("name", "Name is too long")
        values["name"] = name.strip()

    if "description" in payload:
        description = payload["description"]
        if not isinstance(description, str) or not description.strip():
            raise ValidationError.for_field("description", "Description must be a non-empty string")
        values["description"] = description.strip()

    if "category" in payload:
        values["category"] = _coerce_enum(AchievementCategory, payload["category"], "category")
    if "tier" in payload:
        values["tier"] = _coerce_enum(AchievementTier, payload["tier"], "tier")

    if "points_reward" in payload:
        reward = payload["points_reward"]
        if isinstance(reward, bool) or not isinstance(reward, int) or reward < 0:
            raise ValidationError.for_field("pointsReward", "Points reward must be a non-negative integer")
        values["points_reward"] = reward

    if "criteria" in payload:
        values["criteria"] = validate_criteria(payload["criteria"])

    if payload.get("badge_url") is not None:
        badge_url = str(payload["badge_url"])
        parsed = urlparse(badge_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError.for_field("badgeUrl", "Badge URL must be an http(s) URL")
        values["badge_url"] = badge_url

    if "is_active" in payload:
        values["is_active"] = bool(payload["is_active"])

    return values


def _coerce_enum(enum_cls: type, value: Any, field: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError.for_field(field, f"Unknown {field}: {value}") from exc


def _coerce_uuid(value: UUID | str) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _camel(field: str) -> str:
    head, *rest = field.split("_")
    return head + "".join(part.title() for part in rest)


__all__ = ["AchievementRegistry", "REQUIRED_FIELDS"]
