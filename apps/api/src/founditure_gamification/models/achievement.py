"""Achievement registry and per-user progress models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from founditure_gamification.db.base import Base


class AchievementCategory(str, Enum):
    FINDER = "FINDER"
    COLLECTOR = "COLLECTOR"
    COMMUNITY = "COMMUNITY"
    MILESTONE = "MILESTONE"


class AchievementTier(str, Enum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"


class AchievementDefinition(Base):
    """Registry entry describing how an achievement is earned and rewarded."""

    __tablename__ = "achievement_definitions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False, unique=True, index=True)
    description = Column(Text, nullable=False)
    category = Column(SqlEnum(AchievementCategory, name="achievement_category"), nullable=False, index=True)
    tier = Column(SqlEnum(AchievementTier, name="achievement_tier"), nullable=False, index=True)
    points_reward = Column(Integer, nullable=False, default=0, server_default="0")
    criteria = Column(JSON, nullable=False, default=dict)
    badge_url = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="1")
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    progress_records = relationship("UserAchievementProgress", back_populates="achievement")


class UserAchievementProgress(Base):
    """Progress of one user toward one achievement; completion is one-way."""

    __tablename__ = "user_achievement_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement_progress_user_achievement"),
        CheckConstraint("progress >= 0 AND progress <= 100", name="range"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    achievement_id = Column(
        UUID(as_uuid=True),
        ForeignKey("achievement_definitions.id", ondelete="CASCADE"),
        nullable=False,
    )
    progress = Column(Integer, nullable=False, default=0, server_default="0")
    is_completed = Column(Boolean, nullable=False, default=False, server_default="0")
    completed_at = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    achievement = relationship("AchievementDefinition", back_populates="progress_records")
