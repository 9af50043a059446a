"""Points ledger domain models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    Index,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from founditure_gamification.db.base import Base


class PointsTransactionType(str, Enum):
    """Kinds of point-affecting ledger rows."""

    EARNED = "EARNED"
    SPENT = "SPENT"
    BONUS = "BONUS"
    ACHIEVEMENT = "ACHIEVEMENT"


class PointsSource(str, Enum):
    """Domain causes that can move a user's balance."""

    LISTING_CREATED = "LISTING_CREATED"
    ITEM_COLLECTED = "ITEM_COLLECTED"
    ACHIEVEMENT_COMPLETED = "ACHIEVEMENT_COMPLETED"
    COMMUNITY_ACTION = "COMMUNITY_ACTION"
    QUICK_COLLECTION = "QUICK_COLLECTION"
    ACCURATE_DESCRIPTION = "ACCURATE_DESCRIPTION"
    POSITIVE_FEEDBACK = "POSITIVE_FEEDBACK"
    MONTHLY_ACTIVE = "MONTHLY_ACTIVE"


# Column on UserPointsAccount that accumulates each transaction type.
TYPE_STAT_COLUMNS: dict[PointsTransactionType, str] = {
    PointsTransactionType.EARNED: "earned_points",
    PointsTransactionType.SPENT: "spent_points",
    PointsTransactionType.BONUS: "bonus_points",
    PointsTransactionType.ACHIEVEMENT: "achievement_points",
}


class PointsTransaction(Base):
    """Append-only ledger row; only ``is_active`` changes after insert."""

    __tablename__ = "points_transactions"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "source",
            "transaction_type",
            "reference_id",
            name="uq_points_transactions_user_source_type_ref",
        ),
        Index("ix_points_transactions_user_created", "user_id", "created_at"),
        Index("ix_points_transactions_user_type", "user_id", "transaction_type"),
        Index("ix_points_transactions_user_source", "user_id", "source"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    transaction_type = Column(
        SqlEnum(PointsTransactionType, name="points_transaction_type"),
        nullable=False,
    )
    source = Column(SqlEnum(PointsSource, name="points_source"), nullable=False)
    reference_id = Column(String(128), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="1")
    created_by = Column(String(64), nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)
    void_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class UserPointsAccount(Base):
    """Per-user aggregate derived from the active ledger rows."""

    __tablename__ = "user_points_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_user_points_accounts_user_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(String(64), nullable=False)
    total_points = Column(Integer, nullable=False, default=0, server_default="0")
    lifetime_points = Column(Integer, nullable=False, default=0, server_default="0")
    level = Column(Integer, nullable=False, default=1, server_default="1")
    earned_points = Column(Integer, nullable=False, default=0, server_default="0")
    spent_points = Column(Integer, nullable=False, default=0, server_default="0")
    bonus_points = Column(Integer, nullable=False, default=0, server_default="0")
    achievement_points = Column(Integer, nullable=False, default=0, server_default="0")
    last_reconciled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class UserPointsSourceStat(Base):
    """Per-source breakdown of a user's points, one row per (user, source)."""

    __tablename__ = "user_points_source_stats"
    __table_args__ = (
        UniqueConstraint("user_id", "source", name="uq_user_points_source_stats_user_source"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    source = Column(SqlEnum(PointsSource, name="points_source"), nullable=False)
    points = Column(Integer, nullable=False, default=0, server_default="0")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
