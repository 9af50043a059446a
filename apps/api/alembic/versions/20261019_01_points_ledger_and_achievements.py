"""Points ledger and achievement progress tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


TRANSACTION_TYPES = ("EARNED", "SPENT", "BONUS", "ACHIEVEMENT")
POINTS_SOURCES = (
    "LISTING_CREATED",
    "ITEM_COLLECTED",
    "ACHIEVEMENT_COMPLETED",
    "COMMUNITY_ACTION",
    "QUICK_COLLECTION",
    "ACCURATE_DESCRIPTION",
    "POSITIVE_FEEDBACK",
    "MONTHLY_ACTIVE",
)
ACHIEVEMENT_CATEGORIES = ("FINDER", "COLLECTOR", "COMMUNITY", "MILESTONE")
ACHIEVEMENT_TIERS = ("BRONZE", "SILVER", "GOLD", "PLATINUM")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "points_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column(
            "transaction_type",
            sa.Enum(*TRANSACTION_TYPES, name="points_transaction_type"),
            nullable=False,
        ),
        sa.Column("source", sa.Enum(*POINTS_SOURCES, name="points_source"), nullable=False),
        sa.Column("reference_id", sa.String(length=128), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("'1'")),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            "user_id",
            "source",
            "transaction_type",
            "reference_id",
            name="uq_points_transactions_user_source_type_ref",
        ),
    )
    op.create_index("ix_points_transactions_user_id", "points_transactions", ["user_id"])
    op.create_index("ix_points_transactions_user_created", "points_transactions", ["user_id", "created_at"])
    op.create_index("ix_points_transactions_user_type", "points_transactions", ["user_id", "transaction_type"])
    op.create_index("ix_points_transactions_user_source", "points_transactions", ["user_id", "source"])

    op.create_table(
        "user_points_accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("earned_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("spent_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bonus_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("achievement_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reconciled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", name="uq_user_points_accounts_user_id"),
    )

    op.create_table(
        "user_points_source_stats",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "source",
            postgresql.ENUM(*POINTS_SOURCES, name="points_source", create_type=False),
            nullable=False,
        ),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", "source", name="uq_user_points_source_stats_user_source"),
    )
    op.create_index("ix_user_points_source_stats_user_id", "user_points_source_stats", ["user_id"])

    op.create_table(
        "achievement_definitions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.Enum(*ACHIEVEMENT_CATEGORIES, name="achievement_category"), nullable=False),
        sa.Column("tier", sa.Enum(*ACHIEVEMENT_TIERS, name="achievement_tier"), nullable=False),
        sa.Column("points_reward", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("criteria", sa.JSON(), nullable=False),
        sa.Column("badge_url", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("'1'")),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_achievement_definitions_name", "achievement_definitions", ["name"], unique=True)
    op.create_index("ix_achievement_definitions_category", "achievement_definitions", ["category"])
    op.create_index("ix_achievement_definitions_tier", "achievement_definitions", ["tier"])

    op.create_table(
        "user_achievement_progress",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "achievement_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("achievement_definitions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.text("'0'")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement_progress_user_achievement"),
        sa.CheckConstraint("progress >= 0 AND progress <= 100", name="ck_user_achievement_progress_range"),
    )
    op.create_index("ix_user_achievement_progress_user_id", "user_achievement_progress", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_user_achievement_progress_user_id", table_name="user_achievement_progress")
    op.drop_table("user_achievement_progress")
    op.drop_index("ix_achievement_definitions_tier", table_name="achievement_definitions")
    op.drop_index("ix_achievement_definitions_category", table_name="achievement_definitions")
    op.drop_index("ix_achievement_definitions_name", table_name="achievement_definitions")
    op.drop_table("achievement_definitions")
    op.drop_index("ix_user_points_source_stats_user_id", table_name="user_points_source_stats")
    op.drop_table("user_points_source_stats")
    op.drop_table("user_points_accounts")
    op.drop_index("ix_points_transactions_user_source", table_name="points_transactions")
    op.drop_index("ix_points_transactions_user_type", table_name="points_transactions")
    op.drop_index("ix_points_transactions_user_created", table_name="points_transactions")
    op.drop_index("ix_points_transactions_user_id", table_name="points_transactions")
    op.drop_table("points_transactions")

    bind = op.get_bind()
    for enum_name in ("achievement_tier", "achievement_category", "points_source", "points_transaction_type"):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
