"""Ledger store: atomic persistence primitives over an async session."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Awaitable, TypeVar
from uuid import UUID

from loguru import logger
from sqlalchemy import case, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from founditure_gamification.core.settings import settings
from founditure_gamification.models.achievement import UserAchievementProgress
from founditure_gamification.models.points import (
    PointsSource,
    PointsTransaction,
    PointsTransactionType,
    UserPointsAccount,
    UserPointsSourceStat,
)

from .errors import StorageError
from .events import EventPublisher, GamificationEvent, get_event_publisher

T = TypeVar("T")

_ACCOUNT_COUNTERS = frozenset(
    {
        "total_points",
        "lifetime_points",
        "earned_points",
        "spent_points",
        "bonus_points",
        "achievement_points",
    }
)


class LedgerStore:
    """Wraps one session with bounded calls and store-side atomic updates.

    Counters are only ever changed with ``col = col + :delta`` statements and
    transitions with conditional ``UPDATE ... WHERE`` statements, so concurrent
    writers never lose an increment or repeat a transition. Events deferred
    through :meth:`defer_event` are published only after :meth:`commit`.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        publisher: EventPublisher | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._session = session
        self._publisher = publisher or get_event_publisher()
        self._timeout = timeout_seconds or settings.ledger_store_timeout_seconds
        self._deferred: list[GamificationEvent] = []

    @property
    def session(self) -> AsyncSession:
        return self._session

    @property
    def publisher(self) -> EventPublisher:
        return self._publisher

    # -- bounded session access -------------------------------------------------

    async def _bounded(self, awaitable: Awaitable[T], *, operation: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Ledger store call timed out", operation=operation, timeout_seconds=self._timeout)
            raise StorageError(f"Ledger store timed out during {operation}") from exc
        except IntegrityError:
            raise
        except (DBAPIError, SQLAlchemyError) as exc:
            logger.error("Ledger store call failed", operation=operation, error=str(exc))
            raise StorageError(f"Ledger store unavailable during {operation}") from exc

    async def execute(self, statement: Any, *, operation: str = "execute") -> Any:
        return await self._bounded(self._session.execute(statement), operation=operation)

    async def flush(self) -> None:
        await self._bounded(self._session.flush(), operation="flush")

    async def commit(self) -> None:
        await self._bounded(self._session.commit(), operation="commit")
        events, self._deferred = self._deferred, []
        self._publisher.publish_many(events)

    async def rollback(self) -> None:
        self._deferred.clear()
        try:
            await self._bounded(self._session.rollback(), operation="rollback")
        except StorageError:
            logger.warning("Ledger store rollback failed; session will be discarded")

    async def refresh(self, instance: Any) -> None:
        await self._bounded(self._session.refresh(instance), operation="refresh")

    def defer_event(self, event: GamificationEvent) -> None:
        self._deferred.append(event)

    def add(self, instance: Any) -> None:
        self._session.add(instance)

    # -- dialect helpers ---------------------------------------------------------

    def _insert(self, model: Any) -> Any:
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        raise StorageError(f"Ledger store does not support the {dialect} dialect")

    # -- points primitives -------------------------------------------------------

    async def insert_transaction(self, values: dict[str, Any]) -> bool:
        """Insert a ledger row; False when the (user, source, type, reference) already exists."""

        stmt = (
            self._insert(PointsTransaction)
            .values(**values)
            .on_conflict_do_nothing(
                index_elements=["user_id", "source", "transaction_type", "reference_id"],
            )
        )
        result = await self.execute(stmt, operation="insert_transaction")
        return bool(result.rowcount)

    async def find_transaction(
        self,
        *,
        user_id: str,
        source: PointsSource,
        transaction_type: PointsTransactionType,
        reference_id: str,
    ) -> PointsTransaction | None:
        stmt = select(PointsTransaction).where(
            PointsTransaction.user_id == user_id,
            PointsTransaction.source == source,
            PointsTransaction.transaction_type == transaction_type,
            PointsTransaction.reference_id == reference_id,
        )
        result = await self.execute(stmt, operation="find_transaction")
        return result.scalar_one_or_none()

    async def load_transaction(self, transaction_id: UUID) -> PointsTransaction | None:
        stmt = (
            select(PointsTransaction)
            .where(PointsTransaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        result = await self.execute(stmt, operation="load_transaction")
        return result.scalar_one_or_none()

    async def deactivate_transaction(self, transaction_id: UUID, *, reason: str | None, at: datetime) -> bool:
        """Compare-and-set ``is_active`` from true to false."""

        stmt = (
            update(PointsTransaction)
            .where(PointsTransaction.id == transaction_id, PointsTransaction.is_active.is_(True))
            .values(is_active=False, voided_at=at, void_reason=reason)
            .execution_options(synchronize_session=False)
        )
        result = await self.execute(stmt, operation="deactivate_transaction")
        return result.rowcount == 1

    async def ensure_account(self, user_id: str) -> None:
        stmt = (
            self._insert(UserPointsAccount)
            .values(
                user_id=user_id,
                total_points=0,
                lifetime_points=0,
                level=1,
                earned_points=0,
                spent_points=0,
                bonus_points=0,
                achievement_points=0,
            )
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        await self.execute(stmt, operation="ensure_account")

    async def load_account(self, user_id: str) -> UserPointsAccount | None:
        stmt = (
            select(UserPointsAccount)
            .where(UserPointsAccount.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.execute(stmt, operation="load_account")
        return result.scalar_one_or_none()

    async def increment_account(self, user_id: str, **deltas: int) -> None:
        unknown = set(deltas) - _ACCOUNT_COUNTERS
        if unknown:
            raise ValueError(f"Unknown account counters: {sorted(unknown)}")

        values = {
            name: getattr(UserPointsAccount, name) + delta
            for name, delta in deltas.items()
            if delta
        }
        if not values:
            return
        stmt = (
            update(UserPointsAccount)
            .where(UserPointsAccount.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.execute(stmt, operation="increment_account")

    async def debit_if_sufficient(self, user_id: str, amount: int) -> bool:
        """Atomically subtract ``amount`` from the balance unless it would go negative."""

        stmt = (
            update(UserPointsAccount)
            .where(
                UserPointsAccount.user_id == user_id,
                UserPointsAccount.total_points >= amount,
            )
            .values(
                total_points=UserPointsAccount.total_points - amount,
                spent_points=UserPointsAccount.spent_points + amount,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.execute(stmt, operation="debit_account")
        return result.rowcount == 1

    async def set_level_if_changed(self, user_id: str, level: int) -> bool:
        stmt = (
            update(UserPointsAccount)
            .where(UserPointsAccount.user_id == user_id, UserPointsAccount.level != level)
            .values(level=level)
            .execution_options(synchronize_session=False)
        )
        result = await self.execute(stmt, operation="set_level")
        return result.rowcount == 1

    async def increment_source_stat(self, user_id: str, source: PointsSource, delta: int) -> None:
        if not delta:
            return
        insert_stmt = self._insert(UserPointsSourceStat).values(user_id=user_id, source=source, points=delta)
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=["user_id", "source"],
            set_={"points": UserPointsSourceStat.points + insert_stmt.excluded.points},
        )
        await self.execute(stmt, operation="increment_source_stat")

    async def lock_account(self, user_id: str) -> UserPointsAccount | None:
        """Load the account with a row lock held until commit (no-op on SQLite)."""

        stmt = (
            select(UserPointsAccount)
            .where(UserPointsAccount.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.execute(stmt, operation="lock_account")
        return result.scalar_one_or_none()

    async def overwrite_account(self, user_id: str, **values: Any) -> None:
        stmt = (
            update(UserPointsAccount)
            .where(UserPointsAccount.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.execute(stmt, operation="overwrite_account")

    async def set_source_stat(self, user_id: str, source: PointsSource, points: int) -> None:
        insert_stmt = self._insert(UserPointsSourceStat).values(user_id=user_id, source=source, points=points)
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=["user_id", "source"],
            set_={"points": insert_stmt.excluded.points},
        )
        await self.execute(stmt, operation="set_source_stat")

    async def list_source_stats(self, user_id: str) -> list[UserPointsSourceStat]:
        stmt = (
            select(UserPointsSourceStat)
            .where(UserPointsSourceStat.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.execute(stmt, operation="list_source_stats")
        return list(result.scalars().all())

    # -- achievement progress primitives ----------------------------------------

    async def ensure_progress(self, user_id: str, achievement_id: UUID) -> None:
        stmt = (
            self._insert(UserAchievementProgress)
            .values(
                user_id=user_id,
                achievement_id=achievement_id,
                progress=0,
                is_completed=False,
                metadata_json={},
            )
            .on_conflict_do_nothing(index_elements=["user_id", "achievement_id"])
        )
        await self.execute(stmt, operation="ensure_progress")

    async def raise_progress(self, user_id: str, achievement_id: UUID, progress: int) -> None:
        """Store ``max(stored, progress)`` without a read-modify-write round trip."""

        stmt = (
            update(UserAchievementProgress)
            .where(
                UserAchievementProgress.user_id == user_id,
                UserAchievementProgress.achievement_id == achievement_id,
            )
            .values(
                progress=case(
                    (UserAchievementProgress.progress < progress, progress),
                    else_=UserAchievementProgress.progress,
                )
            )
            .execution_options(synchronize_session=False)
        )
        await self.execute(stmt, operation="raise_progress")

    async def load_progress(self, user_id: str, achievement_id: UUID) -> UserAchievementProgress | None:
        stmt = (
            select(UserAchievementProgress)
            .where(
                UserAchievementProgress.user_id == user_id,
                UserAchievementProgress.achievement_id == achievement_id,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.execute(stmt, operation="load_progress")
        return result.scalar_one_or_none()

    async def complete_if_pending(self, progress_id: UUID, *, completed_at: datetime) -> bool:
        """Compare-and-set ``is_completed`` from false to true at full progress."""

        stmt = (
            update(UserAchievementProgress)
            .where(
                UserAchievementProgress.id == progress_id,
                UserAchievementProgress.is_completed.is_(False),
                UserAchievementProgress.progress >= 100,
            )
            .values(is_completed=True, completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.execute(stmt, operation="complete_progress")
        return result.rowcount == 1


__all__ = ["LedgerStore"]
