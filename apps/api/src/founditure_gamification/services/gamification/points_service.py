"""Points ledger: append-only transactions plus per-user aggregates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from founditure_gamification.core.settings import settings
from founditure_gamification.models.points import (
    TYPE_STAT_COLUMNS,
    PointsSource,
    PointsTransaction,
    PointsTransactionType,
    UserPointsAccount,
)

from .errors import ConsistencyWarning, ValidationError
from .events import EventPublisher, GamificationEvent, GamificationEventType
from .levels import calculate_level
from .store import LedgerStore

_SORT_COLUMNS = {
    "created_at": PointsTransaction.created_at,
    "createdAt": PointsTransaction.created_at,
    "amount": PointsTransaction.amount,
}
_AWARD_TYPES = frozenset(
    {
        PointsTransactionType.EARNED,
        PointsTransactionType.BONUS,
        PointsTransactionType.ACHIEVEMENT,
    }
)
_MAX_USER_ID_LENGTH = 64
_MAX_REFERENCE_LENGTH = 128


@dataclass
class TransactionPage:
    """One page of a user's active transactions."""

    items: list[PointsTransaction]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.total == 0:
            return 0
        return (self.total + self.limit - 1) // self.limit

    @property
    def has_more(self) -> bool:
        return self.page < self.pages


class PointsLedgerService:
    """Records point movements and keeps balances, levels and stats in step."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        store: LedgerStore | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self._db = db_session
        self._store = store or LedgerStore(db_session, publisher=publisher)

    @property
    def store(self) -> LedgerStore:
        return self._store

    async def award_points(
        self,
        user_id: str,
        amount: int,
        source: PointsSource | str,
        reference_id: str | None = None,
        *,
        metadata: Mapping[str, Any] | None = None,
        transaction_type: PointsTransactionType = PointsTransactionType.EARNED,
        created_by: str | None = None,
        commit: bool = True,
    ) -> PointsTransaction:
        """Append a positive transaction and apply it to the user's aggregates.

        A repeated ``(user_id, source, type, reference_id)`` returns the original
        transaction without touching any counter. With ``commit=False`` the
        caller owns the transaction boundary and the deferred event.
        """

        user_id = validate_user_id(user_id)
        amount = _validate_amount(amount)
        source = _validate_source(source)
        reference_id = _validate_reference(reference_id)
        if transaction_type not in _AWARD_TYPES:
            raise ValidationError.for_field("type", f"{transaction_type} cannot be awarded")
        if metadata is not None and not isinstance(metadata, Mapping):
            raise ValidationError.for_field("metadata", "Metadata must be an object")

        payload = dict(metadata or {})
        warning: ConsistencyWarning | None = None
        threshold = settings.points_large_transaction_threshold
        if amount > threshold:
            warning = ConsistencyWarning(
                "LARGE_TRANSACTION",
                "Award exceeds the large transaction threshold",
                amount=amount,
                threshold=threshold,
            )
            payload["anomaly"] = warning.code

        transaction_id = uuid4()
        store = self._store
        try:
            inserted = await store.insert_transaction(
                {
                    "id": transaction_id,
                    "user_id": user_id,
                    "amount": amount,
                    "transaction_type": transaction_type,
                    "source": source,
                    "reference_id": reference_id,
                    "metadata_json": payload,
                    "is_active": True,
                    "created_by": created_by,
                    "created_at": datetime.now(timezone.utc),
                }
            )
            if not inserted:
                existing = await store.find_transaction(
                    user_id=user_id,
                    source=source,
                    transaction_type=transaction_type,
                    reference_id=reference_id,
                )
                if commit:
                    await store.commit()
                logger.info(
                    "Duplicate points award ignored",
                    user_id=user_id,
                    source=source.value,
                    reference_id=reference_id,
                )
                return existing

            await store.ensure_account(user_id)
            await store.increment_account(
                user_id,
                total_points=amount,
                lifetime_points=amount,
                **{TYPE_STAT_COLUMNS[transaction_type]: amount},
            )
            await store.increment_source_stat(user_id, source, amount)
            account = await store.load_account(user_id)
            new_level = calculate_level(account.lifetime_points)
            level_changed = await store.set_level_if_changed(user_id, new_level)
            transaction = await store.load_transaction(transaction_id)

            if warning is not None:
                logger.warning(
                    warning.message,
                    code=warning.code,
                    user_id=user_id,
                    transaction_id=str(transaction_id),
                    amount=amount,
                    threshold=threshold,
                )

            data: dict[str, Any] = {
                "transactionId": str(transaction_id),
                "amount": amount,
                "source": source.value,
                "referenceId": reference_id,
                "newTotal": account.total_points,
            }
            if level_changed:
                data["newLevel"] = new_level
            if warning is not None:
                data["anomaly"] = warning.as_dict()
            store.defer_event(GamificationEvent(type=GamificationEventType.EARNED, user_id=user_id, data=data))

            if commit:
                await store.commit()
        except Exception:
            if commit:
                await store.rollback()
            raise

        logger.info(
            "Awarded points",
            user_id=user_id,
            amount=amount,
            source=source.value,
            transaction_id=str(transaction_id),
            new_total=account.total_points,
            level=new_level,
        )
        return transaction

    async def spend_points(
        self,
        user_id: str,
        amount: int,
        source: PointsSource | str,
        reference_id: str | None = None,
        *,
        metadata: Mapping[str, Any] | None = None,
        created_by: str | None = None,
    ) -> PointsTransaction:
        """Debit the balance; lifetime points and level are untouched."""

        user_id = validate_user_id(user_id)
        amount = _validate_amount(amount)
        source = _validate_source(source)
        reference_id = _validate_reference(reference_id)

        transaction_id = uuid4()
        store = self._store
        try:
            inserted = await store.insert_transaction(
                {
                    "id": transaction_id,
                    "user_id": user_id,
                    "amount": -amount,
                    "transaction_type": PointsTransactionType.SPENT,
                    "source": source,
                    "reference_id": reference_id,
                    "metadata_json": dict(metadata or {}),
                    "is_active": True,
                    "created_by": created_by,
                    "created_at": datetime.now(timezone.utc),
                }
            )
            if not inserted:
                existing = await store.find_transaction(
                    user_id=user_id,
                    source=source,
                    transaction_type=PointsTransactionType.SPENT,
                    reference_id=reference_id,
                )
                await store.commit()
                return existing

            await store.ensure_account(user_id)
            if not await store.debit_if_sufficient(user_id, amount):
                raise ValidationError.for_field(
                    "amount",
                    "Insufficient points balance",
                    code="INSUFFICIENT_BALANCE",
                )
            await store.increment_source_stat(user_id, source, -amount)
            account = await store.load_account(user_id)
            transaction = await store.load_transaction(transaction_id)
            store.defer_event(
                GamificationEvent(
                    type=GamificationEventType.SPENT,
                    user_id=user_id,
                    data={
                        "transactionId": str(transaction_id),
                        "amount": -amount,
                        "source": source.value,
                        "referenceId": reference_id,
                        "newTotal": account.total_points,
                    },
                )
            )
            await store.commit()
        except Exception:
            await store.rollback()
            raise

        logger.info(
            "Spent points",
            user_id=user_id,
            amount=amount,
            source=source.value,
            new_total=account.total_points,
        )
        return transaction

    async def void_transaction(
        self,
        transaction_id: UUID,
        *,
        reason: str | None = None,
    ) -> PointsTransaction | None:
        """Soft-delete a transaction and reverse its effect on the aggregates.

        Returns ``None`` for unknown ids. Voiding an already inactive row is a
        no-op that returns the row unchanged.
        """

        store = self._store
        try:
            transaction = await store.load_transaction(transaction_id)
            if transaction is None:
                return None

            now = datetime.now(timezone.utc)
            if not await store.deactivate_transaction(transaction_id, reason=reason, at=now):
                await store.commit()
                return transaction

            amount = transaction.amount
            user_id = transaction.user_id
            deltas = {"total_points": -amount}
            if amount > 0:
                deltas["lifetime_points"] = -amount
                deltas[TYPE_STAT_COLUMNS[transaction.transaction_type]] = -amount
            else:
                deltas["spent_points"] = amount
            await store.ensure_account(user_id)
            await store.increment_account(user_id, **deltas)
            await store.increment_source_stat(user_id, transaction.source, -amount)

            account = await store.load_account(user_id)
            new_level = calculate_level(account.lifetime_points)
            await store.set_level_if_changed(user_id, new_level)
            if account.total_points < 0:
                drift = ConsistencyWarning(
                    "NEGATIVE_BALANCE",
                    "Voiding left the balance negative",
                    user_id=user_id,
                    balance=account.total_points,
                )
                logger.warning(drift.message, code=drift.code, user_id=user_id, balance=account.total_points)

            transaction = await store.load_transaction(transaction_id)
            store.defer_event(
                GamificationEvent(
                    type=GamificationEventType.VOIDED,
                    user_id=user_id,
                    data={
                        "transactionId": str(transaction_id),
                        "amount": amount,
                        "source": transaction.source.value,
                        "reason": reason,
                        "newTotal": account.total_points,
                        "newLevel": new_level,
                    },
                )
            )
            await store.commit()
        except Exception:
            await store.rollback()
            raise

        logger.info("Voided points transaction", transaction_id=str(transaction_id), user_id=user_id, reason=reason)
        return transaction

    async def get_user_points(self, user_id: str) -> UserPointsAccount:
        """Return the user's account, creating a zeroed one on first access."""

        user_id = validate_user_id(user_id)
        store = self._store
        account = await store.load_account(user_id)
        if account is not None:
            return account

        try:
            await store.ensure_account(user_id)
            await store.commit()
        except Exception:
            await store.rollback()
            raise
        logger.debug("Initialized points account", user_id=user_id)
        return await store.load_account(user_id)

    async def get_user_source_stats(self, user_id: str) -> dict[str, int]:
        user_id = validate_user_id(user_id)
        breakdown = {source.value: 0 for source in PointsSource}
        for stat in await self._store.list_source_stats(user_id):
            breakdown[stat.source.value] = stat.points
        return breakdown

    async def get_transaction_history(
        self,
        user_id: str,
        *,
        page: int = 1,
        limit: int | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        transaction_type: PointsTransactionType | str | None = None,
        source: PointsSource | str | None = None,
    ) -> TransactionPage:
        """Return active transactions for a user, newest first by default."""

        user_id = validate_user_id(user_id)
        if sort_by not in _SORT_COLUMNS:
            raise ValidationError.for_field("sortBy", f"Unsupported sort field: {sort_by}")
        if sort_order not in ("asc", "desc"):
            raise ValidationError.for_field("sortOrder", f"Unsupported sort order: {sort_order}")

        filters = [PointsTransaction.user_id == user_id, PointsTransaction.is_active.is_(True)]
        if transaction_type is not None:
            try:
                filters.append(PointsTransaction.transaction_type == PointsTransactionType(transaction_type))
            except ValueError as exc:
                raise ValidationError.for_field("type", f"Unknown transaction type: {transaction_type}") from exc
        if source is not None:
            filters.append(PointsTransaction.source == _validate_source(source))

        bounded_limit = limit if limit is not None else settings.points_history_default_page_size
        bounded_limit = max(1, min(int(bounded_limit), settings.points_history_max_page_size))
        bounded_page = max(1, int(page))

        column = _SORT_COLUMNS[sort_by]
        ordering = column.asc() if sort_order == "asc" else column.desc()
        tiebreak = PointsTransaction.id.asc() if sort_order == "asc" else PointsTransaction.id.desc()

        count_stmt = select(func.count()).select_from(PointsTransaction).where(*filters)
        total = (await self._store.execute(count_stmt, operation="count_history")).scalar_one()

        stmt = (
            select(PointsTransaction)
            .where(*filters)
            .order_by(ordering, tiebreak)
            .offset((bounded_page - 1) * bounded_limit)
            .limit(bounded_limit)
        )
        result = await self._store.execute(stmt, operation="list_history")
        items = list(result.scalars().all())
        return TransactionPage(items=items, total=int(total), page=bounded_page, limit=bounded_limit)


def validate_user_id(user_id: Any) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError.for_field("userId", "User id is required", code="REQUIRED")
    user_id = user_id.strip()
    if len(user_id) > _MAX_USER_ID_LENGTH:
        raise ValidationError.for_field("userId", "User id is too long")
    return user_id


def _validate_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError.for_field("amount", "Amount must be an integer")
    if amount <= 0:
        raise ValidationError.for_field("amount", "Amount must be positive")
    return amount


def _validate_source(source: Any) -> PointsSource:
    try:
        return PointsSource(source)
    except ValueError as exc:
        raise ValidationError.for_field("source", f"Unknown points source: {source}") from exc


def _validate_reference(reference_id: Any) -> str | None:
    if reference_id is None:
        return None
    reference_id = str(reference_id).strip()
    if not reference_id:
        return None
    if len(reference_id) > _MAX_REFERENCE_LENGTH:
        raise ValidationError.for_field("referenceId", "Reference id is too long")
    return reference_id


__all__ = ["PointsLedgerService", "TransactionPage", "validate_user_id"]
