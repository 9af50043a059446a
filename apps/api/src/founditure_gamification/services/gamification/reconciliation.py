"""Recompute points aggregates from the active transaction log."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy import func, select, union
from sqlalchemy.ext.asyncio import AsyncSession

from founditure_gamification.core.settings import settings
from founditure_gamification.models.points import (
    TYPE_STAT_COLUMNS,
    PointsSource,
    PointsTransaction,
    PointsTransactionType,
    UserPointsAccount,
    UserPointsSourceStat,
)

from .errors import ConsistencyWarning
from .levels import calculate_level
from .points_service import validate_user_id
from .store import LedgerStore

_ACCOUNT_FIELDS = (
    "total_points",
    "lifetime_points",
    "level",
    "earned_points",
    "spent_points",
    "bonus_points",
    "achievement_points",
)


@dataclass
class UserReconciliation:
    user_id: str
    expected: dict[str, int]
    actual: dict[str, int]
    source_drift: dict[str, tuple[int, int]] = field(default_factory=dict)
    corrected: bool = False

    @property
    def drift(self) -> dict[str, tuple[int, int]]:
        return {
            name: (self.expected[name], self.actual.get(name, 0))
            for name in _ACCOUNT_FIELDS
            if self.expected[name] != self.actual.get(name, 0)
        }

    @property
    def has_drift(self) -> bool:
        return bool(self.drift or self.source_drift)

    def as_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "corrected": self.corrected,
            "drift": {name: {"expected": exp, "actual": act} for name, (exp, act) in self.drift.items()},
            "sourceDrift": {
                name: {"expected": exp, "actual": act} for name, (exp, act) in self.source_drift.items()
            },
        }


@dataclass
class ReconciliationSummary:
    scanned: int = 0
    drifted: int = 0
    corrected: int = 0
    users: list[UserReconciliation] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "drifted": self.drifted,
            "corrected": self.corrected,
            "users": [entry.as_dict() for entry in self.users],
        }


class PointsReconciliationService:
    """Detects and repairs drift between accounts and the transaction log.

    Running it twice in a row is a no-op the second time.
    """

    def __init__(self, db_session: AsyncSession, *, store: LedgerStore | None = None) -> None:
        self._db = db_session
        self._store = store or LedgerStore(db_session)

    async def reconcile_user(self, user_id: str, *, apply: bool = True) -> UserReconciliation:
        user_id = validate_user_id(user_id)
        store = self._store
        try:
            if apply:
                await store.ensure_account(user_id)
                account = await store.lock_account(user_id)
            else:
                account = await store.load_account(user_id)
            expected, expected_sources = await self._expected_totals(user_id)
            if account is None:
                actual = {**dict.fromkeys(_ACCOUNT_FIELDS, 0), "level": calculate_level(0)}
            else:
                actual = {name: int(getattr(account, name) or 0) for name in _ACCOUNT_FIELDS}
            stored_sources = {stat.source.value: stat.points for stat in await store.list_source_stats(user_id)}

            outcome = UserReconciliation(user_id=user_id, expected=expected, actual=actual)
            for source in PointsSource:
                want = expected_sources.get(source.value, 0)
                have = stored_sources.get(source.value, 0)
                if want != have:
                    outcome.source_drift[source.value] = (want, have)

            if outcome.has_drift:
                warning = ConsistencyWarning(
                    "AGGREGATE_DRIFT",
                    "Points aggregates diverged from the transaction log",
                    user_id=user_id,
                    fields=sorted(outcome.drift),
                    sources=sorted(outcome.source_drift),
                )
                logger.warning(warning.message, code=warning.code, user_id=user_id, **outcome.as_dict())

            now = datetime.now(timezone.utc)
            if apply and outcome.has_drift:
                await store.overwrite_account(user_id, last_reconciled_at=now, **expected)
                for source_name, (want, _have) in outcome.source_drift.items():
                    await store.set_source_stat(user_id, PointsSource(source_name), want)
                outcome.corrected = True
            elif apply:
                await store.overwrite_account(user_id, last_reconciled_at=now)

            await store.commit()
        except Exception:
            await store.rollback()
            raise

        return outcome

    async def reconcile_all(
        self,
        *,
        apply: bool = True,
        batch_size: int | None = None,
    ) -> ReconciliationSummary:
        """Walk every known user in ``user_id`` order, one transaction each."""

        batch_size = max(1, batch_size or settings.points_reconciliation_batch_size)
        summary = ReconciliationSummary()
        cursor: str | None = None
        while True:
            user_ids = await self._next_user_batch(cursor, batch_size)
            if not user_ids:
                break
            for user_id in user_ids:
                outcome = await self.reconcile_user(user_id, apply=apply)
                summary.scanned += 1
                if outcome.has_drift:
                    summary.drifted += 1
                    summary.users.append(outcome)
                if outcome.corrected:
                    summary.corrected += 1
            cursor = user_ids[-1]
            if len(user_ids) < batch_size:
                break

        logger.info(
            "Reconciled points accounts",
            scanned=summary.scanned,
            drifted=summary.drifted,
            corrected=summary.corrected,
            apply=apply,
        )
        return summary

    async def _expected_totals(self, user_id: str) -> tuple[dict[str, int], dict[str, int]]:
        stmt = (
            select(
                PointsTransaction.transaction_type,
                PointsTransaction.source,
                func.coalesce(func.sum(PointsTransaction.amount), 0),
            )
            .where(PointsTransaction.user_id == user_id, PointsTransaction.is_active.is_(True))
            .group_by(PointsTransaction.transaction_type, PointsTransaction.source)
        )
        result = await self._store.execute(stmt, operation="sum_transactions")

        totals = dict.fromkeys(_ACCOUNT_FIELDS, 0)
        by_source: dict[str, int] = defaultdict(int)
        for transaction_type, source, amount in result.all():
            amount = int(amount)
            totals["total_points"] += amount
            by_source[PointsSource(source).value] += amount
            if PointsTransactionType(transaction_type) == PointsTransactionType.SPENT:
                totals["spent_points"] -= amount
            else:
                totals["lifetime_points"] += amount
                totals[TYPE_STAT_COLUMNS[PointsTransactionType(transaction_type)]] += amount

        totals["level"] = calculate_level(totals["lifetime_points"])
        return totals, dict(by_source)

    async def _next_user_batch(self, cursor: str | None, batch_size: int) -> list[str]:
        known = union(
            select(UserPointsAccount.user_id.label("user_id")),
            select(PointsTransaction.user_id.label("user_id")),
            select(UserPointsSourceStat.user_id.label("user_id")),
        ).subquery()
        stmt = select(known.c.user_id).order_by(known.c.user_id).limit(batch_size)
        if cursor is not None:
            stmt = stmt.where(known.c.user_id > cursor)
        result = await self._store.execute(stmt, operation="list_users")
        return [row[0] for row in result.all()]


__all__ = ["PointsReconciliationService", "ReconciliationSummary", "UserReconciliation"]
