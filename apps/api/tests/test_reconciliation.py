import pytest
from sqlalchemy import delete, select, update

from founditure_gamification.models.points import PointsSource, UserPointsAccount, UserPointsSourceStat
from founditure_gamification.observability.gamification import get_gamification_store
from founditure_gamification.services.gamification import (
    PointsLedgerService,
    PointsReconciliationService,
    ValidationError,
)
from founditure_gamification.workers import PointsReconciliationWorker


async def _seed_ledger(session) -> None:
    service = PointsLedgerService(session)
    await service.award_points("alice", 300, PointsSource.LISTING_CREATED, "listing-1")
    await service.award_points("alice", 200, PointsSource.ITEM_COLLECTED, "item-1")
    await service.spend_points("alice", 100, PointsSource.COMMUNITY_ACTION, "perk-1")
    voided = await service.award_points("alice", 50, PointsSource.POSITIVE_FEEDBACK, "feedback-1")
    await service.void_transaction(voided.id)
    await service.award_points("bob", 40, PointsSource.ITEM_COLLECTED, "item-2")


async def _corrupt(session, user_id: str) -> None:
    await session.execute(
        update(UserPointsAccount)
        .where(UserPointsAccount.user_id == user_id)
        .values(total_points=9999, lifetime_points=1, level=7, earned_points=0)
    )
    await session.execute(
        update(UserPointsSourceStat)
        .where(UserPointsSourceStat.user_id == user_id, UserPointsSourceStat.source == PointsSource.LISTING_CREATED)
        .values(points=5)
    )
    await session.commit()


@pytest.mark.asyncio
async def test_consistent_ledger_reports_no_drift(session_factory) -> None:
    async with session_factory() as session:
        await _seed_ledger(session)

        outcome = await PointsReconciliationService(session).reconcile_user("alice")

        assert outcome.has_drift is False
        assert outcome.corrected is False
        assert outcome.expected["total_points"] == 400
        assert outcome.expected["lifetime_points"] == 500
        assert outcome.expected["spent_points"] == 100
        assert outcome.expected["level"] == 3

        account = await PointsLedgerService(session).get_user_points("alice")
        assert account.last_reconciled_at is not None


@pytest.mark.asyncio
async def test_drift_is_detected_and_repaired(session_factory) -> None:
    async with session_factory() as session:
        await _seed_ledger(session)
        await _corrupt(session, "alice")

        service = PointsReconciliationService(session)
        outcome = await service.reconcile_user("alice")

        assert outcome.has_drift is True
        assert outcome.corrected is True
        assert outcome.drift["total_points"] == (400, 9999)
        assert outcome.source_drift["LISTING_CREATED"] == (300, 5)

        ledger = PointsLedgerService(session)
        account = await ledger.get_user_points("alice")
        assert account.total_points == 400
        assert account.lifetime_points == 500
        assert account.earned_points == 500
        assert account.level == 3
        stats = await ledger.get_user_source_stats("alice")
        assert stats["LISTING_CREATED"] == 300
        assert stats["POSITIVE_FEEDBACK"] == 0
        assert stats["COMMUNITY_ACTION"] == -100

        second = await service.reconcile_user("alice")
        assert second.has_drift is False


@pytest.mark.asyncio
async def test_dry_run_leaves_aggregates_untouched(session_factory) -> None:
    async with session_factory() as session:
        await _seed_ledger(session)
        await _corrupt(session, "alice")

        outcome = await PointsReconciliationService(session).reconcile_user("alice", apply=False)

        assert outcome.has_drift is True
        assert outcome.corrected is False
        account = await PointsLedgerService(session).get_user_points("alice")
        assert account.total_points == 9999


@pytest.mark.asyncio
async def test_reconcile_all_walks_every_user_in_batches(session_factory) -> None:
    async with session_factory() as session:
        await _seed_ledger(session)
        await PointsLedgerService(session).get_user_points("carol")
        await _corrupt(session, "bob")

        summary = await PointsReconciliationService(session).reconcile_all(batch_size=1)

        assert summary.scanned == 3
        assert summary.drifted == 1
        assert summary.corrected == 1
        assert [entry.user_id for entry in summary.users] == ["bob"]
        assert summary.as_dict()["users"][0]["drift"]["total_points"] == {"expected": 40, "actual": 9999}


@pytest.mark.asyncio
async def test_reconcile_user_validates_id(session_factory) -> None:
    async with session_factory() as session:
        with pytest.raises(ValidationError):
            await PointsReconciliationService(session).reconcile_user("   ")


@pytest.mark.asyncio
async def test_worker_run_once_records_observability(session_factory) -> None:
    async with session_factory() as session:
        await _seed_ledger(session)
        await _corrupt(session, "alice")

    worker = PointsReconciliationWorker(session_factory, interval_seconds=60, batch_size=10)
    summary = await worker.run_once(triggered_by="test")

    assert summary == {"scanned": 2, "drifted": 1, "corrected": 1}
    snapshot = get_gamification_store().snapshot()
    assert snapshot.reconciliation["runs"] == 1
    assert snapshot.reconciliation["corrected"] == 1

    async with session_factory() as session:
        account = await PointsLedgerService(session).get_user_points("alice")
        assert account.total_points == 400


@pytest.mark.asyncio
async def test_worker_start_and_stop(session_factory) -> None:
    worker = PointsReconciliationWorker(session_factory, interval_seconds=3600)

    worker.start()
    assert worker.is_running is True
    await worker.stop()

    assert worker.is_running is False


@pytest.mark.asyncio
async def test_dry_run_does_not_create_missing_accounts(session_factory) -> None:
    async with session_factory() as session:
        await _seed_ledger(session)
        await session.execute(delete(UserPointsAccount).where(UserPointsAccount.user_id == "bob"))
        await session.commit()

        outcome = await PointsReconciliationService(session).reconcile_user("bob", apply=False)

        assert outcome.has_drift is True
        assert outcome.corrected is False
        assert outcome.drift["total_points"] == (40, 0)
        assert "level" not in outcome.drift
        remaining = (
            await session.execute(select(UserPointsAccount).where(UserPointsAccount.user_id == "bob"))
        ).scalar_one_or_none()
        assert remaining is None
