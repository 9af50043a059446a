from uuid import uuid4

import pytest
from sqlalchemy import func, select

from founditure_gamification.core.settings import settings
from founditure_gamification.models.points import (
    PointsSource,
    PointsTransaction,
    PointsTransactionType,
    UserPointsAccount,
)
from founditure_gamification.services.gamification import (
    GamificationEventType,
    PointsLedgerService,
    ValidationError,
    get_event_publisher,
)


@pytest.mark.asyncio
async def test_award_updates_balance_level_and_stats(session_factory, recorded_events) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)

        transaction = await service.award_points("user-1", 150, PointsSource.LISTING_CREATED, "listing-1")

        assert transaction.amount == 150
        assert transaction.transaction_type == PointsTransactionType.EARNED
        assert transaction.is_active is True

        account = await service.get_user_points("user-1")
        assert account.total_points == 150
        assert account.lifetime_points == 150
        assert account.earned_points == 150
        assert account.level == 2

        stats = await service.get_user_source_stats("user-1")
        assert stats["LISTING_CREATED"] == 150
        assert stats["ITEM_COLLECTED"] == 0

    await get_event_publisher().drain()

    assert [event.type for event in recorded_events] == [GamificationEventType.EARNED]
    data = recorded_events[0].data
    assert data["amount"] == 150
    assert data["newTotal"] == 150
    assert data["newLevel"] == 2
    assert data["referenceId"] == "listing-1"


@pytest.mark.asyncio
async def test_duplicate_award_is_ignored(session_factory, recorded_events) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)

        first = await service.award_points("user-2", 50, "ITEM_COLLECTED", "item-9")
        second = await service.award_points("user-2", 50, "ITEM_COLLECTED", "item-9")

        assert second.id == first.id
        account = await service.get_user_points("user-2")
        assert account.total_points == 50

        count = (
            await session.execute(
                select(func.count()).select_from(PointsTransaction).where(PointsTransaction.user_id == "user-2")
            )
        ).scalar_one()
        assert count == 1

    await get_event_publisher().drain()

    assert len(recorded_events) == 1


@pytest.mark.asyncio
async def test_awards_without_reference_are_not_deduplicated(session_factory) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)
        await service.award_points("user-3", 10, PointsSource.COMMUNITY_ACTION)
        await service.award_points("user-3", 10, PointsSource.COMMUNITY_ACTION)

        account = await service.get_user_points("user-3")
        assert account.total_points == 20


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("user_id", "amount", "source", "field"),
    [
        ("", 10, "LISTING_CREATED", "userId"),
        ("user", 0, "LISTING_CREATED", "amount"),
        ("user", -5, "LISTING_CREATED", "amount"),
        ("user", 1.5, "LISTING_CREATED", "amount"),
        ("user", 10, "NOT_A_SOURCE", "source"),
    ],
)
async def test_award_rejects_invalid_input(session_factory, user_id, amount, source, field) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)
        with pytest.raises(ValidationError) as exc_info:
            await service.award_points(user_id, amount, source, "ref")
        assert exc_info.value.errors[0]["field"] == field

        count = (await session.execute(select(func.count()).select_from(PointsTransaction))).scalar_one()
        assert count == 0


@pytest.mark.asyncio
async def test_large_award_is_flagged_but_applied(session_factory, recorded_events) -> None:
    previous = settings.points_large_transaction_threshold
    settings.points_large_transaction_threshold = 1000
    try:
        async with session_factory() as session:
            service = PointsLedgerService(session)
            transaction = await service.award_points("whale", 5000, PointsSource.MONTHLY_ACTIVE, "month-1")

            assert transaction.metadata_json["anomaly"] == "LARGE_TRANSACTION"
            account = await service.get_user_points("whale")
            assert account.total_points == 5000
    finally:
        settings.points_large_transaction_threshold = previous

    await get_event_publisher().drain()

    anomaly = recorded_events[0].data["anomaly"]
    assert anomaly["code"] == "LARGE_TRANSACTION"
    assert anomaly["amount"] == 5000


@pytest.mark.asyncio
async def test_spend_debits_balance_but_not_lifetime(session_factory, recorded_events) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)
        await service.award_points("spender", 500, PointsSource.ITEM_COLLECTED, "item-1")

        spent = await service.spend_points("spender", 200, PointsSource.COMMUNITY_ACTION, "perk-1")

        assert spent.amount == -200
        assert spent.transaction_type == PointsTransactionType.SPENT
        account = await service.get_user_points("spender")
        assert account.total_points == 300
        assert account.lifetime_points == 500
        assert account.spent_points == 200
        assert account.level == 3

    await get_event_publisher().drain()

    assert recorded_events[-1].type == GamificationEventType.SPENT
    assert recorded_events[-1].data["newTotal"] == 300


@pytest.mark.asyncio
async def test_spend_with_insufficient_balance_leaves_no_trace(session_factory, recorded_events) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)
        await service.award_points("saver", 40, PointsSource.ITEM_COLLECTED, "item-1")

        with pytest.raises(ValidationError) as exc_info:
            await service.spend_points("saver", 100, PointsSource.COMMUNITY_ACTION, "perk-2")
        assert exc_info.value.errors[0]["code"] == "INSUFFICIENT_BALANCE"

        account = await service.get_user_points("saver")
        assert account.total_points == 40
        assert account.spent_points == 0
        spent_rows = (
            await session.execute(
                select(func.count())
                .select_from(PointsTransaction)
                .where(PointsTransaction.transaction_type == PointsTransactionType.SPENT)
            )
        ).scalar_one()
        assert spent_rows == 0

    await get_event_publisher().drain()

    assert [event.type for event in recorded_events] == [GamificationEventType.EARNED]


@pytest.mark.asyncio
async def test_void_reverses_award(session_factory, recorded_events) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)
        kept = await service.award_points("voider", 100, PointsSource.LISTING_CREATED, "listing-1")
        voided = await service.award_points("voider", 300, PointsSource.ITEM_COLLECTED, "item-1")

        result = await service.void_transaction(voided.id, reason="fraudulent listing")

        assert result.is_active is False
        assert result.void_reason == "fraudulent listing"
        assert result.voided_at is not None

        account = await service.get_user_points("voider")
        assert account.total_points == 100
        assert account.lifetime_points == 100
        assert account.earned_points == 100
        assert account.level == 2

        stats = await service.get_user_source_stats("voider")
        assert stats["ITEM_COLLECTED"] == 0
        assert stats["LISTING_CREATED"] == 100

        history = await service.get_transaction_history("voider")
        assert [item.id for item in history.items] == [kept.id]

    await get_event_publisher().drain()

    assert recorded_events[-1].type == GamificationEventType.VOIDED
    assert recorded_events[-1].data["amount"] == 300


@pytest.mark.asyncio
async def test_void_is_idempotent_and_unknown_ids_return_none(session_factory, recorded_events) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)
        transaction = await service.award_points("twice", 100, PointsSource.LISTING_CREATED, "listing-1")

        await service.void_transaction(transaction.id)
        again = await service.void_transaction(transaction.id)

        assert again.is_active is False
        account = await service.get_user_points("twice")
        assert account.total_points == 0
        assert await service.void_transaction(uuid4()) is None

    await get_event_publisher().drain()

    voided = [event for event in recorded_events if event.type == GamificationEventType.VOIDED]
    assert len(voided) == 1


@pytest.mark.asyncio
async def test_void_spend_restores_balance(session_factory) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)
        await service.award_points("refund", 100, PointsSource.ITEM_COLLECTED, "item-1")
        spend = await service.spend_points("refund", 60, PointsSource.COMMUNITY_ACTION, "perk-1")

        await service.void_transaction(spend.id, reason="refund")

        account = await service.get_user_points("refund")
        assert account.total_points == 100
        assert account.spent_points == 0
        assert account.lifetime_points == 100


@pytest.mark.asyncio
async def test_get_user_points_initializes_account(session_factory) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)

        account = await service.get_user_points("newcomer")

        assert account.total_points == 0
        assert account.level == 1
        rows = (await session.execute(select(func.count()).select_from(UserPointsAccount))).scalar_one()
        assert rows == 1


@pytest.mark.asyncio
async def test_transaction_history_pagination_and_filters(session_factory) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)
        for index in range(5):
            await service.award_points("history", 10 * (index + 1), PointsSource.LISTING_CREATED, f"listing-{index}")
        await service.award_points("history", 7, PointsSource.ITEM_COLLECTED, "item-1")
        await service.award_points("someone-else", 99, PointsSource.LISTING_CREATED, "listing-0")

        first_page = await service.get_transaction_history("history", page=1, limit=4)
        assert first_page.total == 6
        assert first_page.pages == 2
        assert first_page.has_more is True
        assert [item.amount for item in first_page.items] == [7, 50, 40, 30]

        second_page = await service.get_transaction_history("history", page=2, limit=4)
        assert [item.amount for item in second_page.items] == [20, 10]
        assert second_page.has_more is False

        by_amount = await service.get_transaction_history("history", sort_by="amount", sort_order="asc")
        assert [item.amount for item in by_amount.items] == [7, 10, 20, 30, 40, 50]

        filtered = await service.get_transaction_history("history", source="ITEM_COLLECTED")
        assert filtered.total == 1

        typed = await service.get_transaction_history("history", transaction_type="SPENT")
        assert typed.total == 0

        with pytest.raises(ValidationError):
            await service.get_transaction_history("history", sort_by="user_id")


@pytest.mark.asyncio
async def test_history_limit_is_capped(session_factory) -> None:
    previous = settings.points_history_max_page_size
    settings.points_history_max_page_size = 2
    try:
        async with session_factory() as session:
            service = PointsLedgerService(session)
            for index in range(3):
                await service.award_points("capped", 5, PointsSource.LISTING_CREATED, f"listing-{index}")

            result = await service.get_transaction_history("capped", limit=50)
            assert result.limit == 2
            assert len(result.items) == 2
            assert result.pages == 2
    finally:
        settings.points_history_max_page_size = previous


@pytest.mark.asyncio
async def test_first_small_award_keeps_level_one(session_factory, recorded_events) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)
        await service.award_points("fresh", 50, PointsSource.LISTING_CREATED, "listing-1")

        account = await service.get_user_points("fresh")
        assert account.total_points == 50
        assert account.level == 1

    await get_event_publisher().drain()

    assert [event.type for event in recorded_events] == [GamificationEventType.EARNED]
    assert "newLevel" not in recorded_events[0].data


@pytest.mark.asyncio
async def test_five_awards_of_300_reach_level_four(session_factory) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)
        for index in range(5):
            await service.award_points("steady", 300, PointsSource.ITEM_COLLECTED, f"item-{index}")

        account = await service.get_user_points("steady")
        assert account.total_points == 1500
        assert account.lifetime_points == 1500
        assert account.level == 4


@pytest.mark.asyncio
async def test_spend_reusing_award_reference_still_debits(session_factory) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)
        award = await service.award_points("reuser", 100, PointsSource.ITEM_COLLECTED, "ref-1")

        spend = await service.spend_points("reuser", 40, PointsSource.ITEM_COLLECTED, "ref-1")
        retried = await service.spend_points("reuser", 40, PointsSource.ITEM_COLLECTED, "ref-1")

        assert spend.id != award.id
        assert spend.transaction_type == PointsTransactionType.SPENT
        assert spend.amount == -40
        assert retried.id == spend.id

        account = await service.get_user_points("reuser")
        assert account.total_points == 60
        assert account.lifetime_points == 100
        assert account.spent_points == 40
