import asyncio
import threading

import pytest

from founditure_gamification.models.points import PointsSource
from founditure_gamification.services.gamification import (
    EventPublisher,
    GamificationEvent,
    GamificationEventType,
    PointsLedgerService,
    get_event_publisher,
)


def _event(event_type: GamificationEventType = GamificationEventType.EARNED) -> GamificationEvent:
    return GamificationEvent(type=event_type, user_id="user-1", data={"amount": 10})


def _event_with_amount(amount: int) -> GamificationEvent:
    return GamificationEvent(type=GamificationEventType.EARNED, user_id="user-1", data={"amount": amount})


def test_failing_handler_does_not_block_others() -> None:
    publisher = EventPublisher()
    received = []

    def broken(event: GamificationEvent) -> None:
        raise RuntimeError("subscriber exploded")

    publisher.subscribe(broken)
    publisher.subscribe(received.append)

    publisher.publish(_event())

    assert len(received) == 1


def test_subscriptions_filter_by_type_and_unsubscribe() -> None:
    publisher = EventPublisher()
    completed = []
    unsubscribe = publisher.subscribe(completed.append, event_types=[GamificationEventType.COMPLETED])

    publisher.publish(_event(GamificationEventType.EARNED))
    publisher.publish(_event(GamificationEventType.COMPLETED))
    assert [event.type for event in completed] == [GamificationEventType.COMPLETED]

    unsubscribe()
    publisher.publish(_event(GamificationEventType.COMPLETED))
    assert len(completed) == 1
    assert publisher.subscriber_count == 0


def test_event_payload_is_camel_cased() -> None:
    payload = _event().as_payload()
    assert payload["type"] == "EARNED"
    assert payload["userId"] == "user-1"
    assert payload["amount"] == 10
    assert "timestamp" in payload


@pytest.mark.asyncio
async def test_async_handlers_are_drained() -> None:
    publisher = EventPublisher()
    received = []

    async def slow_handler(event: GamificationEvent) -> None:
        await asyncio.sleep(0)
        received.append(event)

    async def failing_handler(event: GamificationEvent) -> None:
        raise RuntimeError("async subscriber exploded")

    publisher.subscribe(failing_handler)
    publisher.subscribe(slow_handler)
    publisher.publish(_event())
    await publisher.drain()

    assert len(received) == 1


@pytest.mark.asyncio
async def test_subscriber_failure_does_not_roll_back_award(session_factory, isolated_event_bus) -> None:
    def broken(event: GamificationEvent) -> None:
        raise RuntimeError("subscriber exploded")

    isolated_event_bus.subscribe(broken)

    async with session_factory() as session:
        service = PointsLedgerService(session)
        transaction = await service.award_points("user-1", 25, PointsSource.LISTING_CREATED, "listing-1")

        account = await service.get_user_points("user-1")
        assert transaction.is_active is True
        assert account.total_points == 25


@pytest.mark.asyncio
async def test_events_are_not_published_for_rolled_back_work(session_factory, recorded_events) -> None:
    async with session_factory() as session:
        service = PointsLedgerService(session)
        await service.award_points("user-1", 25, PointsSource.LISTING_CREATED, "listing-1", commit=False)
        await service.store.rollback()

        account = await service.get_user_points("user-1")
        assert account.total_points == 0

    await get_event_publisher().drain()

    assert recorded_events == []


@pytest.mark.asyncio
async def test_slow_sync_subscriber_does_not_delay_award(session_factory, isolated_event_bus) -> None:
    release = threading.Event()
    handled = []

    def blocking(event: GamificationEvent) -> None:
        release.wait(timeout=5)
        handled.append(event.type)

    isolated_event_bus.subscribe(blocking)

    async with session_factory() as session:
        service = PointsLedgerService(session)
        transaction = await service.award_points("user-1", 25, PointsSource.LISTING_CREATED, "listing-1")
        account = await service.get_user_points("user-1")

    assert transaction.is_active is True
    assert account.total_points == 25
    assert handled == []
    assert isolated_event_bus.pending_count == 1

    release.set()
    await isolated_event_bus.drain()

    assert handled == [GamificationEventType.EARNED]
    assert isolated_event_bus.pending_count == 0


@pytest.mark.asyncio
async def test_sync_handlers_see_events_in_publish_order() -> None:
    publisher = EventPublisher()
    received = []
    publisher.subscribe(lambda event: received.append(event.data["amount"]))

    for amount in range(5):
        publisher.publish(_event_with_amount(amount))
    await publisher.drain()

    assert received == [0, 1, 2, 3, 4]
