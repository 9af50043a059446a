"""In-process publish/subscribe channel for gamification events."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Iterable

from loguru import logger


class GamificationEventType(str, Enum):
    EARNED = "EARNED"
    SPENT = "SPENT"
    VOIDED = "VOIDED"
    PROGRESS = "PROGRESS"
    COMPLETED = "COMPLETED"


@dataclass(slots=True)
class GamificationEvent:
    """Event emitted after a ledger or progress mutation has committed."""

    type: GamificationEventType
    user_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type.value,
            "userId": self.user_id,
            "timestamp": self.timestamp.isoformat(),
        }
        payload.update(self.data)
        return payload


EventHandler = Callable[[GamificationEvent], Awaitable[None] | None]


@dataclass(slots=True)
class _Subscription:
    handler: EventHandler
    event_types: frozenset[GamificationEventType] | None

    def accepts(self, event: GamificationEvent) -> bool:
        return self.event_types is None or event.type in self.event_types


class EventPublisher:
    """Fire-and-forget fan-out to subscribers.

    Inside a running loop, :meth:`publish` only queues the event: synchronous
    handlers run in a worker thread one event at a time, in publish order, and
    coroutine handlers are scheduled as tasks. Without a loop, handlers run
    inline. Handler failures are logged and never reach the publisher's caller.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._subscriptions: list[_Subscription] = []
        self._pending: set[asyncio.Task] = set()
        self._tail: asyncio.Task | None = None

    def subscribe(
        self,
        handler: EventHandler,
        *,
        event_types: Iterable[GamificationEventType] | None = None,
    ) -> Callable[[], None]:
        subscription = _Subscription(
            handler=handler,
            event_types=frozenset(event_types) if event_types is not None else None,
        )
        with self._lock:
            self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)

        return unsubscribe

    def publish(self, event: GamificationEvent) -> None:
        with self._lock:
            subscriptions = [sub for sub in self._subscriptions if sub.accepts(event)]
        if not subscriptions:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            for subscription in subscriptions:
                result = self._call(subscription.handler, event)
                if inspect.iscoroutine(result):
                    # No loop to run it on.
                    result.close()
            return

        previous = self._tail
        if previous is not None and (previous.done() or previous.get_loop() is not loop):
            previous = None
        task = loop.create_task(self._dispatch(event, subscriptions, previous))
        self._tail = task
        self._track(task, event, None)

    def publish_many(self, events: Iterable[GamificationEvent]) -> None:
        for event in events:
            self.publish(event)

    async def drain(self) -> None:
        """Wait until every queued event has reached every handler."""

        loop = asyncio.get_running_loop()
        while True:
            pending = [task for task in self._pending if task.get_loop() is loop]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()
        self._pending = {task for task in self._pending if not task.get_loop().is_closed()}

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def _dispatch(
        self,
        event: GamificationEvent,
        subscriptions: list[_Subscription],
        previous: asyncio.Task | None,
    ) -> None:
        if previous is not None:
            await asyncio.wait([previous])

        for subscription in subscriptions:
            handler = subscription.handler
            if inspect.iscoroutinefunction(handler):
                result = self._call(handler, event)
            else:
                result = await asyncio.to_thread(self._call, handler, event)
            if inspect.isawaitable(result):
                self._track(asyncio.ensure_future(result), event, handler)

    def _call(self, handler: EventHandler, event: GamificationEvent) -> Any:
        try:
            return handler(event)
        except Exception as exc:
            logger.exception(
                "Gamification event handler failed",
                event_type=event.type.value,
                user_id=event.user_id,
                handler=_handler_name(handler),
                error=str(exc),
            )
            return None

    def _track(self, task: asyncio.Task, event: GamificationEvent, handler: EventHandler | None) -> None:
        self._pending.add(task)

        def _on_done(done: asyncio.Task) -> None:
            self._pending.discard(done)
            if done.cancelled():
                return
            exc = done.exception()
            if exc is not None:
                logger.opt(exception=exc).error(
                    "Gamification event handler failed",
                    event_type=event.type.value,
                    user_id=event.user_id,
                    handler=_handler_name(handler) if handler is not None else "dispatch",
                    error=str(exc),
                )

        task.add_done_callback(_on_done)


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


_PUBLISHER = EventPublisher()


def get_event_publisher() -> EventPublisher:
    return _PUBLISHER


__all__ = [
    "EventHandler",
    "EventPublisher",
    "GamificationEvent",
    "GamificationEventType",
    "get_event_publisher",
]
