from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict

from founditure_gamification.services.gamification.events import (
    EventPublisher,
    GamificationEvent,
    GamificationEventType,
)


@dataclass
class GamificationSnapshot:
    events: Dict[str, int]
    points: Dict[str, int]
    sources: Dict[str, int]
    achievements: Dict[str, int]
    anomalies: Dict[str, int]
    reconciliation: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "events": dict(self.events),
            "points": dict(self.points),
            "sources": dict(self.sources),
            "achievements": dict(self.achievements),
            "anomalies": dict(self.anomalies),
            "reconciliation": dict(self.reconciliation),
        }


class GamificationObservabilityStore:
    """Collect ledger and achievement telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._events: Dict[str, int] = defaultdict(int)
        self._points: Dict[str, int] = defaultdict(int)
        self._sources: Dict[str, int] = defaultdict(int)
        self._achievements: Dict[str, int] = defaultdict(int)
        self._anomalies: Dict[str, int] = defaultdict(int)
        self._reconciliation: Dict[str, int] = defaultdict(int)
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self, publisher: EventPublisher) -> None:
        """Subscribe to ``publisher``; calling it again is a no-op."""

        with self._lock:
            if self._unsubscribe is not None:
                return
            self._unsubscribe = publisher.subscribe(self.record_event)

    def detach(self) -> None:
        with self._lock:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    def record_event(self, event: GamificationEvent) -> None:
        data = event.data
        with self._lock:
            self._events[event.type.value] += 1
            if event.type == GamificationEventType.EARNED:
                amount = int(data.get("amount", 0))
                self._points["awarded"] += amount
                self._sources[str(data.get("source", "unknown"))] += amount
                if "newLevel" in data:
                    self._points["level_ups"] += 1
                anomaly = data.get("anomaly")
                if anomaly:
                    self._anomalies[str(anomaly.get("code", "unknown"))] += 1
            elif event.type == GamificationEventType.SPENT:
                self._points["spent"] += abs(int(data.get("amount", 0)))
            elif event.type == GamificationEventType.VOIDED:
                self._points["voided"] += abs(int(data.get("amount", 0)))
            elif event.type == GamificationEventType.COMPLETED:
                achievement = data.get("achievement") or {}
                self._achievements["completed"] += 1
                self._achievements[f"tier:{achievement.get('tier', 'unknown')}"] += 1
            elif event.type == GamificationEventType.PROGRESS:
                self._achievements["progress_updates"] += 1

    def record_reconciliation(self, *, scanned: int, drifted: int, corrected: int) -> None:
        with self._lock:
            self._reconciliation["runs"] += 1
            self._reconciliation["scanned"] += scanned
            self._reconciliation["drifted"] += drifted
            self._reconciliation["corrected"] += corrected

    def snapshot(self) -> GamificationSnapshot:
        with self._lock:
            return GamificationSnapshot(
                events=dict(self._events),
                points=dict(self._points),
                sources=dict(self._sources),
                achievements=dict(self._achievements),
                anomalies=dict(self._anomalies),
                reconciliation=dict(self._reconciliation),
            )

    def reset(self) -> None:
        with self._lock:
            self._events.clear()
            self._points.clear()
            self._sources.clear()
            self._achievements.clear()
            self._anomalies.clear()
            self._reconciliation.clear()


_STORE = GamificationObservabilityStore()


def get_gamification_store() -> GamificationObservabilityStore:
    return _STORE


__all__ = ["get_gamification_store", "GamificationObservabilityStore", "GamificationSnapshot"]
