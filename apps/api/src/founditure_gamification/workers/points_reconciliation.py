"""Worker wiring for periodic points aggregate reconciliation."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from founditure_gamification.core.settings import settings
from founditure_gamification.observability.gamification import get_gamification_store
from founditure_gamification.observability.tracing import get_tracer
from founditure_gamification.services.gamification.reconciliation import PointsReconciliationService

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]

_tracer = get_tracer(__name__)


class PointsReconciliationWorker:
    """Periodically rebuilds account aggregates from the transaction log."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
        apply: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.points_reconciliation_interval_seconds
        self._batch_size = batch_size or settings.points_reconciliation_batch_size
        self._apply = apply
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Points reconciliation worker started",
            interval_seconds=self.interval_seconds,
            batch_size=self._batch_size,
            apply=self._apply,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Points reconciliation worker stopped")

    async def run_once(self, *, triggered_by: str = "schedule") -> Dict[str, int]:
        """Execute a single sweep and report scanned/drifted/corrected counts."""

        session = await self._ensure_session()
        with _tracer.start_as_current_span("points.reconciliation") as span:
            span.set_attribute("reconciliation.triggered_by", triggered_by)
            async with session as managed_session:
                service = PointsReconciliationService(managed_session)
                result = await service.reconcile_all(apply=self._apply, batch_size=self._batch_size)
            span.set_attribute("reconciliation.scanned", result.scanned)
            span.set_attribute("reconciliation.drifted", result.drifted)

        summary = {"scanned": result.scanned, "drifted": result.drifted, "corrected": result.corrected}
        get_gamification_store().record_reconciliation(**summary)
        logger.info("Points reconciliation sweep completed", trigger=triggered_by, **summary)
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - keep the loop alive
                logger.exception("Points reconciliation iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session
