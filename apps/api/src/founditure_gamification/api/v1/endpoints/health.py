from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from founditure_gamification.core.settings import settings
from founditure_gamification.db.session import get_session
from founditure_gamification.services.gamification import get_event_publisher


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
        components["ledger_store"] = ComponentStatus(status="ready")
    except Exception as exc:
        logger.warning("Ledger store readiness probe failed", error=str(exc))
        components["ledger_store"] = ComponentStatus(status="error", detail=str(exc))
        status = "error"

    worker = getattr(request.app.state, "points_reconciliation_worker", None)
    if settings.points_reconciliation_worker_enabled and worker is not None:
        running = bool(getattr(worker, "is_running", False))
        components["points_reconciliation"] = ComponentStatus(
            status="ready" if running else "starting",
            detail=None if running else "Points reconciliation worker not running",
        )
        if not running and status == "ready":
            status = "degraded"
    else:
        components["points_reconciliation"] = ComponentStatus(
            status="disabled",
            detail="Points reconciliation worker disabled via settings",
        )

    publisher = get_event_publisher()
    components["event_publisher"] = ComponentStatus(
        status="ready",
        detail=f"{publisher.subscriber_count} subscriber(s), {publisher.pending_count} pending",
    )

    return ReadinessPayload(status=status, components=components)
