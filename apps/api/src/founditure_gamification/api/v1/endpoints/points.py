"""API endpoints for the points ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from founditure_gamification.api.dependencies.security import optional_actor_id, require_admin_api_key
from founditure_gamification.db.session import get_session
from founditure_gamification.models.points import (
    PointsSource,
    PointsTransaction,
    PointsTransactionType,
    UserPointsAccount,
)
from founditure_gamification.observability.gamification import get_gamification_store
from founditure_gamification.services.gamification import (
    PointsLedgerService,
    PointsReconciliationService,
    ValidationError,
    level_progress,
)


router = APIRouter(tags=["Points"])


class PointsAwardRequest(BaseModel):
    userId: str = Field(..., description="User receiving the points")
    amount: int = Field(..., description="Positive number of points to award")
    source: PointsSource = Field(..., description="Domain event that earned the points")
    referenceId: Optional[str] = Field(None, description="Id of the triggering entity; repeats are ignored")
    metadata: Optional[dict[str, Any]] = Field(None, description="Free-form context stored on the transaction")


class PointsSpendRequest(BaseModel):
    userId: str
    amount: int = Field(..., description="Positive number of points to debit")
    source: PointsSource
    referenceId: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class TransactionVoidRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255, description="Audit note for the reversal")


class ReconcileRequest(BaseModel):
    userId: Optional[str] = Field(None, description="Limit the run to one user")
    apply: bool = Field(True, description="Write corrections; false only reports drift")


class PointsTransactionResponse(BaseModel):
    id: UUID
    userId: str
    amount: int
    type: PointsTransactionType
    source: PointsSource
    referenceId: Optional[str]
    metadata: Dict[str, Any]
    isActive: bool
    createdBy: Optional[str]
    createdAt: datetime
    voidedAt: Optional[datetime]
    voidReason: Optional[str]


class LevelProgressResponse(BaseModel):
    level: int
    currentLevelFloor: int
    nextLevelAt: Optional[int]
    pointsIntoLevel: int
    pointsToNextLevel: Optional[int]


class PointsStatsResponse(BaseModel):
    earned: int
    spent: int
    bonus: int
    achievement: int
    bySource: Dict[str, int]


class UserPointsResponse(BaseModel):
    userId: str
    totalPoints: int
    lifetimePoints: int
    level: int
    levelProgress: LevelProgressResponse
    stats: PointsStatsResponse
    lastReconciledAt: Optional[datetime]
    updatedAt: Optional[datetime]


class TransactionHistoryResponse(BaseModel):
    items: List[PointsTransactionResponse]
    total: int
    page: int
    limit: int
    pages: int
    hasMore: bool


@router.post(
    "/points/award",
    response_model=PointsTransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Award points to a user",
)
async def award_points(
    payload: PointsAwardRequest,
    actor_id: str | None = Depends(optional_actor_id),
    session: AsyncSession = Depends(get_session),
) -> PointsTransactionResponse:
    service = PointsLedgerService(session)
    try:
        transaction = await service.award_points(
            payload.userId,
            payload.amount,
            payload.source,
            payload.referenceId,
            metadata=payload.metadata,
            created_by=actor_id,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.as_detail()) from exc
    return serialize_transaction(transaction)


@router.post(
    "/points/spend",
    response_model=PointsTransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Spend points from a user's balance",
)
async def spend_points(
    payload: PointsSpendRequest,
    actor_id: str | None = Depends(optional_actor_id),
    session: AsyncSession = Depends(get_session),
) -> PointsTransactionResponse:
    service = PointsLedgerService(session)
    try:
        transaction = await service.spend_points(
            payload.userId,
            payload.amount,
            payload.source,
            payload.referenceId,
            metadata=payload.metadata,
            created_by=actor_id,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.as_detail()) from exc
    return serialize_transaction(transaction)


@router.post(
    "/points/transactions/{transaction_id}/void",
    response_model=PointsTransactionResponse,
    dependencies=[Depends(require_admin_api_key)],
    summary="Void a transaction and reverse its effect",
)
async def void_transaction(
    transaction_id: UUID,
    payload: TransactionVoidRequest | None = None,
    session: AsyncSession = Depends(get_session),
) -> PointsTransactionResponse:
    service = PointsLedgerService(session)
    transaction = await service.void_transaction(
        transaction_id,
        reason=payload.reason if payload else None,
    )
    if transaction is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
    return serialize_transaction(transaction)


@router.post(
    "/points/reconcile",
    dependencies=[Depends(require_admin_api_key)],
    summary="Rebuild points aggregates from the transaction log",
)
async def reconcile_points(
    payload: ReconcileRequest | None = None,
    session: AsyncSession = Depends(get_session),
) -> dict[str, object]:
    payload = payload or ReconcileRequest()
    service = PointsReconciliationService(session)
    if payload.userId:
        try:
            outcome = await service.reconcile_user(payload.userId, apply=payload.apply)
        except ValidationError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.as_detail()) from exc
        result = {
            "scanned": 1,
            "drifted": int(outcome.has_drift),
            "corrected": int(outcome.corrected),
            "users": [outcome.as_dict()] if outcome.has_drift else [],
        }
    else:
        result = (await service.reconcile_all(apply=payload.apply)).as_dict()

    get_gamification_store().record_reconciliation(
        scanned=result["scanned"],
        drifted=result["drifted"],
        corrected=result["corrected"],
    )
    return result


@router.get(
    "/users/{user_id}/points",
    response_model=UserPointsResponse,
    summary="Current balance, level and stats for a user",
)
async def get_user_points(
    user_id: str,
    session: AsyncSession = Depends(get_session),
) -> UserPointsResponse:
    service = PointsLedgerService(session)
    try:
        account = await service.get_user_points(user_id)
        by_source = await service.get_user_source_stats(user_id)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.as_detail()) from exc
    return _serialize_account(account, by_source)


@router.get(
    "/users/{user_id}/points/history",
    response_model=TransactionHistoryResponse,
    summary="Paginated active transactions for a user",
)
async def get_points_history(
    user_id: str,
    page: int = Query(1, description="1-based page number"),
    limit: Optional[int] = Query(None, description="Page size, capped server-side"),
    sort_by: str = Query("created_at", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    transaction_type: Optional[str] = Query(None, alias="type"),
    source: Optional[str] = Query(None),
    session: AsyncSession = Depends(get_session),
) -> TransactionHistoryResponse:
    service = PointsLedgerService(session)
    try:
        result = await service.get_transaction_history(
            user_id,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
            transaction_type=transaction_type,
            source=source,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.as_detail()) from exc

    return TransactionHistoryResponse(
        items=[serialize_transaction(item) for item in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
        hasMore=result.has_more,
    )


def serialize_transaction(transaction: PointsTransaction) -> PointsTransactionResponse:
    return PointsTransactionResponse(
        id=transaction.id,
        userId=transaction.user_id,
        amount=transaction.amount,
        type=transaction.transaction_type,
        source=transaction.source,
        referenceId=transaction.reference_id,
        metadata=transaction.metadata_json or {},
        isActive=bool(transaction.is_active),
        createdBy=transaction.created_by,
        createdAt=transaction.created_at,
        voidedAt=transaction.voided_at,
        voidReason=transaction.void_reason,
    )


def _serialize_account(account: UserPointsAccount, by_source: Dict[str, int]) -> UserPointsResponse:
    progress = level_progress(account.lifetime_points)
    return UserPointsResponse(
        userId=account.user_id,
        totalPoints=account.total_points,
        lifetimePoints=account.lifetime_points,
        level=account.level,
        levelProgress=LevelProgressResponse(
            level=progress.level,
            currentLevelFloor=progress.current_level_floor,
            nextLevelAt=progress.next_level_at,
            pointsIntoLevel=progress.points_into_level,
            pointsToNextLevel=progress.points_to_next_level,
        ),
        stats=PointsStatsResponse(
            earned=account.earned_points,
            spent=account.spent_points,
            bonus=account.bonus_points,
            achievement=account.achievement_points,
            bySource=by_source,
        ),
        lastReconciledAt=account.last_reconciled_at,
        updatedAt=account.updated_at,
    )
