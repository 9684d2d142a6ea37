from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, Security, status
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.api.deps import get_current_user
from vipledger.core.security import scopes_for_role
from vipledger.db.operations import commit_async
from vipledger.db.session_async import get_async_db
from vipledger.domain.enums import ConsumptionSource, PointsSource, VIPStatus, VIPTier
from vipledger.models.user import User
from vipledger.schemas.vip import (
    AwardResultRead,
    ConsumptionCreate,
    ConsumptionRead,
    ConsumptionRecorded,
    LeaderboardEntry,
    LedgerEntryRead,
    LedgerSourceSummary,
    MembershipCreate,
    MembershipDetail,
    MembershipRead,
    MembershipStatusUpdate,
    PointRuleRead,
    PointRuleUpsert,
    PointsAdjustPayload,
)
from vipledger.services import loyalty_service, membership_service, point_rules, points_ledger
from vipledger.services.exceptions import ServiceError

router = APIRouter(prefix="/vip", tags=["vip"])


@router.get("/memberships", response_model=List[MembershipRead])
async def list_memberships(
    status_filter: Optional[VIPStatus] = Query(default=None, alias="status"),
    tier: Optional[VIPTier] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["vip:read"]),
):
    return await membership_service.list_memberships(db, status=status_filter, tier=tier, limit=limit, offset=offset)


@router.post("/memberships", response_model=MembershipRead, status_code=status.HTTP_201_CREATED)
async def enroll_member(
    payload: MembershipCreate,
    response: Response,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["admin"]),
):
    try:
        membership, created = await membership_service.enroll(db, payload.user_id)
        await commit_async(db)
    except ServiceError:
        await db.rollback()
        raise
    if not created:
        response.status_code = status.HTTP_200_OK
    return membership


@router.get("/leaderboard", response_model=List[LeaderboardEntry])
async def leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["vip:read"]),
):
    return await membership_service.leaderboard(db, limit=limit)


@router.get("/memberships/me", response_model=MembershipDetail)
async def my_membership(
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["users:me"]),
):
    membership = await membership_service.require_membership(db, current_user.id)
    return await membership_service.describe(db, membership)


@router.get("/memberships/{user_id}", response_model=MembershipDetail)
async def get_membership(
    user_id: UUID,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["users:me"]),
):
    if user_id != current_user.id and "vip:read" not in scopes_for_role(current_user.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions")
    membership = await membership_service.require_membership(db, user_id)
    return await membership_service.describe(db, membership)


@router.patch("/memberships/{user_id}", response_model=MembershipRead)
async def update_membership_status(
    user_id: UUID,
    payload: MembershipStatusUpdate,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["admin"]),
):
    try:
        membership = await membership_service.set_status(db, user_id, payload.status)
        await commit_async(db)
    except ServiceError:
        await db.rollback()
        raise
    return membership


@router.get("/point-rules", response_model=List[PointRuleRead])
async def list_point_rules(
    active_only: bool = Query(default=False),
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["vip:read"]),
):
    return await point_rules.list_rules(db, active_only=active_only)


@router.put("/point-rules", response_model=PointRuleRead)
async def upsert_point_rule(
    payload: PointRuleUpsert,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["admin"]),
):
    rule = await point_rules.upsert_rule(db, payload)
    await commit_async(db)
    return rule


@router.post("/point-rules/{action_type}/toggle", response_model=PointRuleRead)
async def toggle_point_rule(
    action_type: str,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["admin"]),
):
    rule = await point_rules.toggle_rule(db, action_type)
    await commit_async(db)
    return rule


@router.delete("/point-rules/{action_type}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_point_rule(
    action_type: str,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["admin"]),
):
    await point_rules.delete_rule(db, action_type)
    await commit_async(db)


@router.get("/points-log", response_model=List[LedgerEntryRead])
async def list_points_log(
    user_id: Optional[UUID] = Query(default=None),
    source: Optional[PointsSource] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["vip:read"]),
):
    return await points_ledger.list_entries(db, user_id=user_id, source=source, limit=limit, offset=offset)


@router.get("/points-log/summary", response_model=List[LedgerSourceSummary])
async def points_log_summary(
    user_id: Optional[UUID] = Query(default=None),
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["vip:read"]),
):
    return await points_ledger.summarize_by_source(db, user_id=user_id)


@router.post("/points/adjust", response_model=AwardResultRead)
async def adjust_points(
    payload: PointsAdjustPayload,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["admin"]),
):
    try:
        result = await loyalty_service.adjust_points(
            db,
            payload.user_id,
            payload.delta_points,
            payload.reason,
            adjusted_by=current_user.id,
            ref_id=payload.ref_id,
        )
        await commit_async(db)
    except ServiceError:
        await db.rollback()
        raise
    return result


@router.get("/consumption", response_model=List[ConsumptionRead])
async def list_consumption(
    user_id: Optional[UUID] = Query(default=None),
    event_id: Optional[str] = Query(default=None),
    source: Optional[ConsumptionSource] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["pos:write"]),
):
    return await loyalty_service.list_consumptions(
        db, user_id=user_id, event_id=event_id, source=source, limit=limit, offset=offset
    )


@router.post("/consumption", response_model=ConsumptionRecorded, status_code=status.HTTP_201_CREATED)
async def record_consumption(
    payload: ConsumptionCreate,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["pos:write"]),
):
    try:
        consumption, result = await loyalty_service.record_consumption(
            db,
            payload.user_id,
            payload.amount_cents,
            currency=payload.currency,
            event_id=payload.event_id,
            description=payload.description,
        )
        await commit_async(db)
    except ServiceError:
        await db.rollback()
        raise
    return {"consumption": consumption, "loyalty": result}
