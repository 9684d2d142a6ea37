from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Security, status
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.api.deps import get_current_user
from vipledger.db.operations import commit_async
from vipledger.db.session_async import get_async_db
from vipledger.domain.enums import POSOrderStatus
from vipledger.models.user import User
from vipledger.schemas.pos import (
    NFCAttachPayload,
    PaymentIntentRead,
    POSOrderCreate,
    POSOrderRead,
    POSOrderStatusUpdate,
    POSOrderUpdated,
)
from vipledger.services import pos_service
from vipledger.services.exceptions import ServiceError
from vipledger.services.payment_providers import PaymentProviderError

router = APIRouter(prefix="/pos", tags=["pos"])


@router.get("/orders", response_model=List[POSOrderRead])
async def list_orders(
    status_filter: Optional[POSOrderStatus] = Query(default=None, alias="status"),
    customer_user_id: Optional[UUID] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["pos:read"]),
):
    return await pos_service.list_orders(
        db,
        status=status_filter,
        customer_user_id=customer_user_id,
        limit=limit,
        offset=offset,
    )


@router.post("/orders", response_model=POSOrderRead, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: POSOrderCreate,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["pos:write"]),
):
    try:
        order = await pos_service.create_order(db, payload, staff_user_id=current_user.id)
        await commit_async(db)
    except ServiceError:
        await db.rollback()
        raise
    return order


@router.get("/orders/{order_id}", response_model=POSOrderRead)
async def get_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["pos:read"]),
):
    return await pos_service.get_order(db, order_id)


@router.put("/orders/{order_id}", response_model=POSOrderUpdated)
async def update_order_status(
    order_id: UUID,
    payload: POSOrderStatusUpdate,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["pos:write"]),
):
    try:
        order, loyalty = await pos_service.update_status(
            db,
            order_id,
            payload.status,
            stripe_payment_intent_id=payload.stripe_payment_intent_id,
        )
        await commit_async(db)
    except ServiceError:
        await db.rollback()
        raise
    return {"order": order, "loyalty": loyalty}


@router.delete("/orders/{order_id}", response_model=POSOrderUpdated)
async def cancel_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["pos:write"]),
):
    try:
        order, loyalty = await pos_service.cancel_order(db, order_id)
        await commit_async(db)
    except ServiceError:
        await db.rollback()
        raise
    return {"order": order, "loyalty": loyalty}


@router.post("/orders/{order_id}/payment-intent", response_model=PaymentIntentRead, status_code=status.HTTP_201_CREATED)
async def create_payment_intent(
    order_id: UUID,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["pos:write"]),
):
    try:
        intent = await pos_service.create_payment_intent(db, order_id)
        await commit_async(db)
    except (ServiceError, PaymentProviderError):
        await db.rollback()
        raise
    return intent


@router.post("/nfc-attach", response_model=POSOrderRead)
async def attach_customer(
    payload: NFCAttachPayload,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["pos:write"]),
):
    try:
        order = await pos_service.attach_customer_by_card(db, payload.order_id, payload.card_uid)
        await commit_async(db)
    except ServiceError:
        await db.rollback()
        raise
    return order
