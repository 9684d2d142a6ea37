from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.core.logging import get_logger
from vipledger.db.operations import flush_async, refresh_async
from vipledger.domain.enums import ConsumptionSource, POSOrderStatus, PointsSource, VIPStatus
from vipledger.models.pos import POSOrder, POSOrderItem
from vipledger.models.vip import VIPConsumption
from vipledger.schemas.pos import POSOrderCreate
from vipledger.services import membership_service, nfc_service, settlement, user_service
from vipledger.services.exceptions import ConflictError, ResourceNotFoundError
from vipledger.services.payment_providers import stripe_provider

logger = get_logger(__name__)

# paid -> paid is allowed so a late confirmation can re-run settlement.
ALLOWED_TRANSITIONS: dict[POSOrderStatus, set[POSOrderStatus]] = {
    POSOrderStatus.pending: {POSOrderStatus.paid, POSOrderStatus.failed, POSOrderStatus.cancelled},
    POSOrderStatus.failed: {POSOrderStatus.pending, POSOrderStatus.paid, POSOrderStatus.cancelled},
    POSOrderStatus.paid: {POSOrderStatus.paid, POSOrderStatus.refunded, POSOrderStatus.cancelled},
    POSOrderStatus.cancelled: {POSOrderStatus.cancelled},
    POSOrderStatus.refunded: {POSOrderStatus.refunded},
}

REVERSING_STATUSES = {POSOrderStatus.refunded, POSOrderStatus.cancelled}


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def create_order(db: AsyncSession, payload: POSOrderCreate, staff_user_id=None) -> POSOrder:
    if payload.customer_user_id is not None:
        await user_service.get_user(db, payload.customer_user_id)

    order = POSOrder(
        staff_user_id=staff_user_id,
        customer_user_id=payload.customer_user_id,
        currency=payload.currency.upper(),
        notes=payload.notes,
        status=POSOrderStatus.pending,
    )
    total = 0
    for item in payload.items:
        line_total = item.quantity * item.unit_price_cents
        order.items.append(
            POSOrderItem(
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                line_total_cents=line_total,
            )
        )
        total += line_total
    order.total_cents = total

    db.add(order)
    await flush_async(db, order)
    await refresh_async(db, order)
    logger.info(
        "POS order created",
        extra={"order_id": str(order.id), "total_cents": total, "customer_user_id": str(order.customer_user_id)},
    )
    return order


async def get_order(db: AsyncSession, order_id) -> POSOrder:
    order = await db.get(POSOrder, order_id)
    if not order:
        raise ResourceNotFoundError("Order not found")
    return order


async def get_by_payment_intent(db: AsyncSession, payment_intent_id: str) -> POSOrder | None:
    result = await db.execute(
        select(POSOrder).where(POSOrder.stripe_payment_intent_id == payment_intent_id).limit(1)
    )
    return result.scalars().first()


async def list_orders(
    db: AsyncSession,
    *,
    status: POSOrderStatus | None = None,
    customer_user_id=None,
    limit: int = 50,
    offset: int = 0,
) -> list[POSOrder]:
    stmt = select(POSOrder).order_by(POSOrder.created_at.desc())
    if status is not None:
        stmt = stmt.where(POSOrder.status == status)
    if customer_user_id is not None:
        stmt = stmt.where(POSOrder.customer_user_id == customer_user_id)
    result = await db.execute(stmt.offset(offset).limit(limit))
    return list(result.scalars().all())


async def settle_order_loyalty(db: AsyncSession, order: POSOrder) -> dict[str, Any] | None:
    """Credit the linked customer for a paid order. Safe to call more than once."""
    if order.customer_user_id is None:
        return None
    # Stored with the ledger entry, so it exists only when the order earned points.
    consumption = VIPConsumption(
        user_id=order.customer_user_id,
        amount_cents=order.total_cents,
        currency=order.currency,
        description=f"POS order #{str(order.id)[:8]}",
        source=ConsumptionSource.pos,
        pos_order_id=order.id,
    )
    return await settlement.settle(
        db,
        order.customer_user_id,
        PointsSource.consumption_pos,
        order.id,
        amount_minor=order.total_cents,
        metadata={"order_id": str(order.id), "currency": order.currency},
        consumption=consumption,
    )


async def reverse_order_loyalty(db: AsyncSession, order: POSOrder) -> dict[str, Any] | None:
    if order.customer_user_id is None:
        return None
    return await settlement.unsettle(db, order.customer_user_id, PointsSource.consumption_pos, order.id)


async def update_status(
    db: AsyncSession,
    order_id,
    status: POSOrderStatus,
    *,
    stripe_payment_intent_id: str | None = None,
) -> tuple[POSOrder, dict[str, Any] | None]:
    """Move an order through its lifecycle and settle points on the way.

    The status change is written first; the loyalty outcome is reported next to
    it and never blocks it.
    """
    order = await get_order(db, order_id)
    previous = order.status
    if status not in ALLOWED_TRANSITIONS[previous]:
        raise ConflictError(f"Cannot move order from {previous.value} to {status.value}")

    order.status = status
    if stripe_payment_intent_id:
        order.stripe_payment_intent_id = stripe_payment_intent_id
    if status == POSOrderStatus.paid and order.paid_at is None:
        order.paid_at = _now()
    await flush_async(db, order)

    outcome: dict[str, Any] | None = None
    if status == POSOrderStatus.paid:
        outcome = await settle_order_loyalty(db, order)
    elif status in REVERSING_STATUSES and previous == POSOrderStatus.paid:
        outcome = await reverse_order_loyalty(db, order)

    await refresh_async(db, order)
    if previous != status:
        logger.info(
            "POS order status changed",
            extra={"order_id": str(order.id), "previous": previous.value, "status": status.value},
        )
    return order, outcome


async def cancel_order(db: AsyncSession, order_id) -> tuple[POSOrder, dict[str, Any] | None]:
    return await update_status(db, order_id, POSOrderStatus.cancelled)


async def attach_customer_by_card(db: AsyncSession, order_id, card_uid: str) -> POSOrder:
    """Link the card holder to an unsettled order so payment earns them points."""
    order = await get_order(db, order_id)
    if order.status not in (POSOrderStatus.pending, POSOrderStatus.failed):
        raise ConflictError(f"Order is already {order.status.value}")

    card = await nfc_service.get_active_card(db, card_uid)
    membership = await membership_service.require_membership(db, card.user_id)
    if membership.status != VIPStatus.active:
        raise ConflictError(f"VIP membership is {membership.status.value}")

    order.customer_user_id = card.user_id
    await flush_async(db, order)
    await refresh_async(db, order)
    logger.info(
        "Customer attached to POS order",
        extra={"order_id": str(order.id), "user_id": str(card.user_id), "card_id": str(card.id)},
    )
    return order


async def create_payment_intent(db: AsyncSession, order_id) -> dict[str, Any]:
    order = await get_order(db, order_id)
    if order.status not in (POSOrderStatus.pending, POSOrderStatus.failed):
        raise ConflictError("Order is not awaiting payment")
    if order.total_cents <= 0:
        raise ConflictError("Order total must be positive")

    intent = stripe_provider.create_payment_intent(order)
    order.stripe_payment_intent_id = intent["id"]
    await flush_async(db, order)
    return {
        "order_id": order.id,
        "payment_intent_id": intent["id"],
        "client_secret": intent.get("client_secret"),
        "amount": intent["amount"],
        "currency": intent["currency"],
    }
