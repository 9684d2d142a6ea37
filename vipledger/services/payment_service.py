from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.core.logging import get_logger
from vipledger.core.metrics import record_stripe_webhook
from vipledger.domain.enums import POSOrderStatus
from vipledger.models.pos import POSOrder
from vipledger.services import pos_service
from vipledger.services.exceptions import ConflictError

logger = get_logger(__name__)

STRIPE_EVENT_STATUS = {
    "payment_intent.succeeded": POSOrderStatus.paid,
    "payment_intent.payment_failed": POSOrderStatus.failed,
    "payment_intent.canceled": POSOrderStatus.cancelled,
    "charge.refunded": POSOrderStatus.refunded,
}


def _payment_intent_id(event_type: str, obj: dict[str, Any]) -> str | None:
    if event_type.startswith("charge."):
        return obj.get("payment_intent")
    return obj.get("id")


async def _find_order(db: AsyncSession, event_type: str, obj: dict[str, Any]) -> POSOrder | None:
    raw_order_id = (obj.get("metadata") or {}).get("order_id")
    if raw_order_id:
        try:
            order_id = uuid.UUID(str(raw_order_id))
        except ValueError:
            order_id = None
        order = await db.get(POSOrder, order_id) if order_id else None
        if order is not None:
            return order
    intent_id = _payment_intent_id(event_type, obj)
    if intent_id:
        return await pos_service.get_by_payment_intent(db, intent_id)
    return None


async def handle_stripe_event(db: AsyncSession, event: dict[str, Any]) -> dict[str, Any]:
    """Apply a verified Stripe event to its POS order.

    Unknown events, unknown orders and transitions the order cannot take are
    acknowledged and logged, so Stripe stops retrying them.
    """
    event_type = event.get("type", "")
    record_stripe_webhook(event_type)
    target = STRIPE_EVENT_STATUS.get(event_type)
    if target is None:
        logger.info("Stripe event ignored", extra={"event_type": event_type, "event_id": event.get("id")})
        return {"handled": False}

    obj = (event.get("data") or {}).get("object") or {}
    order = await _find_order(db, event_type, obj)
    if order is None:
        logger.warning(
            "Stripe event for unknown order",
            extra={"event_type": event_type, "event_id": event.get("id"), "object_id": obj.get("id")},
        )
        return {"handled": False}

    try:
        order, loyalty = await pos_service.update_status(
            db,
            order.id,
            target,
            stripe_payment_intent_id=_payment_intent_id(event_type, obj),
        )
    except ConflictError as exc:
        logger.warning(
            "Stripe event does not apply to order",
            extra={"event_type": event_type, "order_id": str(order.id), "error": exc.detail},
        )
        return {"handled": False, "order_id": str(order.id)}

    logger.info(
        "Stripe event applied",
        extra={
            "event_type": event_type,
            "order_id": str(order.id),
            "status": order.status.value,
            "points_awarded": (loyalty or {}).get("points_awarded", 0),
        },
    )
    return {"handled": True, "order_id": str(order.id), "status": order.status.value}
