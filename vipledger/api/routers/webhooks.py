from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.core.logging import get_logger, security_alert
from vipledger.db.operations import commit_async
from vipledger.db.session_async import get_async_db
from vipledger.services import payment_service
from vipledger.services.exceptions import ServiceError
from vipledger.services.payment_providers import (
    PaymentProviderConfigurationError,
    WebhookVerificationError,
    stripe_provider,
)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = get_logger(__name__)


@router.post("/stripe", status_code=status.HTTP_200_OK)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_async_db),
):
    payload = await request.body()
    try:
        event = stripe_provider.verify_webhook(payload, stripe_signature)
    except PaymentProviderConfigurationError as exc:
        logger.error("Stripe webhook received without a configured secret")
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Webhook not configured") from exc
    except WebhookVerificationError as exc:
        security_alert("Stripe webhook signature rejected", reason=str(exc))
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid signature") from exc

    try:
        outcome = await payment_service.handle_stripe_event(db, event)
        await commit_async(db)
    except ServiceError:
        await db.rollback()
        raise
    return {"received": True, **outcome}
