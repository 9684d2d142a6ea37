from __future__ import annotations

import json
from typing import Any

import stripe

from vipledger.core.config import settings
from vipledger.models.pos import POSOrder
from vipledger.services.payment_providers import (
    PaymentProviderConfigurationError,
    PaymentProviderError,
    WebhookVerificationError,
)


def _get_secret_key() -> str:
    key = settings.STRIPE_SECRET_KEY
    if not key:
        raise PaymentProviderConfigurationError("Stripe secret key is not configured")
    return key


def _get_webhook_secret() -> str:
    secret = settings.STRIPE_WEBHOOK_SECRET
    if not secret:
        raise PaymentProviderConfigurationError("Stripe webhook secret is not configured")
    return secret


def create_payment_intent(order: POSOrder) -> dict[str, Any]:
    """Open a PaymentIntent for the order total; the order id rides in metadata."""
    try:
        intent = stripe.PaymentIntent.create(
            amount=int(order.total_cents),
            currency=order.currency.lower(),
            metadata={"order_id": str(order.id), "project": settings.PROJECT_NAME},
            automatic_payment_methods={"enabled": True},
            api_key=_get_secret_key(),
        )
    except stripe.StripeError as exc:
        raise PaymentProviderError(f"Stripe error: {exc.user_message or exc}") from exc

    return {
        "id": intent["id"],
        "client_secret": intent.get("client_secret"),
        "amount": intent.get("amount", order.total_cents),
        "currency": intent.get("currency", order.currency.lower()),
    }


def verify_webhook(payload: bytes, signature: str | None) -> dict[str, Any]:
    """Check the ``Stripe-Signature`` header and return the decoded event."""
    secret = _get_webhook_secret()
    if not signature:
        raise WebhookVerificationError("Missing Stripe-Signature header")
    body = payload.decode("utf-8")
    try:
        stripe.WebhookSignature.verify_header(
            body, signature, secret, tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
        )
    except stripe.SignatureVerificationError as exc:
        raise WebhookVerificationError(str(exc)) from exc
    try:
        event = json.loads(body)
    except ValueError as exc:
        raise WebhookVerificationError("Webhook payload is not valid JSON") from exc
    if not isinstance(event, dict) or "type" not in event:
        raise WebhookVerificationError("Webhook payload is not a Stripe event")
    return event
