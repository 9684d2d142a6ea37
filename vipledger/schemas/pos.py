from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from vipledger.domain.enums import POSOrderStatus, VIPTier


class POSOrderItemCreate(BaseModel):
    product_name: str = Field(..., min_length=1, max_length=200)
    quantity: int = Field(default=1, gt=0)
    unit_price_cents: int = Field(..., ge=0)


class POSOrderCreate(BaseModel):
    items: List[POSOrderItemCreate] = Field(..., min_length=1)
    customer_user_id: Optional[UUID] = None
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    notes: Optional[str] = Field(default=None, max_length=1000)


class POSOrderItemRead(BaseModel):
    id: UUID
    product_name: str
    quantity: int
    unit_price_cents: int
    line_total_cents: int

    model_config = ConfigDict(from_attributes=True)


class POSOrderRead(BaseModel):
    id: UUID
    staff_user_id: Optional[UUID] = None
    customer_user_id: Optional[UUID] = None
    total_cents: int
    currency: str
    status: POSOrderStatus
    stripe_payment_intent_id: Optional[str] = None
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    items: List[POSOrderItemRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class POSOrderStatusUpdate(BaseModel):
    status: POSOrderStatus
    stripe_payment_intent_id: Optional[str] = Field(default=None, max_length=255)


class LoyaltyOutcome(BaseModel):
    """Points side effect of a settlement. Never blocks the order update."""

    points_awarded: int = 0
    points_reversed: int = 0
    new_balance: Optional[int] = None
    new_tier: Optional[VIPTier] = None
    already_awarded: bool = False
    tier_bonus: int = 0
    error: Optional[str] = None


class POSOrderUpdated(BaseModel):
    order: POSOrderRead
    loyalty: Optional[LoyaltyOutcome] = None


class PaymentIntentRead(BaseModel):
    order_id: UUID
    payment_intent_id: str
    client_secret: Optional[str] = None
    amount: int
    currency: str


class NFCAttachPayload(BaseModel):
    order_id: UUID
    card_uid: str = Field(..., min_length=1, max_length=64)
