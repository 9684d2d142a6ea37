from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from vipledger.domain.enums import ConsumptionSource, PointsSource, VIPStatus, VIPTier


class MembershipRead(BaseModel):
    id: UUID
    user_id: UUID
    tier: VIPTier
    points_balance: int
    lifetime_points: int
    status: VIPStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MembershipDetail(MembershipRead):
    next_tier: Optional[VIPTier] = None
    points_to_next_tier: int = 0


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: UUID
    email: str
    full_name: Optional[str] = None
    tier: VIPTier
    lifetime_points: int
    points_balance: int


class MembershipCreate(BaseModel):
    user_id: UUID


class MembershipStatusUpdate(BaseModel):
    status: VIPStatus


class PointRuleRead(BaseModel):
    id: UUID
    action_type: str
    points_per_unit: Decimal
    unit: str
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PointRuleUpsert(BaseModel):
    action_type: str = Field(..., min_length=1, max_length=64, pattern=r"^[a-z_]+$")
    points_per_unit: Decimal = Field(..., ge=0)
    unit: str = Field(default="EUR", max_length=32)
    is_active: bool = True


class LedgerEntryRead(BaseModel):
    id: UUID
    user_id: UUID
    source: PointsSource
    ref_id: Optional[str] = None
    delta_points: int
    balance_after: int
    metadata: dict | None = Field(default=None, validation_alias="details")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerSourceSummary(BaseModel):
    source: PointsSource
    entries: int
    total_points: int


class PointsAdjustPayload(BaseModel):
    user_id: UUID
    delta_points: int = Field(..., ge=-100000, le=100000)
    reason: str = Field(..., min_length=1, max_length=500)
    ref_id: Optional[str] = Field(default=None, max_length=57)


class AwardResultRead(BaseModel):
    success: bool = True
    points_awarded: int
    new_balance: int
    new_tier: VIPTier
    already_awarded: bool = False
    entry_id: Optional[UUID] = None
    tier_bonus: int = 0

    model_config = ConfigDict(from_attributes=True)


class ConsumptionCreate(BaseModel):
    user_id: UUID
    amount_cents: int = Field(..., gt=0)
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    event_id: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)


class ConsumptionRead(BaseModel):
    id: UUID
    user_id: UUID
    event_id: Optional[str] = None
    amount_cents: int
    currency: str
    description: Optional[str] = None
    source: ConsumptionSource
    pos_order_id: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConsumptionRecorded(BaseModel):
    consumption: ConsumptionRead
    loyalty: AwardResultRead
