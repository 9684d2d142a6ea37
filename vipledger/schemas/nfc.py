from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from vipledger.domain.enums import CheckInSource, NFCCardType
from vipledger.schemas.pos import LoyaltyOutcome


class NFCCardCreate(BaseModel):
    card_uid: str = Field(..., min_length=1, max_length=64)
    user_id: UUID
    type: NFCCardType
    is_active: bool = True
    metadata: dict | None = None


class NFCCardRead(BaseModel):
    id: UUID
    card_uid: str
    user_id: UUID
    type: NFCCardType
    is_active: bool
    metadata: dict | None = Field(default=None, validation_alias="details")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CheckInCreate(BaseModel):
    # Client-generated ids make retries safe.
    id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    card_uid: Optional[str] = Field(default=None, max_length=64)
    event_id: Optional[str] = Field(default=None, max_length=100)
    source: CheckInSource = CheckInSource.event_checkin
    metadata: dict | None = None

    @model_validator(mode="after")
    def require_holder(self) -> "CheckInCreate":
        if self.user_id is None and not self.card_uid:
            raise ValueError("Either user_id or card_uid is required")
        return self


class CheckInRead(BaseModel):
    id: UUID
    user_id: UUID
    nfc_card_id: Optional[UUID] = None
    event_id: Optional[str] = None
    source: CheckInSource
    timestamp: datetime
    metadata: dict | None = Field(default=None, validation_alias="details")
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CheckInRecorded(BaseModel):
    checkin: CheckInRead
    created: bool
    loyalty: Optional[LoyaltyOutcome] = None
