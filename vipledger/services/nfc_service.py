from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.core.config import settings
from vipledger.core.logging import get_logger
from vipledger.db.operations import flush_async, refresh_async
from vipledger.domain.enums import PointsSource
from vipledger.models.nfc import CheckIn, NFCCard
from vipledger.models.user import User
from vipledger.schemas.nfc import CheckInCreate, NFCCardCreate
from vipledger.services import membership_service, settlement, user_service
from vipledger.services.exceptions import (
    ConflictError,
    DomainValidationError,
    PermissionDeniedError,
    ResourceNotFoundError,
)

logger = get_logger(__name__)


async def get_card_by_uid(db: AsyncSession, card_uid: str) -> NFCCard:
    result = await db.execute(select(NFCCard).where(NFCCard.card_uid == card_uid).limit(1))
    card = result.scalars().first()
    if card is None:
        raise ResourceNotFoundError("NFC card not found")
    return card


async def get_active_card(db: AsyncSession, card_uid: str) -> NFCCard:
    card = await get_card_by_uid(db, card_uid)
    if not card.is_active:
        raise PermissionDeniedError("NFC card is inactive")
    return card


async def list_cards(db: AsyncSession, *, user_id=None, limit: int = 50, offset: int = 0) -> list[NFCCard]:
    stmt = select(NFCCard).order_by(NFCCard.created_at.desc())
    if user_id is not None:
        stmt = stmt.where(NFCCard.user_id == user_id)
    result = await db.execute(stmt.offset(offset).limit(limit))
    return list(result.scalars().all())


async def create_card(db: AsyncSession, payload: NFCCardCreate) -> NFCCard:
    await user_service.get_user(db, payload.user_id)
    existing = await db.execute(select(NFCCard.id).where(NFCCard.card_uid == payload.card_uid).limit(1))
    if existing.first() is not None:
        raise ConflictError("NFC card already registered")

    details = dict(payload.metadata or {})
    membership = await membership_service.get_membership(db, payload.user_id)
    if membership is not None:
        details["tier"] = membership.tier.value

    card = NFCCard(
        card_uid=payload.card_uid,
        user_id=payload.user_id,
        type=payload.type,
        is_active=payload.is_active,
        details=details,
    )
    db.add(card)
    await flush_async(db, card)
    await refresh_async(db, card)
    return card


async def list_checkins(
    db: AsyncSession,
    *,
    user_id=None,
    event_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[CheckIn]:
    stmt = select(CheckIn).order_by(CheckIn.timestamp.desc())
    if user_id is not None:
        stmt = stmt.where(CheckIn.user_id == user_id)
    if event_id is not None:
        stmt = stmt.where(CheckIn.event_id == event_id)
    result = await db.execute(stmt.offset(offset).limit(limit))
    return list(result.scalars().all())


async def settle_checkin_loyalty(db: AsyncSession, user: User, checkin: CheckIn) -> dict[str, Any] | None:
    """Award check-in points to eligible roles. Returns None when the user does not earn."""
    if user.role.value not in settings.VIP_CHECKIN_ELIGIBLE_ROLES:
        return None
    if settings.VIP_AUTO_ENROLL_ON_CHECKIN:
        await settlement.ensure_membership(db, user.id)
    return await settlement.settle(
        db,
        user.id,
        PointsSource.event_checkin,
        checkin.id,
        metadata={"event_id": checkin.event_id, "source": checkin.source.value},
    )


async def create_checkin(
    db: AsyncSession,
    payload: CheckInCreate,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> tuple[CheckIn, bool, dict[str, Any] | None]:
    """Record a check-in and settle its points.

    Replaying a known check-in id returns the stored row with ``created=False``;
    the award underneath is idempotent on the same id.
    """
    if payload.id is not None:
        existing = await db.get(CheckIn, payload.id)
        if existing is not None:
            user = await user_service.get_user(db, existing.user_id)
            outcome = await settle_checkin_loyalty(db, user, existing)
            return existing, False, outcome

    card: NFCCard | None = None
    user_id = payload.user_id
    if payload.card_uid:
        card = await get_active_card(db, payload.card_uid)
        if user_id is not None and user_id != card.user_id:
            raise DomainValidationError("Card does not belong to the given user")
        user_id = card.user_id

    user = await user_service.get_user(db, user_id)
    if not user.is_active:
        raise PermissionDeniedError("User is inactive")

    checkin = CheckIn(
        id=payload.id or uuid.uuid4(),
        user_id=user.id,
        nfc_card_id=card.id if card else None,
        event_id=payload.event_id,
        source=payload.source,
        details=payload.metadata or {},
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(checkin)
    await flush_async(db, checkin)
    await refresh_async(db, checkin)
    logger.info(
        "Check-in recorded",
        extra={"checkin_id": str(checkin.id), "user_id": str(user.id), "event_id": checkin.event_id},
    )

    outcome = await settle_checkin_loyalty(db, user, checkin)
    return checkin, True, outcome
