from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.core.logging import get_logger
from vipledger.db.operations import flush_async, refresh_async
from vipledger.domain.enums import VIPStatus, VIPTier
from vipledger.models.nfc import NFCCard
from vipledger.models.user import User
from vipledger.models.vip import VIPMembership
from vipledger.services import point_rules, tiers
from vipledger.services.exceptions import NoMembershipError, ResourceNotFoundError

logger = get_logger(__name__)


async def get_membership(db: AsyncSession, user_id) -> VIPMembership | None:
    result = await db.execute(select(VIPMembership).where(VIPMembership.user_id == user_id).limit(1))
    return result.scalars().first()


async def lock_membership(db: AsyncSession, user_id) -> VIPMembership | None:
    """Fresh read of the membership row, locked until the caller's transaction ends.

    ``populate_existing`` overwrites whatever this session already holds for the
    row, so balance arithmetic always starts from the committed values.
    """
    stmt = (
        select(VIPMembership)
        .where(VIPMembership.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def require_membership(db: AsyncSession, user_id) -> VIPMembership:
    membership = await get_membership(db, user_id)
    if membership is None:
        raise NoMembershipError("VIP membership not found", user_id=user_id)
    return membership


async def enroll(db: AsyncSession, user_id) -> tuple[VIPMembership, bool]:
    """Create a silver membership for the user, or return the existing one."""
    existing = await get_membership(db, user_id)
    if existing is not None:
        return existing, False
    if await db.get(User, user_id) is None:
        raise ResourceNotFoundError("User not found")
    membership = VIPMembership(
        user_id=user_id,
        tier=VIPTier.silver,
        points_balance=0,
        lifetime_points=0,
        status=VIPStatus.active,
    )
    db.add(membership)
    await flush_async(db, membership)
    await refresh_async(db, membership)
    logger.info("VIP membership created", extra={"user_id": str(user_id)})
    return membership, True


async def list_memberships(
    db: AsyncSession,
    *,
    status: VIPStatus | None = None,
    tier: VIPTier | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[VIPMembership]:
    stmt = select(VIPMembership).order_by(VIPMembership.lifetime_points.desc(), VIPMembership.created_at)
    if status is not None:
        stmt = stmt.where(VIPMembership.status == status)
    if tier is not None:
        stmt = stmt.where(VIPMembership.tier == tier)
    result = await db.execute(stmt.offset(offset).limit(limit))
    return list(result.scalars().all())


async def leaderboard(db: AsyncSession, limit: int = 10) -> list[dict[str, Any]]:
    members = await list_memberships(db, status=VIPStatus.active, limit=limit)
    return [
        {
            "rank": position,
            "user_id": member.user_id,
            "email": member.user.email,
            "full_name": member.user.full_name,
            "tier": member.tier,
            "lifetime_points": member.lifetime_points,
            "points_balance": member.points_balance,
        }
        for position, member in enumerate(members, start=1)
    ]


async def set_status(db: AsyncSession, user_id, status: VIPStatus) -> VIPMembership:
    membership = await require_membership(db, user_id)
    previous = membership.status
    membership.status = status
    await flush_async(db, membership)
    await refresh_async(db, membership)
    if previous != status:
        logger.info(
            "VIP membership status changed",
            extra={"user_id": str(user_id), "previous": previous.value, "status": status.value},
        )
    return membership


async def describe(db: AsyncSession, membership: VIPMembership) -> dict[str, Any]:
    thresholds = await point_rules.resolve_thresholds(db)
    upcoming, missing = tiers.progress(membership.lifetime_points, thresholds)
    return {
        "id": membership.id,
        "user_id": membership.user_id,
        "tier": membership.tier,
        "points_balance": membership.points_balance,
        "lifetime_points": membership.lifetime_points,
        "status": membership.status,
        "created_at": membership.created_at,
        "updated_at": membership.updated_at,
        "next_tier": upcoming,
        "points_to_next_tier": missing,
    }


async def sync_card_tier(db: AsyncSession, user_id, tier: VIPTier) -> int:
    """Stamp the new tier on the holder's NFC cards. Caller flushes."""
    result = await db.execute(select(NFCCard).where(NFCCard.user_id == user_id))
    cards = list(result.scalars().all())
    for card in cards:
        # Reassign so the JSON column is marked dirty.
        card.details = {**(card.details or {}), "tier": tier.value}
    return len(cards)
