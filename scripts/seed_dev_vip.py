"""Seed a development database with staff, VIP members, cards and point rules."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from vipledger.core.config import settings
from vipledger.db.session_async import AsyncSessionLocal
from vipledger.domain.enums import NFCCardType, UserRole
from vipledger.models.nfc import NFCCard
from vipledger.schemas.user import UserCreate
from vipledger.services import loyalty_service, membership_service, point_rules, user_service


@dataclass(frozen=True, slots=True)
class DevUser:
    email: str
    full_name: str
    password: str
    role: UserRole
    card_uid: str | None = None
    starting_points: int = 0


DEV_USERS: tuple[DevUser, ...] = (
    DevUser("admin.dev@example.com", "Dev Admin", "AdminDev123!", UserRole.admin),
    DevUser("staff.dev@example.com", "Dev Bar Staff", "StaffDev123!", UserRole.staff),
    DevUser("vip.silver@example.com", "Silver Guest", "VipDev123!", UserRole.vip, "04A1B2C3D4E5F6"),
    DevUser("vip.gold@example.com", "Gold Guest", "VipDev123!", UserRole.vip, "04A1B2C3D4E5F7", 620),
    DevUser("artist.dev@example.com", "Resident Artist", "ArtistDev123!", UserRole.artist, "04A1B2C3D4E5F8"),
)

_CARD_TYPES = {UserRole.vip: NFCCardType.vip, UserRole.artist: NFCCardType.artist}


async def seed_dev_vip() -> None:
    logger = logging.getLogger("seed_dev_vip")
    logger.info("Seeding VIP development data into %s", settings.ASYNC_DATABASE_URL)

    created = 0
    skipped = 0

    async with AsyncSessionLocal() as session:
        await point_rules.ensure_default_rules(session)

        for dev_user in DEV_USERS:
            if await user_service.get_by_email(session, dev_user.email):
                skipped += 1
                logger.debug("Skipped user %s (already present)", dev_user.email)
                continue

            user = await user_service.create_user(
                session,
                UserCreate(
                    email=dev_user.email,
                    full_name=dev_user.full_name,
                    password=dev_user.password,
                    role=dev_user.role,
                ),
            )
            created += 1

            if dev_user.role in _CARD_TYPES:
                await membership_service.enroll(session, user.id)
                if dev_user.starting_points:
                    await loyalty_service.adjust_points(
                        session,
                        user.id,
                        dev_user.starting_points,
                        "development seed",
                        ref_id=f"seed:{dev_user.email}",
                    )
                if dev_user.card_uid:
                    membership = await membership_service.get_membership(session, user.id)
                    session.add(
                        NFCCard(
                            card_uid=dev_user.card_uid,
                            user_id=user.id,
                            type=_CARD_TYPES[dev_user.role],
                            details={"tier": membership.tier.value},
                        )
                    )

        await session.commit()

    logger.info("Seed completed: %s created, %s skipped", created, skipped)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(seed_dev_vip())
    except KeyboardInterrupt:
        pass
