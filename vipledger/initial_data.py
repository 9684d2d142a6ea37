# vipledger/initial_data.py
import logging
from contextlib import asynccontextmanager

from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.core.config import settings
from vipledger.db.session_async import AsyncSessionLocal
from vipledger.domain.enums import UserRole
from vipledger.models.user import User
from vipledger.schemas.user import UserCreate
from vipledger.services import point_rules, user_service

logger = logging.getLogger(__name__)

_BOOTSTRAP_LOCK_KEY = 724519803


@asynccontextmanager
async def _advisory_lock(session: AsyncSession):
    """Serialize bootstrap across workers on PostgreSQL; no-op elsewhere."""
    dialect = session.bind.dialect.name if session.bind else "unknown"
    got_lock = False
    try:
        if dialect == "postgresql":
            res = await session.execute(text("SELECT pg_try_advisory_lock(:k)"), {"k": _BOOTSTRAP_LOCK_KEY})
            got_lock = bool(res.scalar())
            if not got_lock:
                logger.info("Another worker is bootstrapping; skipping.")
                yield False
                return
        yield True
    finally:
        if got_lock:
            await session.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": _BOOTSTRAP_LOCK_KEY})


async def _ensure_admin(session: AsyncSession) -> None:
    if not settings.INITIAL_ADMIN_EMAIL or not settings.INITIAL_ADMIN_PASSWORD:
        logger.info("Skipping admin init: INITIAL_ADMIN_EMAIL or INITIAL_ADMIN_PASSWORD missing.")
        return

    stmt = select(func.count()).select_from(User).where(User.role == UserRole.admin)
    if ((await session.execute(stmt)).scalar() or 0) > 0:
        logger.info("An admin already exists; not creating another.")
        return

    existing = await user_service.get_by_email(session, str(settings.INITIAL_ADMIN_EMAIL))
    if existing:
        existing.role = UserRole.admin
        logger.warning(
            "Initial user existed without admin role; promoted.",
            extra={"user_id": str(existing.id)},
        )
        return

    user = await user_service.create_user(
        session,
        UserCreate(
            email=str(settings.INITIAL_ADMIN_EMAIL),
            password=settings.INITIAL_ADMIN_PASSWORD,
            full_name="Initial Admin",
            role=UserRole.admin,
        ),
    )
    logger.info("Initial admin created.", extra={"user_id": str(user.id)})


async def bootstrap() -> None:
    """Create the initial admin and default point rules. Idempotent."""
    async with AsyncSessionLocal() as session:
        async with _advisory_lock(session) as proceed:
            if proceed is False:
                return
            await _ensure_admin(session)
            if settings.SEED_DEFAULT_POINT_RULES:
                created = await point_rules.ensure_default_rules(session)
                if created:
                    logger.info("Default point rules seeded.", extra={"created": created})
            await session.commit()
