from __future__ import annotations

import math
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.core.config import settings
from vipledger.core.logging import get_logger
from vipledger.db.operations import flush_async, refresh_async
from vipledger.models.vip import VIPPointRule
from vipledger.schemas.vip import PointRuleUpsert
from vipledger.services.exceptions import ResourceNotFoundError
from vipledger.services.tiers import TierThresholds

logger = get_logger(__name__)

# Every action type that prices spend, in points per major currency unit.
CONSUMPTION_ACTIONS = ("consumption", "pos_consumption", "consumption_pos")
CHECKIN_ACTION = "event_checkin"
GOLD_THRESHOLD_ACTION = "tier_threshold_gold"
BLACK_THRESHOLD_ACTION = "tier_threshold_black"
TIER_BONUS_ACTION = "tier_bonus"

DEFAULT_RULES = [
    {"action_type": "consumption_pos", "points_per_unit": Decimal("1"), "unit": "EUR"},
    {"action_type": CHECKIN_ACTION, "points_per_unit": Decimal("10"), "unit": "checkin"},
]


async def get_rule(db: AsyncSession, action_type: str) -> VIPPointRule | None:
    result = await db.execute(select(VIPPointRule).where(VIPPointRule.action_type == action_type).limit(1))
    return result.scalars().first()


async def list_rules(db: AsyncSession, *, active_only: bool = False) -> list[VIPPointRule]:
    stmt = select(VIPPointRule).order_by(VIPPointRule.action_type)
    if active_only:
        stmt = stmt.where(VIPPointRule.is_active.is_(True))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def upsert_rule(db: AsyncSession, payload: PointRuleUpsert) -> VIPPointRule:
    rule = await get_rule(db, payload.action_type)
    if rule is None:
        rule = VIPPointRule(action_type=payload.action_type)
        db.add(rule)
    rule.points_per_unit = payload.points_per_unit
    rule.unit = payload.unit
    rule.is_active = payload.is_active
    await flush_async(db, rule)
    await refresh_async(db, rule)
    logger.info(
        "Point rule saved",
        extra={"action_type": rule.action_type, "points_per_unit": str(rule.points_per_unit), "active": rule.is_active},
    )
    return rule


async def toggle_rule(db: AsyncSession, action_type: str) -> VIPPointRule:
    rule = await get_rule(db, action_type)
    if rule is None:
        raise ResourceNotFoundError("Point rule not found")
    rule.is_active = not rule.is_active
    await flush_async(db, rule)
    await refresh_async(db, rule)
    return rule


async def delete_rule(db: AsyncSession, action_type: str) -> None:
    rule = await get_rule(db, action_type)
    if rule is None:
        raise ResourceNotFoundError("Point rule not found")
    await db.delete(rule)
    await flush_async(db)


async def ensure_default_rules(db: AsyncSession) -> int:
    created = 0
    for rule_data in DEFAULT_RULES:
        if await get_rule(db, rule_data["action_type"]) is None:
            db.add(VIPPointRule(**rule_data, is_active=True))
            created += 1
    if created:
        await flush_async(db)
    return created


async def resolve_consumption_rate(db: AsyncSession) -> Decimal:
    """Highest active rate across the consumption action types, else the configured default."""
    stmt = select(func.max(VIPPointRule.points_per_unit)).where(
        VIPPointRule.action_type.in_(CONSUMPTION_ACTIONS),
        VIPPointRule.is_active.is_(True),
    )
    rate = (await db.execute(stmt)).scalar_one_or_none()
    if rate is None:
        return Decimal(str(settings.VIP_DEFAULT_POINTS_PER_UNIT))
    return Decimal(str(rate))


async def resolve_checkin_points(db: AsyncSession, fallback: int | None = None) -> int:
    rule = await get_rule(db, CHECKIN_ACTION)
    if rule is not None and rule.is_active:
        return math.floor(Decimal(str(rule.points_per_unit)))
    if fallback is not None:
        return fallback
    return settings.VIP_CHECKIN_DEFAULT_POINTS


async def resolve_tier_bonus(db: AsyncSession) -> int:
    """Flat points granted once per tier reached; zero unless an active rule sets it."""
    rule = await get_rule(db, TIER_BONUS_ACTION)
    if rule is None or not rule.is_active:
        return 0
    return max(0, math.floor(Decimal(str(rule.points_per_unit))))


async def resolve_thresholds(db: AsyncSession) -> TierThresholds:
    defaults = TierThresholds.from_settings()
    result = await db.execute(
        select(VIPPointRule).where(
            VIPPointRule.action_type.in_((GOLD_THRESHOLD_ACTION, BLACK_THRESHOLD_ACTION)),
            VIPPointRule.is_active.is_(True),
        )
    )
    overrides = {rule.action_type: int(rule.points_per_unit) for rule in result.scalars().all()}
    gold = overrides.get(GOLD_THRESHOLD_ACTION, defaults.gold)
    black = overrides.get(BLACK_THRESHOLD_ACTION, defaults.black)
    # A misconfigured pair must not make tiers non-monotonic.
    return TierThresholds(gold=gold, black=max(gold, black))
