"""Non-fatal bridges from business events to the award engine.

Callers have already written their primary record; these helpers never raise
loyalty errors back at them, they log and report the failure instead.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.core.logging import get_logger
from vipledger.core.metrics import record_award
from vipledger.domain.enums import PointsSource
from vipledger.services import loyalty_service, membership_service
from vipledger.services.exceptions import LoyaltyError, ServiceError

logger = get_logger(__name__)


def _failure(exc: ServiceError, user_id, source: PointsSource, ref_id) -> dict[str, Any]:
    context = exc.context() if isinstance(exc, LoyaltyError) else {}
    logger.warning(
        "Loyalty settlement failed",
        extra={
            "user_id": context.get("user_id") or str(user_id),
            "source": context.get("source") or source.value,
            "ref_id": context.get("ref_id") or str(ref_id),
            "error": exc.detail,
            "error_type": type(exc).__name__,
        },
    )
    return {"points_awarded": 0, "points_reversed": 0, "error": exc.detail}


async def settle(
    db: AsyncSession,
    user_id,
    source: PointsSource,
    ref_id,
    **award_kwargs: Any,
) -> dict[str, Any]:
    try:
        result = await loyalty_service.award_points(db, user_id, source, ref_id, **award_kwargs)
    except ServiceError as exc:
        record_award(source.value, "failed")
        return _failure(exc, user_id, source, ref_id)
    return {
        "points_awarded": result.points_awarded,
        "points_reversed": 0,
        "new_balance": result.new_balance,
        "new_tier": result.new_tier,
        "already_awarded": result.already_awarded,
        "tier_bonus": result.tier_bonus,
    }


async def unsettle(db: AsyncSession, user_id, source: PointsSource, ref_id) -> dict[str, Any]:
    try:
        result = await loyalty_service.reverse_points(db, user_id, source, ref_id)
    except ServiceError as exc:
        return _failure(exc, user_id, source, ref_id)
    return {
        "points_awarded": 0,
        "points_reversed": result.points_reversed,
        "new_balance": result.new_balance,
        "new_tier": result.new_tier,
    }


async def ensure_membership(db: AsyncSession, user_id) -> bool:
    """Create the membership in its own SAVEPOINT; a failure leaves the caller's writes intact.

    A concurrent first check-in may win the unique membership row. That shows up
    here as an ``IntegrityError`` and the award that follows finds the winner's row.
    """
    try:
        async with db.begin_nested():
            await membership_service.enroll(db, user_id)
    except (ServiceError, SQLAlchemyError) as exc:
        logger.warning(
            "Automatic VIP enrolment failed",
            extra={"user_id": str(user_id), "error": str(exc), "error_type": type(exc).__name__},
        )
        return False
    return True
