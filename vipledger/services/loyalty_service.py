"""Award engine for the VIP points ledger.

Every balance change is paired with exactly one ledger row and written inside a
SAVEPOINT, so a failed award never undoes the caller's own write (a POS status
change, a check-in). The membership row is read with ``FOR UPDATE`` before any
balance arithmetic, which serialises writers for the same member. Idempotency
rests on the ``(user_id, source, ref_id)`` lookup backed by the unique
constraint on the ledger table.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.core.logging import get_logger
from vipledger.core.metrics import record_award, record_reversal
from vipledger.db.operations import flush_async, refresh_async
from vipledger.domain.enums import MONETARY_SOURCES, ConsumptionSource, PointsSource, VIPStatus, VIPTier
from vipledger.models.vip import PointsLedgerEntry, VIPConsumption, VIPMembership
from vipledger.services import membership_service, point_rules, points_ledger
from vipledger.services.event_bus import emit_loyalty_event
from vipledger.services.exceptions import (
    DomainValidationError,
    LedgerConflictError,
    MembershipInactiveError,
    NoMembershipError,
    PersistenceFailureError,
)
from vipledger.services.tiers import TierThresholds, calculate_tier

logger = get_logger(__name__)

# Admin adjustment refs live apart from the raw order and check-in ids that
# reversal entries reuse under the same source.
ADJUSTMENT_REF_PREFIX = "adjust:"


@dataclass
class AwardResult:
    success: bool
    points_awarded: int
    new_balance: int
    new_tier: VIPTier
    already_awarded: bool = False
    entry_id: uuid.UUID | None = None
    tier_bonus: int = 0


@dataclass
class ReversalResult:
    success: bool
    points_reversed: int
    new_balance: int | None = None
    new_tier: VIPTier | None = None
    already_reversed: bool = False
    entry_id: uuid.UUID | None = None


def _ref(ref_id) -> str | None:
    return str(ref_id) if ref_id is not None else None


def adjustment_ref(ref_id) -> str | None:
    if ref_id is None:
        return None
    return f"{ADJUSTMENT_REF_PREFIX}{ref_id}"


def _key(user_id, source: PointsSource, ref_id: str | None) -> dict[str, Any]:
    return {"user_id": str(user_id), "source": source.value, "ref_id": ref_id}


def points_for_amount(amount_minor: int, rate: Decimal) -> int:
    """Floor of the major-unit amount times the rate; 900 cents at 1/unit gives 9."""
    return math.floor(Decimal(amount_minor) / Decimal(100) * rate)


async def _compute_points(
    db: AsyncSession,
    source: PointsSource,
    amount_minor: int | None,
    points: int | None,
) -> int:
    if source in MONETARY_SOURCES:
        if amount_minor is None:
            raise DomainValidationError("amount_minor is required for consumption awards")
        rate = await point_rules.resolve_consumption_rate(db)
        return points_for_amount(amount_minor, rate)
    if source == PointsSource.event_checkin:
        return await point_rules.resolve_checkin_points(db, fallback=points)
    return int(points or 0)


async def _lock_membership(db: AsyncSession, user_id, source: PointsSource, ref_id: str | None) -> VIPMembership:
    membership = await membership_service.lock_membership(db, user_id)
    if membership is None:
        raise NoMembershipError("VIP membership not found", user_id=user_id, source=source, ref_id=ref_id)
    return membership


def _ensure_active(membership: VIPMembership, source: PointsSource, ref_id: str | None) -> None:
    if membership.status != VIPStatus.active:
        raise MembershipInactiveError(
            f"VIP membership is {membership.status.value}",
            user_id=membership.user_id,
            source=source,
            ref_id=ref_id,
        )


async def _write_movement(
    db: AsyncSession,
    membership: VIPMembership,
    *,
    source: PointsSource,
    ref_id: str | None,
    delta_points: int,
    new_balance: int,
    new_lifetime: int,
    thresholds: TierThresholds,
    details: dict[str, Any] | None,
    consumption: VIPConsumption | None = None,
) -> tuple[PointsLedgerEntry, VIPTier]:
    """Apply a balance change and its ledger row atomically.

    Returns the new entry and the tier before the change. ``IntegrityError`` is
    re-raised for the caller to resolve as a duplicate; any other database error
    becomes ``PersistenceFailureError``.
    """
    user_id = membership.user_id
    previous_tier = membership.tier
    try:
        async with db.begin_nested():
            membership.points_balance = new_balance
            membership.lifetime_points = new_lifetime
            membership.tier = calculate_tier(new_lifetime, thresholds)
            if membership.tier != previous_tier:
                await membership_service.sync_card_tier(db, user_id, membership.tier)
            if consumption is not None:
                db.add(consumption)
            entry = await points_ledger.append_entry(
                db,
                user_id=user_id,
                source=source,
                ref_id=ref_id,
                delta_points=delta_points,
                balance_after=new_balance,
                details=details,
            )
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        logger.exception("Ledger write failed", extra=_key(user_id, source, ref_id))
        raise PersistenceFailureError(
            "Could not persist points movement", user_id=user_id, source=source, ref_id=ref_id
        ) from exc
    return entry, previous_tier


async def _resolve_duplicate(
    db: AsyncSession, membership: VIPMembership, source: PointsSource, ref_id: str | None
) -> PointsLedgerEntry:
    """A concurrent writer won the unique key; reload state and return its entry."""
    await refresh_async(db, membership)
    winner = await points_ledger.find_entry(db, membership.user_id, source, ref_id)
    if winner is None:
        raise PersistenceFailureError(
            "Ledger constraint violated without a matching entry",
            user_id=membership.user_id,
            source=source,
            ref_id=ref_id,
        )
    return winner


def _announce_tier_change(membership: VIPMembership, previous_tier: VIPTier) -> None:
    if membership.tier == previous_tier:
        return
    logger.info(
        "VIP tier changed",
        extra={
            "user_id": str(membership.user_id),
            "previous_tier": previous_tier.value,
            "new_tier": membership.tier.value,
            "lifetime_points": membership.lifetime_points,
        },
    )
    emit_loyalty_event(
        "vip_tier_changed",
        {
            "user_id": str(membership.user_id),
            "previous_tier": previous_tier.value,
            "new_tier": membership.tier.value,
            "lifetime_points": membership.lifetime_points,
        },
    )


async def _grant_tier_bonus(
    db: AsyncSession, membership: VIPMembership, previous_tier: VIPTier, thresholds: TierThresholds
) -> int:
    """Credit the ``tier_bonus`` rule once per tier reached.

    The bonus is keyed on the tier name and adds to the balance only, so it can
    never push the member into a further tier. Failures are logged and leave the
    award that triggered them in place.
    """
    if membership.tier.rank <= previous_tier.rank:
        return 0
    bonus = await point_rules.resolve_tier_bonus(db)
    if bonus <= 0:
        return 0

    source = PointsSource.tier_bonus
    ref_id = membership.tier.value
    if await points_ledger.find_entry(db, membership.user_id, source, ref_id) is not None:
        return 0
    try:
        await _write_movement(
            db,
            membership,
            source=source,
            ref_id=ref_id,
            delta_points=bonus,
            new_balance=membership.points_balance + bonus,
            new_lifetime=membership.lifetime_points,
            thresholds=thresholds,
            details={"previous_tier": previous_tier.value, "tier": membership.tier.value},
        )
    except IntegrityError:
        await refresh_async(db, membership)
        logger.info("Tier bonus already granted", extra=_key(membership.user_id, source, ref_id))
        return 0
    except PersistenceFailureError as exc:
        logger.warning("Tier bonus not granted", extra={**exc.context(), "error": exc.detail})
        return 0

    record_award(source.value, "awarded", bonus)
    logger.info("Tier bonus granted", extra={**_key(membership.user_id, source, ref_id), "points": bonus})
    return bonus


async def _already_awarded(db: AsyncSession, user_id, source: PointsSource, ref_id: str | None, entry) -> AwardResult:
    membership = await membership_service.get_membership(db, user_id)
    record_award(source.value, "duplicate")
    return AwardResult(
        success=True,
        points_awarded=0,
        new_balance=membership.points_balance if membership else 0,
        new_tier=membership.tier if membership else VIPTier.silver,
        already_awarded=True,
        entry_id=entry.id,
    )


async def award_points(
    db: AsyncSession,
    user_id,
    source: PointsSource | str,
    ref_id,
    *,
    amount_minor: int | None = None,
    points: int | None = None,
    metadata: dict[str, Any] | None = None,
    consumption: VIPConsumption | None = None,
) -> AwardResult:
    """Credit points for one business event, at most once per ``(user_id, source, ref_id)``.

    Monetary sources take ``amount_minor`` (cents); check-ins use the active
    ``event_checkin`` rule, else ``points``, else the configured default. A
    repeat call returns ``already_awarded=True`` with zero points. A
    ``consumption`` row, when given, is stored together with the ledger entry.
    """
    source = PointsSource(source)
    ref_id = _ref(ref_id)
    if source == PointsSource.manual_adjust:
        raise DomainValidationError("Manual adjustments go through adjust_points")
    if ref_id is None:
        raise DomainValidationError(f"ref_id is required for {source.value} awards")

    existing = await points_ledger.find_entry(db, user_id, source, ref_id)
    if existing is not None:
        return await _already_awarded(db, user_id, source, ref_id, existing)

    membership = await _lock_membership(db, user_id, source, ref_id)
    # Another award for the same key may have committed while the lock was pending.
    existing = await points_ledger.find_entry(db, user_id, source, ref_id)
    if existing is not None:
        return await _already_awarded(db, user_id, source, ref_id, existing)
    _ensure_active(membership, source, ref_id)

    awarded = await _compute_points(db, source, amount_minor, points)
    if awarded <= 0:
        record_award(source.value, "zero")
        return AwardResult(
            success=True,
            points_awarded=0,
            new_balance=membership.points_balance,
            new_tier=membership.tier,
        )

    thresholds = await point_rules.resolve_thresholds(db)
    details = dict(metadata or {})
    if amount_minor is not None:
        details.setdefault("amount_minor", amount_minor)

    try:
        entry, previous_tier = await _write_movement(
            db,
            membership,
            source=source,
            ref_id=ref_id,
            delta_points=awarded,
            new_balance=membership.points_balance + awarded,
            new_lifetime=membership.lifetime_points + awarded,
            thresholds=thresholds,
            details=details,
            consumption=consumption,
        )
    except IntegrityError:
        winner = await _resolve_duplicate(db, membership, source, ref_id)
        record_award(source.value, "duplicate")
        logger.info("Award lost idempotency race", extra=_key(user_id, source, ref_id))
        return AwardResult(
            success=True,
            points_awarded=0,
            new_balance=membership.points_balance,
            new_tier=membership.tier,
            already_awarded=True,
            entry_id=winner.id,
        )

    record_award(source.value, "awarded", awarded)
    logger.info(
        "Points awarded",
        extra={**_key(user_id, source, ref_id), "points": awarded, "balance": membership.points_balance},
    )
    bonus = await _grant_tier_bonus(db, membership, previous_tier, thresholds)
    _announce_tier_change(membership, previous_tier)
    return AwardResult(
        success=True,
        points_awarded=awarded,
        new_balance=membership.points_balance,
        new_tier=membership.tier,
        entry_id=entry.id,
        tier_bonus=bonus,
    )


async def reverse_points(db: AsyncSession, user_id, source: PointsSource | str, ref_id) -> ReversalResult:
    """Undo a prior award with a compensating ``manual_adjust`` entry on the same ref.

    The balance is clamped at zero. Lifetime points and the tier stay as they
    are, and the original entry is never touched.
    """
    source = PointsSource(source)
    ref_id = _ref(ref_id)
    if source == PointsSource.manual_adjust:
        raise DomainValidationError("Manual adjustments are corrected with a new adjustment")

    original = await points_ledger.find_entry(db, user_id, source, ref_id)
    if original is None:
        record_reversal("noop")
        return ReversalResult(success=True, points_reversed=0)

    membership = await _lock_membership(db, user_id, source, ref_id)

    previous = await points_ledger.find_entry(db, user_id, PointsSource.manual_adjust, ref_id)
    if previous is not None:
        if (previous.details or {}).get("reversal_of") != str(original.id):
            raise LedgerConflictError(
                "Reversal key is held by another adjustment", user_id=user_id, source=source, ref_id=ref_id
            )
        record_reversal("duplicate")
        return ReversalResult(
            success=True,
            points_reversed=0,
            new_balance=membership.points_balance,
            new_tier=membership.tier,
            already_reversed=True,
            entry_id=previous.id,
        )

    thresholds = await point_rules.resolve_thresholds(db)
    original_delta = original.delta_points
    try:
        entry, _ = await _write_movement(
            db,
            membership,
            source=PointsSource.manual_adjust,
            ref_id=ref_id,
            delta_points=-original_delta,
            new_balance=max(0, membership.points_balance - original_delta),
            new_lifetime=membership.lifetime_points,
            thresholds=thresholds,
            details={"reversal_of": str(original.id), "original_source": source.value},
        )
    except IntegrityError:
        winner = await _resolve_duplicate(db, membership, PointsSource.manual_adjust, ref_id)
        record_reversal("duplicate")
        return ReversalResult(
            success=True,
            points_reversed=0,
            new_balance=membership.points_balance,
            new_tier=membership.tier,
            already_reversed=True,
            entry_id=winner.id,
        )

    record_reversal("reversed")
    logger.info(
        "Points reversed",
        extra={**_key(user_id, source, ref_id), "points": original_delta, "balance": membership.points_balance},
    )
    return ReversalResult(
        success=True,
        points_reversed=original_delta,
        new_balance=membership.points_balance,
        new_tier=membership.tier,
        entry_id=entry.id,
    )


async def adjust_points(
    db: AsyncSession,
    user_id,
    delta_points: int,
    reason: str,
    *,
    adjusted_by=None,
    ref_id=None,
) -> AwardResult:
    """Signed admin correction. Negative deltas floor the balance at zero.

    A ``ref_id`` makes the adjustment idempotent. It is stored with an
    ``adjust:`` prefix so it can never take the key a later reversal needs.
    """
    if delta_points == 0:
        raise DomainValidationError("delta_points must be non-zero")
    source = PointsSource.manual_adjust
    ref_id = adjustment_ref(ref_id)

    existing = await points_ledger.find_entry(db, user_id, source, ref_id)
    if existing is not None:
        return await _already_awarded(db, user_id, source, ref_id, existing)

    membership = await _lock_membership(db, user_id, source, ref_id)
    existing = await points_ledger.find_entry(db, user_id, source, ref_id)
    if existing is not None:
        return await _already_awarded(db, user_id, source, ref_id, existing)

    thresholds = await point_rules.resolve_thresholds(db)
    details = {"reason": reason}
    if adjusted_by is not None:
        details["adjusted_by"] = str(adjusted_by)

    try:
        entry, previous_tier = await _write_movement(
            db,
            membership,
            source=source,
            ref_id=ref_id,
            delta_points=delta_points,
            new_balance=max(0, membership.points_balance + delta_points),
            new_lifetime=membership.lifetime_points + max(delta_points, 0),
            thresholds=thresholds,
            details=details,
        )
    except IntegrityError:
        winner = await _resolve_duplicate(db, membership, source, ref_id)
        return await _already_awarded(db, user_id, source, ref_id, winner)

    record_award(source.value, "adjusted", max(delta_points, 0))
    logger.info(
        "Points adjusted manually",
        extra={**_key(user_id, source, ref_id), "points": delta_points, "reason": reason},
    )
    bonus = await _grant_tier_bonus(db, membership, previous_tier, thresholds)
    _announce_tier_change(membership, previous_tier)
    return AwardResult(
        success=True,
        points_awarded=delta_points,
        new_balance=membership.points_balance,
        new_tier=membership.tier,
        entry_id=entry.id,
        tier_bonus=bonus,
    )


async def record_consumption(
    db: AsyncSession,
    user_id,
    amount_cents: int,
    *,
    currency: str = "EUR",
    event_id: str | None = None,
    description: str | None = None,
    source: ConsumptionSource = ConsumptionSource.manual,
) -> tuple[VIPConsumption, AwardResult]:
    if amount_cents <= 0:
        raise DomainValidationError("amount_cents must be positive")
    # Reject before storing anything the member cannot earn on.
    membership = await _lock_membership(db, user_id, PointsSource.consumption, None)
    _ensure_active(membership, PointsSource.consumption, None)

    consumption = VIPConsumption(
        user_id=user_id,
        event_id=event_id,
        amount_cents=amount_cents,
        currency=currency.upper(),
        description=description,
        source=source,
    )
    db.add(consumption)
    await flush_async(db, consumption)
    await refresh_async(db, consumption)

    result = await award_points(
        db,
        user_id,
        PointsSource.consumption,
        consumption.id,
        amount_minor=amount_cents,
        metadata={"event_id": event_id, "currency": consumption.currency},
    )
    return consumption, result


async def list_consumptions(
    db: AsyncSession,
    *,
    user_id=None,
    event_id: str | None = None,
    source: ConsumptionSource | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[VIPConsumption]:
    stmt = select(VIPConsumption).order_by(VIPConsumption.created_at.desc())
    if user_id is not None:
        stmt = stmt.where(VIPConsumption.user_id == user_id)
    if event_id is not None:
        stmt = stmt.where(VIPConsumption.event_id == event_id)
    if source is not None:
        stmt = stmt.where(VIPConsumption.source == source)
    result = await db.execute(stmt.offset(offset).limit(limit))
    return list(result.scalars().all())
