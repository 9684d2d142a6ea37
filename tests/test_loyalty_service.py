import uuid

import pytest
from sqlalchemy import func, select

from vipledger.db.session_async import AsyncSessionLocal
from vipledger.domain.enums import NFCCardType, PointsSource, VIPStatus, VIPTier
from vipledger.models.nfc import NFCCard
from vipledger.models.vip import PointsLedgerEntry, VIPConsumption
from vipledger.schemas.vip import PointRuleUpsert
from vipledger.services import loyalty_service, membership_service, point_rules, points_ledger
from vipledger.services.exceptions import (
    DomainValidationError,
    LedgerConflictError,
    MembershipInactiveError,
    NoMembershipError,
)


async def _ledger_count(db, user_id) -> int:
    stmt = select(func.count()).select_from(PointsLedgerEntry).where(PointsLedgerEntry.user_id == user_id)
    return (await db.execute(stmt)).scalar_one()


@pytest.mark.asyncio
async def test_award_is_idempotent_per_reference(async_db_session, vip_member):
    user_id = vip_member.id
    ref = str(uuid.uuid4())

    first = await loyalty_service.award_points(async_db_session, user_id, "consumption_pos", ref, amount_minor=900)
    second = await loyalty_service.award_points(async_db_session, user_id, "consumption_pos", ref, amount_minor=900)

    assert first.points_awarded == 9
    assert first.new_balance == 9
    assert first.already_awarded is False
    assert second.points_awarded == 0
    assert second.already_awarded is True
    assert second.new_balance == 9
    assert second.entry_id == first.entry_id
    assert await _ledger_count(async_db_session, user_id) == 1


@pytest.mark.asyncio
async def test_award_floors_fractional_points(async_db_session, vip_member):
    result = await loyalty_service.award_points(
        async_db_session, vip_member.id, PointsSource.consumption, "c-1", amount_minor=1999
    )
    assert result.points_awarded == 19


@pytest.mark.asyncio
async def test_award_below_one_point_writes_nothing(async_db_session, vip_member):
    user_id = vip_member.id
    result = await loyalty_service.award_points(
        async_db_session, user_id, PointsSource.consumption_pos, "tiny", amount_minor=50
    )
    assert result.success is True
    assert result.points_awarded == 0
    assert result.already_awarded is False
    assert await _ledger_count(async_db_session, user_id) == 0


@pytest.mark.asyncio
async def test_monetary_award_requires_amount(async_db_session, vip_member):
    with pytest.raises(DomainValidationError):
        await loyalty_service.award_points(async_db_session, vip_member.id, PointsSource.consumption_pos, "no-amount")


@pytest.mark.asyncio
async def test_award_without_membership_raises(async_db_session, vip_user):
    user_id = vip_user.id
    with pytest.raises(NoMembershipError) as excinfo:
        await loyalty_service.award_points(async_db_session, user_id, "consumption_pos", "o-1", amount_minor=900)
    assert excinfo.value.context()["ref_id"] == "o-1"
    assert await _ledger_count(async_db_session, user_id) == 0


@pytest.mark.asyncio
async def test_award_for_suspended_membership_raises(async_db_session, vip_user, make_membership):
    make_membership(vip_user, status=VIPStatus.suspended, balance=40)
    user_id = vip_user.id

    with pytest.raises(MembershipInactiveError):
        await loyalty_service.award_points(async_db_session, user_id, "event_checkin", "chk-1")

    membership = await membership_service.get_membership(async_db_session, user_id)
    assert membership.points_balance == 40


@pytest.mark.asyncio
async def test_checkin_award_uses_flat_points(async_db_session, vip_member):
    default = await loyalty_service.award_points(async_db_session, vip_member.id, "event_checkin", "chk-a")
    explicit = await loyalty_service.award_points(async_db_session, vip_member.id, "event_checkin", "chk-b", points=3)
    assert default.points_awarded == 10
    assert explicit.points_awarded == 3
    assert explicit.new_balance == 13


@pytest.mark.asyncio
async def test_concurrent_award_resolves_to_single_entry(async_db_session, vip_member, monkeypatch):
    user_id = vip_member.id
    first = await loyalty_service.award_points(async_db_session, user_id, "consumption_pos", "race", amount_minor=900)
    await async_db_session.commit()

    real_find = points_ledger.find_entry
    calls = {"count": 0}

    async def stale_first_lookup(db, *args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return await real_find(db, *args, **kwargs)

    monkeypatch.setattr(points_ledger, "find_entry", stale_first_lookup)

    second = await loyalty_service.award_points(async_db_session, user_id, "consumption_pos", "race", amount_minor=900)

    assert second.already_awarded is True
    assert second.points_awarded == 0
    assert second.new_balance == 9
    assert second.entry_id == first.entry_id
    assert await _ledger_count(async_db_session, user_id) == 1


@pytest.mark.asyncio
async def test_awards_from_separate_sessions_keep_balance_in_step_with_ledger(
    async_db_session, vip_member, fetch_membership
):
    user_id = vip_member.id
    held = await membership_service.get_membership(async_db_session, user_id)
    assert held.points_balance == 0
    await async_db_session.commit()

    async with AsyncSessionLocal() as other:
        await loyalty_service.award_points(other, user_id, "consumption_pos", "o2", amount_minor=900)
        await other.commit()

    result = await loyalty_service.award_points(async_db_session, user_id, "consumption_pos", "o1", amount_minor=900)
    await async_db_session.commit()

    assert result.points_awarded == 9
    assert result.new_balance == 18
    membership = await fetch_membership(user_id)
    assert membership.points_balance == 18
    assert membership.lifetime_points == 18
    assert membership.points_balance == await points_ledger.sum_deltas(async_db_session, user_id)


@pytest.mark.asyncio
async def test_same_reference_committed_by_another_session_hits_the_unique_key(
    async_db_session, vip_member, monkeypatch, fetch_membership
):
    user_id = vip_member.id
    real_find = points_ledger.find_entry
    lookups = {"count": 0}
    winner = {}

    async def lookup_while_other_session_commits(db, *args, **kwargs):
        if db is not async_db_session:
            return await real_find(db, *args, **kwargs)
        lookups["count"] += 1
        if lookups["count"] == 1:
            async with AsyncSessionLocal() as other:
                result = await loyalty_service.award_points(other, user_id, "consumption_pos", "shared", amount_minor=900)
                await other.commit()
            winner["entry_id"] = result.entry_id
        if lookups["count"] <= 2:
            return None
        return await real_find(db, *args, **kwargs)

    monkeypatch.setattr(points_ledger, "find_entry", lookup_while_other_session_commits)

    result = await loyalty_service.award_points(
        async_db_session, user_id, "consumption_pos", "shared", amount_minor=900
    )

    assert result.already_awarded is True
    assert result.points_awarded == 0
    assert result.new_balance == 9
    assert result.entry_id == winner["entry_id"]
    assert await _ledger_count(async_db_session, user_id) == 1
    assert (await fetch_membership(user_id)).points_balance == 9


@pytest.mark.asyncio
async def test_reverse_compensates_and_is_idempotent(async_db_session, vip_member):
    user_id = vip_member.id
    await loyalty_service.award_points(async_db_session, user_id, "consumption_pos", "order-1", amount_minor=900)

    reversal = await loyalty_service.reverse_points(async_db_session, user_id, "consumption_pos", "order-1")
    again = await loyalty_service.reverse_points(async_db_session, user_id, "consumption_pos", "order-1")

    assert reversal.points_reversed == 9
    assert reversal.new_balance == 0
    assert again.already_reversed is True
    assert again.points_reversed == 0

    compensation = await points_ledger.find_entry(async_db_session, user_id, PointsSource.manual_adjust, "order-1")
    assert compensation.delta_points == -9
    assert compensation.details["original_source"] == "consumption_pos"

    membership = await membership_service.get_membership(async_db_session, user_id)
    assert membership.lifetime_points == 9
    assert await _ledger_count(async_db_session, user_id) == 2


@pytest.mark.asyncio
async def test_reverse_clamps_balance_at_zero(async_db_session, vip_member):
    user_id = vip_member.id
    await loyalty_service.award_points(async_db_session, user_id, "consumption_pos", "order-2", amount_minor=900)
    await loyalty_service.adjust_points(async_db_session, user_id, -5, "redeemed drink")

    reversal = await loyalty_service.reverse_points(async_db_session, user_id, "consumption_pos", "order-2")

    assert reversal.new_balance == 0
    entry = await points_ledger.find_entry(async_db_session, user_id, PointsSource.manual_adjust, "order-2")
    assert entry.delta_points == -9
    assert entry.balance_after == 0


@pytest.mark.asyncio
async def test_reverse_without_original_is_noop(async_db_session, vip_member):
    result = await loyalty_service.reverse_points(async_db_session, vip_member.id, "consumption_pos", "never-paid")
    assert result.success is True
    assert result.points_reversed == 0
    assert await _ledger_count(async_db_session, vip_member.id) == 0


@pytest.mark.asyncio
async def test_reverse_rejects_manual_adjust_source(async_db_session, vip_member):
    with pytest.raises(DomainValidationError):
        await loyalty_service.reverse_points(async_db_session, vip_member.id, "manual_adjust", "x")


@pytest.mark.asyncio
async def test_adjust_rejects_zero_and_honours_reference(async_db_session, vip_member):
    user_id = vip_member.id
    with pytest.raises(DomainValidationError):
        await loyalty_service.adjust_points(async_db_session, user_id, 0, "nothing")

    first = await loyalty_service.adjust_points(async_db_session, user_id, 30, "welcome", ref_id="welcome")
    repeat = await loyalty_service.adjust_points(async_db_session, user_id, 30, "welcome", ref_id="welcome")
    assert first.points_awarded == 30
    assert repeat.already_awarded is True
    assert repeat.new_balance == 30


@pytest.mark.asyncio
async def test_balance_matches_ledger_sum(async_db_session, vip_member):
    user_id = vip_member.id
    await loyalty_service.award_points(async_db_session, user_id, "consumption_pos", "a", amount_minor=2500)
    await loyalty_service.award_points(async_db_session, user_id, "event_checkin", "b")
    await loyalty_service.adjust_points(async_db_session, user_id, -7, "correction")
    await loyalty_service.reverse_points(async_db_session, user_id, "event_checkin", "b")

    membership = await membership_service.get_membership(async_db_session, user_id)
    assert membership.points_balance == 18
    assert membership.points_balance == await points_ledger.sum_deltas(async_db_session, user_id)
    assert membership.lifetime_points == 35


@pytest.mark.asyncio
async def test_tier_upgrade_stamps_cards_and_emits_event(async_db_session, vip_member, monkeypatch):
    user_id = vip_member.id
    emitted = []
    monkeypatch.setattr(loyalty_service, "emit_loyalty_event", lambda name, payload: emitted.append((name, payload)))

    async_db_session.add(NFCCard(card_uid="04AABBCC", user_id=user_id, type=NFCCardType.vip, details={"tier": "silver"}))
    await async_db_session.flush()

    result = await loyalty_service.award_points(async_db_session, user_id, "consumption_pos", "big", amount_minor=50000)

    assert result.new_tier == VIPTier.gold
    assert emitted == [
        (
            "vip_tier_changed",
            {"user_id": str(user_id), "previous_tier": "silver", "new_tier": "gold", "lifetime_points": 500},
        )
    ]
    card = (await async_db_session.execute(select(NFCCard).where(NFCCard.user_id == user_id))).scalar_one()
    assert card.details["tier"] == "gold"

    await loyalty_service.reverse_points(async_db_session, user_id, "consumption_pos", "big")
    membership = await membership_service.get_membership(async_db_session, user_id)
    assert membership.points_balance == 0
    assert membership.tier == VIPTier.gold


@pytest.mark.asyncio
async def test_record_consumption_awards_on_its_own_id(async_db_session, vip_member):
    consumption, result = await loyalty_service.record_consumption(
        async_db_session, vip_member.id, 1250, currency="eur", event_id="fest-2024"
    )

    assert consumption.currency == "EUR"
    assert result.points_awarded == 12
    entry = await points_ledger.find_entry(async_db_session, vip_member.id, PointsSource.consumption, str(consumption.id))
    assert entry.details["event_id"] == "fest-2024"


@pytest.mark.asyncio
async def test_record_consumption_without_membership_stores_nothing(async_db_session, vip_user):
    with pytest.raises(NoMembershipError):
        await loyalty_service.record_consumption(async_db_session, vip_user.id, 1000)
    count = (await async_db_session.execute(select(func.count()).select_from(VIPConsumption))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_adjustment_referencing_an_order_does_not_block_its_reversal(async_db_session, vip_member):
    user_id = vip_member.id
    await loyalty_service.award_points(async_db_session, user_id, "consumption_pos", "order-7", amount_minor=900)
    goodwill = await loyalty_service.adjust_points(async_db_session, user_id, 5, "slow service", ref_id="order-7")

    reversal = await loyalty_service.reverse_points(async_db_session, user_id, "consumption_pos", "order-7")

    assert goodwill.points_awarded == 5
    assert reversal.already_reversed is False
    assert reversal.points_reversed == 9
    assert reversal.new_balance == 5

    adjustment = await points_ledger.find_entry(async_db_session, user_id, PointsSource.manual_adjust, "adjust:order-7")
    assert adjustment.details["reason"] == "slow service"
    compensation = await points_ledger.find_entry(async_db_session, user_id, PointsSource.manual_adjust, "order-7")
    assert compensation.delta_points == -9


@pytest.mark.asyncio
async def test_reversal_key_held_by_unrelated_entry_is_a_conflict(async_db_session, vip_member):
    user_id = vip_member.id
    await loyalty_service.award_points(async_db_session, user_id, "consumption_pos", "order-8", amount_minor=900)
    await points_ledger.append_entry(
        async_db_session,
        user_id=user_id,
        source=PointsSource.manual_adjust,
        ref_id="order-8",
        delta_points=3,
        balance_after=12,
        details={"reason": "imported"},
    )

    with pytest.raises(LedgerConflictError) as excinfo:
        await loyalty_service.reverse_points(async_db_session, user_id, "consumption_pos", "order-8")
    assert excinfo.value.context()["ref_id"] == "order-8"


@pytest.mark.asyncio
async def test_awards_require_a_reference(async_db_session, vip_member):
    with pytest.raises(DomainValidationError):
        await loyalty_service.award_points(async_db_session, vip_member.id, "event_checkin", None)
    with pytest.raises(DomainValidationError):
        await loyalty_service.award_points(async_db_session, vip_member.id, "manual_adjust", "x", points=5)
    assert await _ledger_count(async_db_session, vip_member.id) == 0


@pytest.mark.asyncio
async def test_tier_bonus_is_granted_once_per_tier(async_db_session, vip_member):
    user_id = vip_member.id
    await point_rules.upsert_rule(
        async_db_session, PointRuleUpsert(action_type="tier_bonus", points_per_unit="50", unit="bonus")
    )

    upgrade = await loyalty_service.award_points(
        async_db_session, user_id, "consumption_pos", "big-night", amount_minor=50000
    )
    later = await loyalty_service.adjust_points(async_db_session, user_id, 10, "birthday")

    assert upgrade.new_tier == VIPTier.gold
    assert upgrade.points_awarded == 500
    assert upgrade.tier_bonus == 50
    assert upgrade.new_balance == 550
    assert later.tier_bonus == 0

    bonus = await points_ledger.find_entry(async_db_session, user_id, PointsSource.tier_bonus, "gold")
    assert bonus.delta_points == 50
    assert bonus.details == {"previous_tier": "silver", "tier": "gold"}

    membership = await membership_service.get_membership(async_db_session, user_id)
    assert membership.lifetime_points == 510
    assert membership.points_balance == 560
    assert membership.points_balance == await points_ledger.sum_deltas(async_db_session, user_id)


@pytest.mark.asyncio
async def test_tier_bonus_needs_an_active_rule(async_db_session, vip_member):
    result = await loyalty_service.award_points(
        async_db_session, vip_member.id, "consumption_pos", "big-night", amount_minor=50000
    )
    assert result.new_tier == VIPTier.gold
    assert result.tier_bonus == 0
    assert await _ledger_count(async_db_session, vip_member.id) == 1
