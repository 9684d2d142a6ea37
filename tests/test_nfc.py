import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from vipledger.domain.enums import UserRole
from vipledger.services import membership_service

NFC = "/api/v1/nfc"


async def _register_card(client, headers, user, card_uid, card_type="vip"):
    resp = await client.post(
        f"{NFC}/cards", json={"card_uid": card_uid, "user_id": str(user.id), "type": card_type}, headers=headers
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_register_card_stamps_tier(client, staff_token, vip_member, auth):
    headers = auth(staff_token)
    card = await _register_card(client, headers, vip_member, "04DEAD01")
    assert card["metadata"] == {"tier": "silver"}

    duplicate = await client.post(
        f"{NFC}/cards", json={"card_uid": "04DEAD01", "user_id": str(vip_member.id), "type": "vip"}, headers=headers
    )
    assert duplicate.status_code == 409


@pytest.mark.asyncio
async def test_checkin_by_card_awards_flat_points(client, staff_token, vip_member, auth, fetch_membership):
    headers = auth(staff_token)
    await _register_card(client, headers, vip_member, "04DEAD02")

    resp = await client.post(f"{NFC}/checkins", json={"card_uid": "04DEAD02", "event_id": "opening-night"}, headers=headers)

    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["created"] is True
    assert body["checkin"]["user_id"] == str(vip_member.id)
    assert body["checkin"]["event_id"] == "opening-night"
    assert body["loyalty"]["points_awarded"] == 10
    assert (await fetch_membership(vip_member.id)).points_balance == 10


@pytest.mark.asyncio
async def test_checkin_enrolls_member_without_membership(client, staff_token, make_user, auth, fetch_membership):
    artist = make_user(UserRole.artist)

    resp = await client.post(f"{NFC}/checkins", json={"user_id": str(artist.id)}, headers=auth(staff_token))

    assert resp.status_code == 201
    assert resp.json()["loyalty"]["points_awarded"] == 10
    membership = await fetch_membership(artist.id)
    assert membership is not None
    assert membership.points_balance == 10


@pytest.mark.asyncio
async def test_checkin_is_kept_when_auto_enrolment_fails(
    client, staff_token, make_user, auth, monkeypatch, fetch_membership
):
    artist = make_user(UserRole.artist)

    async def lost_enrolment_race(db, user_id):
        raise IntegrityError("INSERT INTO vip_memberships", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(membership_service, "enroll", lost_enrolment_race)
    headers = auth(staff_token)

    resp = await client.post(f"{NFC}/checkins", json={"user_id": str(artist.id), "event_id": "launch"}, headers=headers)

    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["created"] is True
    assert body["loyalty"]["points_awarded"] == 0
    assert body["loyalty"]["error"] == "VIP membership not found"
    assert await fetch_membership(artist.id) is None

    listed = await client.get(f"{NFC}/checkins", params={"user_id": str(artist.id)}, headers=headers)
    assert [row["id"] for row in listed.json()] == [body["checkin"]["id"]]


@pytest.mark.asyncio
async def test_replayed_checkin_id_is_not_double_counted(client, staff_token, vip_member, auth, fetch_ledger):
    headers = auth(staff_token)
    payload = {"id": str(uuid.uuid4()), "user_id": str(vip_member.id), "event_id": "afterparty"}

    first = await client.post(f"{NFC}/checkins", json=payload, headers=headers)
    second = await client.post(f"{NFC}/checkins", json=payload, headers=headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["created"] is False
    assert second.json()["checkin"]["id"] == payload["id"]
    assert second.json()["loyalty"]["already_awarded"] is True
    assert second.json()["loyalty"]["points_awarded"] == 0
    assert len(await fetch_ledger(vip_member.id)) == 1


@pytest.mark.asyncio
async def test_staff_checkin_earns_nothing(client, staff_token, staff_user, auth, fetch_membership):
    resp = await client.post(f"{NFC}/checkins", json={"user_id": str(staff_user.id)}, headers=auth(staff_token))

    assert resp.status_code == 201
    assert resp.json()["loyalty"] is None
    assert await fetch_membership(staff_user.id) is None


@pytest.mark.asyncio
async def test_inactive_card_is_refused(client, admin_token, vip_member, auth):
    headers = auth(admin_token)
    resp = await client.post(
        f"{NFC}/cards",
        json={"card_uid": "04DEAD03", "user_id": str(vip_member.id), "type": "vip", "is_active": False},
        headers=headers,
    )
    assert resp.status_code == 201

    checkin = await client.post(f"{NFC}/checkins", json={"card_uid": "04DEAD03"}, headers=headers)

    assert checkin.status_code == 403


@pytest.mark.asyncio
async def test_card_and_user_must_match(client, staff_token, vip_member, make_user, auth):
    headers = auth(staff_token)
    other = make_user(UserRole.vip)
    await _register_card(client, headers, vip_member, "04DEAD04")

    resp = await client.post(
        f"{NFC}/checkins", json={"card_uid": "04DEAD04", "user_id": str(other.id)}, headers=headers
    )

    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_checkin_requires_holder(client, staff_token, auth):
    resp = await client.post(f"{NFC}/checkins", json={"event_id": "no-one"}, headers=auth(staff_token))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_checkin_rule_overrides_default(client, admin_token, vip_member, auth):
    headers = auth(admin_token)
    rule = await client.put(
        "/api/v1/vip/point-rules",
        json={"action_type": "event_checkin", "points_per_unit": "25", "unit": "checkin"},
        headers=headers,
    )
    assert rule.status_code == 200, rule.text

    resp = await client.post(f"{NFC}/checkins", json={"user_id": str(vip_member.id)}, headers=headers)

    assert resp.json()["loyalty"]["points_awarded"] == 25


@pytest.mark.asyncio
async def test_list_checkins_filters_by_user(client, staff_token, vip_member, make_user, auth):
    headers = auth(staff_token)
    other = make_user(UserRole.vip)
    await client.post(f"{NFC}/checkins", json={"user_id": str(vip_member.id)}, headers=headers)
    await client.post(f"{NFC}/checkins", json={"user_id": str(other.id)}, headers=headers)

    resp = await client.get(f"{NFC}/checkins", params={"user_id": str(vip_member.id)}, headers=headers)

    assert resp.status_code == 200
    assert [row["user_id"] for row in resp.json()] == [str(vip_member.id)]
