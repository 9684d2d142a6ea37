import pytest

from vipledger.core.config import settings

WEBHOOK = "/api/v1/webhooks/stripe"


def _event(event_type, obj, event_id="evt_test_1"):
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}


async def _paid_order(client, headers, customer_id, price_cents=900):
    resp = await client.post(
        "/api/v1/pos/orders",
        json={
            "customer_user_id": str(customer_id),
            "items": [{"product_name": "Champagne", "unit_price_cents": price_cents}],
        },
        headers=headers,
    )
    return resp.json()


@pytest.mark.asyncio
async def test_succeeded_event_settles_order(client, staff_token, vip_member, auth, stripe_signed, fetch_membership):
    order = await _paid_order(client, auth(staff_token), vip_member.id)
    body, headers = stripe_signed(
        _event("payment_intent.succeeded", {"id": "pi_abc", "object": "payment_intent", "metadata": {"order_id": order["id"]}})
    )

    resp = await client.post(WEBHOOK, content=body, headers=headers)

    assert resp.status_code == 200, resp.text
    assert resp.json() == {"received": True, "handled": True, "order_id": order["id"], "status": "paid"}
    assert (await fetch_membership(vip_member.id)).points_balance == 9

    stored = await client.get(f"/api/v1/pos/orders/{order['id']}", headers=auth(staff_token))
    assert stored.json()["stripe_payment_intent_id"] == "pi_abc"


@pytest.mark.asyncio
async def test_webhook_after_manual_settlement_awards_nothing(
    client, staff_token, vip_member, auth, stripe_signed, fetch_ledger
):
    headers = auth(staff_token)
    order = await _paid_order(client, headers, vip_member.id)
    await client.put(f"/api/v1/pos/orders/{order['id']}", json={"status": "paid"}, headers=headers)

    body, signed = stripe_signed(
        _event("payment_intent.succeeded", {"id": "pi_late", "metadata": {"order_id": order["id"]}})
    )
    resp = await client.post(WEBHOOK, content=body, headers=signed)

    assert resp.status_code == 200
    assert resp.json()["handled"] is True
    assert len(await fetch_ledger(vip_member.id)) == 1


@pytest.mark.asyncio
async def test_order_found_by_payment_intent_id(client, staff_token, vip_member, auth, stripe_signed, fetch_membership):
    headers = auth(staff_token)
    order = await _paid_order(client, headers, vip_member.id, price_cents=3000)
    await client.put(
        f"/api/v1/pos/orders/{order['id']}",
        json={"status": "failed", "stripe_payment_intent_id": "pi_lookup"},
        headers=headers,
    )

    body, signed = stripe_signed(_event("payment_intent.succeeded", {"id": "pi_lookup", "metadata": {}}))
    resp = await client.post(WEBHOOK, content=body, headers=signed)

    assert resp.json()["order_id"] == order["id"]
    assert (await fetch_membership(vip_member.id)).points_balance == 30


@pytest.mark.asyncio
async def test_charge_refunded_reverses_points(client, staff_token, vip_member, auth, stripe_signed, fetch_membership):
    headers = auth(staff_token)
    order = await _paid_order(client, headers, vip_member.id)
    await client.put(
        f"/api/v1/pos/orders/{order['id']}",
        json={"status": "paid", "stripe_payment_intent_id": "pi_refund"},
        headers=headers,
    )

    body, signed = stripe_signed(
        _event("charge.refunded", {"id": "ch_1", "object": "charge", "payment_intent": "pi_refund", "metadata": {}})
    )
    resp = await client.post(WEBHOOK, content=body, headers=signed)

    assert resp.json()["status"] == "refunded"
    membership = await fetch_membership(vip_member.id)
    assert membership.points_balance == 0
    assert membership.lifetime_points == 9


@pytest.mark.asyncio
async def test_inapplicable_event_is_acknowledged(client, staff_token, vip_member, auth, stripe_signed):
    headers = auth(staff_token)
    order = await _paid_order(client, headers, vip_member.id)
    await client.put(f"/api/v1/pos/orders/{order['id']}", json={"status": "paid"}, headers=headers)

    body, signed = stripe_signed(
        _event("payment_intent.payment_failed", {"id": "pi_x", "metadata": {"order_id": order["id"]}})
    )
    resp = await client.post(WEBHOOK, content=body, headers=signed)

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "handled": False, "order_id": order["id"]}
    stored = await client.get(f"/api/v1/pos/orders/{order['id']}", headers=headers)
    assert stored.json()["status"] == "paid"


@pytest.mark.asyncio
async def test_unknown_event_type_is_ignored(client, stripe_signed):
    body, signed = stripe_signed(_event("customer.created", {"id": "cus_1"}))
    resp = await client.post(WEBHOOK, content=body, headers=signed)
    assert resp.status_code == 200
    assert resp.json() == {"received": True, "handled": False}


@pytest.mark.asyncio
async def test_unknown_order_is_acknowledged(client, stripe_signed):
    body, signed = stripe_signed(
        _event("payment_intent.succeeded", {"id": "pi_nobody", "metadata": {"order_id": "not-a-uuid"}})
    )
    resp = await client.post(WEBHOOK, content=body, headers=signed)
    assert resp.status_code == 200
    assert resp.json()["handled"] is False


@pytest.mark.asyncio
async def test_bad_signature_is_rejected(client, stripe_signed):
    body, signed = stripe_signed(_event("payment_intent.succeeded", {"id": "pi_bad"}))
    signed["Stripe-Signature"] = signed["Stripe-Signature"][:-4] + "0000"

    resp = await client.post(WEBHOOK, content=body, headers=signed)

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_missing_signature_is_rejected(client):
    resp = await client.post(WEBHOOK, content='{"type": "payment_intent.succeeded"}')
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_unconfigured_secret_fails_closed(client, stripe_signed, monkeypatch):
    body, signed = stripe_signed(_event("payment_intent.succeeded", {"id": "pi_cfg"}))
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "")

    resp = await client.post(WEBHOOK, content=body, headers=signed)

    assert resp.status_code == 500
