"""
Checkout -> payment -> checkout.session.completed webhook -> paid plan.
"""
from resumeapi.features.users.service import get_subscription_record
from resumeapi.tests.mocks import PRO_PRICE, signed_request, stripe_event


def test_checkout_to_active_professional(client, fake_provider, alice, alice_headers):
    resp = client.post("/billing/checkout", json={"priceId": PRO_PRICE}, headers=alice_headers)
    assert resp.status_code == 200
    session_id = resp.json()["sessionId"]

    # Customer pays; Stripe creates the subscription and notifies us
    session = fake_provider.complete_checkout(session_id, sub_id="sub_paid")
    body, headers = signed_request(stripe_event("checkout.session.completed", session, event_id="evt_paid"))
    ack = client.post("/billing/webhook", content=body, headers=headers)
    assert ack.json() == {"received": True}

    status = client.get("/billing/subscription", headers=alice_headers).json()
    assert status["plan"] == "professional"
    assert status["subscriptionStatus"] == "active"
    assert status["hasActiveSubscription"] is True

    record = get_subscription_record(alice.user_id)
    assert record.stripe_subscription_id == "sub_paid"
    assert record.stripe_customer_id == session["customer"]
    assert record.stripe_price_id == PRO_PRICE


def test_missed_webhook_recovered_by_sync(client, fake_provider, alice, alice_headers):
    session_id = client.post("/billing/checkout", json={"priceId": PRO_PRICE}, headers=alice_headers).json()["sessionId"]
    fake_provider.complete_checkout(session_id, sub_id="sub_paid")

    # Webhook never arrives
    assert client.get("/billing/subscription", headers=alice_headers).json()["plan"] == "free"

    resp = client.post("/billing/sync", headers=alice_headers)

    assert resp.status_code == 200
    assert resp.json()["plan"] == "professional"
    assert get_subscription_record(alice.user_id).stripe_subscription_id == "sub_paid"
