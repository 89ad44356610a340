"""
Plan gate (requires_plan) for paid features.
"""
import inspect

import pytest
from fastapi import Depends

from resumeapi.core.auth import get_current_user_id
from resumeapi.features.entitlements.service import has_plan_access, requires_plan
from resumeapi.features.users.service import save_subscription_record
from resumeapi.models.subscription import SubscriptionRecord


@pytest.fixture
def gated_client(app, client):
    @app.get("/features/pro", dependencies=[Depends(requires_plan("professional"))])
    def pro_feature():
        return {"ok": True}

    @app.get("/features/premium", dependencies=[Depends(requires_plan("premium"))])
    def premium_feature():
        return {"ok": True}

    @app.get("/features/free", dependencies=[Depends(requires_plan("free"))])
    def free_feature():
        return {"ok": True}

    return client


def test_free_user_is_asked_to_upgrade(gated_client, alice_headers):
    resp = gated_client.get("/features/pro", headers=alice_headers)

    assert resp.status_code == 402
    body = resp.json()
    assert body["error"]["code"] == "payment_required"
    assert body["detail"] == "Upgrade to professional plan required for this feature. Your current plan: free"


def test_free_tier_always_passes(gated_client, alice_headers):
    assert gated_client.get("/features/free", headers=alice_headers).status_code == 200


def test_active_professional_passes_professional_gate_only(gated_client, alice, alice_headers):
    save_subscription_record(alice.user_id, {"plan": "professional", "subscription_status": "active"})

    assert gated_client.get("/features/pro", headers=alice_headers).status_code == 200
    assert gated_client.get("/features/premium", headers=alice_headers).status_code == 402


def test_premium_covers_lower_tiers(gated_client, alice, alice_headers):
    save_subscription_record(alice.user_id, {"plan": "premium", "subscription_status": "trialing"})

    assert gated_client.get("/features/pro", headers=alice_headers).status_code == 200
    assert gated_client.get("/features/premium", headers=alice_headers).status_code == 200


def test_past_due_keeps_access_during_grace(gated_client, alice, alice_headers):
    save_subscription_record(alice.user_id, {"plan": "professional", "subscription_status": "past_due"})

    assert gated_client.get("/features/pro", headers=alice_headers).status_code == 200


@pytest.mark.parametrize("status", ["canceled", "incomplete", "incomplete_expired", None])
def test_paid_plan_without_good_standing_is_denied(status):
    record = SubscriptionRecord(plan="premium", subscription_status=status)
    assert not has_plan_access(record, "professional")


def test_has_plan_access_without_record():
    assert has_plan_access(None, "free")
    assert not has_plan_access(None, "premium")


def test_unknown_tier_is_rejected_at_definition():
    with pytest.raises(ValueError):
        requires_plan("gold")


def test_database_dependencies_run_in_threadpool():
    # Plain functions run in the threadpool
    assert not inspect.iscoroutinefunction(get_current_user_id)
    assert not inspect.iscoroutinefunction(requires_plan("premium"))
