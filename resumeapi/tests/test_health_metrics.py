"""
Probes, metrics exposition and request id propagation.
"""
from resumeapi.tests.mocks import signed_request, stripe_event


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_readyz_checks_tables(client):
    resp = client.get("/readyz")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "billing": "enabled"}


def test_request_id_is_echoed(client):
    resp = client.get("/healthz", headers={"x-request-id": "req-abc"})
    assert resp.headers["x-request-id"] == "req-abc"


def test_request_id_generated_when_absent(client):
    assert client.get("/healthz").headers.get("x-request-id")


def test_error_payload_carries_request_id(client):
    resp = client.get("/billing/subscription", headers={"x-request-id": "req-401"})

    assert resp.status_code == 401
    assert resp.json()["error"]["request_id"] == "req-401"


def test_metrics_exposes_billing_counters(client):
    body, headers = signed_request(stripe_event("payment_intent.created", {"id": "pi_1"}))
    client.post("/billing/webhook", content=body, headers=headers)

    resp = client.get("/metrics")

    assert resp.status_code == 200
    text = resp.text
    assert 'billing_webhook_events_total{event_type="payment_intent.created",outcome="ignored"} 1.0' in text
    assert 'http_requests_total{method="POST",path="/billing/webhook",status="200"} 1.0' in text
