"""
Caller identification: bearer JWT, X-User-Id outside production.
"""
import time

import jwt

from resumeapi.core.config import settings
from resumeapi.features.users.service import get_user


def _token(secret="test-jwt-secret", **claims):
    payload = {"sub": "user_carol", "email": "carol@example.com", "exp": int(time.time()) + 300}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def test_bearer_token_identifies_and_creates_user(client):
    resp = client.get("/billing/subscription", headers={"Authorization": f"Bearer {_token()}"})

    assert resp.status_code == 200
    assert resp.json()["plan"] == "free"
    user = get_user("user_carol")
    assert user is not None
    assert user.email == "carol@example.com"


def test_expired_token_rejected(client):
    resp = client.get("/billing/subscription", headers={"Authorization": f"Bearer {_token(exp=int(time.time()) - 10)}"})

    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token expired"


def test_token_signed_with_other_secret_rejected(client):
    resp = client.get("/billing/subscription", headers={"Authorization": f"Bearer {_token(secret='other')}"})

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "http_error"


def test_missing_credentials_rejected(client):
    resp = client.get("/billing/subscription")
    assert resp.status_code == 401


def test_user_id_header_not_accepted_in_production(client, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "production")

    resp = client.get("/billing/subscription", headers={"X-User-Id": "user_alice"})

    assert resp.status_code == 401
