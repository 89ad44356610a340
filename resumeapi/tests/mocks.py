"""In-memory stand-ins for Stripe used across the billing tests."""
import copy
import hashlib
import hmac
import json
import time
from typing import Any, Dict, List, Optional

from resumeapi.features.billing.provider import CheckoutSession, PriceInfo, ProviderNotFoundError
from resumeapi.features.billing.stripe_provider import subscription_from_stripe, verify_webhook_payload

WEBHOOK_SECRET = "whsec_test_secret"
PRO_PRICE = "price_1ProMonthly"
PREMIUM_PRICE = "price_1TopMonthly"
PERIOD_END = 1767225600  # 2026-01-01T00:00:00Z


def stripe_subscription(
    sub_id: str = "sub_123",
    *,
    status: str = "active",
    price_id: Optional[str] = PRO_PRICE,
    customer: str = "cus_123",
    user_id: Optional[str] = "user_alice",
    plan: Optional[str] = None,
    current_period_end: Any = PERIOD_END,
    created: int = 1700000000,
    period_on_item: bool = False,
) -> Dict[str, Any]:
    """Subscription shaped like Stripe's JSON (webhook data.object / API response)."""
    metadata = {}
    if user_id:
        metadata["userId"] = user_id
    if plan:
        metadata["plan"] = plan

    item: Dict[str, Any] = {"id": f"si_{sub_id}", "price": {"id": price_id, "type": "recurring"}}
    sub: Dict[str, Any] = {
        "id": sub_id,
        "object": "subscription",
        "status": status,
        "customer": customer,
        "created": created,
        "metadata": metadata,
        "items": {"object": "list", "data": [item]},
    }
    if period_on_item:
        item["current_period_end"] = current_period_end
    else:
        sub["current_period_end"] = current_period_end
    return sub


def stripe_event(event_type: str, obj: Dict[str, Any], event_id: str = "evt_1") -> Dict[str, Any]:
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header value for `payload`."""
    ts = timestamp or int(time.time())
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def signed_request(event: Dict[str, Any], secret: str = WEBHOOK_SECRET):
    """(body, headers) ready for client.post('/billing/webhook', ...)."""
    body = json.dumps(event).encode("utf-8")
    return body, {"stripe-signature": sign_payload(body, secret), "content-type": "application/json"}


class FakeBillingProvider:
    """BillingProvider backed by dicts. Signature checks use the real verifier."""

    def __init__(self, webhook_secret: str = WEBHOOK_SECRET):
        self.webhook_secret = webhook_secret
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.prices: Dict[str, PriceInfo] = {
            PRO_PRICE: PriceInfo(PRO_PRICE, "recurring", True, unit_amount=2299, interval="month"),
            PREMIUM_PRICE: PriceInfo(PREMIUM_PRICE, "recurring", True, unit_amount=3299, interval="month"),
        }
        self.checkout_sessions: List[Dict[str, Any]] = []
        self.modifications: List[Dict[str, Any]] = []
        self.calls: List[str] = []
        self.failures: Dict[str, Exception] = {}
        self._next_id = 0

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failures:
            raise self.failures[method]

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}_fake{self._next_id}"

    # ---- test setup helpers ----

    def add_customer(self, customer_id: str, user_id: str = "user_alice", deleted: bool = False) -> None:
        self.customers[customer_id] = {"id": customer_id, "metadata": {"userId": user_id}, "deleted": deleted}

    def add_subscription(self, sub: Dict[str, Any]) -> Dict[str, Any]:
        self.subscriptions[sub["id"]] = sub
        return sub

    # ---- BillingProvider ----

    def retrieve_subscription(self, subscription_id: str):
        self._enter("retrieve_subscription")
        if subscription_id not in self.subscriptions:
            raise ProviderNotFoundError(f"No such subscription: '{subscription_id}'")
        return subscription_from_stripe(self.subscriptions[subscription_id])

    def list_customer_subscriptions(self, customer_id: str, limit: int = 10):
        self._enter("list_customer_subscriptions")
        if customer_id not in self.customers:
            raise ProviderNotFoundError(f"No such customer: '{customer_id}'")
        subs = [
            subscription_from_stripe(sub)
            for sub in self.subscriptions.values()
            if sub.get("customer") == customer_id
        ]
        subs.sort(key=lambda sub: sub.created or 0, reverse=True)
        return subs[:limit]

    def retrieve_price(self, price_id: str) -> PriceInfo:
        self._enter("retrieve_price")
        if price_id not in self.prices:
            raise ProviderNotFoundError(f"No such price: '{price_id}'")
        return self.prices[price_id]

    def retrieve_customer(self, customer_id: str) -> str:
        self._enter("retrieve_customer")
        customer = self.customers.get(customer_id)
        if customer is None or customer.get("deleted"):
            raise ProviderNotFoundError(f"No such customer: '{customer_id}'")
        return customer_id

    def create_customer(self, user_id: str, email: Optional[str] = None) -> str:
        self._enter("create_customer")
        customer_id = self._new_id("cus")
        self.customers[customer_id] = {"id": customer_id, "email": email, "metadata": {"userId": user_id}}
        return customer_id

    def create_checkout_session(self, customer_id, price_id, success_url, cancel_url, metadata) -> CheckoutSession:
        self._enter("create_checkout_session")
        session_id = self._new_id("cs_test")
        self.checkout_sessions.append({
            "id": session_id,
            "customer": customer_id,
            "price_id": price_id,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": dict(metadata),
            "subscription_data": {"metadata": dict(metadata)},
        })
        return CheckoutSession(session_id=session_id, url=f"https://checkout.stripe.test/c/{session_id}")

    def complete_checkout(self, session_id: str, sub_id: str = "sub_new", created: int = 1700000500) -> Dict[str, Any]:
        """What Stripe does after payment: create the subscription from the session."""
        session = next(s for s in self.checkout_sessions if s["id"] == session_id)
        metadata = session["subscription_data"]["metadata"]
        sub = stripe_subscription(
            sub_id,
            price_id=session["price_id"],
            customer=session["customer"],
            user_id=metadata.get("userId"),
            plan=metadata.get("plan"),
            created=created,
        )
        self.add_subscription(sub)
        return {
            "id": session_id,
            "object": "checkout.session",
            "customer": session["customer"],
            "subscription": sub_id,
            "metadata": dict(session["metadata"]),
        }

    def change_subscription_price(self, subscription_id: str, price_id: str, metadata: Dict[str, str]):
        self._enter("change_subscription_price")
        if subscription_id not in self.subscriptions:
            raise ProviderNotFoundError(f"No such subscription: '{subscription_id}'")
        sub = copy.deepcopy(self.subscriptions[subscription_id])
        sub["items"]["data"][0]["price"] = {"id": price_id, "type": "recurring"}
        sub["metadata"] = dict(metadata)
        self.subscriptions[subscription_id] = sub
        self.modifications.append({"subscription_id": subscription_id, "price_id": price_id, "metadata": dict(metadata)})
        return subscription_from_stripe(sub)

    def cancel_subscription(self, subscription_id: str):
        self._enter("cancel_subscription")
        if subscription_id not in self.subscriptions:
            raise ProviderNotFoundError(f"No such subscription: '{subscription_id}'")
        sub = copy.deepcopy(self.subscriptions[subscription_id])
        sub["status"] = "canceled"
        self.subscriptions[subscription_id] = sub
        return subscription_from_stripe(sub)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        return verify_webhook_payload(payload, signature, self.webhook_secret)
