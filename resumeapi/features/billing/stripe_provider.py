"""
Stripe billing provider implementation.

Implements the BillingProvider protocol with the Stripe API. The API key is
passed per call, so several providers (or none) can coexist in one process.
Also owns the Stripe object shapes: subscription normalization, invoice
subscription lookup and webhook signature verification.
"""
import json
from contextlib import contextmanager
from typing import Dict, Any, List, Optional

import stripe

from resumeapi.core.config import Settings, settings
from resumeapi.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    CheckoutSession,
    PriceInfo,
    ProviderAuthError,
    ProviderNotFoundError,
)
from resumeapi.models.subscription import METADATA_PLAN, METADATA_USER_ID, SubscriptionEvent


def get_field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a dict or StripeObject, treating missing and null alike."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value


def object_id(value: Any) -> Optional[str]:
    """Ids may arrive bare or as an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return get_field(value, "id")


def subscription_from_stripe(obj: Any) -> SubscriptionEvent:
    """Normalize a Stripe subscription (webhook payload or API object)."""
    items = get_field(get_field(obj, "items"), "data", [])
    first_item = items[0] if items else None

    # Newer API versions report the billing period on the item
    period_end = get_field(obj, "current_period_end")
    if period_end is None:
        period_end = get_field(first_item, "current_period_end")

    raw_metadata = get_field(obj, "metadata")
    metadata = {}
    for key in (METADATA_USER_ID, METADATA_PLAN):
        value = get_field(raw_metadata, key)
        if value:
            metadata[key] = str(value)

    return SubscriptionEvent(
        subscription_id=get_field(obj, "id"),
        status=get_field(obj, "status"),
        price_id=object_id(get_field(first_item, "price")),
        current_period_end=period_end,
        customer_id=object_id(get_field(obj, "customer")),
        created=get_field(obj, "created"),
        metadata=metadata,
    )


def invoice_subscription_id(invoice: Any) -> Optional[str]:
    """Subscription an invoice bills for, across old and new API shapes."""
    subscription = get_field(invoice, "subscription")
    if subscription is None:
        details = get_field(get_field(invoice, "parent"), "subscription_details")
        subscription = get_field(details, "subscription")
    return object_id(subscription)


def verify_webhook_payload(payload: bytes, signature: Optional[str], webhook_secret: Optional[str]) -> Dict[str, Any]:
    """
    Verify a Stripe-Signature header over the raw body and return the event.

    Raises:
        BillingWebhookError: Anything that makes the delivery untrustworthy
    """
    if not webhook_secret:
        raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")
    if not signature:
        raise BillingWebhookError("Missing stripe-signature header")

    try:
        stripe.Webhook.construct_event(payload, signature, webhook_secret)
    except ValueError as e:
        raise BillingWebhookError(f"Invalid payload: {e}")
    except stripe.SignatureVerificationError as e:
        raise BillingWebhookError(f"Invalid signature: {e}")

    # Signature covers these exact bytes; work with plain dicts from here on
    event = json.loads(payload)
    if not isinstance(event, dict):
        raise BillingWebhookError("Invalid payload: event is not an object")
    return event


@contextmanager
def _stripe_call(action: str):
    try:
        yield
    except stripe.InvalidRequestError as e:
        if getattr(e, "code", None) == "resource_missing":
            raise ProviderNotFoundError(f"{action}: {e.user_message or e}") from e
        raise BillingProviderError(f"Stripe {action} failed: {e.user_message or e}") from e
    except stripe.AuthenticationError as e:
        raise ProviderAuthError(
            "Stripe authentication failed. Verify STRIPE_SECRET_KEY matches your Stripe account (test vs live mode)."
        ) from e
    except stripe.StripeError as e:
        raise BillingProviderError(f"Stripe {action} failed: {e}") from e


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str] = None):
        if not secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    @classmethod
    def from_settings(cls, settings_obj: Optional[Settings] = None) -> "StripeProvider":
        cfg = settings_obj or settings
        return cls(secret_key=cfg.STRIPE_SECRET_KEY, webhook_secret=cfg.STRIPE_WEBHOOK_SECRET)

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionEvent:
        with _stripe_call(f"subscription {subscription_id} lookup"):
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self.secret_key)
        return subscription_from_stripe(subscription)

    def list_customer_subscriptions(self, customer_id: str, limit: int = 10) -> List[SubscriptionEvent]:
        with _stripe_call(f"customer {customer_id} subscription listing"):
            result = stripe.Subscription.list(
                customer=customer_id,
                status="all",
                limit=limit,
                api_key=self.secret_key,
            )
        subscriptions = [subscription_from_stripe(sub) for sub in get_field(result, "data", [])]
        return sorted(subscriptions, key=lambda sub: sub.created or 0, reverse=True)

    def retrieve_price(self, price_id: str) -> PriceInfo:
        with _stripe_call(f"price {price_id} lookup"):
            price = stripe.Price.retrieve(price_id, api_key=self.secret_key)
        recurring = get_field(price, "recurring")
        return PriceInfo(
            price_id=get_field(price, "id", price_id),
            type=get_field(price, "type"),
            recurring=get_field(price, "type") == "recurring" and bool(recurring),
            active=bool(get_field(price, "active", True)),
            unit_amount=get_field(price, "unit_amount"),
            interval=get_field(recurring, "interval"),
        )

    def retrieve_customer(self, customer_id: str) -> str:
        with _stripe_call(f"customer {customer_id} lookup"):
            customer = stripe.Customer.retrieve(customer_id, api_key=self.secret_key)
        if get_field(customer, "deleted", False):
            raise ProviderNotFoundError(f"customer {customer_id} was deleted")
        return get_field(customer, "id", customer_id)

    def create_customer(self, user_id: str, email: Optional[str] = None) -> str:
        params: Dict[str, Any] = {"metadata": {METADATA_USER_ID: user_id}}
        if email:
            params["email"] = email
        with _stripe_call("customer creation"):
            customer = stripe.Customer.create(api_key=self.secret_key, **params)
        return customer["id"]

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        with _stripe_call("checkout session creation"):
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
                api_key=self.secret_key,
            )
        return CheckoutSession(session_id=session["id"], url=session["url"])

    def change_subscription_price(
        self,
        subscription_id: str,
        price_id: str,
        metadata: Dict[str, str],
    ) -> SubscriptionEvent:
        with _stripe_call(f"subscription {subscription_id} lookup"):
            current = stripe.Subscription.retrieve(subscription_id, api_key=self.secret_key)
        items = get_field(get_field(current, "items"), "data", [])
        item_id = get_field(items[0], "id") if items else None
        if not item_id:
            raise BillingProviderError("No subscription items found")

        with _stripe_call(f"subscription {subscription_id} update"):
            updated = stripe.Subscription.modify(
                subscription_id,
                items=[{"id": item_id, "price": price_id}],
                proration_behavior="always_invoice",
                metadata=metadata,
                api_key=self.secret_key,
            )
        return subscription_from_stripe(updated)

    def cancel_subscription(self, subscription_id: str) -> SubscriptionEvent:
        with _stripe_call(f"subscription {subscription_id} cancellation"):
            canceled = stripe.Subscription.cancel(subscription_id, api_key=self.secret_key)
        return subscription_from_stripe(canceled)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        return verify_webhook_payload(payload, signature, self.webhook_secret)
