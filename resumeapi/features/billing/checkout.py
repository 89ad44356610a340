"""
Checkout session builder and subscription changes initiated by the user.

- create_checkout: validate the price, heal the customer id, open a session
- change_plan: swap the subscription's price (prorated) and reconcile
- cancel: cancel at the provider and reconcile
"""
from typing import Dict, Optional

from resumeapi.core.config import get_price_plan_map, settings
from resumeapi.core.errors import BillingNotConfiguredError, ValidationError
from resumeapi.core.logging import log_event
from resumeapi.features.billing.plans import resolve_plan
from resumeapi.features.billing.provider import (
    BillingProvider,
    CheckoutSession,
    PriceInfo,
    ProviderAuthError,
    ProviderNotFoundError,
)
from resumeapi.features.billing.reconcile import apply_event
from resumeapi.features.users.service import get_subscription_record, save_subscription_record
from resumeapi.models.subscription import METADATA_PLAN, METADATA_USER_ID, SubscriptionRecord
from resumeapi.models.user import User


SUCCESS_PATH = "/dashboard?session_id={CHECKOUT_SESSION_ID}&success=true"
CANCEL_PATH = "/pricing?canceled=true"


def validate_price(provider: BillingProvider, price_id: Optional[str]) -> PriceInfo:
    """
    Make sure `price_id` is a recurring price the provider knows.

    Raises:
        ValidationError: Missing, malformed, unknown or one-time price
        BillingNotConfiguredError: The provider rejected our API key
    """
    if not price_id:
        raise ValidationError("priceId is required")

    if not price_id.startswith("price_"):
        raise ValidationError(
            f'Invalid price ID format: "{price_id}". Price IDs start with "price_"; '
            "copy the Price ID from Stripe Dashboard > Products > Pricing."
        )

    try:
        price = provider.retrieve_price(price_id)
    except ProviderNotFoundError:
        raise ValidationError(
            f'Price ID "{price_id}" not found in Stripe. Check that the price exists and is active, '
            "and that test prices are used with test keys (live with live)."
        )
    except ProviderAuthError as e:
        raise BillingNotConfiguredError(str(e))

    if not price.recurring:
        raise ValidationError(
            f'Price ID "{price_id}" is not a recurring subscription price (type: {price.type}). '
            "Create a recurring (monthly or yearly) price in Stripe and configure its ID."
        )
    return price


def ensure_customer(provider: BillingProvider, user: User) -> str:
    """Return a customer id the provider recognizes, creating one if the stored id is stale."""
    stored = user.subscription.stripe_customer_id
    if stored:
        try:
            return provider.retrieve_customer(stored)
        except ProviderNotFoundError:
            # Usually left over from a different Stripe account
            save_subscription_record(user.user_id, {"stripe_customer_id": None})
            log_event(
                "warning",
                "billing.customer.stale",
                user_id=user.user_id,
                extra={"customer_id": stored},
            )

    customer_id = provider.create_customer(user.user_id, email=user.email)
    save_subscription_record(user.user_id, {"stripe_customer_id": customer_id})
    log_event("info", "billing.customer.created", user_id=user.user_id, extra={"customer_id": customer_id})
    return customer_id


def subscription_metadata(user_id: str, price_id: str, price_map: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    prices = price_map if price_map is not None else get_price_plan_map()
    return {
        METADATA_USER_ID: user_id,
        METADATA_PLAN: resolve_plan(None, price_id, prices),
    }


def create_checkout(
    provider: BillingProvider,
    user: User,
    price_id: Optional[str],
    frontend_url: Optional[str] = None,
) -> CheckoutSession:
    validate_price(provider, price_id)
    customer_id = ensure_customer(provider, user)

    base_url = (frontend_url or settings.FRONTEND_URL).rstrip("/")
    session = provider.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        success_url=f"{base_url}{SUCCESS_PATH}",
        cancel_url=f"{base_url}{CANCEL_PATH}",
        metadata=subscription_metadata(user.user_id, price_id),
    )
    log_event(
        "info",
        "billing.checkout.created",
        user_id=user.user_id,
        extra={"session_id": session.session_id, "price_id": price_id},
    )
    return session


def _require_subscription_id(user_id: str) -> str:
    record = get_subscription_record(user_id)
    if record is None or not record.stripe_subscription_id:
        raise ValidationError("No active subscription found")
    return record.stripe_subscription_id


def change_plan(provider: BillingProvider, user_id: str, price_id: Optional[str]) -> SubscriptionRecord:
    """Move the user's subscription to `price_id` with an immediate prorated invoice."""
    if not price_id:
        raise ValidationError("priceId is required")
    subscription_id = _require_subscription_id(user_id)
    validate_price(provider, price_id)

    updated = provider.change_subscription_price(
        subscription_id,
        price_id,
        metadata=subscription_metadata(user_id, price_id),
    )
    return apply_event(user_id, updated, source="plan_change")


def cancel(provider: BillingProvider, user_id: str) -> SubscriptionRecord:
    subscription_id = _require_subscription_id(user_id)
    canceled = provider.cancel_subscription(subscription_id)
    return apply_event(user_id, canceled, source="cancel")
