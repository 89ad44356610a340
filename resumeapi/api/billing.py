"""
Billing API routes.

- POST /billing/webhook: Stripe webhooks (always 200, processed after the response)
- POST /billing/checkout: Create checkout session
- GET  /billing/subscription: Current subscription status
- PUT  /billing/subscription: Change plan
- POST /billing/sync: Pull subscription state from Stripe
- POST /billing/cancel: Cancel subscription
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from resumeapi.core.auth import get_current_user_id
from resumeapi.core.errors import NotFoundError
from resumeapi.core.logging import log_event
from resumeapi.core.metrics import billing_webhook_events_total
from resumeapi.features.billing import checkout, sync
from resumeapi.features.billing.provider import BillingProvider, BillingProviderError, BillingWebhookError
from resumeapi.features.billing.service import as_app_error, get_subscription_status, require_provider
from resumeapi.features.billing.webhooks import payload_digest, process_webhook_event
from resumeapi.features.users.service import get_user
from resumeapi.models.subscription import SubscriptionRecord


router = APIRouter(prefix="/billing", tags=["billing"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PriceRequest(CamelModel):
    """Body for checkout and plan change."""
    price_id: Optional[str] = None


class CheckoutResponse(CamelModel):
    url: str
    session_id: str


class SubscriptionStatusResponse(CamelModel):
    plan: str
    subscription_status: Optional[str] = None
    current_period_end: Optional[datetime] = None
    has_active_subscription: bool

    @classmethod
    def from_record(cls, record: SubscriptionRecord, **extra):
        return cls(
            plan=record.plan,
            subscription_status=record.subscription_status,
            current_period_end=record.current_period_end,
            has_active_subscription=record.has_active_subscription,
            **extra,
        )


class SubscriptionChangeResponse(SubscriptionStatusResponse):
    message: str


def billing_provider(request: Request) -> Optional[BillingProvider]:
    """Provider configured on the app, or None when billing is off."""
    return getattr(request.app.state, "billing_provider", None)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    provider: Optional[BillingProvider] = Depends(billing_provider),
):
    """
    Receive a Stripe webhook.

    Always answers 200 so Stripe does not retry deliveries we cannot use.
    Verification failures come back as {"received": false, "error": ...};
    verified events are acknowledged first and processed afterwards.
    """
    # Raw body: the signature covers these exact bytes
    body = await request.body()
    signature = request.headers.get("stripe-signature")

    if provider is None:
        log_event("warning", "billing.webhook.rejected", error_code="billing_not_configured")
        billing_webhook_events_total.inc({"event_type": "unknown", "outcome": "rejected"})
        return {"received": False, "error": "Billing not configured"}

    try:
        event = provider.construct_event(body, signature)
    except BillingWebhookError as e:
        log_event("warning", "billing.webhook.rejected", error_code="invalid_webhook", extra={"error": str(e)})
        billing_webhook_events_total.inc({"event_type": "unknown", "outcome": "rejected"})
        return {"received": False, "error": str(e)}

    log_event("info", "billing.webhook.received", event_type=event.get("type"), extra={"event_id": event.get("id")})
    background_tasks.add_task(process_webhook_event, provider, event, payload_digest(body))
    return {"received": True}


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout_session(
    body: PriceRequest,
    user_id: str = Depends(get_current_user_id),
    provider: Optional[BillingProvider] = Depends(billing_provider),
):
    """
    Create a Stripe checkout session for a recurring price.

    Errors:
        400: priceId missing, malformed, unknown or not recurring
        500: Billing not configured or Stripe rejected our key
    """
    active_provider = require_provider(provider)
    user = get_user(user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")

    try:
        session = checkout.create_checkout(active_provider, user, body.price_id)
    except BillingProviderError as e:
        raise as_app_error(e) from e
    return CheckoutResponse(url=session.url, session_id=session.session_id)


@router.get("/subscription", response_model=SubscriptionStatusResponse)
def read_subscription(
    user_id: str = Depends(get_current_user_id),
    provider: Optional[BillingProvider] = Depends(billing_provider),
):
    record = get_subscription_status(provider, user_id)
    return SubscriptionStatusResponse.from_record(record)


@router.post("/sync", response_model=SubscriptionChangeResponse)
def sync_subscription(
    user_id: str = Depends(get_current_user_id),
    provider: Optional[BillingProvider] = Depends(billing_provider),
):
    """
    Reconcile with Stripe on demand (missed webhook, stale ids).

    Errors:
        400 nothing_to_sync: Stripe has no subscription for this user
    """
    active_provider = require_provider(provider)
    try:
        record = sync.sync_subscription(active_provider, user_id)
    except BillingProviderError as e:
        raise as_app_error(e) from e
    return SubscriptionChangeResponse.from_record(
        record,
        message=f"Subscription synced successfully. Plan updated to: {record.plan}",
    )


@router.put("/subscription", response_model=SubscriptionChangeResponse)
def change_subscription(
    body: PriceRequest,
    user_id: str = Depends(get_current_user_id),
    provider: Optional[BillingProvider] = Depends(billing_provider),
):
    active_provider = require_provider(provider)
    try:
        record = checkout.change_plan(active_provider, user_id, body.price_id)
    except BillingProviderError as e:
        raise as_app_error(e) from e
    return SubscriptionChangeResponse.from_record(record, message="Subscription updated successfully")


@router.post("/cancel", response_model=SubscriptionChangeResponse)
def cancel_subscription(
    user_id: str = Depends(get_current_user_id),
    provider: Optional[BillingProvider] = Depends(billing_provider),
):
    active_provider = require_provider(provider)
    try:
        record = checkout.cancel(active_provider, user_id)
    except BillingProviderError as e:
        raise as_app_error(e) from e
    return SubscriptionChangeResponse.from_record(record, message="Subscription canceled successfully")
