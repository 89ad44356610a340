"""
On-demand subscription sync and drift repair.

Used when a webhook was missed or the stored provider ids went stale (for
example after moving to a new Stripe account). Lookup order:

1. The stored subscription id, unless the provider no longer knows it or it is terminal
2. The stored customer's subscriptions tagged with this user, newest first,
   preferring one that is active or trialing
"""
from typing import List, Optional

from resumeapi.core.config import settings
from resumeapi.core.errors import NotFoundError, NothingToSyncError
from resumeapi.core.logging import log_event
from resumeapi.features.billing.plans import parse_period_end
from resumeapi.features.billing.provider import BillingProvider, BillingProviderError, ProviderNotFoundError
from resumeapi.features.billing.reconcile import apply_event
from resumeapi.features.users.service import get_subscription_record, save_subscription_record
from resumeapi.models.subscription import (
    ACTIVE_STATUSES,
    SubscriptionEvent,
    SubscriptionRecord,
    SubscriptionStatus,
)


TERMINAL_STATUSES = frozenset({
    SubscriptionStatus.CANCELED.value,
    SubscriptionStatus.INCOMPLETE_EXPIRED.value,
})


def pick_subscription(user_id: str, candidates: List[SubscriptionEvent]) -> Optional[SubscriptionEvent]:
    """Newest active/trialing subscription tagged with the user, else the newest tagged one."""
    owned = [sub for sub in candidates if sub.user_id == user_id]
    owned.sort(key=lambda sub: sub.created or 0, reverse=True)
    for sub in owned:
        if sub.status in ACTIVE_STATUSES:
            return sub
    return owned[0] if owned else None


def find_subscription(
    provider: BillingProvider,
    user_id: str,
    record: SubscriptionRecord,
    list_limit: Optional[int] = None,
) -> Optional[SubscriptionEvent]:
    if record.stripe_subscription_id:
        try:
            subscription = provider.retrieve_subscription(record.stripe_subscription_id)
        except ProviderNotFoundError:
            save_subscription_record(user_id, {"stripe_subscription_id": None})
            log_event(
                "warning",
                "billing.sync.subscription_cleared",
                user_id=user_id,
                extra={"subscription_id": record.stripe_subscription_id},
            )
        except BillingProviderError as e:
            log_event(
                "warning",
                "billing.sync.stored_subscription_unavailable",
                user_id=user_id,
                error_code=type(e).__name__,
                extra={"subscription_id": record.stripe_subscription_id, "error": str(e)},
            )
        else:
            if subscription.status not in TERMINAL_STATUSES:
                return subscription

    if not record.stripe_customer_id:
        return None

    limit = list_limit or settings.BILLING_SYNC_LIST_LIMIT
    try:
        candidates = provider.list_customer_subscriptions(record.stripe_customer_id, limit=limit)
    except ProviderNotFoundError:
        save_subscription_record(user_id, {"stripe_customer_id": None})
        log_event(
            "warning",
            "billing.sync.customer_cleared",
            user_id=user_id,
            extra={"customer_id": record.stripe_customer_id},
        )
        return None

    return pick_subscription(user_id, candidates)


def sync_subscription(provider: BillingProvider, user_id: str) -> SubscriptionRecord:
    """
    Pull the user's subscription from the provider and reconcile it.

    Raises:
        NotFoundError: Unknown user
        NothingToSyncError: The provider has no subscription for this user
        BillingProviderError: Provider failure other than a missing object
    """
    record = get_subscription_record(user_id)
    if record is None:
        raise NotFoundError(f"User {user_id} not found")

    subscription = find_subscription(provider, user_id, record)
    if subscription is None:
        raise NothingToSyncError(
            "No subscription found to sync. If you just completed checkout, wait a few seconds and try again."
        )
    return apply_event(user_id, subscription, source="sync")


def refresh_period_end(provider: BillingProvider, user_id: str, record: SubscriptionRecord) -> SubscriptionRecord:
    """Refresh current_period_end from the provider. Failures keep the stored value."""
    if not record.stripe_subscription_id:
        return record

    try:
        subscription = provider.retrieve_subscription(record.stripe_subscription_id)
    except BillingProviderError as e:
        log_event(
            "warning",
            "billing.status.refresh_failed",
            user_id=user_id,
            error_code=type(e).__name__,
            extra={"subscription_id": record.stripe_subscription_id, "error": str(e)},
        )
        return record

    period_end = parse_period_end(subscription.current_period_end)
    if period_end is None or period_end == record.current_period_end:
        return record
    return save_subscription_record(user_id, {"current_period_end": period_end})
