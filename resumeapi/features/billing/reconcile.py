"""
Subscription reconciliation engine.

Maps one provider-reported subscription onto the user's stored subscription
record. Every path that learns about a subscription (webhooks, sync, plan
change, cancel) funnels through apply_event so the plan/status rules live in
one place:

- active / trialing: paid plan resolved from metadata or price
- anything else: plan drops to free, ids and period end still mirrored
- deletion: free + canceled, subscription fields cleared
- failed invoice: past_due only (grace period, plan kept)
"""
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from resumeapi.core.config import get_price_plan_map
from resumeapi.core.logging import log_event
from resumeapi.core.metrics import billing_reconciliations_total
from resumeapi.features.billing.plans import parse_period_end, resolve_plan
from resumeapi.features.users.service import save_subscription_record
from resumeapi.models.subscription import (
    ACTIVE_STATUSES,
    KNOWN_STATUSES,
    Plan,
    SubscriptionEvent,
    SubscriptionRecord,
    SubscriptionStatus,
)


def compute_subscription_update(event: SubscriptionEvent, price_map: Dict[str, str]) -> Dict[str, Any]:
    """Record fields implied by `event`. Depends on nothing but its inputs."""
    updates: Dict[str, Any] = {
        "stripe_subscription_id": event.subscription_id,
        "stripe_price_id": event.price_id,
        "current_period_end": parse_period_end(event.current_period_end),
    }
    if event.status in ACTIVE_STATUSES:
        updates["plan"] = resolve_plan(event.plan, event.price_id, price_map)
        updates["subscription_status"] = event.status
    else:
        updates["plan"] = Plan.FREE.value
        updates["subscription_status"] = event.status if event.status in KNOWN_STATUSES else None
    return updates


def _only_period_end_invalid(exc: PydanticValidationError) -> bool:
    errors = exc.errors()
    return bool(errors) and all("current_period_end" in err.get("loc", ()) for err in errors)


def _save(user_id: str, updates: Dict[str, Any], source: str) -> SubscriptionRecord:
    try:
        return save_subscription_record(user_id, updates)
    except PydanticValidationError as e:
        if not _only_period_end_invalid(e):
            raise
        log_event(
            "warning",
            "billing.period_end.dropped",
            user_id=user_id,
            error_code="invalid_period_end",
            extra={"source": source, "value": updates.get("current_period_end")},
        )
        return save_subscription_record(user_id, {**updates, "current_period_end": None})


def apply_event(
    user_id: str,
    event: SubscriptionEvent,
    *,
    price_map: Optional[Dict[str, str]] = None,
    source: str = "webhook",
) -> SubscriptionRecord:
    """
    Reconcile the user's record with `event` in a single write.

    Applying the same event twice leaves the same record.

    Raises:
        NotFoundError: Unknown user
    """
    prices = price_map if price_map is not None else get_price_plan_map()
    updates = compute_subscription_update(event, prices)
    record = _save(user_id, updates, source)

    billing_reconciliations_total.inc({"source": source, "status": record.subscription_status or "unknown"})
    log_event(
        "info",
        "billing.subscription.reconciled",
        user_id=user_id,
        extra={
            "source": source,
            "subscription_id": event.subscription_id,
            "provider_status": event.status,
            "plan": record.plan,
            "status": record.subscription_status,
        },
    )
    return record


def apply_deletion(user_id: str, *, source: str = "webhook") -> SubscriptionRecord:
    """Terminal deletion: back to free and forget the subscription. Customer id stays."""
    record = save_subscription_record(
        user_id,
        {
            "plan": Plan.FREE.value,
            "subscription_status": SubscriptionStatus.CANCELED.value,
            "stripe_subscription_id": None,
            "stripe_price_id": None,
            "current_period_end": None,
        },
    )
    billing_reconciliations_total.inc({"source": source, "status": "deleted"})
    log_event("info", "billing.subscription.deleted", user_id=user_id, extra={"source": source})
    return record


def mark_past_due(user_id: str, *, source: str = "webhook") -> SubscriptionRecord:
    """Failed renewal. Only the status moves; the plan rides out the grace period."""
    record = save_subscription_record(user_id, {"subscription_status": SubscriptionStatus.PAST_DUE.value})
    billing_reconciliations_total.inc({"source": source, "status": SubscriptionStatus.PAST_DUE.value})
    log_event("warning", "billing.subscription.past_due", user_id=user_id, extra={"source": source, "plan": record.plan})
    return record
