"""
Webhook event processing (runs after the HTTP acknowledgement).

1. Record the delivery in billing_events. Only an event that already finished
   processing is skipped; a redelivery that arrives while the first attempt is
   still running is dispatched again (reconciliation is idempotent)
2. Dispatch by event type to the reconciliation engine
3. Mark processed, or store the error for replay

Nothing here raises to the caller: the provider has already been told 200,
so failures are logged, counted and left on the event row.
"""
import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from resumeapi.core.database import billing_events, get_db_session
from resumeapi.core.logging import log_event
from resumeapi.core.metrics import billing_webhook_events_total
from resumeapi.features.billing.provider import BillingProvider, BillingProviderError
from resumeapi.features.billing.reconcile import apply_deletion, apply_event, mark_past_due
from resumeapi.features.billing.stripe_provider import (
    get_field,
    invoice_subscription_id,
    object_id,
    subscription_from_stripe,
)
from resumeapi.features.users.service import find_user_id_by_customer, find_user_id_by_subscription
from resumeapi.models.subscription import METADATA_USER_ID

logger = logging.getLogger("resumeapi")


def payload_digest(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest()


def resolve_user_id(
    *candidates: Optional[str],
    customer_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
) -> Optional[str]:
    """First explicit user id wins; otherwise look the user up by stored provider ids."""
    for candidate in candidates:
        if candidate:
            return candidate
    return find_user_id_by_customer(customer_id) or find_user_id_by_subscription(subscription_id)


# ---- event log ----

def record_event(event: Dict[str, Any], payload_hash: Optional[str] = None) -> bool:
    """
    Log a delivery in billing_events.

    Returns:
        False when this event id was already processed (duplicate delivery).
        An unfinished row, failed or still in flight, returns True.
    """
    event_id = event.get("id")
    if not event_id:
        return True

    with get_db_session() as session:
        existing = session.execute(
            select(billing_events.c.processed).where(billing_events.c.stripe_event_id == event_id)
        ).fetchone()
        if existing:
            # Re-delivery of a failed event gets another attempt
            return not existing.processed

        try:
            session.execute(
                insert(billing_events).values(
                    stripe_event_id=event_id,
                    event_type=event.get("type") or "unknown",
                    payload_hash=payload_hash or "",
                    payload=event,
                    processed=False,
                )
            )
        except IntegrityError:
            # Concurrent delivery of the same event won the insert
            session.rollback()
            return False
    return True


def mark_processed(event_id: Optional[str]) -> None:
    if not event_id:
        return
    with get_db_session() as session:
        session.execute(
            update(billing_events)
            .where(billing_events.c.stripe_event_id == event_id)
            .values(processed=True, processed_at=datetime.now(timezone.utc), error=None)
        )


def mark_failed(event_id: Optional[str], error: str) -> None:
    if not event_id:
        return
    with get_db_session() as session:
        session.execute(
            update(billing_events)
            .where(billing_events.c.stripe_event_id == event_id)
            .values(error=error[:2000])
        )


# ---- dispatch ----

def _handle_checkout_completed(provider: BillingProvider, session_obj: Any) -> str:
    subscription_id = object_id(get_field(session_obj, "subscription"))
    if not subscription_id:
        log_event("warning", "billing.checkout.no_subscription", extra={"session_id": get_field(session_obj, "id")})
        return "ignored"

    subscription = provider.retrieve_subscription(subscription_id)
    user_id = resolve_user_id(
        subscription.user_id,
        get_field(get_field(session_obj, "metadata"), METADATA_USER_ID),
        get_field(session_obj, "client_reference_id"),
        customer_id=subscription.customer_id or object_id(get_field(session_obj, "customer")),
    )
    if not user_id:
        log_event("warning", "billing.webhook.user_unresolved", extra={"subscription_id": subscription_id})
        return "unresolved"

    apply_event(user_id, subscription, source="checkout")
    return "applied"


def _handle_subscription_changed(subscription_obj: Any) -> str:
    subscription = subscription_from_stripe(subscription_obj)
    user_id = resolve_user_id(
        subscription.user_id,
        customer_id=subscription.customer_id,
        subscription_id=subscription.subscription_id,
    )
    if not user_id:
        log_event("warning", "billing.webhook.user_unresolved", extra={"subscription_id": subscription.subscription_id})
        return "unresolved"

    apply_event(user_id, subscription, source="webhook")
    return "applied"


def _handle_subscription_deleted(subscription_obj: Any) -> str:
    subscription = subscription_from_stripe(subscription_obj)
    user_id = resolve_user_id(
        subscription.user_id,
        customer_id=subscription.customer_id,
        subscription_id=subscription.subscription_id,
    )
    if not user_id:
        log_event("warning", "billing.webhook.user_unresolved", extra={"subscription_id": subscription.subscription_id})
        return "unresolved"

    apply_deletion(user_id)
    return "applied"


def _handle_invoice_paid(provider: BillingProvider, invoice: Any) -> str:
    subscription_id = invoice_subscription_id(invoice)
    if not subscription_id:
        return "ignored"

    subscription = provider.retrieve_subscription(subscription_id)
    user_id = resolve_user_id(
        subscription.user_id,
        customer_id=subscription.customer_id or object_id(get_field(invoice, "customer")),
        subscription_id=subscription_id,
    )
    if not user_id:
        log_event("warning", "billing.webhook.user_unresolved", extra={"subscription_id": subscription_id})
        return "unresolved"

    apply_event(user_id, subscription, source="invoice")
    return "applied"


def _handle_invoice_failed(provider: BillingProvider, invoice: Any) -> str:
    subscription_id = invoice_subscription_id(invoice)
    if not subscription_id:
        return "ignored"

    metadata_user_id = None
    try:
        metadata_user_id = provider.retrieve_subscription(subscription_id).user_id
    except BillingProviderError as e:
        # The stored ids are enough to find the user
        log_event(
            "warning",
            "billing.invoice.subscription_lookup_failed",
            error_code=type(e).__name__,
            extra={"subscription_id": subscription_id, "error": str(e)},
        )

    user_id = resolve_user_id(
        metadata_user_id,
        customer_id=object_id(get_field(invoice, "customer")),
        subscription_id=subscription_id,
    )
    if not user_id:
        log_event("warning", "billing.webhook.user_unresolved", extra={"subscription_id": subscription_id})
        return "unresolved"

    mark_past_due(user_id)
    return "applied"


def dispatch_event(provider: BillingProvider, event: Dict[str, Any]) -> str:
    """
    Route a verified event to its handler.

    Returns:
        Outcome label: applied, ignored or unresolved
    """
    event_type = event.get("type")
    obj = get_field(get_field(event, "data"), "object", {})

    if event_type == "checkout.session.completed":
        return _handle_checkout_completed(provider, obj)
    if event_type in ("customer.subscription.created", "customer.subscription.updated"):
        return _handle_subscription_changed(obj)
    if event_type == "customer.subscription.deleted":
        return _handle_subscription_deleted(obj)
    if event_type == "invoice.payment_succeeded":
        return _handle_invoice_paid(provider, obj)
    if event_type == "invoice.payment_failed":
        return _handle_invoice_failed(provider, obj)

    # payment_intent.* belongs to one-time payments; nothing to reconcile
    log_event("info", "billing.webhook.ignored", event_type=event_type or "unknown")
    return "ignored"


def process_webhook_event(provider: BillingProvider, event: Dict[str, Any], payload_hash: Optional[str] = None) -> str:
    """Background task body. Never raises."""
    event_id = event.get("id")
    event_type = event.get("type") or "unknown"

    try:
        if not record_event(event, payload_hash):
            outcome = "duplicate"
            log_event("info", "billing.webhook.duplicate", event_type=event_type, extra={"event_id": event_id})
        else:
            outcome = dispatch_event(provider, event)
            mark_processed(event_id)
    except Exception as e:
        outcome = "error"
        log_event(
            "error",
            "billing.webhook.failed",
            event_type=event_type,
            error_code=type(e).__name__,
            extra={"event_id": event_id, "error": str(e)},
        )
        try:
            mark_failed(event_id, f"{type(e).__name__}: {e}")
        except Exception:
            logger.exception("billing.webhook.mark_failed_error", extra={"event_id": event_id})

    billing_webhook_events_total.inc({"event_type": event_type, "outcome": outcome})
    return outcome


def replay_failed_events(provider: BillingProvider, limit: int = 50) -> Dict[str, int]:
    """Re-dispatch logged events that never finished processing, oldest first."""
    with get_db_session() as session:
        rows = session.execute(
            select(billing_events.c.stripe_event_id, billing_events.c.payload)
            .where(billing_events.c.processed.is_(False))
            .order_by(billing_events.c.received_at.asc(), billing_events.c.id.asc())
            .limit(limit)
        ).fetchall()

    summary = {"replayed": 0, "succeeded": 0, "failed": 0}
    for row in rows:
        summary["replayed"] += 1
        if not row.payload:
            mark_failed(row.stripe_event_id, "No stored payload")
            summary["failed"] += 1
            continue
        try:
            dispatch_event(provider, row.payload)
        except Exception as e:
            mark_failed(row.stripe_event_id, f"{type(e).__name__}: {e}")
            log_event(
                "error",
                "billing.webhook.replay_failed",
                event_type=row.payload.get("type"),
                error_code=type(e).__name__,
                extra={"event_id": row.stripe_event_id, "error": str(e)},
            )
            summary["failed"] += 1
            continue
        mark_processed(row.stripe_event_id)
        summary["succeeded"] += 1

    return summary
