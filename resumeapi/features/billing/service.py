"""
Billing service wiring.

Builds the provider from configuration, maps provider failures onto API
errors and answers "what is my subscription". The reconciliation rules
themselves live in reconcile.py; Stripe specifics in stripe_provider.py.
"""
from typing import Optional

from resumeapi.core.config import Settings, settings
from resumeapi.core.errors import AppError, BillingNotConfiguredError, BillingOperationError, NotFoundError
from resumeapi.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    ProviderAuthError,
    ProviderNotFoundError,
)
from resumeapi.features.billing.stripe_provider import StripeProvider
from resumeapi.features.billing.sync import refresh_period_end
from resumeapi.features.users.service import get_subscription_record
from resumeapi.models.subscription import SubscriptionRecord


def billing_enabled(settings_obj: Optional[Settings] = None) -> bool:
    """Check if billing is enabled (Stripe configured)."""
    cfg = settings_obj or settings
    return bool(cfg.STRIPE_SECRET_KEY)


def build_provider(settings_obj: Optional[Settings] = None) -> Optional[BillingProvider]:
    """Provider from configuration, or None when billing is not configured."""
    cfg = settings_obj or settings
    if not billing_enabled(cfg):
        return None
    return StripeProvider.from_settings(cfg)


def require_provider(provider: Optional[BillingProvider]) -> BillingProvider:
    if provider is None:
        raise BillingNotConfiguredError()
    return provider


def as_app_error(exc: BillingProviderError) -> AppError:
    """Map a provider failure onto the error the API should return."""
    if isinstance(exc, ProviderAuthError):
        return BillingNotConfiguredError(str(exc))
    if isinstance(exc, ProviderNotFoundError):
        return BillingOperationError(f"Stripe object not found: {exc}")
    return BillingOperationError(str(exc) or "Billing provider request failed")


def get_subscription_status(provider: Optional[BillingProvider], user_id: str) -> SubscriptionRecord:
    """Stored record, with the period end refreshed when the provider is reachable."""
    record = get_subscription_record(user_id)
    if record is None:
        raise NotFoundError(f"User {user_id} not found")
    if provider is None:
        return record
    return refresh_period_end(provider, user_id, record)
